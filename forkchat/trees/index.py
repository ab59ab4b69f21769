"""In-memory tree index over the nodes of one conversation.

Built from a NodeStore listing and never mutated afterwards; TreeService
throws an index away whenever the scope it describes changes.
"""

from collections import defaultdict, deque
from collections.abc import Iterable

from forkchat.models import Node


class TreeIndex:
    """id -> Node and parent_id -> children (ordered by created_at, then id)."""

    def __init__(self, nodes: Iterable[Node]) -> None:
        self._nodes: dict[str, Node] = {}
        children: dict[str | None, list[Node]] = defaultdict(list)
        for node in nodes:
            self._nodes[node.node_id] = node
            children[node.parent_id].append(node)
        for group in children.values():
            group.sort(key=Node.sort_key)
        self._children = dict(children)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> list[Node]:
        return sorted(self._nodes.values(), key=Node.sort_key)

    def get(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def children_of(self, node_id: str) -> list[Node]:
        return list(self._children.get(node_id, ()))

    def siblings_of(self, node_id: str) -> list[Node]:
        """Nodes sharing node_id's parent, node_id included. Empty if unknown."""
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return list(self._children.get(node.parent_id, ()))

    def is_root(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and node.parent_id is None

    def roots(self) -> list[Node]:
        return list(self._children.get(None, ()))

    def descendants(self, node_id: str) -> set[str]:
        """Ids of every node below node_id (node_id itself excluded).

        Iterative breadth-first walk. Reaching a node twice, or reaching
        node_id again, means the stored parent links contain a cycle.
        """
        seen: set[str] = set()
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for child in self._children.get(current, ()):
                if child.node_id in seen or child.node_id == node_id:
                    raise CorruptTreeError(
                        child.node_id, "cycle detected while collecting descendants"
                    )
                seen.add(child.node_id)
                queue.append(child.node_id)
        return seen

    def sibling_info(self) -> dict[str, tuple[int, int]]:
        """(sibling_index, sibling_count) for every node."""
        result: dict[str, tuple[int, int]] = {}
        for group in self._children.values():
            count = len(group)
            for idx, node in enumerate(group):
                result[node.node_id] = (idx, count)
        return result

    def branch_tip(self, node_id: str) -> Node | None:
        """Follow the oldest child down from node_id until reaching a leaf."""
        current = self._nodes.get(node_id)
        if current is None:
            return None
        visited = {current.node_id}
        while children := self._children.get(current.node_id):
            current = children[0]
            if current.node_id in visited:
                raise CorruptTreeError(current.node_id, "cycle detected at branch tip")
            visited.add(current.node_id)
        return current

    def check_invariants(self) -> None:
        """Validate root uniqueness, parent scope, depth and acyclicity.

        Raises CorruptTreeError describing the first violation found.
        """
        roots = self.roots()
        if self._nodes and len(roots) != 1:
            raise CorruptTreeError(
                roots[0].node_id if roots else next(iter(self._nodes)),
                f"expected exactly one root, found {len(roots)}",
            )
        for node in self._nodes.values():
            if node.parent_id is None:
                if node.depth != 0:
                    raise CorruptTreeError(node.node_id, "root depth is not 0")
                continue
            parent = self._nodes.get(node.parent_id)
            if parent is None:
                raise CorruptTreeError(node.node_id, f"missing parent {node.parent_id}")
            if parent.conversation_id != node.conversation_id:
                raise CorruptTreeError(node.node_id, "parent belongs to another scope")
            if node.depth != parent.depth + 1:
                raise CorruptTreeError(
                    node.node_id,
                    f"depth {node.depth} does not follow parent depth {parent.depth}",
                )
        # Every node must be reachable from the single root.
        if roots:
            reachable = self.descendants(roots[0].node_id) | {roots[0].node_id}
            unreachable = set(self._nodes) - reachable
            if unreachable:
                raise CorruptTreeError(
                    sorted(unreachable)[0], "node is not reachable from the root"
                )


class CorruptTreeError(Exception):
    def __init__(self, node_id: str, reason: str) -> None:
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Corrupt tree at node {node_id}: {reason}")
