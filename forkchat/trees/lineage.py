"""Lineage reconstruction: the root-to-node path used as model context."""

import logging

from forkchat.models import Node
from forkchat.trees.index import CorruptTreeError, TreeIndex

logger = logging.getLogger(__name__)


def lineage(index: TreeIndex, node_id: str) -> list[Node]:
    """Return the nodes from the root down to node_id, inclusive.

    A parent id that does not resolve in the index truncates the chain at
    that point instead of failing, so one broken link cannot hide a whole
    conversation. Unknown node_id yields an empty list. Raises
    CorruptTreeError if the parent chain loops.
    """
    chain: list[Node] = []
    seen: set[str] = set()
    current = index.get(node_id)
    while current is not None:
        if current.node_id in seen:
            raise CorruptTreeError(current.node_id, "cycle detected in parent chain")
        seen.add(current.node_id)
        chain.append(current)
        if current.parent_id is None:
            break
        parent = index.get(current.parent_id)
        if parent is None:
            logger.warning(
                "Lineage of %s truncated: parent %s of %s not found",
                node_id, current.parent_id, current.node_id,
            )
        current = parent
    chain.reverse()
    return chain


def build_messages(path: list[Node], prompt: str) -> list[dict[str, str]]:
    """Flatten a lineage into chat messages, ending with the new prompt.

    Only finished turns contribute: a node without both a prompt and a
    response (a pending draft, a failed draft, an empty root) is skipped.
    """
    messages: list[dict[str, str]] = []
    for node in path:
        if not node.prompt or not node.response:
            continue
        messages.append({"role": "user", "content": node.prompt})
        messages.append({"role": "assistant", "content": node.response})
    messages.append({"role": "user", "content": prompt})
    return messages
