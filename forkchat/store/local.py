"""Process-local fallback store, persisted as a JSON file.

Used when no durable database is configured. The store owns the only
in-memory collection of nodes; nothing else may hold a reference to it.
Every mutation is written to disk before it becomes visible, so there is no
separate flush step. There is no cross-process locking: one process per file.
"""

import json
import logging
import os
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from forkchat.models import Conversation, Node
from forkchat.store.base import (
    MissingReferenceError,
    NodeStore,
    StoreUnavailableError,
    sort_nodes,
)

logger = logging.getLogger(__name__)


class _Snapshot(BaseModel):
    """On-disk layout of the fallback store."""

    conversations: list[Conversation] = Field(default_factory=list)
    nodes: list[Node] = Field(default_factory=list)


class LocalNodeStore(NodeStore):
    """NodeStore over an in-memory dict, mirrored to `path` when given.

    With `path=None` nothing is persisted, which is what the tests use.
    """

    backend = "local"

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path).expanduser() if path is not None else None
        self._conversations: dict[str, Conversation] = {}
        self._nodes: dict[str, Node] = {}
        self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    async def get(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    async def list_nodes(self, conversation_id: str | None = None) -> list[Node]:
        return sort_nodes(
            n for n in self._nodes.values()
            if conversation_id is None or n.conversation_id == conversation_id
        )

    async def put(self, node: Node) -> Node:
        if node.conversation_id not in self._conversations:
            raise MissingReferenceError(node.node_id, f"conversation {node.conversation_id}")
        if node.parent_id is not None and node.parent_id not in self._nodes:
            raise MissingReferenceError(node.node_id, f"parent {node.parent_id}")
        nodes = dict(self._nodes)
        nodes[node.node_id] = node
        self._commit(self._conversations, nodes)
        return node

    async def delete(self, node_id: str) -> None:
        await self.delete_many([node_id])

    async def delete_many(self, node_ids: Iterable[str]) -> None:
        targets = self._with_descendants(node_ids)
        nodes = {nid: n for nid, n in self._nodes.items() if nid not in targets}
        self._commit(self._conversations, nodes)

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        conversations = dict(self._conversations)
        conversations[conversation.conversation_id] = conversation
        self._commit(conversations, self._nodes)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def list_conversations(self) -> list[Conversation]:
        return sorted(
            self._conversations.values(), key=lambda c: c.created_at, reverse=True
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        conversations = {
            cid: c for cid, c in self._conversations.items() if cid != conversation_id
        }
        nodes = {
            nid: n for nid, n in self._nodes.items()
            if n.conversation_id != conversation_id
        }
        self._commit(conversations, nodes)

    def _with_descendants(self, node_ids: Iterable[str]) -> set[str]:
        """node_ids plus every node below them, as the SQLite cascade removes."""
        children: dict[str, list[str]] = defaultdict(list)
        for node in self._nodes.values():
            if node.parent_id is not None:
                children[node.parent_id].append(node.node_id)
        found: set[str] = set()
        stack = list(node_ids)
        while stack:
            node_id = stack.pop()
            if node_id in found:
                continue
            found.add(node_id)
            stack.extend(children.get(node_id, ()))
        return found

    def _commit(
        self, conversations: dict[str, Conversation], nodes: dict[str, Node]
    ) -> None:
        """Persist the next state, then make it current.

        A failed write raises StoreUnavailableError and leaves the current
        state untouched.
        """
        if self._path is not None:
            snapshot = _Snapshot(
                conversations=list(conversations.values()),
                nodes=sort_nodes(nodes.values()),
            )
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
                os.replace(tmp_path, self._path)
            except OSError as e:
                raise StoreUnavailableError("local", str(e)) from e
        self._conversations = conversations
        self._nodes = nodes

    def _load(self) -> None:
        """Load persisted state, if any. An unreadable file starts empty."""
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            snapshot = _Snapshot.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(
                "LocalNodeStore: could not read %s (%s); starting empty", self._path, e
            )
            return
        self._conversations = {c.conversation_id: c for c in snapshot.conversations}
        self._nodes = {n.node_id: n for n in snapshot.nodes}
        plural_s = "s" if len(self._nodes) != 1 else ""
        logger.info(
            "LocalNodeStore: loaded %d node%s from %s", len(self._nodes), plural_s, self._path
        )
