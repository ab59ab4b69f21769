"""Node store repository contract.

Two backends implement it: a durable SQLite store and a process-local JSON
fallback. Callers hold a NodeStore and never learn which one is active.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from forkchat.models import Conversation, Node


class NodeStore(ABC):
    """Keyed storage for conversations and their tree nodes."""

    backend: str = "abstract"

    @abstractmethod
    async def get(self, node_id: str) -> Node | None:
        """Return the node, or None if absent."""
        ...

    @abstractmethod
    async def list_nodes(self, conversation_id: str | None = None) -> list[Node]:
        """All nodes (optionally of one conversation), oldest first."""
        ...

    @abstractmethod
    async def put(self, node: Node) -> Node:
        """Insert the node, or fully replace the stored node with the same id.

        Raises MissingReferenceError if its conversation or parent is absent.
        """
        ...

    @abstractmethod
    async def delete(self, node_id: str) -> None:
        """Remove the node and everything below it."""
        ...

    @abstractmethod
    async def delete_many(self, node_ids: Iterable[str]) -> None:
        """Remove every listed node and its descendants in one atomic step."""
        ...

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    @abstractmethod
    async def list_conversations(self) -> list[Conversation]:
        """All conversations, newest first."""
        ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Remove the conversation record and every node in it."""
        ...

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


def sort_nodes(nodes: Iterable[Node]) -> list[Node]:
    return sorted(nodes, key=Node.sort_key)


class StoreUnavailableError(Exception):
    def __init__(self, backend: str, reason: str) -> None:
        self.backend = backend
        self.reason = reason
        super().__init__(f"Store unavailable ({backend}): {reason}")


class MissingReferenceError(Exception):
    """A node was written whose parent or conversation is not stored."""

    def __init__(self, node_id: str, reference: str) -> None:
        self.node_id = node_id
        self.reference = reference
        super().__init__(f"Node {node_id} references missing {reference}")
