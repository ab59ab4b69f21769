"""Canonical data structures for forkchat.

Defined once here, referenced everywhere else. A Node is one full turn of a
conversation: the user-authored prompt and the assistant response it
produced. Nodes that share a conversation_id form one rooted tree (a scope).
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

NodeStatus = Literal["idle", "processing", "completed", "error"]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Conversation(BaseModel):
    """Scope record. Every node carries the id of exactly one conversation."""

    conversation_id: str
    title: str = "New Conversation"
    created_at: datetime = Field(default_factory=utcnow)


class Node(BaseModel):
    node_id: str
    conversation_id: str
    parent_id: str | None = None
    root_id: str
    depth: int = 0

    # Turn content: prompt is fixed at creation, response arrives later
    prompt: str | None = None
    response: str | None = None
    title: str | None = None
    summary: str | None = None

    # Generation metadata
    model: str
    provider: str
    status: NodeStatus = "idle"
    error: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def sort_key(self) -> tuple[datetime, str]:
        """Creation order with the id as a deterministic tiebreak."""
        return (self.created_at, self.node_id)

    def touched(self, **changes) -> "Node":
        """Copy with `changes` applied and updated_at moved forward."""
        now = utcnow()
        changes["updated_at"] = max(now, self.updated_at)
        return self.model_copy(update=changes)
