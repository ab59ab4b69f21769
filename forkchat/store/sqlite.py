"""Durable node store backed by SQLite (aiosqlite)."""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from forkchat.db.connection import Database
from forkchat.models import Conversation, Node
from forkchat.store.base import (
    MissingReferenceError,
    NodeStore,
    StoreUnavailableError,
    sort_nodes,
)

_NODE_COLUMNS = (
    "node_id",
    "conversation_id",
    "parent_id",
    "root_id",
    "depth",
    "prompt",
    "response",
    "title",
    "summary",
    "model",
    "provider",
    "status",
    "error",
    "created_at",
    "updated_at",
)

_UPSERT_NODE_SQL = f"""
INSERT INTO nodes ({", ".join(_NODE_COLUMNS)})
VALUES ({", ".join("?" for _ in _NODE_COLUMNS)})
ON CONFLICT(node_id) DO UPDATE SET
    {", ".join(f"{c} = excluded.{c}" for c in _NODE_COLUMNS if c != "node_id")}
"""


class SQLiteNodeStore(NodeStore):
    """NodeStore over the conversations/nodes tables."""

    backend = "sqlite"

    def __init__(self, db: Database) -> None:
        self._db = db

    @classmethod
    async def open(cls, path: str) -> "SQLiteNodeStore":
        with cls._unavailable_on_error():
            db = await Database.connect(path)
        return cls(db)

    @property
    def db(self) -> Database:
        return self._db

    async def get(self, node_id: str) -> Node | None:
        with self._unavailable_on_error():
            row = await self._db.fetchone(
                "SELECT * FROM nodes WHERE node_id = ?", (node_id,)
            )
        if row is None:
            return None
        return self._node_from_row(row)

    async def list_nodes(self, conversation_id: str | None = None) -> list[Node]:
        with self._unavailable_on_error():
            if conversation_id is None:
                rows = await self._db.fetchall(
                    "SELECT * FROM nodes ORDER BY created_at, node_id"
                )
            else:
                rows = await self._db.fetchall(
                    "SELECT * FROM nodes WHERE conversation_id = ? "
                    "ORDER BY created_at, node_id",
                    (conversation_id,),
                )
        return sort_nodes(self._node_from_row(row) for row in rows)

    async def put(self, node: Node) -> Node:
        values = node.model_dump()
        params = tuple(
            values[c].isoformat() if c in ("created_at", "updated_at") else values[c]
            for c in _NODE_COLUMNS
        )
        with self._unavailable_on_error():
            try:
                await self._db.execute(_UPSERT_NODE_SQL, params)
            except sqlite3.IntegrityError as e:
                raise MissingReferenceError(
                    node.node_id, await self._missing_reference(node)
                ) from e
        return node

    async def delete(self, node_id: str) -> None:
        await self.delete_many([node_id])

    async def delete_many(self, node_ids: Iterable[str]) -> None:
        ids = list(node_ids)
        if not ids:
            return
        # One statement, so readers never observe a partially removed subtree.
        placeholders = ", ".join("?" for _ in ids)
        with self._unavailable_on_error():
            await self._db.execute(
                f"DELETE FROM nodes WHERE node_id IN ({placeholders})", tuple(ids)
            )

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        with self._unavailable_on_error():
            await self._db.execute(
                "INSERT INTO conversations (conversation_id, title, created_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(conversation_id) DO UPDATE SET "
                "title = excluded.title, created_at = excluded.created_at",
                (
                    conversation.conversation_id,
                    conversation.title,
                    conversation.created_at.isoformat(),
                ),
            )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._unavailable_on_error():
            row = await self._db.fetchone(
                "SELECT * FROM conversations WHERE conversation_id = ?",
                (conversation_id,),
            )
        if row is None:
            return None
        return Conversation.model_validate(dict(row))

    async def list_conversations(self) -> list[Conversation]:
        with self._unavailable_on_error():
            rows = await self._db.fetchall(
                "SELECT * FROM conversations ORDER BY created_at DESC"
            )
        return [Conversation.model_validate(dict(row)) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> None:
        with self._unavailable_on_error():
            await self._db.execute(
                "DELETE FROM conversations WHERE conversation_id = ?",
                (conversation_id,),
            )

    async def close(self) -> None:
        await self._db.close()

    async def _missing_reference(self, node: Node) -> str:
        """Name the foreign key a rejected upsert violated."""
        row = await self._db.fetchone(
            "SELECT 1 FROM conversations WHERE conversation_id = ?", (node.conversation_id,)
        )
        if row is None:
            return f"conversation {node.conversation_id}"
        return f"parent {node.parent_id}"

    @staticmethod
    def _node_from_row(row) -> Node:
        return Node.model_validate(dict(row))

    @staticmethod
    @contextmanager
    def _unavailable_on_error() -> Iterator[None]:
        # aiosqlite raises ValueError once its connection thread has stopped.
        try:
            yield
        except (sqlite3.DatabaseError, ValueError) as e:
            raise StoreUnavailableError("sqlite", str(e)) from e
