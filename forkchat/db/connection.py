"""aiosqlite connection for the durable node store."""

import logging
from pathlib import Path

import aiosqlite

from forkchat.db.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"

# foreign_keys must be on for the parent_id cascade to run.
_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)


class Database:
    """One aiosqlite connection; every write commits immediately."""

    def __init__(self, connection: aiosqlite.Connection, path: str = IN_MEMORY) -> None:
        self._conn = connection
        self.path = path

    @classmethod
    async def connect(cls, path: str = "forkchat.db") -> "Database":
        if path != IN_MEMORY:
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        for pragma in _PRAGMAS:
            await conn.execute(pragma)
        db = cls(conn, path)
        await db._ensure_schema()
        logger.debug("Opened SQLite database at %s", path)
        return db

    async def _ensure_schema(self) -> None:
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement and commit. Returns the affected row count."""
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor.rowcount

    async def fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        async with self._conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def close(self) -> None:
        await self._conn.close()
