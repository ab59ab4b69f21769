"""Node storage: one repository contract, a durable and a fallback backend."""

import logging

from forkchat.store.base import MissingReferenceError, NodeStore, StoreUnavailableError
from forkchat.store.local import LocalNodeStore
from forkchat.store.sqlite import SQLiteNodeStore

__all__ = [
    "LocalNodeStore",
    "MissingReferenceError",
    "NodeStore",
    "SQLiteNodeStore",
    "StoreUnavailableError",
    "open_store",
]

logger = logging.getLogger(__name__)


async def open_store(
    database_path: str | None, local_path: str | None = None
) -> NodeStore:
    """Select the backend once, at startup.

    A configured database path wins; otherwise the local fallback is used.
    """
    if database_path:
        logger.info("Using SQLite node store at %s", database_path)
        return await SQLiteNodeStore.open(database_path)
    logger.info("No database configured; using local node store at %s", local_path)
    return LocalNodeStore(local_path)
