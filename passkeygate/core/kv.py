"""
Key-value store adapters.

The entity store only ever talks to a `KeyValueStore`: an opaque durable map
from string keys to JSON documents with optional per-key TTL. Expiry is the
adapter's job, records past their TTL read as absent. There are no multi-key
transactions.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from passkeygate.core.clock import Clock, system_clock
from passkeygate.core.config import settings
from passkeygate.core.database import DatabaseManager, KVEntry
from passkeygate.core.exceptions import StoreError

logger = logging.getLogger(__name__)


def _dumps(key: str, value: Any) -> str:
    try:
        return json.dumps(value, separators=(',', ':'))
    except (TypeError, ValueError) as e:
        raise StoreError(f"Could not serialize value for '{key}': {e}") from e


def _loads(key: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise StoreError(f"Corrupt value stored under '{key}': {e}") from e


class KeyValueStore(ABC):
    """Interface every store adapter implements."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Returns the stored document, or None when absent or expired."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Stores a document, replacing any previous one. `ttl` is in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Removes a key. Deleting a missing key is not an error."""

    async def pop(self, key: str) -> Optional[Any]:
        """
        Reads and removes a key. Adapters that can do this in one step
        override it; the fallback is a plain get followed by a delete.
        """
        value = await self.get(key)
        if value is not None:
            await self.delete(key)
        return value


class MemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed store for tests and single-process deployments.
    Documents are kept serialized so they behave exactly like persisted ones.
    """

    def __init__(self, clock: Clock = system_clock):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return raw

    async def get(self, key: str) -> Optional[Any]:
        raw = self._live(key)
        return None if raw is None else _loads(key, raw)

    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = (_dumps(key, value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def pop(self, key: str) -> Optional[Any]:
        # No await between the read and the removal, so this is atomic on the event loop.
        raw = self._live(key)
        if raw is None:
            return None
        del self._data[key]
        return _loads(key, raw)

    def __len__(self):
        return sum(1 for key in list(self._data) if self._live(key) is not None)


class SQLKeyValueStore(KeyValueStore):
    """
    Store backed by the `kv_entries` table through SQLAlchemy's async engine.
    Expired rows are treated as absent and removed when they are next read.
    """

    def __init__(self, db_manager: DatabaseManager, clock: Clock = system_clock):
        self._db_manager = db_manager
        self._clock = clock

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with self._db_manager.get_db() as db:
                entry = await db.get(KVEntry, key)
                if entry is None:
                    return None
                if entry.is_expired(self._clock()):
                    await db.delete(entry)
                    await db.commit()
                    logger.debug(f"Dropped expired key {key}")
                    return None
                raw = entry.value
        except SQLAlchemyError as e:
            raise StoreError(f"Store read failed for '{key}': {e}") from e
        return _loads(key, raw)

    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        raw = _dumps(key, value)
        expires_at = self._clock() + ttl if ttl is not None else None
        try:
            async with self._db_manager.get_db() as db:
                await db.merge(KVEntry(key=key, value=raw, expires_at=expires_at))
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Store write failed for '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._db_manager.get_db() as db:
                await db.execute(delete(KVEntry).where(KVEntry.key == key))
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Store delete failed for '{key}': {e}") from e

    async def pop(self, key: str) -> Optional[Any]:
        try:
            async with self._db_manager.get_db() as db:
                entry = await db.get(KVEntry, key, with_for_update=True)
                if entry is None:
                    return None
                expired = entry.is_expired(self._clock())
                raw = entry.value
                await db.delete(entry)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Store pop failed for '{key}': {e}") from e
        return None if expired else _loads(key, raw)


def create_store(clock: Clock = system_clock, db_manager: Optional[DatabaseManager] = None) -> KeyValueStore:
    """Builds the adapter selected by `KV_BACKEND`."""
    if settings.KV_BACKEND == "memory":
        logger.warning("Using the in-memory key-value store, passkeys will not survive a restart.")
        return MemoryKeyValueStore(clock)
    return SQLKeyValueStore(db_manager or DatabaseManager(), clock)
