"""Local persistent key-value store with guarded JSON collections.

Every collection (``localLeads``, ``localAccounts``, ``localOpportunities``,
``crmActivities``) is a JSON-serialized array stored under a single string key.
Backends:
- MemoryStore: process-local dict (tests, ephemeral sessions)
- FileStore: one ``<key>.json`` file per key in a directory
- RedisStore: Redis strings under ``{prefix}:{key}``

LocalCollection wraps one key with an asyncio.Lock so each read-modify-write
is atomic against other coroutines on the same event loop.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from src.crm_client.config import Settings, StoreBackend, get_settings
from src.crm_client.crm.errors import StorageError

logger = structlog.get_logger(__name__)


# ── Backends ───────────────────────────────────────────────────────────────


class KeyValueStore(ABC):
    """Abstract string key -> string value store."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the raw value stored under key, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a raw value under key."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key (no-op if absent)."""
        ...

    async def close(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileStore(KeyValueStore):
    """Stores each key as ``<directory>/<key>.json``.

    Writes go to a temp file in the same directory followed by os.replace,
    so a crash never leaves a half-written collection behind. Disk I/O runs in
    a worker thread via asyncio.to_thread.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def _read(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc

    def _write(self, key: str, value: str) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, self._path(key))
        except OSError as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc

    def _unlink(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}: {exc}") from exc

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._unlink, key)


class RedisStore(KeyValueStore):
    """Redis-backed store; every key is namespaced as ``{prefix}:{key}``."""

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "crm") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(self._key(key))
        except RedisError as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(self._key(key), value)
        except RedisError as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except RedisError as exc:
            raise StorageError(f"Failed to delete {key}: {exc}") from exc

    async def close(self) -> None:
        await self._redis.close()


def create_store(settings: Settings | None = None) -> KeyValueStore:
    """Build the configured key-value backend."""
    settings = settings or get_settings()
    if settings.LOCAL_STORE_BACKEND == StoreBackend.redis:
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        return RedisStore(client, prefix=settings.LOCAL_STORE_PREFIX)
    if settings.LOCAL_STORE_BACKEND == StoreBackend.memory:
        return MemoryStore()
    return FileStore(settings.LOCAL_STORE_PATH)


# ── Collections ────────────────────────────────────────────────────────────


class LocalCollection:
    """A JSON array of records stored under one key, guarded by a lock.

    Unparseable or non-array contents read as an empty list. Backend errors
    (StorageError) propagate to the caller.
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self.key = key
        self._lock = asyncio.Lock()

    async def read(self) -> list[dict[str, Any]]:
        raw = await self._store.get(self.key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("store.collection_corrupt", key=self.key)
            return []
        if not isinstance(data, list):
            logger.warning("store.collection_not_a_list", key=self.key)
            return []
        return [item for item in data if isinstance(item, dict)]

    async def write(self, records: list[dict[str, Any]]) -> None:
        await self._store.set(self.key, json.dumps(records, default=str))

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(self.key)

    async def snapshot(self) -> list[dict[str, Any]]:
        """Read the collection while holding its lock."""
        async with self._lock:
            return await self.read()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield the mutable record list; persist it if the block succeeds."""
        async with self._lock:
            records = await self.read()
            yield records
            await self.write(records)


class LocalStore:
    """Registry of LocalCollections sharing one backend.

    Collections are cached per key so every caller shares the same lock.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend
        self._collections: dict[str, LocalCollection] = {}

    def collection(self, key: str) -> LocalCollection:
        if key not in self._collections:
            self._collections[key] = LocalCollection(self.backend, key)
        return self._collections[key]

    async def get_json(self, key: str) -> Any:
        """Read and parse a single JSON value; None if missing or corrupt."""
        raw = await self.backend.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("store.value_corrupt", key=key)
            return None

    async def set_json(self, key: str, value: Any) -> None:
        await self.backend.set(key, json.dumps(value, default=str))

    async def close(self) -> None:
        await self.backend.close()
