"""
Key-value persistence for the tracking engine.

The engine only needs get/set/delete over JSON-serializable values. Three
backends are provided (memory, Redis, database) and every one of them
reports failures as PersistenceError so callers can absorb them.
"""

import abc
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import Settings
from backend.app.core.exceptions import PersistenceError
from backend.app.models.kv_entry import KeyValueEntry

logger = logging.getLogger("van_tracking.store")


class KeyValueStore(abc.ABC):

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None."""

    @abc.abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        """Return True when a value was removed."""

    async def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Values are JSON round-tripped so callers never share objects."""

    def __init__(self):
        self._store: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self._store.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        try:
            self._store[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key} is not JSON-serializable: {e}") from e

    async def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None


class RedisKeyValueStore(KeyValueStore):
    """Values stored as JSON strings under a key prefix."""

    def __init__(self, client, prefix: str = "van_tracking:"):
        self.client = client
        self.prefix = prefix

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self.prefix + key)
        except Exception as e:
            raise PersistenceError(f"Redis GET {key} failed: {e}") from e
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.client.set(self.prefix + key, json.dumps(value))
        except Exception as e:
            raise PersistenceError(f"Redis SET {key} failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(self.prefix + key))
        except Exception as e:
            raise PersistenceError(f"Redis DELETE {key} failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


class DatabaseKeyValueStore(KeyValueStore):
    """One kv_entries row per key."""

    def __init__(self, session_factory: async_sessionmaker, engine=None):
        self.session_factory = session_factory
        self.engine = engine

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(KeyValueEntry).where(KeyValueEntry.key == key))
                entry = result.scalar_one_or_none()
        except Exception as e:
            raise PersistenceError(f"Database read of {key} failed: {e}") from e
        return entry.value if entry else None

    async def set(self, key: str, value: Any) -> None:
        try:
            async with self.session_factory() as db:
                # merge() issues INSERT or UPDATE depending on whether the key exists
                await db.merge(KeyValueEntry(key=key, value=value))
                await db.commit()
        except Exception as e:
            raise PersistenceError(f"Database write of {key} failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                await db.commit()
        except Exception as e:
            raise PersistenceError(f"Database delete of {key} failed: {e}") from e
        return result.rowcount > 0

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


class BoundedStore(KeyValueStore):
    """
    Wraps another store so no call waits longer than `timeout` seconds.

    A timeout is reported as PersistenceError like any other storage fault.
    """

    def __init__(self, inner: KeyValueStore, timeout: float):
        self.inner = inner
        self.timeout = timeout

    async def _bounded(self, op: str, key: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(f"{op} {key} timed out after {self.timeout}s") from e

    async def get(self, key: str) -> Optional[Any]:
        return await self._bounded("get", key, self.inner.get(key))

    async def set(self, key: str, value: Any) -> None:
        await self._bounded("set", key, self.inner.set(key, value))

    async def delete(self, key: str) -> bool:
        return await self._bounded("delete", key, self.inner.delete(key))

    async def close(self) -> None:
        await self.inner.close()


async def build_store(settings: Settings) -> KeyValueStore:
    """Create the configured backend, wrapped with the store timeout."""
    backend = settings.store_backend.lower()
    if backend == "redis":
        from backend.app.core.redis_client import create_redis_client
        inner = RedisKeyValueStore(create_redis_client(settings.redis_url))
    elif backend == "database":
        from backend.app.db.session import create_engine, create_session_factory, create_tables
        engine = create_engine(settings.database_url)
        await create_tables(engine)
        inner = DatabaseKeyValueStore(create_session_factory(engine), engine=engine)
    elif backend == "memory":
        inner = InMemoryKeyValueStore()
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")

    logger.info("Key-value store ready", extra={"backend": backend})
    return BoundedStore(inner, settings.store_timeout_seconds)
