"""Pluggable client-side key/value storage backends.

Provides the StorageBackend ABC and concrete implementations for
in-memory and Redis-backed persistence. Backends report mutations made
by *other* contexts through ``changes()``; mutations made through the
same backend instance are announced by the TokenStore facade itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
import uuid

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..types import StorageChange


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from redis.asyncio import Redis


try:
    from redis.asyncio import Redis as RedisClient

    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False
    RedisClient = None  # type: ignore[assignment,misc]


logger = logging.getLogger("xbridge.auth")


def _check_redis() -> None:
    """Check if redis package is available."""
    if not HAS_REDIS:
        msg = "Redis backend requires the 'redis' package. Install with: pip install xbridge[redis]"
        raise ImportError(msg)


class StorageBackend(ABC):
    """Abstract base class for client key/value storage.

    All methods are async to support both local and network-backed stores.
    Each instance represents one execution context (one "tab").
    """

    def __init__(self) -> None:
        self.context_id = uuid.uuid4().hex

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> str | None:
        """Store ``value`` under ``key``.

        Returns
        -------
        str or None
            The previous value.
        """

    @abstractmethod
    async def remove(self, key: str) -> str | None:
        """Remove ``key``.

        Returns
        -------
        str or None
            The removed value, or None if the key was absent.
        """

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""

    @abstractmethod
    def changes(self) -> AsyncIterator[StorageChange]:
        """Iterate over mutations made by other contexts sharing this storage."""

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by the backend."""


class StorageArea:
    """Shared in-memory key/value area.

    Several MemoryStorage instances attached to one area behave like
    several browser tabs over one origin's storage.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self._queues: list[asyncio.Queue[StorageChange]] = []

    def attach(self) -> asyncio.Queue[StorageChange]:
        q: asyncio.Queue[StorageChange] = asyncio.Queue(maxsize=1000)
        self._queues.append(q)
        return q

    def detach(self, q: asyncio.Queue[StorageChange]) -> None:
        with contextlib.suppress(ValueError):
            self._queues.remove(q)

    def broadcast(self, change: StorageChange) -> None:
        for q in self._queues:
            with contextlib.suppress(asyncio.QueueFull):
                q.put_nowait(change)


class MemoryStorage(StorageBackend):
    """In-memory storage for development, tests and single-process use.

    Parameters
    ----------
    area : StorageArea, optional
        Area to share with other MemoryStorage instances. A private
        area is created when omitted.
    """

    def __init__(self, area: StorageArea | None = None) -> None:
        """Initialize the memory storage."""
        super().__init__()
        self.area = area or StorageArea()

    async def get(self, key: str) -> str | None:
        """Read a value from memory."""
        return self.area.data.get(key)

    async def set(self, key: str, value: str) -> str | None:
        """Write a value to memory and announce it to other contexts."""
        old = self.area.data.get(key)
        self.area.data[key] = value
        self.area.broadcast(StorageChange(key, old, value, source_id=self.context_id))
        return old

    async def remove(self, key: str) -> str | None:
        """Remove a value from memory and announce it to other contexts."""
        if key not in self.area.data:
            return None
        old = self.area.data.pop(key)
        self.area.broadcast(StorageChange(key, old, None, source_id=self.context_id))
        return old

    async def keys(self) -> list[str]:
        """List all keys in memory."""
        return list(self.area.data.keys())

    async def changes(self) -> AsyncIterator[StorageChange]:
        """Yield changes made by other MemoryStorage instances on the same area."""
        q = self.area.attach()
        try:
            while True:
                change = await q.get()
                if change.source_id == self.context_id:
                    continue
                yield StorageChange(
                    key=change.key,
                    old_value=change.old_value,
                    new_value=change.new_value,
                    external=True,
                    source_id=change.source_id,
                    timestamp=change.timestamp,
                )
        finally:
            self.area.detach(q)


class RedisStorage(StorageBackend):
    """Redis-backed storage shared by several processes or hosts.

    Values live in plain string keys; mutations are announced on a
    Pub/Sub channel so that other contexts can react to them.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "xbridge").
    namespace : str
        Per-user storage namespace, the analogue of an origin (default "default").
    redis_client : Redis, optional
        Pre-configured Redis client (for testing with fakeredis).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "xbridge",
        namespace: str = "default",
        *,
        redis_client: Redis | None = None,
    ) -> None:
        """Initialize the Redis storage."""
        super().__init__()
        if redis_client is None:
            _check_redis()
        self._redis_url = redis_url
        self._prefix = f"{prefix}:storage:{namespace}"
        self._client: Any = redis_client
        self._owns_client = redis_client is None

    def _key(self, key: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:{key}"

    @property
    def channel(self) -> str:
        """Pub/Sub channel carrying change notifications."""
        return f"{self._prefix}:__changes__"

    async def _redis(self) -> Any:
        """Get the Redis client, creating it on first use."""
        if self._client is None:
            self._client = RedisClient.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def _publish(self, key: str, old: str | None, new: str | None) -> None:
        r = await self._redis()
        payload = {
            "key": key,
            "old_value": old,
            "new_value": new,
            "source_id": self.context_id,
        }
        await r.publish(self.channel, json.dumps(payload))

    async def get(self, key: str) -> str | None:
        """Read a value from Redis."""
        r = await self._redis()
        return await r.get(self._key(key))  # type: ignore[no-any-return]

    async def set(self, key: str, value: str) -> str | None:
        """Write a value to Redis and publish the change."""
        r = await self._redis()
        old = await r.get(self._key(key))
        await r.set(self._key(key), value)
        await self._publish(key, old, value)
        return old  # type: ignore[no-any-return]

    async def remove(self, key: str) -> str | None:
        """Delete a value from Redis and publish the change."""
        r = await self._redis()
        old = await r.get(self._key(key))
        if old is None:
            return None
        await r.delete(self._key(key))
        await self._publish(key, old, None)
        return old  # type: ignore[no-any-return]

    async def keys(self) -> list[str]:
        """List all keys in this namespace."""
        r = await self._redis()
        prefix_len = len(self._prefix) + 1
        return [key[prefix_len:] async for key in r.scan_iter(match=f"{self._prefix}:*")]

    async def changes(self) -> AsyncIterator[StorageChange]:
        """Yield changes published by other contexts."""
        r = await self._redis()
        pubsub = r.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    data = json.loads(message["data"])
                except json.JSONDecodeError:
                    continue
                if data.get("source_id") == self.context_id:
                    continue
                yield StorageChange(
                    key=data.get("key", ""),
                    old_value=data.get("old_value"),
                    new_value=data.get("new_value"),
                    external=True,
                    source_id=data.get("source_id", ""),
                )
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def close(self) -> None:
        """Close the Redis client if this storage created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


_storage_instance: StorageBackend | None = None
_storage_lock = threading.Lock()


def get_storage(backend: str = "memory", **kwargs: Any) -> StorageBackend:
    """Factory function for storage backends.

    Returns a singleton instance. Call ``reset_storage()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "redis".
    **kwargs : Any
        Additional keyword arguments passed to the backend constructor.

    Returns
    -------
    StorageBackend
        A configured storage backend.
    """
    global _storage_instance  # noqa: PLW0603

    with _storage_lock:
        if _storage_instance is not None:
            return _storage_instance

        if backend == "memory":
            _storage_instance = MemoryStorage(area=kwargs.get("area"))
        elif backend == "redis":
            _storage_instance = RedisStorage(
                redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
                prefix=kwargs.get("prefix", "xbridge"),
                namespace=kwargs.get("namespace", "default"),
            )
        else:
            msg = f"Unknown storage backend: {backend}"
            raise ValueError(msg)

        logger.debug("Created %s storage backend", backend)
        return _storage_instance


def reset_storage() -> None:
    """Reset the singleton storage instance.

    Useful for tests that need a fresh storage between runs.
    """
    global _storage_instance  # noqa: PLW0603

    with _storage_lock:
        _storage_instance = None
