"""
Persistence substrate — async key-value store with prefix iteration.

The alert engine needs only four primitives from its storage:

    get(key)            → dict | None
    set(key, value)     → None
    delete(key)         → bool (True if something was removed)
    iterate(prefix)     → async iterator of (key, value)

Two implementations ship:

    InMemoryKeyValueStore   — process-local dict (default, tests)
    RedisKeyValueStore      — redis.asyncio, JSON values, namespaced keys

Values are plain JSON-safe dicts; records serialise themselves via
``to_dict()`` before they reach this layer.

Usage:
    from backend.app.core.storage import create_store

    store = create_store()
    await store.set("report:42", report.to_dict())
    async for key, value in store.iterate("report:"):
        ...
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal async key-value interface the engine is defined against."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def iterate(self, prefix: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Values are copied in and out via JSON round-trip."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = json.dumps(value, default=str)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def iterate(self, prefix: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        # Snapshot so callers may delete while iterating
        for key, raw in list(self._data.items()):
            if key.startswith(prefix):
                yield key, json.loads(raw)

    def __len__(self) -> int:
        return len(self._data)


# ═══════════════════════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════════════════════

class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store using ``redis.asyncio``.

    Every key is stored as ``<namespace>:<key>`` so several deployments can
    share one Redis database. Unlike a cache, failures are not swallowed:
    an append that cannot be persisted must fail loudly.
    """

    def __init__(self, url: str, namespace: str = "geoalert", client: Any = None):
        self._url = url
        self._namespace = namespace
        self._client = client

    def _get_client(self):
        """Get or create the async Redis client (lazy)."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connected: %s", self._url.split("@")[-1])
        return self._client

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _strip(self, full_key: str) -> str:
        return full_key[len(self._namespace) + 1:]

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self._get_client().get(self._full_key(key))
        except Exception as e:
            raise StorageError("get", key, str(e)) from e
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        try:
            await self._get_client().set(
                self._full_key(key), json.dumps(value, default=str),
            )
        except Exception as e:
            raise StorageError("set", key, str(e)) from e

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._get_client().delete(self._full_key(key))
        except Exception as e:
            raise StorageError("delete", key, str(e)) from e
        return bool(removed)

    async def iterate(self, prefix: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        client = self._get_client()
        try:
            keys = [k async for k in client.scan_iter(match=f"{self._full_key(prefix)}*")]
            for full_key in keys:
                raw = await client.get(full_key)
                if raw is None:
                    continue  # deleted between SCAN and GET
                yield self._strip(full_key), json.loads(raw)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError("iterate", f"{prefix}*", str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("Redis connection closed")


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def create_store(config: Optional[Settings] = None) -> KeyValueStore:
    """Build the substrate selected by ``STORAGE_BACKEND``."""
    config = config or default_settings
    backend = config.STORAGE_BACKEND.lower()

    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "redis":
        return RedisKeyValueStore(config.REDIS_URL, namespace=config.STORAGE_NAMESPACE)

    raise ValidationError(
        f"Unknown storage backend '{config.STORAGE_BACKEND}'",
        field="STORAGE_BACKEND",
    )
