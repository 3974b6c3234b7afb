"""
Credential Store
================

Key/value persistence for client registrations, downstream grants, codes,
token hashes and consumed-once markers. Values are JSON-serialisable dicts.

Backends:
- ``InMemoryCredentialStore``: single-process, the default
- ``RedisCredentialStore``: shared across workers (``redis.asyncio``)

Select with ``CREDENTIAL_STORE_BACKEND=memory|redis``. Redis connection
settings are read from ``REDIS_HOST``, ``REDIS_PORT``, ``REDIS_PASSWORD``,
``REDIS_SSL`` and ``REDIS_DB`` at call time.

``put(..., only_if_absent=True)`` is the atomic put-if-absent used for
single-use markers: exactly one concurrent caller gets ``True``.
"""

from __future__ import annotations

import asyncio
import heapq
import json
import logging
import os
import time
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

KEY_PREFIX = "ytmcp:"


@runtime_checkable
class CredentialStore(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryCredentialStore:
    """
    Dict-backed store with per-key expiry. Safe within one event loop.

    Expired entries are dropped when read and, for keys that are never read
    again, by a purge of the expiry heap on every ``put``.
    """

    def __init__(self) -> None:
        self._data: dict[str, tuple[dict[str, Any], float | None]] = {}
        # (expires_at, key); stale pairs are skipped when the key was rewritten
        self._expiry_heap: list[tuple[float, str]] = []
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: float) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and now >= expires_at:
            del self._data[key]
            return None
        return value

    def _purge_expired(self, now: float) -> None:
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry_heap)
            entry = self._data.get(key)
            if entry is not None and entry[1] == expires_at:
                del self._data[key]

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            value = self._live(key, time.time())
            return dict(value) if value is not None else None

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        async with self._lock:
            now = time.time()
            self._purge_expired(now)
            if only_if_absent and self._live(key, now) is not None:
                return False
            expires_at = now + ttl_seconds if ttl_seconds is not None else None
            self._data[key] = (dict(value), expires_at)
            if expires_at is not None:
                heapq.heappush(self._expiry_heap, (expires_at, key))
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()
        self._expiry_heap.clear()

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> list[str]:
        """Snapshot of stored keys (expired entries included). For tests."""
        return list(self._data)


def _redis_settings() -> dict[str, Any]:
    """Read Redis connection settings from environment variables."""
    return {
        "host": os.getenv("REDIS_HOST", "localhost"),
        "port": int(os.getenv("REDIS_PORT", "6379")),
        "password": os.getenv("REDIS_PASSWORD") or None,
        "ssl": os.getenv("REDIS_SSL", "false").lower() in ("true", "1", "yes"),
        "db": int(os.getenv("REDIS_DB", "0")),
    }


def create_async_redis_client(**overrides: Any) -> Any:
    """Create a ``redis.asyncio.Redis`` client (not yet connected) from env vars."""
    import redis.asyncio as aioredis

    kwargs = {
        **_redis_settings(),
        "decode_responses": True,
        "socket_connect_timeout": 2.0,
        "socket_timeout": 2.0,
        **overrides,
    }
    return aioredis.Redis(**kwargs)


class RedisCredentialStore:
    """
    Redis-backed store.

    Values are stored as JSON strings under ``ytmcp:<key>``. Expiry uses Redis
    TTLs; put-if-absent maps to ``SET NX``.
    """

    def __init__(self, client: Any, prefix: str = KEY_PREFIX) -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable credential store entry {key!r}")
            return None

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        ex = max(1, int(ttl_seconds)) if ttl_seconds is not None else None
        result = await self._client.set(
            self._key(key),
            json.dumps(value, separators=(",", ":")),
            ex=ex,
            nx=only_if_absent,
        )
        return bool(result)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.warning(f"Redis credential store ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


# =============================================================================
# Singleton
# =============================================================================

_store: CredentialStore | None = None


def create_credential_store(backend: str | None = None) -> CredentialStore:
    """Build a store for ``backend`` (default: ``CREDENTIAL_STORE_BACKEND``)."""
    backend = (
        (backend or os.getenv("CREDENTIAL_STORE_BACKEND", "memory")).strip().lower()
    )
    if backend == "redis":
        settings = _redis_settings()
        logger.info(
            f"Using Redis credential store at {settings['host']}:{settings['port']}"
            f"/{settings['db']}"
        )
        return RedisCredentialStore(create_async_redis_client())
    if backend != "memory":
        raise ValueError(f"Unknown CREDENTIAL_STORE_BACKEND: {backend!r}")
    logger.info("Using in-memory credential store")
    return InMemoryCredentialStore()


def get_credential_store() -> CredentialStore:
    """Get the process-wide credential store, creating it on first use."""
    global _store
    if _store is None:
        _store = create_credential_store()
    return _store


def set_credential_store(store: CredentialStore | None) -> None:
    global _store
    _store = store


def reset_credential_store() -> None:
    """Reset the store singleton. For testing only."""
    global _store
    _store = None
