"""Server-side session storage.

The cookie carries only an opaque session id; everything else (pending
handshake, authenticated principal) lives here as a JSON document with a
TTL.  Each write replaces the whole document in one store operation, so a
concurrent reader sees either the old session or the new one, never a
mix.

Redis when REDIS_URL is set, otherwise a per-process dict.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import SETTINGS
from app.db.redis import redis_pool


class SessionStoreError(Exception):
    """The backing store could not complete an operation."""


@runtime_checkable
class SessionStore(Protocol):
    ttl_seconds: int

    async def read(self, session_id: str) -> dict[str, Any] | None:
        """Return the stored document, or None if absent or expired."""
        ...

    async def write(self, session_id: str, payload: dict[str, Any]) -> None:
        """Replace the document and reset its expiry."""
        ...

    async def destroy(self, session_id: str) -> None:
        """Remove the document.  Removing an absent id is not an error."""
        ...


class InMemorySessionStore:
    """Per-process store for tests and local dev.

    Limitation: not shared between processes, so a login on one worker and
    its callback on another would not find each other.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # session_id -> (expires_at, serialized document)
        self._store: dict[str, tuple[float, str]] = {}

    def clear(self) -> None:
        self._store.clear()

    async def read(self, session_id: str) -> dict[str, Any] | None:
        entry = self._store.get(session_id)
        if entry is None:
            return None
        expires_at, raw = entry
        # Mimic Redis TTL behavior: expired entries vanish on access
        if expires_at <= self._clock():
            del self._store[session_id]
            return None
        return json.loads(raw)

    async def write(self, session_id: str, payload: dict[str, Any]) -> None:
        self._store[session_id] = (
            self._clock() + self.ttl_seconds,
            json.dumps(payload, separators=(",", ":")),
        )

    async def destroy(self, session_id: str) -> None:
        self._store.pop(session_id, None)


class RedisSessionStore:
    """Redis-backed store shared by all API instances."""

    _PREFIX = "signin:sess:"

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int) -> None:  # type: ignore[type-arg]
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def read(self, session_id: str) -> dict[str, Any] | None:
        try:
            raw = await self._redis.get(f"{self._PREFIX}{session_id}")
        except RedisError as e:
            raise SessionStoreError(f"read failed: {type(e).__name__}") from e
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            # Corrupt documents are treated as absent; the next write replaces them.
            return None
        return payload if isinstance(payload, dict) else None

    async def write(self, session_id: str, payload: dict[str, Any]) -> None:
        # SET ... EX writes the value and its TTL atomically.
        try:
            await self._redis.set(
                f"{self._PREFIX}{session_id}",
                json.dumps(payload, separators=(",", ":")),
                ex=self.ttl_seconds,
            )
        except RedisError as e:
            raise SessionStoreError(f"write failed: {type(e).__name__}") from e

    async def destroy(self, session_id: str) -> None:
        try:
            await self._redis.delete(f"{self._PREFIX}{session_id}")
        except RedisError as e:
            raise SessionStoreError(f"destroy failed: {type(e).__name__}") from e


# ---------------------------------------------------------------------------
# Module-level singleton, conditional on Redis availability
# ---------------------------------------------------------------------------

if redis_pool is not None:
    session_store: SessionStore = RedisSessionStore(redis_pool, SETTINGS.session_ttl_seconds)
else:
    session_store = InMemorySessionStore(SETTINGS.session_ttl_seconds)
