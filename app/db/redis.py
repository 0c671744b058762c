"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a connection
pool; when it's None (local dev, tests) sessions live in the in-memory
store and no Redis server is needed.

Redis holds the server-side session records.  They are ephemeral by
nature (every key carries the session TTL) and must be shared by all API
instances so a callback can land on a different process than the login.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # session payloads are JSON text
        max_connections=20,
        socket_timeout=2.0,
    )
else:
    redis_pool = None


async def ping_redis() -> bool:
    if redis_pool is None:
        return False
    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
    except Exception:
        logger.warning("Redis ping failed", exc_info=True)
        return False
    return True


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirrors lifespan_db().

    Unlike a cache, the session store has no fallback once Redis is
    configured, so an unreachable Redis fails startup.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, sessions use the in-memory store")
        yield
        return

    if not await ping_redis():
        raise RuntimeError("Redis is configured but unreachable")
    logger.info("Redis connected")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
