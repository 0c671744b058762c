"""Health and readiness endpoints.

  /health (liveness):  "is this process alive?"  Always 200 while the
                       process can answer; ``status`` says whether a
                       dependency is impaired.
  /ready (readiness):  "can this instance take traffic?"  503 while a
                       configured dependency is unreachable, so the load
                       balancer stops routing here without a restart.

Unconfigured dependencies (in-memory fallbacks in dev/test) report
``not_configured`` and never fail readiness.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Response

from app.core.config import SETTINGS
from app.db.engine import engine, ping_database
from app.db.redis import ping_redis, redis_pool

router = APIRouter(tags=["health"])


async def _dependency_checks() -> dict[str, str]:
    checks: dict[str, str] = {}

    if engine is None:
        checks["database"] = "not_configured"
    else:
        checks["database"] = "ok" if await ping_database() else "degraded"

    if redis_pool is None:
        checks["redis"] = "not_configured"
    else:
        checks["redis"] = "ok" if await ping_redis() else "degraded"

    return checks


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status.

    Returns 200 even when degraded; a 503 here would get the container
    restarted for what may be a transient outage elsewhere.
    """
    checks = await _dependency_checks()
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {
        "status": overall,
        "checks": checks,
        "environment": SETTINGS.app_env,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/ready")
async def ready() -> Response:
    checks = await _dependency_checks()
    if "degraded" in checks.values():
        return Response(status_code=503)
    return Response(status_code=200)
