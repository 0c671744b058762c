from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.admin import router as admin_router
from app.api.auth import router as auth_router
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.profile import router as profile_router
from app.api.schemas import ErrorOut
from app.core.config import SETTINGS
from app.core.errors import Forbidden, SessionReadFailed, SessionWriteFailed, Unauthenticated
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.services.users_service import UserNotFoundError, UserValidationError

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="signin-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) -> Metrics -> CORS -> route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)


# ---------------------------------------------------------------------------
# Gate and profile errors -> JSON.  Never a redirect: the browser app
# decides where to go from ``redirectTo``.
# ---------------------------------------------------------------------------


def _error(status_code: int, error: str, redirect_to: str | None = None) -> JSONResponse:
    body = ErrorOut(error=error, redirect_to=redirect_to)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(Unauthenticated)
async def _unauthenticated(_request: Request, _exc: Unauthenticated) -> JSONResponse:
    return _error(401, "Authentication required", redirect_to="/login")


@app.exception_handler(Forbidden)
async def _forbidden(_request: Request, exc: Forbidden) -> JSONResponse:
    return _error(403, str(exc))


@app.exception_handler(SessionReadFailed)
@app.exception_handler(SessionWriteFailed)
async def _session_unavailable(
    _request: Request, _exc: SessionReadFailed | SessionWriteFailed
) -> JSONResponse:
    return _error(503, "Session store unavailable")


@app.exception_handler(UserValidationError)
async def _invalid_profile(_request: Request, exc: UserValidationError) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(UserNotFoundError)
async def _user_not_found(_request: Request, _exc: UserNotFoundError) -> JSONResponse:
    return _error(404, "User not found")


app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(admin_router)

logger.info(
    "signin-service started  env=%s log_level=%s port=%d frontend=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.frontend_url,
)
