from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request, Response

from app.core.config import SETTINGS
from app.core.errors import Forbidden, Unauthenticated
from app.db.engine import async_session_factory, session_scope
from app.models.principal import SessionPrincipal
from app.repos.pg_user_repo import PgUserRepo
from app.repos.user_repo import InMemoryUserRepo, UserRepo
from app.services import session_service
from app.services.oidc_client import TokenExchangeClient
from app.services.session_service import Session
from app.services.session_store import SessionStore, session_store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
# Module-level singletons, replaced through app.dependency_overrides in tests.

memory_user_repo = InMemoryUserRepo()

_token_client = TokenExchangeClient(
    SETTINGS.provider, timeout=SETTINGS.token_exchange_timeout
)


async def get_user_repo() -> AsyncGenerator[UserRepo, None]:
    """Request-scoped user repository.

    Postgres when DATABASE_URL is set (one transaction per request),
    otherwise the process-wide in-memory repository.
    """
    if async_session_factory is None:
        yield memory_user_repo
        return
    async with session_scope() as db:
        yield PgUserRepo(db)


def get_session_store() -> SessionStore:
    return session_store


def get_token_client() -> TokenExchangeClient:
    return _token_client


# ---------------------------------------------------------------------------
# Session cookie
# ---------------------------------------------------------------------------


def read_session_id(request: Request) -> str | None:
    return session_service.decode_session_cookie(
        request.cookies.get(SETTINGS.session_cookie_name),
        secret=SETTINGS.session_secret,
    )


def set_session_cookie(response: Response, session: Session) -> None:
    response.set_cookie(
        key=SETTINGS.session_cookie_name,
        value=session_service.encode_session_cookie(
            session.id,
            secret=SETTINGS.session_secret,
            ttl_seconds=SETTINGS.session_ttl_seconds,
        ),
        max_age=SETTINGS.session_ttl_seconds,
        httponly=True,
        secure=SETTINGS.is_prod,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=SETTINGS.session_cookie_name,
        path="/",
        httponly=True,
        secure=SETTINGS.is_prod,
        samesite="lax",
    )


async def get_session(
    request: Request,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> Session:
    """Load the caller's session.  Raises SessionReadFailed if the store is down."""
    return await session_service.load_session(store, read_session_id(request))


# ---------------------------------------------------------------------------
# Authorization gate
# ---------------------------------------------------------------------------


def require_authenticated(
    session: Annotated[Session, Depends(get_session)],
) -> SessionPrincipal:
    """The session's principal, or Unauthenticated (rendered as 401)."""
    principal = session.principal
    if principal is None:
        logger.debug("Unauthenticated request rejected")
        raise Unauthenticated("Authentication required")
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))

    The role is read from the user record on every request, not from the
    session copy, so a promotion, demotion or deactivation applies on the
    next request.
    """

    async def _guard(
        principal: Annotated[SessionPrincipal, Depends(require_authenticated)],
        repo: Annotated[UserRepo, Depends(get_user_repo)],
    ) -> SessionPrincipal:
        user = await repo.get_by_id(principal.local_id)
        if user is None or not user.is_active or user.role != role:
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.local_id,
                role,
            )
            raise Forbidden(role)
        return principal

    return _guard
