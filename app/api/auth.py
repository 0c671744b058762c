"""Browser sign-in endpoints.

GET  /auth/login     start the handshake, 302 to the identity provider
GET  /auth/callback  finish it, 302 to the dashboard or the login page
POST /auth/logout    destroy the server-side session and clear the cookie

Login and callback never answer with an error body: every failure
becomes a redirect to ``{FRONTEND_URL}/login?error=<code>`` where the
code is one of two coarse values.  The cause is logged here only.
"""

from __future__ import annotations

import logging
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from app.api.dependencies import (
    clear_session_cookie,
    get_session_store,
    get_token_client,
    get_user_repo,
    read_session_id,
    set_session_cookie,
)
from app.api.schemas import CamelModel
from app.core.config import SETTINGS
from app.core.errors import AuthError, LoginFailed
from app.core.metrics import AUTH_HANDSHAKE
from app.repos.user_repo import UserRepo
from app.services import handshake, session_service
from app.services.oidc_client import TokenExchangeClient
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LogoutOut(CamelModel):
    success: bool
    redirect_to: str | None = None


def _failure_redirect(public_code: str) -> RedirectResponse:
    query = urlencode({"error": public_code})
    return RedirectResponse(f"{SETTINGS.frontend_url}/login?{query}", status_code=302)


@router.get("/login")
async def login(
    request: Request,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> RedirectResponse:
    try:
        session = await session_service.load_session(store, read_session_id(request))
        url, session = await handshake.initiate_login(store, session, SETTINGS.provider)
    except AuthError as e:
        if not isinstance(e, LoginFailed):
            AUTH_HANDSHAKE.labels(phase="login", outcome=e.reason).inc()
        logger.error("AUTH FLOW [login] failed  reason=%s", e.reason)
        return _failure_redirect(LoginFailed.public_code)

    response = RedirectResponse(url, status_code=302)
    set_session_cookie(response, session)
    return response


@router.get("/callback")
async def callback(
    request: Request,
    store: Annotated[SessionStore, Depends(get_session_store)],
    token_client: Annotated[TokenExchangeClient, Depends(get_token_client)],
    user_repo: Annotated[UserRepo, Depends(get_user_repo)],
    code: str | None = None,
    state: str | None = None,
) -> RedirectResponse:
    try:
        session = await session_service.load_session(store, read_session_id(request))
        _result, session = await handshake.complete_callback(
            store,
            session,
            code=code,
            state=state,
            token_client=token_client,
            user_repo=user_repo,
        )
    except AuthError as e:
        # complete_callback already logged and counted the reason
        return _failure_redirect(e.public_code)
    except Exception:
        AUTH_HANDSHAKE.labels(phase="callback", outcome="internal_error").inc()
        logger.exception("AUTH FLOW [callback] unexpected error")
        return _failure_redirect(AuthError.public_code)

    response = RedirectResponse(f"{SETTINGS.frontend_url}/dashboard", status_code=302)
    set_session_cookie(response, session)
    return response


@router.post("/logout", response_model=LogoutOut, response_model_exclude_none=True)
async def logout(
    request: Request,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> JSONResponse:
    """Destroy the session record, then clear the cookie.

    If the record cannot be destroyed the caller gets a 500: the session
    might still be usable, so success must not be reported.
    """
    session_id = read_session_id(request)
    if session_id is not None:
        try:
            await session_service.destroy_session(store, session_id)
        except AuthError:
            return JSONResponse(
                status_code=500,
                content=LogoutOut(success=False).model_dump(by_alias=True, exclude_none=True),
            )

    logger.info("User logged out")
    response = JSONResponse(
        content=LogoutOut(success=True, redirect_to="/login").model_dump(by_alias=True)
    )
    clear_session_cookie(response)
    return response
