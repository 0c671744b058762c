"""Login initiation and callback handling.

The two halves of the Authorization Code + PKCE handshake.  Both take the
session and every collaborator as explicit parameters; neither touches
HTTP.  Routes translate the raised AuthError into a redirect.

Callback order (each step a hard fail):

  1. state present and equal to the stored csrf state    -> CsrfMismatch
  2. code present                                        -> MissingAuthorizationCode
  3. stored verifier present                             -> MissingPkceVerifier
  4. token exchange                                      -> TokenExchangeFailed
  5. claims extraction                                   -> InvalidToken
  6. user reconciliation                                 -> ReconciliationConflict
  7. principal written under a fresh session id          -> SessionWriteFailed
  8. pending handshake cleared (only after 7 succeeded)  -> SessionWriteFailed
"""

from __future__ import annotations

import logging

from app.core.config import ProviderSettings
from app.core.errors import (
    AuthError,
    CsrfMismatch,
    LoginFailed,
    MissingAuthorizationCode,
    MissingPkceVerifier,
)
from app.core.metrics import AUTH_HANDSHAKE
from app.models.session import PendingHandshake
from app.repos.user_repo import UserRepo
from app.services import claims_service, session_service, users_service
from app.services.oidc_client import TokenExchangeClient, build_authorization_url
from app.services.pkce_service import (
    compute_code_challenge,
    generate_code_verifier,
    generate_csrf_state,
    states_match,
)
from app.services.session_service import Session
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)


async def initiate_login(
    store: SessionStore, session: Session, provider: ProviderSettings
) -> tuple[str, Session]:
    """Start a handshake: persist fresh secrets, return the provider URL.

    Any earlier pending handshake on this session is overwritten; only the
    most recent login attempt can complete.
    """
    pending = PendingHandshake(
        code_verifier=generate_code_verifier(),
        csrf_state=generate_csrf_state(),
    )
    try:
        session = await session_service.save_pending_handshake(store, session, pending)
    except AuthError as e:
        AUTH_HANDSHAKE.labels(phase="login", outcome=e.reason).inc()
        logger.error(
            "AUTH FLOW [login] could not store handshake  reason=%s",
            e.reason,
            extra={"phase": "login", "outcome": e.reason},
        )
        raise LoginFailed("could not store pending handshake") from e

    url = build_authorization_url(
        provider,
        csrf_state=pending.csrf_state,
        code_challenge=compute_code_challenge(pending.code_verifier),
    )
    AUTH_HANDSHAKE.labels(phase="login", outcome="redirected").inc()
    logger.info("AUTH FLOW [login] redirecting to identity provider")
    return url, session


async def complete_callback(
    store: SessionStore,
    session: Session,
    *,
    code: str | None,
    state: str | None,
    token_client: TokenExchangeClient,
    user_repo: UserRepo,
) -> tuple[users_service.ReconcileResult, Session]:
    """Finish a handshake and return the reconciled user plus the new session.

    On failure the session is left without a principal and the raised
    AuthError names the cause in ``reason``.
    """
    try:
        result, session = await _complete(
            store,
            session,
            code=code,
            state=state,
            token_client=token_client,
            user_repo=user_repo,
        )
    except AuthError as e:
        AUTH_HANDSHAKE.labels(phase="callback", outcome=e.reason).inc()
        logger.warning(
            "AUTH FLOW [callback] failed  reason=%s",
            e.reason,
            extra={"phase": "callback", "outcome": e.reason},
        )
        raise

    AUTH_HANDSHAKE.labels(phase="callback", outcome="success").inc()
    return result, session


async def _complete(
    store: SessionStore,
    session: Session,
    *,
    code: str | None,
    state: str | None,
    token_client: TokenExchangeClient,
    user_repo: UserRepo,
) -> tuple[users_service.ReconcileResult, Session]:
    pending = session.data.pending
    expected_state = pending.csrf_state if pending else None

    if not states_match(state, expected_state):
        raise CsrfMismatch("callback state missing or does not match")
    if not code:
        raise MissingAuthorizationCode("callback carries no authorization code")
    if pending is None or not pending.code_verifier:
        raise MissingPkceVerifier("no code verifier stored for this session")

    logger.info("AUTH FLOW [callback] state verified, exchanging authorization code")
    tokens = await token_client.exchange(code, pending.code_verifier)

    profile = claims_service.extract_profile(tokens.id_token)
    logger.info("AUTH FLOW [callback] claims extracted  sub=%s", profile.subject)

    result = await users_service.reconcile(user_repo, profile)

    session = await session_service.materialize(store, session, result.user)
    session = await session_service.clear_pending_handshake(store, session)
    logger.info(
        "AUTH FLOW [callback] session established  user_id=%s new_user=%s",
        result.user.id,
        result.is_new_user,
        extra={"phase": "callback", "outcome": "success", "user_id": result.user.id},
    )
    return result, session
