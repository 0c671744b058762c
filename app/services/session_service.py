"""Session lifecycle: cookie codec, load, and the write operations.

Every write replaces the whole SessionData document under the session id.
The cookie never carries session contents, only the id, signed (HS256)
so a forged or tampered cookie is dropped before the store is consulted.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

import jwt

from app.core.errors import (
    SessionDestroyFailed,
    SessionReadFailed,
    SessionWriteFailed,
)
from app.core.metrics import SESSION_STORE_ERRORS
from app.models.principal import SessionPrincipal
from app.models.session import PendingHandshake, SessionData
from app.models.user import UserRecord
from app.services.session_store import SessionStore, SessionStoreError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cookie codec
# ---------------------------------------------------------------------------

ALGORITHM = "HS256"
ISSUER = "signin-service"
SESSION_AUDIENCE = "signin-service-session"


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def encode_session_cookie(session_id: str, *, secret: str, ttl_seconds: int) -> str:
    now = datetime.now(UTC)
    payload = {
        "sid": session_id,
        "iss": ISSUER,
        "aud": SESSION_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_session_cookie(cookie: str | None, *, secret: str) -> str | None:
    """Return the session id from a cookie value, or None if it is unusable.

    Pins the algorithm, issuer and audience.  An expired, tampered or
    foreign cookie is simply "no session"; it is never an error.
    """
    if not cookie:
        return None
    try:
        payload = jwt.decode(
            cookie,
            secret,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            audience=SESSION_AUDIENCE,
            options={"require": ["sid", "exp", "iat"]},
        )
    except jwt.PyJWTError as e:
        logger.debug("Ignoring unusable session cookie: %s", type(e).__name__)
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) and sid else None


# ---------------------------------------------------------------------------
# Session handle
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Session:
    """A session id plus the data last read or written under it.

    ``is_new`` marks a session that has no cookie yet; the route layer
    sets one after the first successful write.
    """

    id: str
    data: SessionData
    is_new: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.data.is_authenticated

    @property
    def principal(self) -> SessionPrincipal | None:
        return self.data.principal


def new_session() -> Session:
    return Session(id=new_session_id(), data=SessionData(), is_new=True)


async def load_session(store: SessionStore, session_id: str | None) -> Session:
    """Read the session for ``session_id``; start a fresh one if there is none.

    Reads are idempotent, so a failed read is retried once before
    SessionReadFailed is raised.  An id whose document is gone (expired or
    destroyed by logout) yields a fresh, unauthenticated session under a
    new id.
    """
    if session_id is None:
        return new_session()

    raw = None
    for attempt in (1, 2):
        try:
            raw = await store.read(session_id)
            break
        except SessionStoreError as e:
            SESSION_STORE_ERRORS.labels(operation="read").inc()
            if attempt == 2:
                logger.error("Session read failed after retry: %s", e)
                raise SessionReadFailed("session store unavailable") from None
            logger.warning("Session read failed, retrying once: %s", e)

    if raw is None:
        return new_session()
    return Session(id=session_id, data=SessionData.from_dict(raw))


async def _write(store: SessionStore, session: Session, data: SessionData) -> Session:
    try:
        await store.write(session.id, data.to_dict())
    except SessionStoreError as e:
        SESSION_STORE_ERRORS.labels(operation="write").inc()
        logger.error("Session write failed: %s", e)
        raise SessionWriteFailed("session store unavailable") from None
    return replace(session, data=data)


async def save_pending_handshake(
    store: SessionStore, session: Session, pending: PendingHandshake
) -> Session:
    """Store the handshake secrets, replacing any earlier attempt's."""
    return await _write(store, session, replace(session.data, pending=pending))


async def materialize(store: SessionStore, session: Session, user: UserRecord) -> Session:
    """Write the principal projection of ``user`` under a fresh session id.

    The pre-login id is destroyed, so a cookie issued before sign-in never
    becomes an authenticated session.  The principal and the carried-over
    pending handshake land in one document write; clearing the handshake
    is a separate step that runs only after this succeeds.  If the old id
    cannot be destroyed the sign-in fails and the caller keeps the old,
    unauthenticated cookie.
    """
    principal = SessionPrincipal.from_user(user)
    rotated = Session(id=new_session_id(), data=replace(session.data, principal=principal))
    rotated = await _write(store, rotated, rotated.data)
    try:
        await store.destroy(session.id)
    except SessionStoreError as e:
        SESSION_STORE_ERRORS.labels(operation="destroy").inc()
        logger.error("Could not retire pre-login session: %s", e)
        raise SessionWriteFailed("session store unavailable") from None
    return rotated


async def clear_pending_handshake(store: SessionStore, session: Session) -> Session:
    return await _write(store, session, replace(session.data, pending=None))


async def refresh_principal(store: SessionStore, session: Session, user: UserRecord) -> Session:
    """Re-project ``user`` after a profile edit so the session copy does not drift.

    Keeps the session id.  The document is re-read right before the write
    so a handshake saved by a concurrent login on the same session is
    carried over rather than overwritten.  A session that was logged out
    meanwhile is left alone.
    """
    if session.principal is None:
        return session
    latest = await load_session(store, session.id)
    if latest.is_new or latest.principal is None:
        return session
    principal = SessionPrincipal.from_user(user)
    return await _write(store, latest, replace(latest.data, principal=principal))


async def destroy_session(store: SessionStore, session_id: str) -> None:
    try:
        await store.destroy(session_id)
    except SessionStoreError as e:
        SESSION_STORE_ERRORS.labels(operation="destroy").inc()
        logger.error("Session destroy failed: %s", e)
        raise SessionDestroyFailed("session store unavailable") from None
