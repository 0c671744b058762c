"""Error taxonomy for the sign-in handshake and the authorization gate.

Handshake errors are caught at the route boundary and turned into a
redirect carrying only ``public_code``.  ``reason`` is the short slug used
in server-side logs and the ``auth_handshake_total`` metric; neither ever
includes request data.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Required settings are missing or malformed.  Raised at startup only."""


class AuthError(Exception):
    reason = "auth_error"
    public_code = "auth_failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason)


# --- callback validation ---


class CsrfMismatch(AuthError):
    reason = "csrf_mismatch"


class MissingAuthorizationCode(AuthError):
    reason = "missing_code"


class MissingPkceVerifier(AuthError):
    reason = "missing_verifier"


# --- provider interaction ---


class TokenExchangeFailed(AuthError):
    reason = "token_exchange_failed"


class InvalidToken(AuthError):
    reason = "invalid_token"


# --- local state ---


class ReconciliationConflict(AuthError):
    reason = "reconciliation_conflict"


class SessionWriteFailed(AuthError):
    reason = "session_write_failed"


class SessionReadFailed(AuthError):
    reason = "session_read_failed"


class SessionDestroyFailed(AuthError):
    reason = "session_destroy_failed"


class LoginFailed(AuthError):
    """Login initiation could not complete.  Wraps the underlying cause."""

    reason = "login_failed"
    public_code = "login_failed"


# --- authorization gate ---


class Unauthenticated(AuthError):
    reason = "unauthenticated"


class Forbidden(AuthError):
    reason = "forbidden"

    def __init__(self, required_role: str) -> None:
        super().__init__(f"Role '{required_role}' required")
        self.required_role = required_role


class DuplicateExternalIdError(Exception):
    """The persistence layer refused a second user for one external subject id."""

    def __init__(self, external_subject_id: str) -> None:
        super().__init__("user with this external subject id already exists")
        self.external_subject_id = external_subject_id
