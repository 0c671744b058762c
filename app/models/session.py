from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.models.principal import SessionPrincipal


@dataclass(frozen=True, slots=True)
class PendingHandshake:
    """Secrets of an in-flight login, kept server-side between login and callback."""

    code_verifier: str
    csrf_state: str

    def to_dict(self) -> dict[str, str]:
        return {"code_verifier": self.code_verifier, "csrf_state": self.csrf_state}

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> PendingHandshake | None:
        # A half-written handshake is treated as absent.
        verifier = raw.get("code_verifier")
        state = raw.get("csrf_state")
        if not verifier or not state:
            return None
        return PendingHandshake(code_verifier=str(verifier), csrf_state=str(state))


@dataclass(frozen=True, slots=True)
class SessionData:
    """Everything stored under one session id.

    Immutable: every change produces a new value that is written to the
    store in a single operation, so readers never see a partial principal.
    """

    pending: PendingHandshake | None = None
    principal: SessionPrincipal | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    @property
    def is_empty(self) -> bool:
        return self.pending is None and self.principal is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending.to_dict() if self.pending else None,
            "principal": self.principal.to_dict() if self.principal else None,
            "is_authenticated": self.is_authenticated,
        }

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> SessionData:
        pending_raw = raw.get("pending")
        principal_raw = raw.get("principal")
        return SessionData(
            pending=PendingHandshake.from_dict(pending_raw) if pending_raw else None,
            principal=(
                SessionPrincipal.from_dict(principal_raw) if principal_raw else None
            ),
        )
