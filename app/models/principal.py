from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.models.user import UserRecord


@dataclass(frozen=True, slots=True)
class SessionPrincipal:
    """Denormalized projection of a UserRecord, stored in the session.

    Refreshed whenever the underlying record is edited through the API so
    the two do not drift.  Role checks re-read the record; this copy is
    for display and identity only.
    """

    local_id: int
    external_subject_id: str
    email: str
    first_name: str | None
    last_name: str | None
    role: str

    @staticmethod
    def from_user(user: UserRecord) -> SessionPrincipal:
        return SessionPrincipal(
            local_id=user.id,
            external_subject_id=user.external_subject_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "external_subject_id": self.external_subject_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
        }

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> SessionPrincipal:
        return SessionPrincipal(
            local_id=int(raw["local_id"]),
            external_subject_id=str(raw["external_subject_id"]),
            email=str(raw["email"]),
            first_name=raw.get("first_name"),
            last_name=raw.get("last_name"),
            role=str(raw["role"]),
        )
