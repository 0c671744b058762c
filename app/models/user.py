from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DEFAULT_ROLE = "user"
ADMIN_ROLE = "admin"


@dataclass(frozen=True, slots=True)
class UserRecord:
    """A local user, joined to the provider identity by external_subject_id.

    Records are never deleted; deactivation flips is_active.
    """

    id: int
    external_subject_id: str
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    is_active: bool
    email_verified: bool
    claims_snapshot: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None


@dataclass(frozen=True, slots=True)
class NewUser:
    """Fields supplied by reconciliation when a subject is seen for the first time."""

    external_subject_id: str
    email: str
    first_name: str | None
    last_name: str | None
    claims_snapshot: dict[str, Any] = field(default_factory=dict)
    role: str = DEFAULT_ROLE
    # Provider-issued emails are accepted as verified.
    email_verified: bool = True
