"""Response bodies shared by the routers.

The browser application expects camelCase keys; models are populated by
their snake_case field names and serialized through the alias.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.models.user import UserRecord


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorOut(CamelModel):
    success: bool = False
    error: str
    redirect_to: str | None = None


class UserOut(CamelModel):
    """Safe projection of a user record.  No claims snapshot, no external id."""

    id: int
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    is_active: bool
    email_verified: bool
    last_login: datetime | None
    created_at: datetime

    @staticmethod
    def from_user(user: UserRecord) -> UserOut:
        return UserOut(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
            email_verified=user.email_verified,
            last_login=user.last_login_at,
            created_at=user.created_at,
        )
