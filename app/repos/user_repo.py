from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol

from app.core.errors import DuplicateExternalIdError
from app.models.user import NewUser, UserRecord

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class UserRepo(Protocol):
    async def get_by_id(self, user_id: int) -> UserRecord | None: ...
    async def get_by_external_id(self, external_subject_id: str) -> UserRecord | None: ...
    async def create(self, new_user: NewUser) -> UserRecord: ...
    async def update_claims(self, user_id: int, claims: dict[str, Any]) -> None: ...
    async def update_last_login(self, user_id: int) -> None: ...
    async def update_profile(
        self,
        user_id: int,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
    ) -> UserRecord | None: ...
    async def set_active(self, user_id: int, is_active: bool) -> None: ...
    async def list_active(self) -> list[UserRecord]: ...


class InMemoryUserRepo:
    """Dict-backed UserRepo for local dev and tests.

    Enforces the same uniqueness rule as the users table: one record per
    external subject id.  ``clock`` is injectable so tests can assert on
    strictly increasing timestamps.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._by_id: dict[int, UserRecord] = {}
        self._id_by_external: dict[str, int] = {}
        self._ids = itertools.count(1)

    def clear(self) -> None:
        self._by_id.clear()
        self._id_by_external.clear()
        self._ids = itertools.count(1)

    async def get_by_id(self, user_id: int) -> UserRecord | None:
        return self._by_id.get(user_id)

    async def get_by_external_id(self, external_subject_id: str) -> UserRecord | None:
        user_id = self._id_by_external.get(external_subject_id)
        if user_id is None:
            return None
        return self._by_id.get(user_id)

    async def create(self, new_user: NewUser) -> UserRecord:
        if new_user.external_subject_id in self._id_by_external:
            raise DuplicateExternalIdError(new_user.external_subject_id)
        now = self._clock()
        user = UserRecord(
            id=next(self._ids),
            external_subject_id=new_user.external_subject_id,
            email=new_user.email,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            role=new_user.role,
            is_active=True,
            email_verified=new_user.email_verified,
            claims_snapshot=dict(new_user.claims_snapshot),
            created_at=now,
            updated_at=now,
            last_login_at=now,
        )
        self._by_id[user.id] = user
        self._id_by_external[user.external_subject_id] = user.id
        return user

    def _update(self, user_id: int, **changes: Any) -> UserRecord | None:
        user = self._by_id.get(user_id)
        if user is None:
            return None
        updated = replace(user, **changes)
        self._by_id[user_id] = updated
        return updated

    async def update_claims(self, user_id: int, claims: dict[str, Any]) -> None:
        self._update(user_id, claims_snapshot=dict(claims), updated_at=self._clock())

    async def update_last_login(self, user_id: int) -> None:
        self._update(user_id, last_login_at=self._clock())

    async def update_profile(
        self,
        user_id: int,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
    ) -> UserRecord | None:
        changes: dict[str, Any] = {"updated_at": self._clock()}
        if first_name is not None:
            changes["first_name"] = first_name
        if last_name is not None:
            changes["last_name"] = last_name
        if email is not None:
            changes["email"] = email
        return self._update(user_id, **changes)

    async def set_active(self, user_id: int, is_active: bool) -> None:
        if self._update(user_id, is_active=is_active, updated_at=self._clock()) is None:
            raise KeyError("user not found")

    async def list_active(self) -> list[UserRecord]:
        users = [u for u in self._by_id.values() if u.is_active]
        return sorted(users, key=lambda u: (u.created_at, u.id), reverse=True)
