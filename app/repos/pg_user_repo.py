"""PostgreSQL implementation of UserRepo."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DuplicateExternalIdError
from app.db.tables import UserRow
from app.models.user import NewUser, UserRecord


class PgUserRepo:
    """Satisfies the UserRepo Protocol using PostgreSQL via SQLAlchemy.

    Timestamps come from the database clock (``now()``) so every instance
    agrees on ordering.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: int) -> UserRecord | None:
        return await self._one(select(UserRow).where(UserRow.id == user_id))

    async def get_by_external_id(self, external_subject_id: str) -> UserRecord | None:
        return await self._one(
            select(UserRow).where(UserRow.external_subject_id == external_subject_id)
        )

    async def create(self, new_user: NewUser) -> UserRecord:
        row = UserRow(
            external_subject_id=new_user.external_subject_id,
            email=new_user.email,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            role=new_user.role,
            is_active=True,
            email_verified=new_user.email_verified,
            claims_snapshot=dict(new_user.claims_snapshot),
            last_login_at=func.now(),
        )
        # SAVEPOINT: a unique violation rolls back only this insert, leaving
        # the request transaction usable for the follow-up lookup.
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError:
            raise DuplicateExternalIdError(new_user.external_subject_id) from None
        await self._session.refresh(row)
        return _row_to_user(row)

    async def update_claims(self, user_id: int, claims: dict[str, Any]) -> None:
        stmt = (
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(claims_snapshot=dict(claims), updated_at=func.now())
        )
        await self._session.execute(stmt)

    async def update_last_login(self, user_id: int) -> None:
        stmt = (
            update(UserRow).where(UserRow.id == user_id).values(last_login_at=func.now())
        )
        await self._session.execute(stmt)

    async def update_profile(
        self,
        user_id: int,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
    ) -> UserRecord | None:
        values: dict[str, Any] = {"updated_at": func.now()}
        if first_name is not None:
            values["first_name"] = first_name
        if last_name is not None:
            values["last_name"] = last_name
        if email is not None:
            values["email"] = email
        stmt = update(UserRow).where(UserRow.id == user_id).values(**values)
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_by_id(user_id)

    async def set_active(self, user_id: int, is_active: bool) -> None:
        stmt = (
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(is_active=is_active, updated_at=func.now())
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("user not found")

    async def list_active(self) -> list[UserRecord]:
        stmt = (
            select(UserRow)
            .where(UserRow.is_active.is_(True))
            .order_by(UserRow.created_at.desc(), UserRow.id.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_user(row) for row in rows]

    async def _one(self, stmt) -> UserRecord | None:
        # populate_existing: bulk UPDATEs bypass the identity map, so without it
        # a select could hand back a stale cached row.
        stmt = stmt.execution_options(populate_existing=True)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_user(row)


def _row_to_user(row: UserRow) -> UserRecord:
    return UserRecord(
        id=row.id,
        external_subject_id=row.external_subject_id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        is_active=row.is_active,
        email_verified=row.email_verified,
        claims_snapshot=dict(row.claims_snapshot or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )
