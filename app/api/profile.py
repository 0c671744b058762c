"""Endpoints for the signed-in user.

GET /api/profile    own profile, read from the user record
PUT /api/profile    edit first name, last name or email
GET /api/dashboard  landing data for the browser application
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import (
    get_session,
    get_session_store,
    get_user_repo,
    require_authenticated,
)
from app.api.schemas import CamelModel, UserOut
from app.models.principal import SessionPrincipal
from app.repos.user_repo import UserRepo
from app.services import session_service, users_service
from app.services.session_service import Session
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["profile"])

DASHBOARD_FEATURES = (
    "Single sign-on with your organization account",
    "Server-side session management",
    "Role-based access",
)


class ProfileOut(CamelModel):
    success: bool = True
    message: str | None = None
    user: UserOut


class UpdateProfileIn(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class DashboardUser(CamelModel):
    id: int
    name: str
    email: str
    role: str


class DashboardData(CamelModel):
    welcome_message: str
    user: DashboardUser
    features: list[str]


class DashboardOut(CamelModel):
    success: bool = True
    data: DashboardData


@router.get("/profile", response_model=ProfileOut, response_model_exclude_none=True)
async def get_profile(
    principal: Annotated[SessionPrincipal, Depends(require_authenticated)],
    repo: Annotated[UserRepo, Depends(get_user_repo)],
) -> ProfileOut:
    user = await users_service.get_user(repo, principal.local_id)
    return ProfileOut(user=UserOut.from_user(user))


@router.put("/profile", response_model=ProfileOut, response_model_exclude_none=True)
async def update_profile(
    body: UpdateProfileIn,
    principal: Annotated[SessionPrincipal, Depends(require_authenticated)],
    session: Annotated[Session, Depends(get_session)],
    store: Annotated[SessionStore, Depends(get_session_store)],
    repo: Annotated[UserRepo, Depends(get_user_repo)],
) -> ProfileOut:
    changes = users_service.validate_profile_changes(
        principal.local_id,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
    )
    current = await users_service.get_user(repo, principal.local_id)

    # Session copy first: if the store is down the record stays untouched
    # and the two still agree.
    session = await session_service.refresh_principal(
        store, session, changes.apply_to(current)
    )
    try:
        user = await users_service.save_profile_changes(repo, principal.local_id, changes)
    except Exception:
        await session_service.refresh_principal(store, session, current)
        raise
    return ProfileOut(message="Profile updated successfully", user=UserOut.from_user(user))


@router.get("/dashboard", response_model=DashboardOut)
async def dashboard(
    principal: Annotated[SessionPrincipal, Depends(require_authenticated)],
) -> DashboardOut:
    name = " ".join(p for p in (principal.first_name, principal.last_name) if p)
    return DashboardOut(
        data=DashboardData(
            welcome_message=f"Welcome back, {principal.first_name or principal.email}!",
            user=DashboardUser(
                id=principal.local_id,
                name=name or principal.email,
                email=principal.email,
                role=principal.role,
            ),
            features=list(DASHBOARD_FEATURES),
        )
    )
