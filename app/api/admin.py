from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_user_repo, require_role
from app.api.schemas import CamelModel, UserOut
from app.models.principal import SessionPrincipal
from app.models.user import ADMIN_ROLE
from app.repos.user_repo import UserRepo
from app.services import users_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["admin"])


class AdminResourceData(CamelModel):
    message: str
    features: list[str]


class AdminResourceOut(CamelModel):
    success: bool = True
    data: AdminResourceData


class UserListOut(CamelModel):
    success: bool = True
    users: list[UserOut]
    count: int


@router.get("/admin-only-resource", response_model=AdminResourceOut)
async def admin_only_resource(
    principal: Annotated[SessionPrincipal, Depends(require_role(ADMIN_ROLE))],
) -> AdminResourceOut:
    logger.info("Admin resource requested by user=%s", principal.local_id)
    return AdminResourceOut(
        data=AdminResourceData(
            message="Admin-only content",
            features=["User administration", "Audit overview", "Role management"],
        )
    )


@router.get("/users", response_model=UserListOut)
async def list_users(
    principal: Annotated[SessionPrincipal, Depends(require_role(ADMIN_ROLE))],
    repo: Annotated[UserRepo, Depends(get_user_repo)],
) -> UserListOut:
    logger.info("Admin user list requested by user=%s", principal.local_id)
    users = await users_service.list_active_users(repo)
    return UserListOut(users=[UserOut.from_user(u) for u in users], count=len(users))
