"""Users API router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import Role
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import Page, PageParams
from academy.db.session import get_db

from . import service
from .schemas import RoleUpdate, UserCreate, UserResponse, UserStats, UserUpdate

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get(
    "",
    response_model=Page[UserResponse],
    dependencies=[Depends(check_permission(Resource.USER, Action.LIST))],
)
async def list_users(
    params: PageParams = Depends(),
    role: Optional[Role] = Query(None),
    search: Optional[str] = Query(None),
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_users(db, current_user, params, role, search, branch_id, include_inactive)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/branch-users",
    response_model=List[UserResponse],
    dependencies=[Depends(check_permission(Resource.USER, Action.DIRECTORY))],
)
async def list_branch_users(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_branch_users(db, current_user)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/branch/{branch_id}/stats",
    response_model=UserStats,
    dependencies=[Depends(check_permission(Resource.USER, Action.STATS))],
)
async def branch_user_stats(
    branch_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.branch_user_stats(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(check_permission(Resource.USER, Action.READ))],
)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_user(db, current_user, user_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.USER, Action.CREATE))],
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """SuperAdmin: any role and branch. Admin: moderator/staff in own branch."""
    try:
        return await service.create_user(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(check_permission(Resource.USER, Action.UPDATE))],
)
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_user(db, current_user, user_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{user_id}/role",
    response_model=UserResponse,
    dependencies=[Depends(check_permission(Resource.USER, Action.ASSIGN_ROLE))],
)
async def assign_role(
    user_id: UUID,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Admin only: switch a branch user between moderator and staff."""
    try:
        return await service.assign_role(db, current_user, user_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.USER, Action.DELETE))],
)
async def delete_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_user(db, current_user, user_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{user_id}/restore",
    response_model=UserResponse,
    dependencies=[Depends(check_permission(Resource.USER, Action.RESTORE))],
)
async def restore_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_user(db, current_user, user_id)
    except ServiceError as e:
        raise http_error(e)
