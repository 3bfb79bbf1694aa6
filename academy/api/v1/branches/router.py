"""Branches API router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import BranchInfo, CurrentUser
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import Page, PageParams
from academy.db.session import get_db

from . import service
from .schemas import BranchCreate, BranchResponse, BranchUpdate

router = APIRouter(prefix="/api/v1/branches", tags=["branches"])


@router.get(
    "",
    response_model=Page[BranchResponse],
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.LIST))],
)
async def list_branches(
    params: PageParams = Depends(),
    search: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List branches. SuperAdmin: all; others: own branch only."""
    try:
        return await service.list_branches(db, current_user, params, search, include_inactive)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/active",
    response_model=List[BranchInfo],
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.LIST))],
)
async def list_active_branches(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_active_branches(db, current_user)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/{branch_id}",
    response_model=BranchResponse,
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.READ))],
)
async def get_branch(
    branch_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_branch(db, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=BranchResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.CREATE))],
)
async def create_branch(
    payload: BranchCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.create_branch(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{branch_id}",
    response_model=BranchResponse,
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.UPDATE))],
)
async def update_branch(
    branch_id: UUID,
    payload: BranchUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_branch(db, current_user, branch_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{branch_id}/toggle-status",
    response_model=BranchResponse,
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.UPDATE))],
)
async def toggle_branch_status(
    branch_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Activate or deactivate. Deactivation is blocked while the branch has active users."""
    try:
        return await service.toggle_branch_status(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{branch_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.DELETE))],
)
async def delete_branch(
    branch_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_branch(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{branch_id}/restore",
    response_model=BranchResponse,
    dependencies=[Depends(check_permission(Resource.BRANCH, Action.RESTORE))],
)
async def restore_branch(
    branch_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_branch(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)
