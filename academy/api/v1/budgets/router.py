"""Budgets API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import BudgetPeriod, BudgetStatus
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import Page, PageParams
from academy.db.session import get_db

from . import service
from .schemas import BudgetCreate, BudgetResponse, BudgetStatistics, BudgetUpdate

router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])


@router.get(
    "",
    response_model=Page[BudgetResponse],
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.LIST))],
)
async def list_budgets(
    params: PageParams = Depends(),
    category: Optional[str] = Query(None),
    period: Optional[BudgetPeriod] = Query(None),
    budget_status: Optional[BudgetStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_budgets(db, current_user, params, category, period, budget_status, search, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/statistics",
    response_model=BudgetStatistics,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.STATS))],
)
async def budget_statistics(
    branch_id: Optional[UUID] = Query(None),
    period: Optional[BudgetPeriod] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.budget_statistics(db, current_user, branch_id, period)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/{budget_id}",
    response_model=BudgetResponse,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.READ))],
)
async def get_budget(
    budget_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Returns the budget with spent recomputed from its transactions."""
    try:
        return await service.get_budget(db, current_user, budget_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "/{budget_id}/refresh",
    response_model=BudgetResponse,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.REFRESH))],
)
async def refresh_budget(
    budget_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.refresh_budget(db, current_user, budget_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=BudgetResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.CREATE))],
)
async def create_budget(
    payload: BudgetCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.create_budget(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{budget_id}",
    response_model=BudgetResponse,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.UPDATE))],
)
async def update_budget(
    budget_id: UUID,
    payload: BudgetUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_budget(db, current_user, budget_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{budget_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.DELETE))],
)
async def delete_budget(
    budget_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_budget(db, current_user, budget_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{budget_id}/restore",
    response_model=BudgetResponse,
    dependencies=[Depends(check_permission(Resource.BUDGET, Action.RESTORE))],
)
async def restore_budget(
    budget_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_budget(db, current_user, budget_id)
    except ServiceError as e:
        raise http_error(e)
