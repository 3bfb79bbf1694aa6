"""Transactions API router (superAdmin and branch admins)."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import TransactionStatus, TransactionType
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import Page, PageParams
from academy.db.session import get_db

from . import service
from .schemas import TransactionCreate, TransactionResponse, TransactionStatistics, TransactionUpdate

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


@router.get(
    "",
    response_model=Page[TransactionResponse],
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.LIST))],
)
async def list_transactions(
    params: PageParams = Depends(),
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    category: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None),
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_transactions(
            db,
            current_user,
            params,
            branch_id,
            type=transaction_type,
            status=transaction_status,
            category=category,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/statistics",
    response_model=TransactionStatistics,
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.STATS))],
)
async def transaction_statistics(
    branch_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.transaction_statistics(db, current_user, branch_id, date_from, date_to)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.READ))],
)
async def get_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_transaction(db, current_user, transaction_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.CREATE))],
)
async def create_transaction(
    payload: TransactionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Record income or expense. Without a reference, the next {IN|EX}-YYYYMM-NNNN is issued."""
    try:
        return await service.create_transaction(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{transaction_id}",
    response_model=TransactionResponse,
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.UPDATE))],
)
async def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_transaction(db, current_user, transaction_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.DELETE))],
)
async def delete_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_transaction(db, current_user, transaction_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{transaction_id}/restore",
    response_model=TransactionResponse,
    dependencies=[Depends(check_permission(Resource.TRANSACTION, Action.RESTORE))],
)
async def restore_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_transaction(db, current_user, transaction_id)
    except ServiceError as e:
        raise http_error(e)
