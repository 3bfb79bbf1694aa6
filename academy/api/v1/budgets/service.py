import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.rbac import Resource, ensure_in_scope, resolve_target_branch, scope
from academy.auth.schemas import CurrentUser
from academy.core.budget_rollup import refresh_spent
from academy.core.enums import BudgetPeriod, BudgetStatus
from academy.core.exceptions import DuplicateKey, InvalidDateRange, InvalidReference
from academy.core.models import Branch, Budget
from academy.core.persistence import commit_or_conflict, get_or_404, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate

from .schemas import BudgetCreate, BudgetResponse, BudgetStatistics, BudgetUpdate

logger = logging.getLogger(__name__)

WINDOW_TAKEN = "Budget for this category already exists for the overlapping period"


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _ensure_date_range(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise InvalidDateRange("End date must be after start date")


async def _ensure_active_branch(db: AsyncSession, branch_id: UUID) -> None:
    branch = await db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise InvalidReference("Invalid or inactive branch")


async def _ensure_no_overlap(
    db: AsyncSession,
    branch_id: UUID,
    category: str,
    start_date: date,
    end_date: date,
    exclude_id: Optional[UUID] = None,
) -> None:
    """At most one active budget per (branch, category) covers any given day."""
    stmt = select(Budget.id).where(
        Budget.branch_id == branch_id,
        Budget.category == category,
        Budget.is_active.is_(True),
        Budget.start_date <= end_date,
        Budget.end_date >= start_date,
    )
    if exclude_id is not None:
        stmt = stmt.where(Budget.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise DuplicateKey(WINDOW_TAKEN)


async def _refreshed(db: AsyncSession, budget: Budget) -> BudgetResponse:
    """Recompute spent, persist it and build the response."""
    await refresh_spent(db, budget)
    await db.commit()
    await db.refresh(budget)
    return BudgetResponse.model_validate(budget)


async def list_budgets(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    category: Optional[str] = None,
    period: Optional[BudgetPeriod] = None,
    status: Optional[BudgetStatus] = None,
    search: Optional[str] = None,
    branch_id: Optional[UUID] = None,
) -> Page[BudgetResponse]:
    """Stored spent values; GET /{id} or refresh recompute them."""
    stmt = (
        select(Budget)
        .where(Budget.is_active.is_(True))
        .order_by(Budget.start_date.desc(), Budget.created_at.desc())
    )
    stmt = scope(identity, Resource.BUDGET, branch_id).apply(stmt, Budget.branch_id)
    if category:
        stmt = stmt.where(Budget.category.ilike(f"%{category.strip()}%"))
    if period is not None:
        stmt = stmt.where(Budget.period == period.value)
    if status is not None:
        stmt = stmt.where(Budget.status == status.value)
    if search:
        term = f"%{search.strip()}%"
        stmt = stmt.where(or_(Budget.category.ilike(term), Budget.description.ilike(term)))
    budgets, meta = await paginate(db, stmt, params)
    return Page[BudgetResponse](items=[BudgetResponse.model_validate(b) for b in budgets], pagination=meta)


async def budget_statistics(
    db: AsyncSession,
    identity: CurrentUser,
    branch_id: Optional[UUID] = None,
    period: Optional[BudgetPeriod] = None,
) -> BudgetStatistics:
    stmt = select(
        func.count(Budget.id),
        func.coalesce(func.sum(Budget.allocated), 0),
        func.coalesce(func.sum(Budget.spent), 0),
        func.coalesce(func.sum(case((Budget.status == BudgetStatus.ACTIVE.value, 1), else_=0)), 0),
        func.coalesce(func.sum(case((Budget.status == BudgetStatus.EXCEEDED.value, 1), else_=0)), 0),
    ).where(Budget.is_active.is_(True))
    stmt = scope(identity, Resource.BUDGET, branch_id).apply(stmt, Budget.branch_id)
    if period is not None:
        stmt = stmt.where(Budget.period == period.value)
    total, allocated, spent, active, exceeded = (await db.execute(stmt)).one()

    allocated, spent = float(allocated), float(spent)
    return BudgetStatistics(
        total_budgets=total,
        total_allocated=allocated,
        total_spent=spent,
        total_remaining=allocated - spent,
        active_budgets=int(active),
        exceeded_budgets=int(exceeded),
        overall_utilization=round(spent / allocated * 100) if allocated > 0 else 0,
    )


async def get_budget(db: AsyncSession, identity: CurrentUser, budget_id: UUID) -> BudgetResponse:
    budget = await get_or_404(db, Budget, budget_id, "Budget")
    ensure_in_scope(identity, budget.branch_id)
    return await _refreshed(db, budget)


async def refresh_budget(db: AsyncSession, identity: CurrentUser, budget_id: UUID) -> BudgetResponse:
    budget = await get_or_404(db, Budget, budget_id, "Budget")
    ensure_in_scope(identity, budget.branch_id)
    response = await _refreshed(db, budget)
    logger.info("Budget refreshed id=%s spent=%s status=%s", budget.id, response.spent, response.status.value)
    return response


async def create_budget(db: AsyncSession, identity: CurrentUser, payload: BudgetCreate) -> BudgetResponse:
    _ensure_date_range(payload.start_date, payload.end_date)
    branch_id = resolve_target_branch(identity, payload.branch_id)
    await _ensure_active_branch(db, branch_id)
    await _ensure_no_overlap(db, branch_id, payload.category, payload.start_date, payload.end_date)

    budget = Budget(
        category=payload.category,
        allocated=_money(payload.allocated),
        spent=Decimal("0.00"),
        currency=payload.currency.value,
        period=payload.period.value,
        start_date=payload.start_date,
        end_date=payload.end_date,
        description=payload.description,
        status=payload.status.value,
        branch_id=branch_id,
        created_by=identity.id,
    )
    db.add(budget)
    await commit_or_conflict(db, WINDOW_TAKEN)
    logger.info("Budget created id=%s category=%s branch_id=%s", budget.id, budget.category, branch_id)
    return await _refreshed(db, budget)


async def update_budget(
    db: AsyncSession, identity: CurrentUser, budget_id: UUID, payload: BudgetUpdate
) -> BudgetResponse:
    budget = await get_or_404(db, Budget, budget_id, "Budget")
    ensure_in_scope(identity, budget.branch_id)

    start_date = payload.start_date or budget.start_date
    end_date = payload.end_date or budget.end_date
    category = payload.category or budget.category
    _ensure_date_range(start_date, end_date)
    if (start_date, end_date, category) != (budget.start_date, budget.end_date, budget.category):
        await _ensure_no_overlap(db, budget.branch_id, category, start_date, end_date, exclude_id=budget.id)

    data = payload.model_dump(exclude_unset=True, exclude={"allocated"})
    for field, value in data.items():
        if value is None and field != "description":
            continue
        setattr(budget, field, value.value if hasattr(value, "value") else value)
    if payload.allocated is not None:
        budget.allocated = _money(payload.allocated)
    budget.updated_by = identity.id

    await commit_or_conflict(db, WINDOW_TAKEN)
    return await _refreshed(db, budget)


async def delete_budget(db: AsyncSession, identity: CurrentUser, budget_id: UUID) -> None:
    budget = await get_or_404(db, Budget, budget_id, "Budget")
    budget.updated_by = identity.id
    await soft_delete(db, budget, "Budget", identity.id)


async def restore_budget(db: AsyncSession, identity: CurrentUser, budget_id: UUID) -> BudgetResponse:
    budget = await get_or_404(db, Budget, budget_id, "Budget", include_inactive=True)

    async def _still_valid() -> None:
        await _ensure_active_branch(db, budget.branch_id)
        await _ensure_no_overlap(
            db, budget.branch_id, budget.category, budget.start_date, budget.end_date, exclude_id=budget.id
        )
        budget.updated_by = identity.id

    await restore(db, budget, "Budget", identity.id, before=_still_valid)
    return await _refreshed(db, budget)
