"""
Budget spent rollup.

`spent` is recomputed on demand from completed expense transactions of the same
branch and category dated inside the budget window. Nothing pushes updates
into it, so readers that need a fresh value call refresh_spent first.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.enums import BudgetStatus, TransactionStatus, TransactionType
from academy.core.models import Budget, Transaction

logger = logging.getLogger(__name__)


async def compute_spent(db: AsyncSession, budget: Budget) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.branch_id == budget.branch_id,
            Transaction.category == budget.category,
            Transaction.type == TransactionType.EXPENSE.value,
            Transaction.status == TransactionStatus.COMPLETED.value,
            Transaction.date >= budget.start_date,
            Transaction.date <= budget.end_date,
            Transaction.is_active.is_(True),
        )
    )
    return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))


def derive_status(spent: Decimal, allocated: Decimal, end_date: date, today: Optional[date] = None) -> BudgetStatus:
    today = today or date.today()
    if spent >= allocated:
        return BudgetStatus.EXCEEDED
    if today > end_date:
        return BudgetStatus.COMPLETED
    return BudgetStatus.ACTIVE


async def refresh_spent(db: AsyncSession, budget: Budget, today: Optional[date] = None) -> None:
    """Recompute spent and status in place. The caller commits."""
    spent = await compute_spent(db, budget)
    status = derive_status(spent, Decimal(str(budget.allocated)), budget.end_date, today)
    if status.value != budget.status:
        logger.info("Budget id=%s status %s -> %s (spent=%s)", budget.id, budget.status, status.value, spent)
    budget.spent = spent
    budget.status = status.value
