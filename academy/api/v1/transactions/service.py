import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.courses.service import resolve_course_for_branch
from academy.auth.rbac import Resource, ensure_in_scope, resolve_target_branch, scope
from academy.auth.schemas import CurrentUser
from academy.core.config import settings
from academy.core.enums import TransactionStatus, TransactionType
from academy.core.exceptions import DuplicateKey, InvalidReference
from academy.core.identifiers import generate_transaction_reference
from academy.core.models import Branch, Student, Transaction
from academy.core.persistence import commit_or_conflict, get_or_404, is_unique_violation_on, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate

from .schemas import TransactionCreate, TransactionResponse, TransactionStatistics, TransactionUpdate

logger = logging.getLogger(__name__)

REFERENCE_TAKEN = "Transaction reference already exists"


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


async def _ensure_active_branch(db: AsyncSession, branch_id: UUID) -> None:
    branch = await db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise InvalidReference("Invalid or inactive branch")


async def _ensure_student_in_branch(db: AsyncSession, student_id: UUID, branch_id: UUID) -> None:
    student = await db.get(Student, student_id)
    if student is None or not student.is_active or student.branch_id != branch_id:
        raise InvalidReference("Invalid student or student does not belong to this branch")


async def _ensure_course_offered(db: AsyncSession, course_id: UUID, branch_id: UUID) -> None:
    try:
        await resolve_course_for_branch(db, course_id, branch_id)
    except InvalidReference as e:
        raise InvalidReference("Invalid course or course not available for this branch") from e


async def _reload(db: AsyncSession, transaction: Transaction) -> TransactionResponse:
    await db.refresh(transaction)
    return TransactionResponse.model_validate(transaction)


def _filtered(
    stmt,
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    category: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
):
    if type is not None:
        stmt = stmt.where(Transaction.type == type.value)
    if status is not None:
        stmt = stmt.where(Transaction.status == status.value)
    if category:
        stmt = stmt.where(Transaction.category.ilike(f"%{category.strip()}%"))
    if date_from is not None:
        stmt = stmt.where(Transaction.date >= date_from)
    if date_to is not None:
        stmt = stmt.where(Transaction.date <= date_to)
    if search:
        term = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Transaction.description.ilike(term),
                Transaction.category.ilike(term),
                Transaction.reference.ilike(term),
            )
        )
    return stmt


async def list_transactions(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    branch_id: Optional[UUID] = None,
    **filters,
) -> Page[TransactionResponse]:
    stmt = (
        select(Transaction)
        .where(Transaction.is_active.is_(True))
        .order_by(Transaction.date.desc(), Transaction.created_at.desc())
    )
    stmt = scope(identity, Resource.TRANSACTION, branch_id).apply(stmt, Transaction.branch_id)
    stmt = _filtered(stmt, **filters)
    transactions, meta = await paginate(db, stmt, params)
    return Page[TransactionResponse](
        items=[TransactionResponse.model_validate(t) for t in transactions], pagination=meta
    )


def _sum_where(*conditions):
    return func.coalesce(func.sum(case((and_(*conditions), Transaction.amount), else_=0)), 0)


async def transaction_statistics(
    db: AsyncSession,
    identity: CurrentUser,
    branch_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> TransactionStatistics:
    income = Transaction.type == TransactionType.INCOME.value
    expense = Transaction.type == TransactionType.EXPENSE.value
    completed = Transaction.status == TransactionStatus.COMPLETED.value
    pending = Transaction.status == TransactionStatus.PENDING.value

    stmt = select(
        func.count(Transaction.id),
        _sum_where(income, completed),
        _sum_where(expense, completed),
        _sum_where(income, pending),
        _sum_where(expense, pending),
        func.coalesce(func.sum(case((pending, 1), else_=0)), 0),
    ).where(Transaction.is_active.is_(True))
    stmt = scope(identity, Resource.TRANSACTION, branch_id).apply(stmt, Transaction.branch_id)
    stmt = _filtered(stmt, date_from=date_from, date_to=date_to)
    total, total_income, total_expenses, pending_income, pending_expenses, pending_count = (
        await db.execute(stmt)
    ).one()

    return TransactionStatistics(
        total_transactions=total,
        total_income=float(total_income),
        total_expenses=float(total_expenses),
        net_profit=float(total_income) - float(total_expenses),
        pending_income=float(pending_income),
        pending_expenses=float(pending_expenses),
        pending_transactions=int(pending_count),
    )


async def get_transaction(db: AsyncSession, identity: CurrentUser, transaction_id: UUID) -> TransactionResponse:
    transaction = await get_or_404(db, Transaction, transaction_id, "Transaction")
    ensure_in_scope(identity, transaction.branch_id)
    return TransactionResponse.model_validate(transaction)


async def create_transaction(
    db: AsyncSession, identity: CurrentUser, payload: TransactionCreate
) -> TransactionResponse:
    branch_id = resolve_target_branch(identity, payload.branch_id)
    await _ensure_active_branch(db, branch_id)
    if payload.student_id is not None:
        await _ensure_student_in_branch(db, payload.student_id, branch_id)
    if payload.course_id is not None:
        await _ensure_course_offered(db, payload.course_id, branch_id)

    def _build(reference: str) -> Transaction:
        return Transaction(
            type=payload.type.value,
            category=payload.category,
            amount=_money(payload.amount),
            currency=payload.currency.value,
            description=payload.description,
            date=payload.date or date.today(),
            status=payload.status.value,
            reference=reference,
            student_id=payload.student_id,
            course_id=payload.course_id,
            branch_id=branch_id,
            created_by=identity.id,
        )

    if payload.reference:
        transaction = _build(payload.reference)
        db.add(transaction)
        await commit_or_conflict(db, REFERENCE_TAKEN)
    else:
        transaction = await _create_with_generated_reference(db, branch_id, payload.type, _build)

    logger.info(
        "Transaction created id=%s reference=%s type=%s branch_id=%s",
        transaction.id,
        transaction.reference,
        transaction.type,
        branch_id,
    )
    return await _reload(db, transaction)


async def _create_with_generated_reference(db: AsyncSession, branch_id: UUID, transaction_type, build) -> Transaction:
    """
    Issue the next reference for (branch, type, month of creation) and insert.

    Two concurrent creations can read the same highest sequence; the unique
    (branch_id, reference) constraint rejects the second, which regenerates.
    """
    attempts = max(1, settings.generated_id_attempts)
    for attempt in range(1, attempts + 1):
        reference = await generate_transaction_reference(db, branch_id, transaction_type, date.today())
        transaction = build(reference)
        db.add(transaction)
        try:
            await db.commit()
            return transaction
        except IntegrityError as e:
            await db.rollback()
            if not is_unique_violation_on(e, "reference"):
                raise InvalidReference("Invalid student or course reference") from e
            logger.warning("Transaction reference collision %s attempt=%s/%s", reference, attempt, attempts)
    raise DuplicateKey("Could not generate a unique transaction reference, please retry", retryable=True)


async def update_transaction(
    db: AsyncSession, identity: CurrentUser, transaction_id: UUID, payload: TransactionUpdate
) -> TransactionResponse:
    transaction = await get_or_404(db, Transaction, transaction_id, "Transaction")
    ensure_in_scope(identity, transaction.branch_id)

    if payload.student_id is not None and payload.student_id != transaction.student_id:
        await _ensure_student_in_branch(db, payload.student_id, transaction.branch_id)
    if payload.course_id is not None and payload.course_id != transaction.course_id:
        await _ensure_course_offered(db, payload.course_id, transaction.branch_id)

    data = payload.model_dump(exclude_unset=True, exclude={"amount"})
    for field, value in data.items():
        if value is None:
            continue
        setattr(transaction, field, value.value if hasattr(value, "value") else value)
    if payload.amount is not None:
        transaction.amount = _money(payload.amount)
    transaction.updated_by = identity.id

    await commit_or_conflict(db, REFERENCE_TAKEN)
    return await _reload(db, transaction)


async def delete_transaction(db: AsyncSession, identity: CurrentUser, transaction_id: UUID) -> None:
    transaction = await get_or_404(db, Transaction, transaction_id, "Transaction")
    ensure_in_scope(identity, transaction.branch_id)
    transaction.updated_by = identity.id
    await soft_delete(db, transaction, "Transaction", identity.id)


async def restore_transaction(
    db: AsyncSession, identity: CurrentUser, transaction_id: UUID
) -> TransactionResponse:
    transaction = await get_or_404(db, Transaction, transaction_id, "Transaction", include_inactive=True)
    ensure_in_scope(identity, transaction.branch_id)

    async def _still_valid() -> None:
        await _ensure_active_branch(db, transaction.branch_id)
        transaction.updated_by = identity.id

    await restore(db, transaction, "Transaction", identity.id, before=_still_valid)
    return await _reload(db, transaction)
