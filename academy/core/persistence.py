"""
Shared write path: lookups, commits that map unique-index collisions, and the
soft-delete lifecycle used by every entity (delete sets is_active=False,
restore sets it back after re-checking preconditions).
"""
import logging
from typing import Awaitable, Callable, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.exceptions import DuplicateKey, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

M = TypeVar("M")
Hook = Optional[Callable[[], Awaitable[None]]]


async def get_or_404(
    db: AsyncSession,
    model: Type[M],
    record_id: UUID,
    label: str,
    include_inactive: bool = False,
) -> M:
    """Fetch by primary key. Soft-deleted rows count as missing unless include_inactive."""
    record = await db.get(model, record_id)
    if record is None or (not include_inactive and not record.is_active):
        raise NotFound(f"{label} not found")
    return record


def is_unique_violation_on(err: IntegrityError, marker: str) -> bool:
    """True when the violated constraint or column name contains marker."""
    return marker in str(getattr(err, "orig", err))


async def commit_or_conflict(db: AsyncSession, message: str, retryable: bool = False) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.info("Unique constraint rejected write: %s", message)
        raise DuplicateKey(message, retryable=retryable) from e


async def soft_delete(
    db: AsyncSession,
    record,
    label: str,
    actor_id: Optional[UUID] = None,
    before: Hook = None,
) -> None:
    """Deactivate an active record. `before` runs checks and side effects in the same commit."""
    if not record.is_active:
        raise NotFound(f"{label} not found")
    if before is not None:
        await before()
    record.deactivate()
    await commit_or_conflict(db, f"Could not delete {label.lower()}")
    logger.info("%s deactivated id=%s by=%s", label, record.id, actor_id)


async def restore(
    db: AsyncSession,
    record,
    label: str,
    actor_id: Optional[UUID] = None,
    before: Hook = None,
) -> None:
    """Reactivate a soft-deleted record after `before` re-validates its preconditions."""
    if record.is_active:
        raise ValidationFailed(f"{label} is already active")
    if before is not None:
        await before()
    record.reactivate()
    await commit_or_conflict(db, f"{label} conflicts with an active record")
    logger.info("%s restored id=%s by=%s", label, record.id, actor_id)
