"""
Generated identifiers: Student IDs and transaction references.

Both are read-then-write sequences. The unique indexes on students.student_code
and (transactions.branch_id, transactions.reference) reject a colliding second
write; services retry generation a bounded number of times on that rejection.

A Student ID starts from the course counter, which can fall behind codes
already issued (soft-deleted students keep theirs, and courses with the same
initials share a prefix). After a collision the retry continues from the
highest issued code under the prefix.
"""
import re
from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.enums import TransactionType
from academy.core.models import Student, Transaction

STUDENT_PREFIX_FALLBACK = "STU"
STUDENT_PREFIX_MAX_LENGTH = 6

TRANSACTION_PREFIXES = {
    TransactionType.INCOME: "IN",
    TransactionType.EXPENSE: "EX",
}


def student_code_prefix(course_title: str) -> str:
    """
    Uppercase first letter of every word starting with a letter, capped at 6.

    Examples:
        Web Development        -> WD
        2024 Advanced Python   -> AP
        123 456                -> STU
    """
    letters = [word[0].upper() for word in (course_title or "").split() if re.match(r"[A-Za-z]", word)]
    prefix = "".join(letters)[:STUDENT_PREFIX_MAX_LENGTH]
    return prefix or STUDENT_PREFIX_FALLBACK


def generate_student_code(course_title: str, current_enrolled: int) -> str:
    """Course initials plus the next enrollment number, zero padded: WD0001."""
    return f"{student_code_prefix(course_title)}{current_enrolled + 1:04d}"


def reference_prefix(transaction_type: TransactionType, on: date) -> str:
    return f"{TRANSACTION_PREFIXES[TransactionType(transaction_type)]}-{on:%Y%m}-"


def next_reference(prefix: str, existing: Iterable[Optional[str]]) -> str:
    """Highest existing sequence under prefix plus one. Non-numeric suffixes are ignored."""
    highest = 0
    for reference in existing:
        if not reference or not reference.startswith(prefix):
            continue
        suffix = reference[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:04d}"


async def generate_transaction_reference(
    db: AsyncSession,
    branch_id: UUID,
    transaction_type: TransactionType,
    on: date,
) -> str:
    """Next {IN|EX}-{YYYYMM}-{seq} for this branch, type and month."""
    prefix = reference_prefix(transaction_type, on)
    result = await db.execute(
        select(Transaction.reference).where(
            Transaction.branch_id == branch_id,
            Transaction.reference.like(f"{prefix}%"),
        )
    )
    return next_reference(prefix, result.scalars().all())


async def next_free_student_code(db: AsyncSession, course_title: str) -> str:
    """Highest issued code under the course prefix plus one, active or not."""
    prefix = student_code_prefix(course_title)
    result = await db.execute(select(Student.student_code).where(Student.student_code.like(f"{prefix}%")))
    return next_reference(prefix, result.scalars().all())
