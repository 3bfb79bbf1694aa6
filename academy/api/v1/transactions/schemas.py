from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from academy.api.v1.courses.schemas import CourseSummary
from academy.api.v1.students.schemas import StudentSummary
from academy.auth.schemas import BranchInfo
from academy.core.enums import Currency, TransactionStatus, TransactionType

MAX_AMOUNT = 10_000_000


def _strip(v):
    return v.strip() if isinstance(v, str) else v


class TransactionCreate(BaseModel):
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0.01, le=MAX_AMOUNT)
    currency: Currency = Currency.LKR
    description: str = Field(..., min_length=1, max_length=500)
    date: Optional[date] = None  # Defaults to today
    status: TransactionStatus = TransactionStatus.PENDING
    reference: Optional[str] = Field(None, max_length=50)  # Generated when omitted
    student_id: Optional[UUID] = None
    course_id: Optional[UUID] = None
    branch_id: Optional[UUID] = None  # SuperAdmin only

    @field_validator("category", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)

    @field_validator("reference", mode="before")
    @classmethod
    def blank_reference_is_generated(cls, v):
        return _strip(v) or None


class TransactionUpdate(BaseModel):
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[float] = Field(None, ge=0.01, le=MAX_AMOUNT)
    currency: Optional[Currency] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    date: Optional[date] = None
    status: Optional[TransactionStatus] = None
    reference: Optional[str] = Field(None, min_length=1, max_length=50)
    student_id: Optional[UUID] = None
    course_id: Optional[UUID] = None

    @field_validator("category", "description", "reference", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)


class TransactionResponse(BaseModel):
    id: UUID
    type: TransactionType
    category: str
    amount: float
    currency: Currency
    description: str
    date: date
    status: TransactionStatus
    reference: str
    student_id: Optional[UUID] = None
    student: Optional[StudentSummary] = None
    course_id: Optional[UUID] = None
    course: Optional[CourseSummary] = None
    branch_id: UUID
    branch: Optional[BranchInfo] = None
    created_by: Optional[UUID] = None
    updated_by: Optional[UUID] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransactionStatistics(BaseModel):
    """Income and expense totals count completed transactions only."""

    total_transactions: int
    total_income: float
    total_expenses: float
    net_profit: float
    pending_income: float
    pending_expenses: float
    pending_transactions: int
