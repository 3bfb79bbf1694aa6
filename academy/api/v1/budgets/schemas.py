from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from academy.auth.schemas import BranchInfo
from academy.core.enums import BudgetPeriod, BudgetStatus, Currency

MAX_ALLOCATION = 100_000_000


class BudgetCreate(BaseModel):
    # end_date > start_date is checked by the service (InvalidDateRange)
    category: str = Field(..., min_length=1, max_length=100)
    allocated: float = Field(..., ge=0, le=MAX_ALLOCATION)
    currency: Currency = Currency.LKR
    period: BudgetPeriod
    start_date: date
    end_date: date
    description: Optional[str] = Field(None, max_length=500)
    status: BudgetStatus = BudgetStatus.ACTIVE
    branch_id: Optional[UUID] = None

    @field_validator("category", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class BudgetUpdate(BaseModel):
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    allocated: Optional[float] = Field(None, ge=0, le=MAX_ALLOCATION)
    currency: Optional[Currency] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = Field(None, max_length=500)
    status: Optional[BudgetStatus] = None

    @field_validator("category", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class BudgetResponse(BaseModel):
    id: UUID
    category: str
    allocated: float
    spent: float
    remaining: float
    utilization_percentage: int
    budget_status: str  # good / moderate / warning / exceeded
    currency: Currency
    period: BudgetPeriod
    start_date: date
    end_date: date
    description: Optional[str] = None
    status: BudgetStatus
    branch_id: UUID
    branch: Optional[BranchInfo] = None
    created_by: Optional[UUID] = None
    updated_by: Optional[UUID] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BudgetStatistics(BaseModel):
    total_budgets: int
    total_allocated: float
    total_spent: float
    total_remaining: float
    active_budgets: int
    exceeded_budgets: int
    overall_utilization: int
