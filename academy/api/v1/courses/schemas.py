from datetime import date, datetime
from typing import List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from academy.auth.schemas import BranchInfo
from academy.core.enums import CourseStatus, Currency

# A branch id, or "all" for a course offered by every branch
BranchField = Union[UUID, Literal["all"]]


def _clean_modules(modules):
    if modules is None:
        return modules
    cleaned = [m.strip() for m in modules if isinstance(m, str) and m.strip()]
    for m in cleaned:
        if len(m) > 200:
            raise ValueError("Module name cannot exceed 200 characters")
    return cleaned


class CourseCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=1000)
    duration: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., ge=0, le=1_000_000)
    currency: Currency = Currency.LKR
    max_students: int = Field(..., ge=1, le=100)
    schedule: str = Field(..., min_length=1, max_length=200)
    instructor: str = Field(..., min_length=1, max_length=100)
    next_start: date
    status: CourseStatus = CourseStatus.DRAFT
    modules: List[str] = Field(default_factory=list)
    branch: BranchField

    @field_validator("title", "description", "duration", "schedule", "instructor", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("modules")
    @classmethod
    def clean_modules(cls, v):
        return _clean_modules(v)


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    duration: Optional[str] = Field(None, min_length=1, max_length=100)
    price: Optional[float] = Field(None, ge=0, le=1_000_000)
    currency: Optional[Currency] = None
    max_students: Optional[int] = Field(None, ge=1, le=100)
    schedule: Optional[str] = Field(None, min_length=1, max_length=200)
    instructor: Optional[str] = Field(None, min_length=1, max_length=100)
    next_start: Optional[date] = None
    status: Optional[CourseStatus] = None
    modules: Optional[List[str]] = None
    branch: Optional[BranchField] = None

    @field_validator("title", "description", "duration", "schedule", "instructor", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("modules")
    @classmethod
    def clean_modules(cls, v):
        return _clean_modules(v)


class CourseResponse(BaseModel):
    id: UUID
    title: str
    description: str
    duration: str
    price: float
    currency: Currency
    max_students: int
    current_enrolled: int
    schedule: str
    instructor: str
    next_start: date
    status: CourseStatus
    modules: List[str]
    scope_key: str  # branch id or "all"
    branch: Optional[BranchInfo] = None
    is_active: bool
    is_full: bool
    available_spots: int
    enrollment_percentage: int
    revenue: float
    created_at: datetime

    class Config:
        from_attributes = True


class CourseSummary(BaseModel):
    id: UUID
    title: str

    class Config:
        from_attributes = True


class CourseStatistics(BaseModel):
    total_courses: int
    active_courses: int
    total_enrolled: int
    total_revenue: float
    average_price: float
    total_capacity: int
