from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from academy.api.v1.courses.schemas import CourseSummary
from academy.api.v1.students.schemas import StudentSummary
from academy.core.enums import AttendanceStatus

TIME_IN_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


def _not_beyond_tomorrow(v: date) -> date:
    if v > date.today() + timedelta(days=1):
        raise ValueError("Attendance date cannot be more than 1 day in the future")
    return v


# ----- Marking -----
class AttendanceMark(BaseModel):
    student_id: UUID
    course_id: UUID
    date: date
    status: AttendanceStatus
    time_in: Optional[str] = Field(None, pattern=TIME_IN_PATTERN)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return _not_beyond_tomorrow(v)


class AttendanceBulkMark(BaseModel):
    """Whole batch is rejected if any record is malformed."""

    records: List[AttendanceMark] = Field(..., min_length=1)


class AttendanceUpdate(BaseModel):
    status: Optional[AttendanceStatus] = None
    time_in: Optional[str] = Field(None, pattern=TIME_IN_PATTERN)
    notes: Optional[str] = Field(None, max_length=500)


class AttendanceResponse(BaseModel):
    id: UUID
    student_id: UUID
    student: Optional[StudentSummary] = None
    course_id: UUID
    course: Optional[CourseSummary] = None
    branch_id: UUID
    date: date
    status: AttendanceStatus
    time_in: Optional[str] = None
    notes: Optional[str] = None
    marked_by: UUID
    last_modified_by: Optional[UUID] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BulkFailure(BaseModel):
    index: int
    student_id: UUID
    kind: str
    message: str


class BulkMarkResult(BaseModel):
    upserted: int  # New records
    updated: int  # Existing records whose values changed
    matched: int  # Existing records, changed or not
    failed: List[BulkFailure] = Field(default_factory=list)


# ----- Roster / stats -----
class RosterEntry(BaseModel):
    student: StudentSummary
    attendance: Optional[AttendanceResponse] = None


class CourseRoster(BaseModel):
    course: CourseSummary
    date: date
    students: List[RosterEntry]


class AttendanceStats(BaseModel):
    course_id: UUID
    date: date
    by_status: Dict[str, int]
    total: int
    total_enrolled: int
    not_marked: int
