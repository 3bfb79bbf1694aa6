from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from academy.api.v1.courses.schemas import CourseSummary
from academy.auth.schemas import BranchInfo
from academy.core.enums import StudentLevel, StudentStatus

PHONE_PATTERN = r"^[0-9+\-\s()]+$"


class DocumentItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    url: str = Field(..., min_length=1, max_length=500)


class OriginalCertificate(BaseModel):
    has_document: bool = False
    title: Optional[str] = Field(None, max_length=200)


class PersonalDocuments(BaseModel):
    birth_certificate: bool = False
    grama_niladhari_certificate: bool = False
    guardian_spouse_letter: bool = False
    original_certificate: OriginalCertificate = Field(default_factory=OriginalCertificate)


def _past_date(v: Optional[date]) -> Optional[date]:
    if v is not None and v >= date.today():
        raise ValueError("Date of birth must be in the past")
    return v


class StudentBase(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN, max_length=30)
    address: str = Field(..., min_length=1, max_length=500)
    date_of_birth: date

    @field_validator("full_name", "phone", "address", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v):
        return _past_date(v)


class StudentCreate(StudentBase):
    course_id: UUID
    branch_id: Optional[UUID] = None  # SuperAdmin picks; others always get their own branch
    modules: List[str] = Field(default_factory=list)
    status: StudentStatus = StudentStatus.ACTIVE
    enrollment_date: Optional[date] = None
    gpa: Optional[float] = Field(None, ge=0, le=4)
    level: Optional[StudentLevel] = None
    certifications: List[str] = Field(default_factory=list)
    documents: List[DocumentItem] = Field(default_factory=list)
    personal_documents: PersonalDocuments = Field(default_factory=PersonalDocuments)
    child_baby_care: bool = False
    elder_care: bool = False
    hostel_requirement: bool = False
    meal_requirement: bool = False


class StudentUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN, max_length=30)
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    date_of_birth: Optional[date] = None
    course_id: Optional[UUID] = None
    branch_id: Optional[UUID] = None
    modules: Optional[List[str]] = None
    status: Optional[StudentStatus] = None
    enrollment_date: Optional[date] = None
    gpa: Optional[float] = Field(None, ge=0, le=4)
    level: Optional[StudentLevel] = None
    certifications: Optional[List[str]] = None
    documents: Optional[List[DocumentItem]] = None
    personal_documents: Optional[PersonalDocuments] = None
    child_baby_care: Optional[bool] = None
    elder_care: Optional[bool] = None
    hostel_requirement: Optional[bool] = None
    meal_requirement: Optional[bool] = None

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v):
        return _past_date(v)


class StudentResponse(BaseModel):
    id: UUID
    student_code: str
    full_name: str
    email: str
    phone: str
    address: str
    date_of_birth: date
    course_id: UUID
    course: Optional[CourseSummary] = None
    branch_id: UUID
    branch: Optional[BranchInfo] = None
    modules: List[str]
    status: StudentStatus
    enrollment_date: date
    gpa: Optional[float] = None
    level: Optional[StudentLevel] = None
    certifications: List[str]
    documents: List[DocumentItem]
    personal_documents: PersonalDocuments
    child_baby_care: bool
    elder_care: bool
    hostel_requirement: bool
    meal_requirement: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class StudentSummary(BaseModel):
    id: UUID
    student_code: str
    full_name: str

    class Config:
        from_attributes = True


class StudentStatistics(BaseModel):
    total: int
    active: int
    graduated: int
    average_gpa: float
    by_status: Dict[str, int]
