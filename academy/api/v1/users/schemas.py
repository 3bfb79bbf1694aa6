from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from academy.auth.schemas import BranchInfo
from academy.core.enums import Role

CONTACT_NUMBER_PATTERN = r"^[0-9+\-\s()]+$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"


class UserBase(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    nic_or_passport: str = Field(..., min_length=5, max_length=20)
    contact_number: str = Field(..., pattern=CONTACT_NUMBER_PATTERN, max_length=30)
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)

    @field_validator("full_name", "nic_or_passport", "contact_number", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", "username", mode="before")
    @classmethod
    def lower_identifiers(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    role: Role
    branch_id: Optional[UUID] = None  # Required unless role is superAdmin


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    nic_or_passport: Optional[str] = Field(None, min_length=5, max_length=20)
    contact_number: Optional[str] = Field(None, pattern=CONTACT_NUMBER_PATTERN, max_length=30)
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[Role] = None
    branch_id: Optional[UUID] = None

    @field_validator("email", "username", mode="before")
    @classmethod
    def lower_identifiers(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class RoleUpdate(BaseModel):
    role: Role


class UserResponse(BaseModel):
    id: UUID
    full_name: str
    nic_or_passport: str
    contact_number: str
    email: str
    username: str
    role: Role
    branch: Optional[BranchInfo] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserStats(BaseModel):
    total: int
    recent: int  # Created in the last 30 days
    by_role: Dict[str, int]
