from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from academy.core.enums import Role


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    branch_id: Optional[UUID] = None  # Mandatory for every role except superAdmin


class BranchInfo(BaseModel):
    id: UUID
    name: str

    class Config:
        from_attributes = True


class UserInfo(BaseModel):
    id: UUID
    full_name: str
    username: str
    email: str
    role: Role
    branch: Optional[BranchInfo] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo
    branch: Optional[BranchInfo] = None  # Effective branch for this session
    issued_at: datetime


class AvailableBranchesResponse(BaseModel):
    branches: List[BranchInfo]


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)

    @model_validator(mode="after")
    def validate_new_password_differs(self) -> "ChangePasswordRequest":
        if self.current_password == self.new_password:
            raise ValueError("new_password must differ from current_password")
        return self


class CurrentUser(BaseModel):
    """Identity resolved from the session token and re-validated against the store.

    branch_id is the effective branch: the user's own branch, or for a superAdmin
    the branch chosen at login (None when operating globally).
    """

    id: UUID
    role: Role
    branch_id: Optional[UUID] = None
    username: str = ""
    full_name: str = ""

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


class MeResponse(BaseModel):
    user: UserInfo
    branch: Optional[BranchInfo] = None
