from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Query
from fastapi import status as http_status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import (
    AvailableBranchesResponse,
    ChangePasswordRequest,
    CurrentUser,
    LoginRequest,
    LoginResponse,
    MeResponse,
)
from academy.auth.services import change_password, get_me, list_login_branches, login_user
from academy.core.exceptions import ServiceError, http_error
from academy.db.session import get_db

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Branch selection is required for every role except superAdmin."""
    try:
        return await login_user(db, payload)
    except ServiceError as e:
        raise http_error(e)


@router.post("/login-oauth")
async def login_oauth(
    form_data: OAuth2PasswordRequestForm = Depends(),
    branch_id: Optional[UUID] = Form(None),
    db: AsyncSession = Depends(get_db),
):
    payload = LoginRequest(
        username=form_data.username.strip(),
        password=form_data.password,
        branch_id=branch_id,
    )
    try:
        result = await login_user(db, payload)
    except ServiceError as e:
        raise http_error(e)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
    }


@router.get("/branches", response_model=AvailableBranchesResponse)
async def login_branches(
    username: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> AvailableBranchesResponse:
    """Branches the login form offers for this username. Empty for unknown users."""
    return AvailableBranchesResponse(branches=await list_login_branches(db, username))


@router.get("/me", response_model=MeResponse)
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MeResponse:
    try:
        return await get_me(db, current_user)
    except ServiceError as e:
        raise http_error(e)


@router.post("/logout")
async def logout(current_user: CurrentUser = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy
    return {"message": "Logged out successfully"}


@router.put("/change-password")
async def update_password(
    payload: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await change_password(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Password changed successfully"}
