import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.models import User
from academy.auth.schemas import (
    BranchInfo,
    ChangePasswordRequest,
    CurrentUser,
    LoginRequest,
    LoginResponse,
    MeResponse,
    UserInfo,
)
from academy.auth.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from academy.core.enums import Role
from academy.core.exceptions import (
    BranchAccessDenied,
    InvalidCredentials,
    InvalidReference,
    InvalidToken,
    ValidationFailed,
)
from academy.core.models import Branch

logger = logging.getLogger(__name__)


async def _get_active_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.username == username.strip().lower(), User.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def _get_active_branch(db: AsyncSession, branch_id: Optional[UUID]) -> Optional[Branch]:
    if branch_id is None:
        return None
    branch = await db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        return None
    return branch


async def authenticate(db: AsyncSession, payload: LoginRequest) -> Tuple[User, Optional[Branch]]:
    """Check credentials and branch selection. Returns the user and the effective branch."""
    user = await _get_active_user_by_username(db, payload.username)
    # Same error for unknown user and wrong password
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for username=%s", payload.username.strip().lower())
        raise InvalidCredentials("Invalid credentials")

    if user.role == Role.SUPER_ADMIN.value:
        if payload.branch_id is None:
            return user, None
        branch = await _get_active_branch(db, payload.branch_id)
        if branch is None:
            raise InvalidReference("Invalid or inactive branch")
        return user, branch

    own_branch = await _get_active_branch(db, user.branch_id)
    if own_branch is None:
        raise BranchAccessDenied("User branch is inactive")
    if payload.branch_id is None:
        raise ValidationFailed.for_field("branch_id", "Branch selection is required")
    if payload.branch_id != user.branch_id:
        raise BranchAccessDenied("Access denied to this branch")
    return user, own_branch


async def _record_last_login(db: AsyncSession, user: User) -> None:
    """Best effort: a failed timestamp write never fails the login."""
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("Could not record last login for user_id=%s", user.id, exc_info=True)


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    user, branch = await authenticate(db, payload)

    token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "role": user.role,
            "branch_id": str(branch.id) if branch else None,
        }
    )
    user.last_login = datetime.now(timezone.utc)
    response = LoginResponse(
        access_token=token,
        user=UserInfo.model_validate(user),
        branch=BranchInfo.model_validate(branch) if branch else None,
        issued_at=datetime.now(timezone.utc),
    )
    logger.info("User logged in username=%s role=%s", user.username, user.role)
    await _record_last_login(db, user)
    return response


async def list_login_branches(db: AsyncSession, username: str) -> List[BranchInfo]:
    """Branches a user may pick at login. Unknown usernames yield an empty list."""
    user = await _get_active_user_by_username(db, username)
    if user is None:
        return []
    if user.role == Role.SUPER_ADMIN.value:
        result = await db.execute(
            select(Branch).where(Branch.is_active.is_(True)).order_by(Branch.name)
        )
        return [BranchInfo.model_validate(b) for b in result.scalars().all()]
    branch = await _get_active_branch(db, user.branch_id)
    return [BranchInfo.model_validate(branch)] if branch else []


async def resolve_session(db: AsyncSession, token: str) -> CurrentUser:
    """Decode the token and re-check the user and branch are still active."""
    payload = decode_access_token(token)

    user_id_str = payload.get("user_id") or payload.get("sub")
    if not user_id_str or not payload.get("role"):
        raise InvalidToken("Invalid token")
    try:
        user_id = UUID(user_id_str)
        token_branch_id = UUID(payload["branch_id"]) if payload.get("branch_id") else None
    except ValueError:
        raise InvalidToken("Invalid token")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise InvalidToken("User not found or inactive")

    if user.role == Role.SUPER_ADMIN.value:
        effective_branch_id = token_branch_id
    else:
        if token_branch_id != user.branch_id:
            raise InvalidToken("Session branch no longer matches user branch")
        effective_branch_id = user.branch_id

    if effective_branch_id is not None:
        if await _get_active_branch(db, effective_branch_id) is None:
            raise InvalidToken("Branch is inactive")

    return CurrentUser(
        id=user.id,
        role=Role(user.role),
        branch_id=effective_branch_id,
        username=user.username,
        full_name=user.full_name,
    )


async def get_me(db: AsyncSession, identity: CurrentUser) -> MeResponse:
    user = await db.get(User, identity.id)
    branch = await db.get(Branch, identity.branch_id) if identity.branch_id else None
    return MeResponse(
        user=UserInfo.model_validate(user),
        branch=BranchInfo.model_validate(branch) if branch else None,
    )


async def change_password(db: AsyncSession, identity: CurrentUser, payload: ChangePasswordRequest) -> None:
    user = await db.get(User, identity.id)
    if user is None or not verify_password(payload.current_password, user.password_hash):
        raise InvalidCredentials("Current password is incorrect")
    user.password_hash = hash_password(payload.new_password)
    await db.commit()
    logger.info("Password changed for user_id=%s", user.id)
