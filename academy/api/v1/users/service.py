import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.models import User
from academy.auth.rbac import (
    Action,
    Resource,
    ensure_can_assign_role,
    ensure_can_create_user,
    ensure_can_delete_user,
    ensure_can_update_user,
    ensure_in_scope,
    resolve_target_branch,
    scope,
)
from academy.auth.schemas import CurrentUser
from academy.auth.security import hash_password
from academy.core.enums import Role
from academy.core.exceptions import AccessDenied, DuplicateKey, InvalidReference, ValidationFailed
from academy.core.models import Branch
from academy.core.persistence import commit_or_conflict, get_or_404, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate

from .schemas import RoleUpdate, UserCreate, UserResponse, UserStats, UserUpdate

logger = logging.getLogger(__name__)

RECENT_DAYS = 30

DUPLICATE_MESSAGES = (
    ("username", "Username already exists"),
    ("email", "Email already exists"),
    ("nic_or_passport", "NIC or Passport already exists"),
)


async def _ensure_unique_fields(
    db: AsyncSession,
    username: Optional[str] = None,
    email: Optional[str] = None,
    nic_or_passport: Optional[str] = None,
    exclude_id: Optional[UUID] = None,
) -> None:
    """Usernames, emails and NIC/passport numbers are unique across active and inactive users."""
    values = {"username": username, "email": email, "nic_or_passport": nic_or_passport}
    for field, message in DUPLICATE_MESSAGES:
        value = values[field]
        if value is None:
            continue
        stmt = select(User.id).where(getattr(User, field) == value)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if (await db.execute(stmt)).first() is not None:
            raise DuplicateKey(message)


async def _ensure_active_branch(db: AsyncSession, branch_id: UUID) -> Branch:
    branch = await db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise InvalidReference("Invalid or inactive branch")
    return branch


async def _reload(db: AsyncSession, user: User) -> UserResponse:
    await db.refresh(user, attribute_names=["branch"])
    return UserResponse.model_validate(user)


async def list_users(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    role: Optional[Role] = None,
    search: Optional[str] = None,
    branch_id: Optional[UUID] = None,
    include_inactive: bool = False,
) -> Page[UserResponse]:
    stmt = select(User).order_by(User.created_at.desc())
    stmt = scope(identity, Resource.USER, branch_id).apply(stmt, User.branch_id)
    if not include_inactive:
        stmt = stmt.where(User.is_active.is_(True))
    if role is not None:
        stmt = stmt.where(User.role == role.value)
    if search:
        term = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(User.full_name.ilike(term), User.username.ilike(term), User.email.ilike(term))
        )
    users, meta = await paginate(db, stmt, params)
    return Page[UserResponse](items=[UserResponse.model_validate(u) for u in users], pagination=meta)


async def list_branch_users(db: AsyncSession, identity: CurrentUser) -> List[UserResponse]:
    """Active users of the caller's branch. Non-superAdmins never see superAdmins."""
    stmt = select(User).where(User.is_active.is_(True)).order_by(User.full_name)
    stmt = scope(identity, Resource.USER, identity.branch_id).apply(stmt, User.branch_id)
    if not identity.is_super_admin:
        stmt = stmt.where(User.role != Role.SUPER_ADMIN.value)
    result = await db.execute(stmt)
    return [UserResponse.model_validate(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, identity: CurrentUser, user_id: UUID) -> UserResponse:
    user = await get_or_404(db, User, user_id, "User")
    ensure_in_scope(identity, user.branch_id)
    return UserResponse.model_validate(user)


async def create_user(db: AsyncSession, identity: CurrentUser, payload: UserCreate) -> UserResponse:
    if payload.role == Role.SUPER_ADMIN:
        branch_id = None
    elif identity.is_super_admin:
        if payload.branch_id is None:
            raise ValidationFailed.for_field("branch_id", "Branch is required for non-superAdmin users")
        branch_id = payload.branch_id
    else:
        branch_id = resolve_target_branch(identity, payload.branch_id)

    ensure_can_create_user(identity, payload.role, branch_id)
    if branch_id is not None:
        await _ensure_active_branch(db, branch_id)
    await _ensure_unique_fields(db, payload.username, payload.email, payload.nic_or_passport)

    user = User(
        full_name=payload.full_name,
        nic_or_passport=payload.nic_or_passport,
        contact_number=payload.contact_number,
        email=payload.email,
        username=payload.username,
        password_hash=hash_password(payload.password),
        role=payload.role.value,
        branch_id=branch_id,
        created_by=identity.id,
    )
    db.add(user)
    await commit_or_conflict(db, "Username, email or NIC/Passport already exists")
    logger.info("User created id=%s username=%s role=%s", user.id, user.username, user.role)
    return await _reload(db, user)


async def update_user(
    db: AsyncSession, identity: CurrentUser, user_id: UUID, payload: UserUpdate
) -> UserResponse:
    user = await get_or_404(db, User, user_id, "User")
    ensure_can_update_user(identity, user.id, Role(user.role), user.branch_id, payload.role)

    new_role = payload.role or Role(user.role)
    new_branch_id = user.branch_id
    if "branch_id" in payload.model_fields_set and payload.branch_id != user.branch_id:
        if not identity.is_super_admin:
            raise AccessDenied("Cannot move users to other branches")
        new_branch_id = payload.branch_id
    if new_role == Role.SUPER_ADMIN:
        new_branch_id = None
    elif new_branch_id is None:
        raise ValidationFailed.for_field("branch_id", "Branch is required for non-superAdmin users")
    if new_branch_id is not None and new_branch_id != user.branch_id:
        await _ensure_active_branch(db, new_branch_id)

    await _ensure_unique_fields(
        db,
        username=payload.username if payload.username != user.username else None,
        email=payload.email if payload.email != user.email else None,
        nic_or_passport=payload.nic_or_passport if payload.nic_or_passport != user.nic_or_passport else None,
        exclude_id=user.id,
    )

    for field in ("full_name", "nic_or_passport", "contact_number", "email", "username"):
        value = getattr(payload, field)
        if value is not None:
            setattr(user, field, value)
    if payload.password:
        user.password_hash = hash_password(payload.password)
    user.role = new_role.value
    user.branch_id = new_branch_id

    await commit_or_conflict(db, "Username, email or NIC/Passport already exists")
    return await _reload(db, user)


async def assign_role(
    db: AsyncSession, identity: CurrentUser, user_id: UUID, payload: RoleUpdate
) -> UserResponse:
    user = await get_or_404(db, User, user_id, "User")
    ensure_can_assign_role(identity, user.id, Role(user.role), user.branch_id, payload.role)
    user.role = payload.role.value
    await db.commit()
    logger.info("Role changed user_id=%s role=%s by=%s", user.id, user.role, identity.id)
    return await _reload(db, user)


async def delete_user(db: AsyncSession, identity: CurrentUser, user_id: UUID) -> None:
    user = await get_or_404(db, User, user_id, "User")
    ensure_can_delete_user(identity, user.id, Role(user.role), user.branch_id)
    await soft_delete(db, user, "User", identity.id)


async def restore_user(db: AsyncSession, identity: CurrentUser, user_id: UUID) -> UserResponse:
    user = await get_or_404(db, User, user_id, "User", include_inactive=True)
    ensure_can_delete_user(identity, user.id, Role(user.role), user.branch_id, Action.RESTORE)

    async def _branch_still_active() -> None:
        if user.branch_id is not None:
            await _ensure_active_branch(db, user.branch_id)

    await restore(db, user, "User", identity.id, before=_branch_still_active)
    return await _reload(db, user)


async def branch_user_stats(db: AsyncSession, identity: CurrentUser, branch_id: UUID) -> UserStats:
    ensure_in_scope(identity, branch_id)
    await get_or_404(db, Branch, branch_id, "Branch", include_inactive=True)
    base = (User.branch_id == branch_id, User.is_active.is_(True))

    total = (await db.execute(select(func.count(User.id)).where(*base))).scalar_one()
    cutoff = datetime.now(timezone.utc) - timedelta(days=RECENT_DAYS)
    recent = (
        await db.execute(select(func.count(User.id)).where(*base, User.created_at >= cutoff))
    ).scalar_one()
    by_role_rows = await db.execute(select(User.role, func.count(User.id)).where(*base).group_by(User.role))
    return UserStats(total=total, recent=recent, by_role={role: count for role, count in by_role_rows.all()})
