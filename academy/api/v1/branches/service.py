import logging
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.models import User
from academy.auth.rbac import Resource, scope
from academy.auth.schemas import BranchInfo, CurrentUser
from academy.core.exceptions import DuplicateKey, ResourceInUse
from academy.core.models import Branch
from academy.core.persistence import commit_or_conflict, get_or_404, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate

from .schemas import BranchCreate, BranchResponse, BranchUpdate

logger = logging.getLogger(__name__)


async def _active_user_counts(db: AsyncSession, branch_ids: List[UUID]) -> Dict[UUID, int]:
    if not branch_ids:
        return {}
    result = await db.execute(
        select(User.branch_id, func.count(User.id))
        .where(User.branch_id.in_(branch_ids), User.is_active.is_(True))
        .group_by(User.branch_id)
    )
    return {branch_id: count for branch_id, count in result.all()}


async def _to_response(db: AsyncSession, branch: Branch) -> BranchResponse:
    counts = await _active_user_counts(db, [branch.id])
    response = BranchResponse.model_validate(branch)
    response.user_count = counts.get(branch.id, 0)
    return response


async def _ensure_name_available(db: AsyncSession, name: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(Branch.id).where(func.lower(Branch.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Branch.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise DuplicateKey("Branch name already exists")


async def _ensure_no_active_users(db: AsyncSession, branch: Branch) -> None:
    counts = await _active_user_counts(db, [branch.id])
    if counts.get(branch.id, 0) > 0:
        raise ResourceInUse("Cannot delete branch with active users. Please reassign or deactivate users first.")


async def list_branches(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    search: Optional[str] = None,
    include_inactive: bool = False,
) -> Page[BranchResponse]:
    """Paginated branches. Non-superAdmins only ever see their own branch."""
    stmt = select(Branch).order_by(Branch.name)
    query_scope = scope(identity, Resource.BRANCH)
    stmt = query_scope.apply(stmt, Branch.id)
    if not (identity.is_super_admin and include_inactive):
        stmt = stmt.where(Branch.is_active.is_(True))
    if search:
        stmt = stmt.where(Branch.name.ilike(f"%{search.strip()}%"))

    branches, meta = await paginate(db, stmt, params)
    counts = await _active_user_counts(db, [b.id for b in branches])
    items = []
    for branch in branches:
        item = BranchResponse.model_validate(branch)
        item.user_count = counts.get(branch.id, 0)
        items.append(item)
    return Page[BranchResponse](items=items, pagination=meta)


async def list_active_branches(db: AsyncSession, identity: CurrentUser) -> List[BranchInfo]:
    stmt = select(Branch).where(Branch.is_active.is_(True)).order_by(Branch.name)
    stmt = scope(identity, Resource.BRANCH).apply(stmt, Branch.id)
    result = await db.execute(stmt)
    return [BranchInfo.model_validate(b) for b in result.scalars().all()]


async def get_branch(db: AsyncSession, branch_id: UUID) -> BranchResponse:
    branch = await get_or_404(db, Branch, branch_id, "Branch", include_inactive=True)
    return await _to_response(db, branch)


async def create_branch(db: AsyncSession, identity: CurrentUser, payload: BranchCreate) -> BranchResponse:
    await _ensure_name_available(db, payload.name)
    branch = Branch(name=payload.name, created_by=identity.id)
    db.add(branch)
    await commit_or_conflict(db, "Branch name already exists")
    await db.refresh(branch)
    logger.info("Branch created id=%s name=%s", branch.id, branch.name)
    return await _to_response(db, branch)


async def update_branch(
    db: AsyncSession, identity: CurrentUser, branch_id: UUID, payload: BranchUpdate
) -> BranchResponse:
    branch = await get_or_404(db, Branch, branch_id, "Branch", include_inactive=True)
    if payload.name is not None and payload.name != branch.name:
        await _ensure_name_available(db, payload.name, exclude_id=branch.id)
        branch.name = payload.name
    await commit_or_conflict(db, "Branch name already exists")
    await db.refresh(branch)
    return await _to_response(db, branch)


async def toggle_branch_status(db: AsyncSession, identity: CurrentUser, branch_id: UUID) -> BranchResponse:
    branch = await get_or_404(db, Branch, branch_id, "Branch", include_inactive=True)
    if branch.is_active:
        await soft_delete(db, branch, "Branch", identity.id, before=lambda: _ensure_no_active_users(db, branch))
    else:
        await restore(db, branch, "Branch", identity.id)
    await db.refresh(branch)
    return await _to_response(db, branch)


async def delete_branch(db: AsyncSession, identity: CurrentUser, branch_id: UUID) -> None:
    branch = await get_or_404(db, Branch, branch_id, "Branch")
    await soft_delete(db, branch, "Branch", identity.id, before=lambda: _ensure_no_active_users(db, branch))


async def restore_branch(db: AsyncSession, identity: CurrentUser, branch_id: UUID) -> BranchResponse:
    branch = await get_or_404(db, Branch, branch_id, "Branch", include_inactive=True)
    await restore(db, branch, "Branch", identity.id)
    await db.refresh(branch)
    return await _to_response(db, branch)
