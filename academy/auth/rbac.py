"""
Access control evaluator.

Single authority for "may this identity do X to resource Y" and "which rows may
it see". Everything here is pure: callers pass the identity explicitly and get
back a decision, a QueryScope, or an AccessDenied.

- Visibility is a filter: list queries are narrowed with QueryScope, never
  filtered after pagination.
- Single-record access is a guard: out-of-scope records raise AccessDenied.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union
from uuid import UUID

from fastapi import Depends
from sqlalchemy import or_

from academy.auth.dependencies import get_current_user
from academy.auth.schemas import CurrentUser
from academy.core.enums import ROLE_RANK, Role
from academy.core.exceptions import AccessDenied, ValidationFailed, http_error
from academy.core.scope import AllBranches, BranchScope, SpecificBranch


class Resource(str, Enum):
    BRANCH = "branch"
    USER = "user"
    COURSE = "course"
    STUDENT = "student"
    ATTENDANCE = "attendance"
    TRANSACTION = "transaction"
    BUDGET = "budget"
    REPORT = "report"


class Action(str, Enum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    STATS = "stats"
    # Branch user directory (every role)
    DIRECTORY = "directory"
    # Simple role update path
    ASSIGN_ROLE = "assign_role"
    REFRESH = "refresh"
    EXPORT = "export"


SUPER = frozenset({Role.SUPER_ADMIN})
MANAGERS = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
MARKERS = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.MODERATOR})
EVERYONE = frozenset(Role)

POLICY: Dict[Resource, Dict[Action, FrozenSet[Role]]] = {
    Resource.BRANCH: {
        Action.LIST: EVERYONE,
        Action.READ: SUPER,
        Action.CREATE: SUPER,
        Action.UPDATE: SUPER,
        Action.DELETE: SUPER,
        Action.RESTORE: SUPER,
    },
    Resource.USER: {
        Action.LIST: MANAGERS,
        Action.READ: MANAGERS,
        Action.CREATE: MANAGERS,
        Action.UPDATE: MANAGERS,
        Action.DELETE: MANAGERS,
        Action.RESTORE: MANAGERS,
        Action.STATS: MANAGERS,
        Action.DIRECTORY: EVERYONE,
        Action.ASSIGN_ROLE: frozenset({Role.ADMIN}),
    },
    Resource.COURSE: {
        Action.LIST: EVERYONE,
        Action.READ: EVERYONE,
        Action.STATS: EVERYONE,
        Action.CREATE: SUPER,
        Action.UPDATE: SUPER,
        Action.DELETE: SUPER,
        Action.RESTORE: SUPER,
    },
    Resource.STUDENT: {
        Action.LIST: EVERYONE,
        Action.READ: EVERYONE,
        Action.STATS: EVERYONE,
        Action.CREATE: MARKERS,
        Action.UPDATE: MARKERS,
        Action.DELETE: MARKERS,
        Action.RESTORE: MARKERS,
    },
    Resource.ATTENDANCE: {
        Action.LIST: EVERYONE,
        Action.READ: EVERYONE,
        Action.STATS: EVERYONE,
        Action.EXPORT: EVERYONE,
        Action.CREATE: MARKERS,
        Action.UPDATE: MARKERS,
        Action.DELETE: MANAGERS,
        Action.RESTORE: MANAGERS,
    },
    Resource.TRANSACTION: {
        Action.LIST: MANAGERS,
        Action.READ: MANAGERS,
        Action.STATS: MANAGERS,
        Action.CREATE: MANAGERS,
        Action.UPDATE: MANAGERS,
        Action.DELETE: MANAGERS,
        Action.RESTORE: MANAGERS,
    },
    Resource.BUDGET: {
        Action.LIST: MANAGERS,
        Action.READ: MANAGERS,
        Action.STATS: MANAGERS,
        Action.REFRESH: MANAGERS,
        Action.CREATE: SUPER,
        Action.UPDATE: SUPER,
        Action.DELETE: SUPER,
        Action.RESTORE: SUPER,
    },
    Resource.REPORT: {
        Action.READ: EVERYONE,
        Action.EXPORT: EVERYONE,
    },
}


@dataclass(frozen=True)
class QueryScope:
    """Branch filter for list/aggregate queries. branch_id None means unrestricted."""

    branch_id: Optional[UUID] = None
    include_all_branches: bool = False

    @property
    def unrestricted(self) -> bool:
        return self.branch_id is None

    def apply(self, stmt, branch_column):
        """Narrow a select to this scope. branch_column is e.g. Student.branch_id."""
        if self.branch_id is None:
            return stmt
        if self.include_all_branches:
            # Course rows with NULL branch are offered to every branch
            return stmt.where(or_(branch_column == self.branch_id, branch_column.is_(None)))
        return stmt.where(branch_column == self.branch_id)


def can_perform(identity: CurrentUser, resource: Resource, action: Action) -> bool:
    allowed = POLICY.get(resource, {}).get(action, frozenset())
    return identity.role in allowed


def ensure_can_perform(identity: CurrentUser, resource: Resource, action: Action) -> None:
    if not can_perform(identity, resource, action):
        raise AccessDenied("Insufficient permissions")


def scope(
    identity: CurrentUser,
    resource: Resource,
    requested_branch_id: Optional[UUID] = None,
) -> QueryScope:
    """Visibility filter. superAdmin may narrow with requested_branch_id; others are pinned to their branch."""
    include_all = resource == Resource.COURSE
    if identity.is_super_admin:
        return QueryScope(branch_id=requested_branch_id, include_all_branches=include_all)
    if identity.branch_id is None:
        raise AccessDenied("No branch assigned")
    return QueryScope(branch_id=identity.branch_id, include_all_branches=include_all)


def ensure_in_scope(
    identity: CurrentUser,
    record_branch: Union[Optional[UUID], BranchScope],
) -> None:
    """Guard for single-record access. Courses offered to all branches pass for everyone."""
    if identity.is_super_admin:
        return
    if isinstance(record_branch, AllBranches):
        return
    if isinstance(record_branch, SpecificBranch):
        record_branch = record_branch.branch_id
    if record_branch is None or record_branch != identity.branch_id:
        raise AccessDenied("Access denied to this branch")


def resolve_target_branch(identity: CurrentUser, requested_branch_id: Optional[UUID]) -> UUID:
    """Branch a new record is written into.

    Non-superAdmins always write into their own branch; naming another one is denied.
    A superAdmin names the branch explicitly or falls back to the session branch.
    """
    if identity.is_super_admin:
        branch_id = requested_branch_id or identity.branch_id
        if branch_id is None:
            raise ValidationFailed.for_field("branch_id", "Branch is required")
        return branch_id
    if identity.branch_id is None:
        raise AccessDenied("No branch assigned")
    if requested_branch_id is not None and requested_branch_id != identity.branch_id:
        raise AccessDenied("Cannot create records for other branches")
    return identity.branch_id


def outranks(actor_role: Role, target_role: Role) -> bool:
    return ROLE_RANK[Role(actor_role)] > ROLE_RANK[Role(target_role)]


def ensure_can_create_user(identity: CurrentUser, new_role: Role, branch_id: Optional[UUID]) -> None:
    ensure_can_perform(identity, Resource.USER, Action.CREATE)
    if identity.is_super_admin:
        return
    if not outranks(identity.role, new_role):
        raise AccessDenied(f"{identity.role.value} cannot create {Role(new_role).value} users")
    if branch_id is None or branch_id != identity.branch_id:
        raise AccessDenied("Cannot create users for other branches")


def ensure_can_update_user(
    identity: CurrentUser,
    target_id: UUID,
    target_role: Role,
    target_branch_id: Optional[UUID],
    new_role: Optional[Role] = None,
) -> None:
    ensure_can_perform(identity, Resource.USER, Action.UPDATE)
    is_self = target_id == identity.id
    role_changes = new_role is not None and Role(new_role) != Role(target_role)
    if is_self and role_changes:
        raise AccessDenied("Cannot change your own role")
    if identity.is_super_admin:
        return
    if target_role == Role.SUPER_ADMIN:
        raise AccessDenied("Cannot modify superAdmin users")
    if target_branch_id != identity.branch_id:
        raise AccessDenied("Access denied to this branch")
    if not is_self and not outranks(identity.role, target_role):
        raise AccessDenied(f"Cannot modify other {Role(target_role).value} users")
    if role_changes and not outranks(identity.role, new_role):
        raise AccessDenied(f"Cannot assign the {Role(new_role).value} role")


def ensure_can_delete_user(
    identity: CurrentUser,
    target_id: UUID,
    target_role: Role,
    target_branch_id: Optional[UUID],
    action: Action = Action.DELETE,
) -> None:
    ensure_can_perform(identity, Resource.USER, action)
    if target_id == identity.id:
        raise AccessDenied("Cannot delete your own account")
    if identity.is_super_admin:
        return
    if target_branch_id != identity.branch_id:
        raise AccessDenied("Access denied to this branch")
    if not outranks(identity.role, target_role):
        raise AccessDenied(f"Cannot delete {Role(target_role).value} users")


ASSIGNABLE_ROLES = frozenset({Role.MODERATOR, Role.STAFF})


def ensure_can_assign_role(
    identity: CurrentUser,
    target_id: UUID,
    target_role: Role,
    target_branch_id: Optional[UUID],
    new_role: Role,
) -> None:
    """Simple role update path: an admin moves branch users between moderator and staff."""
    ensure_can_perform(identity, Resource.USER, Action.ASSIGN_ROLE)
    if Role(new_role) not in ASSIGNABLE_ROLES:
        raise ValidationFailed.for_field("role", "Role must be moderator or staff")
    if target_id == identity.id:
        raise AccessDenied("Cannot change your own role")
    if target_branch_id != identity.branch_id:
        raise AccessDenied("Access denied to this branch")
    if not outranks(identity.role, target_role):
        raise AccessDenied("Cannot change role of admin users")


def ensure_can_modify_attendance(
    identity: CurrentUser,
    record_branch_id: UUID,
    action: Action = Action.UPDATE,
) -> None:
    ensure_can_perform(identity, Resource.ATTENDANCE, action)
    ensure_in_scope(identity, record_branch_id)


def check_permission(resource: Resource, action: Action):
    """
    Dependency factory to enforce a role permission before the handler runs.

    Example:
        Depends(check_permission(Resource.BUDGET, Action.CREATE))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if not can_perform(current_user, resource, action):
            raise http_error(AccessDenied("Insufficient permissions"))

    return _checker
