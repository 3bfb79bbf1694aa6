"""Unit tests for the access evaluator."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from academy.auth.rbac import (
    Action,
    Resource,
    can_perform,
    ensure_can_assign_role,
    ensure_can_create_user,
    ensure_can_delete_user,
    ensure_can_update_user,
    ensure_in_scope,
    resolve_target_branch,
    scope,
)
from academy.auth.schemas import CurrentUser
from academy.core.enums import Role
from academy.core.exceptions import AccessDenied, ValidationFailed
from academy.core.models import Student
from academy.core.scope import AllBranches, SpecificBranch

BRANCH_A = uuid4()
BRANCH_B = uuid4()


def identity(role: Role, branch_id=BRANCH_A) -> CurrentUser:
    return CurrentUser(id=uuid4(), role=role, branch_id=branch_id)


def test_policy_matrix_samples() -> None:
    staff = identity(Role.STAFF)
    moderator = identity(Role.MODERATOR)
    admin = identity(Role.ADMIN)
    root = identity(Role.SUPER_ADMIN, None)

    assert can_perform(staff, Resource.STUDENT, Action.LIST)
    assert not can_perform(staff, Resource.STUDENT, Action.CREATE)
    assert can_perform(moderator, Resource.ATTENDANCE, Action.CREATE)
    assert not can_perform(moderator, Resource.ATTENDANCE, Action.DELETE)
    assert can_perform(admin, Resource.TRANSACTION, Action.CREATE)
    assert not can_perform(admin, Resource.COURSE, Action.CREATE)
    assert not can_perform(admin, Resource.BUDGET, Action.CREATE)
    assert can_perform(root, Resource.BRANCH, Action.DELETE)
    assert not can_perform(moderator, Resource.USER, Action.LIST)


def test_scope_pins_non_super_admin_to_own_branch() -> None:
    """A requested branch is ignored for branch roles."""
    result = scope(identity(Role.ADMIN), Resource.STUDENT, BRANCH_B)
    assert result.branch_id == BRANCH_A
    assert not result.include_all_branches


def test_scope_super_admin_unrestricted_or_narrowed() -> None:
    root = identity(Role.SUPER_ADMIN, None)
    assert scope(root, Resource.STUDENT).unrestricted
    assert scope(root, Resource.STUDENT, BRANCH_B).branch_id == BRANCH_B


def test_course_scope_includes_all_branch_rows() -> None:
    result = scope(identity(Role.STAFF), Resource.COURSE)
    assert result.include_all_branches


def test_scope_apply_adds_branch_filter() -> None:
    stmt = scope(identity(Role.STAFF), Resource.STUDENT).apply(select(Student), Student.branch_id)
    assert "branch_id" in str(stmt.whereclause)


def test_ensure_in_scope() -> None:
    staff = identity(Role.STAFF)
    ensure_in_scope(staff, BRANCH_A)
    ensure_in_scope(staff, AllBranches())
    ensure_in_scope(staff, SpecificBranch(BRANCH_A))
    with pytest.raises(AccessDenied):
        ensure_in_scope(staff, BRANCH_B)
    with pytest.raises(AccessDenied):
        ensure_in_scope(staff, SpecificBranch(BRANCH_B))
    ensure_in_scope(identity(Role.SUPER_ADMIN, None), BRANCH_B)


def test_resolve_target_branch() -> None:
    admin = identity(Role.ADMIN)
    assert resolve_target_branch(admin, None) == BRANCH_A
    assert resolve_target_branch(admin, BRANCH_A) == BRANCH_A
    with pytest.raises(AccessDenied):
        resolve_target_branch(admin, BRANCH_B)

    root = identity(Role.SUPER_ADMIN, None)
    assert resolve_target_branch(root, BRANCH_B) == BRANCH_B
    with pytest.raises(ValidationFailed):
        resolve_target_branch(root, None)
    # Session branch chosen at login
    assert resolve_target_branch(identity(Role.SUPER_ADMIN, BRANCH_A), None) == BRANCH_A


def test_admin_creates_only_lower_roles_in_own_branch() -> None:
    admin = identity(Role.ADMIN)
    ensure_can_create_user(admin, Role.MODERATOR, BRANCH_A)
    ensure_can_create_user(admin, Role.STAFF, BRANCH_A)
    with pytest.raises(AccessDenied):
        ensure_can_create_user(admin, Role.ADMIN, BRANCH_A)
    with pytest.raises(AccessDenied):
        ensure_can_create_user(admin, Role.STAFF, BRANCH_B)


def test_nobody_changes_own_role() -> None:
    root = identity(Role.SUPER_ADMIN, None)
    with pytest.raises(AccessDenied):
        ensure_can_update_user(root, root.id, Role.SUPER_ADMIN, None, Role.ADMIN)
    # Same role is not a change
    ensure_can_update_user(root, root.id, Role.SUPER_ADMIN, None, Role.SUPER_ADMIN)


def test_admin_update_rules() -> None:
    admin = identity(Role.ADMIN)
    ensure_can_update_user(admin, uuid4(), Role.STAFF, BRANCH_A, Role.MODERATOR)
    ensure_can_update_user(admin, admin.id, Role.ADMIN, BRANCH_A)
    with pytest.raises(AccessDenied):
        ensure_can_update_user(admin, uuid4(), Role.ADMIN, BRANCH_A)
    with pytest.raises(AccessDenied):
        ensure_can_update_user(admin, uuid4(), Role.STAFF, BRANCH_A, Role.ADMIN)
    with pytest.raises(AccessDenied):
        ensure_can_update_user(admin, uuid4(), Role.SUPER_ADMIN, None)
    with pytest.raises(AccessDenied):
        ensure_can_update_user(admin, uuid4(), Role.STAFF, BRANCH_B)


def test_delete_rules() -> None:
    admin = identity(Role.ADMIN)
    with pytest.raises(AccessDenied):
        ensure_can_delete_user(admin, admin.id, Role.ADMIN, BRANCH_A)
    with pytest.raises(AccessDenied):
        ensure_can_delete_user(admin, uuid4(), Role.ADMIN, BRANCH_A)
    ensure_can_delete_user(admin, uuid4(), Role.STAFF, BRANCH_A)

    root = identity(Role.SUPER_ADMIN, None)
    with pytest.raises(AccessDenied):
        ensure_can_delete_user(root, root.id, Role.SUPER_ADMIN, None)
    ensure_can_delete_user(root, uuid4(), Role.ADMIN, BRANCH_B)


def test_assign_role_limited_to_moderator_and_staff() -> None:
    admin = identity(Role.ADMIN)
    ensure_can_assign_role(admin, uuid4(), Role.STAFF, BRANCH_A, Role.MODERATOR)
    with pytest.raises(ValidationFailed):
        ensure_can_assign_role(admin, uuid4(), Role.STAFF, BRANCH_A, Role.ADMIN)
    with pytest.raises(AccessDenied):
        ensure_can_assign_role(admin, uuid4(), Role.ADMIN, BRANCH_A, Role.STAFF)
    with pytest.raises(AccessDenied):
        ensure_can_assign_role(identity(Role.SUPER_ADMIN, None), uuid4(), Role.STAFF, BRANCH_A, Role.MODERATOR)
