"""
Branch scope of a course: offered by one branch, or by every branch.

Stored on the course row as ``branch_id`` (NULL for every branch) plus a
``scope_key`` string used by the per-scope title uniqueness index.
"""
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

ALL_BRANCHES_KEY = "all"


@dataclass(frozen=True)
class SpecificBranch:
    branch_id: UUID

    @property
    def key(self) -> str:
        return str(self.branch_id)

    def offered_to(self, branch_id: Optional[UUID]) -> bool:
        return branch_id is not None and branch_id == self.branch_id


@dataclass(frozen=True)
class AllBranches:
    @property
    def key(self) -> str:
        return ALL_BRANCHES_KEY

    def offered_to(self, branch_id: Optional[UUID]) -> bool:
        return True


BranchScope = Union[SpecificBranch, AllBranches]


def parse_branch_scope(value: Union[str, UUID]) -> BranchScope:
    """Parse ``"all"`` or a branch UUID. Raises ValueError for anything else."""
    if isinstance(value, UUID):
        return SpecificBranch(value)
    if value.strip().lower() == ALL_BRANCHES_KEY:
        return AllBranches()
    return SpecificBranch(UUID(value.strip()))


def scope_from_branch_id(branch_id: Optional[UUID]) -> BranchScope:
    return SpecificBranch(branch_id) if branch_id is not None else AllBranches()


def describe_scope(scope: BranchScope) -> str:
    return "all branches" if isinstance(scope, AllBranches) else "this branch"
