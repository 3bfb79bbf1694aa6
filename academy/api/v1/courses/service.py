import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.rbac import Resource, ensure_in_scope, scope
from academy.auth.schemas import CurrentUser
from academy.core.enums import CourseStatus
from academy.core.exceptions import DuplicateKey, InvalidReference, ResourceInUse, ValidationFailed
from academy.core.models import Branch, Course, Student
from academy.core.persistence import commit_or_conflict, get_or_404, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate
from academy.core.scope import BranchScope, SpecificBranch, describe_scope, parse_branch_scope

from .schemas import CourseCreate, CourseResponse, CourseStatistics, CourseUpdate

logger = logging.getLogger(__name__)


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


async def _ensure_scope_branch_active(db: AsyncSession, branch_scope: BranchScope) -> None:
    if isinstance(branch_scope, SpecificBranch):
        branch = await db.get(Branch, branch_scope.branch_id)
        if branch is None or not branch.is_active:
            raise InvalidReference("Invalid or inactive branch")


async def _ensure_title_available(
    db: AsyncSession, title: str, branch_scope: BranchScope, exclude_id: Optional[UUID] = None
) -> None:
    """Titles are unique (case-insensitive) among active courses of the same scope."""
    stmt = select(Course.id).where(
        func.lower(Course.title) == title.lower(),
        Course.scope_key == branch_scope.key,
        Course.is_active.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(Course.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise DuplicateKey(f"Course title already exists in {describe_scope(branch_scope)}")


async def resolve_course_for_branch(db: AsyncSession, course_id: UUID, branch_id: UUID) -> Course:
    """Active course offered to branch_id (its own course or an all-branches course)."""
    course = await db.get(Course, course_id)
    if course is None or not course.is_active:
        raise InvalidReference("Invalid or inactive course")
    if not course.scope.offered_to(branch_id):
        raise InvalidReference("Course is not available for this branch")
    return course


def _filtered(stmt, status: Optional[CourseStatus], search: Optional[str]):
    if status is not None:
        stmt = stmt.where(Course.status == status.value)
    if search:
        term = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(Course.title.ilike(term), Course.description.ilike(term), Course.instructor.ilike(term))
        )
    return stmt


async def list_courses(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    status: Optional[CourseStatus] = None,
    search: Optional[str] = None,
    branch_id: Optional[UUID] = None,
) -> Page[CourseResponse]:
    """Courses of the visible branch plus every all-branches course."""
    stmt = select(Course).where(Course.is_active.is_(True)).order_by(Course.created_at.desc())
    stmt = scope(identity, Resource.COURSE, branch_id).apply(stmt, Course.branch_id)
    stmt = _filtered(stmt, status, search)
    courses, meta = await paginate(db, stmt, params)
    return Page[CourseResponse](items=[CourseResponse.model_validate(c) for c in courses], pagination=meta)


async def course_statistics(
    db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None
) -> CourseStatistics:
    stmt = select(
        func.count(Course.id),
        func.coalesce(func.sum(Course.current_enrolled), 0),
        func.coalesce(func.sum(Course.price * Course.current_enrolled), 0),
        func.coalesce(func.avg(Course.price), 0),
        func.coalesce(func.sum(Course.max_students), 0),
    ).where(Course.is_active.is_(True))
    stmt = scope(identity, Resource.COURSE, branch_id).apply(stmt, Course.branch_id)
    total, enrolled, revenue, average_price, capacity = (await db.execute(stmt)).one()

    active_stmt = select(func.count(Course.id)).where(
        Course.is_active.is_(True), Course.status == CourseStatus.ACTIVE.value
    )
    active_stmt = scope(identity, Resource.COURSE, branch_id).apply(active_stmt, Course.branch_id)
    active = (await db.execute(active_stmt)).scalar_one()

    return CourseStatistics(
        total_courses=total,
        active_courses=active,
        total_enrolled=int(enrolled),
        total_revenue=float(revenue),
        average_price=round(float(average_price), 2),
        total_capacity=int(capacity),
    )


async def get_course(db: AsyncSession, identity: CurrentUser, course_id: UUID) -> CourseResponse:
    course = await get_or_404(db, Course, course_id, "Course")
    ensure_in_scope(identity, course.scope)
    return CourseResponse.model_validate(course)


async def _reload(db: AsyncSession, course: Course) -> CourseResponse:
    await db.refresh(course)
    await db.refresh(course, attribute_names=["branch"])
    return CourseResponse.model_validate(course)


async def create_course(db: AsyncSession, identity: CurrentUser, payload: CourseCreate) -> CourseResponse:
    branch_scope = parse_branch_scope(payload.branch)
    await _ensure_scope_branch_active(db, branch_scope)
    await _ensure_title_available(db, payload.title, branch_scope)

    course = Course(
        title=payload.title,
        description=payload.description,
        duration=payload.duration,
        price=_money(payload.price),
        currency=payload.currency.value,
        max_students=payload.max_students,
        current_enrolled=0,
        schedule=payload.schedule,
        instructor=payload.instructor,
        next_start=payload.next_start,
        status=payload.status.value,
        modules=payload.modules,
        created_by=identity.id,
    )
    course.scope = branch_scope
    db.add(course)
    await commit_or_conflict(db, f"Course title already exists in {describe_scope(branch_scope)}")
    logger.info("Course created id=%s title=%s scope=%s", course.id, course.title, course.scope_key)
    return await _reload(db, course)


async def update_course(
    db: AsyncSession, identity: CurrentUser, course_id: UUID, payload: CourseUpdate
) -> CourseResponse:
    course = await get_or_404(db, Course, course_id, "Course")

    branch_scope = parse_branch_scope(payload.branch) if payload.branch is not None else course.scope
    if branch_scope != course.scope:
        await _ensure_scope_branch_active(db, branch_scope)
        if course.current_enrolled > 0:
            raise ValidationFailed.for_field("branch", "Cannot move a course with enrolled students")
    title = payload.title or course.title
    if title.lower() != course.title.lower() or branch_scope != course.scope:
        await _ensure_title_available(db, title, branch_scope, exclude_id=course.id)
    if payload.max_students is not None and payload.max_students < course.current_enrolled:
        raise ValidationFailed.for_field(
            "max_students", "Max students cannot be lower than the current enrollment"
        )

    data = payload.model_dump(exclude_unset=True, exclude={"branch", "price"})
    for field, value in data.items():
        if value is None:
            continue
        setattr(course, field, value.value if hasattr(value, "value") else value)
    if payload.price is not None:
        course.price = _money(payload.price)
    course.scope = branch_scope

    await commit_or_conflict(db, f"Course title already exists in {describe_scope(branch_scope)}")
    return await _reload(db, course)


async def _ensure_no_enrollments(db: AsyncSession, course: Course) -> None:
    active_students = (
        await db.execute(
            select(func.count(Student.id)).where(Student.course_id == course.id, Student.is_active.is_(True))
        )
    ).scalar_one()
    if course.current_enrolled > 0 or active_students > 0:
        raise ResourceInUse("Cannot delete course with enrolled students")


async def delete_course(db: AsyncSession, identity: CurrentUser, course_id: UUID) -> None:
    course = await get_or_404(db, Course, course_id, "Course")
    await soft_delete(db, course, "Course", identity.id, before=lambda: _ensure_no_enrollments(db, course))


async def restore_course(db: AsyncSession, identity: CurrentUser, course_id: UUID) -> CourseResponse:
    course = await get_or_404(db, Course, course_id, "Course", include_inactive=True)

    async def _still_valid() -> None:
        await _ensure_scope_branch_active(db, course.scope)
        await _ensure_title_available(db, course.title, course.scope, exclude_id=course.id)

    await restore(db, course, "Course", identity.id, before=_still_valid)
    return await _reload(db, course)
