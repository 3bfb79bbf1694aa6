import logging
from datetime import date
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.courses.service import resolve_course_for_branch
from academy.auth.rbac import Resource, ensure_in_scope, resolve_target_branch, scope
from academy.auth.schemas import CurrentUser
from academy.core.config import settings
from academy.core.enrollment import enroll_student, unenroll_student
from academy.core.enums import StudentStatus
from academy.core.exceptions import AccessDenied, CourseFull, DuplicateKey, InvalidReference, ServiceError
from academy.core.identifiers import generate_student_code, next_free_student_code
from academy.core.models import Branch, Course, Student
from academy.core.persistence import commit_or_conflict, get_or_404, is_unique_violation_on, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate

from .schemas import StudentCreate, StudentResponse, StudentStatistics, StudentUpdate

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "Email already exists"


async def _ensure_active_branch(db: AsyncSession, branch_id: UUID) -> None:
    branch = await db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise InvalidReference("Invalid or inactive branch")


async def _ensure_email_available(db: AsyncSession, email: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(Student.id).where(Student.email == email, Student.is_active.is_(True))
    if exclude_id is not None:
        stmt = stmt.where(Student.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise DuplicateKey(EMAIL_TAKEN)


async def _commit_with_student_code(
    db: AsyncSession,
    course_id: UUID,
    apply: Callable[[Course, str], Awaitable[Student]],
) -> Student:
    """
    Write a student whose code is derived from the course's enrollment counter.

    `apply` receives a freshly loaded course and the code to use, stages the
    student write and the counter changes, and returns the student. The first
    code comes from the enrollment counter. On a collision: roll back, reload
    the course and retry with the next code after the highest one issued under
    the prefix, up to GENERATED_ID_ATTEMPTS times.
    """
    attempts = max(1, settings.generated_id_attempts)
    for attempt in range(1, attempts + 1):
        course = await db.get(Course, course_id, populate_existing=True)
        if attempt == 1:
            code = generate_student_code(course.title, course.current_enrolled)
        else:
            code = await next_free_student_code(db, course.title)
        try:
            student = await apply(course, code)
            await db.commit()
            return student
        except IntegrityError as e:
            await db.rollback()
            if not is_unique_violation_on(e, "student_code"):
                raise DuplicateKey(EMAIL_TAKEN) from e
            logger.warning(
                "Student code collision %s on course_id=%s attempt=%s/%s", code, course_id, attempt, attempts
            )
        except ServiceError:
            await db.rollback()
            raise
    raise DuplicateKey("Could not generate a unique student ID, please retry", retryable=True)


async def _reload(db: AsyncSession, student: Student) -> StudentResponse:
    await db.refresh(student)
    return StudentResponse.model_validate(student)


def _filtered(stmt, status: Optional[StudentStatus], course_id: Optional[UUID], search: Optional[str]):
    if status is not None:
        stmt = stmt.where(Student.status == status.value)
    if course_id is not None:
        stmt = stmt.where(Student.course_id == course_id)
    if search:
        term = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(Student.full_name.ilike(term), Student.email.ilike(term), Student.student_code.ilike(term))
        )
    return stmt


async def list_students(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    status: Optional[StudentStatus] = None,
    course_id: Optional[UUID] = None,
    search: Optional[str] = None,
    branch_id: Optional[UUID] = None,
) -> Page[StudentResponse]:
    stmt = select(Student).where(Student.is_active.is_(True)).order_by(Student.created_at.desc())
    stmt = scope(identity, Resource.STUDENT, branch_id).apply(stmt, Student.branch_id)
    stmt = _filtered(stmt, status, course_id, search)
    students, meta = await paginate(db, stmt, params)
    return Page[StudentResponse](items=[StudentResponse.model_validate(s) for s in students], pagination=meta)


async def student_statistics(
    db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None
) -> StudentStatistics:
    query_scope = scope(identity, Resource.STUDENT, branch_id)
    by_status_stmt = query_scope.apply(
        select(Student.status, func.count(Student.id)).where(Student.is_active.is_(True)),
        Student.branch_id,
    ).group_by(Student.status)
    by_status = {status: count for status, count in (await db.execute(by_status_stmt)).all()}

    gpa_stmt = query_scope.apply(
        select(func.avg(Student.gpa)).where(Student.is_active.is_(True), Student.gpa.is_not(None)),
        Student.branch_id,
    )
    average_gpa = (await db.execute(gpa_stmt)).scalar_one()

    return StudentStatistics(
        total=sum(by_status.values()),
        active=by_status.get(StudentStatus.ACTIVE.value, 0),
        graduated=by_status.get(StudentStatus.GRADUATED.value, 0),
        average_gpa=round(float(average_gpa or 0), 2),
        by_status=by_status,
    )


async def get_student(db: AsyncSession, identity: CurrentUser, student_id: UUID) -> StudentResponse:
    student = await get_or_404(db, Student, student_id, "Student")
    ensure_in_scope(identity, student.branch_id)
    return StudentResponse.model_validate(student)


async def create_student(db: AsyncSession, identity: CurrentUser, payload: StudentCreate) -> StudentResponse:
    branch_id = resolve_target_branch(identity, payload.branch_id)
    await _ensure_active_branch(db, branch_id)
    course = await resolve_course_for_branch(db, payload.course_id, branch_id)
    if course.is_full:
        raise CourseFull("Course is full")
    await _ensure_email_available(db, payload.email)

    data = payload.model_dump(mode="json", exclude={"branch_id", "course_id", "enrollment_date", "date_of_birth"})

    async def _stage(fresh_course: Course, code: str) -> Student:
        student = Student(
            **data,
            student_code=code,
            date_of_birth=payload.date_of_birth,
            enrollment_date=payload.enrollment_date or date.today(),
            course_id=fresh_course.id,
            branch_id=branch_id,
            created_by=identity.id,
        )
        db.add(student)
        await enroll_student(db, fresh_course)
        return student

    student = await _commit_with_student_code(db, course.id, _stage)
    logger.info("Student created id=%s code=%s course_id=%s", student.id, student.student_code, course.id)
    return await _reload(db, student)


async def update_student(
    db: AsyncSession, identity: CurrentUser, student_id: UUID, payload: StudentUpdate
) -> StudentResponse:
    student = await get_or_404(db, Student, student_id, "Student")
    ensure_in_scope(identity, student.branch_id)

    target_branch_id = student.branch_id
    if payload.branch_id is not None and payload.branch_id != student.branch_id:
        if not identity.is_super_admin:
            raise AccessDenied("Cannot move students to other branches")
        await _ensure_active_branch(db, payload.branch_id)
        target_branch_id = payload.branch_id

    old_course_id = student.course_id
    course_changes = payload.course_id is not None and payload.course_id != old_course_id
    if course_changes:
        new_course = await resolve_course_for_branch(db, payload.course_id, target_branch_id)
        # Fail before either counter is touched
        if new_course.is_full:
            raise CourseFull("Course is full")
    elif target_branch_id != student.branch_id:
        await resolve_course_for_branch(db, old_course_id, target_branch_id)

    if payload.email is not None and payload.email != student.email:
        await _ensure_email_available(db, payload.email, exclude_id=student.id)

    data = payload.model_dump(mode="json", exclude_unset=True, exclude={"branch_id", "course_id"})
    for key in ("date_of_birth", "enrollment_date"):
        if key in data:
            data[key] = getattr(payload, key)
    data = {k: v for k, v in data.items() if v is not None or k in ("gpa", "level")}

    def _apply_fields(target: Student) -> None:
        for field, value in data.items():
            setattr(target, field, value)
        target.branch_id = target_branch_id

    if not course_changes:
        _apply_fields(student)
        await commit_or_conflict(db, EMAIL_TAKEN)
        return await _reload(db, student)

    async def _stage(fresh_course: Course, code: str) -> Student:
        # Reload: a rolled back attempt expires pending changes
        target = await db.get(Student, student_id, populate_existing=True)
        old_course = await db.get(Course, old_course_id)
        _apply_fields(target)
        target.course_id = fresh_course.id
        target.student_code = code
        await enroll_student(db, fresh_course)
        await unenroll_student(db, old_course)
        return target

    student = await _commit_with_student_code(db, payload.course_id, _stage)
    logger.info(
        "Student moved id=%s from course_id=%s to course_id=%s code=%s",
        student.id,
        old_course_id,
        payload.course_id,
        student.student_code,
    )
    return await _reload(db, student)


async def delete_student(db: AsyncSession, identity: CurrentUser, student_id: UUID) -> None:
    student = await get_or_404(db, Student, student_id, "Student")
    ensure_in_scope(identity, student.branch_id)

    async def _release_seat() -> None:
        course = await db.get(Course, student.course_id)
        if course is not None:
            await unenroll_student(db, course)

    await soft_delete(db, student, "Student", identity.id, before=_release_seat)


async def restore_student(db: AsyncSession, identity: CurrentUser, student_id: UUID) -> StudentResponse:
    student = await get_or_404(db, Student, student_id, "Student", include_inactive=True)
    ensure_in_scope(identity, student.branch_id)

    async def _retake_seat() -> None:
        await _ensure_active_branch(db, student.branch_id)
        course = await resolve_course_for_branch(db, student.course_id, student.branch_id)
        await _ensure_email_available(db, student.email, exclude_id=student.id)
        await enroll_student(db, course)

    await restore(db, student, "Student", identity.id, before=_retake_seat)
    return await _reload(db, student)
