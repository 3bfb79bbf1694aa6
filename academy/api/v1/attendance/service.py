import io
import logging
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from openpyxl import Workbook
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.courses.schemas import CourseSummary
from academy.api.v1.students.schemas import StudentSummary
from academy.auth.models import User
from academy.auth.rbac import Action, Resource, ensure_can_modify_attendance, ensure_in_scope, scope
from academy.auth.schemas import CurrentUser
from academy.core.enums import AttendanceStatus
from academy.core.exceptions import InvalidReference, ServiceError
from academy.core.models import Attendance, Course, Student
from academy.core.models.mixins import utcnow
from academy.core.persistence import get_or_404, restore, soft_delete
from academy.core.schemas import Page, PageParams, paginate

from .schemas import (
    AttendanceBulkMark,
    AttendanceMark,
    AttendanceResponse,
    AttendanceStats,
    AttendanceUpdate,
    BulkFailure,
    BulkMarkResult,
    CourseRoster,
    RosterEntry,
)

logger = logging.getLogger(__name__)

TIMED_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.LATE)
EXPORT_HEADERS = (
    "Date",
    "Student ID",
    "Student Name",
    "Course",
    "Branch",
    "Status",
    "Time In",
    "Notes",
    "Marked By",
)
EXPORT_MAX_ROWS = 10000


def resolve_time_in(status: AttendanceStatus, time_in: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """Present/Late default to the current HH:MM; Absent/Excused never carry a time."""
    if AttendanceStatus(status) not in TIMED_STATUSES:
        return None
    if time_in:
        return time_in
    return (now or datetime.now()).strftime("%H:%M")


def _dialect_insert(db: AsyncSession):
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def _upsert(
    db: AsyncSession,
    student: Student,
    mark: AttendanceMark,
    actor_id: UUID,
) -> Tuple[bool, bool]:
    """Insert-or-overwrite keyed by (student, course, date). Returns (created, changed).

    changed is False when an existing active row already held these values.
    marked_by and created_at are written on insert only.
    """
    result = await db.execute(
        select(
            Attendance.status, Attendance.time_in, Attendance.notes, Attendance.branch_id, Attendance.is_active
        ).where(
            Attendance.student_id == student.id,
            Attendance.course_id == mark.course_id,
            Attendance.date == mark.date,
        )
    )
    existing = result.first()
    created = existing is None

    now = utcnow()
    time_in = resolve_time_in(mark.status, mark.time_in)
    changed = created or tuple(existing) != (mark.status.value, time_in, mark.notes, student.branch_id, True)
    insert = _dialect_insert(db)
    stmt = insert(Attendance).values(
        id=uuid.uuid4(),
        student_id=student.id,
        course_id=mark.course_id,
        branch_id=student.branch_id,
        date=mark.date,
        status=mark.status.value,
        time_in=time_in,
        notes=mark.notes,
        marked_by=actor_id,
        last_modified_by=actor_id,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["student_id", "course_id", "date"],
        set_={
            "status": mark.status.value,
            "time_in": time_in,
            "notes": mark.notes,
            "branch_id": student.branch_id,
            "last_modified_by": actor_id,
            "is_active": True,
            "deleted_at": None,
            "updated_at": now,
        },
    )
    await db.execute(stmt)
    return created, changed


async def _load_markable(
    db: AsyncSession, identity: CurrentUser, mark: AttendanceMark, student: Optional[Student]
) -> Student:
    if student is None or not student.is_active:
        raise InvalidReference("Invalid or inactive student")
    ensure_in_scope(identity, student.branch_id)
    course = await db.get(Course, mark.course_id)
    if course is None or not course.is_active:
        raise InvalidReference("Invalid or inactive course")
    if not course.scope.offered_to(student.branch_id):
        raise InvalidReference("Course is not available for the student's branch")
    return student


async def _get_record(db: AsyncSession, student_id: UUID, course_id: UUID, on: date) -> Attendance:
    result = await db.execute(
        select(Attendance)
        .where(Attendance.student_id == student_id, Attendance.course_id == course_id, Attendance.date == on)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def mark_attendance(
    db: AsyncSession, identity: CurrentUser, payload: AttendanceMark
) -> Tuple[AttendanceResponse, bool]:
    """Single upsert. Returns the record and whether it was newly created."""
    student = await db.get(Student, payload.student_id)
    await _load_markable(db, identity, payload, student)
    try:
        created, _ = await _upsert(db, student, payload, identity.id)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise InvalidReference("Invalid student or course") from e
    record = await _get_record(db, payload.student_id, payload.course_id, payload.date)
    return AttendanceResponse.model_validate(record), created


async def mark_attendance_bulk(
    db: AsyncSession, identity: CurrentUser, payload: AttendanceBulkMark
) -> BulkMarkResult:
    """
    Each record is an independent upsert committed on its own; a failing record
    is reported and does not undo earlier ones. A student outside the caller's
    branch rejects the whole batch before anything is written.
    """
    student_ids = {r.student_id for r in payload.records}
    result = await db.execute(select(Student).where(Student.id.in_(student_ids)))
    students: Dict[UUID, Student] = {s.id: s for s in result.scalars().unique().all()}
    for student in students.values():
        ensure_in_scope(identity, student.branch_id)

    upserted = updated = matched = 0
    failed: List[BulkFailure] = []
    for index, mark in enumerate(payload.records):
        try:
            # Re-read: a rolled back record expires everything loaded before it
            student = await db.get(Student, mark.student_id, populate_existing=True)
            await _load_markable(db, identity, mark, student)
            created, changed = await _upsert(db, student, mark, identity.id)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            failed.append(
                BulkFailure(index=index, student_id=mark.student_id, kind="InvalidReference", message="Invalid student or course")
            )
            continue
        except ServiceError as e:
            failed.append(BulkFailure(index=index, student_id=mark.student_id, kind=e.kind, message=e.message))
            continue
        if created:
            upserted += 1
            continue
        matched += 1
        if changed:
            updated += 1

    logger.info(
        "Bulk attendance by=%s upserted=%s updated=%s matched=%s failed=%s",
        identity.id,
        upserted,
        updated,
        matched,
        len(failed),
    )
    return BulkMarkResult(upserted=upserted, updated=updated, matched=matched, failed=failed)


def _filtered(
    stmt,
    course_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
    on: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[AttendanceStatus] = None,
):
    if course_id is not None:
        stmt = stmt.where(Attendance.course_id == course_id)
    if student_id is not None:
        stmt = stmt.where(Attendance.student_id == student_id)
    if on is not None:
        stmt = stmt.where(Attendance.date == on)
    else:
        if date_from is not None:
            stmt = stmt.where(Attendance.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Attendance.date <= date_to)
    if status is not None:
        stmt = stmt.where(Attendance.status == status.value)
    return stmt


async def list_attendance(
    db: AsyncSession,
    identity: CurrentUser,
    params: PageParams,
    branch_id: Optional[UUID] = None,
    **filters,
) -> Page[AttendanceResponse]:
    stmt = select(Attendance).where(Attendance.is_active.is_(True)).order_by(
        Attendance.date.desc(), Attendance.created_at.desc()
    )
    stmt = scope(identity, Resource.ATTENDANCE, branch_id).apply(stmt, Attendance.branch_id)
    stmt = _filtered(stmt, **filters)
    records, meta = await paginate(db, stmt, params)
    return Page[AttendanceResponse](items=[AttendanceResponse.model_validate(r) for r in records], pagination=meta)


async def _visible_course(db: AsyncSession, identity: CurrentUser, course_id: UUID) -> Course:
    course = await get_or_404(db, Course, course_id, "Course")
    ensure_in_scope(identity, course.scope)
    return course


async def course_roster(db: AsyncSession, identity: CurrentUser, course_id: UUID, on: date) -> CourseRoster:
    """Active students of a course with their attendance for one day (None if not yet marked)."""
    course = await _visible_course(db, identity, course_id)
    student_stmt = select(Student).where(Student.course_id == course.id, Student.is_active.is_(True))
    student_stmt = scope(identity, Resource.STUDENT).apply(student_stmt, Student.branch_id).order_by(Student.full_name)
    students = (await db.execute(student_stmt)).scalars().unique().all()

    records = (
        await db.execute(
            select(Attendance).where(
                Attendance.course_id == course.id,
                Attendance.date == on,
                Attendance.is_active.is_(True),
                Attendance.student_id.in_([s.id for s in students]),
            )
        )
    ).scalars().unique().all()
    by_student = {r.student_id: r for r in records}

    return CourseRoster(
        course=CourseSummary.model_validate(course),
        date=on,
        students=[
            RosterEntry(
                student=StudentSummary.model_validate(s),
                attendance=AttendanceResponse.model_validate(by_student[s.id]) if s.id in by_student else None,
            )
            for s in students
        ],
    )


async def attendance_stats(db: AsyncSession, identity: CurrentUser, course_id: UUID, on: date) -> AttendanceStats:
    course = await _visible_course(db, identity, course_id)
    query_scope = scope(identity, Resource.ATTENDANCE)

    by_status_stmt = query_scope.apply(
        select(Attendance.status, func.count(Attendance.id)).where(
            Attendance.course_id == course.id, Attendance.date == on, Attendance.is_active.is_(True)
        ),
        Attendance.branch_id,
    ).group_by(Attendance.status)
    by_status = {s.value: 0 for s in AttendanceStatus}
    by_status.update({status: count for status, count in (await db.execute(by_status_stmt)).all()})

    enrolled_stmt = query_scope.apply(
        select(func.count(Student.id)).where(Student.course_id == course.id, Student.is_active.is_(True)),
        Student.branch_id,
    )
    total_enrolled = (await db.execute(enrolled_stmt)).scalar_one()
    total = sum(by_status.values())

    return AttendanceStats(
        course_id=course.id,
        date=on,
        by_status=by_status,
        total=total,
        total_enrolled=total_enrolled,
        not_marked=max(0, total_enrolled - total),
    )


async def update_attendance(
    db: AsyncSession, identity: CurrentUser, attendance_id: UUID, payload: AttendanceUpdate
) -> AttendanceResponse:
    record = await get_or_404(db, Attendance, attendance_id, "Attendance record")
    ensure_can_modify_attendance(identity, record.branch_id)

    status = payload.status or AttendanceStatus(record.status)
    record.status = status.value
    if payload.notes is not None:
        record.notes = payload.notes
    record.time_in = resolve_time_in(status, payload.time_in or record.time_in)
    record.last_modified_by = identity.id
    await db.commit()
    await db.refresh(record)
    return AttendanceResponse.model_validate(record)


async def delete_attendance(db: AsyncSession, identity: CurrentUser, attendance_id: UUID) -> None:
    record = await get_or_404(db, Attendance, attendance_id, "Attendance record")
    ensure_can_modify_attendance(identity, record.branch_id, Action.DELETE)
    await soft_delete(db, record, "Attendance record", identity.id)


async def restore_attendance(db: AsyncSession, identity: CurrentUser, attendance_id: UUID) -> AttendanceResponse:
    record = await get_or_404(db, Attendance, attendance_id, "Attendance record", include_inactive=True)
    ensure_can_modify_attendance(identity, record.branch_id, Action.RESTORE)
    await restore(db, record, "Attendance record", identity.id)
    await db.refresh(record)
    return AttendanceResponse.model_validate(record)


async def export_attendance(
    db: AsyncSession,
    identity: CurrentUser,
    branch_id: Optional[UUID] = None,
    **filters,
) -> bytes:
    """Workbook of the filtered, scoped records (newest first)."""
    stmt = select(Attendance).where(Attendance.is_active.is_(True)).order_by(Attendance.date.desc())
    stmt = scope(identity, Resource.ATTENDANCE, branch_id).apply(stmt, Attendance.branch_id)
    stmt = _filtered(stmt, **filters).limit(EXPORT_MAX_ROWS)
    records = (await db.execute(stmt)).scalars().unique().all()

    marker_ids = {r.marked_by for r in records}
    markers: Dict[UUID, str] = {}
    if marker_ids:
        rows = await db.execute(select(User.id, User.full_name).where(User.id.in_(marker_ids)))
        markers = {user_id: name for user_id, name in rows.all()}

    wb = Workbook()
    ws = wb.active
    ws.title = "Attendance"
    ws.append(list(EXPORT_HEADERS))
    for r in records:
        student = r.student
        ws.append(
            [
                r.date.isoformat(),
                student.student_code if student else "",
                student.full_name if student else "",
                r.course.title if r.course else "",
                student.branch.name if student and student.branch else "",
                r.status,
                r.time_in or "",
                r.notes or "",
                markers.get(r.marked_by, ""),
            ]
        )

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
