"""Attendance API router."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import AttendanceStatus
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import AttendancePageParams, Page
from academy.db.session import get_db

from . import service
from .schemas import (
    AttendanceBulkMark,
    AttendanceMark,
    AttendanceResponse,
    AttendanceStats,
    AttendanceUpdate,
    BulkMarkResult,
    CourseRoster,
)

router = APIRouter(prefix="/api/v1/attendance", tags=["attendance"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get(
    "",
    response_model=Page[AttendanceResponse],
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.LIST))],
)
async def list_attendance(
    params: AttendancePageParams = Depends(),
    course_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    att_date: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    att_status: Optional[AttendanceStatus] = Query(None, alias="status"),
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_attendance(
            db,
            current_user,
            params,
            branch_id,
            course_id=course_id,
            student_id=student_id,
            on=att_date,
            date_from=date_from,
            date_to=date_to,
            status=att_status,
        )
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/export",
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.EXPORT))],
)
async def export_attendance(
    course_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    att_status: Optional[AttendanceStatus] = Query(None, alias="status"),
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    """Download filtered attendance as an Excel workbook."""
    try:
        content = await service.export_attendance(
            db,
            current_user,
            branch_id,
            course_id=course_id,
            student_id=student_id,
            date_from=date_from,
            date_to=date_to,
            status=att_status,
        )
    except ServiceError as e:
        raise http_error(e)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=attendance_{date.today().isoformat()}.xlsx"},
    )


@router.get(
    "/students/{course_id}",
    response_model=CourseRoster,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.READ))],
)
async def course_roster(
    course_id: UUID,
    att_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Students of a course with their attendance for the day (defaults to today)."""
    try:
        return await service.course_roster(db, current_user, course_id, att_date or date.today())
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/stats/{course_id}",
    response_model=AttendanceStats,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.STATS))],
)
async def attendance_stats(
    course_id: UUID,
    att_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.attendance_stats(db, current_user, course_id, att_date or date.today())
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=AttendanceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.CREATE))],
)
async def mark_attendance(
    payload: AttendanceMark,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Mark one student. 201 when created, 200 when an existing record was overwritten."""
    try:
        record, created = await service.mark_attendance(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)
    if not created:
        response.status_code = status.HTTP_200_OK
    return record


@router.post(
    "/bulk",
    response_model=BulkMarkResult,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.CREATE))],
)
async def mark_attendance_bulk(
    payload: AttendanceBulkMark,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.mark_attendance_bulk(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{attendance_id}",
    response_model=AttendanceResponse,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.UPDATE))],
)
async def update_attendance(
    attendance_id: UUID,
    payload: AttendanceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_attendance(db, current_user, attendance_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{attendance_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.DELETE))],
)
async def delete_attendance(
    attendance_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_attendance(db, current_user, attendance_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{attendance_id}/restore",
    response_model=AttendanceResponse,
    dependencies=[Depends(check_permission(Resource.ATTENDANCE, Action.RESTORE))],
)
async def restore_attendance(
    attendance_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_attendance(db, current_user, attendance_id)
    except ServiceError as e:
        raise http_error(e)
