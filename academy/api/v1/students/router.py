"""Students API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import StudentStatus
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import Page, PageParams
from academy.db.session import get_db

from . import service
from .schemas import StudentCreate, StudentResponse, StudentStatistics, StudentUpdate

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.get(
    "",
    response_model=Page[StudentResponse],
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.LIST))],
)
async def list_students(
    params: PageParams = Depends(),
    student_status: Optional[StudentStatus] = Query(None, alias="status"),
    course_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None),
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.list_students(db, current_user, params, student_status, course_id, search, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/statistics",
    response_model=StudentStatistics,
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.STATS))],
)
async def student_statistics(
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.student_statistics(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/{student_id}",
    response_model=StudentResponse,
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.READ))],
)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_student(db, current_user, student_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=StudentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.CREATE))],
)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Enroll a student. Generates the Student ID and takes a seat in the course."""
    try:
        return await service.create_student(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{student_id}",
    response_model=StudentResponse,
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.UPDATE))],
)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Changing course moves the seat and issues a new Student ID."""
    try:
        return await service.update_student(db, current_user, student_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{student_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.DELETE))],
)
async def delete_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        await service.delete_student(db, current_user, student_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{student_id}/restore",
    response_model=StudentResponse,
    dependencies=[Depends(check_permission(Resource.STUDENT, Action.RESTORE))],
)
async def restore_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_student(db, current_user, student_id)
    except ServiceError as e:
        raise http_error(e)
