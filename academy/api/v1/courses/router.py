"""Courses API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import CourseStatus
from academy.core.exceptions import ServiceError, http_error
from academy.core.schemas import Page, PageParams
from academy.db.session import get_db

from . import service
from .schemas import CourseCreate, CourseResponse, CourseStatistics, CourseUpdate

router = APIRouter(prefix="/api/v1/courses", tags=["courses"])


@router.get(
    "",
    response_model=Page[CourseResponse],
    dependencies=[Depends(check_permission(Resource.COURSE, Action.LIST))],
)
async def list_courses(
    params: PageParams = Depends(),
    course_status: Optional[CourseStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Own-branch courses plus courses offered to all branches."""
    try:
        return await service.list_courses(db, current_user, params, course_status, search, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/statistics",
    response_model=CourseStatistics,
    dependencies=[Depends(check_permission(Resource.COURSE, Action.STATS))],
)
async def course_statistics(
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.course_statistics(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/{course_id}",
    response_model=CourseResponse,
    dependencies=[Depends(check_permission(Resource.COURSE, Action.READ))],
)
async def get_course(
    course_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_course(db, current_user, course_id)
    except ServiceError as e:
        raise http_error(e)


@router.post(
    "",
    response_model=CourseResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission(Resource.COURSE, Action.CREATE))],
)
async def create_course(
    payload: CourseCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.create_course(db, current_user, payload)
    except ServiceError as e:
        raise http_error(e)


@router.put(
    "/{course_id}",
    response_model=CourseResponse,
    dependencies=[Depends(check_permission(Resource.COURSE, Action.UPDATE))],
)
async def update_course(
    course_id: UUID,
    payload: CourseUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.update_course(db, current_user, course_id, payload)
    except ServiceError as e:
        raise http_error(e)


@router.delete(
    "/{course_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission(Resource.COURSE, Action.DELETE))],
)
async def delete_course(
    course_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Blocked while students are enrolled."""
    try:
        await service.delete_course(db, current_user, course_id)
    except ServiceError as e:
        raise http_error(e)


@router.patch(
    "/{course_id}/restore",
    response_model=CourseResponse,
    dependencies=[Depends(check_permission(Resource.COURSE, Action.RESTORE))],
)
async def restore_course(
    course_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.restore_course(db, current_user, course_id)
    except ServiceError as e:
        raise http_error(e)
