"""Dashboard and reports API routers. Every role may read; figures follow the caller's branch scope."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.auth.rbac import Action, Resource, check_permission
from academy.auth.schemas import CurrentUser
from academy.core.enums import BudgetPeriod
from academy.core.exceptions import ServiceError, http_error
from academy.db.session import get_db

from . import service
from .schemas import (
    ActivityItem,
    AttendanceSummaryReport,
    ComprehensiveReport,
    DashboardStats,
    EnrollmentPoint,
    ExportFormat,
    FinancialSummaryReport,
    ReportType,
    RoleCount,
    StudentPerformanceReport,
)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

dashboard_router = APIRouter(
    prefix="/api/v1/dashboard",
    tags=["dashboard"],
    dependencies=[Depends(check_permission(Resource.REPORT, Action.READ))],
)
router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


# ----- Dashboard -----
@dashboard_router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    branch_id: Optional[UUID] = Query(None, description="SuperAdmin only; ignored for other roles"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.dashboard_stats(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@dashboard_router.get("/recent-activity", response_model=List[ActivityItem])
async def recent_activity(
    limit: int = Query(10, ge=1, le=50),
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.recent_activity(db, current_user, limit, branch_id)
    except ServiceError as e:
        raise http_error(e)


@dashboard_router.get("/users-by-role", response_model=List[RoleCount])
async def users_by_role(
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.users_by_role(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@dashboard_router.get("/enrollment-chart", response_model=List[EnrollmentPoint])
async def enrollment_chart(
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """New students per month, last six months."""
    try:
        return await service.enrollment_chart(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


# ----- Reports -----
@router.get(
    "/comprehensive",
    response_model=ComprehensiveReport,
    dependencies=[Depends(check_permission(Resource.REPORT, Action.READ))],
)
async def comprehensive_report(
    branch_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    period: Optional[BudgetPeriod] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.comprehensive_report(db, current_user, branch_id, date_from, date_to, period)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/student-performance",
    response_model=StudentPerformanceReport,
    dependencies=[Depends(check_permission(Resource.REPORT, Action.READ))],
)
async def student_performance_report(
    branch_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.student_performance_report(db, current_user, branch_id)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/financial-summary",
    response_model=FinancialSummaryReport,
    dependencies=[Depends(check_permission(Resource.REPORT, Action.READ))],
)
async def financial_summary_report(
    branch_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    period: Optional[BudgetPeriod] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.financial_summary_report(db, current_user, branch_id, date_from, date_to, period)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/attendance-summary",
    response_model=AttendanceSummaryReport,
    dependencies=[Depends(check_permission(Resource.REPORT, Action.READ))],
)
async def attendance_summary_report(
    branch_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.attendance_summary_report(db, current_user, branch_id, date_from, date_to)
    except ServiceError as e:
        raise http_error(e)


@router.get(
    "/export",
    dependencies=[Depends(check_permission(Resource.REPORT, Action.EXPORT))],
)
async def export_report(
    report_type: ReportType = Query(..., alias="type"),
    export_format: ExportFormat = Query(ExportFormat.JSON, alias="format"),
    branch_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    period: Optional[BudgetPeriod] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Metric/Value sections as JSON, or an Excel workbook with one sheet per section."""
    try:
        sections = await service.build_report_sections(
            db, current_user, report_type, branch_id, date_from, date_to, period
        )
    except ServiceError as e:
        raise http_error(e)

    if export_format == ExportFormat.JSON:
        return {title: [row.model_dump() for row in rows] for title, rows in sections.items()}

    filename = f"{report_type.value}_report_{date.today().isoformat()}.xlsx"
    return Response(
        content=service.sections_to_xlsx(sections),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
