"""
Read-side aggregation for the dashboard and reports.

Every figure is computed under the caller's branch scope; nothing here writes.
"""
import io
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from openpyxl import Workbook
from sqlalchemy import extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.budgets.service import budget_statistics
from academy.api.v1.courses.service import course_statistics
from academy.api.v1.students.service import student_statistics
from academy.api.v1.transactions.service import transaction_statistics
from academy.api.v1.users.schemas import UserStats
from academy.auth.models import User
from academy.auth.rbac import Action, Resource, can_perform, scope
from academy.auth.schemas import BranchInfo, CurrentUser
from academy.core.enums import AttendanceStatus, BudgetPeriod
from academy.core.models import Attendance, Branch, Student, Transaction

from .schemas import (
    ActivityItem,
    AttendanceSummaryReport,
    BranchTotals,
    ComprehensiveReport,
    DashboardStats,
    EnrollmentPoint,
    FinancialSummaryReport,
    MetricRow,
    ReportFilters,
    ReportSections,
    ReportType,
    RoleCount,
    StudentPerformanceReport,
)

logger = logging.getLogger(__name__)

RECENT_DAYS = 30
CHART_MONTHS = 6
ATTENDANCE_WINDOW_DAYS = 30
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
PRESENT_STATUSES = (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _report_branch(identity: CurrentUser, branch_id: Optional[UUID]) -> Optional[UUID]:
    """Branch the report is narrowed to, or None for all branches."""
    return scope(identity, Resource.REPORT, branch_id).branch_id


async def _branch_info(db: AsyncSession, branch_id: Optional[UUID]) -> Optional[BranchInfo]:
    if branch_id is None:
        return None
    branch = await db.get(Branch, branch_id)
    return BranchInfo.model_validate(branch) if branch is not None else None


async def user_stats(db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None) -> UserStats:
    query_scope = scope(identity, Resource.REPORT, branch_id)
    base = query_scope.apply(select(func.count(User.id)).where(User.is_active.is_(True)), User.branch_id)

    total = (await db.execute(base)).scalar_one()
    cutoff = _now() - timedelta(days=RECENT_DAYS)
    recent = (await db.execute(base.where(User.created_at >= cutoff))).scalar_one()
    by_role_stmt = query_scope.apply(
        select(User.role, func.count(User.id)).where(User.is_active.is_(True)), User.branch_id
    ).group_by(User.role)
    by_role = {role: count for role, count in (await db.execute(by_role_stmt)).all()}
    return UserStats(total=total, recent=recent, by_role=by_role)


async def _branch_totals(db: AsyncSession) -> BranchTotals:
    total = (await db.execute(select(func.count(Branch.id)))).scalar_one()
    active = (await db.execute(select(func.count(Branch.id)).where(Branch.is_active.is_(True)))).scalar_one()
    users = (await db.execute(select(func.count(User.id)).where(User.is_active.is_(True)))).scalar_one()
    return BranchTotals(
        total_branches=total,
        active_branches=active,
        total_users=users,
        average_users_per_branch=round(users / total) if total else 0,
    )


# ----- Dashboard -----
async def dashboard_stats(
    db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None
) -> DashboardStats:
    target = _report_branch(identity, branch_id)
    return DashboardStats(
        branch_info=await _branch_info(db, target),
        user_stats=await user_stats(db, identity, branch_id),
        course_stats=await course_statistics(db, identity, branch_id),
        student_stats=await student_statistics(db, identity, branch_id),
        branch_totals=await _branch_totals(db) if target is None else None,
        last_updated=_now(),
    )


async def recent_activity(
    db: AsyncSession, identity: CurrentUser, limit: int = 10, branch_id: Optional[UUID] = None
) -> List[ActivityItem]:
    """Latest registrations, enrollments and (for finance roles) transactions, newest first."""
    query_scope = scope(identity, Resource.REPORT, branch_id)
    items: List[ActivityItem] = []

    users = await db.execute(
        query_scope.apply(select(User).where(User.is_active.is_(True)), User.branch_id)
        .order_by(User.created_at.desc())
        .limit(limit)
    )
    for user in users.scalars().unique():
        items.append(
            ActivityItem(
                id=user.id,
                type="user_registration",
                message=f"New {user.role} registered: {user.full_name}",
                details={
                    "username": user.username,
                    "role": user.role,
                    "branch": user.branch.name if user.branch else None,
                },
                timestamp=_as_utc(user.created_at),
            )
        )

    students = await db.execute(
        query_scope.apply(select(Student).where(Student.is_active.is_(True)), Student.branch_id)
        .order_by(Student.created_at.desc())
        .limit(limit)
    )
    for student in students.scalars().unique():
        items.append(
            ActivityItem(
                id=student.id,
                type="student_enrollment",
                message=f"Student enrolled: {student.full_name}",
                details={
                    "student_code": student.student_code,
                    "course": student.course.title if student.course else None,
                    "branch": student.branch.name if student.branch else None,
                },
                timestamp=_as_utc(student.created_at),
            )
        )

    if can_perform(identity, Resource.TRANSACTION, Action.LIST):
        transactions = await db.execute(
            query_scope.apply(select(Transaction).where(Transaction.is_active.is_(True)), Transaction.branch_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        for transaction in transactions.scalars().unique():
            items.append(
                ActivityItem(
                    id=transaction.id,
                    type="transaction",
                    message=f"{transaction.type.capitalize()} recorded: {transaction.currency} {float(transaction.amount):,.2f}",
                    details={
                        "reference": transaction.reference,
                        "category": transaction.category,
                        "status": transaction.status,
                    },
                    timestamp=_as_utc(transaction.created_at),
                )
            )

    items.sort(key=lambda item: item.timestamp, reverse=True)
    return items[:limit]


async def users_by_role(db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None) -> List[RoleCount]:
    stats = await user_stats(db, identity, branch_id)
    return [RoleCount(role=role, count=count) for role, count in sorted(stats.by_role.items())]


def _month_starts(today: date, months: int) -> List[date]:
    """First day of each of the last `months` months, oldest first, ending with the current month."""
    starts = []
    year, month = today.year, today.month
    for _ in range(months):
        starts.append(date(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


async def enrollment_chart(
    db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None, today: Optional[date] = None
) -> List[EnrollmentPoint]:
    """New students per month over the last six months, empty months included."""
    starts = _month_starts(today or date.today(), CHART_MONTHS)
    year_col = extract("year", Student.enrollment_date)
    month_col = extract("month", Student.enrollment_date)
    stmt = scope(identity, Resource.REPORT, branch_id).apply(
        select(year_col, month_col, func.count(Student.id)).where(
            Student.is_active.is_(True), Student.enrollment_date >= starts[0]
        ),
        Student.branch_id,
    ).group_by(year_col, month_col)
    counts = {(int(y), int(m)): c for y, m, c in (await db.execute(stmt)).all()}
    return [
        EnrollmentPoint(year=s.year, month=MONTH_NAMES[s.month - 1], new_students=counts.get((s.year, s.month), 0))
        for s in starts
    ]


# ----- Reports -----
async def comprehensive_report(
    db: AsyncSession,
    identity: CurrentUser,
    branch_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    period: Optional[BudgetPeriod] = None,
) -> ComprehensiveReport:
    return ComprehensiveReport(
        branch_info=await _branch_info(db, _report_branch(identity, branch_id)),
        user_stats=await user_stats(db, identity, branch_id),
        student_stats=await student_statistics(db, identity, branch_id),
        course_stats=await course_statistics(db, identity, branch_id),
        transaction_stats=await transaction_statistics(db, identity, branch_id, date_from, date_to),
        budget_stats=await budget_statistics(db, identity, branch_id, period),
        generated_at=_now(),
        filters=ReportFilters(
            branch_id=branch_id,
            date_from=date_from,
            date_to=date_to,
            period=period.value if period else None,
        ),
    )


async def student_performance_report(
    db: AsyncSession, identity: CurrentUser, branch_id: Optional[UUID] = None
) -> StudentPerformanceReport:
    students = await student_statistics(db, identity, branch_id)
    courses = await course_statistics(db, identity, branch_id)
    return StudentPerformanceReport(
        total_students=students.total,
        active_students=students.active,
        graduated_students=students.graduated,
        average_gpa=students.average_gpa,
        total_courses=courses.total_courses,
        active_courses=courses.active_courses,
        total_enrolled=courses.total_enrolled,
        average_enrollment_per_course=round(courses.total_enrolled / courses.total_courses)
        if courses.total_courses
        else 0,
        generated_at=_now(),
    )


async def financial_summary_report(
    db: AsyncSession,
    identity: CurrentUser,
    branch_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    period: Optional[BudgetPeriod] = None,
) -> FinancialSummaryReport:
    transactions = await transaction_statistics(db, identity, branch_id, date_from, date_to)
    budgets = await budget_statistics(db, identity, branch_id, period)
    return FinancialSummaryReport(
        total_income=transactions.total_income,
        total_expenses=transactions.total_expenses,
        net_profit=transactions.net_profit,
        pending_income=transactions.pending_income,
        pending_expenses=transactions.pending_expenses,
        total_budgets=budgets.total_budgets,
        total_allocated=budgets.total_allocated,
        total_spent=budgets.total_spent,
        budget_utilization=budgets.overall_utilization,
        generated_at=_now(),
    )


async def attendance_summary_report(
    db: AsyncSession,
    identity: CurrentUser,
    branch_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> AttendanceSummaryReport:
    """Attendance rates from the records in [date_from, date_to], last 30 days by default."""
    today = date.today()
    date_to = date_to or today
    date_from = date_from or date_to - timedelta(days=ATTENDANCE_WINDOW_DAYS - 1)
    query_scope = scope(identity, Resource.REPORT, branch_id)

    by_status_stmt = query_scope.apply(
        select(Attendance.status, func.count(Attendance.id)).where(
            Attendance.is_active.is_(True), Attendance.date >= date_from, Attendance.date <= date_to
        ),
        Attendance.branch_id,
    ).group_by(Attendance.status)
    by_status: Dict[str, int] = {status: count for status, count in (await db.execute(by_status_stmt)).all()}
    total_records = sum(by_status.values())
    present = sum(by_status.get(s, 0) for s in PRESENT_STATUSES)

    today_stmt = query_scope.apply(
        select(Attendance.status, func.count(Attendance.id)).where(
            Attendance.is_active.is_(True), Attendance.date == today
        ),
        Attendance.branch_id,
    ).group_by(Attendance.status)
    today_counts = {status: count for status, count in (await db.execute(today_stmt)).all()}

    marked_stmt = query_scope.apply(
        select(func.count(func.distinct(Attendance.student_id))).where(
            Attendance.is_active.is_(True), Attendance.date >= date_from, Attendance.date <= date_to
        ),
        Attendance.branch_id,
    )
    students_stmt = query_scope.apply(
        select(func.count(Student.id)).where(Student.is_active.is_(True)), Student.branch_id
    )

    return AttendanceSummaryReport(
        date_from=date_from,
        date_to=date_to,
        total_records=total_records,
        by_status=by_status,
        attendance_rate=_percent(present, total_records),
        today_rate=_percent(sum(today_counts.get(s, 0) for s in PRESENT_STATUSES), sum(today_counts.values())),
        students_marked=(await db.execute(marked_stmt)).scalar_one(),
        total_students=(await db.execute(students_stmt)).scalar_one(),
        generated_at=_now(),
    )


# ----- Export -----
def _rows(pairs) -> List[MetricRow]:
    return [MetricRow(metric=metric, value=value) for metric, value in pairs]


async def build_report_sections(
    db: AsyncSession,
    identity: CurrentUser,
    report_type: ReportType,
    branch_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    period: Optional[BudgetPeriod] = None,
) -> ReportSections:
    """Metric/Value rows per sheet for the requested report type."""
    sections: ReportSections = {}

    if report_type in (ReportType.COMPREHENSIVE, ReportType.STUDENTS):
        students = await student_statistics(db, identity, branch_id)
        sections["Student Statistics"] = _rows(
            [
                ("Total Students", students.total),
                ("Active Students", students.active),
                ("Graduated Students", students.graduated),
                ("Average GPA", students.average_gpa),
            ]
        )

    if report_type in (ReportType.COMPREHENSIVE, ReportType.COURSES):
        courses = await course_statistics(db, identity, branch_id)
        sections["Course Statistics"] = _rows(
            [
                ("Total Courses", courses.total_courses),
                ("Active Courses", courses.active_courses),
                ("Total Enrolled", courses.total_enrolled),
                ("Total Revenue", courses.total_revenue),
                ("Average Price", courses.average_price),
                ("Total Capacity", courses.total_capacity),
            ]
        )

    if report_type in (ReportType.COMPREHENSIVE, ReportType.FINANCIAL):
        financial = await financial_summary_report(db, identity, branch_id, date_from, date_to, period)
        sections["Financial Statistics"] = _rows(
            [
                ("Total Income", financial.total_income),
                ("Total Expenses", financial.total_expenses),
                ("Net Profit", financial.net_profit),
                ("Pending Income", financial.pending_income),
                ("Pending Expenses", financial.pending_expenses),
            ]
        )
        sections["Budget Statistics"] = _rows(
            [
                ("Total Budgets", financial.total_budgets),
                ("Total Allocated", financial.total_allocated),
                ("Total Spent", financial.total_spent),
                ("Budget Utilization %", financial.budget_utilization),
            ]
        )

    if report_type in (ReportType.COMPREHENSIVE, ReportType.ATTENDANCE):
        attendance = await attendance_summary_report(db, identity, branch_id, date_from, date_to)
        sections["Attendance Statistics"] = _rows(
            [
                ("Period", f"{attendance.date_from.isoformat()} to {attendance.date_to.isoformat()}"),
                ("Records", attendance.total_records),
                ("Attendance Rate %", attendance.attendance_rate),
                ("Today Attendance %", attendance.today_rate),
                ("Students Marked", attendance.students_marked),
                ("Total Students", attendance.total_students),
            ]
        )

    logger.info("Report built type=%s sections=%s by=%s", report_type.value, len(sections), identity.id)
    return sections


def sections_to_xlsx(sections: ReportSections) -> bytes:
    """One sheet per section with Metric/Value columns sized to their content."""
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sections.items():
        ws = wb.create_sheet(title=title[:31])
        ws.append(["Metric", "Value"])
        for row in rows:
            ws.append([row.metric, row.value])
        ws.column_dimensions["A"].width = max([len("Metric")] + [len(r.metric) for r in rows]) + 2
        ws.column_dimensions["B"].width = max([len("Value")] + [len(str(r.value)) for r in rows]) + 2

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
