from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel

from academy.api.v1.budgets.schemas import BudgetStatistics
from academy.api.v1.courses.schemas import CourseStatistics
from academy.api.v1.students.schemas import StudentStatistics
from academy.api.v1.transactions.schemas import TransactionStatistics
from academy.api.v1.users.schemas import UserStats
from academy.auth.schemas import BranchInfo


class ReportType(str, Enum):
    COMPREHENSIVE = "comprehensive"
    STUDENTS = "students"
    COURSES = "courses"
    FINANCIAL = "financial"
    ATTENDANCE = "attendance"


class ExportFormat(str, Enum):
    JSON = "json"
    XLSX = "xlsx"


# ----- Dashboard -----
class BranchTotals(BaseModel):
    total_branches: int
    active_branches: int
    total_users: int
    average_users_per_branch: int


class DashboardStats(BaseModel):
    branch_info: Optional[BranchInfo] = None
    user_stats: UserStats
    course_stats: CourseStatistics
    student_stats: StudentStatistics
    branch_totals: Optional[BranchTotals] = None  # superAdmin across all branches
    last_updated: datetime


class ActivityItem(BaseModel):
    id: UUID
    type: str  # user_registration / student_enrollment / transaction
    message: str
    details: Dict[str, Optional[str]] = {}
    timestamp: datetime


class RoleCount(BaseModel):
    role: str
    count: int


class EnrollmentPoint(BaseModel):
    year: int
    month: str  # Jan..Dec
    new_students: int


# ----- Reports -----
class ReportFilters(BaseModel):
    branch_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    period: Optional[str] = None


class ComprehensiveReport(BaseModel):
    branch_info: Optional[BranchInfo] = None
    user_stats: UserStats
    student_stats: StudentStatistics
    course_stats: CourseStatistics
    transaction_stats: TransactionStatistics
    budget_stats: BudgetStatistics
    generated_at: datetime
    filters: ReportFilters


class StudentPerformanceReport(BaseModel):
    total_students: int
    active_students: int
    graduated_students: int
    average_gpa: float
    total_courses: int
    active_courses: int
    total_enrolled: int
    average_enrollment_per_course: int
    generated_at: datetime


class FinancialSummaryReport(BaseModel):
    total_income: float
    total_expenses: float
    net_profit: float
    pending_income: float
    pending_expenses: float
    total_budgets: int
    total_allocated: float
    total_spent: float
    budget_utilization: int
    generated_at: datetime


class AttendanceSummaryReport(BaseModel):
    date_from: date
    date_to: date
    total_records: int
    by_status: Dict[str, int]
    attendance_rate: float  # Present + Late over all records, percent
    today_rate: float
    students_marked: int
    total_students: int
    generated_at: datetime


class MetricRow(BaseModel):
    metric: str
    value: Union[int, float, str]


# Sheet name -> rows
ReportSections = Dict[str, List[MetricRow]]
