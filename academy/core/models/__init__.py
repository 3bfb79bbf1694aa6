from academy.core.models.branch import Branch
from academy.core.models.course import Course
from academy.core.models.student import Student
from academy.core.models.attendance import Attendance
from academy.core.models.transaction import Transaction
from academy.core.models.budget import Budget

__all__ = [
    "Branch",
    "Course",
    "Student",
    "Attendance",
    "Transaction",
    "Budget",
]
