import uuid

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Index, Integer, JSON, Numeric, String, Text, Uuid, func, true
from sqlalchemy.orm import relationship

from academy.core.enums import CourseStatus, Currency
from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.core.scope import BranchScope, scope_from_branch_id
from academy.db.session import Base


class Course(SoftDeleteMixin, TimestampMixin, Base):
    """Course offered by one branch or by all branches (branch_id NULL)."""

    __tablename__ = "courses"
    __table_args__ = (
        CheckConstraint(
            "current_enrolled >= 0 AND current_enrolled <= max_students",
            name="ck_courses_enrollment_bounds",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    duration = Column(String(100), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default=Currency.LKR.value)
    max_students = Column(Integer, nullable=False)
    current_enrolled = Column(Integer, nullable=False, default=0)
    schedule = Column(String(200), nullable=False)
    instructor = Column(String(100), nullable=False)
    next_start = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=CourseStatus.DRAFT.value)
    modules = Column(JSON, nullable=False, default=list)
    branch_id = Column(Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=True, index=True)
    # str(branch_id) or "all"; backs the per-scope title uniqueness index
    scope_key = Column(String(36), nullable=False)
    created_by = Column(Uuid, nullable=True)

    branch = relationship("Branch", lazy="joined")

    @property
    def scope(self) -> BranchScope:
        return scope_from_branch_id(self.branch_id)

    @scope.setter
    def scope(self, value: BranchScope) -> None:
        self.branch_id = getattr(value, "branch_id", None)
        self.scope_key = value.key

    @property
    def is_full(self) -> bool:
        return self.current_enrolled >= self.max_students

    @property
    def available_spots(self) -> int:
        return max(0, self.max_students - self.current_enrolled)

    @property
    def enrollment_percentage(self) -> int:
        if not self.max_students:
            return 0
        return round(self.current_enrolled / self.max_students * 100)

    @property
    def revenue(self) -> float:
        return float(self.price or 0) * (self.current_enrolled or 0)


Index(
    "uq_courses_scope_title_active",
    Course.scope_key,
    func.lower(Course.title),
    unique=True,
    postgresql_where=Course.is_active == true(),
    sqlite_where=Course.is_active == true(),
)
