import uuid

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Index, Numeric, String, Uuid, func, literal_column, true
from sqlalchemy.dialects.postgresql import ExcludeConstraint
from sqlalchemy.orm import relationship

from academy.core.enums import BudgetStatus, Currency
from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.db.session import Base


class Budget(SoftDeleteMixin, TimestampMixin, Base):
    """Spending allowance for one branch/category/date window. `spent` is a derived rollup."""

    __tablename__ = "budgets"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_budgets_date_range"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    category = Column(String(100), nullable=False)
    allocated = Column(Numeric(14, 2), nullable=False)
    spent = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default=Currency.LKR.value)
    period = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    description = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=BudgetStatus.ACTIVE.value)
    branch_id = Column(Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_by = Column(Uuid, nullable=True)
    updated_by = Column(Uuid, nullable=True)

    branch = relationship("Branch", lazy="joined")

    @property
    def remaining(self) -> float:
        return max(0.0, float(self.allocated or 0) - float(self.spent or 0))

    @property
    def utilization_percentage(self) -> int:
        allocated = float(self.allocated or 0)
        if allocated <= 0:
            return 0
        return round(float(self.spent or 0) / allocated * 100)

    @property
    def budget_status(self) -> str:
        utilization = self.utilization_percentage
        if utilization >= 100:
            return "exceeded"
        if utilization >= 80:
            return "warning"
        if utilization >= 50:
            return "moderate"
        return "good"


Index(
    "uq_budgets_branch_category_window_active",
    Budget.branch_id,
    Budget.category,
    Budget.start_date,
    Budget.end_date,
    unique=True,
    postgresql_where=Budget.is_active == true(),
    sqlite_where=Budget.is_active == true(),
)

# PostgreSQL rejects any overlapping active window per branch and category
# (needs the btree_gist extension, see academy.db.schema_check). Other
# backends only get the identical-window index above.
Budget.__table__.append_constraint(
    ExcludeConstraint(
        (Budget.__table__.c.branch_id, "="),
        (Budget.__table__.c.category, "="),
        (func.daterange(Budget.__table__.c.start_date, Budget.__table__.c.end_date, literal_column("'[]'")), "&&"),
        name="ex_budgets_branch_category_window_active",
        using="gist",
        where=Budget.__table__.c.is_active == true(),
    ).ddl_if(dialect="postgresql")
)
