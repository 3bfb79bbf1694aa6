"""Financial transaction: branch income or expense."""

import uuid

from sqlalchemy import Column, Date, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from academy.core.enums import Currency, TransactionStatus
from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.db.session import Base


class Transaction(SoftDeleteMixin, TimestampMixin, Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("branch_id", "reference", name="uq_transactions_branch_reference"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type = Column(String(10), nullable=False)  # income, expense
    category = Column(String(100), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default=Currency.LKR.value)
    description = Column(String(500), nullable=False)
    date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    # IN-202405-0001 / EX-202405-0001 unless supplied
    reference = Column(String(50), nullable=False)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    branch_id = Column(Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_by = Column(Uuid, nullable=True)
    updated_by = Column(Uuid, nullable=True)

    student = relationship("Student", lazy="joined")
    course = relationship("Course", lazy="joined")
    branch = relationship("Branch", lazy="joined")
