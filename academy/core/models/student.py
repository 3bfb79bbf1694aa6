import uuid

from sqlalchemy import Boolean, Column, Date, Float, ForeignKey, Index, JSON, String, UniqueConstraint, Uuid, true
from sqlalchemy.orm import relationship

from academy.core.enums import StudentStatus
from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.db.session import Base


class Student(SoftDeleteMixin, TimestampMixin, Base):
    """Enrolled student. Always belongs to one branch and one course."""

    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("student_code", name="uq_students_student_code"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Generated: course initials + 4 digit sequence, e.g. WD0001
    student_code = Column(String(20), nullable=False)
    full_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=False)
    address = Column(String(500), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    modules = Column(JSON, nullable=False, default=list)
    branch_id = Column(Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=StudentStatus.ACTIVE.value)
    enrollment_date = Column(Date, nullable=False)
    gpa = Column(Float, nullable=True)
    level = Column(String(20), nullable=True)
    certifications = Column(JSON, nullable=False, default=list)
    documents = Column(JSON, nullable=False, default=list)
    personal_documents = Column(JSON, nullable=False, default=dict)
    child_baby_care = Column(Boolean, nullable=False, default=False)
    elder_care = Column(Boolean, nullable=False, default=False)
    hostel_requirement = Column(Boolean, nullable=False, default=False)
    meal_requirement = Column(Boolean, nullable=False, default=False)
    created_by = Column(Uuid, nullable=True)

    course = relationship("Course", lazy="joined")
    branch = relationship("Branch", lazy="joined")


# Email unique among active students only
Index(
    "uq_students_email_active",
    Student.email,
    unique=True,
    postgresql_where=Student.is_active == true(),
    sqlite_where=Student.is_active == true(),
)
