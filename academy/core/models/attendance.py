import uuid

from sqlalchemy import Column, Date, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from academy.core.enums import AttendanceStatus
from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.db.session import Base


class Attendance(SoftDeleteMixin, TimestampMixin, Base):
    """One record per student per course per day."""

    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", "date", name="uq_attendance_student_course_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    # Copied from the student at marking time
    branch_id = Column(Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AttendanceStatus.PRESENT.value)
    # HH:MM, only for Present / Late
    time_in = Column(String(5), nullable=True)
    notes = Column(String(500), nullable=True)
    marked_by = Column(Uuid, nullable=False)
    last_modified_by = Column(Uuid, nullable=True)

    student = relationship("Student", lazy="joined")
    course = relationship("Course", lazy="joined")
