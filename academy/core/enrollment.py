"""
Course enrollment counter.

Both directions are single conditional UPDATEs, so the 0 <= current_enrolled <=
max_students bound holds even when two requests race on the same course. They
run inside the caller's transaction and are committed with the student write.
"""
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from academy.core.exceptions import CourseFull
from academy.core.models import Course

logger = logging.getLogger(__name__)


async def enroll_student(db: AsyncSession, course: Course) -> None:
    result = await db.execute(
        update(Course)
        .where(Course.id == course.id, Course.current_enrolled < Course.max_students)
        .values(current_enrolled=Course.current_enrolled + 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise CourseFull("Course is full")
    logger.info("Enrolled into course_id=%s current_enrolled=%s", course.id, course.current_enrolled)


async def unenroll_student(db: AsyncSession, course: Course) -> None:
    result = await db.execute(
        update(Course)
        .where(Course.id == course.id, Course.current_enrolled > 0)
        .values(current_enrolled=Course.current_enrolled - 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        logger.warning("Unenroll skipped, course_id=%s already at zero", course.id)
        return
    logger.info("Unenrolled from course_id=%s current_enrolled=%s", course.id, course.current_enrolled)
