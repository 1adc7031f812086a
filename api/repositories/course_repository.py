"""Read-only queries against LMS courses and enrollments."""

from collections.abc import Sequence

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import (
    Certificate,
    CertificateStatus,
    CertificateType,
    Course,
    Enrollment,
    User,
)
from repositories.utils import log_slow_query


class CourseRepository:
    """Repository for course and enrollment lookups."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, course_id: int) -> Course | None:
        """Get a course with its co-instructors loaded."""
        result = await self.db.execute(
            select(Course)
            .options(selectinload(Course.instructors))
            .where(Course.id == course_id)
        )
        return result.scalar_one_or_none()

    async def get_instructor_names(self, course: Course) -> list[str]:
        """Lead instructor first, then co-instructors by name, without repeats."""
        names: list[str] = []
        if course.instructor_id is not None:
            lead = await self.db.get(User, course.instructor_id)
            if lead is not None:
                names.append(lead.name)
        for instructor in course.instructors:
            if instructor.name not in names:
                names.append(instructor.name)
        return names

    async def get_enrollment(self, user_id: int, course_id: int) -> Enrollment | None:
        result = await self.db.execute(
            select(Enrollment).where(
                Enrollment.user_id == user_id,
                Enrollment.course_id == course_id,
            )
        )
        return result.scalar_one_or_none()

    @log_slow_query("eligible_students")
    async def list_eligible_students(
        self, course_id: int
    ) -> Sequence[tuple[User, Enrollment]]:
        """Students who finished the course and hold no active course certificate.

        Finished means ``completed_at`` is set or progress reached 100.
        """
        has_certificate = exists().where(
            Certificate.user_id == Enrollment.user_id,
            Certificate.course_id == course_id,
            Certificate.certificate_type == CertificateType.COURSE_COMPLETION,
            Certificate.status != CertificateStatus.REVOKED,
        )
        result = await self.db.execute(
            select(User, Enrollment)
            .join(Enrollment, Enrollment.user_id == User.id)
            .where(
                Enrollment.course_id == course_id,
                or_(Enrollment.completed_at.is_not(None), Enrollment.progress >= 100),
                ~has_certificate,
            )
            .order_by(User.name.asc(), User.id.asc())
        )
        return [(row[0], row[1]) for row in result.all()]
