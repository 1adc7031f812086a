"""Factory Boy factories for generating test data.

Factories provide a clean way to create test objects with sensible defaults.
Override specific fields as needed in tests.

Usage:
    # Create a user
    user = UserFactory.build()  # In-memory only
    user = await create_async(UserFactory, db_session)  # Persisted

    # Override fields
    course = await create_async(CourseFactory, db_session, duration_hours=None)
"""

from datetime import UTC, datetime, timedelta

import factory
from faker import Faker
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Certificate,
    CertificateStatus,
    CertificateTemplate,
    CertificateType,
    Course,
    CourseInstructor,
    Enrollment,
    User,
    today,
)
from rendering.default_templates import DEFAULT_TEMPLATES

fake = Faker("es_ES")


# =============================================================================
# Async Factory Helpers
# =============================================================================


async def create_async(
    factory_class: type[factory.Factory], db: AsyncSession, **kwargs
):
    """Create an instance using a factory and persist to database.

    Usage:
        user = await create_async(UserFactory, db_session, email="test@example.com")
    """
    instance = factory_class.build(**kwargs)
    db.add(instance)
    await db.flush()
    await db.refresh(instance)
    return instance


async def create_batch_async(
    factory_class: type[factory.Factory], db: AsyncSession, size: int, **kwargs
):
    """Create multiple instances and persist to database."""
    instances = factory_class.build_batch(size, **kwargs)
    for instance in instances:
        db.add(instance)
    await db.flush()
    for instance in instances:
        await db.refresh(instance)
    return instances


# =============================================================================
# LMS Factories
# =============================================================================


class UserFactory(factory.Factory):
    """Factory for creating User instances (students by default)."""

    class Meta:
        model = User

    # Let DB assign autoincrement ID
    name = factory.LazyAttribute(lambda _: fake.name())
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    role = "student"


class AdminUserFactory(UserFactory):
    role = "admin"


class InstructorFactory(UserFactory):
    role = "instructor"


class CourseFactory(factory.Factory):
    class Meta:
        model = Course

    title = factory.LazyAttribute(lambda _: f"Curso de {fake.word().title()}")
    description = factory.LazyAttribute(lambda _: fake.sentence())
    duration_hours = 40
    instructor_id = None


class CourseInstructorFactory(factory.Factory):
    class Meta:
        model = CourseInstructor

    course_id = None
    instructor_id = None


class EnrollmentFactory(factory.Factory):
    """A finished enrollment."""

    class Meta:
        model = Enrollment

    user_id = None
    course_id = None
    started_at = factory.LazyFunction(lambda: datetime.now(UTC) - timedelta(days=60))
    completed_at = factory.LazyFunction(lambda: datetime.now(UTC) - timedelta(days=1))
    progress = 100.0


class InProgressEnrollmentFactory(EnrollmentFactory):
    completed_at = None
    progress = 40.0


# =============================================================================
# Certificate Factories
# =============================================================================


class CertificateTemplateFactory(factory.Factory):
    class Meta:
        model = CertificateTemplate

    name = factory.Sequence(lambda n: f"Plantilla {n}")
    description = None
    template_type = CertificateType.COURSE_COMPLETION.value
    html_content = DEFAULT_TEMPLATES["modern"]["html"]
    css_styles = None
    is_active = True
    is_default = False
    created_by = None


class DefaultTemplateFactory(CertificateTemplateFactory):
    is_default = True


class CertificateFactory(factory.Factory):
    """Issued certificate with a minimal v1 snapshot.

    ``user_id`` and ``course_id`` must be supplied.
    """

    class Meta:
        model = Certificate

    certificate_number = factory.Sequence(lambda n: f"BIT2026TEST{n:04d}")
    certificate_type = CertificateType.COURSE_COMPLETION
    user_id = None
    course_id = None
    template_id = None
    status = CertificateStatus.ISSUED
    issue_date = factory.LazyFunction(today)
    completion_date = factory.LazyFunction(today)
    issued_by = None
    certificate_data = factory.LazyAttribute(
        lambda o: {
            "schema_version": 1,
            "certificate_number": o.certificate_number,
            "student_name": "Ana Pérez",
            "course_title": "Curso de Prueba",
            "course_name": "Curso de Prueba",
            "duration_hours": 40,
            "issue_date": o.issue_date.isoformat(),
            "completion_date": o.completion_date.isoformat(),
            "instructor_names": "BITCAN",
            "organization_name": "BITCAN",
            "html_content": "<h1>Ana Pérez</h1>",
        }
    )
    metadata_ = factory.LazyFunction(
        lambda: {"schema_version": 1, "generation_method": "manual"}
    )


class RevokedCertificateFactory(CertificateFactory):
    status = CertificateStatus.REVOKED
    revoked_at = factory.LazyFunction(lambda: datetime.now(UTC))
    revoked_by = 1
    revoke_reason = "Emitido por error"
