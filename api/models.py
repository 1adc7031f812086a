"""SQLAlchemy models for certificate issuance.

``users``, ``courses``, ``course_instructors`` and ``user_courses`` belong to
the wider LMS; this service only reads them. ``certificate_templates`` and
``certificates`` are owned here.
"""

from datetime import UTC, date, datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from core.database import Base


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def today() -> date:
    """Return current UTC date."""
    return datetime.now(UTC).date()


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class User(Base):
    """LMS user (students, instructors, admins)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="student")

    enrollments: Mapped[list["Enrollment"]] = relationship(back_populates="user")


class Course(Base):
    """LMS course. Read-only from the certificate service's point of view."""

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    instructor_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    instructors: Mapped[list["User"]] = relationship(
        secondary="course_instructors",
        order_by="User.name",
        viewonly=True,
    )


class CourseInstructor(Base):
    """Additional instructors for multi-instructor courses."""

    __tablename__ = "course_instructors"

    course_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        primary_key=True,
    )
    instructor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )


class Enrollment(Base):
    """A student's enrollment in a course."""

    __tablename__ = "user_courses"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_user_courses_user_course"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    user: Mapped["User"] = relationship(back_populates="enrollments")
    course: Mapped["Course"] = relationship()


class CertificateType(str, PyEnum):
    """What a certificate attests to."""

    COURSE_COMPLETION = "course_completion"
    MODULE_COMPLETION = "module_completion"


class CertificateStatus(str, PyEnum):
    """Certificate lifecycle state.

    Generation always creates ``issued`` rows. ``pending`` is reserved for
    rows created by other flows (e.g. payment-gated module certificates).
    ``revoked`` is terminal.
    """

    PENDING = "pending"
    ISSUED = "issued"
    REVOKED = "revoked"


class CertificateTemplate(TimestampMixin, Base):
    """Administrator-authored HTML certificate template."""

    __tablename__ = "certificate_templates"
    __table_args__ = (
        Index("ix_certificate_templates_active_default", "is_active", "is_default"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="course_completion"
    )
    html_content: Mapped[str] = mapped_column(Text, nullable=False)
    css_styles: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )


_NOT_REVOKED = text("status != 'revoked'")


class Certificate(TimestampMixin, Base):
    """An issued certificate.

    ``certificate_data`` holds the versioned snapshot captured at issuance
    (see ``schemas.CertificateSnapshot``); ``metadata`` holds generation
    provenance (``schemas.CertificateMetadata``). Rows are never deleted;
    revocation is the terminal state.
    """

    __tablename__ = "certificates"
    __table_args__ = (
        # At most one non-revoked certificate per (user, course, type)
        Index(
            "uq_certificates_active_tuple",
            "user_id",
            "course_id",
            "certificate_type",
            unique=True,
            postgresql_where=_NOT_REVOKED,
            sqlite_where=_NOT_REVOKED,
        ),
        Index("ix_certificates_course", "course_id"),
        Index("ix_certificates_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    certificate_number: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True
    )
    certificate_type: Mapped[CertificateType] = mapped_column(
        Enum(
            CertificateType,
            name="certificate_type",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    course_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="RESTRICT"),
        nullable=False,
    )
    template_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("certificate_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[CertificateStatus] = mapped_column(
        Enum(
            CertificateStatus,
            name="certificate_status",
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=CertificateStatus.ISSUED,
    )
    issue_date: Mapped[date] = mapped_column(Date, nullable=False, default=today)
    completion_date: Mapped[date] = mapped_column(Date, nullable=False, default=today)
    issued_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    certificate_data: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revoked_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship()
    course: Mapped["Course"] = relationship()
