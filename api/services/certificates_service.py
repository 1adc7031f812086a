"""Certificate business logic.

This module owns the certificate lifecycle:
- Batch issuance (idempotent per student/course/type)
- Certificate number assignment
- Revocation with audit trail
- Public verification by number
- PDF output (delegating to the rendering module)
- Listing and statistics for the admin dashboard

Lifecycle: ``issued`` --revoke--> ``revoked`` (terminal). Rows are never
deleted. Routes should delegate all certificate business logic to this module.
"""

import logging
import secrets
import string
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from models import (
    Certificate,
    CertificateStatus,
    CertificateTemplate,
    CertificateType,
    Course,
    Enrollment,
    User,
    today,
    utcnow,
)
from rendering.pdf_renderer import PDFRenderer
from rendering.template_engine import TemplateEngine, is_complete_document
from repositories.certificate_repository import CertificateRepository
from repositories.course_repository import CourseRepository
from repositories.template_repository import TemplateRepository
from repositories.user_repository import UserRepository
from schemas import (
    CertificateData,
    CertificateFilters,
    CertificateMetadata,
    CertificateSnapshot,
    CertificateStats,
    CertificateVerificationResult,
    CourseCertificateCount,
    EligibleStudent,
    GenerateCertificatesConfig,
    GenerateCertificatesResult,
    GeneratedCertificate,
    GenerationError,
    MonthlyCertificateCount,
    PDFOptions,
    PreviewRequest,
    ScreenshotOptions,
)
from services.templates_service import TemplateNotFoundError

logger = logging.getLogger(__name__)

DUPLICATE_CERTIFICATE_MESSAGE = (
    "Student already has an active certificate of this type for this course"
)
STUDENT_NOT_FOUND_MESSAGE = "Student not found"

_NUMBER_ALPHABET = string.digits + string.ascii_uppercase
_NUMBER_SUFFIX_LENGTH = 8
_NUMBER_ATTEMPTS = 5
_MODULE_TEMPLATE_MARKER = "MODULE_NAME"
_STATS_MONTHS = 12

# Certificates are always printed A4 landscape
CERTIFICATE_PDF_OPTIONS = PDFOptions(
    format="A4", orientation="landscape", print_background=True
)


class CertificateNotFoundError(Exception):
    """Raised when a certificate id or number does not exist."""


class CourseNotFoundError(Exception):
    """Raised when a generation batch targets an unknown course."""


class MissingContentError(Exception):
    """Raised when a certificate has neither stored HTML nor a renderable snapshot."""


class CertificateAlreadyRevokedError(Exception):
    """Raised by strict revocation when the certificate is already revoked."""


class _StudentSkipped(Exception):
    """A per-student condition that is reported in the batch errors."""


def generate_certificate_number(prefix: str = "BIT", *, year: int | None = None) -> str:
    """Generate a certificate number: ``<PREFIX><YEAR><8 base36 chars>``.

    Example: BIT2025AB12CD34
    """
    suffix = "".join(
        secrets.choice(_NUMBER_ALPHABET) for _ in range(_NUMBER_SUFFIX_LENGTH)
    )
    return f"{prefix}{year or datetime.now(UTC).year}{suffix}"


def _to_certificate_data(certificate: Certificate) -> CertificateData:
    return CertificateData(
        id=certificate.id,
        certificate_number=certificate.certificate_number,
        certificate_type=certificate.certificate_type,
        user_id=certificate.user_id,
        course_id=certificate.course_id,
        template_id=certificate.template_id,
        status=certificate.status,
        issue_date=certificate.issue_date,
        completion_date=certificate.completion_date,
        issued_by=certificate.issued_by,
        revoked_at=certificate.revoked_at,
        revoked_by=certificate.revoked_by,
        revoke_reason=certificate.revoke_reason,
        created_at=certificate.created_at,
        updated_at=certificate.updated_at,
        certificate_data=_read_snapshot(certificate),
        metadata=_read_metadata(certificate),
    )


def _read_snapshot(certificate: Certificate) -> CertificateSnapshot | None:
    try:
        return CertificateSnapshot.from_stored(certificate.certificate_data)
    except ValueError:
        logger.warning(
            "certificate.snapshot.unreadable",
            exc_info=True,
            extra={"certificate_id": certificate.id},
        )
        return None


def _read_metadata(certificate: Certificate) -> CertificateMetadata:
    try:
        return CertificateMetadata.from_stored(certificate.metadata_)
    except ValueError:
        logger.warning(
            "certificate.metadata.unreadable",
            exc_info=True,
            extra={"certificate_id": certificate.id},
        )
        return CertificateMetadata()


def _as_date(value: datetime | date | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


def _months_back(now: datetime, count: int) -> list[str]:
    """``YYYY-MM`` labels for the last ``count`` months, oldest first."""
    year, month = now.year, now.month
    labels = []
    for _ in range(count):
        labels.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(labels))


class CertificateService:
    """Certificate lifecycle operations bound to one database session.

    Collaborators are injected so tests can substitute a fake renderer.
    """

    def __init__(
        self,
        db: AsyncSession,
        template_engine: TemplateEngine,
        pdf_renderer: PDFRenderer,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.template_engine = template_engine
        self.pdf_renderer = pdf_renderer
        self.settings = settings or get_settings()
        self.certificates = CertificateRepository(db)
        self.courses = CourseRepository(db)
        self.templates = TemplateRepository(db)
        self.users = UserRepository(db)

    # ============ Issuance ============

    async def generate_certificates(
        self,
        config: GenerateCertificatesConfig,
        issued_by: int,
    ) -> GenerateCertificatesResult:
        """Issue certificates for every student in the batch.

        Per-student problems (duplicate, unknown student, render failure) are
        collected in ``errors``; the batch never aborts because of one student.

        Raises:
            CourseNotFoundError: the course does not exist.
            TemplateNotFoundError: no usable template for this batch.
        """
        course = await self.courses.get_by_id(config.course_id)
        if course is None:
            raise CourseNotFoundError(f"Course {config.course_id} not found")

        template = await self._select_template(config)
        instructor_names = ", ".join(await self.courses.get_instructor_names(course))

        generated: list[GeneratedCertificate] = []
        errors: list[GenerationError] = []

        for student_id in config.student_ids:
            try:
                certificate = await self._issue_one(
                    config=config,
                    course=course,
                    template=template,
                    instructor_names=instructor_names,
                    student_id=student_id,
                    issued_by=issued_by,
                )
            except _StudentSkipped as e:
                logger.warning(
                    "certificate.generation.skipped",
                    extra={
                        "student_id": student_id,
                        "course_id": course.id,
                        "reason": str(e),
                    },
                )
                errors.append(GenerationError(student_id=student_id, error=str(e)))
                continue
            except Exception as e:
                logger.warning(
                    "certificate.generation.failed",
                    exc_info=True,
                    extra={"student_id": student_id, "course_id": course.id},
                )
                errors.append(
                    GenerationError(
                        student_id=student_id, error=str(e) or type(e).__name__
                    )
                )
                continue

            generated.append(
                GeneratedCertificate(
                    id=certificate.id,
                    certificate_number=certificate.certificate_number,
                    user_id=certificate.user_id,
                )
            )
            logger.info(
                "certificate.issued",
                extra={
                    "certificate_id": certificate.id,
                    "certificate_number": certificate.certificate_number,
                    "student_id": student_id,
                    "course_id": course.id,
                    "certificate_type": config.certificate_type.value,
                    "issued_by": issued_by,
                },
            )

        return GenerateCertificatesResult(
            generated_count=len(generated),
            certificates=generated,
            errors=errors,
        )

    async def _select_template(
        self, config: GenerateCertificatesConfig
    ) -> CertificateTemplate:
        if config.template_id is not None:
            template = await self.templates.get_active(config.template_id)
            if template is None:
                raise TemplateNotFoundError(
                    f"Template {config.template_id} not found or inactive"
                )
            return template

        if config.certificate_type == CertificateType.MODULE_COMPLETION:
            template = await self.templates.find_active_containing(
                _MODULE_TEMPLATE_MARKER
            )
            if template is not None:
                return template

        template = await self.templates.get_default()
        if template is None:
            raise TemplateNotFoundError("No active default certificate template")
        return template

    async def _issue_one(
        self,
        *,
        config: GenerateCertificatesConfig,
        course: Course,
        template: CertificateTemplate,
        instructor_names: str,
        student_id: int,
        issued_by: int,
    ) -> Certificate:
        # Checked per student, not pre-filtered, so concurrent batches stay safe
        existing = await self.certificates.get_active(
            student_id, course.id, config.certificate_type
        )
        if existing is not None:
            raise _StudentSkipped(DUPLICATE_CERTIFICATE_MESSAGE)

        student = await self.users.get_by_id(student_id)
        if student is None:
            raise _StudentSkipped(STUDENT_NOT_FOUND_MESSAGE)

        enrollment = await self.courses.get_enrollment(student_id, course.id)
        number = await self._new_certificate_number()
        snapshot = self._build_snapshot(
            certificate_number=number,
            config=config,
            course=course,
            student=student,
            enrollment=enrollment,
            instructor_names=instructor_names,
            template=template,
        )

        # Render now so a broken template fails this student before insert
        context = self.build_render_context(snapshot, config.custom_fields)
        html = self.template_engine.render(template.html_content, context)
        if template.css_styles:
            html = self.template_engine.create_complete_html(html, template.css_styles)
        snapshot.html_content = html

        metadata = CertificateMetadata(
            generation_method="manual",
            generated_by=issued_by,
            template_id=template.id,
            custom_fields=config.custom_fields,
        )

        try:
            async with self.db.begin_nested():
                return await self.certificates.create(
                    certificate_number=number,
                    certificate_type=config.certificate_type,
                    user_id=student_id,
                    course_id=course.id,
                    template_id=template.id,
                    issue_date=snapshot.issue_date or today(),
                    completion_date=snapshot.completion_date or today(),
                    issued_by=issued_by,
                    certificate_data=snapshot.to_stored(),
                    metadata=metadata.to_stored(),
                )
        except IntegrityError as e:
            # A concurrent batch won the race for this tuple
            if await self.certificates.get_active(
                student_id, course.id, config.certificate_type
            ):
                raise _StudentSkipped(DUPLICATE_CERTIFICATE_MESSAGE) from e
            raise

    async def _new_certificate_number(self) -> str:
        prefix = self.settings.certificate_number_prefix
        for _ in range(_NUMBER_ATTEMPTS):
            number = generate_certificate_number(prefix)
            if not await self.certificates.number_exists(number):
                return number
            logger.warning(
                "certificate.number.collision", extra={"certificate_number": number}
            )
        raise RuntimeError(
            "Could not allocate a unique certificate number "
            f"in {_NUMBER_ATTEMPTS} attempts"
        )

    def _build_snapshot(
        self,
        *,
        certificate_number: str,
        config: GenerateCertificatesConfig,
        course: Course,
        student: User,
        enrollment: Enrollment | None,
        instructor_names: str,
        template: CertificateTemplate,
    ) -> CertificateSnapshot:
        issued_on = today()
        completed_at = _as_date(enrollment.completed_at) if enrollment else None
        started_at = _as_date(enrollment.started_at) if enrollment else None
        is_module = config.certificate_type == CertificateType.MODULE_COMPLETION

        if config.manual_hours is not None:
            hours: float = config.manual_hours
        else:
            hours = course.duration_hours or 0

        return CertificateSnapshot(
            certificate_number=certificate_number,
            student_name=student.name,
            student_email=student.email,
            course_title=config.module_name if is_module else course.title,
            course_name=course.title,
            course_description=course.description,
            module_name=config.module_name if is_module else None,
            duration_hours=hours,
            start_date=config.manual_start_date or started_at or issued_on,
            completion_date=config.manual_completion_date or completed_at or issued_on,
            issue_date=issued_on,
            instructor_names=instructor_names or self.settings.organization_name,
            organization_name=self.settings.organization_name,
            verification_url=self.settings.verification_url(certificate_number),
            custom_signature=config.custom_signature,
            custom_message=config.custom_message,
            template_id=template.id,
        )

    def build_render_context(
        self,
        snapshot: CertificateSnapshot,
        custom_fields: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Template variables for a snapshot.

        Upper-case keys are the pre-formatted names authors use in templates;
        lower-case keys carry raw values for use with helpers such as
        ``{{formatDate issue_date}}``. Custom fields override both.
        """
        engine = self.template_engine
        course_name = snapshot.course_name or snapshot.course_title
        instructors = snapshot.instructor_names or snapshot.organization_name
        if snapshot.custom_signature:
            signature = snapshot.custom_signature
        elif snapshot.module_name:
            signature = (
                f'El mencionado módulo "{snapshot.module_name}" ha sido dictado por\n'
                f"{instructors}"
            )
        else:
            signature = f"El mencionado curso ha sido dictado por\n{instructors}"

        context: dict[str, Any] = {
            "STUDENT_NAME": snapshot.student_name,
            "COURSE_NAME": course_name,
            "MODULE_NAME": snapshot.module_name or "",
            "DURATION_HOURS": snapshot.duration_hours,
            "START_DATE": engine.format_date(snapshot.start_date, "short"),
            "COMPLETION_DATE": engine.format_date(snapshot.completion_date, "short"),
            "ISSUE_DATE": engine.format_date(snapshot.issue_date, "short"),
            "CERTIFICATE_NUMBER": snapshot.certificate_number,
            "INSTRUCTOR_NAME": instructors,
            "CUSTOM_SIGNATURE": signature,
            "CUSTOM_MESSAGE": snapshot.custom_message or "",
            "VERIFICATION_URL": snapshot.verification_url,
            "certificate_number": snapshot.certificate_number,
            "student_name": snapshot.student_name,
            "course_title": snapshot.course_title,
            "duration_hours": snapshot.duration_hours,
            "start_date": _iso(snapshot.start_date),
            "completion_date": _iso(snapshot.completion_date),
            "issue_date": _iso(snapshot.issue_date),
            "instructor_names": instructors,
            "organization_name": snapshot.organization_name,
            "verification_url": snapshot.verification_url,
            "module_name": snapshot.module_name or "",
        }
        context.update(custom_fields or {})
        return context

    # ============ PDF output ============

    async def generate_pdf(self, certificate_id: int) -> bytes:
        """Render a stored certificate to an A4 landscape PDF.

        Raises:
            CertificateNotFoundError: unknown id.
            MissingContentError: nothing renderable is stored.
            PDFRenderError: propagated unchanged from the renderer.
        """
        certificate = await self.certificates.get_by_id(certificate_id)
        if certificate is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")

        html = await self._certificate_html(certificate)
        document = (
            html
            if is_complete_document(html)
            else self.template_engine.create_complete_html(html)
        )
        pdf = await self.pdf_renderer.generate_pdf(document, CERTIFICATE_PDF_OPTIONS)
        logger.info(
            "certificate.pdf.generated",
            extra={"certificate_id": certificate.id, "pdf_bytes": len(pdf)},
        )
        return pdf

    async def _certificate_html(self, certificate: Certificate) -> str:
        snapshot = _read_snapshot(certificate)
        metadata = _read_metadata(certificate)

        if snapshot is not None and snapshot.html_content:
            return snapshot.html_content
        if metadata.html:
            return metadata.html

        # No cached HTML: re-render the snapshot with the recorded template
        template_id = (
            (snapshot.template_id if snapshot else None)
            or metadata.template_id
            or certificate.template_id
        )
        if snapshot is None or not snapshot.student_name or template_id is None:
            raise MissingContentError(
                f"Certificate {certificate.id} has no renderable content"
            )
        template = await self.templates.get_by_id(template_id)
        if template is None:
            raise MissingContentError(
                f"Template {template_id} for certificate {certificate.id} "
                "no longer exists"
            )
        html = self.template_engine.render(
            template.html_content,
            self.build_render_context(snapshot, metadata.custom_fields),
        )
        if template.css_styles:
            html = self.template_engine.create_complete_html(html, template.css_styles)
        return html

    async def preview_pdf(self, request: PreviewRequest) -> bytes:
        """Render a template against sample data without persisting anything."""
        document = await self._preview_document(request)
        return await self.pdf_renderer.generate_pdf(document, CERTIFICATE_PDF_OPTIONS)

    async def preview_screenshot(self, request: PreviewRequest) -> bytes:
        document = await self._preview_document(request)
        options: ScreenshotOptions = request.screenshot
        return await self.pdf_renderer.generate_screenshot(document, options)

    async def _preview_document(self, request: PreviewRequest) -> str:
        if request.template_id is not None:
            template = await self.templates.get_by_id(request.template_id)
            if template is None:
                raise TemplateNotFoundError(f"Template {request.template_id} not found")
            html, css = template.html_content, template.css_styles
        else:
            html, css = request.html_content or "", request.css_styles

        context = self.build_render_context(self.sample_snapshot(), request.data)
        fragment = self.template_engine.render(html, context)
        if is_complete_document(fragment):
            return fragment
        return self.template_engine.create_complete_html(fragment, css)

    def sample_snapshot(self) -> CertificateSnapshot:
        """Placeholder data for template previews."""
        number = generate_certificate_number(self.settings.certificate_number_prefix)
        issued_on = today()
        return CertificateSnapshot(
            certificate_number=number,
            student_name="Nombre del Estudiante",
            course_title="Nombre del Curso",
            course_name="Nombre del Curso",
            duration_hours=40,
            start_date=issued_on,
            completion_date=issued_on,
            issue_date=issued_on,
            instructor_names=self.settings.organization_name,
            organization_name=self.settings.organization_name,
            verification_url=self.settings.verification_url(number),
        )

    # ============ Revocation & verification ============

    async def revoke_certificate(
        self,
        certificate_id: int,
        revoked_by: int,
        reason: str,
        *,
        strict: bool = False,
    ) -> CertificateData:
        """Revoke a certificate (one-way).

        Re-revoking is a no-op that keeps the original audit fields, unless
        ``strict`` is set, in which case it raises.

        Raises:
            CertificateNotFoundError: unknown id.
            CertificateAlreadyRevokedError: ``strict`` and already revoked.
        """
        certificate = await self.certificates.get_by_id(certificate_id)
        if certificate is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")

        if certificate.status == CertificateStatus.REVOKED:
            if strict:
                raise CertificateAlreadyRevokedError(
                    f"Certificate {certificate_id} is already revoked"
                )
            logger.info(
                "certificate.revoke.noop",
                extra={"certificate_id": certificate_id, "revoked_by": revoked_by},
            )
            return _to_certificate_data(certificate)

        certificate = await self.certificates.revoke(
            certificate, revoked_by=revoked_by, reason=reason
        )
        logger.info(
            "certificate.revoked",
            extra={
                "certificate_id": certificate.id,
                "certificate_number": certificate.certificate_number,
                "revoked_by": revoked_by,
            },
        )
        return _to_certificate_data(certificate)

    async def verify_certificate(
        self, certificate_number: str
    ) -> CertificateVerificationResult:
        """Public lookup by number. Always returns a result, never raises."""
        number = certificate_number.strip().upper()
        certificate = await self.certificates.get_by_number(number) if number else None
        if certificate is None:
            return CertificateVerificationResult(
                valid=False, message="Certificate not found"
            )

        snapshot = _read_snapshot(certificate)
        student_name = snapshot.student_name if snapshot else ""
        course_title = snapshot.course_title if snapshot else ""
        if not student_name:
            student = await self.users.get_by_id(certificate.user_id)
            student_name = student.name if student else ""
        if not course_title:
            course = await self.courses.get_by_id(certificate.course_id)
            course_title = course.title if course else ""

        if certificate.status == CertificateStatus.REVOKED:
            valid = False
            message = (
                f"Certificate revoked: {certificate.revoke_reason or 'no reason given'}"
            )
        elif certificate.status == CertificateStatus.PENDING:
            valid = False
            message = "Certificate has not been issued yet"
        else:
            valid = True
            message = "Certificate is valid"

        return CertificateVerificationResult(
            valid=valid,
            message=message,
            certificate=_to_certificate_data(certificate),
            student_name=student_name or None,
            course_title=course_title or None,
            issue_date=certificate.issue_date,
        )

    # ============ Queries ============

    async def get_certificate(self, certificate_id: int) -> CertificateData:
        certificate = await self.certificates.get_by_id(certificate_id)
        if certificate is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")
        return _to_certificate_data(certificate)

    async def get_certificate_by_number(
        self, certificate_number: str
    ) -> CertificateData:
        certificate = await self.certificates.get_by_number(certificate_number)
        if certificate is None:
            raise CertificateNotFoundError(
                f"Certificate {certificate_number} not found"
            )
        return _to_certificate_data(certificate)

    async def list_certificates(
        self, filters: CertificateFilters
    ) -> list[CertificateData]:
        certificates = await self.certificates.find_all(filters)
        return [_to_certificate_data(c) for c in certificates]

    async def list_eligible_students(self, course_id: int) -> list[EligibleStudent]:
        """Students who completed ``course_id`` and hold no course certificate."""
        course = await self.courses.get_by_id(course_id)
        if course is None:
            raise CourseNotFoundError(f"Course {course_id} not found")
        rows = await self.courses.list_eligible_students(course_id)
        return [
            EligibleStudent(
                user_id=user.id,
                name=user.name,
                email=user.email,
                completed_at=enrollment.completed_at,
                progress=enrollment.progress,
            )
            for user, enrollment in rows
        ]

    async def get_stats(self) -> CertificateStats:
        by_status = await self.certificates.count_by_status()
        issued = by_status.get(CertificateStatus.ISSUED.value, 0)
        revoked = by_status.get(CertificateStatus.REVOKED.value, 0)
        pending = by_status.get(CertificateStatus.PENDING.value, 0)

        now = utcnow()
        months = _months_back(now, _STATS_MONTHS)
        since = datetime(int(months[0][:4]), int(months[0][5:]), 1, tzinfo=UTC)
        monthly = dict(await self.certificates.count_by_month(since))

        return CertificateStats(
            total_issued=issued + revoked,
            total_active=issued,
            total_revoked=revoked,
            total_pending=pending,
            by_type=await self.certificates.count_by_type(),
            by_course=[
                CourseCertificateCount(
                    course_id=course_id, course_title=title, count=count
                )
                for course_id, title, count in await self.certificates.count_by_course()
            ],
            by_month=[
                MonthlyCertificateCount(month=month, count=monthly.get(month, 0))
                for month in months
            ],
        )


def _iso(value: date | None) -> str:
    return value.isoformat() if value else ""
