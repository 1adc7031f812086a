"""Pydantic schemas for API request/response validation and stored snapshots."""

from datetime import date, datetime
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import CertificateStatus, CertificateType

SNAPSHOT_SCHEMA_VERSION = 1


# ============ Stored JSON payloads ============


class CertificateSnapshot(BaseModel):
    """Denormalized render data captured when a certificate is issued.

    Stored in ``certificates.certificate_data``. The displayed content of a
    certificate is read from here, never from live course/student rows.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    certificate_number: str = ""
    student_name: str = ""
    student_email: str | None = None
    course_title: str = ""
    course_name: str = ""
    course_description: str | None = None
    module_name: str | None = None
    duration_hours: float = 0
    start_date: date | None = None
    completion_date: date | None = None
    issue_date: date | None = None
    instructor_names: str = ""
    organization_name: str = ""
    verification_url: str = ""
    custom_signature: str | None = None
    custom_message: str | None = None
    template_id: int | None = None
    html_content: str | None = None

    @classmethod
    def from_stored(cls, data: dict[str, Any] | None) -> Self | None:
        """Validate a stored blob, upgrading unversioned (v0) payloads.

        v0 rows stored the rendered fragment under ``html`` and a single
        ``instructor_name``.
        """
        if not data:
            return None

        version = data.get("schema_version", 0)
        if version == 0:
            data = dict(data)
            if "html" in data and "html_content" not in data:
                data["html_content"] = data.pop("html")
            if "instructor_name" in data and "instructor_names" not in data:
                data["instructor_names"] = data.pop("instructor_name")
            data["schema_version"] = SNAPSHOT_SCHEMA_VERSION
        elif version > SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported certificate snapshot version: {version}")

        return cls.model_validate(data)

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CertificateMetadata(BaseModel):
    """Generation provenance stored in ``certificates.metadata``."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    generation_method: Literal["automatic", "manual"] = "manual"
    generated_by: int | None = None
    template_id: int | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    # Legacy rows cached the rendered HTML here
    html: str | None = None

    @classmethod
    def from_stored(cls, data: dict[str, Any] | None) -> Self:
        if not data:
            return cls()
        version = data.get("schema_version", 0)
        if version > SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported certificate metadata version: {version}")
        return cls.model_validate({**data, "schema_version": SNAPSHOT_SCHEMA_VERSION})

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ============ Certificate Schemas ============


class CertificateData(BaseModel):
    """DTO for a certificate (service-layer return type)."""

    id: int
    certificate_number: str
    certificate_type: CertificateType
    user_id: int
    course_id: int
    template_id: int | None = None
    status: CertificateStatus
    issue_date: date
    completion_date: date
    issued_by: int | None = None
    revoked_at: datetime | None = None
    revoked_by: int | None = None
    revoke_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    certificate_data: CertificateSnapshot | None = None
    metadata: CertificateMetadata


class GenerateCertificatesConfig(BaseModel):
    """Request to issue certificates for a batch of students."""

    course_id: int
    student_ids: list[int] = Field(min_length=1, max_length=1000)
    certificate_type: CertificateType = CertificateType.COURSE_COMPLETION
    template_id: int | None = None
    module_name: str | None = Field(default=None, max_length=255)
    manual_hours: float | None = Field(default=None, ge=0)
    manual_start_date: date | None = None
    manual_completion_date: date | None = None
    custom_signature: str | None = Field(default=None, max_length=255)
    custom_message: str | None = Field(default=None, max_length=2000)
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("student_ids")
    @classmethod
    def dedupe_student_ids(cls, v: list[int]) -> list[int]:
        """Keep first occurrence order; a student is processed once per batch."""
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def require_module_name(self) -> Self:
        if (
            self.certificate_type == CertificateType.MODULE_COMPLETION
            and not (self.module_name and self.module_name.strip())
        ):
            raise ValueError("module_name is required for module_completion")
        return self


class GeneratedCertificate(BaseModel):
    """Summary of a certificate created by a generation batch."""

    id: int
    certificate_number: str
    user_id: int


class GenerationError(BaseModel):
    """A student skipped or failed during a generation batch."""

    student_id: int
    error: str


class GenerateCertificatesResult(BaseModel):
    """Batch outcome. Check both lists: partial failure is normal."""

    generated_count: int
    certificates: list[GeneratedCertificate]
    errors: list[GenerationError]


class RevokeCertificateRequest(BaseModel):
    """Request to revoke an issued certificate."""

    reason: str = Field(min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason must not be blank")
        return v


class CertificateVerificationResult(BaseModel):
    """Public verification outcome. Never raised; always returned."""

    valid: bool
    message: str
    certificate: CertificateData | None = None
    student_name: str | None = None
    course_title: str | None = None
    issue_date: date | None = None


class CertificateFilters(BaseModel):
    """Filters accepted by the certificate listing."""

    user_id: int | None = None
    course_id: int | None = None
    certificate_type: CertificateType | None = None
    status: CertificateStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


class CourseCertificateCount(BaseModel):
    course_id: int
    course_title: str
    count: int


class MonthlyCertificateCount(BaseModel):
    month: str
    count: int


class CertificateStats(BaseModel):
    """Aggregate issuance counts for the admin dashboard."""

    total_issued: int
    total_active: int
    total_revoked: int
    total_pending: int
    by_type: dict[str, int]
    by_course: list[CourseCertificateCount]
    by_month: list[MonthlyCertificateCount]


class EligibleStudent(BaseModel):
    """An enrolled student who completed a course and holds no certificate."""

    user_id: int
    name: str
    email: str
    completed_at: datetime | None = None
    progress: float


# ============ Rendering options ============


class PDFMargin(BaseModel):
    top: str = "0mm"
    right: str = "0mm"
    bottom: str = "0mm"
    left: str = "0mm"


class PDFOptions(BaseModel):
    """Page geometry for HTML to PDF capture."""

    format: str = "A4"
    orientation: Literal["portrait", "landscape"] = "portrait"
    print_background: bool = True
    margin: PDFMargin = Field(default_factory=PDFMargin)
    display_header_footer: bool = False
    prefer_css_page_size: bool = False


class ScreenshotOptions(BaseModel):
    """Raster capture options for template previews."""

    width: int | None = Field(default=None, gt=0, le=8000)
    height: int | None = Field(default=None, gt=0, le=8000)
    full_page: bool = True
    type: Literal["png"] = "png"


class PreviewRequest(BaseModel):
    """Render a stored template or raw HTML against sample data."""

    template_id: int | None = None
    html_content: str | None = None
    css_styles: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    screenshot: ScreenshotOptions = Field(default_factory=ScreenshotOptions)

    @model_validator(mode="after")
    def require_source(self) -> Self:
        if self.template_id is None and not self.html_content:
            raise ValueError("Provide template_id or html_content")
        return self


# ============ Template Schemas ============


class TemplateCreate(BaseModel):
    """Request to create a certificate template."""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    template_type: CertificateType = CertificateType.COURSE_COMPLETION
    html_content: str = Field(min_length=1)
    css_styles: str | None = None
    is_active: bool = True
    is_default: bool = False


class TemplateUpdate(BaseModel):
    """Partial update of a certificate template."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    template_type: CertificateType | None = None
    html_content: str | None = Field(default=None, min_length=1)
    css_styles: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None


class TemplateResponse(BaseModel):
    """Certificate template as returned by the admin API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    template_type: str
    html_content: str
    css_styles: str | None = None
    is_active: bool
    is_default: bool
    created_by: int | None = None
    created_at: datetime
    updated_at: datetime


class TemplateSourceRequest(BaseModel):
    """Raw template source for validation / variable extraction."""

    html_content: str


class TemplateValidationResult(BaseModel):
    valid: bool
    error: str | None = None


class TemplateVariablesResponse(BaseModel):
    variables: list[str]


# ============ Health ============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class PoolStatusResponse(BaseModel):
    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class BrowserPoolStatus(BaseModel):
    size: int
    launched: int
    in_use: int


class DetailedHealthResponse(BaseModel):
    """Detailed health check with component status."""

    status: str
    service: str
    database: bool
    pool: PoolStatusResponse | None = None
    browser_pool: BrowserPoolStatus | None = None
