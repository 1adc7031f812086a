"""Certificate issuance, verification, and download endpoints.

Route ordering note: Literal path segments (/verify/, /stats, /eligible,
/preview) are defined before parameterized segments (/{certificate_id}) to
prevent routing conflicts.
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response

from core.auth import AdminUserId, CurrentUser, CurrentUserDep
from core.config import get_settings
from core.database import DbSession
from core.ratelimit import GENERATE_LIMIT, PDF_LIMIT, VERIFY_LIMIT, limiter
from models import CertificateStatus, CertificateType
from schemas import (
    CertificateData,
    CertificateFilters,
    CertificateStats,
    CertificateVerificationResult,
    EligibleStudent,
    GenerateCertificatesConfig,
    GenerateCertificatesResult,
    PreviewRequest,
    RevokeCertificateRequest,
)
from services.certificates_service import (
    CertificateAlreadyRevokedError,
    CertificateNotFoundError,
    CertificateService,
    CourseNotFoundError,
    MissingContentError,
)
from services.templates_service import TemplateNotFoundError

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


def get_certificate_service(request: Request, db: DbSession) -> CertificateService:
    """Bind the app-wide engine and renderer to this request's session."""
    return CertificateService(
        db=db,
        template_engine=request.app.state.template_engine,
        pdf_renderer=request.app.state.pdf_renderer,
        settings=get_settings(),
    )


CertificateServiceDep = Annotated[CertificateService, Depends(get_certificate_service)]


def _get_cache_control() -> str:
    settings = get_settings()
    if settings.environment.lower() == "development":
        return "no-store"
    return "private, max-age=300"


def _pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": _get_cache_control(),
        },
    )


# --- Collection endpoints ---


@router.post(
    "/generate",
    response_model=GenerateCertificatesResult,
    responses={
        404: {"description": "Course or template not found"},
        403: {"description": "Admin access required"},
    },
)
@limiter.limit(GENERATE_LIMIT)
async def generate_certificates_endpoint(
    request: Request,
    body: GenerateCertificatesConfig,
    admin_id: AdminUserId,
    service: CertificateServiceDep,
) -> GenerateCertificatesResult:
    """Issue certificates for a batch of students.

    Per-student failures are reported in ``errors``; the call succeeds even
    when some (or all) students are skipped.
    """
    try:
        return await service.generate_certificates(body, issued_by=admin_id)
    except (CourseNotFoundError, TemplateNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("", response_model=list[CertificateData])
async def list_certificates_endpoint(
    admin_id: AdminUserId,
    service: CertificateServiceDep,
    user_id: int | None = None,
    course_id: int | None = None,
    certificate_type: CertificateType | None = None,
    status: CertificateStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[CertificateData]:
    """List certificates, optionally filtered."""
    filters = CertificateFilters(
        user_id=user_id,
        course_id=course_id,
        certificate_type=certificate_type,
        status=status,
        date_from=date_from,
        date_to=date_to,
    )
    return await service.list_certificates(filters)


# --- Literal path routes (before parameterized) ---


@router.get("/stats", response_model=CertificateStats)
async def certificate_stats_endpoint(
    admin_id: AdminUserId,
    service: CertificateServiceDep,
) -> CertificateStats:
    return await service.get_stats()


@router.get(
    "/eligible",
    response_model=list[EligibleStudent],
    responses={404: {"description": "Course not found"}},
)
async def eligible_students_endpoint(
    admin_id: AdminUserId,
    service: CertificateServiceDep,
    course_id: int = Query(ge=1),
) -> list[EligibleStudent]:
    """Students who completed the course and hold no course certificate."""
    try:
        return await service.list_eligible_students(course_id)
    except CourseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get(
    "/verify/{certificate_number}", response_model=CertificateVerificationResult
)
@limiter.limit(VERIFY_LIMIT)
async def verify_certificate_endpoint(
    request: Request,
    service: CertificateServiceDep,
    certificate_number: str = Path(min_length=1, max_length=64),
) -> CertificateVerificationResult:
    """Verify a certificate by number (public endpoint).

    Unknown numbers return ``valid: false`` rather than 404.
    """
    return await service.verify_certificate(certificate_number)


@router.post(
    "/preview",
    responses={
        200: {"content": {"application/pdf": {}}, "description": "Preview PDF"},
        404: {"description": "Template not found"},
    },
)
@limiter.limit(PDF_LIMIT)
async def preview_pdf_endpoint(
    request: Request,
    body: PreviewRequest,
    admin_id: AdminUserId,
    service: CertificateServiceDep,
) -> Response:
    """Render a template against sample data. Nothing is stored."""
    try:
        pdf_content = await service.preview_pdf(body)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return _pdf_response(pdf_content, "certificate-preview.pdf")


@router.post(
    "/preview/screenshot",
    responses={
        200: {"content": {"image/png": {}}, "description": "Preview image"},
        404: {"description": "Template not found"},
    },
)
@limiter.limit(PDF_LIMIT)
async def preview_screenshot_endpoint(
    request: Request,
    body: PreviewRequest,
    admin_id: AdminUserId,
    service: CertificateServiceDep,
) -> Response:
    try:
        png_content = await service.preview_screenshot(body)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return Response(
        content=png_content,
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )


# --- Parameterized routes ---


async def _get_visible_certificate(
    service: CertificateService, certificate_id: int, user: CurrentUser
) -> CertificateData:
    """Admins see every certificate; students only their own (404 otherwise)."""
    try:
        certificate = await service.get_certificate(certificate_id)
    except CertificateNotFoundError as e:
        raise HTTPException(status_code=404, detail="Certificate not found") from e
    if not user.is_admin and certificate.user_id != user.id:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return certificate


@router.get(
    "/{certificate_id}",
    response_model=CertificateData,
    responses={404: {"description": "Certificate not found"}},
)
async def get_certificate_endpoint(
    certificate_id: int,
    user: CurrentUserDep,
    service: CertificateServiceDep,
) -> CertificateData:
    return await _get_visible_certificate(service, certificate_id, user)


@router.get(
    "/{certificate_id}/pdf",
    responses={
        200: {"content": {"application/pdf": {}}, "description": "PDF certificate"},
        401: {"description": "Not authenticated"},
        404: {"description": "Certificate not found"},
        409: {"description": "Certificate has no renderable content"},
    },
)
@limiter.limit(PDF_LIMIT)
async def get_certificate_pdf_endpoint(
    request: Request,
    certificate_id: int,
    user: CurrentUserDep,
    service: CertificateServiceDep,
) -> Response:
    """Download the certificate as an A4 landscape PDF."""
    certificate = await _get_visible_certificate(service, certificate_id, user)

    try:
        pdf_content = await service.generate_pdf(certificate.id)
    except CertificateNotFoundError as e:
        raise HTTPException(status_code=404, detail="Certificate not found") from e
    except MissingContentError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return _pdf_response(
        pdf_content, f"certificado-{certificate.certificate_number}.pdf"
    )


@router.post(
    "/{certificate_id}/revoke",
    response_model=CertificateData,
    responses={
        404: {"description": "Certificate not found"},
        409: {"description": "Certificate already revoked (strict mode)"},
    },
)
async def revoke_certificate_endpoint(
    certificate_id: int,
    body: RevokeCertificateRequest,
    admin_id: AdminUserId,
    service: CertificateServiceDep,
    strict: bool = False,
) -> CertificateData:
    """Revoke a certificate. Revocation cannot be undone."""
    try:
        return await service.revoke_certificate(
            certificate_id, revoked_by=admin_id, reason=body.reason, strict=strict
        )
    except CertificateNotFoundError as e:
        raise HTTPException(status_code=404, detail="Certificate not found") from e
    except CertificateAlreadyRevokedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
