"""Tests for certificates routes."""

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from models import User
from rendering.pdf_renderer import PDFRenderError
from tests.conftest import FAKE_PDF, FAKE_PNG, make_client
from tests.factories import (
    CertificateFactory,
    CourseFactory,
    DefaultTemplateFactory,
    EnrollmentFactory,
    RevokedCertificateFactory,
    UserFactory,
    create_async,
)

# Mark all tests in this module as integration tests (database required)
pytestmark = pytest.mark.integration


@pytest.fixture
async def course(db_session: AsyncSession):
    course = await create_async(CourseFactory, db_session, title="Python Básico")
    await db_session.commit()
    return course


@pytest.fixture
async def default_template(db_session: AsyncSession):
    template = await create_async(DefaultTemplateFactory, db_session)
    await db_session.commit()
    return template


@pytest.fixture
async def certificate(db_session: AsyncSession, student_user: User, course):
    cert = await create_async(
        CertificateFactory,
        db_session,
        user_id=student_user.id,
        course_id=course.id,
    )
    await db_session.commit()
    return cert


class TestGenerateCertificates:
    """Tests for POST /api/certificates/generate."""

    async def test_admin_generates(
        self,
        db_session: AsyncSession,
        admin_client: AsyncClient,
        student_user: User,
        course,
        default_template,
    ):
        await create_async(
            EnrollmentFactory, db_session, user_id=student_user.id, course_id=course.id
        )
        await db_session.commit()

        response = await admin_client.post(
            "/api/certificates/generate",
            json={"course_id": course.id, "student_ids": [student_user.id]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["generated_count"] == 1
        assert data["errors"] == []
        assert data["certificates"][0]["user_id"] == student_user.id

    async def test_second_batch_reports_duplicate(
        self, admin_client: AsyncClient, student_user: User, course, default_template
    ):
        body = {"course_id": course.id, "student_ids": [student_user.id]}
        await admin_client.post("/api/certificates/generate", json=body)

        response = await admin_client.post("/api/certificates/generate", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["generated_count"] == 0
        assert data["errors"] == [
            {
                "student_id": student_user.id,
                "error": "Student already has an active certificate of this type "
                "for this course",
            }
        ]

    async def test_unknown_course_returns_404(
        self, admin_client: AsyncClient, default_template
    ):
        response = await admin_client.post(
            "/api/certificates/generate",
            json={"course_id": 404, "student_ids": [1]},
        )
        assert response.status_code == 404

    async def test_no_default_template_returns_404(
        self, admin_client: AsyncClient, student_user: User, course
    ):
        response = await admin_client.post(
            "/api/certificates/generate",
            json={"course_id": course.id, "student_ids": [student_user.id]},
        )
        assert response.status_code == 404

    async def test_module_without_name_returns_422(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/certificates/generate",
            json={
                "course_id": 1,
                "student_ids": [1],
                "certificate_type": "module_completion",
            },
        )
        assert response.status_code == 422

    async def test_empty_batch_returns_422(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/certificates/generate", json={"course_id": 1, "student_ids": []}
        )
        assert response.status_code == 422

    async def test_student_forbidden(self, student_client: AsyncClient):
        response = await student_client.post(
            "/api/certificates/generate", json={"course_id": 1, "student_ids": [1]}
        )
        assert response.status_code == 403

    async def test_unauthenticated(self, client: AsyncClient):
        response = await client.post(
            "/api/certificates/generate", json={"course_id": 1, "student_ids": [1]}
        )
        assert response.status_code == 401


class TestAdminQueries:
    async def test_list_with_filters(
        self, admin_client: AsyncClient, certificate, student_user: User
    ):
        response = await admin_client.get(
            "/api/certificates", params={"user_id": student_user.id}
        )
        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [certificate.id]

        response = await admin_client.get(
            "/api/certificates", params={"status": "revoked"}
        )
        assert response.json() == []

    async def test_list_invalid_status_returns_422(self, admin_client: AsyncClient):
        response = await admin_client.get(
            "/api/certificates", params={"status": "lost"}
        )
        assert response.status_code == 422

    async def test_list_forbidden_for_students(self, student_client: AsyncClient):
        response = await student_client.get("/api/certificates")
        assert response.status_code == 403

    async def test_stats(self, admin_client: AsyncClient, certificate):
        response = await admin_client.get("/api/certificates/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_issued"] == 1
        assert data["total_active"] == 1
        assert len(data["by_month"]) == 12

    async def test_eligible(
        self,
        db_session: AsyncSession,
        admin_client: AsyncClient,
        student_user: User,
        course,
    ):
        await create_async(
            EnrollmentFactory, db_session, user_id=student_user.id, course_id=course.id
        )
        await db_session.commit()

        response = await admin_client.get(
            "/api/certificates/eligible", params={"course_id": course.id}
        )

        assert response.status_code == 200
        assert [s["user_id"] for s in response.json()] == [student_user.id]

    async def test_eligible_unknown_course(self, admin_client: AsyncClient):
        response = await admin_client.get(
            "/api/certificates/eligible", params={"course_id": 404}
        )
        assert response.status_code == 404


class TestVerifyCertificate:
    """GET /api/certificates/verify/{number} is public."""

    async def test_valid(self, client: AsyncClient, certificate):
        response = await client.get(
            f"/api/certificates/verify/{certificate.certificate_number}"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["message"] == "Certificate is valid"
        assert data["student_name"] == "Ana Pérez"
        assert data["course_title"] == "Curso de Prueba"

    async def test_unknown_number_is_not_404(self, client: AsyncClient):
        response = await client.get("/api/certificates/verify/BIT2026NOPE0000")

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["message"] == "Certificate not found"

    async def test_revoked(
        self,
        db_session: AsyncSession,
        client: AsyncClient,
        student_user: User,
        course,
    ):
        cert = await create_async(
            RevokedCertificateFactory,
            db_session,
            user_id=student_user.id,
            course_id=course.id,
        )
        await db_session.commit()

        response = await client.get(
            f"/api/certificates/verify/{cert.certificate_number}"
        )

        data = response.json()
        assert data["valid"] is False
        assert data["message"] == "Certificate revoked: Emitido por error"


class TestGetCertificate:
    async def test_owner_can_read(self, student_client: AsyncClient, certificate):
        response = await student_client.get(f"/api/certificates/{certificate.id}")
        assert response.status_code == 200
        assert response.json()["certificate_number"] == certificate.certificate_number

    async def test_admin_can_read(self, admin_client: AsyncClient, certificate):
        response = await admin_client.get(f"/api/certificates/{certificate.id}")
        assert response.status_code == 200

    async def test_other_student_gets_404(
        self, app: FastAPI, db_session: AsyncSession, certificate
    ):
        other = await create_async(UserFactory, db_session)
        await db_session.commit()

        async with make_client(app, user_id=other.id, role="student") as other_client:
            response = await other_client.get(f"/api/certificates/{certificate.id}")

        assert response.status_code == 404

    async def test_unknown_id(self, admin_client: AsyncClient):
        response = await admin_client.get("/api/certificates/99999")
        assert response.status_code == 404

    async def test_unauthenticated(self, client: AsyncClient, certificate):
        response = await client.get(f"/api/certificates/{certificate.id}")
        assert response.status_code == 401


class TestCertificatePdf:
    async def test_owner_downloads_pdf(
        self,
        student_client: AsyncClient,
        certificate,
        fake_pdf_renderer: MagicMock,
    ):
        response = await student_client.get(f"/api/certificates/{certificate.id}/pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == FAKE_PDF
        assert (
            f'filename="certificado-{certificate.certificate_number}.pdf"'
            in response.headers["content-disposition"]
        )
        fake_pdf_renderer.generate_pdf.assert_awaited_once()

    async def test_missing_content_returns_409(
        self,
        db_session: AsyncSession,
        admin_client: AsyncClient,
        student_user: User,
        course,
    ):
        cert = await create_async(
            CertificateFactory,
            db_session,
            user_id=student_user.id,
            course_id=course.id,
            certificate_data={},
            metadata_={},
        )
        await db_session.commit()

        response = await admin_client.get(f"/api/certificates/{cert.id}/pdf")
        assert response.status_code == 409

    async def test_renderer_failure_returns_502(
        self,
        admin_client: AsyncClient,
        certificate,
        fake_pdf_renderer: MagicMock,
    ):
        fake_pdf_renderer.generate_pdf.side_effect = PDFRenderError("browser crashed")

        response = await admin_client.get(f"/api/certificates/{certificate.id}/pdf")

        assert response.status_code == 502
        assert "browser crashed" not in response.text

    async def test_unknown_certificate(self, admin_client: AsyncClient):
        response = await admin_client.get("/api/certificates/99999/pdf")
        assert response.status_code == 404


class TestPreview:
    async def test_preview_pdf(
        self, admin_client: AsyncClient, fake_pdf_renderer: MagicMock
    ):
        response = await admin_client.post(
            "/api/certificates/preview",
            json={"html_content": "<p>{{STUDENT_NAME}}</p>"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        html = fake_pdf_renderer.generate_pdf.await_args.args[0]
        assert "<p>Nombre del Estudiante</p>" in html

    async def test_preview_screenshot(
        self, admin_client: AsyncClient, default_template
    ):
        response = await admin_client.post(
            "/api/certificates/preview/screenshot",
            json={"template_id": default_template.id},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content == FAKE_PNG

    async def test_preview_syntax_error_returns_422(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/certificates/preview", json={"html_content": "{{#if x}}"}
        )
        assert response.status_code == 422
        assert "Unclosed block" in response.json()["detail"]

    async def test_preview_unknown_template(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/certificates/preview", json={"template_id": 404}
        )
        assert response.status_code == 404

    async def test_preview_requires_source(self, admin_client: AsyncClient):
        response = await admin_client.post("/api/certificates/preview", json={})
        assert response.status_code == 422

    async def test_preview_forbidden_for_students(self, student_client: AsyncClient):
        response = await student_client.post(
            "/api/certificates/preview", json={"html_content": "<p/>"}
        )
        assert response.status_code == 403


class TestRevokeCertificate:
    async def test_revoke(
        self, admin_client: AsyncClient, admin_user: User, certificate
    ):
        response = await admin_client.post(
            f"/api/certificates/{certificate.id}/revoke",
            json={"reason": "  Datos incorrectos  "},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "revoked"
        assert data["revoke_reason"] == "Datos incorrectos"
        assert data["revoked_by"] == admin_user.id

        verify = await admin_client.get(
            f"/api/certificates/verify/{certificate.certificate_number}"
        )
        assert verify.json()["valid"] is False

    async def test_re_revoke_is_noop_unless_strict(
        self, admin_client: AsyncClient, certificate
    ):
        url = f"/api/certificates/{certificate.id}/revoke"
        await admin_client.post(url, json={"reason": "Primero"})

        lenient = await admin_client.post(url, json={"reason": "Segundo"})
        assert lenient.status_code == 200
        assert lenient.json()["revoke_reason"] == "Primero"

        strict = await admin_client.post(
            url, params={"strict": "true"}, json={"reason": "Tercero"}
        )
        assert strict.status_code == 409

    async def test_blank_reason_returns_422(
        self, admin_client: AsyncClient, certificate
    ):
        response = await admin_client.post(
            f"/api/certificates/{certificate.id}/revoke", json={"reason": "   "}
        )
        assert response.status_code == 422

    async def test_unknown_certificate(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/certificates/99999/revoke", json={"reason": "x"}
        )
        assert response.status_code == 404

    async def test_student_forbidden(self, student_client: AsyncClient, certificate):
        response = await student_client.post(
            f"/api/certificates/{certificate.id}/revoke", json={"reason": "x"}
        )
        assert response.status_code == 403
