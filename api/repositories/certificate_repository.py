"""Repository for certificate operations."""

from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Certificate,
    CertificateStatus,
    CertificateType,
    Course,
    utcnow,
)
from repositories.utils import log_slow_query, year_month
from schemas import CertificateFilters


class CertificateRepository:
    """Repository for certificate CRUD and reporting queries."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, certificate_id: int) -> Certificate | None:
        return await self.db.get(Certificate, certificate_id)

    async def get_by_number(self, certificate_number: str) -> Certificate | None:
        """Get a certificate by its public number (for verification)."""
        result = await self.db.execute(
            select(Certificate).where(
                Certificate.certificate_number == certificate_number
            )
        )
        return result.scalar_one_or_none()

    async def get_active(
        self,
        user_id: int,
        course_id: int,
        certificate_type: CertificateType,
    ) -> Certificate | None:
        """Get the non-revoked certificate for (user, course, type), if any."""
        result = await self.db.execute(
            select(Certificate)
            .where(
                Certificate.user_id == user_id,
                Certificate.course_id == course_id,
                Certificate.certificate_type == certificate_type,
                Certificate.status != CertificateStatus.REVOKED,
            )
            .limit(1)
        )
        return result.scalars().first()

    async def number_exists(self, certificate_number: str) -> bool:
        result = await self.db.execute(
            select(Certificate.id).where(
                Certificate.certificate_number == certificate_number
            )
        )
        return result.first() is not None

    async def create(
        self,
        *,
        certificate_number: str,
        certificate_type: CertificateType,
        user_id: int,
        course_id: int,
        template_id: int | None,
        issue_date: date,
        completion_date: date,
        issued_by: int | None,
        certificate_data: dict[str, Any],
        metadata: dict[str, Any],
        status: CertificateStatus = CertificateStatus.ISSUED,
    ) -> Certificate:
        """Create a new certificate.

        Calls flush() but does NOT commit; the caller is responsible for
        transaction management. A violation of the active-tuple index raises
        ``IntegrityError`` from the flush.
        """
        certificate = Certificate(
            certificate_number=certificate_number,
            certificate_type=certificate_type,
            user_id=user_id,
            course_id=course_id,
            template_id=template_id,
            status=status,
            issue_date=issue_date,
            completion_date=completion_date,
            issued_by=issued_by,
            certificate_data=certificate_data,
            metadata_=metadata,
        )
        self.db.add(certificate)
        await self.db.flush()
        await self.db.refresh(certificate)
        return certificate

    async def revoke(
        self,
        certificate: Certificate,
        *,
        revoked_by: int,
        reason: str,
    ) -> Certificate:
        """Mark a certificate revoked, stamping who, when and why."""
        certificate.status = CertificateStatus.REVOKED
        certificate.revoked_by = revoked_by
        certificate.revoked_at = utcnow()
        certificate.revoke_reason = reason
        await self.db.flush()
        await self.db.refresh(certificate)
        return certificate

    @log_slow_query("certificate_list")
    async def find_all(
        self,
        filters: CertificateFilters,
        *,
        limit: int = 500,
    ) -> Sequence[Certificate]:
        """List certificates by type, then most recently created first."""
        query = select(Certificate)
        if filters.user_id is not None:
            query = query.where(Certificate.user_id == filters.user_id)
        if filters.course_id is not None:
            query = query.where(Certificate.course_id == filters.course_id)
        if filters.certificate_type is not None:
            query = query.where(
                Certificate.certificate_type == filters.certificate_type
            )
        if filters.status is not None:
            query = query.where(Certificate.status == filters.status)
        if filters.date_from is not None:
            query = query.where(Certificate.issue_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.where(Certificate.issue_date <= filters.date_to)

        result = await self.db.execute(
            query.order_by(
                Certificate.certificate_type.asc(),
                Certificate.created_at.desc(),
                Certificate.id.desc(),
            ).limit(limit)
        )
        return result.scalars().all()

    async def count_by_status(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Certificate.status, func.count(Certificate.id)).group_by(
                Certificate.status
            )
        )
        return {status.value: count for status, count in result.all()}

    async def count_by_type(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Certificate.certificate_type, func.count(Certificate.id)).group_by(
                Certificate.certificate_type
            )
        )
        return {cert_type.value: count for cert_type, count in result.all()}

    @log_slow_query("certificate_stats_by_course")
    async def count_by_course(self, *, limit: int = 10) -> list[tuple[int, str, int]]:
        """Top courses by certificate count as (course_id, title, count)."""
        count = func.count(Certificate.id).label("count")
        result = await self.db.execute(
            select(Certificate.course_id, Course.title, count)
            .join(Course, Course.id == Certificate.course_id)
            .group_by(Certificate.course_id, Course.title)
            .order_by(count.desc(), Certificate.course_id.asc())
            .limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    @log_slow_query("certificate_stats_by_month")
    async def count_by_month(self, since: datetime) -> list[tuple[str, int]]:
        """Certificates created per ``YYYY-MM`` since ``since``, oldest first."""
        month = year_month(self.db, Certificate.created_at).label("month")
        result = await self.db.execute(
            select(month, func.count(Certificate.id))
            .where(Certificate.created_at >= since)
            .group_by(month)
            .order_by(month.asc())
        )
        return [(row[0], row[1]) for row in result.all()]
