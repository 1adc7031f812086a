"""Repository for certificate template operations."""

from collections.abc import Sequence
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import CertificateTemplate


class TemplateRepository:
    """Repository for CertificateTemplate CRUD operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, template_id: int) -> CertificateTemplate | None:
        return await self.db.get(CertificateTemplate, template_id)

    async def get_active(self, template_id: int) -> CertificateTemplate | None:
        result = await self.db.execute(
            select(CertificateTemplate).where(
                CertificateTemplate.id == template_id,
                CertificateTemplate.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def get_default(self) -> CertificateTemplate | None:
        """The active default template (newest if the flag was ever duplicated)."""
        result = await self.db.execute(
            select(CertificateTemplate)
            .where(
                CertificateTemplate.is_default.is_(True),
                CertificateTemplate.is_active.is_(True),
            )
            .order_by(CertificateTemplate.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def find_active_containing(self, marker: str) -> CertificateTemplate | None:
        """Newest active template whose HTML contains ``marker``, default first."""
        result = await self.db.execute(
            select(CertificateTemplate)
            .where(
                CertificateTemplate.is_active.is_(True),
                CertificateTemplate.html_content.contains(marker, autoescape=True),
            )
            .order_by(
                CertificateTemplate.is_default.desc(),
                CertificateTemplate.created_at.desc(),
                CertificateTemplate.id.desc(),
            )
            .limit(1)
        )
        return result.scalars().first()

    async def list_all(self) -> Sequence[CertificateTemplate]:
        result = await self.db.execute(
            select(CertificateTemplate).order_by(
                CertificateTemplate.is_default.desc(),
                CertificateTemplate.name.asc(),
                CertificateTemplate.id.asc(),
            )
        )
        return result.scalars().all()

    async def get_by_name(self, name: str) -> CertificateTemplate | None:
        result = await self.db.execute(
            select(CertificateTemplate).where(CertificateTemplate.name == name)
        )
        return result.scalars().first()

    async def create(
        self, *, created_by: int | None, **fields: Any
    ) -> CertificateTemplate:
        """Create a template. Calls flush() but does NOT commit."""
        template = CertificateTemplate(created_by=created_by, **fields)
        self.db.add(template)
        await self.db.flush()
        await self.db.refresh(template)
        return template

    async def update(
        self, template: CertificateTemplate, **fields: Any
    ) -> CertificateTemplate:
        for key, value in fields.items():
            setattr(template, key, value)
        await self.db.flush()
        await self.db.refresh(template)
        return template

    async def clear_default(self, *, except_id: int | None = None) -> None:
        """Unset ``is_default`` on every template other than ``except_id``."""
        stmt = (
            update(CertificateTemplate)
            .where(CertificateTemplate.is_default.is_(True))
            .values(is_default=False)
        )
        if except_id is not None:
            stmt = stmt.where(CertificateTemplate.id != except_id)
        await self.db.execute(stmt.execution_options(synchronize_session="fetch"))

    async def delete(self, template: CertificateTemplate) -> None:
        await self.db.delete(template)
        await self.db.flush()
