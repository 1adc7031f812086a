#!/usr/bin/env python3
"""Seed the built-in certificate templates.

Idempotent: templates are matched by name, and existing ones are left
untouched. The "modern" template becomes the default only when no default
exists yet.

Usage:
    cd api
    .venv/bin/python -m scripts.seed_default_templates
"""

from __future__ import annotations

import asyncio
import logging
import sys

# Add parent directory to path so we can import from core/models regardless of cwd
sys.path.insert(0, str(__file__).rsplit("/scripts", 1)[0])

from sqlalchemy.ext.asyncio import AsyncSession

from core.database import create_engine, create_session_maker, dispose_engine
from rendering.default_templates import DEFAULT_TEMPLATE_KEY, DEFAULT_TEMPLATES
from repositories.template_repository import TemplateRepository

logger = logging.getLogger(__name__)


async def seed_default_templates(db: AsyncSession) -> list[str]:
    """Insert missing built-in templates. Returns the names created."""
    repo = TemplateRepository(db)
    has_default = await repo.get_default() is not None
    created: list[str] = []

    for key, template in DEFAULT_TEMPLATES.items():
        if await repo.get_by_name(template["name"]) is not None:
            continue
        await repo.create(
            created_by=None,
            name=template["name"],
            description=template["description"],
            html_content=template["html"],
            is_active=True,
            is_default=key == DEFAULT_TEMPLATE_KEY and not has_default,
        )
        created.append(template["name"])

    logger.info("certificate_template.seeded", extra={"templates_created": created})
    return created


async def _main() -> int:
    engine = create_engine()
    try:
        session_maker = create_session_maker(engine)
        async with session_maker() as session:
            created = await seed_default_templates(session)
            await session.commit()
    finally:
        await dispose_engine(engine)

    print(f"Created {len(created)} template(s): {', '.join(created) or '-'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
