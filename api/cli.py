#!/usr/bin/env python3
"""CLI for certificates API management tasks.

Usage:
    python -m cli <command>

Commands:
    migrate          Run database migrations
    seed-templates   Insert the built-in certificate templates
    verify           Look up a certificate by number
    revoke           Revoke a certificate
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _with_session(work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run ``work`` in one committed transaction on a fresh engine."""
    from core.database import create_engine, create_session_maker, dispose_engine

    engine = create_engine()
    try:
        async with create_session_maker(engine)() as session:
            result = await work(session)
            await session.commit()
            return result
    finally:
        await dispose_engine(engine)


def _certificate_service(session: AsyncSession):
    from core.config import get_settings
    from rendering.pdf_renderer import PDFRenderer
    from rendering.template_engine import TemplateEngine
    from services.certificates_service import CertificateService

    settings = get_settings()
    # Verification and revocation never launch a browser
    return CertificateService(
        session,
        TemplateEngine(locale=settings.locale),
        PDFRenderer(settings),
        settings,
    )


def _alembic_config():
    from alembic.config import Config

    api_dir = Path(__file__).resolve().parent
    cfg = Config(str(api_dir / "alembic.ini"))
    # Absolute so migrations run from any working directory
    cfg.set_main_option("script_location", str(api_dir / "alembic"))
    return cfg


def cmd_migrate() -> int:
    """Run database migrations."""
    from alembic import command

    logger.info("Running database migrations...")
    cfg = _alembic_config()
    command.upgrade(cfg, "head")
    logger.info("Migrations complete")
    return 0


def cmd_seed_templates() -> int:
    from scripts.seed_default_templates import seed_default_templates

    created = asyncio.run(_with_session(seed_default_templates))
    logger.info(f"Seeded {len(created)} certificate template(s)")
    return 0


def cmd_verify(certificate_number: str) -> int:
    async def work(session: AsyncSession):
        return await _certificate_service(session).verify_certificate(
            certificate_number
        )

    result = asyncio.run(_with_session(work))
    print(result.model_dump_json(indent=2))
    return 0 if result.valid else 2


def cmd_revoke(certificate_id: int, revoked_by: int, reason: str) -> int:
    from services.certificates_service import CertificateNotFoundError

    async def work(session: AsyncSession):
        return await _certificate_service(session).revoke_certificate(
            certificate_id, revoked_by=revoked_by, reason=reason
        )

    try:
        certificate = asyncio.run(_with_session(work))
    except CertificateNotFoundError as e:
        logger.error(str(e))
        return 1

    logger.info(
        f"Certificate {certificate.certificate_number} is {certificate.status.value}"
    )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Certificates API CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("migrate", help="Run database migrations")
    subparsers.add_parser(
        "seed-templates", help="Insert the built-in certificate templates"
    )

    verify = subparsers.add_parser("verify", help="Look up a certificate by number")
    verify.add_argument("certificate_number")

    revoke = subparsers.add_parser("revoke", help="Revoke a certificate")
    revoke.add_argument("certificate_id", type=int)
    revoke.add_argument("--by", dest="revoked_by", type=int, required=True)
    revoke.add_argument("--reason", required=True)

    args = parser.parse_args()

    if args.command == "migrate":
        return cmd_migrate()
    elif args.command == "seed-templates":
        return cmd_seed_templates()
    elif args.command == "verify":
        return cmd_verify(args.certificate_number)
    elif args.command == "revoke":
        return cmd_revoke(args.certificate_id, args.revoked_by, args.reason)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
