"""Certificate template administration.

Templates are mustache-style HTML documents rendered by
``rendering.template_engine``. At most one template is the default; setting
``is_default`` on one template clears it on every other template in the
same transaction.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from models import CertificateTemplate
from rendering.template_engine import TemplateEngine
from repositories.template_repository import TemplateRepository
from schemas import (
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
    TemplateValidationResult,
    TemplateVariablesResponse,
)

logger = logging.getLogger(__name__)

# Syntax checks and variable extraction are locale independent
_engine = TemplateEngine()


class TemplateNotFoundError(Exception):
    """Raised when no usable template exists for an id or as the default."""


class TemplateValidationError(Exception):
    """Raised when template source fails to parse."""


class DefaultTemplateDeletionError(Exception):
    """Raised when deleting the current default template."""


def _to_template_response(template: CertificateTemplate) -> TemplateResponse:
    return TemplateResponse.model_validate(template)


def _check_syntax(html_content: str) -> None:
    result = _engine.validate(html_content)
    if not result.valid:
        raise TemplateValidationError(result.error or "Invalid template")


async def list_templates(db: AsyncSession) -> list[TemplateResponse]:
    """All templates, default first, then by name."""
    templates = await TemplateRepository(db).list_all()
    return [_to_template_response(t) for t in templates]


async def get_template(db: AsyncSession, template_id: int) -> TemplateResponse:
    template = await TemplateRepository(db).get_by_id(template_id)
    if template is None:
        raise TemplateNotFoundError(f"Template {template_id} not found")
    return _to_template_response(template)


async def create_template(
    db: AsyncSession,
    data: TemplateCreate,
    created_by: int | None,
) -> TemplateResponse:
    """Create a template.

    Raises:
        TemplateValidationError: the HTML does not parse.
    """
    _check_syntax(data.html_content)
    repo = TemplateRepository(db)

    template = await repo.create(created_by=created_by, **data.model_dump(mode="json"))
    if template.is_default:
        await repo.clear_default(except_id=template.id)

    logger.info(
        "certificate_template.created",
        extra={
            "template_id": template.id,
            "is_default": template.is_default,
            "created_by": created_by,
        },
    )
    return _to_template_response(template)


async def update_template(
    db: AsyncSession,
    template_id: int,
    data: TemplateUpdate,
) -> TemplateResponse:
    """Apply a partial update. Only fields present in the request change."""
    repo = TemplateRepository(db)
    template = await repo.get_by_id(template_id)
    if template is None:
        raise TemplateNotFoundError(f"Template {template_id} not found")

    fields = data.model_dump(mode="json", exclude_unset=True)
    if "html_content" in fields:
        if fields["html_content"] is None:
            del fields["html_content"]
        else:
            _check_syntax(fields["html_content"])
    for key in ("name", "template_type", "is_active", "is_default"):
        if key in fields and fields[key] is None:
            del fields[key]

    template = await repo.update(template, **fields)
    if fields.get("is_default"):
        await repo.clear_default(except_id=template.id)

    logger.info(
        "certificate_template.updated",
        extra={"template_id": template.id, "fields": sorted(fields)},
    )
    return _to_template_response(template)


async def delete_template(db: AsyncSession, template_id: int) -> None:
    """Delete a template. Issued certificates keep their snapshot HTML.

    Raises:
        TemplateNotFoundError: unknown id.
        DefaultTemplateDeletionError: the template is the default.
    """
    repo = TemplateRepository(db)
    template = await repo.get_by_id(template_id)
    if template is None:
        raise TemplateNotFoundError(f"Template {template_id} not found")
    if template.is_default:
        raise DefaultTemplateDeletionError(
            "The default template cannot be deleted; set another default first"
        )

    await repo.delete(template)
    logger.info("certificate_template.deleted", extra={"template_id": template_id})


def validate_template(html_content: str) -> TemplateValidationResult:
    return _engine.validate(html_content)


def template_variables(html_content: str) -> TemplateVariablesResponse:
    return TemplateVariablesResponse(variables=_engine.extract_variables(html_content))
