"""Certificate template administration endpoints (admin only)."""

from fastapi import APIRouter, HTTPException, Response

from core.auth import AdminUserId
from core.database import DbSession
from schemas import (
    TemplateCreate,
    TemplateResponse,
    TemplateSourceRequest,
    TemplateUpdate,
    TemplateValidationResult,
    TemplateVariablesResponse,
)
from services.templates_service import (
    DefaultTemplateDeletionError,
    TemplateNotFoundError,
    TemplateValidationError,
    create_template,
    delete_template,
    get_template,
    list_templates,
    template_variables,
    update_template,
    validate_template,
)

router = APIRouter(prefix="/api/certificate-templates", tags=["certificate-templates"])


@router.get("", response_model=list[TemplateResponse])
async def list_templates_endpoint(
    admin_id: AdminUserId,
    db: DbSession,
) -> list[TemplateResponse]:
    return await list_templates(db)


@router.post(
    "",
    response_model=TemplateResponse,
    status_code=201,
    responses={400: {"description": "Template syntax error"}},
)
async def create_template_endpoint(
    body: TemplateCreate,
    admin_id: AdminUserId,
    db: DbSession,
) -> TemplateResponse:
    try:
        return await create_template(db, body, created_by=admin_id)
    except TemplateValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# --- Literal path routes (before parameterized) ---


@router.post("/validate", response_model=TemplateValidationResult)
async def validate_template_endpoint(
    body: TemplateSourceRequest,
    admin_id: AdminUserId,
) -> TemplateValidationResult:
    """Syntax check for the template editor. Always 200."""
    return validate_template(body.html_content)


@router.post("/variables", response_model=TemplateVariablesResponse)
async def template_variables_endpoint(
    body: TemplateSourceRequest,
    admin_id: AdminUserId,
) -> TemplateVariablesResponse:
    return template_variables(body.html_content)


# --- Parameterized routes ---


@router.get(
    "/{template_id}",
    response_model=TemplateResponse,
    responses={404: {"description": "Template not found"}},
)
async def get_template_endpoint(
    template_id: int,
    admin_id: AdminUserId,
    db: DbSession,
) -> TemplateResponse:
    try:
        return await get_template(db, template_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.patch(
    "/{template_id}",
    response_model=TemplateResponse,
    responses={
        400: {"description": "Template syntax error"},
        404: {"description": "Template not found"},
    },
)
async def update_template_endpoint(
    template_id: int,
    body: TemplateUpdate,
    admin_id: AdminUserId,
    db: DbSession,
) -> TemplateResponse:
    try:
        return await update_template(db, template_id, body)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except TemplateValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.delete(
    "/{template_id}",
    status_code=204,
    responses={
        404: {"description": "Template not found"},
        409: {"description": "Default template cannot be deleted"},
    },
)
async def delete_template_endpoint(
    template_id: int,
    admin_id: AdminUserId,
    db: DbSession,
) -> Response:
    try:
        await delete_template(db, template_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except DefaultTemplateDeletionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return Response(status_code=204)
