"""Admin endpoints: programs, questionnaire versions, code housekeeping.

Protected by the ``ADMIN_API_KEY`` setting.  Every request must include
an ``X-Admin-Key`` header whose value matches the configured key (401 if
missing, 403 if wrong) plus the ``X-Tenant-ID`` it operates on.

Definition problems come back as 422 with the full ``problems`` list.
"""

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.tenancy import TenantContext
from aegis_screening.legacy import migrate_legacy_ruleset
from aegis_screening.models.questionnaire import ProgramInfo, VersionInfo
from aegis_screening.models.session import CamelModel, CodeStats
from aegis_screening.questionnaire import QuestionnaireService
from aegis_screening.verification import VerificationCodeManager

from aegis_server.dependencies import (
    get_code_manager,
    get_questionnaire_service,
    get_tenant_context,
    get_tenant_db,
    require_admin_key,
)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

class CreateProgramRequest(CamelModel):
    """Body for POST /admin/programs."""
    name: str
    slug: str | None = None


class SweepResult(CamelModel):
    """Response body for housekeeping operations."""
    affected_rows: int
    action: str


# ------------------------------------------------------------------
# Programs & versions
# ------------------------------------------------------------------

@router.post("/programs", status_code=201)
async def create_program(
    body: CreateProgramRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    questionnaires: QuestionnaireService = Depends(get_questionnaire_service),
) -> ProgramInfo:
    return await questionnaires.create_program(ctx, db, name=body.name, slug=body.slug)


@router.get("/programs/{program_id}/versions")
async def list_versions(
    program_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    questionnaires: QuestionnaireService = Depends(get_questionnaire_service),
) -> list[VersionInfo]:
    """All versions of the program, newest first."""
    return await questionnaires.list_versions(ctx, db, program_id)


@router.post("/programs/{program_id}/versions", status_code=201)
async def publish_version(
    program_id: uuid.UUID,
    definition: dict[str, Any] = Body(...),
    activate: bool = Query(True),
    created_by: str | None = Header(None, alias="X-Admin-User"),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    questionnaires: QuestionnaireService = Depends(get_questionnaire_service),
) -> VersionInfo:
    """Publish a definition as the program's next version.

    Args:
        activate: also make it the program's active version (default true)
    """
    return await questionnaires.publish(
        ctx, db, program_id, definition,
        created_by=created_by,
        activate=activate,
    )


@router.post("/programs/{program_id}/versions/{version_id}/activate")
async def activate_version(
    program_id: uuid.UUID,
    version_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    questionnaires: QuestionnaireService = Depends(get_questionnaire_service),
) -> ProgramInfo:
    """Swap the program's active pointer to an existing version."""
    return await questionnaires.activate(ctx, db, program_id, version_id)


@router.post("/questionnaires/migrate-legacy")
async def migrate_legacy(raw: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Convert a legacy ordered-rule definition to the canonical form.

    Nothing is stored.  The response is a definition document (snake_case,
    as in definition files) ready to be published.
    """
    definition = migrate_legacy_ruleset(raw)
    return definition.model_dump(mode="json", exclude_none=True)


# ------------------------------------------------------------------
# Verification code housekeeping
# ------------------------------------------------------------------

@router.post("/codes/mark-expired")
async def mark_expired(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    codes: VerificationCodeManager = Depends(get_code_manager),
) -> SweepResult:
    """Sweep the tenant's overdue unused codes to ``expired``."""
    affected = await codes.mark_expired(ctx, db)
    return SweepResult(affected_rows=affected, action="mark_expired")


@router.get("/codes/stats")
async def code_stats(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    codes: VerificationCodeManager = Depends(get_code_manager),
) -> CodeStats:
    """Code counts by status for the tenant."""
    return await codes.code_stats(ctx, db)
