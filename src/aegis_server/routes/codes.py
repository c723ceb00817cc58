"""Consumer code issuance: POST /sessions/{session_id}/code."""

import uuid
from datetime import timedelta
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.tenancy import TenantContext
from aegis_screening.models.session import CamelModel, CodeInfo
from aegis_screening.verification import VerificationCodeManager

from aegis_server.config import MAX_CODE_TTL_HOURS, ServerSettings
from aegis_server.dependencies import (
    get_code_manager,
    get_settings,
    get_tenant_context,
    get_tenant_db,
)

router = APIRouter(tags=["codes"])


class IssueCodeRequest(CamelModel):
    """Body for POST /sessions/{session_id}/code."""
    code_type: Literal["pos_barcode", "ecommerce_jwt"] = "pos_barcode"
    # None -> DEFAULT_CODE_TTL_HOURS; 0 yields an already-expired code
    expires_in_hours: int | None = Field(None, ge=0, le=MAX_CODE_TTL_HOURS)


@router.post("/sessions/{session_id}/code", status_code=201)
async def issue_code(
    session_id: uuid.UUID,
    body: IssueCodeRequest | None = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    codes: VerificationCodeManager = Depends(get_code_manager),
    settings: ServerSettings = Depends(get_settings),
) -> CodeInfo:
    """Issue the session's verification code (or return the existing one).

    409 unless the session completed with outcome ``eligible``; 503 if no
    unique code could be generated.
    """
    body = body or IssueCodeRequest()
    hours = body.expires_in_hours
    if hours is None:
        hours = settings.default_code_ttl_hours
    return await codes.issue(
        ctx, db, session_id,
        kind=body.code_type,
        ttl=timedelta(hours=hours),
    )
