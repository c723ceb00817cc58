"""Partner verification endpoints: redeem or preview a code.

Partners (pharmacy POS terminals, e-commerce checkouts) identify
themselves with ``X-Partner-ID`` alongside ``X-Tenant-ID``.  Every failure
is reported as exactly one of ``not_found``, ``already_used`` or
``expired``; nothing else about the code or session crosses this
boundary.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.tenancy import TenantContext
from aegis_screening.errors import RedemptionFailure
from aegis_screening.models.session import CamelModel, RedemptionResult
from aegis_screening.verification import VerificationCodeManager

from aegis_server.dependencies import (
    get_code_manager,
    get_partner_id,
    get_tenant_context,
    get_tenant_db,
)

router = APIRouter(tags=["verify"])

# HTTP status per partner-visible failure reason
_FAILURE_STATUS: dict[str, int] = {
    "not_found": 404,
    "already_used": 409,
    "expired": 410,
}


class VerifyRequest(CamelModel):
    """Body for POST /verify."""
    code: str
    transaction_id: str
    metadata: dict[str, Any] | None = None


class CheckResponse(CamelModel):
    """Response for GET /verify/{code}."""
    valid: bool
    error: Optional[str] = None
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None


def _failure(reason: str) -> JSONResponse:
    return JSONResponse(
        status_code=_FAILURE_STATUS.get(reason, 404),
        content={"valid": False, "error": reason},
    )


@router.post("/verify", response_model=RedemptionResult)
async def redeem_code(
    body: VerifyRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    partner_id: str = Depends(get_partner_id),
    db: AsyncSession = Depends(get_tenant_db),
    codes: VerificationCodeManager = Depends(get_code_manager),
):
    """Consume the code.  Exactly one concurrent caller succeeds.

    200 ``{valid: true, code, session}``; otherwise ``{valid: false,
    error}`` with 404 / 409 / 410.
    """
    try:
        return await codes.redeem(
            ctx, db, body.code,
            partner_id=partner_id,
            transaction_id=body.transaction_id,
            metadata=body.metadata,
        )
    except RedemptionFailure as exc:
        return _failure(exc.reason)


@router.get(
    "/verify/{code}",
    response_model=CheckResponse,
    response_model_exclude_none=True,
)
async def check_code(
    code: str,
    ctx: TenantContext = Depends(get_tenant_context),
    _partner: str = Depends(get_partner_id),
    db: AsyncSession = Depends(get_tenant_db),
    codes: VerificationCodeManager = Depends(get_code_manager),
) -> CheckResponse:
    """Preview a code without consuming it."""
    result = await codes.check_only(ctx, db, code)
    return CheckResponse(
        valid=result.valid,
        error=None if result.valid else result.reason,
        expires_at=result.expires_at,
        used_at=result.used_at,
    )
