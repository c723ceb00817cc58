"""FastAPI dependency injection: DB sessions, services, tenant and caller identity.

Each request that touches the database gets a fresh ``AsyncSession`` via
``get_db()``.  The session is committed on success and rolled back on error,
matching the SDK convention where services and repositories call
``flush()`` but never ``commit()``.

Tenant and partner identity arrive as headers injected by the API
gateway.  The tenant id is validated by ``aegis_db.tenancy.bind`` before
anything else sees it, and ``get_tenant_db`` sets the transaction-local
RLS variable on the request's session.
"""

import hmac
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.engine import get_session_factory
from aegis_db.tenancy import TenantContext, apply_tenant_setting, bind
from aegis_screening.questionnaire import QuestionnaireService
from aegis_screening.screening import ScreeningService
from aegis_screening.verification import VerificationCodeManager

from aegis_server.config import ServerSettings


# ------------------------------------------------------------------
# Database session: transaction boundary lives here
# ------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error.

    The SDK's repository methods call ``flush()`` but never ``commit()``,
    so this dependency is the single place where transactions are finalised.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ------------------------------------------------------------------
# Services & settings: stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_settings(request: Request) -> ServerSettings:
    return request.app.state.settings


def get_questionnaire_service(request: Request) -> QuestionnaireService:
    """Return the QuestionnaireService singleton from ``app.state``."""
    return request.app.state.questionnaires


def get_screening_service(request: Request) -> ScreeningService:
    """Return the ScreeningService singleton from ``app.state``."""
    return request.app.state.screening


def get_code_manager(request: Request) -> VerificationCodeManager:
    """Return the VerificationCodeManager singleton from ``app.state``."""
    return request.app.state.codes


# ------------------------------------------------------------------
# Gateway identity: X-Tenant-ID / X-Partner-ID
# ------------------------------------------------------------------

def _check_proxy_secret(request: Request, x_proxy_secret: str | None) -> None:
    """Require a matching ``X-Proxy-Secret`` when one is configured.

    This proves the identity headers were injected by a trusted API
    gateway and not forged by an external client.
    """
    expected_secret: str | None = request.app.state.settings.trusted_proxy_secret
    if not expected_secret:
        return
    if not x_proxy_secret:
        raise HTTPException(status_code=403, detail="X-Proxy-Secret header is required")
    # Constant-time comparison
    if not hmac.compare_digest(x_proxy_secret, expected_secret):
        raise HTTPException(status_code=403, detail="Invalid proxy secret")


async def get_tenant_context(
    request: Request,
    x_tenant_id: str | None = Header(None, alias="X-Tenant-ID"),
    x_proxy_secret: str | None = Header(None, alias="X-Proxy-Secret"),
) -> TenantContext:
    """Bind the ``X-Tenant-ID`` header to a validated ``TenantContext``.

    Returns 401 if the header is missing; a malformed id raises
    ``InvalidTenantIdError`` (mapped to 400).
    """
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="X-Tenant-ID header is required")
    _check_proxy_secret(request, x_proxy_secret)
    return bind(x_tenant_id)


async def get_tenant_db(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> AsyncSession:
    """The request's session with ``app.current_tenant_id`` applied."""
    await apply_tenant_setting(db, ctx)
    return db


async def get_partner_id(
    x_partner_id: str | None = Header(None, alias="X-Partner-ID"),
) -> str:
    """Identify the redeeming partner system (recorded on the code row)."""
    if not x_partner_id:
        raise HTTPException(status_code=401, detail="X-Partner-ID header is required")
    return x_partner_id


# ------------------------------------------------------------------
# Admin auth
# ------------------------------------------------------------------

async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate ``X-Admin-Key`` against the configured ``ADMIN_API_KEY``.

    Raises 403 if admin endpoints are disabled or the key is wrong, 401 if
    the header is missing.
    """
    expected: str | None = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    if not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_admin_key
