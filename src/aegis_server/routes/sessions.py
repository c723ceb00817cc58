"""Consumer session endpoints: start a screening, fetch it, submit answers.

All endpoints require the ``X-Tenant-ID`` header (injected by the
gateway).  Sessions are only visible under the tenant that created them.
"""

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.tenancy import TenantContext
from aegis_screening.models.session import CamelModel, SessionInfo, SubmissionResult
from aegis_screening.screening import ScreeningService

from aegis_server.dependencies import get_screening_service, get_tenant_context, get_tenant_db

router = APIRouter(tags=["sessions"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class CreateSessionRequest(CamelModel):
    """Body for POST /programs/{program_id}/sessions."""
    path: str = "manual"
    # Pin a specific version; defaults to the program's active one
    version_id: uuid.UUID | None = None


class SubmitAnswersRequest(CamelModel):
    """Body for POST /sessions/{session_id}/answers."""
    answers: dict[str, Any]


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/programs/{program_id}/sessions", status_code=201)
async def create_session(
    program_id: uuid.UUID,
    body: CreateSessionRequest | None = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    screening: ScreeningService = Depends(get_screening_service),
) -> SessionInfo:
    """Start a screening session on the program's questionnaire.

    Returns 201 with the questions to render.  404 if the program (or the
    pinned version) does not exist or has no active questionnaire.
    """
    body = body or CreateSessionRequest()
    return await screening.create_session(
        ctx, db, program_id, version_id=body.version_id, path=body.path,
    )


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    screening: ScreeningService = Depends(get_screening_service),
) -> SessionInfo:
    """Session state, questions and (once completed) the outcome."""
    return await screening.get_session(ctx, db, session_id)


@router.post("/sessions/{session_id}/answers")
async def submit_answers(
    session_id: uuid.UUID,
    body: SubmitAnswersRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    screening: ScreeningService = Depends(get_screening_service),
) -> SubmissionResult:
    """Validate and evaluate the answers, completing the session.

    422 names every rejected question; 409 if the session was already
    completed.
    """
    return await screening.submit_answers(ctx, db, session_id, body.answers)
