"""Session, evaluation and verification-code models returned to callers.

These models are decoupled from the ORM models in
``aegis_db`` so that API consumers never see database internals (partner
audit columns, tenant ids).  All of them serialise with camelCase aliases.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from aegis_db.models.enums import Outcome

from aegis_screening.models.questionnaire import Question


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionInfo(CamelModel):
    """Public view of a screening session, including what to render."""

    session_id: uuid.UUID
    program_id: uuid.UUID
    questionnaire_version_id: uuid.UUID
    version_number: Optional[int] = None
    title: Optional[str] = None
    status: str
    path: str
    outcome: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    questions: list[Question] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)


class EvaluationResult(CamelModel):
    """Outcome plus which bucket produced it.

    ``matched_bucket`` is ``None`` when neither bucket matched and the
    fail-safe default applied.
    """

    outcome: Outcome
    matched_bucket: Optional[str] = None
    message: Optional[str] = None


class SubmissionResult(CamelModel):
    """Returned by ``ScreeningService.submit_answers``."""

    session_id: uuid.UUID
    outcome: str
    completed_at: datetime
    message: Optional[str] = None


class CodeInfo(CamelModel):
    """An issued verification code as shown to the patient."""

    id: uuid.UUID
    session_id: uuid.UUID
    code: str
    type: str
    status: str
    expires_at: datetime
    used_at: Optional[datetime] = None


class CodeCheckResult(CamelModel):
    """Non-mutating preview of a code.

    ``reason`` is ``valid``, ``already_used``, ``expired`` or ``not_found``.
    """

    valid: bool
    reason: str
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None


class RedeemedCode(CamelModel):
    id: uuid.UUID
    code: str
    type: str
    used_at: datetime


class RedeemedSession(CamelModel):
    outcome: Optional[str] = None
    completed_at: Optional[datetime] = None


class RedemptionResult(CamelModel):
    """Successful redemption: the consumed code and its session's outcome."""

    valid: bool = True
    code: RedeemedCode
    session: RedeemedSession


class CodeStats(CamelModel):
    """Per-status code counts for one tenant."""

    total: int
    unused: int
    used: int
    expired: int
