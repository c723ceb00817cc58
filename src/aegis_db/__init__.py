"""aegis_db: PostgreSQL persistence layer for the eligibility pipeline.

This package provides the tenant context guard, ORM models, async engine
factory, and tenant-scoped repositories for questionnaire versions,
screening sessions, and verification codes.  It is consumed by the
``aegis_screening`` SDK and the FastAPI server.
"""

from aegis_db.engine import get_engine, get_session_factory
from aegis_db.models import (
    CodeKind,
    CodeStatus,
    DrugProgram,
    Outcome,
    QuestionnaireVersion,
    ScreeningSession,
    SessionPath,
    SessionStatus,
    VerificationCode,
)
from aegis_db.repository import (
    QuestionnaireRepository,
    SessionRepository,
    VerificationCodeRepository,
)
from aegis_db.tenancy import InvalidTenantIdError, TenantContext, bind

__all__ = [
    "CodeKind",
    "CodeStatus",
    "DrugProgram",
    "InvalidTenantIdError",
    "Outcome",
    "QuestionnaireRepository",
    "QuestionnaireVersion",
    "ScreeningSession",
    "SessionPath",
    "SessionRepository",
    "SessionStatus",
    "TenantContext",
    "VerificationCode",
    "VerificationCodeRepository",
    "bind",
    "get_engine",
    "get_session_factory",
]
