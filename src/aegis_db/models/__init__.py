"""ORM models for aegis_db."""

from aegis_db.models.base import Base
from aegis_db.models.code import VerificationCode
from aegis_db.models.enums import (
    CodeKind,
    CodeStatus,
    Outcome,
    SessionPath,
    SessionStatus,
)
from aegis_db.models.program import DrugProgram, QuestionnaireVersion
from aegis_db.models.session import ScreeningSession

__all__ = [
    "Base",
    "CodeKind",
    "CodeStatus",
    "DrugProgram",
    "Outcome",
    "QuestionnaireVersion",
    "ScreeningSession",
    "SessionPath",
    "SessionStatus",
    "VerificationCode",
]
