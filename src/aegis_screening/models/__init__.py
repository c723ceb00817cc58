"""Public model re-exports for aegis_screening.

Consumers should import from ``aegis_screening.models`` rather than
reaching into sub-modules directly.
"""

# --- Questionnaire definitions ---
from aegis_screening.models.questionnaire import (
    BaseQuestion,
    BooleanQuestion,
    Condition,
    DiagnosticTestQuestion,
    ExternalMapping,
    NumericQuestion,
    ProgramInfo,
    Question,
    QuestionnaireDefinition,
    Ruleset,
    SingleChoiceQuestion,
    VersionInfo,
    question_mapper,
)

# --- Session / code views ---
from aegis_screening.models.session import (
    CamelModel,
    CodeCheckResult,
    CodeInfo,
    CodeStats,
    EvaluationResult,
    RedeemedCode,
    RedeemedSession,
    RedemptionResult,
    SessionInfo,
    SubmissionResult,
)

__all__ = [
    # Questionnaire
    "BaseQuestion",
    "BooleanQuestion",
    "Condition",
    "DiagnosticTestQuestion",
    "ExternalMapping",
    "NumericQuestion",
    "ProgramInfo",
    "Question",
    "QuestionnaireDefinition",
    "Ruleset",
    "SingleChoiceQuestion",
    "VersionInfo",
    "question_mapper",
    # Session / code
    "CamelModel",
    "CodeCheckResult",
    "CodeInfo",
    "CodeStats",
    "EvaluationResult",
    "RedeemedCode",
    "RedeemedSession",
    "RedemptionResult",
    "SessionInfo",
    "SubmissionResult",
]
