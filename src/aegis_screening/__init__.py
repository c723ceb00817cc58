"""aegis_screening: eligibility screening SDK.

Public API:
    QuestionnaireService    : publishes and activates immutable questionnaire versions
    ScreeningService        : session state machine (started -> completed)
    VerificationCodeManager : issues codes and redeems them exactly once
    evaluate                : pure (version, answers) -> Outcome
    evaluate_detailed       : same, plus matched bucket and patient message
    validate_answers        : answer checks on their own
    parse_definition        : publish-time validation of a definition
    load_definition_file    : read a YAML / JSON definition from disk
    migrate_legacy_ruleset  : one-time conversion of ordered-rule rulesets

All service methods take a ``TenantContext`` (see ``aegis_db.tenancy.bind``)
first and an ``AsyncSession`` second.
"""

from aegis_screening.evaluator import evaluate, evaluate_detailed, validate_answers
from aegis_screening.legacy import migrate_legacy_ruleset, parse_expression
from aegis_screening.models.questionnaire import QuestionnaireDefinition
from aegis_screening.models.session import (
    CodeCheckResult,
    CodeInfo,
    CodeStats,
    EvaluationResult,
    RedemptionResult,
    SessionInfo,
    SubmissionResult,
)
from aegis_screening.questionnaire import (
    QuestionnaireService,
    load_definition_file,
    parse_definition,
)
from aegis_screening.screening import ScreeningService
from aegis_screening.verification import VerificationCodeManager, generate_code

__all__ = [
    # Services
    "QuestionnaireService",
    "ScreeningService",
    "VerificationCodeManager",
    # Evaluation
    "evaluate",
    "evaluate_detailed",
    "validate_answers",
    # Definitions
    "QuestionnaireDefinition",
    "load_definition_file",
    "migrate_legacy_ruleset",
    "parse_definition",
    "parse_expression",
    # Codes
    "generate_code",
    # Result models
    "CodeCheckResult",
    "CodeInfo",
    "CodeStats",
    "EvaluationResult",
    "RedemptionResult",
    "SessionInfo",
    "SubmissionResult",
]
