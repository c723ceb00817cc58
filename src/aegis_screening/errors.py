"""Domain exceptions for the eligibility pipeline.

Every error carries a stable ``code`` string that API callers (and
partner integrations in particular) can branch on.  Errors are grouped
into families so the server can map a whole family to one HTTP status:

  - ``InputValidationError``  : malformed answers or code strings
  - ``StateConflictError``    : session already completed, code used or expired
  - ``NotFoundError``         : unknown program, version, session or code
  - ``ConfigurationError``    : broken ruleset data or legacy conversion failures
  - ``ResourceExhaustedError``: bounded retries ran out

Redemption failures additionally derive from ``RedemptionFailure`` and
expose ``reason``, one of ``not_found``, ``already_used`` or ``expired``.
That is the only detail a partner ever sees.

``InvalidTenantIdError`` lives in ``aegis_db.tenancy`` (the guard sits
below this package) and is re-exported here for convenience.
"""

from __future__ import annotations

from typing import Iterable

from aegis_db.tenancy import InvalidTenantIdError


class AegisError(Exception):
    """Base class for all pipeline errors."""

    code = "aegis_error"


# --- Families ---

class InputValidationError(AegisError, ValueError):
    code = "invalid_input"


class StateConflictError(AegisError):
    code = "conflict"


class NotFoundError(AegisError):
    code = "not_found"


class ConfigurationError(AegisError):
    code = "configuration_error"


class ResourceExhaustedError(AegisError):
    code = "resource_exhausted"


class RedemptionFailure(AegisError):
    """Mixin for the three partner-visible redemption outcomes."""

    reason = "not_found"


# --- Validation ---

class AnswerValidationError(InputValidationError):
    """One or more answers failed their question's constraints.

    ``errors`` maps every offending question id to a short reason.
    """

    code = "answer_validation_failed"

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        qids = ", ".join(sorted(self.errors))
        super().__init__(f"Invalid answers for: {qids}")


class InvalidCodeFormatError(InputValidationError, RedemptionFailure):
    """The code string does not match PREFIX-XXXX-XXXX-XXXX."""

    code = "invalid_code_format"
    reason = "not_found"


# --- State conflicts ---

class AlreadyCompletedError(StateConflictError):
    code = "already_completed"


class NotEligibleError(StateConflictError):
    code = "not_eligible"


class CodeAlreadyUsedError(StateConflictError, RedemptionFailure):
    code = "already_used"
    reason = "already_used"


class CodeExpiredError(StateConflictError, RedemptionFailure):
    code = "expired"
    reason = "expired"


# --- Not found ---

class SessionNotFoundError(NotFoundError):
    code = "session_not_found"


class ProgramNotFoundError(NotFoundError):
    code = "program_not_found"


class QuestionnaireNotFoundError(NotFoundError):
    code = "questionnaire_not_found"


class NoActiveQuestionnaireError(NotFoundError):
    code = "no_active_questionnaire"


class CodeNotFoundError(NotFoundError, RedemptionFailure):
    code = "not_found"
    reason = "not_found"


# --- Configuration ---

class RulesetConfigurationError(ConfigurationError):
    """A questionnaire definition or stored ruleset is malformed.

    ``problems`` lists every issue found, not just the first.
    """

    code = "ruleset_configuration_error"

    def __init__(self, problems: Iterable[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class LegacyExpressionError(ConfigurationError):
    """A legacy condition string could not be tokenized or parsed."""

    code = "legacy_expression_error"

    def __init__(self, message: str, *, position: int | None = None) -> None:
        self.position = position
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)


class LegacyMigrationError(ConfigurationError):
    """A legacy ruleset parses but cannot be expressed as condition buckets."""

    code = "legacy_migration_error"

    def __init__(self, message: str, *, rule_index: int | None = None) -> None:
        self.rule_index = rule_index
        if rule_index is not None:
            message = f"rules[{rule_index}]: {message}"
        super().__init__(message)


# --- Exhaustion ---

class CodeGenerationExhaustedError(ResourceExhaustedError):
    code = "code_generation_exhausted"


__all__ = [
    "AegisError",
    "AlreadyCompletedError",
    "AnswerValidationError",
    "CodeAlreadyUsedError",
    "CodeExpiredError",
    "CodeGenerationExhaustedError",
    "CodeNotFoundError",
    "ConfigurationError",
    "InputValidationError",
    "InvalidCodeFormatError",
    "InvalidTenantIdError",
    "LegacyExpressionError",
    "LegacyMigrationError",
    "NoActiveQuestionnaireError",
    "NotEligibleError",
    "NotFoundError",
    "ProgramNotFoundError",
    "QuestionnaireNotFoundError",
    "RedemptionFailure",
    "ResourceExhaustedError",
    "RulesetConfigurationError",
    "SessionNotFoundError",
    "StateConflictError",
]
