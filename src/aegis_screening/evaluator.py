"""Evaluation engine: (questionnaire version, answers) -> outcome.

Pure and deterministic.  No I/O, no clock, no randomness.

Algorithm:

  1. Validate every answer against its question.  Any violation raises
     ``AnswerValidationError`` with one reason per offending question id;
     evaluation does not proceed.
  2. If every condition in the ``ineligible`` bucket holds -> ``ineligible``.
  3. Else if every condition in the ``eligible`` bucket holds -> ``eligible``.
  4. Else -> ``consult_professional``.

A bucket with no conditions never holds.  A condition whose question was
not answered is false for every operator, including ``not_equals``.

The version may be a parsed :class:`QuestionnaireDefinition` or anything
with ``questions`` / ``ruleset`` attributes holding stored JSON (an ORM
row).  Stored JSON is re-checked on the way in; if it does not pass, the
evaluation fails closed with ``RulesetConfigurationError`` instead of
producing an outcome.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from aegis_db.models.enums import Outcome

from aegis_screening.constants import BUCKET_ORDER, DEFAULT_OUTCOME_MESSAGES
from aegis_screening.errors import AnswerValidationError, RulesetConfigurationError
from aegis_screening.models.questionnaire import (
    BooleanQuestion,
    Condition,
    DiagnosticTestQuestion,
    NumericQuestion,
    Question,
    QuestionnaireDefinition,
    SingleChoiceQuestion,
)
from aegis_screening.models.session import EvaluationResult
from aegis_screening.questionnaire import parse_definition

logger = logging.getLogger(__name__)

# Optional keys of a diagnostic_test answer object.
_DIAGNOSTIC_OPTIONAL_KEYS = ("test_name", "test_date", "result", "upload_url")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def evaluate(version: Any, answers: Mapping[str, Any]) -> Outcome:
    """Return the outcome for *answers* under *version*."""
    return evaluate_detailed(version, answers).outcome


def evaluate_detailed(version: Any, answers: Mapping[str, Any]) -> EvaluationResult:
    """Like :func:`evaluate`, but also report the matched bucket and message."""
    definition = as_definition(version)
    validated = validate_answers(definition, answers)
    return _decide(definition, validated)


def validate_answers(
    version: Any, answers: Mapping[str, Any]
) -> dict[str, Any]:
    """Check *answers* against the questions and return the normalised set.

    Numeric strings become numbers; unanswered optional questions are
    dropped.  Raises ``AnswerValidationError`` naming every offending
    question.
    """
    definition = as_definition(version)
    if not isinstance(answers, Mapping):
        raise AnswerValidationError({"answers": "must be an object"})

    index = definition.question_index()
    errors: dict[str, str] = {}
    validated: dict[str, Any] = {}

    for qid in answers:
        if qid not in index:
            errors[str(qid)] = "unknown question"

    for question in definition.questions:
        raw = answers.get(question.id)
        if raw is None:
            if question.required:
                errors[question.id] = "answer is required"
            continue
        value, reason = _validate_one(question, raw)
        if reason is not None:
            errors[question.id] = reason
        else:
            validated[question.id] = value

    if errors:
        raise AnswerValidationError(errors)
    return validated


def as_definition(version: Any) -> QuestionnaireDefinition:
    """Coerce *version* to a checked definition, failing closed."""
    if isinstance(version, QuestionnaireDefinition):
        return version
    try:
        questions = version.questions
        ruleset = version.ruleset
    except AttributeError as exc:
        raise RulesetConfigurationError("version has no questions or ruleset") from exc
    raw = {
        "title": getattr(version, "title", None) or "untitled",
        "questions": questions,
        "ruleset": ruleset,
    }
    try:
        return parse_definition(raw)
    except RulesetConfigurationError:
        logger.error(
            "Stored questionnaire failed checks; refusing to evaluate: version=%s",
            getattr(version, "id", None),
        )
        raise


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

def _decide(definition: QuestionnaireDefinition, answers: dict[str, Any]) -> EvaluationResult:
    ruleset = definition.ruleset
    index = definition.question_index()

    # BUCKET_ORDER puts ineligible first; the first bucket that holds wins.
    for bucket in BUCKET_ORDER:
        conditions = getattr(ruleset, bucket)
        if _bucket_holds(conditions, answers, index):
            return EvaluationResult(
                outcome=Outcome(bucket),
                matched_bucket=bucket,
                message=_message_for(ruleset.messages, bucket),
            )

    default = Outcome.CONSULT_PROFESSIONAL
    return EvaluationResult(
        outcome=default,
        matched_bucket=None,
        message=_message_for(ruleset.messages, default.value),
    )


def _message_for(messages: dict[str, str], outcome: str) -> str:
    return messages.get(outcome) or DEFAULT_OUTCOME_MESSAGES[outcome]


def _bucket_holds(
    conditions: list[Condition],
    answers: dict[str, Any],
    index: dict[str, Question],
) -> bool:
    if not conditions:
        return False
    return all(_condition_holds(c, answers, index) for c in conditions)


def _condition_holds(
    cond: Condition, answers: dict[str, Any], index: dict[str, Question]
) -> bool:
    if cond.question_id not in index:
        # Unreachable for parsed definitions
        raise RulesetConfigurationError(
            f"condition references unknown question '{cond.question_id}'"
        )

    answer = answers.get(cond.question_id)
    if answer is None:
        return False

    if cond.field is not None:
        if not isinstance(answer, dict):
            return False
        answer = answer.get(cond.field)
        if answer is None:
            return False

    return _compare(cond.operator, answer, cond.value)


def _compare(op: str, answer: Any, value: Any) -> bool:
    """Apply an operator to an answer and an expected value.

    Equality is exact (case-sensitive for strings, no bool/number
    crossover).  Ordering operators compare as floats and are false when
    either side does not parse.
    """
    if op == "equals":
        return _same_kind(answer, value) and answer == value
    if op == "not_equals":
        return not (_same_kind(answer, value) and answer == value)

    try:
        a = float(answer)
        b = float(value)
    except (TypeError, ValueError):
        return False
    if isinstance(answer, bool) or isinstance(value, bool):
        return False

    if op == "greater_than":
        return a > b
    if op == "less_than":
        return a < b
    if op == "greater_than_or_equal":
        return a >= b
    if op == "less_than_or_equal":
        return a <= b

    raise RulesetConfigurationError(f"unknown operator '{op}'")


def _same_kind(a: Any, b: Any) -> bool:
    """True unless exactly one side is a bool (``True == 1`` must not match)."""
    return isinstance(a, bool) == isinstance(b, bool)


# ---------------------------------------------------------------------------
# Per-type answer validation
# ---------------------------------------------------------------------------

def _validate_one(question: Question, raw: Any) -> tuple[Any, str | None]:
    """Return ``(normalised_value, None)`` or ``(None, reason)``."""
    if isinstance(question, BooleanQuestion):
        if not isinstance(raw, bool):
            return None, "must be true or false"
        return raw, None

    if isinstance(question, SingleChoiceQuestion):
        if not isinstance(raw, str) or raw not in question.options:
            return None, "must be one of the listed options"
        return raw, None

    if isinstance(question, NumericQuestion):
        return _validate_numeric(question, raw)

    if isinstance(question, DiagnosticTestQuestion):
        return _validate_diagnostic(raw)

    return None, "unsupported question type"


def _validate_numeric(question: NumericQuestion, raw: Any) -> tuple[Any, str | None]:
    if isinstance(raw, bool):
        return None, "must be a number"
    if isinstance(raw, (int, float)):
        num = raw
    elif isinstance(raw, str):
        try:
            num = float(raw.strip())
        except ValueError:
            return None, "must be a number"
    else:
        return None, "must be a number"

    if not math.isfinite(num):
        return None, "must be a finite number"
    if question.min_value is not None and num < question.min_value:
        return None, f"must be at least {question.min_value:g}"
    if question.max_value is not None and num > question.max_value:
        return None, f"must be at most {question.max_value:g}"
    return num, None


def _validate_diagnostic(raw: Any) -> tuple[Any, str | None]:
    if not isinstance(raw, dict):
        return None, "must be an object with has_test"
    if not isinstance(raw.get("has_test"), bool):
        return None, "has_test must be true or false"

    unknown = sorted(set(raw) - {"has_test", *_DIAGNOSTIC_OPTIONAL_KEYS})
    if unknown:
        return None, f"unexpected fields: {', '.join(unknown)}"

    out: dict[str, Any] = {"has_test": raw["has_test"]}
    for key in _DIAGNOSTIC_OPTIONAL_KEYS:
        val = raw.get(key)
        if val is None:
            continue
        if key == "result":
            if isinstance(val, bool) or not isinstance(val, (str, int, float)):
                return None, "result must be a string or number"
        elif not isinstance(val, str):
            return None, f"{key} must be a string"
        out[key] = val
    return out, None
