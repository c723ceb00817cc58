"""Screening and verification constants shared across the SDK.

Several values can be overridden via environment variables so that a
deployment can rebrand codes or tune retry limits without code changes.
"""

import os

# Verification codes: PREFIX-XXXX-XXXX-XXXX.
# The alphabet excludes I and O so printed codes read unambiguously.
CODE_ALPHABET = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_PREFIX = os.getenv("CODE_PREFIX", "AEGIS").upper()
CODE_GROUP_COUNT = 3
CODE_GROUP_LENGTH = 4

# Collision retries before issuance gives up with CodeGenerationExhaustedError.
MAX_CODE_GENERATION_ATTEMPTS = int(os.getenv("MAX_CODE_GENERATION_ATTEMPTS", "5"))

# Default code lifetime when the caller does not supply one.
DEFAULT_CODE_TTL_HOURS = int(os.getenv("DEFAULT_CODE_TTL_HOURS", "72"))

# Condition operators understood by the evaluator.
EQUALITY_OPERATORS: frozenset[str] = frozenset({"equals", "not_equals"})
ORDERING_OPERATORS: frozenset[str] = frozenset({
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
})
OPERATORS: frozenset[str] = EQUALITY_OPERATORS | ORDERING_OPERATORS

# Sub-fields of a diagnostic_test answer that a condition may target.
DIAGNOSTIC_FIELDS: frozenset[str] = frozenset({"has_test", "result"})

# Buckets evaluated in precedence order: ineligible wins over eligible.
BUCKET_ORDER: tuple[str, ...] = ("ineligible", "eligible")

# Legacy ordered-rule outcomes and their canonical equivalents.
LEGACY_OUTCOME_MAP: dict[str, str] = {
    "ok_to_use": "eligible",
    "ask_a_doctor": "consult_professional",
    "do_not_use": "ineligible",
}

# Patient-facing summaries used when a ruleset defines no message for
# the outcome it produced.
DEFAULT_OUTCOME_MESSAGES: dict[str, str] = {
    "eligible": (
        "Based on your answers, this medication may be appropriate for you. "
        "You can now request a verification code."
    ),
    "consult_professional": (
        "Based on your answers, please consult with a healthcare provider "
        "before using this medication."
    ),
    "ineligible": (
        "Based on your answers, this medication is not recommended for you. "
        "Please consult with a healthcare provider."
    ),
}
