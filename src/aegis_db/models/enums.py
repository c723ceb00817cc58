"""Database-level enumerations for screening sessions and verification codes."""

import enum


class SessionStatus(str, enum.Enum):
    """Lifecycle states for a screening session.

    Transitions:
        started -> completed  (answers validated, outcome written)

    There is no abandoned/cancelled state: a session that never completes
    stays ``started`` and is never eligible for a code.
    """

    STARTED = "started"
    COMPLETED = "completed"


class Outcome(str, enum.Enum):
    """Regulated screening outcome.

    ``CONSULT_PROFESSIONAL`` is the fail-safe default.
    """

    ELIGIBLE = "eligible"
    CONSULT_PROFESSIONAL = "consult_professional"
    INELIGIBLE = "ineligible"


class SessionPath(str, enum.Enum):
    """How the patient reached the questionnaire."""

    MANUAL = "manual"
    EHR_ASSISTED = "ehr_assisted"
    EHR_MANDATORY = "ehr_mandatory"


class CodeStatus(str, enum.Enum):
    """Verification code states.

    Transitions:
        unused -> used     (atomic redemption)
        unused -> expired  (housekeeping sweep)

    ``used`` and ``expired`` are sinks.
    """

    UNUSED = "unused"
    USED = "used"
    EXPIRED = "expired"


class CodeKind(str, enum.Enum):
    """Where the code is meant to be redeemed."""

    POS_BARCODE = "pos_barcode"
    ECOMMERCE_JWT = "ecommerce_jwt"
