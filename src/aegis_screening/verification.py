"""VerificationCodeManager: issuance, exactly-once redemption, expiry.

Codes look like ``AEGIS-7K3F-Q9ZD-M2XA``: a brand prefix and three
groups of four characters drawn with ``secrets`` from an alphabet without
``I`` or ``O``.

Redemption is decided by one conditional ``UPDATE ... RETURNING`` in the
repository (unused and unexpired -> used).  If that statement returns no
row, a plain read afterwards works out why (not found, already used,
expired) so the partner gets a specific answer.  That read never changes
the verdict and never writes.

Expiry is lazy: a code past ``expires_at`` is refused at redemption time
even while its status is still ``unused``.  ``mark_expired`` sweeps such
rows to ``expired`` and never touches ``used`` rows.
"""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.models.base import utcnow
from aegis_db.models.code import VerificationCode
from aegis_db.models.enums import CodeKind, CodeStatus, Outcome
from aegis_db.repository import SessionRepository, VerificationCodeRepository
from aegis_db.tenancy import TenantContext

from aegis_screening.constants import (
    CODE_ALPHABET,
    CODE_GROUP_COUNT,
    CODE_GROUP_LENGTH,
    CODE_PREFIX,
    DEFAULT_CODE_TTL_HOURS,
    MAX_CODE_GENERATION_ATTEMPTS,
)
from aegis_screening.errors import (
    CodeAlreadyUsedError,
    CodeExpiredError,
    CodeGenerationExhaustedError,
    CodeNotFoundError,
    InputValidationError,
    InvalidCodeFormatError,
    NotEligibleError,
    RedemptionFailure,
    SessionNotFoundError,
)
from aegis_screening.models.session import (
    CodeCheckResult,
    CodeInfo,
    CodeStats,
    RedeemedCode,
    RedeemedSession,
    RedemptionResult,
)

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(
    rf"^{re.escape(CODE_PREFIX)}"
    rf"(?:-[{CODE_ALPHABET}]{{{CODE_GROUP_LENGTH}}}){{{CODE_GROUP_COUNT}}}$"
)

# Reason strings shared by check_only and the redemption error classes
REASON_VALID = "valid"
REASON_NOT_FOUND = CodeNotFoundError.reason
REASON_ALREADY_USED = CodeAlreadyUsedError.reason
REASON_EXPIRED = CodeExpiredError.reason


# ---------------------------------------------------------------------------
# Code strings
# ---------------------------------------------------------------------------

def generate_code(prefix: str = CODE_PREFIX) -> str:
    """Return a fresh random code such as ``AEGIS-7K3F-Q9ZD-M2XA``."""
    groups = [
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_GROUP_LENGTH))
        for _ in range(CODE_GROUP_COUNT)
    ]
    return "-".join([prefix, *groups])


def normalize_code(raw: Any) -> str:
    """Upper-case and trim *raw*; raise ``InvalidCodeFormatError`` if malformed."""
    if not isinstance(raw, str):
        raise InvalidCodeFormatError("Code must be a string")
    code = raw.strip().upper()
    if not _CODE_RE.fullmatch(code):
        raise InvalidCodeFormatError("Code does not match the expected format")
    return code


def classify(row: VerificationCode | None, now: datetime) -> str:
    """Why a code is (or is not) redeemable right now.

    ``used`` wins over an elapsed expiry: a consumed code reports
    ``already_used`` whatever its timestamp.
    """
    if row is None:
        return REASON_NOT_FOUND
    status = CodeStatus(row.status)
    if status == CodeStatus.USED:
        return REASON_ALREADY_USED
    if status == CodeStatus.EXPIRED or row.expires_at <= now:
        return REASON_EXPIRED
    return REASON_VALID


def _code_info(row: VerificationCode) -> CodeInfo:
    return CodeInfo(
        id=row.id,
        session_id=row.session_id,
        code=row.code,
        type=CodeKind(row.kind).value,
        status=CodeStatus(row.status).value,
        expires_at=row.expires_at,
        used_at=row.used_at,
    )


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class VerificationCodeManager:
    """Owns every write to ``verification_codes``.

    Args:
        codes: code repository override
        sessions: session repository override (eligibility is read fresh)
        clock: returns the current aware UTC time
        code_factory: produces candidate code strings
        max_attempts: candidates tried before giving up
    """

    def __init__(
        self,
        codes: VerificationCodeRepository | None = None,
        sessions: SessionRepository | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_code,
        max_attempts: int = MAX_CODE_GENERATION_ATTEMPTS,
    ) -> None:
        self._codes = codes or VerificationCodeRepository()
        self._sessions = sessions or SessionRepository()
        self._clock = clock
        self._code_factory = code_factory
        self._max_attempts = max_attempts

    # ==================================================================
    # Issuance
    # ==================================================================

    async def issue(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        session_id: uuid.UUID,
        *,
        kind: CodeKind | str = CodeKind.POS_BARCODE,
        ttl: timedelta | None = None,
    ) -> CodeInfo:
        """Issue the session's code, or return the one it already has.

        Eligibility is read from the store at call time.  A ``ttl`` of zero
        yields a code that is already expired.

        Raises:
            SessionNotFoundError: unknown under this tenant
            NotEligibleError: not completed with outcome ``eligible``
            CodeGenerationExhaustedError: every candidate collided
        """
        if ttl is None:
            ttl = timedelta(hours=DEFAULT_CODE_TTL_HOURS)
        if ttl < timedelta(0):
            raise InputValidationError("ttl must not be negative")
        try:
            kind = CodeKind(kind)
        except ValueError:
            raise InputValidationError(f"Unknown code type: {kind!r}") from None

        session = await self._sessions.get_by_id(ctx, db, session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: session_id={session_id}")
        if not await self._sessions.is_eligible_for_code(ctx, db, session_id):
            logger.info(
                "Code refused, session not eligible: tenant=%s, session=%s, outcome=%s",
                ctx, session_id, session.outcome,
            )
            raise NotEligibleError(f"Session is not eligible for a code: session_id={session_id}")

        existing = await self._codes.get_by_session(ctx, db, session_id)
        if existing is not None:
            return _code_info(existing)

        expires_at = self._clock() + ttl
        for attempt in range(1, self._max_attempts + 1):
            candidate = self._code_factory()
            if await self._codes.code_exists(ctx, db, candidate):
                logger.warning("Code collision (index): attempt=%d", attempt)
                continue
            try:
                row = await self._codes.create_code(
                    ctx, db,
                    session_id=session_id,
                    code=candidate,
                    kind=kind,
                    expires_at=expires_at,
                )
            except IntegrityError:
                # Either the session got a code concurrently or the code
                # string exists under another tenant.
                existing = await self._codes.get_by_session(ctx, db, session_id)
                if existing is not None:
                    return _code_info(existing)
                logger.warning("Code collision (insert): attempt=%d", attempt)
                continue

            logger.info(
                "Issued code: tenant=%s, session=%s, code_id=%s, kind=%s, expires_at=%s",
                ctx, session_id, row.id, kind.value, expires_at.isoformat(),
            )
            return _code_info(row)

        logger.error(
            "Code generation exhausted: tenant=%s, session=%s, attempts=%d",
            ctx, session_id, self._max_attempts,
        )
        raise CodeGenerationExhaustedError(
            f"No unique code after {self._max_attempts} attempts"
        )

    # ==================================================================
    # Redemption
    # ==================================================================

    async def redeem(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        code: str,
        *,
        partner_id: str | None = None,
        transaction_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RedemptionResult:
        """Consume *code* exactly once.

        Raises one of ``CodeNotFoundError``, ``CodeAlreadyUsedError``,
        ``CodeExpiredError`` (or ``InvalidCodeFormatError`` before any
        query), all of which are ``RedemptionFailure``.
        """
        try:
            normalized = normalize_code(code)
        except InvalidCodeFormatError:
            logger.info("Redemption rejected: tenant=%s, partner=%s, reason=malformed", ctx, partner_id)
            raise

        now = self._clock()
        row = await self._codes.redeem(
            ctx, db, normalized,
            now=now,
            partner_id=partner_id,
            transaction_id=transaction_id,
            metadata=metadata,
        )
        if row is None:
            failure = await self._explain_failure(ctx, db, normalized, now)
            logger.info(
                "Redemption rejected: tenant=%s, partner=%s, reason=%s",
                ctx, partner_id, failure.reason,
            )
            raise failure

        session = await self._sessions.get_by_id(ctx, db, row.session_id)
        logger.info(
            "Code redeemed: tenant=%s, partner=%s, code_id=%s, transaction=%s",
            ctx, partner_id, row.id, transaction_id,
        )
        return RedemptionResult(
            code=RedeemedCode(
                id=row.id,
                code=row.code,
                type=CodeKind(row.kind).value,
                used_at=row.used_at or now,
            ),
            session=RedeemedSession(
                outcome=Outcome(session.outcome).value if session and session.outcome else None,
                completed_at=session.completed_at if session else None,
            ),
        )

    async def _explain_failure(
        self, ctx: TenantContext, db: AsyncSession, code: str, now: datetime
    ) -> RedemptionFailure:
        """Classify a redemption that matched no row.  Read-only."""
        reason = classify(await self._codes.get_by_code(ctx, db, code), now)
        if reason == REASON_ALREADY_USED:
            return CodeAlreadyUsedError("Code already used")
        if reason == REASON_EXPIRED:
            return CodeExpiredError("Code expired")
        if reason == REASON_VALID:
            # The update and this read disagree; treat as not found.
            logger.error("Redemption matched no row but code reads as valid: tenant=%s", ctx)
        return CodeNotFoundError("Code not found")

    async def check_only(
        self, ctx: TenantContext, db: AsyncSession, code: str
    ) -> CodeCheckResult:
        """Preview a code without consuming it."""
        try:
            normalized = normalize_code(code)
        except InvalidCodeFormatError:
            return CodeCheckResult(valid=False, reason=REASON_NOT_FOUND)

        row = await self._codes.get_by_code(ctx, db, normalized)
        reason = classify(row, self._clock())
        return CodeCheckResult(
            valid=reason == REASON_VALID,
            reason=reason,
            expires_at=row.expires_at if row else None,
            used_at=row.used_at if row else None,
        )

    # ==================================================================
    # Housekeeping
    # ==================================================================

    async def mark_expired(self, ctx: TenantContext, db: AsyncSession) -> int:
        """Sweep overdue unused codes to ``expired``.  Idempotent."""
        count = await self._codes.mark_expired(ctx, db, now=self._clock())
        logger.info("Expired codes swept: tenant=%s, count=%d", ctx, count)
        return count

    async def code_stats(self, ctx: TenantContext, db: AsyncSession) -> CodeStats:
        counts = await self._codes.status_counts(ctx, db)
        return CodeStats(
            total=sum(counts.values()),
            unused=counts.get(CodeStatus.UNUSED.value, 0),
            used=counts.get(CodeStatus.USED.value, 0),
            expired=counts.get(CodeStatus.EXPIRED.value, 0),
        )
