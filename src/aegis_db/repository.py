"""Async tenant-scoped repositories.

Every public method takes a :class:`~aegis_db.tenancy.TenantContext` as its
first argument and an ``AsyncSession`` second, so the caller controls
transaction boundaries.  Methods ``flush()`` but never ``commit()``.

Each statement carries an explicit ``tenant_id`` predicate built from the
context; there is no method that accepts a raw tenant id.

The repositories avoid business-logic validation (that lives
in ``aegis_screening``).  They *do* own the conditional updates whose
atomicity the business layer relies on:

  - ``SessionRepository.complete_session``: ``WHERE status = 'started'``
  - ``VerificationCodeRepository.redeem``: ``WHERE status = 'unused'
    AND expires_at > now``, with ``RETURNING`` in the same statement
  - ``VerificationCodeRepository.mark_expired``
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Update, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

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
from aegis_db.tenancy import TenantContext, require_context


# ----------------------------------------------------------------------
# Statement builders: module-level so the exact SQL can be inspected
# ----------------------------------------------------------------------

def build_complete_session_statement(
    ctx: TenantContext,
    session_id: uuid.UUID,
    *,
    answers: dict[str, Any],
    outcome: Outcome,
    now: datetime,
) -> Update:
    """Guarded completion: only a ``started`` session can transition."""
    require_context(ctx)
    return (
        update(ScreeningSession)
        .where(
            ScreeningSession.tenant_id == ctx.tenant_id,
            ScreeningSession.id == session_id,
            ScreeningSession.status == SessionStatus.STARTED.value,
        )
        .values(
            answers=answers,
            outcome=Outcome(outcome).value,
            status=SessionStatus.COMPLETED.value,
            completed_at=now,
        )
        .returning(ScreeningSession)
        .execution_options(synchronize_session=False, populate_existing=True)
    )


def build_redeem_statement(
    ctx: TenantContext,
    code: str,
    *,
    now: datetime,
    partner_id: str | None = None,
    transaction_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Update:
    """Single compare-and-set: unused and unexpired -> used, with RETURNING.

    Whether the redemption succeeded is read from the rows this one
    statement returns.
    """
    require_context(ctx)
    return (
        update(VerificationCode)
        .where(
            VerificationCode.tenant_id == ctx.tenant_id,
            VerificationCode.code == code,
            VerificationCode.status == CodeStatus.UNUSED.value,
            VerificationCode.expires_at > now,
        )
        .values(
            status=CodeStatus.USED.value,
            used_at=now,
            redeemed_by_partner=partner_id,
            transaction_id=transaction_id,
            redemption_metadata=metadata,
        )
        .returning(VerificationCode)
        .execution_options(synchronize_session=False, populate_existing=True)
    )


def build_mark_expired_statement(ctx: TenantContext, *, now: datetime) -> Update:
    """Sweep unused codes past expiry; ``used`` rows never match."""
    require_context(ctx)
    return (
        update(VerificationCode)
        .where(
            VerificationCode.tenant_id == ctx.tenant_id,
            VerificationCode.status == CodeStatus.UNUSED.value,
            VerificationCode.expires_at <= now,
        )
        .values(status=CodeStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )


# ----------------------------------------------------------------------
# Programs and questionnaire versions
# ----------------------------------------------------------------------

class QuestionnaireRepository:
    """Programs and their append-only questionnaire versions."""

    async def create_program(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        *,
        name: str,
        slug: str | None = None,
    ) -> DrugProgram:
        require_context(ctx)
        program = DrugProgram(tenant_id=ctx.tenant_id, name=name, slug=slug)
        db.add(program)
        await db.flush()
        return program

    async def get_program(
        self, ctx: TenantContext, db: AsyncSession, program_id: uuid.UUID
    ) -> DrugProgram | None:
        require_context(ctx)
        stmt = select(DrugProgram).where(
            DrugProgram.tenant_id == ctx.tenant_id,
            DrugProgram.id == program_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def next_version_number(
        self, ctx: TenantContext, db: AsyncSession, program_id: uuid.UUID
    ) -> int:
        """Return ``max(version_number) + 1`` for the program (1 if none).

        The ``uq_program_version`` constraint rejects a concurrent publisher
        that computed the same number.
        """
        require_context(ctx)
        stmt = select(
            func.coalesce(func.max(QuestionnaireVersion.version_number), 0)
        ).where(
            QuestionnaireVersion.tenant_id == ctx.tenant_id,
            QuestionnaireVersion.program_id == program_id,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one()) + 1

    async def create_version(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        *,
        program_id: uuid.UUID,
        version_number: int,
        title: str,
        questions: list[dict[str, Any]],
        ruleset: dict[str, Any],
        description: str | None = None,
        disclaimers: list[str] | None = None,
        notes: str | None = None,
        created_by: str | None = None,
    ) -> QuestionnaireVersion:
        """Insert a new immutable version row.  The caller must commit."""
        require_context(ctx)
        version = QuestionnaireVersion(
            tenant_id=ctx.tenant_id,
            program_id=program_id,
            version_number=version_number,
            title=title,
            description=description,
            questions=questions,
            ruleset=ruleset,
            disclaimers=disclaimers,
            notes=notes,
            created_by=created_by,
        )
        db.add(version)
        await db.flush()
        return version

    async def get_version(
        self, ctx: TenantContext, db: AsyncSession, version_id: uuid.UUID
    ) -> QuestionnaireVersion | None:
        require_context(ctx)
        stmt = select(QuestionnaireVersion).where(
            QuestionnaireVersion.tenant_id == ctx.tenant_id,
            QuestionnaireVersion.id == version_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_versions(
        self, ctx: TenantContext, db: AsyncSession, program_id: uuid.UUID
    ) -> list[QuestionnaireVersion]:
        """All versions of a program, newest first."""
        require_context(ctx)
        stmt = (
            select(QuestionnaireVersion)
            .where(
                QuestionnaireVersion.tenant_id == ctx.tenant_id,
                QuestionnaireVersion.program_id == program_id,
            )
            .order_by(QuestionnaireVersion.version_number.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def set_active_version(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        program: DrugProgram,
        version_id: uuid.UUID,
    ) -> DrugProgram:
        """Swap the program's active pointer.  Versions are never touched."""
        require_context(ctx)
        if program.tenant_id != ctx.tenant_id:
            raise PermissionError("Program does not belong to the bound tenant")
        program.active_version_id = version_id
        await db.flush()
        return program


# ----------------------------------------------------------------------
# Screening sessions
# ----------------------------------------------------------------------

class SessionRepository:
    """Read/write operations on ``screening_sessions``."""

    async def create_session(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        *,
        program_id: uuid.UUID,
        questionnaire_version_id: uuid.UUID,
        path: SessionPath = SessionPath.MANUAL,
    ) -> ScreeningSession:
        """Insert a ``started`` session with an empty answer map."""
        require_context(ctx)
        session = ScreeningSession(
            tenant_id=ctx.tenant_id,
            program_id=program_id,
            questionnaire_version_id=questionnaire_version_id,
            status=SessionStatus.STARTED.value,
            path=SessionPath(path).value,
            answers={},
        )
        db.add(session)
        await db.flush()
        return session

    async def get_by_id(
        self, ctx: TenantContext, db: AsyncSession, session_id: uuid.UUID
    ) -> ScreeningSession | None:
        require_context(ctx)
        stmt = select(ScreeningSession).where(
            ScreeningSession.tenant_id == ctx.tenant_id,
            ScreeningSession.id == session_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def complete_session(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        session_id: uuid.UUID,
        *,
        answers: dict[str, Any],
        outcome: Outcome,
        now: datetime,
    ) -> ScreeningSession | None:
        """Atomically write answers + outcome + completion.

        Returns the updated row, or ``None`` if the session was not in
        ``started`` state when the statement ran.
        """
        stmt = build_complete_session_statement(
            ctx, session_id, answers=answers, outcome=outcome, now=now,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def is_eligible_for_code(
        self, ctx: TenantContext, db: AsyncSession, session_id: uuid.UUID
    ) -> bool:
        """True iff the stored session is completed with an eligible outcome."""
        require_context(ctx)
        stmt = select(ScreeningSession.id).where(
            ScreeningSession.tenant_id == ctx.tenant_id,
            ScreeningSession.id == session_id,
            ScreeningSession.status == SessionStatus.COMPLETED.value,
            ScreeningSession.outcome == Outcome.ELIGIBLE.value,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None


# ----------------------------------------------------------------------
# Verification codes
# ----------------------------------------------------------------------

class VerificationCodeRepository:
    """Issuance, atomic redemption, and expiry sweeping of codes."""

    async def code_exists(
        self, ctx: TenantContext, db: AsyncSession, code: str
    ) -> bool:
        """Look up the code index before insert (collision check)."""
        require_context(ctx)
        stmt = select(VerificationCode.id).where(
            VerificationCode.tenant_id == ctx.tenant_id,
            VerificationCode.code == code,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def create_code(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        code: str,
        kind: CodeKind,
        expires_at: datetime,
    ) -> VerificationCode:
        """Insert an ``unused`` code inside a savepoint.

        A unique violation (code or session) rolls back only the savepoint
        and propagates as ``IntegrityError`` so the caller can retry.
        """
        require_context(ctx)
        row = VerificationCode(
            tenant_id=ctx.tenant_id,
            session_id=session_id,
            code=code,
            kind=CodeKind(kind).value,
            status=CodeStatus.UNUSED.value,
            expires_at=expires_at,
        )
        async with db.begin_nested():
            db.add(row)
            await db.flush()
        return row

    async def get_by_session(
        self, ctx: TenantContext, db: AsyncSession, session_id: uuid.UUID
    ) -> VerificationCode | None:
        require_context(ctx)
        stmt = select(VerificationCode).where(
            VerificationCode.tenant_id == ctx.tenant_id,
            VerificationCode.session_id == session_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_code(
        self, ctx: TenantContext, db: AsyncSession, code: str
    ) -> VerificationCode | None:
        """Plain read; never used to decide a redemption."""
        require_context(ctx)
        stmt = select(VerificationCode).where(
            VerificationCode.tenant_id == ctx.tenant_id,
            VerificationCode.code == code,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def redeem(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        code: str,
        *,
        now: datetime,
        partner_id: str | None = None,
        transaction_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> VerificationCode | None:
        """Run the conditional update; the returned row is the verdict.

        ``None`` means the statement matched nothing (not found, already
        used, or expired; the caller decides which afterwards).
        """
        stmt = build_redeem_statement(
            ctx,
            code,
            now=now,
            partner_id=partner_id,
            transaction_id=transaction_id,
            metadata=metadata,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_expired(
        self, ctx: TenantContext, db: AsyncSession, *, now: datetime
    ) -> int:
        """Transition overdue ``unused`` codes to ``expired``; return the count."""
        stmt = build_mark_expired_statement(ctx, now=now)
        result = await db.execute(stmt)
        return result.rowcount or 0

    async def status_counts(
        self, ctx: TenantContext, db: AsyncSession
    ) -> dict[str, int]:
        """Number of codes per status for the tenant."""
        require_context(ctx)
        stmt = (
            select(VerificationCode.status, func.count())
            .where(VerificationCode.tenant_id == ctx.tenant_id)
            .group_by(VerificationCode.status)
        )
        result = await db.execute(stmt)
        counts = {status.value: 0 for status in CodeStatus}
        for status, count in result.all():
            counts[CodeStatus(status).value] = int(count)
        return counts
