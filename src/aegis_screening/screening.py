"""ScreeningService: the session state machine.

States::

    started --submit_answers--> completed

There is no other state.  A session that is never completed stays
``started`` and is never eligible for a verification code.

Stateless service pattern: each call loads the session from the database,
computes, persists through the repository, and returns a public model.
The caller owns the transaction (``await db.commit()``).

Answers and outcome are written once, together, by the guarded completion
update.  If validation fails nothing is written and the caller may retry
with corrected answers.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from aegis_db.models.base import utcnow
from aegis_db.models.enums import Outcome, SessionPath, SessionStatus
from aegis_db.models.program import QuestionnaireVersion
from aegis_db.models.session import ScreeningSession
from aegis_db.repository import QuestionnaireRepository, SessionRepository
from aegis_db.tenancy import TenantContext

from aegis_screening.errors import (
    AlreadyCompletedError,
    InputValidationError,
    NoActiveQuestionnaireError,
    ProgramNotFoundError,
    QuestionnaireNotFoundError,
    SessionNotFoundError,
)
from aegis_screening.evaluator import as_definition, evaluate_detailed, validate_answers
from aegis_screening.models.session import SessionInfo, SubmissionResult

logger = logging.getLogger(__name__)


class ScreeningService:
    """Creates sessions, evaluates submissions, answers eligibility queries.

    Args:
        sessions: session repository override
        questionnaires: questionnaire repository override
        clock: returns the current aware UTC time (tests pin it)
    """

    def __init__(
        self,
        sessions: SessionRepository | None = None,
        questionnaires: QuestionnaireRepository | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions or SessionRepository()
        self._questionnaires = questionnaires or QuestionnaireRepository()
        self._clock = clock

    # ==================================================================
    # Session lifecycle
    # ==================================================================

    async def create_session(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        program_id: uuid.UUID,
        *,
        version_id: uuid.UUID | None = None,
        path: SessionPath | str = SessionPath.MANUAL,
    ) -> SessionInfo:
        """Start a session on *version_id*, or the program's active version.

        The caller must ``await db.commit()`` to persist.
        """
        try:
            path = SessionPath(path)
        except ValueError:
            raise InputValidationError(f"Unknown session path: {path!r}") from None

        program = await self._questionnaires.get_program(ctx, db, program_id)
        if program is None:
            raise ProgramNotFoundError(f"Program not found: program_id={program_id}")

        if version_id is None:
            version_id = program.active_version_id
            if version_id is None:
                raise NoActiveQuestionnaireError(
                    f"Program {program_id} has no active questionnaire"
                )

        version = await self._questionnaires.get_version(ctx, db, version_id)
        if version is None or version.program_id != program.id:
            raise QuestionnaireNotFoundError(
                f"Version {version_id} not found for program {program_id}"
            )

        row = await self._sessions.create_session(
            ctx,
            db,
            program_id=program.id,
            questionnaire_version_id=version.id,
            path=path,
        )
        logger.info(
            "Created session: tenant=%s, session=%s, program=%s, version=%d",
            ctx, row.id, program.id, version.version_number,
        )
        return self._to_info(row, version)

    async def get_session(
        self, ctx: TenantContext, db: AsyncSession, session_id: uuid.UUID
    ) -> SessionInfo:
        row = await self._load(ctx, db, session_id)
        version = await self._load_version(ctx, db, row)
        return self._to_info(row, version)

    async def submit_answers(
        self,
        ctx: TenantContext,
        db: AsyncSession,
        session_id: uuid.UUID,
        answers: Mapping[str, Any],
    ) -> SubmissionResult:
        """Validate, evaluate, and complete the session in one step.

        Raises:
            SessionNotFoundError: unknown under this tenant
            AlreadyCompletedError: completed earlier, or by a concurrent call
            AnswerValidationError: answers rejected; session unchanged
        """
        row = await self._load(ctx, db, session_id)
        if SessionStatus(row.status) == SessionStatus.COMPLETED:
            raise AlreadyCompletedError(f"Session already completed: session_id={session_id}")

        version = await self._load_version(ctx, db, row)
        definition = as_definition(version)
        validated = validate_answers(definition, answers)
        result = evaluate_detailed(definition, validated)

        now = self._clock()
        updated = await self._sessions.complete_session(
            ctx, db, session_id,
            answers=validated,
            outcome=result.outcome,
            now=now,
        )
        if updated is None:
            # Another submission completed it between our read and the update
            logger.warning(
                "Completion lost race: tenant=%s, session=%s", ctx, session_id,
            )
            raise AlreadyCompletedError(f"Session already completed: session_id={session_id}")

        logger.info(
            "Session completed: tenant=%s, session=%s, outcome=%s, bucket=%s",
            ctx, session_id, result.outcome.value, result.matched_bucket,
        )
        return SubmissionResult(
            session_id=session_id,
            outcome=result.outcome.value,
            completed_at=updated.completed_at or now,
            message=result.message,
        )

    async def is_eligible_for_code(
        self, ctx: TenantContext, db: AsyncSession, session_id: uuid.UUID
    ) -> bool:
        """True iff the stored session is completed with outcome ``eligible``."""
        return await self._sessions.is_eligible_for_code(ctx, db, session_id)

    # ==================================================================
    # Helpers
    # ==================================================================

    async def _load(
        self, ctx: TenantContext, db: AsyncSession, session_id: uuid.UUID
    ) -> ScreeningSession:
        """Load a session row or raise SessionNotFoundError."""
        row = await self._sessions.get_by_id(ctx, db, session_id)
        if row is None:
            raise SessionNotFoundError(f"Session not found: session_id={session_id}")
        return row

    async def _load_version(
        self, ctx: TenantContext, db: AsyncSession, row: ScreeningSession
    ) -> QuestionnaireVersion:
        version = await self._questionnaires.get_version(ctx, db, row.questionnaire_version_id)
        if version is None:
            raise QuestionnaireNotFoundError(
                f"Version not found: version_id={row.questionnaire_version_id}"
            )
        return version

    @staticmethod
    def _to_info(row: ScreeningSession, version: QuestionnaireVersion) -> SessionInfo:
        definition = as_definition(version)
        return SessionInfo(
            session_id=row.id,
            program_id=row.program_id,
            questionnaire_version_id=row.questionnaire_version_id,
            version_number=version.version_number,
            title=version.title,
            status=SessionStatus(row.status).value,
            path=SessionPath(row.path).value,
            outcome=Outcome(row.outcome).value if row.outcome else None,
            created_at=row.created_at,
            completed_at=row.completed_at,
            questions=list(definition.questions),
            disclaimers=list(version.disclaimers or []),
        )
