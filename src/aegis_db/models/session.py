"""ScreeningSession ORM model: one row per patient screening attempt.

The answer map and outcome are written together, exactly once, by the
guarded completion update in ``SessionRepository.complete_session``.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from aegis_db.models.base import Base, utcnow
from aegis_db.models.enums import SessionPath, SessionStatus


class ScreeningSession(Base):
    """One screening attempt against a specific questionnaire version."""

    __tablename__ = "screening_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    program_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("drug_programs.id", ondelete="CASCADE"),
        nullable=False,
    )
    # RESTRICT: a version referenced by a session can never be removed
    questionnaire_version_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("questionnaire_versions.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # --- Lifecycle ---
    status: Mapped[SessionStatus] = mapped_column(
        String(20), nullable=False, default=SessionStatus.STARTED,
    )
    path: Mapped[SessionPath] = mapped_column(
        String(20), nullable=False, default=SessionPath.MANUAL,
    )

    # --- Result ---
    # {question_id: value}; empty until completion
    answers: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb"), default=dict,
    )
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('started', 'completed')", name="ck_session_status",
        ),
        # Outcome and completion are written in the same statement
        CheckConstraint(
            "status != 'completed' OR (outcome IS NOT NULL AND completed_at IS NOT NULL)",
            name="ck_completed_has_outcome",
        ),
        CheckConstraint(
            "outcome IS NULL OR outcome IN ('eligible', 'consult_professional', 'ineligible')",
            name="ck_session_outcome",
        ),
        Index("ix_session_program_outcome", "tenant_id", "program_id", "outcome"),
        Index("ix_session_program_time", "tenant_id", "program_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScreeningSession(id={self.id!s}, tenant={self.tenant_id!s}, "
            f"status={self.status!r}, outcome={self.outcome!r})>"
        )
