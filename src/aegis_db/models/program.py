"""DrugProgram and QuestionnaireVersion ORM models.

A program owns an append-only series of questionnaire versions.  Versions
are never updated after insert; publishing a new edition inserts a row
with the next ``version_number`` and swaps ``active_version_id`` on the
program.
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from aegis_db.models.base import Base, utcnow


class DrugProgram(Base):
    """One patient-assistance program belonging to a tenant."""

    __tablename__ = "drug_programs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # Public QR-code entry point; globally unique when set
    slug: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    # Pointer swap target; null until the first version is activated
    active_version_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("questionnaire_versions.id", use_alter=True, name="fk_program_active_version"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_program_tenant_name", "tenant_id", "name"),
    )

    def __repr__(self) -> str:
        return f"<DrugProgram(id={self.id!s}, tenant={self.tenant_id!s}, name={self.name!r})>"


class QuestionnaireVersion(Base):
    """Immutable questionnaire edition: questions plus canonical ruleset.

    ``questions`` and ``ruleset`` hold the validated JSON produced by
    ``aegis_screening.questionnaire.parse_definition``.
    """

    __tablename__ = "questionnaire_versions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    program_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("drug_programs.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    questions: Mapped[list] = mapped_column(JSONB, nullable=False)
    ruleset: Mapped[dict] = mapped_column(JSONB, nullable=False)
    disclaimers: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("program_id", "version_number", name="uq_program_version"),
        Index("ix_version_tenant_program", "tenant_id", "program_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuestionnaireVersion(id={self.id!s}, program={self.program_id!s}, "
            f"version={self.version_number})>"
        )
