"""Create drug_programs, questionnaire_versions, screening_sessions, verification_codes.

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20261001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Programs (active pointer FK added after versions exist) ---
    op.create_table(
        "drug_programs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("slug", sa.Text, nullable=True, unique=True),
        sa.Column("active_version_id", UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_at", TIMESTAMP(timezone=True), nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at", TIMESTAMP(timezone=True), nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index("ix_program_tenant_name", "drug_programs", ["tenant_id", "name"])

    # --- Questionnaire versions (append-only) ---
    op.create_table(
        "questionnaire_versions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "program_id", UUID(as_uuid=True),
            sa.ForeignKey("drug_programs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version_number", sa.Integer, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("questions", JSONB, nullable=False),
        sa.Column("ruleset", JSONB, nullable=False),
        sa.Column("disclaimers", JSONB, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_by", sa.Text, nullable=True),
        sa.Column(
            "created_at", TIMESTAMP(timezone=True), nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("program_id", "version_number", name="uq_program_version"),
    )
    op.create_index(
        "ix_version_tenant_program", "questionnaire_versions", ["tenant_id", "program_id"],
    )
    op.create_foreign_key(
        "fk_program_active_version",
        "drug_programs",
        "questionnaire_versions",
        ["active_version_id"],
        ["id"],
    )

    # --- Screening sessions ---
    op.create_table(
        "screening_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "program_id", UUID(as_uuid=True),
            sa.ForeignKey("drug_programs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "questionnaire_version_id", UUID(as_uuid=True),
            sa.ForeignKey("questionnaire_versions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "status", sa.String(20), nullable=False,
            server_default=sa.text("'started'"),
        ),
        sa.Column(
            "path", sa.String(20), nullable=False,
            server_default=sa.text("'manual'"),
        ),
        sa.Column(
            "answers", JSONB, nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("outcome", sa.String(32), nullable=True),
        sa.Column(
            "created_at", TIMESTAMP(timezone=True), nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('started', 'completed')", name="ck_session_status",
        ),
        sa.CheckConstraint(
            "status != 'completed' OR (outcome IS NOT NULL AND completed_at IS NOT NULL)",
            name="ck_completed_has_outcome",
        ),
        sa.CheckConstraint(
            "outcome IS NULL OR outcome IN ('eligible', 'consult_professional', 'ineligible')",
            name="ck_session_outcome",
        ),
    )
    op.create_index(
        "ix_session_program_outcome", "screening_sessions",
        ["tenant_id", "program_id", "outcome"],
    )
    op.create_index(
        "ix_session_program_time", "screening_sessions",
        ["tenant_id", "program_id", "created_at"],
    )

    # --- Verification codes ---
    op.create_table(
        "verification_codes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "session_id", UUID(as_uuid=True),
            sa.ForeignKey("screening_sessions.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column(
            "kind", sa.String(20), nullable=False,
            server_default=sa.text("'pos_barcode'"),
        ),
        sa.Column(
            "status", sa.String(20), nullable=False,
            server_default=sa.text("'unused'"),
        ),
        sa.Column("expires_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("redeemed_by_partner", sa.Text, nullable=True),
        sa.Column("transaction_id", sa.Text, nullable=True),
        sa.Column("redemption_metadata", JSONB, nullable=True),
        sa.Column(
            "created_at", TIMESTAMP(timezone=True), nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "status IN ('unused', 'used', 'expired')", name="ck_code_status",
        ),
        sa.CheckConstraint(
            "status != 'used' OR used_at IS NOT NULL", name="ck_used_has_timestamp",
        ),
    )
    op.create_index(
        "ix_code_status_expires", "verification_codes", ["status", "expires_at"],
    )
    op.create_index("ix_code_tenant", "verification_codes", ["tenant_id"])


def downgrade() -> None:
    op.drop_table("verification_codes")
    op.drop_table("screening_sessions")
    op.drop_constraint("fk_program_active_version", "drug_programs", type_="foreignkey")
    op.drop_table("questionnaire_versions")
    op.drop_table("drug_programs")
