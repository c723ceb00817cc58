"""VerificationCode ORM model: single-use code issued to an eligible session.

Row ownership: only ``VerificationCodeRepository`` writes to this table,
and after insert only through the conditional updates for redemption and
expiry sweeping.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from aegis_db.models.base import Base, utcnow
from aegis_db.models.enums import CodeKind, CodeStatus


class VerificationCode(Base):
    """One redeemable code; exactly one per eligible session."""

    __tablename__ = "verification_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    # unique: 1:1 with the session
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("screening_sessions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    kind: Mapped[CodeKind] = mapped_column(
        String(20), nullable=False, default=CodeKind.POS_BARCODE,
    )
    status: Mapped[CodeStatus] = mapped_column(
        String(20), nullable=False, default=CodeStatus.UNUSED,
    )
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # --- Redemption audit (written by the same update that marks it used) ---
    redeemed_by_partner: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    redemption_metadata: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('unused', 'used', 'expired')", name="ck_code_status",
        ),
        CheckConstraint(
            "status != 'used' OR used_at IS NOT NULL", name="ck_used_has_timestamp",
        ),
        # Serves both the sweep and the redemption predicate
        Index("ix_code_status_expires", "status", "expires_at"),
        Index("ix_code_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationCode(id={self.id!s}, session={self.session_id!s}, "
            f"status={self.status!r})>"
        )
