"""In-memory stand-ins for the aegis_db repositories.

Mock strategy:
  - Mock*Row dataclasses carry the same attributes as the ORM models but
    no SQLAlchemy dependency.  Services read and write attributes directly.
  - Each Memory*Repository implements every async method the services
    call, with the same signature, filtering every lookup by
    ``ctx.tenant_id`` just like the real statements do.
  - Conditional updates (session completion, code redemption, expiry
    sweep) check and set without awaiting in between, so they are atomic
    with respect to other coroutines on the event loop.
  - AsyncMock stands in for AsyncSession (db) and is never consulted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError

from aegis_db.models.enums import CodeKind, CodeStatus, Outcome, SessionPath, SessionStatus
from aegis_db.tenancy import TenantContext, require_context


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =====================================================================
# Rows
# =====================================================================

@dataclass
class MockProgramRow:
    tenant_id: uuid.UUID
    name: str
    slug: str | None = None
    active_version_id: uuid.UUID | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_now)


@dataclass
class MockVersionRow:
    tenant_id: uuid.UUID
    program_id: uuid.UUID
    version_number: int
    title: str
    questions: list
    ruleset: dict
    description: str | None = None
    disclaimers: list | None = None
    notes: str | None = None
    created_by: str | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_now)


@dataclass
class MockSessionRow:
    tenant_id: uuid.UUID
    program_id: uuid.UUID
    questionnaire_version_id: uuid.UUID
    status: str = SessionStatus.STARTED.value
    path: str = SessionPath.MANUAL.value
    answers: dict = field(default_factory=dict)
    outcome: str | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None


@dataclass
class MockCodeRow:
    tenant_id: uuid.UUID
    session_id: uuid.UUID
    code: str
    expires_at: datetime
    kind: str = CodeKind.POS_BARCODE.value
    status: str = CodeStatus.UNUSED.value
    used_at: datetime | None = None
    redeemed_by_partner: str | None = None
    transaction_id: str | None = None
    redemption_metadata: dict | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_now)


# =====================================================================
# Repositories
# =====================================================================

class MemoryQuestionnaireRepository:
    """Implements the QuestionnaireRepository interface over dicts."""

    def __init__(self):
        self._programs: dict[uuid.UUID, MockProgramRow] = {}
        self._versions: dict[uuid.UUID, MockVersionRow] = {}

    async def create_program(self, ctx, db, *, name, slug=None):
        require_context(ctx)
        row = MockProgramRow(tenant_id=ctx.tenant_id, name=name, slug=slug)
        self._programs[row.id] = row
        return row

    async def get_program(self, ctx, db, program_id):
        require_context(ctx)
        row = self._programs.get(program_id)
        if row is None or row.tenant_id != ctx.tenant_id:
            return None
        return row

    async def next_version_number(self, ctx, db, program_id):
        require_context(ctx)
        numbers = [
            v.version_number for v in self._versions.values()
            if v.tenant_id == ctx.tenant_id and v.program_id == program_id
        ]
        return max(numbers, default=0) + 1

    async def create_version(
        self, ctx, db, *, program_id, version_number, title, questions, ruleset,
        description=None, disclaimers=None, notes=None, created_by=None,
    ):
        require_context(ctx)
        row = MockVersionRow(
            tenant_id=ctx.tenant_id,
            program_id=program_id,
            version_number=version_number,
            title=title,
            questions=questions,
            ruleset=ruleset,
            description=description,
            disclaimers=disclaimers,
            notes=notes,
            created_by=created_by,
        )
        self._versions[row.id] = row
        return row

    async def get_version(self, ctx, db, version_id):
        require_context(ctx)
        row = self._versions.get(version_id)
        if row is None or row.tenant_id != ctx.tenant_id:
            return None
        return row

    async def list_versions(self, ctx, db, program_id):
        require_context(ctx)
        rows = [
            v for v in self._versions.values()
            if v.tenant_id == ctx.tenant_id and v.program_id == program_id
        ]
        return sorted(rows, key=lambda v: v.version_number, reverse=True)

    async def set_active_version(self, ctx, db, program, version_id):
        require_context(ctx)
        if program.tenant_id != ctx.tenant_id:
            raise PermissionError("Program does not belong to the bound tenant")
        program.active_version_id = version_id
        return program


class MemorySessionRepository:
    """Implements the SessionRepository interface over a dict."""

    def __init__(self):
        self._sessions: dict[uuid.UUID, MockSessionRow] = {}
        self.complete_calls = 0

    async def create_session(
        self, ctx, db, *, program_id, questionnaire_version_id, path=SessionPath.MANUAL,
    ):
        require_context(ctx)
        row = MockSessionRow(
            tenant_id=ctx.tenant_id,
            program_id=program_id,
            questionnaire_version_id=questionnaire_version_id,
            path=SessionPath(path).value,
        )
        self._sessions[row.id] = row
        return row

    async def get_by_id(self, ctx, db, session_id):
        require_context(ctx)
        row = self._sessions.get(session_id)
        if row is None or row.tenant_id != ctx.tenant_id:
            return None
        return row

    async def complete_session(self, ctx, db, session_id, *, answers, outcome, now):
        require_context(ctx)
        self.complete_calls += 1
        row = self._sessions.get(session_id)
        if (
            row is None
            or row.tenant_id != ctx.tenant_id
            or row.status != SessionStatus.STARTED.value
        ):
            return None
        row.answers = answers
        row.outcome = Outcome(outcome).value
        row.status = SessionStatus.COMPLETED.value
        row.completed_at = now
        return row

    async def is_eligible_for_code(self, ctx, db, session_id):
        row = await self.get_by_id(ctx, db, session_id)
        return (
            row is not None
            and row.status == SessionStatus.COMPLETED.value
            and row.outcome == Outcome.ELIGIBLE.value
        )


class MemoryCodeRepository:
    """Implements the VerificationCodeRepository interface over a dict.

    Code strings are unique across all tenants, like the real index.

    Args:
        fail_inserts: number of upcoming ``create_code`` calls that raise
            ``IntegrityError`` without storing anything
    """

    def __init__(self, fail_inserts: int = 0):
        self._codes: dict[str, MockCodeRow] = {}
        self.fail_inserts = fail_inserts
        self.redeem_calls = 0

    def add(self, row: MockCodeRow) -> MockCodeRow:
        """Seed a row directly (used to simulate another tenant's code)."""
        self._codes[row.code] = row
        return row

    def _visible(self, ctx: TenantContext, code: str) -> MockCodeRow | None:
        row = self._codes.get(code)
        if row is None or row.tenant_id != ctx.tenant_id:
            return None
        return row

    async def code_exists(self, ctx, db, code):
        require_context(ctx)
        return self._visible(ctx, code) is not None

    async def create_code(self, ctx, db, *, session_id, code, kind, expires_at):
        require_context(ctx)
        if self.fail_inserts:
            self.fail_inserts -= 1
            raise IntegrityError("INSERT INTO verification_codes", {}, Exception("duplicate key"))
        if code in self._codes or any(r.session_id == session_id for r in self._codes.values()):
            raise IntegrityError("INSERT INTO verification_codes", {}, Exception("duplicate key"))
        row = MockCodeRow(
            tenant_id=ctx.tenant_id,
            session_id=session_id,
            code=code,
            kind=CodeKind(kind).value,
            expires_at=expires_at,
        )
        self._codes[code] = row
        return row

    async def get_by_session(self, ctx, db, session_id):
        require_context(ctx)
        for row in self._codes.values():
            if row.tenant_id == ctx.tenant_id and row.session_id == session_id:
                return row
        return None

    async def get_by_code(self, ctx, db, code):
        require_context(ctx)
        return self._visible(ctx, code)

    async def redeem(
        self, ctx, db, code, *, now, partner_id=None, transaction_id=None, metadata=None,
    ):
        require_context(ctx)
        self.redeem_calls += 1
        row = self._visible(ctx, code)
        if row is None or row.status != CodeStatus.UNUSED.value or row.expires_at <= now:
            return None
        row.status = CodeStatus.USED.value
        row.used_at = now
        row.redeemed_by_partner = partner_id
        row.transaction_id = transaction_id
        row.redemption_metadata = metadata
        return row

    async def mark_expired(self, ctx, db, *, now):
        require_context(ctx)
        affected = 0
        for row in self._codes.values():
            if (
                row.tenant_id == ctx.tenant_id
                and row.status == CodeStatus.UNUSED.value
                and row.expires_at <= now
            ):
                row.status = CodeStatus.EXPIRED.value
                affected += 1
        return affected

    async def status_counts(self, ctx, db) -> dict[str, Any]:
        require_context(ctx)
        counts = {status.value: 0 for status in CodeStatus}
        for row in self._codes.values():
            if row.tenant_id == ctx.tenant_id:
                counts[row.status] += 1
        return counts
