"""Shape of the conditional UPDATE statements the services rely on.

Compiled against the PostgreSQL dialect without a database.
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.dialects import postgresql

from aegis_db.models.enums import Outcome
from aegis_db.repository import (
    build_complete_session_statement,
    build_mark_expired_statement,
    build_redeem_statement,
)
from aegis_db.tenancy import bind

from helpers.factories import TENANT_A

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _sql(stmt) -> str:
    return " ".join(str(stmt.compile(dialect=postgresql.dialect())).split())


class TestCompleteSessionStatement:

    def test_guarded_on_started_status(self):
        sql = _sql(build_complete_session_statement(
            bind(TENANT_A), uuid.uuid4(),
            answers={"age_check": True}, outcome=Outcome.ELIGIBLE, now=NOW,
        ))
        assert sql.startswith("UPDATE screening_sessions SET")
        assert "screening_sessions.tenant_id =" in sql
        assert "screening_sessions.id =" in sql
        assert "screening_sessions.status =" in sql
        assert "RETURNING" in sql

    def test_binds_tenant_from_context(self):
        stmt = build_complete_session_statement(
            bind(TENANT_A), uuid.uuid4(),
            answers={}, outcome=Outcome.CONSULT_PROFESSIONAL, now=NOW,
        )
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert uuid.UUID(TENANT_A) in params.values()

    def test_requires_context(self):
        with pytest.raises(TypeError):
            build_complete_session_statement(
                TENANT_A, uuid.uuid4(), answers={}, outcome=Outcome.ELIGIBLE, now=NOW,
            )


class TestRedeemStatement:

    def test_single_compare_and_set(self):
        sql = _sql(build_redeem_statement(
            bind(TENANT_A), "AEGIS-7K3F-Q9ZD-M2XA",
            now=NOW, partner_id="pharmacy-042", transaction_id="txn-1",
        ))
        assert sql.startswith("UPDATE verification_codes SET")
        where = sql.split(" WHERE ", 1)[1]
        assert "verification_codes.tenant_id =" in where
        assert "verification_codes.code =" in where
        assert "verification_codes.status =" in where
        assert "verification_codes.expires_at >" in where
        assert "RETURNING" in where
        assert "used_at" in sql and "redeemed_by_partner" in sql

    def test_requires_context(self):
        with pytest.raises(TypeError):
            build_redeem_statement(uuid.UUID(TENANT_A), "AEGIS-7K3F-Q9ZD-M2XA", now=NOW)


class TestMarkExpiredStatement:

    def test_only_unused_past_expiry(self):
        sql = _sql(build_mark_expired_statement(bind(TENANT_A), now=NOW))
        assert sql.startswith("UPDATE verification_codes SET status=")
        where = sql.split(" WHERE ", 1)[1]
        assert "verification_codes.tenant_id =" in where
        assert "verification_codes.status =" in where
        assert "verification_codes.expires_at <=" in where

    def test_requires_context(self):
        with pytest.raises(TypeError):
            build_mark_expired_statement(None, now=NOW)
