"""Enable row-level security keyed on app.current_tenant_id.

Every tenant-scoped table gets one ``tenant_isolation`` policy comparing
``tenant_id`` with the transaction-local setting written by
``aegis_db.tenancy.apply_tenant_setting``.  ``FORCE`` makes the policy
apply to the table owner as well.  When the setting is absent,
``current_setting(..., true)`` yields NULL and no rows are visible.

Revision ID: 20261002_rls
Revises: 20261001_initial
Create Date: 2026-10-02
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261002_rls"
down_revision = "20261001_initial"
branch_labels = None
depends_on = None

_TABLES = (
    "drug_programs",
    "questionnaire_versions",
    "screening_sessions",
    "verification_codes",
)

_PREDICATE = "tenant_id::text = current_setting('app.current_tenant_id', true)"


def upgrade() -> None:
    for table in _TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING ({_PREDICATE}) WITH CHECK ({_PREDICATE})"
        )


def downgrade() -> None:
    for table in _TABLES:
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
