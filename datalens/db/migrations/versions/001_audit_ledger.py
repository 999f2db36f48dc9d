"""Create the audit ledger table.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Tables: audit_ledger
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the append-only audit ledger."""
    op.create_table(
        "audit_ledger",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("chain_id", sa.Text, nullable=False),
        sa.Column("sequence", sa.BigInteger, nullable=False),
        sa.Column("tenant_id", sa.Text, nullable=False),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("actor_id", UUID),
        sa.Column("actor_kind", sa.String(16), nullable=False),
        sa.Column("resource_type", sa.Text, nullable=False),
        sa.Column("resource_id", UUID),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("metadata", JSONB, nullable=False, server_default="{}"),
        sa.Column("previous_hash", sa.String(64), nullable=False),
        sa.Column("hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "persisted_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    # No forks: a previous_hash and a sequence are each claimed at most once per chain
    op.create_index(
        "uq_audit_ledger_previous_hash",
        "audit_ledger",
        ["chain_id", "previous_hash"],
        unique=True,
    )
    op.create_index(
        "uq_audit_ledger_sequence",
        "audit_ledger",
        ["chain_id", "sequence"],
        unique=True,
    )
    op.create_index("idx_audit_ledger_tenant", "audit_ledger", ["tenant_id"])

    # Append-only: reject UPDATE and DELETE at the database level
    op.execute(
        """
        CREATE FUNCTION audit_ledger_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_ledger is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_ledger_no_mutation
        BEFORE UPDATE OR DELETE ON audit_ledger
        FOR EACH ROW EXECUTE FUNCTION audit_ledger_immutable()
        """
    )


def downgrade() -> None:
    """Drop the audit ledger."""
    op.execute("DROP TRIGGER IF EXISTS audit_ledger_no_mutation ON audit_ledger")
    op.execute("DROP FUNCTION IF EXISTS audit_ledger_immutable()")
    op.drop_table("audit_ledger")
