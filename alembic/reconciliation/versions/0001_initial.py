"""deposit reconciliation queue

Revision ID: 0001_reconciliation
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_reconciliation"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "deposit_reconciliations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("reference", sa.String(), nullable=False),
        sa.Column("intent_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deposit_reconciliations_reference", "deposit_reconciliations", ["reference"])
    op.create_index("ix_deposit_reconciliations_status", "deposit_reconciliations", ["status"])
    op.create_index(
        "ix_deposit_reconciliations_status_created_at",
        "deposit_reconciliations",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_deposit_reconciliations_status_created_at", table_name="deposit_reconciliations")
    op.drop_index("ix_deposit_reconciliations_status", table_name="deposit_reconciliations")
    op.drop_index("ix_deposit_reconciliations_reference", table_name="deposit_reconciliations")
    op.drop_table("deposit_reconciliations")
