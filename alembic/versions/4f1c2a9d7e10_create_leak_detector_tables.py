"""create audits, transactions, leaks, breaker state and error log tables

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-10-17 09:12:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "4f1c2a9d7e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audits",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("plaid_access_token", sa.String(length=200), nullable=True),
        sa.Column("plaid_item_id", sa.String(length=200), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False),
        sa.Column("total_waste_found", sa.Numeric(12, 2), nullable=True),
        sa.Column("report_url", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audits_email", "audits", ["email"], unique=False)
    op.create_index("ix_audits_status", "audits", ["status"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("audit_id", sa.String(length=36), nullable=False),
        sa.Column("transaction_id", sa.String(length=120), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("merchant_name", sa.String(length=300), nullable=False),
        sa.Column("category", sa.JSON(), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column("recurring_frequency", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["audit_id"], ["audits.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transactions_audit_id", "transactions", ["audit_id"], unique=False)
    op.create_index("ix_transactions_date", "transactions", ["date"], unique=False)
    op.create_index("ix_transactions_merchant", "transactions", ["merchant_name"], unique=False)

    op.create_table(
        "leaks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("audit_id", sa.String(length=36), nullable=False),
        sa.Column("leak_type", sa.String(length=40), nullable=False),
        sa.Column("merchant_name", sa.String(length=300), nullable=False),
        sa.Column("monthly_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("annual_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("last_charge_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("recommendation", sa.Text(), nullable=False),
        sa.Column("confidence_score", sa.Numeric(3, 2), nullable=True),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["audit_id"], ["audits.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_leaks_audit_id", "leaks", ["audit_id"], unique=False)

    op.create_table(
        "circuit_breaker_states",
        sa.Column("service_name", sa.String(length=80), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("failure_count", sa.Integer(), nullable=False),
        sa.Column("success_count", sa.Integer(), nullable=False),
        sa.Column("last_failure_at", sa.DateTime(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("service_name"),
    )

    op.create_table(
        "errors",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("error_type", sa.String(length=120), nullable=False),
        sa.Column("kind", sa.String(length=40), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("stack", sa.Text(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_errors_created_at", "errors", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_errors_created_at", table_name="errors")
    op.drop_table("errors")
    op.drop_table("circuit_breaker_states")
    op.drop_index("ix_leaks_audit_id", table_name="leaks")
    op.drop_table("leaks")
    op.drop_index("ix_transactions_merchant", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_index("ix_transactions_audit_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_audits_status", table_name="audits")
    op.drop_index("ix_audits_email", table_name="audits")
    op.drop_table("audits")
