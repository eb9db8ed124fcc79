"""interest policies, loans, payments, allocations

Revision ID: 0002_ledger
Revises: 0001_init
Create Date: 2026-10-05
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_ledger"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "interest_policies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lineage_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("mode", sa.String(length=16), nullable=False),
        sa.Column("monthly_rate", sa.Numeric(12, 8), nullable=True),
        sa.Column("daily_rate", sa.Numeric(12, 8), nullable=True),
        sa.Column("anchor_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("grace_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint(
            "(mode = 'MONTHLY' AND monthly_rate IS NOT NULL AND daily_rate IS NULL)"
            " OR (mode = 'DAILY' AND daily_rate IS NOT NULL AND monthly_rate IS NULL)",
            name="ck_interest_policies_mode_rate",
        ),
        sa.CheckConstraint("anchor_day BETWEEN 1 AND 31", name="ck_interest_policies_anchor_day"),
        sa.CheckConstraint("grace_days >= 0", name="ck_interest_policies_grace_days"),
    )
    op.create_index("ix_interest_policies_workspace_id", "interest_policies", ["workspace_id"])
    op.create_index("ix_interest_policies_lineage_id", "interest_policies", ["lineage_id"])

    op.create_table(
        "loans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "interest_policy_id",
            sa.Integer(),
            sa.ForeignKey("interest_policies.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("borrower_name", sa.String(length=128), nullable=False),
        sa.Column("principal", sa.Numeric(14, 2), nullable=False),
        sa.Column("remaining_principal", sa.Numeric(14, 2), nullable=False),
        sa.Column("accrued_interest", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("interest_checkpoint_date", sa.Date(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="OPEN"),
        sa.Column("note", sa.String(length=256), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("remaining_principal >= 0", name="ck_loans_remaining_principal"),
        sa.CheckConstraint("accrued_interest >= 0", name="ck_loans_accrued_interest"),
    )
    op.create_index("ix_loans_workspace_id", "loans", ["workspace_id"])
    op.create_index("ix_loans_interest_policy_id", "loans", ["interest_policy_id"])
    op.create_index("ix_loans_start_date", "loans", ["start_date"])
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False, server_default="MANUAL"),
        sa.Column("note", sa.String(length=256), nullable=True),
        sa.Column("attachment_url", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_payments_workspace_id", "payments", ["workspace_id"])
    op.create_index("ix_payments_payment_date", "payments", ["payment_date"])

    op.create_table(
        "payment_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("principal_paid", sa.Numeric(14, 2), nullable=False),
        sa.Column("interest_paid", sa.Numeric(14, 2), nullable=False),
        sa.Column("interest_due_at_payment", sa.Numeric(14, 2), nullable=False),
        sa.Column("prior_accrued_interest", sa.Numeric(14, 2), nullable=False),
        sa.Column("prior_checkpoint_date", sa.Date(), nullable=False),
        sa.Column("prior_status", sa.String(length=16), nullable=False),
        sa.Column("prior_policy_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_payment_allocations_payment_id", "payment_allocations", ["payment_id"])
    op.create_index("ix_payment_allocations_loan_id", "payment_allocations", ["loan_id"])


def downgrade():
    op.drop_index("ix_payment_allocations_loan_id", table_name="payment_allocations")
    op.drop_index("ix_payment_allocations_payment_id", table_name="payment_allocations")
    op.drop_table("payment_allocations")

    op.drop_index("ix_payments_payment_date", table_name="payments")
    op.drop_index("ix_payments_workspace_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_index("ix_loans_start_date", table_name="loans")
    op.drop_index("ix_loans_interest_policy_id", table_name="loans")
    op.drop_index("ix_loans_workspace_id", table_name="loans")
    op.drop_table("loans")

    op.drop_index("ix_interest_policies_lineage_id", table_name="interest_policies")
    op.drop_index("ix_interest_policies_workspace_id", table_name="interest_policies")
    op.drop_table("interest_policies")
