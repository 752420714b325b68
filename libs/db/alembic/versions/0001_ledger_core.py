# ruff: noqa: I001
"""Ledger core tables: accounts, transactions, expected payments, preference notes.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # li_accounts
    op.create_table(
        "li_accounts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=True),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_li_accounts_user_id", "li_accounts", ["user_id"])

    # li_fixed_expense_inputs
    op.create_table(
        "li_fixed_expense_inputs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("expected_amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("expected_day_of_month", sa.Integer(), nullable=True),
        sa.Column("expected_cadence", sa.String(16), nullable=True),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("matched_transaction_id", sa.String(36), nullable=True),
        sa.Column("match_confidence", sa.Numeric(5, 4), nullable=True),
        sa.Column("match_explain", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("length(trim(name)) > 0", name="ck_li_fei_name_non_empty"),
        sa.CheckConstraint(
            "expected_day_of_month IS NULL OR "
            "(expected_day_of_month >= 1 AND expected_day_of_month <= 31)",
            name="ck_li_fei_day_of_month",
        ),
        sa.CheckConstraint(
            "expected_cadence IS NULL OR expected_cadence in "
            "('monthly','biweekly','weekly','quarterly','annual','irregular')",
            name="ck_li_fei_cadence",
        ),
        sa.CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_li_fei_match_confidence",
        ),
    )
    op.create_index("ix_li_fixed_expense_inputs_user_id", "li_fixed_expense_inputs", ["user_id"])

    # li_transactions
    op.create_table(
        "li_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("fingerprint", sa.CHAR(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("merchant_key", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("account_id", sa.String(64), nullable=True),
        sa.Column("type", sa.String(16), nullable=False, server_default=sa.text("'other'")),
        sa.Column("spend_class", sa.String(16), nullable=True),
        sa.Column("fixed_status", sa.String(16), nullable=True),
        sa.Column("fixed_source", sa.String(8), nullable=True),
        sa.Column("fixed_confidence", sa.Numeric(5, 4), nullable=True),
        sa.Column("fixed_explain", sa.Text(), nullable=True),
        sa.Column("fixed_model", sa.Text(), nullable=True),
        sa.Column("fixed_tagged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_pending", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "needs_clarification", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("reconciled_from_id", sa.String(36), nullable=True),
        sa.Column(
            "user_input_id",
            sa.String(36),
            sa.ForeignKey("li_fixed_expense_inputs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "fingerprint", name="uq_li_tx_user_fingerprint"),
        sa.CheckConstraint("type in ('income','expense','transfer','other')", name="ck_li_tx_type"),
        sa.CheckConstraint(
            "spend_class IS NULL OR spend_class in ('essential','discretionary')",
            name="ck_li_tx_spend_class",
        ),
        sa.CheckConstraint(
            "type <> 'transfer' OR spend_class IS NULL",
            name="ck_li_tx_transfer_no_spend_class",
        ),
        sa.CheckConstraint(
            "fixed_status IS NULL OR fixed_status in ('fixed','maybe','not_fixed')",
            name="ck_li_tx_fixed_status",
        ),
        sa.CheckConstraint(
            "fixed_source IS NULL OR fixed_source in ('user','model','rule')",
            name="ck_li_tx_fixed_source",
        ),
        sa.CheckConstraint(
            "fixed_confidence IS NULL OR (fixed_confidence >= 0 AND fixed_confidence <= 1)",
            name="ck_li_tx_fixed_confidence",
        ),
    )
    op.create_index("ix_li_tx_user_date", "li_transactions", ["user_id", "date"])
    op.create_index("ix_li_tx_user_merchant_key", "li_transactions", ["user_id", "merchant_key"])

    # li_preference_notes (append-only)
    op.create_table(
        "li_preference_notes",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("merchant_key", sa.Text(), nullable=False),
        sa.Column("decision", sa.String(8), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("decision in ('accept','reject')", name="ck_li_note_decision"),
    )
    op.create_index("ix_li_preference_notes_user_id", "li_preference_notes", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_li_preference_notes_user_id", table_name="li_preference_notes")
    op.drop_table("li_preference_notes")
    op.drop_index("ix_li_tx_user_merchant_key", table_name="li_transactions")
    op.drop_index("ix_li_tx_user_date", table_name="li_transactions")
    op.drop_table("li_transactions")
    op.drop_index("ix_li_fixed_expense_inputs_user_id", table_name="li_fixed_expense_inputs")
    op.drop_table("li_fixed_expense_inputs")
    op.drop_index("ix_li_accounts_user_id", table_name="li_accounts")
    op.drop_table("li_accounts")
