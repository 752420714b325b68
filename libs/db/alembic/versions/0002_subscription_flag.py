# ruff: noqa: I001
"""Add the subscription flag the tagger reports for each transaction.

Revision ID: 0002_subscription_flag
Revises: 0001_ledger_core
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_subscription_flag"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "li_transactions",
        sa.Column(
            "is_subscription", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
    )


def downgrade() -> None:
    op.drop_column("li_transactions", "is_subscription")
