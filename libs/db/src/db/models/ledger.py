from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: li_accounts
# ---------------------------


class LiAccount(Base):
    __tablename__ = "li_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'USD'"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# User expectations: li_fixed_expense_inputs
# ---------------------------


class LiFixedExpenseInput(Base):
    __tablename__ = "li_fixed_expense_inputs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    expected_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    expected_day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expected_cadence: Mapped[str | None] = mapped_column(String(16), nullable=True)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'USD'"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    # Plain reference (no FK): transactions already point back here.
    matched_transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    match_confidence: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    match_explain: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="ck_li_fei_name_non_empty"),
        CheckConstraint(
            "expected_day_of_month IS NULL OR "
            "(expected_day_of_month >= 1 AND expected_day_of_month <= 31)",
            name="ck_li_fei_day_of_month",
        ),
        CheckConstraint(
            "expected_cadence IS NULL OR expected_cadence in "
            "('monthly','biweekly','weekly','quarterly','annual','irregular')",
            name="ck_li_fei_cadence",
        ),
        CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_li_fei_match_confidence",
        ),
    )


# ---------------------------
# Core: li_transactions
# ---------------------------


class LiTransaction(Base):
    __tablename__ = "li_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # SHA-256 over (user, date, merchant_key, minor-unit amount, currency, account).
    fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'USD'"))
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    merchant_key: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'other'"))
    spend_class: Mapped[str | None] = mapped_column(String(16), nullable=True)
    fixed_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    fixed_source: Mapped[str | None] = mapped_column(String(8), nullable=True)
    fixed_confidence: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    fixed_explain: Mapped[str | None] = mapped_column(Text, nullable=True)
    fixed_model: Mapped[str | None] = mapped_column(Text, nullable=True)
    fixed_tagged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_subscription: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    is_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    needs_clarification: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    # Audit link to the pending row this posted row replaced (that row is gone).
    reconciled_from_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_input_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("li_fixed_expense_inputs.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_li_tx_user_fingerprint"),
        CheckConstraint(
            "type in ('income','expense','transfer','other')",
            name="ck_li_tx_type",
        ),
        CheckConstraint(
            "spend_class IS NULL OR spend_class in ('essential','discretionary')",
            name="ck_li_tx_spend_class",
        ),
        CheckConstraint(
            "type <> 'transfer' OR spend_class IS NULL",
            name="ck_li_tx_transfer_no_spend_class",
        ),
        CheckConstraint(
            "fixed_status IS NULL OR fixed_status in ('fixed','maybe','not_fixed')",
            name="ck_li_tx_fixed_status",
        ),
        CheckConstraint(
            "fixed_source IS NULL OR fixed_source in ('user','model','rule')",
            name="ck_li_tx_fixed_source",
        ),
        CheckConstraint(
            "fixed_confidence IS NULL OR (fixed_confidence >= 0 AND fixed_confidence <= 1)",
            name="ck_li_tx_fixed_confidence",
        ),
        Index("ix_li_tx_user_date", "user_id", "date"),
        Index("ix_li_tx_user_merchant_key", "user_id", "merchant_key"),
    )


# ---------------------------
# Append-only: li_preference_notes
# ---------------------------


class LiPreferenceNote(Base):
    __tablename__ = "li_preference_notes"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    merchant_key: Mapped[str] = mapped_column(Text, nullable=False)
    decision: Mapped[str] = mapped_column(String(8), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("decision in ('accept','reject')", name="ck_li_note_decision"),
    )


__all__ = [
    "Base",
    "LiAccount",
    "LiFixedExpenseInput",
    "LiPreferenceNote",
    "LiTransaction",
]
