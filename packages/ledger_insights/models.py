"""Data models and type aliases for ``ledger_insights``.

Two families live here:

- Frozen dataclasses for records that flow through the pure pipeline stages
  (``RawTransaction``, ``Transaction``, ``Account`` and the derived
  recurrence/aggregate views). Stages never mutate them; they return
  ``dataclasses.replace`` copies.
- Pydantic models for anything that crosses a trust boundary: oracle results
  (``FixedExpenseTag``, ``ExpectationMatch``), user-declared expectations
  (``UserFixedExpenseInput``) and the on-disk oracle cache file.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

type TransactionType = Literal["income", "expense", "transfer", "other"]
type SpendClass = Literal["essential", "discretionary"]
type FixedStatus = Literal["fixed", "maybe", "not_fixed"]
type Provenance = Literal["user", "model", "rule"]
type Cadence = Literal["monthly", "biweekly", "weekly", "quarterly", "annual", "irregular"]
type PrimaryType = Literal[
    "rent",
    "mortgage",
    "utility",
    "insurance",
    "loan",
    "subscription",
    "phone_internet",
    "tax",
    "other_fixed",
    "not_fixed",
    "unknown",
]

TRANSACTION_TYPES: tuple[str, ...] = ("income", "expense", "transfer", "other")
SPEND_CLASSES: tuple[str, ...] = ("essential", "discretionary")
FIXED_STATUSES: tuple[str, ...] = ("fixed", "maybe", "not_fixed")
PRIMARY_TYPES: tuple[str, ...] = (
    "rent",
    "mortgage",
    "utility",
    "insurance",
    "loan",
    "subscription",
    "phone_internet",
    "tax",
    "other_fixed",
    "not_fixed",
    "unknown",
)


# ---------------------------------------------------------------------------
# Core records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Account:
    id: str
    user_id: str
    name: str
    kind: str | None = None
    currency: str = "USD"


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """A transaction as delivered by an upstream extractor or bank sync.

    ``amount`` is signed: negative for money leaving the account.
    ``transaction_type`` is the upstream's explicit type when it has one.
    """

    user_id: str
    date: date
    amount: Decimal
    merchant: str | None = None
    description: str | None = None
    currency: str = "USD"
    category: str | None = None
    account_id: str | None = None
    transaction_type: str | None = None
    is_pending: bool = False
    needs_clarification: bool = False


@dataclass(frozen=True, slots=True)
class Transaction:
    """A stored, normalized transaction.

    ``fixed_status`` is ``None`` until a rule, the oracle or the user decides;
    ``fixed_source`` records which of those did.
    """

    id: str
    user_id: str
    date: date
    amount: Decimal
    currency: str
    merchant: str | None
    description: str | None
    merchant_key: str
    fingerprint: str
    category: str | None = None
    account_id: str | None = None
    type: str = "other"
    spend_class: str | None = None
    fixed_status: str | None = None
    fixed_source: str | None = None
    fixed_confidence: float | None = None
    fixed_explain: str | None = None
    fixed_model: str | None = None
    is_subscription: bool = False
    is_pending: bool = False
    needs_clarification: bool = False
    reconciled_from_id: str | None = None
    user_input_id: str | None = None

    def replace(self, **changes: Any) -> Transaction:
        return dataclasses.replace(self, **changes)

    @property
    def display_merchant(self) -> str:
        return (self.merchant or self.description or self.merchant_key or "").strip()


class Classification(NamedTuple):
    type: str
    spend_class: str | None
    is_excluded: bool
    confidence: float
    reason: str


class TransferPair(NamedTuple):
    """Two legs of one money movement between a user's own accounts."""

    outflow: Transaction
    inflow: Transaction


# ---------------------------------------------------------------------------
# Recurrence and aggregation views (derived, never stored)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecurrenceCandidate:
    merchant_key: str
    merchant: str
    representative_id: str
    currency: str
    monthly_amount: Decimal
    mtd_amount: Decimal
    recurring_amount: Decimal
    months_seen: int
    typical_day: int | None
    cadence: str
    rule_score: float
    is_maybe: bool
    transaction_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FixedExpenseAggregate:
    transaction_id: str
    merchant: str
    merchant_key: str
    monthly_amount: Decimal
    mtd_amount: Decimal
    occurrence_dates: tuple[date, ...]
    is_maybe: bool
    confidence: float | None
    explain: str | None
    source: str | None
    currency: str
    is_subscription: bool = False


@dataclass(frozen=True, slots=True)
class FixedExpenseSummary:
    month: str
    monthly_total: Decimal
    mtd_total: Decimal
    expenses: tuple[FixedExpenseAggregate, ...]
    calculated_at: datetime


@dataclass(frozen=True, slots=True)
class SubscriptionCandidate:
    """A recent outflow whose merchant looks like a subscription service.

    Found by name alone, so it is always ``is_maybe``; one charge is enough.
    """

    merchant_key: str
    merchant: str
    service: str
    representative_id: str
    currency: str
    median_amount: Decimal
    occurrence_count: int
    last_date: date
    day_of_month: int
    is_maybe: bool = True
    is_subscription: bool = True


# ---------------------------------------------------------------------------
# Oracle inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FixedExpenseTagInput:
    transaction_id: str
    merchant: str
    description: str | None = None
    category: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    date: date | None = None


class FixedExpenseTag(BaseModel):
    """One oracle verdict on whether a transaction is a fixed expense.

    ``synthesized`` marks placeholders produced locally (missing entries or an
    unavailable oracle); callers must not persist those as model decisions.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    transaction_id: str | None = None
    label: FixedStatus
    confidence: float = Field(ge=0.0, le=1.0)
    primary_type: PrimaryType = "unknown"
    is_subscription: bool = False
    explain: str = ""
    synthesized: bool = False


class ExpectationMatch(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    user_input_id: str
    matched_transaction_id: str | None
    confidence: float = Field(ge=0.0, le=1.0)
    explain: str = ""
    synthesized: bool = False


class UserFixedExpenseInput(BaseModel):
    """A payment the user expects to make regularly."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    id: str | None = None
    name: str
    expected_amount: Decimal | None = None
    expected_day_of_month: int | None = Field(default=None, ge=1, le=31)
    expected_cadence: Cadence | None = None
    currency: str = "USD"
    is_active: bool = True
    matched_transaction_id: str | None = None
    match_confidence: float | None = None
    match_explain: str | None = None

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("name must be non-empty")
        return v

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        v = v.upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return v

    @field_validator("expected_cadence", mode="before")
    @classmethod
    def _cadence_lower(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v


# ---------------------------------------------------------------------------
# DTOs for the on-disk oracle cache
# ---------------------------------------------------------------------------


class OracleCacheFile(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    schema_version: int
    kind: str
    key: str
    items: list[dict[str, Any]]


__all__ = [
    "Account",
    "Classification",
    "ExpectationMatch",
    "FIXED_STATUSES",
    "FixedExpenseAggregate",
    "FixedExpenseSummary",
    "FixedExpenseTag",
    "FixedExpenseTagInput",
    "OracleCacheFile",
    "PRIMARY_TYPES",
    "RawTransaction",
    "RecurrenceCandidate",
    "SPEND_CLASSES",
    "SubscriptionCandidate",
    "TRANSACTION_TYPES",
    "Transaction",
    "TransferPair",
    "UserFixedExpenseInput",
]
