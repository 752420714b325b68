"""Public operations for the ``ledger_insights`` package.

Each function opens its own short database transaction(s) through
``db.client.session_scope``; oracle calls always happen with no session open.
``database_url`` falls back to the ``DATABASE_URL`` environment variable.

Oracle-backed operations accept an explicit ``oracle``; when omitted, the
OpenAI-backed default is used if ``OPENAI_API_KEY`` is set, otherwise the
operation proceeds on its placeholder path.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, timedelta
from typing import Any

from db.client import session_scope

from . import persistence
from .aggregator import aggregate_fixed_expenses
from .logging_setup import get_logger
from .matcher import match_expectations
from .models import (
    ExpectationMatch,
    FixedExpenseSummary,
    RawTransaction,
    RecurrenceCandidate,
    SubscriptionCandidate,
    Transaction,
    UserFixedExpenseInput,
)
from .oracle import Oracle, default_oracle
from .pipeline import IngestResult, ingest_transactions
from .recurrence import (
    SUBSCRIPTION_WINDOW_DAYS,
    detect_recurring_candidates,
    detect_subscription_candidates,
    is_expense_like,
)
from .settings import Settings
from .totals import PeriodTotals, compute_totals

_logger = get_logger("ledger_insights.api")


def _resolve(settings: Settings | None, oracle: Oracle | None) -> tuple[Settings, Oracle | None]:
    s = settings or Settings.from_env()
    return s, oracle if oracle is not None else default_oracle(s)


def ingest_statement(
    transactions: Sequence[RawTransaction],
    *,
    user_id: str,
    database_url: str | None = None,
    oracle: Oracle | None = None,
    settings: Settings | None = None,
) -> IngestResult:
    """Deduplicate, classify, store and tag one statement's transactions."""

    s, o = _resolve(settings, oracle)
    return ingest_transactions(
        transactions, user_id=user_id, database_url=database_url, oracle=o, settings=s
    )


def get_fixed_expenses(
    *,
    user_id: str,
    database_url: str | None = None,
    today: date | None = None,
    lookback_days: int | None = None,
) -> FixedExpenseSummary:
    """Return the per-merchant fixed-expense view, recomputed from stored tags."""

    today = today or date.today()
    days = lookback_days if lookback_days is not None else Settings.from_env().lookback_days
    with session_scope(database_url=database_url) as session:
        rows = persistence.load_transactions(
            session, user_id=user_id, start=today - timedelta(days=days), end=today
        )
    return aggregate_fixed_expenses(rows, today=today, lookback_days=days)


def get_recurring_candidates(
    *,
    user_id: str,
    database_url: str | None = None,
    today: date | None = None,
    lookback_days: int | None = None,
) -> list[RecurrenceCandidate]:
    today = today or date.today()
    days = lookback_days if lookback_days is not None else Settings.from_env().lookback_days
    with session_scope(database_url=database_url) as session:
        rows = persistence.load_transactions(
            session, user_id=user_id, start=today - timedelta(days=days), end=today
        )
    return detect_recurring_candidates(rows, today=today)


def get_subscription_candidates(
    *,
    user_id: str,
    database_url: str | None = None,
    today: date | None = None,
) -> list[SubscriptionCandidate]:
    """Recent charges at known subscription services, newest history only."""

    today = today or date.today()
    with session_scope(database_url=database_url) as session:
        rows = persistence.load_transactions(
            session,
            user_id=user_id,
            start=today - timedelta(days=SUBSCRIPTION_WINDOW_DAYS),
            end=today,
        )
    return detect_subscription_candidates(rows, today=today)


def decide_fixed_expense(
    *,
    user_id: str,
    transaction_id: str,
    accept: bool,
    database_url: str | None = None,
) -> int:
    """Record the user's verdict for the transaction's merchant.

    Every row of that merchant is set to ``fixed`` (accept) or ``not_fixed``
    (reject) with provenance ``user`` and confidence 1.0, and a preference
    note is appended for future tagging runs. Returns the rows updated.

    Raises :class:`~ledger_insights.errors.OwnershipError` when the
    transaction belongs to someone else.
    """

    with session_scope(database_url=database_url) as session:
        return persistence.record_fixed_expense_decision(
            session, user_id=user_id, transaction_id=transaction_id, accept=accept
        )


def resolve_clarification(
    *,
    user_id: str,
    transaction_id: str,
    tx_type: str,
    spend_class: str | None = None,
    database_url: str | None = None,
) -> Transaction:
    """Record a human answer for a row flagged ``needs_clarification``.

    The row takes ``tx_type`` (and ``spend_class`` for expenses) and is
    counted in totals again. Raises
    :class:`~ledger_insights.errors.OwnershipError` for another user's row.
    """

    with session_scope(database_url=database_url) as session:
        return persistence.resolve_clarification(
            session,
            user_id=user_id,
            transaction_id=transaction_id,
            tx_type=tx_type,
            spend_class=spend_class,
        )


def add_expected_payment(
    payload: Mapping[str, Any] | UserFixedExpenseInput,
    *,
    user_id: str,
    database_url: str | None = None,
) -> UserFixedExpenseInput:
    """Validate and store a user-declared expected payment.

    Validation happens before any database work, so an
    :class:`~ledger_insights.errors.InvalidExpectationError` leaves no trace.
    """

    persistence.validate_expectation(payload)
    with session_scope(database_url=database_url) as session:
        return persistence.add_expectation(session, user_id=user_id, payload=payload)


def list_expected_payments(
    *, user_id: str, database_url: str | None = None, active_only: bool = True
) -> list[UserFixedExpenseInput]:
    with session_scope(database_url=database_url) as session:
        return persistence.load_expectations(session, user_id=user_id, active_only=active_only)


def reconcile_expected_payments(
    *,
    user_id: str,
    database_url: str | None = None,
    oracle: Oracle | None = None,
    settings: Settings | None = None,
    today: date | None = None,
) -> list[ExpectationMatch]:
    """Match active expected payments against detected fixed expenses.

    Matches at or above 0.8 confidence link the transaction and retire the
    expected payment.
    """

    s, o = _resolve(settings, oracle)
    today = today or date.today()
    with session_scope(database_url=database_url) as session:
        inputs = persistence.load_expectations(session, user_id=user_id)
        rows = persistence.load_transactions(
            session, user_id=user_id, start=today - timedelta(days=s.lookback_days), end=today
        )
    detected = [t for t in rows if t.fixed_status in ("fixed", "maybe") and is_expense_like(t)]

    matches = match_expectations(
        inputs,
        detected,
        oracle=o,
        batch_size=s.batch_size,
        concurrency=s.concurrency,
        use_cache=s.oracle_cache,
    )
    if matches:
        with session_scope(database_url=database_url) as session:
            linked = persistence.persist_expectation_matches(
                session, user_id=user_id, matches=matches
            )
        _logger.info(
            "api:reconciled user_id=%s inputs=%d detected=%d linked=%d",
            user_id,
            len(inputs),
            len(detected),
            linked,
        )
    return matches


def compute_period_totals(
    *,
    user_id: str,
    start: date,
    end: date,
    database_url: str | None = None,
) -> PeriodTotals:
    """Income and expense totals for ``[start, end]`` with transfers excluded."""

    if end < start:
        raise ValueError("end must not be before start")
    with session_scope(database_url=database_url) as session:
        rows = persistence.load_transactions(session, user_id=user_id, start=start, end=end)
        accounts = persistence.load_accounts(session, user_id=user_id)
    return compute_totals(rows, accounts)


def delete_user_data(*, user_id: str, database_url: str | None = None) -> dict[str, int]:
    """Erase the user's transactions, expected payments, notes and accounts."""

    with session_scope(database_url=database_url) as session:
        return persistence.delete_user_data(session, user_id=user_id)


__all__ = [
    "add_expected_payment",
    "compute_period_totals",
    "decide_fixed_expense",
    "delete_user_data",
    "get_fixed_expenses",
    "get_recurring_candidates",
    "get_subscription_candidates",
    "ingest_statement",
    "list_expected_payments",
    "reconcile_expected_payments",
    "resolve_clarification",
]
