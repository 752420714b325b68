"""Per-merchant fixed-expense view.

:func:`aggregate_fixed_expenses` is a pure function of the tagged history in
a lookback window (120 days by default); callers recompute it on every read.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta

from .logging_setup import get_logger
from .models import FixedExpenseAggregate, FixedExpenseSummary, Transaction
from .money import ZERO
from .recurrence import build_merchant_month_index, is_expense_like, month_key
from .settings import DEFAULT_LOOKBACK_DAYS

_logger = get_logger("ledger_insights.aggregator")


def _latest(rows: Iterable[Transaction]) -> Transaction:
    return max(rows, key=lambda t: (t.date, t.id))


def aggregate_fixed_expenses(
    transactions: Iterable[Transaction],
    *,
    today: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    calculated_at: datetime | None = None,
) -> FixedExpenseSummary:
    """Build the ranked fixed-expense list for the month containing ``today``.

    Non-zero rows tagged ``fixed`` or ``maybe`` within ``lookback_days`` of
    ``today`` are grouped by merchant key and calendar month. Per merchant:

    - ``monthly_amount``: sum over the most recent month with data;
    - ``mtd_amount``: sum over the current month up to ``today``;
    - ``occurrence_dates``: this month's dates;
    - ``is_maybe``: any ``maybe`` row in the current or most recent month;
    - representative row: the latest one this month, else the latest one in
      the most recent month; its provenance fields are surfaced.

    Sorted by monthly amount descending, then merchant name ascending.
    """

    start = today - timedelta(days=lookback_days)
    window = [
        t
        for t in transactions
        if t.fixed_status in ("fixed", "maybe")
        and is_expense_like(t)
        and t.amount != 0
        and start <= t.date <= today
    ]
    index = build_merchant_month_index(window)
    current = month_key(today)

    expenses: list[FixedExpenseAggregate] = []
    for merchant_key, months in index.items():
        latest_month = max(months)
        this_month = months.get(current, [])
        rep = _latest(this_month) if this_month else _latest(months[latest_month])
        recent = [*this_month, *months[latest_month]]
        expenses.append(
            FixedExpenseAggregate(
                transaction_id=rep.id,
                merchant=rep.display_merchant,
                merchant_key=merchant_key,
                monthly_amount=sum((abs(t.amount) for t in months[latest_month]), ZERO),
                mtd_amount=sum((abs(t.amount) for t in this_month), ZERO),
                occurrence_dates=tuple(sorted(t.date for t in this_month)),
                is_maybe=any(t.fixed_status == "maybe" for t in recent),
                confidence=rep.fixed_confidence,
                explain=rep.fixed_explain,
                source=rep.fixed_source,
                currency=rep.currency,
                is_subscription=any(t.is_subscription for t in recent),
            )
        )

    expenses.sort(key=lambda e: (-e.monthly_amount, e.merchant.casefold(), e.merchant_key))
    summary = FixedExpenseSummary(
        month=current,
        monthly_total=sum((e.monthly_amount for e in expenses), ZERO),
        mtd_total=sum((e.mtd_amount for e in expenses), ZERO),
        expenses=tuple(expenses),
        calculated_at=calculated_at or datetime.now(UTC),
    )
    _logger.debug(
        "aggregator:summary month=%s merchants=%d window_rows=%d",
        current,
        len(expenses),
        len(window),
    )
    return summary


__all__ = ["aggregate_fixed_expenses"]
