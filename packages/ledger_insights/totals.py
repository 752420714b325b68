"""Read-time income/expense totals.

Totals re-run the classifier and the transfer matcher over exactly the rows
being summed, so a transfer is excluded once per pair regardless of when its
legs were ingested.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from .classifier import classify
from .models import Account, Transaction
from .money import ZERO
from .transfers import find_transfer_pairs


@dataclass(frozen=True, slots=True)
class PeriodTotals:
    income: Decimal
    expense: Decimal
    essential: Decimal
    discretionary: Decimal
    unclassified: Decimal
    excluded_count: int
    transfer_pairs: int

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


def compute_totals(
    transactions: Iterable[Transaction], accounts: Mapping[str, Account]
) -> PeriodTotals:
    """Sum income and expense magnitudes, skipping transfers and unresolved rows."""

    rows = list(transactions)
    pairs = find_transfer_pairs(rows, accounts)
    paired = {leg.id for pair in pairs for leg in pair}

    income = expense = essential = discretionary = unclassified = ZERO
    excluded = 0
    for tx in rows:
        if tx.id in paired:
            excluded += 1
            continue
        c = classify(tx, explicit_type=tx.type)
        if c.is_excluded:
            excluded += 1
            continue
        if c.type == "income":
            income += abs(tx.amount)
        elif c.type == "expense":
            magnitude = abs(tx.amount)
            expense += magnitude
            spend_class = tx.spend_class or c.spend_class
            if spend_class == "essential":
                essential += magnitude
            elif spend_class == "discretionary":
                discretionary += magnitude
            else:
                unclassified += magnitude

    return PeriodTotals(
        income=income,
        expense=expense,
        essential=essential,
        discretionary=discretionary,
        unclassified=unclassified,
        excluded_count=excluded,
        transfer_pairs=len(pairs),
    )


__all__ = ["PeriodTotals", "compute_totals"]
