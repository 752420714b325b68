"""Public interface for the ``ledger_insights`` package.

Re-exports the operations in :mod:`ledger_insights.api` and the records they
accept and return. Pure building blocks (normalizer, classifier, dedup,
recurrence, tagger, matcher, aggregator) are imported from their modules.
"""

from .api import (
    add_expected_payment,
    compute_period_totals,
    decide_fixed_expense,
    delete_user_data,
    get_fixed_expenses,
    get_recurring_candidates,
    ingest_statement,
    list_expected_payments,
    reconcile_expected_payments,
)
from .errors import InvalidExpectationError, OwnershipError, TransactionNotFoundError
from .models import (
    Account,
    ExpectationMatch,
    FixedExpenseAggregate,
    FixedExpenseSummary,
    FixedExpenseTag,
    RawTransaction,
    Transaction,
    UserFixedExpenseInput,
)
from .pipeline import IngestResult
from .totals import PeriodTotals

__all__ = [
    # API
    "add_expected_payment",
    "compute_period_totals",
    "decide_fixed_expense",
    "delete_user_data",
    "get_fixed_expenses",
    "get_recurring_candidates",
    "ingest_statement",
    "list_expected_payments",
    "reconcile_expected_payments",
    # Errors
    "InvalidExpectationError",
    "OwnershipError",
    "TransactionNotFoundError",
    # Models / types
    "Account",
    "ExpectationMatch",
    "FixedExpenseAggregate",
    "FixedExpenseSummary",
    "FixedExpenseTag",
    "IngestResult",
    "PeriodTotals",
    "RawTransaction",
    "Transaction",
    "UserFixedExpenseInput",
]
