"""ORM models for the ledger tables (``li_*``)."""

from .ledger import Base, LiAccount, LiFixedExpenseInput, LiPreferenceNote, LiTransaction

__all__ = [
    "Base",
    "LiAccount",
    "LiFixedExpenseInput",
    "LiPreferenceNote",
    "LiTransaction",
]
