"""Exception types raised at the package boundary.

Each subclasses the closest builtin so callers that only know the stdlib
hierarchy (``PermissionError``, ``LookupError``, ``ValueError``) still catch
them.
"""

from __future__ import annotations


class OwnershipError(PermissionError):
    """A write targeted a row that belongs to a different user."""

    def __init__(self, *, user_id: str, transaction_id: str) -> None:
        super().__init__(
            f"transaction {transaction_id!r} does not belong to user {user_id!r}"
        )
        self.user_id = user_id
        self.transaction_id = transaction_id


class TransactionNotFoundError(LookupError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"transaction not found: {transaction_id!r}")
        self.transaction_id = transaction_id


class InvalidExpectationError(ValueError):
    """A user-declared expected payment failed validation."""


__all__ = ["InvalidExpectationError", "OwnershipError", "TransactionNotFoundError"]
