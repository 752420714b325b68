# ruff: noqa: I001
"""Persistence integration for ledger_insights.

Functions here read and write the ``li_*`` tables owned by ``libs/db``. They
take an open SQLAlchemy ``Session`` and never commit; callers wrap them in
``db.client.session_scope`` so a failure (for example an
:class:`~ledger_insights.errors.OwnershipError`) rolls the whole unit of work
back.

Every query is filtered by ``user_id``; a write that targets another user's
row raises instead of silently skipping it.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from db.models.ledger import LiAccount, LiFixedExpenseInput, LiPreferenceNote, LiTransaction
from .errors import InvalidExpectationError, OwnershipError, TransactionNotFoundError
from .logging_setup import get_logger
from .matcher import AUTO_LINK_CONFIDENCE
from .classifier import spend_class_for
from .models import (
    SPEND_CLASSES,
    TRANSACTION_TYPES,
    Account,
    ExpectationMatch,
    FixedExpenseTag,
    Transaction,
    UserFixedExpenseInput,
)
from .money import quantize_amount

_logger = get_logger("ledger_insights.persistence")

# Columns copied verbatim between ``Transaction`` and ``LiTransaction``.
_TX_FIELDS: tuple[str, ...] = (
    "date",
    "currency",
    "merchant",
    "description",
    "merchant_key",
    "fingerprint",
    "category",
    "account_id",
    "type",
    "spend_class",
    "fixed_status",
    "fixed_source",
    "fixed_explain",
    "fixed_model",
    "is_subscription",
    "is_pending",
    "needs_clarification",
    "reconciled_from_id",
    "user_input_id",
)

PREFERENCE_NOTES_LIMIT = 50


def _to_float(v: Decimal | float | None) -> float | None:
    return None if v is None else float(v)


def _to_confidence(v: float | None) -> Decimal | None:
    if v is None:
        return None
    return Decimal(str(round(min(max(float(v), 0.0), 1.0), 4)))


def _to_transaction(row: LiTransaction) -> Transaction:
    values: dict[str, Any] = {f: getattr(row, f) for f in _TX_FIELDS}
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        amount=quantize_amount(Decimal(row.amount), row.currency),
        fixed_confidence=_to_float(row.fixed_confidence),
        **values,
    )


def _write_fields(row: LiTransaction, tx: Transaction) -> None:
    for f in _TX_FIELDS:
        setattr(row, f, getattr(tx, f))
    row.amount = tx.amount
    row.fixed_confidence = _to_confidence(tx.fixed_confidence)


def _owned_transaction(session: Session, *, user_id: str, transaction_id: str) -> LiTransaction:
    row = session.get(LiTransaction, transaction_id)
    if row is None:
        raise TransactionNotFoundError(transaction_id)
    if row.user_id != user_id:
        raise OwnershipError(user_id=user_id, transaction_id=transaction_id)
    return row


# ---------------------------------------------------------------------------
# Transactions and accounts
# ---------------------------------------------------------------------------


def load_transactions(
    session: Session,
    *,
    user_id: str,
    start: date | None = None,
    end: date | None = None,
) -> list[Transaction]:
    """Return the user's transactions ordered by date, optionally within ``[start, end]``."""

    stmt = select(LiTransaction).where(LiTransaction.user_id == user_id)
    if start is not None:
        stmt = stmt.where(LiTransaction.date >= start)
    if end is not None:
        stmt = stmt.where(LiTransaction.date <= end)
    stmt = stmt.order_by(LiTransaction.date, LiTransaction.id)
    return [_to_transaction(r) for r in session.scalars(stmt)]


def load_accounts(session: Session, *, user_id: str) -> dict[str, Account]:
    rows = session.scalars(select(LiAccount).where(LiAccount.user_id == user_id))
    return {
        r.id: Account(id=r.id, user_id=r.user_id, name=r.name, kind=r.kind, currency=r.currency)
        for r in rows
    }


def upsert_accounts(session: Session, *, user_id: str, accounts: Iterable[Account]) -> int:
    """Create missing accounts; existing ones keep their stored name and kind."""

    created = 0
    for acct in accounts:
        row = session.get(LiAccount, acct.id)
        if row is not None:
            if row.user_id != user_id:
                raise PermissionError(f"account {acct.id!r} does not belong to user {user_id!r}")
            continue
        session.add(
            LiAccount(
                id=acct.id,
                user_id=user_id,
                name=acct.name,
                kind=acct.kind,
                currency=acct.currency,
            )
        )
        created += 1
    if created:
        session.flush()
    return created


def write_staged(
    session: Session,
    *,
    user_id: str,
    inserts: Sequence[Transaction],
    updates: Sequence[Transaction],
    deleted_ids: Sequence[str] = (),
) -> None:
    """Apply one ingestion's row changes.

    ``deleted_ids`` are pending rows replaced by posted ones; they are removed
    (and expectation links moved to the posted row) before the inserts so the
    posted row may reuse the pending row's fingerprint.
    """

    replaced_by = {tx.reconciled_from_id: tx.id for tx in inserts if tx.reconciled_from_id}
    for pid in deleted_ids:
        row = _owned_transaction(session, user_id=user_id, transaction_id=pid)
        session.delete(row)
    if deleted_ids:
        session.flush()

    for tx in updates:
        row = _owned_transaction(session, user_id=user_id, transaction_id=tx.id)
        _write_fields(row, tx)
        row.updated_at = func.now()

    for tx in inserts:
        if tx.user_id != user_id:
            raise OwnershipError(user_id=user_id, transaction_id=tx.id)
        row = LiTransaction(id=tx.id, user_id=user_id)
        _write_fields(row, tx)
        session.add(row)
    session.flush()

    for old_id, new_id in replaced_by.items():
        for inp in session.scalars(
            select(LiFixedExpenseInput).where(
                LiFixedExpenseInput.user_id == user_id,
                LiFixedExpenseInput.matched_transaction_id == old_id,
            )
        ):
            inp.matched_transaction_id = new_id

    _logger.info(
        "persistence:staged user_id=%s inserts=%d updates=%d deleted=%d",
        user_id,
        len(inserts),
        len(updates),
        len(deleted_ids),
    )


def persist_fixed_expense_tags(
    session: Session,
    *,
    user_id: str,
    tags: Iterable[FixedExpenseTag],
    model: str | None,
    source: str = "model",
) -> int:
    """Write oracle (or rule) tags; returns the number of rows updated.

    Synthesized placeholders are not written, and rows carrying a user
    decision are never overwritten.
    """

    now = datetime.now(UTC)
    written = 0
    for tag in tags:
        if tag.synthesized or tag.transaction_id is None:
            continue
        row = session.get(LiTransaction, tag.transaction_id)
        if row is None:
            # Replaced or deleted while the oracle was running.
            _logger.warning("persistence:tag_target_missing transaction_id=%s", tag.transaction_id)
            continue
        if row.user_id != user_id:
            raise OwnershipError(user_id=user_id, transaction_id=tag.transaction_id)
        if row.fixed_source == "user":
            continue
        row.fixed_status = tag.label
        row.fixed_source = source
        row.fixed_confidence = _to_confidence(tag.confidence)
        row.fixed_explain = tag.explain or None
        row.fixed_model = model if source == "model" else None
        row.is_subscription = tag.is_subscription
        row.fixed_tagged_at = now
        row.updated_at = func.now()
        written += 1
    _logger.info("persistence:tags user_id=%s source=%s written=%d", user_id, source, written)
    return written


# ---------------------------------------------------------------------------
# User decisions and preference notes
# ---------------------------------------------------------------------------


def _note_content(accept: bool, merchant: str, merchant_key: str) -> str:
    verb = "Confirmed" if accept else "Rejected"
    return f'{verb} fixed expense: "{merchant}" (normalized: {merchant_key})'


def record_fixed_expense_decision(
    session: Session,
    *,
    user_id: str,
    transaction_id: str,
    accept: bool,
) -> int:
    """Apply a user's accept/reject to every row of the transaction's merchant.

    Returns the number of rows updated and appends one preference note.
    """

    target = _owned_transaction(session, user_id=user_id, transaction_id=transaction_id)
    status = "fixed" if accept else "not_fixed"
    explain = "Confirmed by user" if accept else "Rejected by user"

    if target.merchant_key:
        rows = list(
            session.scalars(
                select(LiTransaction).where(
                    LiTransaction.user_id == user_id,
                    LiTransaction.merchant_key == target.merchant_key,
                    LiTransaction.type != "transfer",
                )
            )
        )
        if target not in rows:
            rows.append(target)
    else:
        rows = [target]

    now = datetime.now(UTC)
    for row in rows:
        row.fixed_status = status
        row.fixed_source = "user"
        row.fixed_confidence = Decimal("1")
        row.fixed_explain = explain
        row.fixed_model = None
        row.fixed_tagged_at = now
        row.updated_at = func.now()

    merchant = (target.merchant or target.description or target.merchant_key or "").strip()
    session.add(
        LiPreferenceNote(
            user_id=user_id,
            merchant_key=target.merchant_key,
            decision="accept" if accept else "reject",
            content=_note_content(accept, merchant, target.merchant_key),
        )
    )
    session.flush()
    _logger.info(
        "persistence:decision user_id=%s merchant_key=%s status=%s rows=%d",
        user_id,
        target.merchant_key,
        status,
        len(rows),
    )
    return len(rows)


def resolve_clarification(
    session: Session,
    *,
    user_id: str,
    transaction_id: str,
    tx_type: str,
    spend_class: str | None = None,
) -> Transaction:
    """Settle a row flagged ``needs_clarification`` so it counts again.

    ``spend_class`` applies to expenses only; when omitted for an expense
    the category/merchant rules fill it in.
    """

    if tx_type not in TRANSACTION_TYPES:
        raise ValueError(f"type must be one of {', '.join(TRANSACTION_TYPES)}, got {tx_type!r}")
    if spend_class is not None and spend_class not in SPEND_CLASSES:
        raise ValueError(
            f"spend class must be one of {', '.join(SPEND_CLASSES)}, got {spend_class!r}"
        )
    if spend_class is not None and tx_type != "expense":
        raise ValueError("only expenses carry a spend class")

    row = _owned_transaction(session, user_id=user_id, transaction_id=transaction_id)
    if tx_type == "expense" and spend_class is None:
        spend_class, _ = spend_class_for(category=row.category, merchant_key=row.merchant_key)

    row.type = tx_type
    row.spend_class = spend_class
    row.needs_clarification = False
    row.updated_at = func.now()
    session.flush()
    _logger.info(
        "persistence:clarified user_id=%s transaction_id=%s type=%s spend_class=%s",
        user_id,
        transaction_id,
        tx_type,
        spend_class,
    )
    return _to_transaction(row)


def load_preference_notes(
    session: Session, *, user_id: str, limit: int = PREFERENCE_NOTES_LIMIT
) -> list[str]:
    """Return the user's most recent notes, oldest first."""

    stmt = (
        select(LiPreferenceNote.content)
        .where(LiPreferenceNote.user_id == user_id)
        .order_by(LiPreferenceNote.id.desc())
        .limit(limit)
    )
    return list(reversed(session.scalars(stmt).all()))


# ---------------------------------------------------------------------------
# Expected payments
# ---------------------------------------------------------------------------


def _to_expectation(row: LiFixedExpenseInput) -> UserFixedExpenseInput:
    return UserFixedExpenseInput(
        id=row.id,
        name=row.name,
        expected_amount=row.expected_amount,
        expected_day_of_month=row.expected_day_of_month,
        expected_cadence=row.expected_cadence,
        currency=row.currency,
        is_active=row.is_active,
        matched_transaction_id=row.matched_transaction_id,
        match_confidence=_to_float(row.match_confidence),
        match_explain=row.match_explain,
    )


def validate_expectation(
    payload: Mapping[str, Any] | UserFixedExpenseInput,
) -> UserFixedExpenseInput:
    """Validate user input, raising :class:`InvalidExpectationError` on failure."""

    data = payload.model_dump() if isinstance(payload, UserFixedExpenseInput) else dict(payload)
    try:
        return UserFixedExpenseInput.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidExpectationError(f"invalid expected payment: {problems}") from e


def add_expectation(
    session: Session,
    *,
    user_id: str,
    payload: Mapping[str, Any] | UserFixedExpenseInput,
) -> UserFixedExpenseInput:
    item = validate_expectation(payload)
    item = item.model_copy(update={"id": str(uuid.uuid4())})
    session.add(
        LiFixedExpenseInput(
            id=item.id,
            user_id=user_id,
            name=item.name,
            expected_amount=item.expected_amount,
            expected_day_of_month=item.expected_day_of_month,
            expected_cadence=item.expected_cadence,
            currency=item.currency,
            is_active=item.is_active,
        )
    )
    session.flush()
    return item


def load_expectations(
    session: Session, *, user_id: str, active_only: bool = True
) -> list[UserFixedExpenseInput]:
    stmt = select(LiFixedExpenseInput).where(LiFixedExpenseInput.user_id == user_id)
    if active_only:
        stmt = stmt.where(LiFixedExpenseInput.is_active.is_(True))
    stmt = stmt.order_by(LiFixedExpenseInput.created_at, LiFixedExpenseInput.id)
    return [_to_expectation(r) for r in session.scalars(stmt)]


def persist_expectation_matches(
    session: Session,
    *,
    user_id: str,
    matches: Iterable[ExpectationMatch],
    link_threshold: float = AUTO_LINK_CONFIDENCE,
) -> int:
    """Record match results; returns how many inputs were linked and retired.

    A match at or above ``link_threshold`` points the transaction at the input
    and marks the input inactive.
    """

    linked = 0
    for m in matches:
        if m.synthesized:
            continue
        row = session.get(LiFixedExpenseInput, m.user_input_id)
        if row is None:
            _logger.warning("persistence:match_unknown_input user_input_id=%s", m.user_input_id)
            continue
        if row.user_id != user_id:
            raise PermissionError(
                f"expected payment {m.user_input_id!r} does not belong to user {user_id!r}"
            )
        row.matched_transaction_id = m.matched_transaction_id
        row.match_confidence = _to_confidence(m.confidence)
        row.match_explain = m.explain or None
        row.updated_at = func.now()
        if m.matched_transaction_id is not None and m.confidence >= link_threshold:
            tx = _owned_transaction(
                session, user_id=user_id, transaction_id=m.matched_transaction_id
            )
            tx.user_input_id = row.id
            tx.updated_at = func.now()
            row.is_active = False
            linked += 1
    session.flush()
    return linked


def delete_user_data(session: Session, *, user_id: str) -> dict[str, int]:
    """Remove every row the user owns; returns per-table counts."""

    counts: dict[str, int] = {}
    for model in (LiTransaction, LiFixedExpenseInput, LiPreferenceNote, LiAccount):
        result = session.execute(delete(model).where(model.user_id == user_id))
        counts[model.__tablename__] = int(result.rowcount or 0)
    _logger.info("persistence:deleted user_id=%s counts=%s", user_id, counts)
    return counts


__all__ = [
    "add_expectation",
    "delete_user_data",
    "load_accounts",
    "load_expectations",
    "load_preference_notes",
    "load_transactions",
    "persist_expectation_matches",
    "persist_fixed_expense_tags",
    "record_fixed_expense_decision",
    "resolve_clarification",
    "upsert_accounts",
    "validate_expectation",
    "write_staged",
]
