"""Transaction deduplication.

One real-world event must produce at most one stored transaction per user,
no matter how many overlapping statements, bank syncs or re-uploads deliver
it. Two records describe the same event when they share the identity key
``(user, date, merchant key, amount at minor-unit precision, currency)`` and
their accounts are compatible (equal, or at least one side unknown).

:func:`plan_deduplication` does not touch storage. It returns a
:class:`DedupPlan` that says which incoming rows to insert, which stored rows
to enrich, which pending rows a posted row replaces, and which incoming rows
to drop. Incoming rows are also checked against earlier rows of the same
batch, so a batch deduplicates itself.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from .logging_setup import get_logger
from .models import Transaction
from .money import quantize_amount

_logger = get_logger("ledger_insights.dedup")

# Fields a posted row inherits from the pending row it replaces.
_CARRIED_DECISION_FIELDS: tuple[str, ...] = (
    "fixed_status",
    "fixed_source",
    "fixed_confidence",
    "fixed_explain",
    "fixed_model",
    "is_subscription",
    "user_input_id",
)


def compute_fingerprint(
    *,
    user_id: str,
    date: date,
    merchant_key: str,
    amount: Decimal,
    currency: str,
    account_id: str | None,
) -> str:
    """Return a SHA-256 fingerprint over the canonical identity fields.

    ``merchant_key`` must already be normalized; the amount is rendered at
    the currency's minor unit so ``12.5`` and ``12.50`` agree.
    """

    payload = {
        "user": user_id,
        "date": date.isoformat(),
        "merchant": merchant_key,
        "amount": str(quantize_amount(amount, currency)),
        "currency": (currency or "USD").upper(),
        "account": account_id,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def fingerprint_of(tx: Transaction) -> str:
    return compute_fingerprint(
        user_id=tx.user_id,
        date=tx.date,
        merchant_key=tx.merchant_key,
        amount=tx.amount,
        currency=tx.currency,
        account_id=tx.account_id,
    )


type IdentityKey = tuple[str, date, str, Decimal, str]


def identity_key(tx: Transaction) -> IdentityKey:
    return (
        tx.user_id,
        tx.date,
        tx.merchant_key,
        quantize_amount(tx.amount, tx.currency),
        tx.currency.upper(),
    )


def _accounts_compatible(a: str | None, b: str | None) -> bool:
    return a is None or b is None or a == b


class Replacement(NamedTuple):
    """A posted row superseding a stored pending row."""

    pending_id: str
    posted: Transaction


@dataclass(frozen=True, slots=True)
class DedupPlan:
    inserts: tuple[Transaction, ...]
    merges: tuple[Transaction, ...]
    replacements: tuple[Replacement, ...]
    dropped: tuple[Transaction, ...]

    @property
    def staged(self) -> tuple[Transaction, ...]:
        """Every row this plan writes (new, enriched or replacing)."""

        return self.inserts + self.merges + tuple(r.posted for r in self.replacements)


def _adds_information(existing: Transaction, incoming: Transaction) -> bool:
    return (existing.account_id is None and incoming.account_id is not None) or (
        existing.category is None and incoming.category is not None
    )


def _merge(existing: Transaction, incoming: Transaction) -> Transaction:
    merged = existing.replace(
        account_id=existing.account_id or incoming.account_id,
        category=existing.category or incoming.category,
    )
    return merged.replace(fingerprint=fingerprint_of(merged))


def _supersede(pending: Transaction, posted: Transaction) -> Transaction:
    carried = {
        f: getattr(pending, f)
        for f in _CARRIED_DECISION_FIELDS
        if getattr(posted, f) is None and getattr(pending, f) is not None
    }
    row = posted.replace(
        account_id=posted.account_id or pending.account_id,
        category=posted.category or pending.category,
        **carried,
    )
    return row.replace(fingerprint=fingerprint_of(row))


def plan_deduplication(
    incoming: Sequence[Transaction], existing: Iterable[Transaction]
) -> DedupPlan:
    """Decide what to do with each incoming row.

    Resolution per incoming row, against stored rows and earlier rows of the
    batch (exact account matches are preferred over unknown-account ones):

    - no match: insert;
    - match is pending, incoming is posted: the posted row replaces it;
    - incoming adds a missing account or category: merge into the match;
    - otherwise: drop the incoming row.
    """

    # id -> current row; "stored" ids came from ``existing``.
    rows: dict[str, Transaction] = {}
    stored_ids: set[str] = set()
    index: dict[IdentityKey, list[str]] = {}

    for tx in existing:
        rows[tx.id] = tx
        stored_ids.add(tx.id)
        index.setdefault(identity_key(tx), []).append(tx.id)

    new_ids: list[str] = []
    merged_ids: list[str] = []
    replacements: dict[str, str] = {}  # posted id -> replaced stored pending id
    dropped: list[Transaction] = []

    for cand in incoming:
        key = identity_key(cand)
        bucket = index.setdefault(key, [])
        matches = [
            rid for rid in bucket if _accounts_compatible(rows[rid].account_id, cand.account_id)
        ]
        if not matches:
            rows[cand.id] = cand
            bucket.append(cand.id)
            new_ids.append(cand.id)
            continue

        matches.sort(key=lambda rid: rows[rid].account_id != cand.account_id)
        mid = matches[0]
        match = rows[mid]

        if match.is_pending and not cand.is_pending:
            posted = _supersede(match, cand)
            bucket[bucket.index(mid)] = posted.id
            del rows[mid]
            rows[posted.id] = posted
            if mid in stored_ids:
                replacements[posted.id] = mid
                if mid in merged_ids:
                    merged_ids.remove(mid)
            elif mid in replacements:
                # Pending row from this batch already replaced a stored one.
                replacements[posted.id] = replacements.pop(mid)
            else:
                new_ids[new_ids.index(mid)] = posted.id
            _logger.debug("dedup:pending_replaced pending_id=%s posted_id=%s", mid, posted.id)
        elif _adds_information(match, cand):
            rows[mid] = _merge(match, cand)
            if mid in stored_ids and mid not in merged_ids:
                merged_ids.append(mid)
            dropped.append(cand)
        else:
            dropped.append(cand)

    plan = DedupPlan(
        inserts=tuple(rows[i] for i in new_ids),
        merges=tuple(rows[i] for i in merged_ids),
        replacements=tuple(
            Replacement(
                pending_id=pending_id,
                posted=rows[posted_id].replace(reconciled_from_id=pending_id),
            )
            for posted_id, pending_id in replacements.items()
        ),
        dropped=tuple(dropped),
    )
    _logger.info(
        "dedup:plan incoming=%d inserts=%d merges=%d replacements=%d dropped=%d",
        len(incoming),
        len(plan.inserts),
        len(plan.merges),
        len(plan.replacements),
        len(plan.dropped),
    )
    return plan


__all__ = [
    "DedupPlan",
    "Replacement",
    "compute_fingerprint",
    "fingerprint_of",
    "identity_key",
    "plan_deduplication",
]
