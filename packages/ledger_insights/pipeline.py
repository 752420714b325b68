"""Statement ingestion.

:func:`ingest_transactions` runs in three phases so no database transaction is
open while the oracle is being called:

1. stage (one short transaction): normalize, deduplicate, classify, pair
   transfers, apply category and recurrence rules, write rows;
2. tag (no session): send still-ambiguous expense rows to the oracle;
3. persist (second short transaction): write model tags with provenance.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass

from db.client import session_scope

from . import persistence
from .classifier import classify_transaction
from .dedup import DedupPlan, compute_fingerprint, plan_deduplication
from .logging_setup import get_logger
from .merchant import merchant_key_for
from .models import FixedExpenseTagInput, RawTransaction, Transaction
from .money import quantize_amount
from .oracle import Oracle
from .recurrence import apply_category_rules, is_expense_like, rule_tags_for_history
from .settings import Settings
from .tagger import tag_fixed_expenses
from .transfers import apply_transfer_pairs, find_transfer_pairs

_logger = get_logger("ledger_insights.pipeline")


@dataclass(frozen=True, slots=True)
class IngestResult:
    received: int
    inserted: int
    merged: int
    replaced: int
    dropped: int
    transfer_pairs: int
    rule_tagged: int
    model_tagged: int
    left_for_review: int


def _clean(s: str | None) -> str | None:
    if s is None:
        return None
    s = " ".join(s.split())
    return s or None


def build_transaction(raw: RawTransaction) -> Transaction:
    """Normalize one raw record into an unsaved, classified :class:`Transaction`."""

    currency = (raw.currency or "USD").strip().upper()
    amount = quantize_amount(raw.amount, currency)
    merchant = _clean(raw.merchant)
    description = _clean(raw.description)
    category = _clean(raw.category)
    key = merchant_key_for(merchant, description)
    c = classify_transaction(
        amount=amount,
        category=category,
        merchant_key=key,
        description=description,
        explicit_type=raw.transaction_type,
        needs_clarification=raw.needs_clarification,
    )
    return Transaction(
        id=str(uuid.uuid4()),
        user_id=raw.user_id,
        date=raw.date,
        amount=amount,
        currency=currency,
        merchant=merchant,
        description=description,
        merchant_key=key,
        fingerprint=compute_fingerprint(
            user_id=raw.user_id,
            date=raw.date,
            merchant_key=key,
            amount=amount,
            currency=currency,
            account_id=raw.account_id,
        ),
        category=category,
        account_id=raw.account_id,
        type=c.type,
        spend_class=c.spend_class,
        is_pending=raw.is_pending,
        needs_clarification=raw.needs_clarification,
    )


def _current_rows(existing: Sequence[Transaction], plan: DedupPlan) -> list[Transaction]:
    """Stored rows after the plan is applied, followed by the new rows."""

    replaced = {r.pending_id for r in plan.replacements}
    merged = {t.id: t for t in plan.merges}
    rows = [merged.get(t.id, t) for t in existing if t.id not in replaced]
    rows.extend(plan.inserts)
    rows.extend(r.posted for r in plan.replacements)
    return rows


def _apply_rule_tags(rows: list[Transaction]) -> list[Transaction]:
    rows = apply_category_rules(rows)
    tags = rule_tags_for_history(rows)
    out: list[Transaction] = []
    for tx in rows:
        tag = tags.get(tx.id)
        if tag is not None and tx.fixed_status is None:
            tx = tx.replace(
                fixed_status=tag.label,
                fixed_source="rule",
                fixed_confidence=tag.confidence,
                fixed_explain=tag.explain,
                fixed_model=None,
            )
        out.append(tx)
    return out


def _tag_input(tx: Transaction) -> FixedExpenseTagInput:
    return FixedExpenseTagInput(
        transaction_id=tx.id,
        merchant=tx.display_merchant,
        description=tx.description,
        category=tx.category,
        amount=tx.amount,
        currency=tx.currency,
        date=tx.date,
    )


def ingest_transactions(
    raw: Sequence[RawTransaction],
    *,
    user_id: str,
    database_url: str | None = None,
    oracle: Oracle | None,
    settings: Settings | None = None,
) -> IngestResult:
    """Store a statement's transactions and tag fixed expenses.

    Every raw record must belong to ``user_id``. Ambiguous expense rows (no
    rule verdict, no user decision) across the user's history are sent to the
    oracle; placeholders for unavailable or missing answers are not stored,
    so those rows are retried on the next ingestion.
    """

    s = settings or Settings.from_env()
    foreign = [r for r in raw if r.user_id != user_id]
    if foreign:
        raise PermissionError(
            f"{len(foreign)} transaction(s) do not belong to user {user_id!r}"
        )
    incoming = [build_transaction(r) for r in raw]

    # Phase 1: stage
    with session_scope(database_url=database_url) as session:
        existing = persistence.load_transactions(session, user_id=user_id)
        accounts = persistence.load_accounts(session, user_id=user_id)
        plan = plan_deduplication(incoming, existing)

        rows = _current_rows(existing, plan)
        pairs = find_transfer_pairs(rows, accounts)
        rows = apply_transfer_pairs(rows, pairs)
        rows = _apply_rule_tags(rows)

        before = {t.id: t for t in existing}
        inserts = [t for t in rows if t.id not in before]
        updates = [t for t in rows if t.id in before and t != before[t.id]]
        rule_tagged = sum(
            1
            for t in (*inserts, *updates)
            if t.fixed_source == "rule"
            and (t.id not in before or before[t.id].fixed_source != "rule")
        )
        persistence.write_staged(
            session,
            user_id=user_id,
            inserts=inserts,
            updates=updates,
            deleted_ids=[r.pending_id for r in plan.replacements],
        )

        ambiguous = [
            t for t in rows if t.fixed_status is None and is_expense_like(t) and not t.is_pending
        ]
        memories = persistence.load_preference_notes(session, user_id=user_id)

    _logger.info(
        "pipeline:staged user_id=%s received=%d inserts=%d updates=%d pairs=%d ambiguous=%d",
        user_id,
        len(raw),
        len(inserts),
        len(updates),
        len(pairs),
        len(ambiguous),
    )

    # Phase 2: oracle, outside any DB transaction
    tags = tag_fixed_expenses(
        [_tag_input(t) for t in ambiguous],
        oracle=oracle,
        memories=memories,
        batch_size=s.batch_size,
        concurrency=s.concurrency,
        use_cache=s.oracle_cache,
    )

    # Phase 3: persist model tags
    model_tagged = 0
    if any(not t.synthesized for t in tags):
        with session_scope(database_url=database_url) as session:
            model_tagged = persistence.persist_fixed_expense_tags(
                session,
                user_id=user_id,
                tags=tags,
                model=oracle.model if oracle is not None else None,
            )

    result = IngestResult(
        received=len(raw),
        inserted=len(plan.inserts),
        merged=len(plan.merges),
        replaced=len(plan.replacements),
        dropped=len(plan.dropped),
        transfer_pairs=len(pairs),
        rule_tagged=rule_tagged,
        model_tagged=model_tagged,
        left_for_review=sum(1 for t in tags if t.synthesized),
    )
    _logger.info("pipeline:done user_id=%s result=%s", user_id, result)
    return result


__all__ = ["IngestResult", "build_transaction", "ingest_transactions"]
