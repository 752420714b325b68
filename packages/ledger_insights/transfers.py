"""Cross-account transfer pairing.

A payment from checking to a credit card shows up twice: once as an outflow
on checking and once as an inflow on the card. Counting both would inflate
income and expense totals, so both legs are relabeled ``transfer`` and
excluded.

Pairs are derived, never stored: callers re-run :func:`find_transfer_pairs`
over whatever set of transactions they are about to total.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .classifier import has_payment_word, is_transfer_text
from .logging_setup import get_logger
from .models import Account, Transaction, TransferPair
from .money import amounts_offset, quantize_amount

MAX_DAY_GAP: int = 3

_logger = get_logger("ledger_insights.transfers")


def _mentions(text: str, account: Account) -> bool:
    name = account.name.strip().casefold()
    return bool(name) and name in text


def is_transfer_pair(a: Transaction, b: Transaction, accounts: Mapping[str, Account]) -> bool:
    """Return True when ``a`` and ``b`` are the two legs of one transfer.

    Both rows belong to the same user, sit in different known accounts,
    offset each other exactly at the currency's minor unit, are at most
    three days apart, and at least one side reads like a transfer: transfer
    or card-payment vocabulary, any payment word (the exact
    cross-account offset already rules out ordinary purchases), or the other
    account's name.
    """

    if a.id == b.id or a.user_id != b.user_id or a.currency != b.currency:
        return False
    if a.account_id is None or b.account_id is None or a.account_id == b.account_id:
        return False
    acct_a = accounts.get(a.account_id)
    acct_b = accounts.get(b.account_id)
    if acct_a is None or acct_b is None:
        return False
    if not amounts_offset(a.amount, b.amount, a.currency):
        return False
    if abs((a.date - b.date).days) > MAX_DAY_GAP:
        return False

    text_a = f"{a.merchant or ''} {a.description or ''} {a.merchant_key}".casefold()
    text_b = f"{b.merchant or ''} {b.description or ''} {b.merchant_key}".casefold()
    return (
        is_transfer_text(text_a, a.category)
        or is_transfer_text(text_b, b.category)
        or has_payment_word(text_a)
        or has_payment_word(text_b)
        or _mentions(text_a, acct_b)
        or _mentions(text_b, acct_a)
    )


def find_transfer_pairs(
    transactions: Iterable[Transaction], accounts: Mapping[str, Account]
) -> list[TransferPair]:
    """Match outflows to inflows one-to-one.

    Candidates are grouped by (user, currency, magnitude); within a group the
    closest dates pair first, ties broken by id, and each transaction joins
    at most one pair.
    """

    buckets: dict[tuple[str, str, object], list[Transaction]] = {}
    for tx in transactions:
        if tx.account_id is None or tx.amount == 0:
            continue
        key = (tx.user_id, tx.currency, quantize_amount(abs(tx.amount), tx.currency))
        buckets.setdefault(key, []).append(tx)

    pairs: list[TransferPair] = []
    for group in buckets.values():
        outs = [t for t in group if t.amount < 0]
        ins = [t for t in group if t.amount > 0]
        if not outs or not ins:
            continue
        candidates: list[tuple[int, str, str, Transaction, Transaction]] = []
        for o in outs:
            for i in ins:
                if is_transfer_pair(o, i, accounts):
                    candidates.append((abs((o.date - i.date).days), o.id, i.id, o, i))
        candidates.sort(key=lambda c: (c[0], c[1], c[2]))
        used: set[str] = set()
        for _gap, oid, iid, o, i in candidates:
            if oid in used or iid in used:
                continue
            used.update((oid, iid))
            pairs.append(TransferPair(outflow=o, inflow=i))

    if pairs:
        _logger.debug("transfers:paired count=%d", len(pairs))
    return pairs


def apply_transfer_pairs(
    transactions: Sequence[Transaction], pairs: Iterable[TransferPair]
) -> list[Transaction]:
    """Return ``transactions`` with both legs of every pair relabeled ``transfer``."""

    ids = {leg.id for pair in pairs for leg in pair}
    return [
        tx.replace(type="transfer", spend_class=None) if tx.id in ids else tx
        for tx in transactions
    ]


__all__ = ["MAX_DAY_GAP", "apply_transfer_pairs", "find_transfer_pairs", "is_transfer_pair"]
