# ruff: noqa: E402, I001
from __future__ import annotations

from datetime import date
from decimal import Decimal

from ledger_insights.dedup import compute_fingerprint, fingerprint_of, plan_deduplication
from ledger_insights.merchant import normalize_merchant
from ledger_insights.models import RawTransaction
from ledger_insights.pipeline import build_transaction


def _raw(**kw) -> RawTransaction:
    base = {
        "user_id": "u1",
        "date": date(2025, 4, 3),
        "amount": Decimal("-12.50"),
        "merchant": "SQ *BLUE BOTTLE #44",
    }
    base.update(kw)
    return RawTransaction(**base)


def test_fingerprint_is_stable_under_whitespace_case_and_scale() -> None:
    a = compute_fingerprint(
        user_id="u1",
        date=date(2025, 4, 3),
        merchant_key=normalize_merchant("  Blue   Bottle "),
        amount=Decimal("12.5"),
        currency="usd",
        account_id=None,
    )
    b = compute_fingerprint(
        user_id="u1",
        date=date(2025, 4, 3),
        merchant_key=normalize_merchant("BLUE BOTTLE"),
        amount=Decimal("12.50"),
        currency="USD",
        account_id=None,
    )
    assert a == b
    assert len(a) == 64


def test_fingerprint_changes_with_account_and_user() -> None:
    tx = build_transaction(_raw())
    other_acct = build_transaction(_raw(account_id="chk"))
    other_user = build_transaction(_raw(user_id="u2"))
    assert len({tx.fingerprint, other_acct.fingerprint, other_user.fingerprint}) == 3
    assert fingerprint_of(tx) == tx.fingerprint


def test_reingesting_the_same_statement_is_a_no_op() -> None:
    raws = [
        _raw(),
        _raw(merchant="Netflix", amount=Decimal("-15.99")),
        _raw(merchant="Payroll", amount=Decimal("2500")),
    ]
    first = plan_deduplication([build_transaction(r) for r in raws], [])
    assert len(first.inserts) == 3

    second = plan_deduplication([build_transaction(r) for r in raws], first.inserts)

    assert second.inserts == ()
    assert second.merges == ()
    assert second.replacements == ()
    assert len(second.dropped) == 3


def test_batch_deduplicates_itself() -> None:
    batch = [build_transaction(_raw()), build_transaction(_raw(merchant="Blue Bottle"))]
    plan = plan_deduplication(batch, [])
    assert len(plan.inserts) == 1
    assert len(plan.dropped) == 1


def test_posted_row_replaces_pending_and_keeps_user_decision() -> None:
    pending = build_transaction(_raw(is_pending=True)).replace(
        fixed_status="fixed", fixed_source="user", fixed_confidence=1.0
    )
    posted = build_transaction(_raw(category="Coffee Shops"))

    plan = plan_deduplication([posted], [pending])

    assert plan.inserts == ()
    assert len(plan.replacements) == 1
    rep = plan.replacements[0]
    assert rep.pending_id == pending.id
    assert rep.posted.id == posted.id
    assert rep.posted.is_pending is False
    assert rep.posted.reconciled_from_id == pending.id
    assert (rep.posted.fixed_status, rep.posted.fixed_source) == ("fixed", "user")
    assert rep.posted.category == "Coffee Shops"


def test_incoming_row_adding_an_account_enriches_the_stored_row() -> None:
    stored = build_transaction(_raw())
    richer = build_transaction(_raw(account_id="chk"))

    plan = plan_deduplication([richer], [stored])

    assert plan.inserts == ()
    assert [m.id for m in plan.merges] == [stored.id]
    merged = plan.merges[0]
    assert merged.account_id == "chk"
    assert merged.fingerprint == fingerprint_of(merged)
    assert merged.fingerprint != stored.fingerprint
    assert plan.dropped == (richer,)


def test_same_event_in_two_known_accounts_is_two_rows() -> None:
    a = build_transaction(_raw(account_id="chk"))
    b = build_transaction(_raw(account_id="visa"))
    plan = plan_deduplication([b], [a])
    assert [t.id for t in plan.inserts] == [b.id]


def test_amounts_equal_at_minor_unit_are_the_same_event() -> None:
    a = build_transaction(_raw(amount=Decimal("-12.5")))
    b = build_transaction(_raw(amount=Decimal("-12.500")))
    plan = plan_deduplication([b], [a])
    assert plan.inserts == ()
