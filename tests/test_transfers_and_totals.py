# ruff: noqa: E402, I001
from __future__ import annotations

from datetime import date
from decimal import Decimal

from ledger_insights.models import Account
from ledger_insights.totals import compute_totals
from ledger_insights.transfers import apply_transfer_pairs, find_transfer_pairs, is_transfer_pair
from tests.helpers.factories import make_tx

ACCOUNTS = {
    "chk": Account(id="chk", user_id="u1", name="Checking", kind="depository"),
    "visa": Account(id="visa", user_id="u1", name="Visa", kind="credit"),
    "sav": Account(id="sav", user_id="u1", name="Savings", kind="depository"),
}


def _card_payment(day_out: date, day_in: date):
    out = make_tx(
        day=day_out, amount="-200.00", merchant="Online Payment", account_id="chk", type="expense"
    )
    inflow = make_tx(
        day=day_in, amount="200.00", merchant="Visa Card Payment", account_id="visa", type="income"
    )
    return out, inflow


def test_card_payment_legs_cancel_out_of_totals() -> None:
    out, inflow = _card_payment(date(2025, 5, 10), date(2025, 5, 11))

    totals = compute_totals([out, inflow], ACCOUNTS)

    assert totals.income == Decimal("0")
    assert totals.expense == Decimal("0")
    assert totals.transfer_pairs == 1
    assert totals.excluded_count == 2


def test_other_rows_still_count_next_to_a_transfer() -> None:
    out, inflow = _card_payment(date(2025, 5, 10), date(2025, 5, 11))
    groceries = make_tx(
        day=date(2025, 5, 12), amount="-54.20", merchant="Safeway", category="Groceries",
        account_id="visa", type="expense",
    )
    pay = make_tx(
        day=date(2025, 5, 15), amount="3000", description="ACME PAYROLL", merchant=None,
        account_id="chk", type="income",
    )

    totals = compute_totals([out, inflow, groceries, pay], ACCOUNTS)

    assert totals.income == Decimal("3000")
    assert totals.expense == Decimal("54.20")
    assert totals.essential == Decimal("54.20")
    assert totals.net == Decimal("2945.80")


def test_legs_more_than_three_days_apart_do_not_pair() -> None:
    out, inflow = _card_payment(date(2025, 5, 1), date(2025, 5, 5))
    assert not is_transfer_pair(out, inflow, ACCOUNTS)


def test_same_account_never_pairs() -> None:
    out = make_tx(day=date(2025, 5, 1), amount="-75", merchant="Transfer to savings",
                  account_id="chk")
    back = make_tx(day=date(2025, 5, 1), amount="75", merchant="Refund", account_id="chk")
    assert find_transfer_pairs([out, back], ACCOUNTS) == []


def test_unknown_account_never_pairs() -> None:
    out = make_tx(day=date(2025, 5, 1), amount="-75", merchant="Transfer to savings",
                  account_id="chk")
    inflow = make_tx(day=date(2025, 5, 1), amount="75", merchant="Transfer from checking",
                     account_id="elsewhere")
    assert find_transfer_pairs([out, inflow], ACCOUNTS) == []


def test_account_name_mention_is_enough_evidence() -> None:
    out = make_tx(day=date(2025, 6, 2), amount="-500", merchant="Sweep Savings",
                  account_id="chk")
    inflow = make_tx(day=date(2025, 6, 3), amount="500", merchant="Deposit", account_id="sav")
    assert is_transfer_pair(out, inflow, ACCOUNTS)


def test_each_leg_joins_one_pair_and_closest_date_wins() -> None:
    out = make_tx(day=date(2025, 7, 10), amount="-100", merchant="Online Transfer to Savings",
                  account_id="chk", id="out")
    near = make_tx(day=date(2025, 7, 10), amount="100", merchant="Deposit", account_id="sav",
                   id="near")
    far = make_tx(day=date(2025, 7, 12), amount="100", merchant="Deposit", account_id="sav",
                  id="far")

    pairs = find_transfer_pairs([out, far, near], ACCOUNTS)

    assert [(p.outflow.id, p.inflow.id) for p in pairs] == [("out", "near")]
    relabeled = {t.id: t for t in apply_transfer_pairs([out, far, near], pairs)}
    assert relabeled["out"].type == "transfer"
    assert relabeled["near"].type == "transfer"
    assert relabeled["far"].type != "transfer"


def test_plain_payment_words_pair_across_accounts() -> None:
    out = make_tx(day=date(2025, 8, 10), amount="-500", merchant="Chase Card Autopay",
                  account_id="chk", type="expense")
    inflow = make_tx(day=date(2025, 8, 11), amount="500", merchant="Payment Thank You",
                     account_id="visa", type="income")
    assert is_transfer_pair(out, inflow, ACCOUNTS)


def test_card_purchase_described_with_card_still_counts_in_totals() -> None:
    netflix = make_tx(day=date(2025, 8, 3), amount="-15.99", merchant="Netflix",
                      description="Recurring payment Visa debit card 1234", account_id="visa",
                      type="expense")

    totals = compute_totals([netflix], ACCOUNTS)

    assert totals.expense == Decimal("15.99")
    assert totals.excluded_count == 0
