# ruff: noqa: E402, I001
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledger_insights.classifier import (
    classify,
    classify_transaction,
    is_card_payment_text,
    is_transfer_text,
)
from ledger_insights.merchant import merchant_key_for
from tests.helpers.factories import make_tx


def test_card_payment_vocabulary_is_a_transfer_without_spend_class() -> None:
    c = classify_transaction(
        amount=Decimal("200"), merchant_key="visa card payment", category="Groceries"
    )
    assert c.type == "transfer"
    assert c.spend_class is None
    assert c.is_excluded is True


def test_explicit_transfer_type_wins_over_amount_sign() -> None:
    c = classify_transaction(amount=Decimal("-50"), explicit_type="Transfer")
    assert (c.type, c.confidence) == ("transfer", 1.0)


@pytest.mark.parametrize(
    ("amount", "expected"),
    [(Decimal("-12.50"), "expense"), (Decimal("1000"), "income"), (Decimal("0"), "other")],
)
def test_sign_decides_type_when_nothing_else_does(amount: Decimal, expected: str) -> None:
    assert classify_transaction(amount=amount, merchant_key="acme").type == expected


def test_payroll_vocabulary_gives_confident_income() -> None:
    c = classify_transaction(amount=Decimal("2500"), description="ACME CORP PAYROLL")
    assert c.type == "income"
    assert c.confidence == pytest.approx(0.95)


def test_explicit_other_is_counted_as_expense() -> None:
    c = classify_transaction(amount=Decimal("-3"), explicit_type="other", category="Fees")
    assert c.type == "expense"
    assert c.spend_class == "essential"


def test_category_decides_spend_class() -> None:
    essential = classify_transaction(amount=Decimal("-80"), category="Groceries")
    discretionary = classify_transaction(amount=Decimal("-40"), category="Restaurants")
    assert essential.spend_class == "essential"
    assert discretionary.spend_class == "discretionary"


def test_merchant_hint_is_a_weaker_signal() -> None:
    c = classify_transaction(amount=Decimal("-15.99"), merchant_key="netflix com")
    assert c.spend_class == "discretionary"
    assert c.confidence <= 0.7


def test_no_signal_leaves_spend_class_unset() -> None:
    c = classify_transaction(amount=Decimal("-9"), merchant_key="zzz widgets")
    assert c.type == "expense"
    assert c.spend_class is None


def test_merchant_hints_match_word_starts_only() -> None:
    # "rent" must not fire inside "current"
    c = classify_transaction(amount=Decimal("-9"), merchant_key="current books")
    assert c.spend_class is None


def test_income_never_gets_spend_class() -> None:
    c = classify_transaction(amount=Decimal("30"), category="Groceries")
    assert c.type == "income"
    assert c.spend_class is None


def test_needs_clarification_excludes_and_halves_confidence() -> None:
    c = classify_transaction(amount=Decimal("-10"), needs_clarification=True)
    assert c.type == "expense"
    assert c.is_excluded is True
    assert c.confidence == pytest.approx(0.4)


def test_transfer_text_helpers() -> None:
    assert is_transfer_text("online transfer to savings")
    assert is_transfer_text("anything", category="Transfers")
    assert not is_transfer_text("payment to dentist")
    assert not is_transfer_text(None)


def test_classify_stored_row_matches_ingest_rules() -> None:
    tx = make_tx(day=date(2025, 3, 1), amount="-42.00", merchant="Starbucks #12")
    c = classify(tx)
    assert (c.type, c.spend_class) == ("expense", "discretionary")


def test_card_named_in_description_keeps_purchase_an_expense() -> None:
    c = classify_transaction(
        amount=Decimal("-15.99"),
        merchant_key=merchant_key_for("Netflix", None),
        description="Recurring payment Visa debit card 1234",
    )
    assert c.type == "expense"
    assert c.is_excluded is False


def test_card_networks_match_whole_words_only() -> None:
    key = merchant_key_for("DISCOVERY+ PAYMENT", None)
    assert classify_transaction(amount=Decimal("-9.99"), merchant_key=key).type == "expense"
    assert is_card_payment_text("discover card payment")
    assert not is_card_payment_text("card payment")
    assert not is_card_payment_text("debit card purchase")
