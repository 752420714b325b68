# ruff: noqa: E402, I001
from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import pytest

from db.client import session_scope
from ledger_insights import api, persistence
from ledger_insights.errors import InvalidExpectationError, OwnershipError
from ledger_insights.models import Account, RawTransaction
from ledger_insights.prompting import BEGIN_DETECTED, END_DETECTED
from ledger_insights.settings import Settings
from tests.helpers.openai_stub import StubOracle, extract_block

SETTINGS = Settings(oracle_cache=False)


def _raw(day: date, amount: str, merchant: str, **kw) -> RawTransaction:
    return RawTransaction(user_id="u1", date=day, amount=Decimal(amount), merchant=merchant, **kw)


def _labeler(*fixed_words: str):
    """Reply ``fixed`` for merchants containing any of ``fixed_words``."""

    def reply(_instructions: str, user_input: str) -> str:
        out = []
        for item in extract_block(user_input):
            hit = any(w in item["merchant"].upper() for w in fixed_words)
            out.append(
                {
                    "transaction_id": item["transaction_id"],
                    "label": "fixed" if hit else "not_fixed",
                    "confidence": 0.9,
                    "primary_type": "subscription" if hit else "not_fixed",
                    "is_subscription": hit,
                    "explain": "Recurring plan" if hit else "One-off purchase",
                }
            )
        return json.dumps({"results": out})

    return reply


def _rows(db_url: str, user_id: str = "u1"):
    with session_scope(database_url=db_url) as s:
        return persistence.load_transactions(s, user_id=user_id)


def test_ingest_refuses_rows_of_another_user(db_url: str) -> None:
    foreign = RawTransaction(user_id="u2", date=date(2025, 3, 1), amount=Decimal("-5"))
    with pytest.raises(PermissionError):
        api.ingest_statement([foreign], user_id="u1", database_url=db_url, settings=SETTINGS)
    assert _rows(db_url, "u2") == []


def test_oracle_tags_are_stored_with_the_model_name(db_url: str) -> None:
    oracle = StubOracle(_labeler("NETFLIX"), model="gpt-test")
    result = api.ingest_statement(
        [
            _raw(date(2025, 3, 7), "-15.49", "NETFLIX.COM"),
            _raw(date(2025, 3, 8), "-23.10", "Corner Deli"),
        ],
        user_id="u1",
        database_url=db_url,
        oracle=oracle,
        settings=SETTINGS,
    )

    assert (result.inserted, result.model_tagged, result.left_for_review) == (2, 2, 0)
    by_merchant = {t.merchant: t for t in _rows(db_url)}
    netflix = by_merchant["NETFLIX.COM"]
    assert (netflix.fixed_status, netflix.fixed_source, netflix.fixed_model) == (
        "fixed",
        "model",
        "gpt-test",
    )
    assert netflix.is_subscription is True
    assert by_merchant["Corner Deli"].fixed_status == "not_fixed"
    assert by_merchant["Corner Deli"].is_subscription is False


def test_unavailable_oracle_leaves_rows_for_a_later_run(db_url: str) -> None:
    raws = [_raw(date(2025, 3, 7), "-15.49", "NETFLIX.COM")]
    first = api.ingest_statement(raws, user_id="u1", database_url=db_url, settings=SETTINGS)
    assert (first.model_tagged, first.left_for_review) == (0, 1)
    assert _rows(db_url)[0].fixed_status is None

    oracle = StubOracle(_labeler("NETFLIX"))
    second = api.ingest_statement(
        raws, user_id="u1", database_url=db_url, oracle=oracle, settings=SETTINGS
    )
    assert (second.inserted, second.dropped, second.model_tagged) == (0, 1, 1)
    assert _rows(db_url)[0].fixed_status == "fixed"


def test_posted_row_replaces_pending_and_keeps_the_decision(db_url: str) -> None:
    pending = _raw(date(2025, 3, 3), "-45.00", "IRON GYM", is_pending=True)
    api.ingest_statement([pending], user_id="u1", database_url=db_url, settings=SETTINGS)
    (stored,) = _rows(db_url)
    api.decide_fixed_expense(
        user_id="u1", transaction_id=stored.id, accept=True, database_url=db_url
    )

    posted = _raw(date(2025, 3, 3), "-45.00", "IRON GYM", category="Fitness")
    result = api.ingest_statement([posted], user_id="u1", database_url=db_url, settings=SETTINGS)

    assert result.replaced == 1
    (row,) = _rows(db_url)
    assert row.id != stored.id
    assert row.is_pending is False
    assert row.reconciled_from_id == stored.id
    assert row.category == "Fitness"
    assert (row.fixed_status, row.fixed_source) == ("fixed", "user")


def test_rejection_note_reaches_the_next_tagging_prompt(db_url: str) -> None:
    oracle = StubOracle(_labeler("NETFLIX"))
    api.ingest_statement(
        [_raw(date(2025, 3, 7), "-15.49", "NETFLIX.COM")],
        user_id="u1",
        database_url=db_url,
        oracle=oracle,
        settings=SETTINGS,
    )
    (march,) = _rows(db_url)
    api.decide_fixed_expense(
        user_id="u1", transaction_id=march.id, accept=False, database_url=db_url
    )

    api.ingest_statement(
        [_raw(date(2025, 4, 7), "-15.49", "NETFLIX.COM")],
        user_id="u1",
        database_url=db_url,
        oracle=oracle,
        settings=SETTINGS,
    )

    assert len(oracle.calls) == 2
    assert 'Rejected fixed expense: "NETFLIX.COM" (normalized: netflix com)' in oracle.calls[1][1]
    statuses = {t.date: (t.fixed_status, t.fixed_source) for t in _rows(db_url)}
    assert statuses[date(2025, 3, 7)] == ("not_fixed", "user")
    assert statuses[date(2025, 4, 7)] == ("fixed", "model")


def test_decision_on_someone_elses_transaction(db_url: str) -> None:
    api.ingest_statement(
        [_raw(date(2025, 3, 1), "-9", "Cafe")],
        user_id="u1",
        database_url=db_url,
        settings=SETTINGS,
    )
    (row,) = _rows(db_url)
    with pytest.raises(OwnershipError):
        api.decide_fixed_expense(
            user_id="u2", transaction_id=row.id, accept=True, database_url=db_url
        )
    assert _rows(db_url)[0].fixed_source is None


def test_invalid_expected_payment_is_not_stored(db_url: str) -> None:
    with pytest.raises(InvalidExpectationError):
        api.add_expected_payment(
            {"name": "Rent", "expected_day_of_month": 0}, user_id="u1", database_url=db_url
        )
    assert api.list_expected_payments(user_id="u1", database_url=db_url, active_only=False) == []


def _match_by_name(confidence: float):
    def reply(_instructions: str, user_input: str) -> str:
        detected = extract_block(user_input, BEGIN_DETECTED, END_DETECTED)
        rent = next(d for d in detected if "OAK" in d["merchant"])
        return json.dumps(
            [
                {
                    "user_input_id": "ignored",
                    "matched_transaction_id": rent["transaction_id"],
                    "confidence": confidence,
                    "explain": "Same landlord and amount",
                }
            ]
        )

    return reply


@pytest.mark.parametrize("confidence,linked", [(0.92, True), (0.55, False)])
def test_reconcile_links_confident_matches(db_url: str, confidence: float, linked: bool) -> None:
    api.ingest_statement(
        [_raw(date(2025, 3, 1), "-1800", "OAK ST PROPERTY MGMT", category="Rent")],
        user_id="u1",
        database_url=db_url,
        settings=SETTINGS,
    )
    (rent_tx,) = _rows(db_url)
    assert (rent_tx.fixed_status, rent_tx.fixed_source) == ("fixed", "rule")

    saved = api.add_expected_payment(
        {"name": "Rent", "expected_amount": "1800", "expected_day_of_month": 1},
        user_id="u1",
        database_url=db_url,
    )
    (match,) = api.reconcile_expected_payments(
        user_id="u1",
        database_url=db_url,
        oracle=StubOracle(_match_by_name(confidence)),
        settings=SETTINGS,
        today=date(2025, 3, 31),
    )
    assert match.user_input_id == saved.id
    assert match.matched_transaction_id == rent_tx.id

    active = api.list_expected_payments(user_id="u1", database_url=db_url)
    assert (active == []) is linked
    assert (_rows(db_url)[0].user_input_id == saved.id) is linked


def test_reconcile_without_detected_expenses(db_url: str) -> None:
    api.add_expected_payment({"name": "Gym"}, user_id="u1", database_url=db_url)
    oracle = StubOracle("[]")
    (match,) = api.reconcile_expected_payments(
        user_id="u1", database_url=db_url, oracle=oracle, settings=SETTINGS
    )
    assert (match.matched_transaction_id, match.confidence) == (None, 0.0)
    assert oracle.calls == []


def test_recurring_candidates_and_fixed_view(db_url: str) -> None:
    raws = [_raw(date(2025, m, 3), "-45.00", "IRON GYM") for m in (1, 2)]
    api.ingest_statement(raws, user_id="u1", database_url=db_url, settings=SETTINGS)

    (cand,) = api.get_recurring_candidates(
        user_id="u1", database_url=db_url, today=date(2025, 2, 20)
    )
    assert cand.merchant == "IRON GYM"
    assert cand.months_seen == 2
    assert api.get_fixed_expenses(
        user_id="u1", database_url=db_url, today=date(2025, 2, 20)
    ).expenses == ()

    api.decide_fixed_expense(
        user_id="u1", transaction_id=cand.representative_id, accept=True, database_url=db_url
    )
    summary = api.get_fixed_expenses(user_id="u1", database_url=db_url, today=date(2025, 2, 20))
    (gym,) = summary.expenses
    assert (gym.monthly_amount, gym.mtd_amount, gym.source) == (
        Decimal("45.00"),
        Decimal("45.00"),
        "user",
    )



def test_new_subscriptions_surface_before_they_recur(db_url: str) -> None:
    raws = [
        _raw(date(2025, 1, 2), "-9.99", "Spotify USA"),
        _raw(date(2025, 3, 2), "-9.99", "Spotify USA"),
        _raw(date(2025, 3, 4), "-2.99", "APPLE.COM/BILL"),
        _raw(date(2025, 3, 5), "-60.00", "Shell Oil"),
    ]
    api.ingest_statement(raws, user_id="u1", database_url=db_url, settings=SETTINGS)

    found = api.get_subscription_candidates(
        user_id="u1", database_url=db_url, today=date(2025, 3, 20)
    )
    assert [(c.merchant, c.service, c.occurrence_count) for c in found] == [
        ("Spotify USA", "Spotify", 1),
        ("APPLE.COM/BILL", "Apple Services", 1),
    ]
    assert all(c.is_maybe and c.is_subscription for c in found)
    assert api.get_subscription_candidates(
        user_id="u2", database_url=db_url, today=date(2025, 3, 20)
    ) == []


def test_period_totals_exclude_transfers(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        persistence.upsert_accounts(
            s,
            user_id="u1",
            accounts=[
                Account(id="u1:checking", user_id="u1", name="Checking"),
                Account(id="u1:savings", user_id="u1", name="Savings"),
            ],
        )
    api.ingest_statement(
        [
            _raw(date(2025, 3, 1), "2500", "ACME PAYROLL", account_id="u1:checking"),
            _raw(date(2025, 3, 2), "-400", "ONLINE TRANSFER TO SAVINGS", account_id="u1:checking"),
            _raw(date(2025, 3, 2), "400", "ONLINE TRANSFER FROM CHECKING", account_id="u1:savings"),
            _raw(date(2025, 3, 4), "-60.25", "SAFEWAY #1234", account_id="u1:checking"),
        ],
        user_id="u1",
        database_url=db_url,
        settings=SETTINGS,
    )

    totals = api.compute_period_totals(
        user_id="u1", start=date(2025, 3, 1), end=date(2025, 3, 31), database_url=db_url
    )
    assert totals.income == Decimal("2500")
    assert totals.expense == Decimal("60.25")
    assert totals.essential == Decimal("60.25")
    assert totals.transfer_pairs == 1

    with pytest.raises(ValueError):
        api.compute_period_totals(
            user_id="u1", start=date(2025, 3, 31), end=date(2025, 3, 1), database_url=db_url
        )


def test_delete_user_data(db_url: str) -> None:
    api.ingest_statement(
        [_raw(date(2025, 3, 1), "-9", "Cafe")],
        user_id="u1",
        database_url=db_url,
        settings=SETTINGS,
    )
    counts = api.delete_user_data(user_id="u1", database_url=db_url)
    assert counts["li_transactions"] == 1
    assert _rows(db_url) == []


def test_resolving_a_clarification_brings_the_row_into_totals(db_url: str) -> None:
    api.ingest_statement(
        [
            _raw(date(2025, 4, 2), "-120.00", "CHECK 1042", needs_clarification=True),
            _raw(date(2025, 4, 3), "-30.00", "Safeway", category="Groceries"),
        ],
        user_id="u1",
        database_url=db_url,
        settings=SETTINGS,
    )
    window = {"start": date(2025, 4, 1), "end": date(2025, 4, 30), "database_url": db_url}

    before = api.compute_period_totals(user_id="u1", **window)
    assert (before.expense, before.excluded_count) == (Decimal("30.00"), 1)

    (check,) = [t for t in _rows(db_url) if t.needs_clarification]
    with pytest.raises(OwnershipError):
        api.resolve_clarification(
            user_id="u2", transaction_id=check.id, tx_type="expense", database_url=db_url
        )
    with pytest.raises(ValueError):
        api.resolve_clarification(
            user_id="u1", transaction_id=check.id, tx_type="refund", database_url=db_url
        )

    resolved = api.resolve_clarification(
        user_id="u1",
        transaction_id=check.id,
        tx_type="expense",
        spend_class="essential",
        database_url=db_url,
    )
    assert (resolved.needs_clarification, resolved.spend_class) == (False, "essential")

    after = api.compute_period_totals(user_id="u1", **window)
    assert after.expense == Decimal("150.00")
    assert after.essential == Decimal("150.00")
    assert after.excluded_count == 0
