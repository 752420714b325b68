# ruff: noqa: E402, I001
from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import pytest

from ledger_insights.errors import InvalidExpectationError
from ledger_insights.matcher import (
    MISSING_EXPLAIN,
    NO_DETECTED_EXPLAIN,
    align_matches,
    match_expectations,
)
from ledger_insights.models import UserFixedExpenseInput
from ledger_insights.prompting import BEGIN_DETECTED, END_DETECTED
from tests.helpers.factories import make_tx
from tests.helpers.openai_stub import StubOracle, extract_block


def _inputs(*names: str) -> list[UserFixedExpenseInput]:
    return [
        UserFixedExpenseInput(id=f"in{i}", name=n, expected_amount=Decimal("100"))
        for i, n in enumerate(names)
    ]


def _detected():
    return [
        make_tx(day=date(2025, 3, 1), amount="-1800", merchant="Oak Street Rentals", id="rent"),
        make_tx(day=date(2025, 3, 12), amount="-64.99", merchant="Comcast", id="net"),
    ]


def test_nothing_detected_means_no_match_and_no_call() -> None:
    oracle = StubOracle("[]")
    out = match_expectations(_inputs("Rent", "Internet", "Gym"), [], oracle=oracle)

    assert [m.user_input_id for m in out] == ["in0", "in1", "in2"]
    for m in out:
        assert m.matched_transaction_id is None
        assert m.confidence == 0.0
        assert m.explain == NO_DETECTED_EXPLAIN
    assert oracle.calls == []


def test_matches_are_aligned_by_position() -> None:
    reply = json.dumps(
        [
            {"user_input_id": "x", "matched_transaction_id": "rent", "confidence": 0.93,
             "explain": "Same landlord"},
            {"user_input_id": "y", "matched_transaction_id": None, "confidence": 0.2,
             "explain": "No internet bill"},
        ]
    )
    a, b = match_expectations(
        _inputs("Rent", "Gym"), _detected(), oracle=StubOracle(reply), use_cache=False
    )
    assert (a.user_input_id, a.matched_transaction_id, a.confidence) == ("in0", "rent", 0.93)
    assert (b.user_input_id, b.matched_transaction_id) == ("in1", None)


def test_unknown_transaction_id_is_discarded() -> None:
    reply = json.dumps(
        [{"matched_transaction_id": "made-up", "confidence": 0.99, "explain": "Looks right"}]
    )
    (m,) = match_expectations(
        _inputs("Rent"), _detected(), oracle=StubOracle(reply), use_cache=False
    )
    assert m.matched_transaction_id is None
    assert m.confidence == 0.0


def test_short_reply_and_failures_yield_placeholders() -> None:
    reply = json.dumps([{"matched_transaction_id": "net", "confidence": 0.9}])
    out = match_expectations(
        _inputs("Internet", "Rent"), _detected(), oracle=StubOracle(reply), use_cache=False
    )
    assert out[0].matched_transaction_id == "net"
    assert (out[1].matched_transaction_id, out[1].confidence, out[1].explain) == (
        None,
        0.5,
        MISSING_EXPLAIN,
    )
    assert out[1].synthesized

    failed = match_expectations(
        _inputs("Rent"), _detected(), oracle=StubOracle(TimeoutError()), use_cache=False
    )
    assert failed[0].synthesized and failed[0].matched_transaction_id is None


def test_prompt_carries_the_detected_window() -> None:
    oracle = StubOracle("[]")
    match_expectations(_inputs("Rent"), _detected(), oracle=oracle, use_cache=False)

    detected = extract_block(oracle.calls[0][1], BEGIN_DETECTED, END_DETECTED)
    assert [d["transaction_id"] for d in detected] == ["net", "rent"]


def test_unsaved_expectations_are_rejected() -> None:
    with pytest.raises(InvalidExpectationError):
        match_expectations(
            [UserFixedExpenseInput(name="Rent")], _detected(), oracle=StubOracle("[]")
        )


def test_alignment_rejects_inputs_without_an_id() -> None:
    with pytest.raises(InvalidExpectationError, match="'Rent' has no id"):
        align_matches([], [UserFixedExpenseInput(name="Rent")], set())
