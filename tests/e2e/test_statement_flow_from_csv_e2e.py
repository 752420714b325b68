# ruff: noqa: E402, I001
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

import ledger_insights.oracle as oracle_mod
from ledger_insights.cli import (
    cmd_clarify,
    cmd_decide,
    cmd_expect,
    cmd_fixed_expenses,
    cmd_forget,
    cmd_ingest,
    cmd_init_db,
    cmd_reconcile,
    cmd_totals,
)

from tests.helpers.openai_stub import extract_block, openai_stub_factory

STATEMENT = """\
Date,Merchant,Amount,Category,Account,Pending
2025-03-01,ACME PAYROLL,3000.00,,Checking,
2025-03-01,OAK ST PROPERTY MGMT,-1800.00,Rent,Checking,
2025-03-05,WHOLE FOODS #123 SEATTLE WA,-82.15,,Card,
2025-03-07,NETFLIX.COM,-15.49,,Card,
2025-03-10,CHASE CARD AUTOPAY,-500.00,,Checking,
2025-03-11,PAYMENT THANK YOU,500.00,,Card,
"""


def _decide(item: dict[str, Any]) -> tuple[str, float, str]:
    if "NETFLIX" in (item.get("merchant") or "").upper():
        return "fixed", 0.9, "Streaming subscription"
    return "not_fixed", 0.85, "Everyday spending"


def _out(capsys: pytest.CaptureFixture[str]) -> str:
    return capsys.readouterr().out


def test_e2e_statement_flow_from_csv(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    db_url: str,
    capsys: pytest.CaptureFixture[str],
) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(oracle_mod, "OpenAI", openai_stub_factory(_decide, calls))

    csv_path = tmp_path / "march.csv"
    csv_path.write_text(STATEMENT, encoding="utf-8")

    # First ingestion: everything new, card payment legs paired
    assert cmd_ingest(str(csv_path), user_id="u1", database_url=db_url) == 0
    first = _out(capsys)
    for part in ("inserted=6", "transfer_pairs=1", "rule_tagged=1", "model_tagged=2"):
        assert part in first
    assert len(calls) == 1
    sent = {it["merchant"] for it in extract_block(calls[0]["input"])}
    assert sent == {"WHOLE FOODS #123 SEATTLE WA", "NETFLIX.COM"}

    # Re-uploading the same statement changes nothing
    assert cmd_ingest(str(csv_path), user_id="u1", database_url=db_url) == 0
    second = _out(capsys)
    assert "inserted=0" in second
    assert "dropped=6" in second
    assert len(calls) == 1

    # Fixed-expense view
    assert (
        cmd_fixed_expenses(user_id="u1", as_json=True, today="2025-03-31", database_url=db_url)
        == 0
    )
    doc = json.loads(_out(capsys))
    assert [e["merchant"] for e in doc["expenses"]] == ["OAK ST PROPERTY MGMT", "NETFLIX.COM"]
    assert [e["source"] for e in doc["expenses"]] == ["rule", "model"]
    assert doc["monthly_total"] == "1815.49"
    assert [e["is_subscription"] for e in doc["expenses"]] == [False, True]
    assert [c["merchant"] for c in doc["subscription_candidates"]] == ["NETFLIX.COM"]
    assert doc["subscription_candidates"][0]["service"] == "Netflix"

    # Totals skip both card-payment legs
    assert cmd_totals(user_id="u1", start="2025-03-01", end="2025-03-31", database_url=db_url) == 0
    totals = dict(line.split("\t") for line in _out(capsys).splitlines())
    assert totals["income"] == "3,000.00"
    assert totals["expense"] == "1,897.64"
    assert totals["excluded"] == "2"

    # Rejecting Netflix removes it from the view
    netflix_id = doc["expenses"][1]["transaction_id"]
    rc = cmd_decide(user_id="u1", transaction_id=netflix_id, accept=False, database_url=db_url)
    assert rc == 0
    assert "Rejected; updated 1" in _out(capsys)
    assert cmd_fixed_expenses(user_id="u1", today="2025-03-31", database_url=db_url) == 0
    table = _out(capsys)
    assert "OAK ST PROPERTY MGMT" in table
    assert "NETFLIX" not in table

    # Another user cannot decide on these rows
    rc = cmd_decide(user_id="u2", transaction_id=netflix_id, accept=True, database_url=db_url)
    assert rc == 1
    assert "does not belong" in capsys.readouterr().err

    # Expected payments are validated
    assert cmd_expect(user_id="u1", name="Rent", amount="1800", day=1, database_url=db_url) == 0
    assert "Saved expected payment" in _out(capsys)
    assert cmd_expect(user_id="u1", name="Rent", day=40, database_url=db_url) == 1
    assert "invalid expected payment" in capsys.readouterr().err

    # Nothing detected inside the lookback window, so no match and no oracle call
    assert cmd_reconcile(user_id="u1", database_url=db_url) == 0
    assert "\t-\t0.00\t" in _out(capsys)
    assert len(calls) == 1

    # Forget the user
    assert cmd_forget(user_id="u1", database_url=db_url) == 0
    assert "li_transactions=6" in _out(capsys)


def test_e2e_clarify_sets_type_and_checks_owner(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, db_url: str, capsys
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(oracle_mod, "OpenAI", openai_stub_factory(_decide, []))
    csv_path = tmp_path / "march.csv"
    csv_path.write_text(STATEMENT, encoding="utf-8")
    assert cmd_ingest(str(csv_path), user_id="u1", database_url=db_url) == 0
    assert (
        cmd_fixed_expenses(user_id="u1", as_json=True, today="2025-03-31", database_url=db_url)
        == 0
    )
    rent_id = json.loads(_out(capsys))["expenses"][0]["transaction_id"]

    rc = cmd_clarify(user_id="u1", transaction_id=rent_id, tx_type="Expense", database_url=db_url)
    assert rc == 0
    assert f"Resolved {rent_id}: expense (essential)" in _out(capsys)

    rc = cmd_clarify(user_id="u2", transaction_id=rent_id, tx_type="expense", database_url=db_url)
    assert rc == 1
    assert "does not belong" in capsys.readouterr().err

    rc = cmd_clarify(user_id="u1", transaction_id=rent_id, tx_type="gift", database_url=db_url)
    assert rc == 1
    assert "type must be one of" in capsys.readouterr().err

    assert cmd_totals(user_id="u1", start="03/01/2025", end="2025-03-31", database_url=db_url) == 1
    assert "--start must be YYYY-MM-DD" in capsys.readouterr().err


def test_e2e_ingest_reports_bad_csv(tmp_path: Path, db_url: str, capsys) -> None:
    missing = tmp_path / "nope.csv"
    assert cmd_ingest(str(missing), user_id="u1", database_url=db_url) == 1
    assert "File not found" in capsys.readouterr().err

    bad = tmp_path / "bad.csv"
    bad.write_text("Date,Amount\n2025-13-45,-5\n", encoding="utf-8")
    assert cmd_ingest(str(bad), user_id="u1", database_url=db_url) == 1
    assert "row 1: unparseable date" in capsys.readouterr().err

    headerless = tmp_path / "headerless.csv"
    headerless.write_text("Merchant,Total\nCafe,-5\n", encoding="utf-8")
    assert cmd_ingest(str(headerless), user_id="u1", database_url=db_url) == 1
    assert "missing required columns: date, amount" in capsys.readouterr().err


def test_e2e_init_db_creates_empty_ledger(tmp_path: Path, capsys) -> None:
    url = f"sqlite:///{tmp_path / 'fresh.sqlite3'}"
    assert cmd_init_db(database_url=url) == 0
    assert "Database initialized." in _out(capsys)

    assert cmd_totals(user_id="u1", start="2025-03-01", end="2025-03-31", database_url=url) == 0
    totals = dict(line.split("\t") for line in _out(capsys).splitlines())
    assert totals["income"] == "0.00"
    assert totals["excluded"] == "0"
