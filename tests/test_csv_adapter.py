# ruff: noqa: E402, I001
from __future__ import annotations

import csv
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from ledger_insights.ingest.csv_adapter import (
    account_id_for,
    load_statement_csv,
    to_raw_transactions,
)


def test_loads_mixed_formats(tmp_path: Path) -> None:
    p = tmp_path / "stmt.csv"
    p.write_text(
        "\ufeffDATE, Merchant ,Amount,Account,Pending,Currency\n"
        '03/05/2025,  Blue   Bottle ,"$1,234.50",Chase Sapphire,yes,usd\n'
        "2025-03-06,Refund,(12.00),,,\n",
        encoding="utf-8",
    )
    raws, accounts = load_statement_csv(p, user_id="u1", default_account="Checking")

    first, second = raws
    assert first.date == date(2025, 3, 5)
    assert first.amount == Decimal("1234.50")
    assert first.merchant == "Blue Bottle"
    assert first.is_pending is True
    assert first.currency == "USD"
    assert first.account_id == "u1:chase-sapphire"
    assert second.amount == Decimal("-12.00")
    assert second.account_id == "u1:checking"
    assert sorted(a.name for a in accounts) == ["Chase Sapphire", "Checking"]


def test_bad_amount_names_the_row() -> None:
    rows = [{"date": "2025-03-01", "amount": "1"}, {"date": "2025-03-02", "amount": "ten"}]
    with pytest.raises(csv.Error, match="row 2"):
        to_raw_transactions(rows, user_id="u1")


def test_account_ids_are_scoped_to_the_user() -> None:
    assert account_id_for("u1", "  My Card!! ") == "u1:my-card"
    assert account_id_for("u2", "My Card") == "u2:my-card"
    assert account_id_for("u1", "***") == "u1:account"
