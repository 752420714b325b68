"""Adapter for a simple statement CSV.

CSV header (case-insensitive; only ``date`` and ``amount`` are required):
date, merchant, amount, category, description, account, currency, pending, type

- ``date``: ``YYYY-MM-DD``, ``MM/DD/YYYY`` or ``MM/DD/YY``
- ``amount``: signed, negative for money leaving the account; ``$1,234.56``
  and ``(12.00)`` are accepted
- ``account``: account name; one :class:`Account` per distinct name is
  returned with an id scoped to the user
- ``pending``: ``1``/``true``/``yes`` marks a pending row
"""

from __future__ import annotations

import csv
import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from os import PathLike
from pathlib import Path

from ..models import Account, RawTransaction
from ..money import to_decimal

REQUIRED_COLUMNS: tuple[str, ...] = ("date", "amount")

_TRUTHY = {"1", "true", "yes", "y", "pending"}
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value).strip()
    return cleaned or None


def _parse_date(value: str | None) -> date | None:
    s = (value or "").strip()
    if not s:
        return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def account_id_for(user_id: str, name: str) -> str:
    slug = _SLUG_RE.sub("-", name.casefold()).strip("-") or "account"
    return f"{user_id}:{slug}"


def to_raw_transactions(
    rows: Iterable[Mapping[str, str | None]],
    *,
    user_id: str,
    default_account: str | None = None,
) -> tuple[list[RawTransaction], list[Account]]:
    """Convert CSV rows (keys lowercased) to raw transactions and their accounts.

    Raises ``csv.Error`` naming the 1-based data row when a date or amount
    cannot be parsed.
    """

    out: list[RawTransaction] = []
    accounts: dict[str, Account] = {}
    for n, row in enumerate(rows, start=1):
        d = _parse_date(row.get("date"))
        if d is None:
            raise csv.Error(f"row {n}: unparseable date {row.get('date')!r}")
        amount = to_decimal(row.get("amount"))
        if amount is None:
            raise csv.Error(f"row {n}: unparseable amount {row.get('amount')!r}")

        currency = (_clean_text(row.get("currency")) or "USD").upper()
        account_name = _clean_text(row.get("account")) or default_account
        account_id = None
        if account_name:
            account_id = account_id_for(user_id, account_name)
            accounts.setdefault(
                account_id,
                Account(id=account_id, user_id=user_id, name=account_name, currency=currency),
            )

        out.append(
            RawTransaction(
                user_id=user_id,
                date=d,
                amount=amount,
                merchant=_clean_text(row.get("merchant")),
                description=_clean_text(row.get("description")),
                currency=currency,
                category=_clean_text(row.get("category")),
                account_id=account_id,
                transaction_type=_clean_text(row.get("type")),
                is_pending=(row.get("pending") or "").strip().casefold() in _TRUTHY,
            )
        )
    return out, list(accounts.values())


def load_statement_csv(
    csv_path: str | PathLike[str],
    *,
    user_id: str,
    default_account: str | None = None,
) -> tuple[list[RawTransaction], list[Account]]:
    """Read a statement CSV from disk; see :func:`to_raw_transactions`."""

    p = Path(csv_path)
    with p.open(encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise csv.Error(f"CSV appears to have no header row: {csv_path}")
        headers = {h.strip().casefold() for h in reader.fieldnames if h}
        missing = [c for c in REQUIRED_COLUMNS if c not in headers]
        if missing:
            raise csv.Error("CSV header is missing required columns: " + ", ".join(missing))
        rows = (
            {(k or "").strip().casefold(): v for k, v in row.items() if k is not None}
            for row in reader
        )
        return to_raw_transactions(rows, user_id=user_id, default_account=default_account)


__all__ = ["REQUIRED_COLUMNS", "account_id_for", "load_statement_csv", "to_raw_transactions"]
