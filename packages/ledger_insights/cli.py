# ruff: noqa: I001
"""CLI for the ``ledger_insights`` package.

Command handlers (``cmd_*``) return a process exit code and print
``Error: ...`` to stderr on failure; the Typer app below wraps them. The
root callback loads ``.env`` from the current directory (without overriding
the environment) and configures logging. Business logic lives in
``ledger_insights.api``.
"""

from __future__ import annotations

import json
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .errors import InvalidExpectationError, OwnershipError, TransactionNotFoundError
from .logging_setup import configure_logging


def _err(msg: str) -> int:
    print(f"Error: {msg}", file=sys.stderr)
    return 1


def _parse_day(value: str | None, *, name: str) -> date | None:
    if value is None:
        return None
    return _require_day(value, name=name)


def _require_day(value: str, *, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"--{name} must be YYYY-MM-DD, got {value!r}") from e


def _money(d: Decimal) -> str:
    return f"{d:,.2f}"


# ---- Command handlers ---------------------------------------------------------


def cmd_init_db(*, database_url: str | None) -> int:
    """Create the ledger tables directly from the ORM metadata.

    Production databases should use the Alembic migrations under
    ``libs/db/alembic``; this is for local SQLite files and quick trials.
    """

    from db import Base
    from db.client import get_engine

    try:
        Base.metadata.create_all(bind=get_engine(database_url=database_url))
    except Exception as e:
        return _err(f"failed to create tables: {e}")
    print("Database initialized.")
    return 0


def cmd_ingest(
    csv_path: str,
    *,
    user_id: str,
    account: str | None = None,
    database_url: str | None = None,
) -> int:
    """Ingest a statement CSV and print a one-line summary."""

    import csv

    from db.client import session_scope

    from .api import ingest_statement
    from .ingest.csv_adapter import load_statement_csv
    from .persistence import upsert_accounts

    try:
        raw, accounts = load_statement_csv(csv_path, user_id=user_id, default_account=account)
    except FileNotFoundError:
        return _err(f"File not found: {csv_path}")
    except PermissionError:
        return _err(f"Permission denied: {csv_path}")
    except csv.Error as e:
        return _err(f"Failed to parse CSV: {e}")

    try:
        if accounts:
            with session_scope(database_url=database_url) as session:
                upsert_accounts(session, user_id=user_id, accounts=accounts)
        result = ingest_statement(raw, user_id=user_id, database_url=database_url)
    except Exception as e:
        return _err(f"ingestion failed: {e}")

    print(
        f"received={result.received} inserted={result.inserted} merged={result.merged} "
        f"replaced={result.replaced} dropped={result.dropped} "
        f"transfer_pairs={result.transfer_pairs} rule_tagged={result.rule_tagged} "
        f"model_tagged={result.model_tagged} left_for_review={result.left_for_review}"
    )
    return 0


def cmd_fixed_expenses(
    *,
    user_id: str,
    as_json: bool = False,
    today: str | None = None,
    database_url: str | None = None,
) -> int:
    """Print the fixed-expense view as a table (or JSON)."""

    from .api import get_fixed_expenses, get_subscription_candidates

    try:
        as_of = _parse_day(today, name="today")
        summary = get_fixed_expenses(user_id=user_id, database_url=database_url, today=as_of)
        candidates = get_subscription_candidates(
            user_id=user_id, database_url=database_url, today=as_of
        )
    except Exception as e:
        return _err(f"failed to load fixed expenses: {e}")

    if as_json:
        doc: dict[str, Any] = {
            "month": summary.month,
            "monthly_total": str(summary.monthly_total),
            "mtd_total": str(summary.mtd_total),
            "calculated_at": summary.calculated_at.isoformat(),
            "expenses": [
                {
                    "transaction_id": e.transaction_id,
                    "merchant": e.merchant,
                    "monthly_amount": str(e.monthly_amount),
                    "mtd_amount": str(e.mtd_amount),
                    "occurrence_dates": [d.isoformat() for d in e.occurrence_dates],
                    "is_maybe": e.is_maybe,
                    "confidence": e.confidence,
                    "explain": e.explain,
                    "source": e.source,
                    "currency": e.currency,
                    "is_subscription": e.is_subscription,
                }
                for e in summary.expenses
            ],
            "subscription_candidates": [
                {
                    "transaction_id": c.representative_id,
                    "merchant": c.merchant,
                    "service": c.service,
                    "median_amount": str(c.median_amount),
                    "occurrence_count": c.occurrence_count,
                    "last_date": c.last_date.isoformat(),
                    "currency": c.currency,
                }
                for c in candidates
            ],
        }
        print(json.dumps(doc, ensure_ascii=False, indent=2))
        return 0

    print(f"Fixed expenses for {summary.month}")
    for e in summary.expenses:
        flag = "?" if e.is_maybe else " "
        print(
            f"{flag} {e.merchant[:32]:<32} {_money(e.monthly_amount):>12} "
            f"{_money(e.mtd_amount):>12}  {e.source or '-':<5} {e.transaction_id}"
        )
    print(f"  {'Total':<32} {_money(summary.monthly_total):>12} {_money(summary.mtd_total):>12}")
    if candidates:
        print("Possible subscriptions")
        for c in candidates:
            print(
                f"? {c.merchant[:32]:<32} {_money(c.median_amount):>12} "
                f"x{c.occurrence_count:<3} {c.last_date.isoformat()} {c.service}"
            )
    return 0


def cmd_decide(
    *,
    user_id: str,
    transaction_id: str,
    accept: bool,
    database_url: str | None = None,
) -> int:
    from .api import decide_fixed_expense

    try:
        n = decide_fixed_expense(
            user_id=user_id,
            transaction_id=transaction_id,
            accept=accept,
            database_url=database_url,
        )
    except (OwnershipError, TransactionNotFoundError) as e:
        return _err(str(e))
    except Exception as e:
        return _err(f"decision failed: {e}")
    print(f"{'Accepted' if accept else 'Rejected'}; updated {n} transaction(s).")
    return 0


def cmd_clarify(
    *,
    user_id: str,
    transaction_id: str,
    tx_type: str,
    spend_class: str | None = None,
    database_url: str | None = None,
) -> int:
    from .api import resolve_clarification

    try:
        tx = resolve_clarification(
            user_id=user_id,
            transaction_id=transaction_id,
            tx_type=tx_type.strip().lower(),
            spend_class=spend_class.strip().lower() if spend_class else None,
            database_url=database_url,
        )
    except (OwnershipError, TransactionNotFoundError, ValueError) as e:
        return _err(str(e))
    except Exception as e:
        return _err(f"clarification failed: {e}")
    print(f"Resolved {tx.id}: {tx.type}" + (f" ({tx.spend_class})" if tx.spend_class else ""))
    return 0


def cmd_expect(
    *,
    user_id: str,
    name: str,
    amount: str | None = None,
    day: int | None = None,
    cadence: str | None = None,
    currency: str = "USD",
    database_url: str | None = None,
) -> int:
    from .api import add_expected_payment

    payload: dict[str, Any] = {
        "name": name,
        "expected_amount": amount,
        "expected_day_of_month": day,
        "expected_cadence": cadence,
        "currency": currency,
    }
    try:
        item = add_expected_payment(payload, user_id=user_id, database_url=database_url)
    except InvalidExpectationError as e:
        return _err(str(e))
    except Exception as e:
        return _err(f"failed to save expected payment: {e}")
    print(f"Saved expected payment {item.id}: {item.name}")
    return 0


def cmd_reconcile(*, user_id: str, database_url: str | None = None) -> int:
    from .api import reconcile_expected_payments

    try:
        matches = reconcile_expected_payments(user_id=user_id, database_url=database_url)
    except Exception as e:
        return _err(f"reconciliation failed: {e}")
    for m in matches:
        matched = m.matched_transaction_id or "-"
        print(f"{m.user_input_id}\t{matched}\t{m.confidence:.2f}\t{m.explain}")
    return 0


def cmd_totals(
    *,
    user_id: str,
    start: str,
    end: str,
    database_url: str | None = None,
) -> int:
    from .api import compute_period_totals

    try:
        start_d = _require_day(start, name="start")
        end_d = _require_day(end, name="end")
        t = compute_period_totals(
            user_id=user_id, start=start_d, end=end_d, database_url=database_url
        )
    except ValueError as e:
        return _err(str(e))
    except Exception as e:
        return _err(f"failed to compute totals: {e}")
    print(f"income\t{_money(t.income)}")
    print(f"expense\t{_money(t.expense)}")
    print(f"essential\t{_money(t.essential)}")
    print(f"discretionary\t{_money(t.discretionary)}")
    print(f"net\t{_money(t.net)}")
    print(f"excluded\t{t.excluded_count}")
    return 0


def cmd_forget(*, user_id: str, database_url: str | None = None) -> int:
    from .api import delete_user_data

    try:
        counts = delete_user_data(user_id=user_id, database_url=database_url)
    except Exception as e:
        return _err(f"failed to delete user data: {e}")
    print(" ".join(f"{k}={v}" for k, v in counts.items()))
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Deduplicate and classify statement transactions, detect fixed expenses "
        "and reconcile expected payments. Loads OPENAI_API_KEY and DATABASE_URL "
        "from a local .env."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Used with Annotated, so defaults come from the signature.
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to a statement CSV (date, merchant, amount, ...)",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files
    readable=True,
)
USER_ID_OPTION: OptionInfo = typer.Option(..., "--user-id", help="Owner of the data.")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    ..., "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


@app.command("init-db")
def init_db_cmd(database_url: Annotated[str | None, DATABASE_URL_OPTION] = None) -> None:
    """Create the ledger tables."""
    _exit(cmd_init_db(database_url=database_url))


@app.command("ingest")
def ingest_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    user_id: Annotated[str, USER_ID_OPTION],
    account: str | None = typer.Option(
        None, help="Account name for rows whose CSV has no account column."
    ),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Ingest a statement CSV: dedup, classify, match transfers, tag fixed expenses."""
    _exit(cmd_ingest(str(csv_path), user_id=user_id, account=account, database_url=database_url))


@app.command("fixed-expenses")
def fixed_expenses_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    today: str | None = typer.Option(None, help="Reference date (YYYY-MM-DD); default today."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Show detected fixed expenses for the current month."""
    _exit(
        cmd_fixed_expenses(
            user_id=user_id, as_json=as_json, today=today, database_url=database_url
        )
    )


@app.command("decide")
def decide_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    transaction_id: str = typer.Option(..., "--transaction-id"),
    accept: bool = typer.Option(
        ..., "--accept/--reject", help="Confirm or reject the merchant as a fixed expense."
    ),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Confirm or reject a detected fixed expense."""
    _exit(
        cmd_decide(
            user_id=user_id,
            transaction_id=transaction_id,
            accept=accept,
            database_url=database_url,
        )
    )


@app.command("clarify")
def clarify_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    transaction_id: str = typer.Option(..., "--transaction-id"),
    tx_type: str = typer.Option(..., "--type", help="income, expense, transfer or other."),
    spend_class: str | None = typer.Option(
        None, "--spend-class", help="essential or discretionary (expenses only)."
    ),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Resolve a transaction flagged as needing clarification."""
    _exit(
        cmd_clarify(
            user_id=user_id,
            transaction_id=transaction_id,
            tx_type=tx_type,
            spend_class=spend_class,
            database_url=database_url,
        )
    )


@app.command("expect")
def expect_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    name: str = typer.Option(..., "--name", help="What the payment is, e.g. 'Rent'."),
    amount: str | None = typer.Option(None, "--amount"),
    day: int | None = typer.Option(None, "--day", help="Expected day of month (1-31)."),
    cadence: str | None = typer.Option(None, "--cadence"),
    currency: str = typer.Option("USD", "--currency"),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Declare an expected recurring payment."""
    _exit(
        cmd_expect(
            user_id=user_id,
            name=name,
            amount=amount,
            day=day,
            cadence=cadence,
            currency=currency,
            database_url=database_url,
        )
    )


@app.command("reconcile")
def reconcile_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Match expected payments against detected fixed expenses."""
    _exit(cmd_reconcile(user_id=user_id, database_url=database_url))


@app.command("totals")
def totals_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    start: str = typer.Option(..., "--start", help="YYYY-MM-DD"),
    end: str = typer.Option(..., "--end", help="YYYY-MM-DD"),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Income and expense totals for a date range, transfers excluded."""
    _exit(cmd_totals(user_id=user_id, start=start, end=end, database_url=database_url))


@app.command("forget")
def forget_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Delete every row belonging to a user."""
    if not yes:
        typer.confirm(f"Delete all data for {user_id}?", abort=True)
    _exit(cmd_forget(user_id=user_id, database_url=database_url))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Load ``.env`` from the current directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
