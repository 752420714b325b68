"""SQLite helpers for tests.

Databases are file-backed so the separate sessions opened by one ingestion
(stage, then persist) see the same rows.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

from db import Base
from db.client import get_engine, session_scope
from sqlalchemy import event
from sqlalchemy.engine import Engine

from ledger_insights import persistence
from ledger_insights.models import Transaction


def _sqlite_now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _install_sqlite_shims(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover - driver hook
        dbapi_conn.execute("PRAGMA foreign_keys = ON")
        dbapi_conn.create_function("now", 0, _sqlite_now)


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create the ledger schema in ``db_file`` and return its URL."""

    db_file.parent.mkdir(parents=True, exist_ok=True)
    url = f"sqlite+pysqlite:///{db_file}"
    engine = get_engine(database_url=url)
    _install_sqlite_shims(engine)
    Base.metadata.create_all(bind=engine)
    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_transactions(database_url: str, *rows: Transaction) -> None:
    """Insert already-built transactions, grouped by owner."""

    owners = sorted({t.user_id for t in rows})
    with session_scope(database_url=database_url) as session:
        for user_id in owners:
            persistence.write_staged(
                session,
                user_id=user_id,
                inserts=[t for t in rows if t.user_id == user_id],
                updates=[],
            )
