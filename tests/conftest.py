"""Pytest configuration for test isolation.

Oracle replies are memoized under a cache root (default ``./.cache``). If
tests shared it, a later test could hit a reply cached by an earlier one and
skip its stubbed oracle, which makes call-count assertions flaky. Each test
gets its own cache root, and ``OPENAI_API_KEY`` is cleared so nothing
reaches the network by accident.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
for _p in (_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cache_root = tmp_path / "cache"
    cache_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("LEDGER_INSIGHTS_CACHE_DIR", os.fspath(cache_root))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


@pytest.fixture
def db_url(tmp_path: Path) -> Iterator[str]:
    from db.client import dispose_engines
    from tests.helpers.db import bootstrap_sqlite_db

    yield bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
    dispose_engines()
