"""On-disk memoization of oracle batches.

An identical batch (same task, model, instructions, payload and preference
notes) gets the same reply from disk instead of a second oracle call, which
makes re-running ingestion over the same statement reproducible.

Only complete, well-formed replies are written; a batch that needed
placeholder entries is never cached.

Layout (relative to the cache root, default ``./.cache``)::

    <cache_root>/oracle/<kind>/<key>.json

Writes go to ``.tmp`` first and are moved into place with ``os.replace``.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .logging_setup import get_logger
from .models import OracleCacheFile
from .settings import get_cache_root

# Bump when the on-disk JSON shape changes.
SCHEMA_VERSION: int = 1

_KEY_RE = re.compile(r"^[a-f0-9]{64}$")
_KIND_RE = re.compile(r"^[a-z_]+$")

_logger = get_logger("ledger_insights.cache")


def batch_cache_key(*, kind: str, model: str, instructions: str, user_input: str) -> str:
    """Return a SHA-256 key over everything that shapes the oracle reply."""

    payload = {
        "schema": SCHEMA_VERSION,
        "kind": kind,
        "model": model,
        "instructions": instructions,
        "input": user_input,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _batch_path(kind: str, key: str) -> Path:
    if not _KIND_RE.fullmatch(kind):
        raise ValueError(f"Invalid cache kind: {kind!r}")
    if not _KEY_RE.fullmatch(key):
        raise ValueError("Invalid cache key: must be a 64-char lowercase sha256 hexdigest")
    d = get_cache_root() / "oracle" / kind
    d.mkdir(parents=True, exist_ok=True)
    return d / f"{key}.json"


def read_batch(kind: str, key: str) -> list[dict[str, Any]] | None:
    """Return cached items, or ``None`` on a miss or an unreadable file."""

    path = _batch_path(kind, key)
    if not path.exists():
        return None
    try:
        parsed = OracleCacheFile.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError):
        _logger.debug(
            "oracle_cache:read_failed kind=%s key=%s path=%s",
            kind,
            key,
            os.fspath(path),
            exc_info=True,
        )
        return None
    if parsed.schema_version != SCHEMA_VERSION or parsed.kind != kind or parsed.key != key:
        return None
    return parsed.items


def write_batch(kind: str, key: str, items: list[dict[str, Any]]) -> None:
    path = _batch_path(kind, key)
    tmp = path.with_suffix(path.suffix + ".tmp")
    doc = OracleCacheFile(schema_version=SCHEMA_VERSION, kind=kind, key=key, items=items)
    try:
        tmp.write_text(
            json.dumps(doc.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":")),
            encoding="utf-8",
        )
        os.replace(tmp, path)
    except Exception:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        raise


__all__ = ["SCHEMA_VERSION", "batch_cache_key", "read_batch", "write_batch"]
