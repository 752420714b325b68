"""Runtime settings read from the environment.

Every knob has a default so library callers can construct ``Settings()``
directly; entry points use :meth:`Settings.from_env` after ``load_dotenv``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_ENV_PREFIX = "LEDGER_INSIGHTS_"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env(name: str) -> str | None:
    val = os.getenv(_ENV_PREFIX + name)
    if val is None or not val.strip():
        return None
    return val.strip()


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{_ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    v = raw.lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    raise ValueError(f"{_ENV_PREFIX}{name} must be a boolean flag, got {raw!r}")


def get_cache_root() -> Path:
    """Return the on-disk cache root.

    Default: ``./.cache`` under the current working directory.
    Override: ``LEDGER_INSIGHTS_CACHE_DIR`` (absolute or relative).
    """

    root = _env("CACHE_DIR")
    if root:
        return Path(root).expanduser().resolve()
    return (Path.cwd() / ".cache").resolve()


DEFAULT_MODEL: str = "gpt-5-mini"
DEFAULT_BATCH_SIZE: int = 30
DEFAULT_CONCURRENCY: int = 4
DEFAULT_ORACLE_TIMEOUT_SEC: int = 60
DEFAULT_LOOKBACK_DAYS: int = 120


@dataclass(frozen=True, slots=True)
class Settings:
    model: str = DEFAULT_MODEL
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    oracle_timeout_sec: float = float(DEFAULT_ORACLE_TIMEOUT_SEC)
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    oracle_cache: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            model=_env("MODEL") or DEFAULT_MODEL,
            batch_size=_env_int("BATCH_SIZE", DEFAULT_BATCH_SIZE),
            concurrency=_env_int("CONCURRENCY", DEFAULT_CONCURRENCY),
            oracle_timeout_sec=float(_env_int("ORACLE_TIMEOUT", DEFAULT_ORACLE_TIMEOUT_SEC)),
            lookback_days=_env_int("LOOKBACK_DAYS", DEFAULT_LOOKBACK_DAYS),
            oracle_cache=_env_bool("ORACLE_CACHE", True),
        )


__all__ = ["Settings", "get_cache_root"]
