"""Logging for the ``ledger_insights`` package.

Library modules ask for ``get_logger("ledger_insights.<module>")`` and log
``event:phase key=value`` lines; they never add handlers. Until an entry
point calls :func:`configure_logging`, the package logger carries only a
``NullHandler`` and stays silent.

``configure_logging`` installs one stderr handler on the package logger and,
unless the level is DEBUG, lowers the HTTP client chatter (``httpx``,
``openai``) that would otherwise print a line per oracle request.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "ledger_insights"
LEVEL_ENV = "LEDGER_INSIGHTS_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")

_state = {"configured": False}


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``$LEDGER_INSIGHTS_LOG_LEVEL``) into a logging level.

    Accepts ints, digit strings and level names; anything unrecognized falls
    back to ``INFO``.
    """

    for candidate in (level, os.getenv(LEVEL_ENV)):
        if isinstance(candidate, int):
            return candidate
        if isinstance(candidate, str) and candidate.strip():
            name = candidate.strip().upper()
            if name.isdigit():
                return int(name)
            mapped = logging.getLevelNamesMapping().get(name)
            if mapped is not None:
                return mapped
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach the package's stderr handler; later calls are no-ops."""

    if _state["configured"]:
        return

    resolved = resolve_level(level)
    pkg = logging.getLogger(PACKAGE_LOGGER)
    pkg.handlers = [h for h in pkg.handlers if not isinstance(h, logging.NullHandler)]

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    pkg.addHandler(handler)
    pkg.setLevel(resolved)
    pkg.propagate = False

    if resolved > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _state["configured"] = True


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _state["configured"] and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
