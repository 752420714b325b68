"""External judgment oracle.

The tagger and the expectation matcher only need one capability: send
instructions plus a user payload, get free-form text back that should
contain one JSON array. :class:`Oracle` is that narrow seam;
:class:`OpenAIOracle` implements it with the OpenAI Responses API.

:func:`read_oracle_reply` tags a reply as :class:`ParsedReply` or
:class:`MalformedReply`; the repair itself is :func:`parse_oracle_array`, a
pure function that never raises and returns ``None`` when no array can be
recovered. Callers synthesize placeholders for malformed replies.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from openai import OpenAI

from .logging_setup import get_logger
from .settings import Settings

_logger = get_logger("ledger_insights.oracle")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*")


@runtime_checkable
class Oracle(Protocol):
    model: str

    def complete(
        self,
        instructions: str,
        user_input: str,
        *,
        response_format: Mapping[str, Any] | None = None,
    ) -> str: ...


def _create_client(*, timeout: float) -> OpenAI:
    return OpenAI(timeout=timeout)


def _extract_output_text(resp: Any) -> str:
    """Return the text output of a Responses API result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``
    (a plain string or an object with ``.value``).
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


class OpenAIOracle:
    """Oracle backed by ``OpenAI().responses.create``."""

    def __init__(self, *, model: str, timeout: float = 60.0) -> None:
        self.model = model
        self._timeout = timeout
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = _create_client(timeout=self._timeout)
        return self._client

    def complete(
        self,
        instructions: str,
        user_input: str,
        *,
        response_format: Mapping[str, Any] | None = None,
    ) -> str:
        t0 = time.perf_counter()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "instructions": instructions,
            "input": user_input,
        }
        if response_format is not None:
            kwargs["text"] = {"format": dict(response_format)}
        resp = self._get_client().responses.create(**kwargs)
        text = _extract_output_text(resp)
        _logger.debug(
            "oracle:complete model=%s chars=%d latency_ms=%.2f",
            self.model,
            len(text),
            (time.perf_counter() - t0) * 1000.0,
        )
        return text


def default_oracle(settings: Settings | None = None) -> Oracle | None:
    """Return an OpenAI-backed oracle, or ``None`` when ``OPENAI_API_KEY`` is unset."""

    if not os.getenv("OPENAI_API_KEY"):
        _logger.warning("oracle:unavailable reason=OPENAI_API_KEY not set")
        return None
    s = settings or Settings.from_env()
    return OpenAIOracle(model=s.model, timeout=s.oracle_timeout_sec)


def _as_array(value: Any) -> list[Any] | None:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in ("results", "items", "data"):
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
    return None


def parse_oracle_array(text: str | None) -> list[Any] | None:
    """Recover the JSON array from an oracle reply.

    1. Strip Markdown code fences and parse the whole text.
    2. Accept an object wrapping the array under ``results``.
    3. Otherwise decode from each ``[`` in turn and return the first array
       that parses.
    """

    if not text:
        return None
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        found = _as_array(json.loads(cleaned))
    except json.JSONDecodeError:
        found = None
    if found is not None:
        return found

    decoder = json.JSONDecoder()
    start = cleaned.find("[")
    while start != -1:
        try:
            value, _end = decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            start = cleaned.find("[", start + 1)
            continue
        if isinstance(value, list):
            return value
        start = cleaned.find("[", start + 1)
    return None


@dataclass(frozen=True, slots=True)
class ParsedReply:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class MalformedReply:
    """A reply with no recoverable JSON array; ``raw_text`` is kept for logging."""

    raw_text: str

    def preview(self, limit: int = 200) -> str:
        return " ".join(self.raw_text.split())[:limit]


type OracleReply = ParsedReply | MalformedReply


def read_oracle_reply(text: str | None) -> OracleReply:
    """Wrap :func:`parse_oracle_array` in a parsed-or-malformed result."""

    items = parse_oracle_array(text)
    if items is None:
        return MalformedReply(raw_text=text or "")
    return ParsedReply(items=items)


__all__ = [
    "MalformedReply",
    "OpenAIOracle",
    "Oracle",
    "OracleReply",
    "ParsedReply",
    "default_oracle",
    "parse_oracle_array",
    "read_oracle_reply",
]
