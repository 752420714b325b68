"""Reconcile user-declared expected payments with detected fixed expenses.

Public API: :func:`match_expectations`.

Uses the same oracle protocol as :mod:`ledger_insights.tagger`: batched
prompts, one result per user input in input order, tolerant parsing and
placeholders for missing entries. With no detected transactions at all,
every input is unmatched at confidence 0 and the oracle is not called.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

from . import prompting
from .cache import batch_cache_key, read_batch, write_batch
from .errors import InvalidExpectationError
from .logging_setup import get_logger
from .models import ExpectationMatch, Transaction, UserFixedExpenseInput
from .oracle import MalformedReply, Oracle, read_oracle_reply
from .pmap import p_map
from .settings import DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENCY
from .tagger import coerce_confidence, truncate_words

NO_DETECTED_EXPLAIN = "No detected fixed-expense transactions available"
MISSING_EXPLAIN = "Missing match result"
UNAVAILABLE_EXPLAIN = "Oracle unavailable; left unmatched"
UNKNOWN_ID_EXPLAIN = "Matched id is not among the detected transactions"
MAX_EXPLAIN_WORDS = 35
MAX_DETECTED_PER_PROMPT = 80

# Matches at or above this confidence link the transaction and retire the input.
AUTO_LINK_CONFIDENCE = 0.8

_CACHE_KIND = "expectation_matches"

_logger = get_logger("ledger_insights.matcher")


def _placeholder(user_input_id: str, explain: str) -> ExpectationMatch:
    return ExpectationMatch(
        user_input_id=user_input_id,
        matched_transaction_id=None,
        confidence=0.5,
        explain=explain,
        synthesized=True,
    )


def _coerce_match(raw: Any, user_input_id: str, known_ids: set[str]) -> ExpectationMatch:
    if not isinstance(raw, dict):
        return _placeholder(user_input_id, MISSING_EXPLAIN)
    matched = raw.get("matched_transaction_id")
    explain = raw.get("explain")
    confidence = coerce_confidence(raw.get("confidence"))
    text = truncate_words(explain, MAX_EXPLAIN_WORDS) if isinstance(explain, str) else ""
    if not isinstance(matched, str) or not matched.strip():
        matched = None
    elif matched not in known_ids:
        _logger.warning(
            "matcher:unknown_transaction_id user_input_id=%s matched=%s", user_input_id, matched
        )
        matched, confidence, text = None, 0.0, UNKNOWN_ID_EXPLAIN
    return ExpectationMatch(
        user_input_id=user_input_id,
        matched_transaction_id=matched,
        confidence=confidence,
        explain=text,
    )


def align_matches(
    parsed: Sequence[Any] | None,
    batch: Sequence[UserFixedExpenseInput],
    known_ids: set[str],
) -> list[ExpectationMatch]:
    items = list(parsed or [])
    out: list[ExpectationMatch] = []
    for i, u in enumerate(batch):
        if u.id is None:
            raise InvalidExpectationError(f"expected payment {u.name!r} has no id")
        if i < len(items):
            out.append(_coerce_match(items[i], u.id, known_ids))
        else:
            out.append(_placeholder(u.id, MISSING_EXPLAIN))
    return out


def _select_detected(detected: Sequence[Transaction], limit: int) -> list[Transaction]:
    """Most recent ``limit`` transactions, one per id."""

    unique = {t.id: t for t in detected}
    ordered = sorted(unique.values(), key=lambda t: (t.date, t.id), reverse=True)
    return ordered[:limit]


def _match_batch(
    batch_index: int,
    batch: Sequence[UserFixedExpenseInput],
    detected: Sequence[Transaction],
    *,
    oracle: Oracle,
    use_cache: bool,
) -> list[ExpectationMatch]:
    known_ids = {t.id for t in detected}
    instructions = prompting.build_matching_instructions()
    user_input = prompting.build_matching_input(batch, detected)
    key = batch_cache_key(
        kind=_CACHE_KIND, model=oracle.model, instructions=instructions, user_input=user_input
    )

    if use_cache:
        cached = read_batch(_CACHE_KIND, key)
        if cached is not None and len(cached) == len(batch):
            _logger.info(
                "matcher:batch_cache_hit batch_index=%d items=%d", batch_index, len(batch)
            )
            return align_matches(cached, batch, known_ids)

    _logger.info(
        "matcher:batch_oracle batch_index=%d inputs=%d detected=%d",
        batch_index,
        len(batch),
        len(detected),
    )
    t0 = time.perf_counter()
    try:
        text = oracle.complete(
            instructions, user_input, response_format=prompting.build_match_response_format()
        )
    except Exception as e:  # noqa: BLE001 - any oracle failure degrades to placeholders
        _logger.warning(
            "matcher:batch_failed batch_index=%d inputs=%d latency_ms=%.2f error=%s",
            batch_index,
            len(batch),
            (time.perf_counter() - t0) * 1000.0,
            e.__class__.__name__,
        )
        return [_placeholder(u.id or "", UNAVAILABLE_EXPLAIN) for u in batch]

    reply = read_oracle_reply(text)
    parsed: list[Any] | None = None
    if isinstance(reply, MalformedReply):
        _logger.warning(
            "matcher:batch_unparseable batch_index=%d inputs=%d chars=%d raw=%r",
            batch_index,
            len(batch),
            len(reply.raw_text),
            reply.preview(),
        )
    else:
        parsed = reply.items
    matches = align_matches(parsed, batch, known_ids)
    if (
        use_cache
        and parsed is not None
        and len(parsed) == len(batch)
        and not any(m.synthesized for m in matches)
    ):
        write_batch(
            _CACHE_KIND,
            key,
            [m.model_dump(mode="json", exclude={"synthesized"}) for m in matches],
        )
    _logger.info(
        "matcher:batch_done batch_index=%d inputs=%d returned=%d latency_ms=%.2f",
        batch_index,
        len(batch),
        len(parsed or []),
        (time.perf_counter() - t0) * 1000.0,
    )
    return matches


def match_expectations(
    user_inputs: Sequence[UserFixedExpenseInput],
    detected: Sequence[Transaction],
    *,
    oracle: Oracle | None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    concurrency: int = DEFAULT_CONCURRENCY,
    use_cache: bool = True,
    max_detected: int = MAX_DETECTED_PER_PROMPT,
) -> list[ExpectationMatch]:
    """Return one :class:`ExpectationMatch` per user input, in order.

    Every input must already have an ``id``. ``detected`` is capped at the
    ``max_detected`` most recent transactions per prompt.
    """

    if batch_size < 1:
        raise ValueError("batch_size must be a positive integer")
    if not user_inputs:
        return []
    missing = [u.name for u in user_inputs if not u.id]
    if missing:
        raise InvalidExpectationError(
            f"expected payments must be saved before matching: {', '.join(missing)}"
        )

    if not detected:
        return [
            ExpectationMatch(
                user_input_id=u.id or "",
                matched_transaction_id=None,
                confidence=0.0,
                explain=NO_DETECTED_EXPLAIN,
            )
            for u in user_inputs
        ]
    if oracle is None:
        return [_placeholder(u.id or "", UNAVAILABLE_EXPLAIN) for u in user_inputs]

    window = _select_detected(detected, max_detected)
    batches = [
        (k, user_inputs[base : base + batch_size])
        for k, base in enumerate(range(0, len(user_inputs), batch_size))
    ]

    def _map(entry: tuple[int, Sequence[UserFixedExpenseInput]]) -> list[ExpectationMatch]:
        k, batch = entry
        return _match_batch(k, batch, window, oracle=oracle, use_cache=use_cache)

    per_batch = p_map(batches, _map, concurrency=min(concurrency, len(batches)))
    return [m for ms in per_batch for m in ms]


__all__ = [
    "AUTO_LINK_CONFIDENCE",
    "MISSING_EXPLAIN",
    "NO_DETECTED_EXPLAIN",
    "align_matches",
    "match_expectations",
]
