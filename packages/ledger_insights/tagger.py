"""Oracle-backed fixed-expense tagging.

Public API: :func:`tag_fixed_expenses`.

Inputs are split into batches (30 by default) that run concurrently. Every
call returns exactly one :class:`FixedExpenseTag` per input, in input order,
whatever the oracle does:

- a malformed reply is repaired where possible (fence stripping, array
  scanning, per-field coercion); an unrecoverable one is logged with its raw
  text;
- entries are matched to inputs by the echoed ``transaction_id``, falling
  back to position;
- entries missing from a short reply are synthesized as ``maybe`` / ``0.5`` /
  ``"Missing classification"``;
- a failed call or a missing oracle yields ``maybe`` placeholders for the
  whole batch.

Synthesized tags carry ``synthesized=True``. One attempt per batch; no
retries.
"""

from __future__ import annotations

import math
import time
from collections.abc import Sequence
from typing import Any

from . import prompting
from .cache import batch_cache_key, read_batch, write_batch
from .logging_setup import get_logger
from .models import FIXED_STATUSES, PRIMARY_TYPES, FixedExpenseTag, FixedExpenseTagInput
from .oracle import MalformedReply, Oracle, read_oracle_reply
from .pmap import p_map
from .settings import DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENCY

MISSING_EXPLAIN = "Missing classification"
UNAVAILABLE_EXPLAIN = "Oracle unavailable; left for review"
MAX_EXPLAIN_WORDS = 30

_CACHE_KIND = "fixed_expense_tags"

_logger = get_logger("ledger_insights.tagger")


def truncate_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[:limit])


def coerce_confidence(value: Any, default: float = 0.5) -> float:
    """Clamp numeric confidences to ``[0, 1]``; anything else becomes ``default``."""

    if isinstance(value, bool) or not isinstance(value, int | float):
        return default
    f = float(value)
    if math.isnan(f):
        return default
    return min(max(f, 0.0), 1.0)


def _placeholder(item: FixedExpenseTagInput, explain: str) -> FixedExpenseTag:
    return FixedExpenseTag(
        transaction_id=item.transaction_id,
        label="maybe",
        confidence=0.5,
        primary_type="unknown",
        explain=explain,
        synthesized=True,
    )


def _coerce_tag(raw: Any, item: FixedExpenseTagInput) -> FixedExpenseTag:
    if not isinstance(raw, dict):
        return _placeholder(item, MISSING_EXPLAIN)
    label = raw.get("label")
    primary = raw.get("primary_type")
    explain = raw.get("explain")
    return FixedExpenseTag(
        transaction_id=item.transaction_id,
        label=label if label in FIXED_STATUSES else "maybe",
        confidence=coerce_confidence(raw.get("confidence")),
        primary_type=primary if primary in PRIMARY_TYPES else "unknown",
        is_subscription=raw.get("is_subscription") is True,
        explain=truncate_words(explain, MAX_EXPLAIN_WORDS) if isinstance(explain, str) else "",
    )


def _echoed_id(raw: Any) -> str | None:
    if isinstance(raw, dict) and isinstance(raw.get("transaction_id"), str):
        return raw["transaction_id"]
    return None


def align_tags(
    parsed: Sequence[Any] | None, batch: Sequence[FixedExpenseTagInput]
) -> list[FixedExpenseTag]:
    """Return exactly ``len(batch)`` tags, in batch order.

    Entries are matched by the ``transaction_id`` they echo first. An input
    nobody echoed takes the entry at its own position, unless that entry
    already belongs to another input. Whatever is left unmatched is padded
    with ``maybe`` placeholders.
    """

    items = list(parsed or [])
    if len(items) > len(batch):
        _logger.warning(
            "tagger:extra_results expected=%d got=%d; truncating", len(batch), len(items)
        )
    wanted = {item.transaction_id for item in batch}
    by_id: dict[str, Any] = {}
    for raw in items:
        echoed = _echoed_id(raw)
        if echoed is not None and echoed in wanted and echoed not in by_id:
            by_id[echoed] = raw

    out: list[FixedExpenseTag] = []
    for i, item in enumerate(batch):
        raw = by_id.get(item.transaction_id)
        if raw is None and i < len(items) and _echoed_id(items[i]) not in by_id:
            raw = items[i]
            echoed = _echoed_id(raw)
            if echoed is not None:
                _logger.debug(
                    "tagger:id_mismatch expected=%s got=%s; aligning by position",
                    item.transaction_id,
                    echoed,
                )
        out.append(_placeholder(item, MISSING_EXPLAIN) if raw is None else _coerce_tag(raw, item))
    return out


def _tag_batch(
    batch_index: int,
    batch: Sequence[FixedExpenseTagInput],
    *,
    oracle: Oracle,
    memories: Sequence[str],
    use_cache: bool,
) -> list[FixedExpenseTag]:
    instructions = prompting.build_tagging_instructions()
    user_input = prompting.build_tagging_input(batch, memories=memories)
    key = batch_cache_key(
        kind=_CACHE_KIND, model=oracle.model, instructions=instructions, user_input=user_input
    )

    if use_cache:
        cached = read_batch(_CACHE_KIND, key)
        if cached is not None and len(cached) == len(batch):
            _logger.info(
                "tagger:batch_cache_hit batch_index=%d items=%d", batch_index, len(batch)
            )
            return align_tags(cached, batch)

    _logger.info("tagger:batch_oracle batch_index=%d items=%d", batch_index, len(batch))
    t0 = time.perf_counter()
    try:
        text = oracle.complete(
            instructions, user_input, response_format=prompting.build_tag_response_format()
        )
    except Exception as e:  # noqa: BLE001 - any oracle failure degrades to placeholders
        _logger.warning(
            "tagger:batch_failed batch_index=%d items=%d latency_ms=%.2f error=%s",
            batch_index,
            len(batch),
            (time.perf_counter() - t0) * 1000.0,
            e.__class__.__name__,
        )
        return [_placeholder(item, UNAVAILABLE_EXPLAIN) for item in batch]

    reply = read_oracle_reply(text)
    parsed: list[Any] | None = None
    if isinstance(reply, MalformedReply):
        _logger.warning(
            "tagger:batch_unparseable batch_index=%d items=%d chars=%d raw=%r",
            batch_index,
            len(batch),
            len(reply.raw_text),
            reply.preview(),
        )
    else:
        parsed = reply.items
    tags = align_tags(parsed, batch)

    complete = parsed is not None and len(parsed) == len(batch) and not any(
        t.synthesized for t in tags
    )
    if complete and use_cache:
        write_batch(
            _CACHE_KIND,
            key,
            [t.model_dump(mode="json", exclude={"synthesized"}) for t in tags],
        )
    _logger.info(
        "tagger:batch_done batch_index=%d items=%d returned=%d latency_ms=%.2f",
        batch_index,
        len(batch),
        len(parsed or []),
        (time.perf_counter() - t0) * 1000.0,
    )
    return tags


def tag_fixed_expenses(
    inputs: Sequence[FixedExpenseTagInput],
    *,
    oracle: Oracle | None,
    memories: Sequence[str] = (),
    batch_size: int = DEFAULT_BATCH_SIZE,
    concurrency: int = DEFAULT_CONCURRENCY,
    use_cache: bool = True,
) -> list[FixedExpenseTag]:
    """Label each input ``fixed`` / ``maybe`` / ``not_fixed``.

    ``memories`` are the user's earlier accept/reject notes, passed to the
    oracle as context. With ``oracle=None`` every input gets a synthesized
    ``maybe`` placeholder and nothing is called.
    """

    if batch_size < 1:
        raise ValueError("batch_size must be a positive integer")
    if not inputs:
        return []
    if oracle is None:
        return [_placeholder(item, UNAVAILABLE_EXPLAIN) for item in inputs]

    batches = [
        (k, inputs[base : base + batch_size])
        for k, base in enumerate(range(0, len(inputs), batch_size))
    ]

    def _map(entry: tuple[int, Sequence[FixedExpenseTagInput]]) -> list[FixedExpenseTag]:
        k, batch = entry
        return _tag_batch(k, batch, oracle=oracle, memories=memories, use_cache=use_cache)

    per_batch = p_map(batches, _map, concurrency=min(concurrency, len(batches)))
    return [tag for tags in per_batch for tag in tags]


__all__ = [
    "MISSING_EXPLAIN",
    "UNAVAILABLE_EXPLAIN",
    "align_tags",
    "coerce_confidence",
    "tag_fixed_expenses",
    "truncate_words",
]
