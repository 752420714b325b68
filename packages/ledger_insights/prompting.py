"""Prompt construction for the two oracle tasks.

Both prompts embed their payload as JSON between ``BEGIN_*_JSON`` /
``END_*_JSON`` markers with a page-relative ``idx`` so replies can be aligned
by position. Each task also has a strict ``response_format`` (JSON Schema)
for the OpenAI Responses API; replies are still parsed tolerantly because
other oracles may ignore it.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from .models import (
    FIXED_STATUSES,
    PRIMARY_TYPES,
    FixedExpenseTagInput,
    Transaction,
    UserFixedExpenseInput,
)

BEGIN_TRANSACTIONS = "BEGIN_TRANSACTIONS_JSON\n"
END_TRANSACTIONS = "\nEND_TRANSACTIONS_JSON"
BEGIN_USER_INPUTS = "BEGIN_USER_INPUTS_JSON\n"
END_USER_INPUTS = "\nEND_USER_INPUTS_JSON"
BEGIN_DETECTED = "BEGIN_DETECTED_JSON\n"
END_DETECTED = "\nEND_DETECTED_JSON"

TAG_FIELD_ORDER: tuple[str, ...] = (
    "idx",
    "transaction_id",
    "merchant",
    "description",
    "category",
    "amount",
    "currency",
    "date",
)


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    s = " ".join(str(value).split())
    return s[:limit] if s else None


def _num(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


# ---- Fixed-expense tagging ---------------------------------------------------


def build_tagging_instructions() -> str:
    return (
        "You are a financial transaction classifier.\n"
        "\n"
        "Label each transaction as one of:\n"
        '- "fixed": recurring, required payments (rent, mortgage, utilities, insurance, '
        "loans, phone/internet, taxes, subscriptions with autopay)\n"
        '- "maybe": likely fixed but not confident\n'
        '- "not_fixed": discretionary or one-off spending (restaurants, groceries, retail, '
        "shopping, travel, entertainment), or ambiguous transfers\n"
        "\n"
        "Common subscriptions: Netflix, Spotify, Apple (iCloud, Apple One), Google One, "
        "Amazon Prime, Disney+, Hulu, Max, Dropbox, Adobe, Microsoft 365, GitHub, NYTimes.\n"
        "Common utility/phone/internet billers: electric, gas, water, Comcast/Xfinity, AT&T, "
        "Verizon, T-Mobile, Spectrum, Rogers, Bell, Telus.\n"
        "Common loans/insurance: mortgage and student-loan servicers, GEICO, State Farm, "
        "Progressive.\n"
        "\n"
        'A credit card payment or a transfer between own accounts is "not_fixed". '
        "Categories help but are not required; use merchant and description evidence.\n"
        "\n"
        "For each item return: transaction_id (echo it), label, confidence in [0,1], "
        "primary_type (one of: " + ", ".join(PRIMARY_TYPES) + "), is_subscription (true for "
        "recurring digital services, memberships, streaming, SaaS, news or cloud storage; false "
        "for utilities, rent, insurance, loans, taxes and ordinary retail), and explain (one "
        "sentence, at most 30 words).\n"
        "Return exactly one result per input item, in the same order, as a JSON array."
    )


def serialize_tag_inputs(batch: Sequence[FixedExpenseTagInput]) -> str:
    """Serialize a batch with a fixed field order and clipped text fields."""

    arr: list[dict[str, Any]] = []
    for idx, item in enumerate(batch):
        row = {
            "idx": idx,
            "transaction_id": item.transaction_id,
            "merchant": _clip(item.merchant, 120) or "",
            "description": _clip(item.description, 160),
            "category": _clip(item.category, 80),
            "amount": _num(item.amount),
            "currency": _clip(item.currency, 10),
            "date": item.date.isoformat() if item.date else None,
        }
        arr.append({k: row[k] for k in TAG_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def build_tagging_input(
    batch: Sequence[FixedExpenseTagInput], *, memories: Sequence[str] = ()
) -> str:
    lines: list[str] = []
    notes = [m.strip() for m in memories if m and m.strip()]
    if notes:
        lines.append("User preferences from earlier decisions (apply when relevant):")
        lines.extend(f"- {n}" for n in notes)
        lines.append("")
    lines.append(f"Classify these {len(batch)} transactions.")
    return (
        "\n".join(lines)
        + "\n\n"
        + BEGIN_TRANSACTIONS
        + serialize_tag_inputs(batch)
        + END_TRANSACTIONS
    )


def build_tag_response_format() -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "fixed_expense_tags",
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "transaction_id": {"type": ["string", "null"]},
                            "label": {"type": "string", "enum": list(FIXED_STATUSES)},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "primary_type": {"type": "string", "enum": list(PRIMARY_TYPES)},
                            "is_subscription": {"type": "boolean"},
                            "explain": {"type": "string"},
                        },
                        "required": [
                            "transaction_id",
                            "label",
                            "confidence",
                            "primary_type",
                            "is_subscription",
                            "explain",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }


# ---- Expectation matching ----------------------------------------------------


def build_matching_instructions() -> str:
    return (
        "You are deduplicating fixed expenses.\n"
        "\n"
        "You receive USER INPUTS (payments the user expects to make) and DETECTED "
        "fixed-expense TRANSACTIONS (real bank data). For each user input decide whether "
        "it is the same obligation as one detected transaction, even if the name differs "
        "slightly, the amount differs slightly (tax, proration, fees) or the day differs "
        "(weekends, holidays).\n"
        "\n"
        "Rules:\n"
        "- Prefer the most likely transaction when several could match.\n"
        "- If no good match exists, matched_transaction_id is null.\n"
        "- confidence in [0,1] expresses match strength.\n"
        "\n"
        "For each user input return: user_input_id, matched_transaction_id (a "
        "transaction_id from the detected list, or null), confidence, and explain (one "
        "sentence, at most 35 words).\n"
        "Return exactly one result per user input, in the same order, as a JSON array."
    )


def serialize_user_inputs(inputs: Sequence[UserFixedExpenseInput]) -> str:
    arr = [
        {
            "idx": idx,
            "id": u.id,
            "name": _clip(u.name, 140),
            "expected_amount": _num(u.expected_amount),
            "expected_day_of_month": u.expected_day_of_month,
            "expected_cadence": u.expected_cadence,
            "currency": u.currency,
        }
        for idx, u in enumerate(inputs)
    ]
    return json.dumps(arr, ensure_ascii=False)


def serialize_detected(detected: Sequence[Transaction]) -> str:
    arr = [
        {
            "transaction_id": t.id,
            "merchant": _clip(t.display_merchant, 140) or "",
            "description": _clip(t.description, 160),
            "amount": _num(t.amount),
            "currency": _clip(t.currency, 10),
            "date": t.date.isoformat(),
        }
        for t in detected
    ]
    return json.dumps(arr, ensure_ascii=False)


def build_matching_input(
    inputs: Sequence[UserFixedExpenseInput], detected: Sequence[Transaction]
) -> str:
    return (
        f"USER INPUTS ({len(inputs)}):\n"
        + BEGIN_USER_INPUTS
        + serialize_user_inputs(inputs)
        + END_USER_INPUTS
        + f"\n\nDETECTED TRANSACTIONS ({len(detected)}):\n"
        + BEGIN_DETECTED
        + serialize_detected(detected)
        + END_DETECTED
    )


def build_match_response_format() -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "fixed_expense_input_matches",
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "user_input_id": {"type": "string"},
                            "matched_transaction_id": {"type": ["string", "null"]},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "explain": {"type": "string"},
                        },
                        "required": [
                            "user_input_id",
                            "matched_transaction_id",
                            "confidence",
                            "explain",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }


__all__ = [
    "BEGIN_DETECTED",
    "BEGIN_TRANSACTIONS",
    "BEGIN_USER_INPUTS",
    "END_DETECTED",
    "END_TRANSACTIONS",
    "END_USER_INPUTS",
    "build_match_response_format",
    "build_matching_input",
    "build_matching_instructions",
    "build_tag_response_format",
    "build_tagging_input",
    "build_tagging_instructions",
]
