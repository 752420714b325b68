"""Decimal helpers for amounts.

Amounts are compared and fingerprinted at the currency's minor unit
(cents for USD, whole yen for JPY, fils for KWD).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

# ISO 4217 exponents that differ from the default of 2.
_MINOR_UNIT_EXCEPTIONS: dict[str, int] = {
    "BIF": 0,
    "CLP": 0,
    "DJF": 0,
    "GNF": 0,
    "ISK": 0,
    "JPY": 0,
    "KMF": 0,
    "KRW": 0,
    "PYG": 0,
    "RWF": 0,
    "UGX": 0,
    "VND": 0,
    "VUV": 0,
    "XAF": 0,
    "XOF": 0,
    "XPF": 0,
    "BHD": 3,
    "IQD": 3,
    "JOD": 3,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "TND": 3,
}

ZERO = Decimal("0")


def minor_units(currency: str | None) -> int:
    return _MINOR_UNIT_EXCEPTIONS.get((currency or "USD").strip().upper(), 2)


def quantize_amount(amount: Decimal, currency: str | None) -> Decimal:
    """Round ``amount`` half-up to the currency's minor unit."""

    exp = Decimal(1).scaleb(-minor_units(currency))
    return amount.quantize(exp, rounding=ROUND_HALF_UP)


def to_decimal(raw: Any) -> Decimal | None:
    """Parse ``raw`` into a ``Decimal``; ``None`` for blanks and junk.

    Accepts ``$1,234.56``, ``(12.00)`` accounting negatives and trailing
    minus signs as printed by some bank exports.
    """

    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, int | float):
        return Decimal(str(raw))
    s = str(raw).strip().replace(",", "").replace("$", "")
    if not s:
        return None
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative, s = True, s[1:-1].strip()
    elif s.endswith("-"):
        negative, s = True, s[:-1].strip()
    try:
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return -d if negative else d


def amounts_offset(a: Decimal, b: Decimal, currency: str | None) -> bool:
    """True when ``a`` and ``b`` have opposite signs and equal magnitude."""

    if a == ZERO or b == ZERO or (a > 0) == (b > 0):
        return False
    return quantize_amount(abs(a), currency) == quantize_amount(abs(b), currency)


__all__ = ["ZERO", "amounts_offset", "minor_units", "quantize_amount", "to_decimal"]
