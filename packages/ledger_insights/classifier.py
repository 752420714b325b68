"""Rule-based transaction classification.

:func:`classify_transaction` is the single source of truth for a
transaction's type (income/expense/transfer/other), its essential vs.
discretionary tag and whether it is excluded from income/expense totals. It
is pure so that ingestion and read-time totals label identically.

Precedence:

1. Transfer vocabulary or an explicit ``transfer`` type wins; transfers are
   excluded and never carry a spend class.
2. An explicit upstream type (income/expense/other).
3. Payroll vocabulary on a credit.
4. The sign of the amount; zero is ``other``.

``needs_clarification`` keeps the inferred type but excludes the row and
halves the confidence.
"""

from __future__ import annotations

import re
from decimal import Decimal

from .models import Classification, Transaction

# A credit-card payment needs a payment word plus a whole-word card network.
_PAYMENT_WORDS: tuple[str, ...] = (
    "payment",
    "e-payment",
    "epayment",
    "auto payment",
    "autopay",
    "pymt",
)
_CARD_CONTEXT_RE = re.compile(
    r"\b(?:credit card|card payment|visa|mastercard|amex|american express|discover)\b"
)
_TRANSFER_PHRASES: tuple[str, ...] = (
    "transfer to",
    "transfer from",
    "internal transfer",
    "account transfer",
    "balance transfer",
    "online transfer",
    "xfer to",
    "xfer from",
    "trnsfr",
    "to savings",
    "from savings",
    "to checking",
    "from checking",
)
_PAYROLL_PHRASES: tuple[str, ...] = (
    "payroll",
    "direct dep",
    "directdep",
    "salary",
    "paycheck",
    "pay check",
    "wages",
)

ESSENTIAL_CATEGORIES: frozenset[str] = frozenset(
    {
        "groceries",
        "housing",
        "rent",
        "mortgage",
        "rent / mortgage",
        "utilities",
        "gas/automotive",
        "transportation",
        "health/wellness",
        "insurance",
        "interest",
        "loans",
        "fees",
        "healthcare",
        "medical",
        "pharmacy",
        "gas",
        "fuel",
        "electric",
        "water",
        "internet",
        "phone",
        "mobile",
        "childcare",
        "taxes",
    }
)
DISCRETIONARY_CATEGORIES: frozenset[str] = frozenset(
    {
        "food & dining",
        "alcohol/bars",
        "entertainment",
        "shopping",
        "travel",
        "electronics",
        "electronics/software",
        "software",
        "home improvement",
        "subscription",
        "subscriptions",
        "streaming",
        "dining",
        "restaurants",
        "coffee shops",
        "bars",
        "movies",
        "games",
        "toys",
        "clothing",
        "fashion",
        "hobbies",
        "personal care",
        "gifts",
    }
)

# Merchant-key hints used only when the category says nothing.
_ESSENTIAL_MERCHANT_HINTS: tuple[str, ...] = (
    "pharmacy",
    "cvs",
    "walgreens",
    "electric",
    "water",
    "utility",
    "insurance",
    "geico",
    "state farm",
    "progressive",
    "mortgage",
    "rent",
    "comcast",
    "xfinity",
    "verizon",
    "at&t",
    "t mobile",
    "shell",
    "chevron",
    "exxon",
    "grocery",
    "safeway",
    "kroger",
    "whole foods",
    "trader joe",
)
_DISCRETIONARY_MERCHANT_HINTS: tuple[str, ...] = (
    "netflix",
    "spotify",
    "hulu",
    "disney",
    "starbucks",
    "coffee",
    "restaurant",
    "bar",
    "cinema",
    "steam",
    "uber eats",
    "doordash",
    "grubhub",
    "amazon",
    "best buy",
    "airbnb",
    "hotel",
)


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


def has_payment_word(text: str | None) -> bool:
    return _contains_any((text or "").casefold(), _PAYMENT_WORDS)


def is_card_payment_text(text: str | None) -> bool:
    """Return True when merchant text reads like paying off a credit card."""

    t = (text or "").casefold()
    return has_payment_word(t) and _CARD_CONTEXT_RE.search(t) is not None


def is_transfer_text(text: str | None, category: str | None = None) -> bool:
    """Return True when merchant ``text`` or ``category`` reads like a transfer."""

    t = (text or "").casefold()
    c = (category or "").casefold()
    if "transfer" in c:
        return True
    if not t:
        return False
    return is_card_payment_text(t) or _contains_any(t, _TRANSFER_PHRASES)


def spend_class_for(
    *, category: str | None, merchant_key: str | None
) -> tuple[str | None, bool]:
    """Return ``(spend_class, from_category)`` for an expense.

    The category is authoritative when it is one of the known names; merchant
    hints are a weaker fallback. ``(None, False)`` means no signal.
    """

    cat = (category or "").strip().casefold()
    if cat in ESSENTIAL_CATEGORIES:
        return "essential", True
    if cat in DISCRETIONARY_CATEGORIES:
        return "discretionary", True
    # Hints must start a word: "rent" matches "rent payment", not "current".
    key = f" {(merchant_key or '').casefold()}"
    if any(f" {h}" in key for h in _ESSENTIAL_MERCHANT_HINTS):
        return "essential", False
    if any(f" {h}" in key for h in _DISCRETIONARY_MERCHANT_HINTS):
        return "discretionary", False
    return None, False


def classify_transaction(
    *,
    amount: Decimal | int | float | str | None,
    category: str | None = None,
    merchant_key: str | None = None,
    description: str | None = None,
    explicit_type: str | None = None,
    needs_clarification: bool = False,
) -> Classification:
    try:
        amt = Decimal(str(amount)) if amount is not None else Decimal("0")
    except ArithmeticError:
        amt = Decimal("0")
    explicit = (explicit_type or "").strip().casefold() or None
    text = " ".join(p for p in (merchant_key, description) if p)
    # Card-payment wording is read from the merchant only.
    transfer_like = is_transfer_text(merchant_key, category) or _contains_any(
        (description or "").casefold(), _TRANSFER_PHRASES
    )

    if explicit == "transfer" or transfer_like:
        reason = "explicit transfer type" if explicit == "transfer" else "transfer vocabulary"
        confidence = 1.0 if explicit == "transfer" else 0.9
        if needs_clarification:
            confidence /= 2
        return Classification("transfer", None, True, confidence, reason)

    if explicit in ("income", "expense"):
        tx_type, confidence, reason = explicit, 1.0, f"explicit {explicit} type"
    elif explicit == "other":
        # Upstream "other" rows are fees and adjustments.
        tx_type, confidence, reason = "expense", 0.8, "explicit other type counted as expense"
    elif amt > 0 and _contains_any(text.casefold(), _PAYROLL_PHRASES):
        tx_type, confidence, reason = "income", 0.95, "payroll vocabulary"
    elif amt > 0:
        tx_type, confidence, reason = "income", 0.7, "positive amount"
    elif amt < 0:
        tx_type, confidence, reason = "expense", 0.8, "negative amount"
    else:
        tx_type, confidence, reason = "other", 0.5, "zero amount"

    spend_class: str | None = None
    if tx_type == "expense":
        spend_class, from_category = spend_class_for(category=category, merchant_key=merchant_key)
        if spend_class is not None and not from_category:
            confidence = min(confidence, 0.7)

    if needs_clarification:
        return Classification(
            tx_type, spend_class, True, confidence / 2, f"{reason}; needs clarification"
        )
    return Classification(tx_type, spend_class, False, confidence, reason)


def classify(tx: Transaction, *, explicit_type: str | None = None) -> Classification:
    """Classify a stored transaction with the same rules used at ingestion."""

    return classify_transaction(
        amount=tx.amount,
        category=tx.category,
        merchant_key=tx.merchant_key,
        description=tx.description,
        explicit_type=explicit_type,
        needs_clarification=tx.needs_clarification,
    )


__all__ = [
    "DISCRETIONARY_CATEGORIES",
    "ESSENTIAL_CATEGORIES",
    "classify",
    "classify_transaction",
    "has_payment_word",
    "is_card_payment_text",
    "is_transfer_text",
    "spend_class_for",
]
