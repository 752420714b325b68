"""Merchant normalization.

``normalize_merchant`` maps raw merchant/description text to a stable grouping
key: the same real-world merchant should produce the same key no matter which
card processor, store number or location suffix the statement line carries.

The function is total and deterministic; ``None`` and blank input map to
``""``.
"""

from __future__ import annotations

import re
import unicodedata

# Payment-processor and card-network prefixes that precede the real merchant
# name (``SQ *BLUE BOTTLE``, ``TST* JOES``, ``PAYPAL *NETFLIX`` ...).
_PREFIX_RE = re.compile(
    r"^(?:"
    r"sq\s*\*|tst\s*\*|sp\s*\*|py\s*\*|pp\s*\*|ic\s*\*|dd\s*\*|"
    r"paypal\s*\*|apl\s*\*|goog\s*\*|google\s*\*|"
    r"pos\s+(?:debit|purchase)?|debit\s+card\s+purchase|checkcard\s*\d*|"
    r"purchase\s+authorized\s+on\s+\d{1,2}/\d{1,2}|recurring\s+payment|"
    r"ach\s+(?:debit|credit)?|preauthorized\s+debit|visa\s+purchase"
    r")\s*",
)

# ``#1234`` store numbers and anything printed after them (city/state).
_STORE_NO_RE = re.compile(r"\s*#\s*\d+.*$")
# Long reference/terminal numbers and everything after them.
_LONG_DIGITS_RE = re.compile(r"\s+\d{4,}.*$")
# ``*AB12CD`` style order references glued onto the merchant.
_STAR_REF_RE = re.compile(r"\*[0-9a-z]{4,}\b")
# `` - Downtown`` style location suffixes.
_DASH_SUFFIX_RE = re.compile(r"\s+-\s+.*$")
# Trailing two-letter US state / CA province code.
_STATE_RE = re.compile(
    r"\s+(?:al|ak|az|ar|ca|co|ct|de|fl|ga|hi|id|il|in|ia|ks|ky|la|me|md|ma|mi|mn|ms|mo|"
    r"mt|ne|nv|nh|nj|nm|ny|nc|nd|oh|ok|or|pa|ri|sc|sd|tn|tx|ut|vt|va|wa|wv|wi|wy|dc|"
    r"on|qc|bc|ab|mb|sk|ns|nb|nl|pe)$"
)
_APOSTROPHE_RE = re.compile(r"['’`]")
_PUNCT_RE = re.compile(r"[^\w\s&]")
_WS_RE = re.compile(r"\s+")


def normalize_merchant(raw: str | None) -> str:
    """Return the grouping key for ``raw`` merchant text.

    Steps: NFKC, casefold, strip processor prefixes, cut store numbers and
    long reference numbers together with the location text following them,
    drop ``*REF`` tokens, `` - location`` suffixes and trailing state codes,
    strip punctuation and collapse whitespace.
    """

    if raw is None:
        return ""
    s = unicodedata.normalize("NFKC", str(raw)).casefold()
    s = _WS_RE.sub(" ", s).strip()
    if not s:
        return ""

    stripped = _PREFIX_RE.sub("", s, count=1).strip()
    # A bare prefix ("ach debit") is still better than an empty key.
    if stripped:
        s = stripped

    s = _STAR_REF_RE.sub(" ", s)
    s = _STORE_NO_RE.sub("", s)
    s = _LONG_DIGITS_RE.sub("", s)
    s = _DASH_SUFFIX_RE.sub("", s)
    s = _APOSTROPHE_RE.sub("", s)
    s = _PUNCT_RE.sub(" ", s)
    s = _WS_RE.sub(" ", s).strip()

    # Only "<merchant> <city> <state>" shapes; two-token names keep their tail.
    if len(s.split(" ")) >= 3:
        s = _STATE_RE.sub("", s).strip()
    return s


def merchant_key_for(merchant: str | None, description: str | None) -> str:
    """Prefer ``merchant``; fall back to ``description`` when it normalizes to ``""``."""

    key = normalize_merchant(merchant)
    if key:
        return key
    return normalize_merchant(description)


__all__ = ["merchant_key_for", "normalize_merchant"]
