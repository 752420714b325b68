"""Deterministic recurrence detection.

Everything here works on transaction history alone, without the oracle:

- :func:`build_merchant_month_index` groups rows by merchant key and UTC
  calendar month (``YYYY-MM``).
- :func:`detect_recurring_candidates` turns the index into ranked
  per-merchant monthly signals.
- :func:`compute_rule_score` scores how "bill-like" a merchant's history is;
  :func:`rule_verdict` maps that score to ``fixed`` / ``not_fixed`` / ambiguous.
- :func:`apply_category_rules` tags rows whose category is a fixed-expense
  category.
- :func:`detect_subscription_candidates` flags recent charges at known
  subscription services before they have months of history.

Statistics use the median so a one-off doubled payment does not move the
typical amount or day.
"""

from __future__ import annotations

import math
import re
import statistics
from collections.abc import Collection, Iterable, Mapping, Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import NamedTuple

from .logging_setup import get_logger
from .models import FixedExpenseTag, RecurrenceCandidate, SubscriptionCandidate, Transaction
from .money import ZERO, quantize_amount

_logger = get_logger("ledger_insights.recurrence")

MIN_ELIGIBLE_AMOUNT: Decimal = Decimal("5.00")
MIN_ELIGIBLE_MONTHS: int = 2

CONFIDENT_FIXED_SCORE: float = 0.85
CONFIDENT_NOT_FIXED_SCORE: float = 0.15

DEFAULT_FIXED_CATEGORIES: frozenset[str] = frozenset(
    {
        "rent",
        "mortgage",
        "rent/mortgage",
        "housing",
        "utilities",
        "insurance",
        "loans",
        "loan payments",
        "phone",
        "internet",
        "phone/internet",
        "childcare",
    }
)

type MerchantMonthIndex = dict[str, dict[str, list[Transaction]]]


def median(values: Iterable[Decimal | float | int]) -> Decimal | float:
    """Median of ``values``; an even-sized set averages the two middle values.

    Raises ``ValueError`` on an empty input.
    """

    data = list(values)
    if not data:
        raise ValueError("median() of an empty sequence")
    if all(isinstance(v, int) for v in data):
        data = [Decimal(v) for v in data]
    return statistics.median(data)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def is_expense_like(tx: Transaction) -> bool:
    """Outflows that could be bills: expenses and negative ``other`` rows."""

    if tx.type in ("income", "transfer"):
        return False
    if tx.type == "expense":
        return True
    return tx.amount < 0


def select_eligible(
    transactions: Iterable[Transaction],
    *,
    min_amount: Decimal = MIN_ELIGIBLE_AMOUNT,
    min_months: int = MIN_ELIGIBLE_MONTHS,
) -> list[Transaction]:
    """Rows already tagged fixed/maybe, plus untagged outflows that repeat.

    An untagged row qualifies when its magnitude is at least ``min_amount``
    and its merchant shows up in at least ``min_months`` distinct months.
    Rows tagged ``not_fixed`` never qualify.
    """

    rows = list(transactions)
    months_by_merchant: dict[str, set[str]] = {}
    for tx in rows:
        if is_expense_like(tx) and tx.merchant_key:
            months_by_merchant.setdefault(tx.merchant_key, set()).add(month_key(tx.date))

    out: list[Transaction] = []
    for tx in rows:
        if tx.fixed_status in ("fixed", "maybe"):
            out.append(tx)
        elif (
            tx.fixed_status is None
            and is_expense_like(tx)
            and abs(tx.amount) >= min_amount
            and len(months_by_merchant.get(tx.merchant_key, ())) >= min_months
        ):
            out.append(tx)
    return out


def build_merchant_month_index(transactions: Iterable[Transaction]) -> MerchantMonthIndex:
    index: MerchantMonthIndex = {}
    for tx in transactions:
        index.setdefault(tx.merchant_key, {}).setdefault(month_key(tx.date), []).append(tx)
    return index


def _latest(rows: Iterable[Transaction]) -> Transaction:
    return max(rows, key=lambda t: (t.date, t.id))


def _outflow_sum(rows: Iterable[Transaction]) -> Decimal:
    return sum((abs(t.amount) for t in rows), ZERO)


def estimate_cadence(dates: Sequence[date]) -> str:
    """Map the median gap between consecutive dates to a billing cadence."""

    ordered = sorted(set(dates))
    if len(ordered) < 2:
        return "irregular"
    gaps = [(b - a).days for a, b in zip(ordered, ordered[1:], strict=False)]
    m = float(median(gaps))
    if 6 <= m <= 8:
        return "weekly"
    if 12 <= m <= 16:
        return "biweekly"
    if 25 <= m <= 35:
        return "monthly"
    if 85 <= m <= 95:
        return "quarterly"
    if 350 <= m <= 380:
        return "annual"
    return "irregular"


# Payments per month for cadences whose calendar-month sums are misleading.
_PAYMENTS_PER_MONTH: dict[str, Decimal] = {
    "weekly": Decimal(52) / Decimal(12),
    "biweekly": Decimal(2),
    "quarterly": Decimal(1) / Decimal(3),
    "annual": Decimal(1) / Decimal(12),
}


def monthly_equivalent(per_payment: Decimal, cadence: str, currency: str | None) -> Decimal:
    """Scale one payment to a monthly amount: biweekly doubles, quarterly thirds."""

    factor = _PAYMENTS_PER_MONTH.get(cadence)
    if factor is None:
        return per_payment
    return quantize_amount(per_payment * factor, currency)


# ---- Rule score -------------------------------------------------------------


class RuleScore(NamedTuple):
    score: float
    interval_regularity: float
    day_concentration: float
    amount_stability: float
    keyword_bonus: float
    interval_multiplier: float


_KEYWORD_FLAGS: tuple[tuple[re.Pattern[str], float], ...] = (
    (re.compile(r"\b(loan|mortgage|servicing|lending)\b"), 0.3),
    (re.compile(r"\b(electric|gas|water|utility|utilities|power|energy)\b"), 0.3),
    (re.compile(r"\b(insurance|ins|policy)\b"), 0.3),
    (re.compile(r"\b(subscription|monthly|annual|membership)\b"), 0.2),
    (re.compile(r"\b(ach|direct debit|recurring|automatic)\b"), 0.2),
    (re.compile(r"\b(bill|payment|pay|autopay|auto-pay)\b"), 0.1),
    (re.compile(r"\b(acct|account|a/c)\b"), 0.1),
)


def _coefficient_of_variation(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    if mean == 0:
        return 1.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance) / mean


def _scale_down(value: float, lo: float, hi: float) -> float:
    """1.0 below ``lo``, 0.0 above ``hi``, linear in between."""

    if value < lo:
        return 1.0
    if value > hi:
        return 0.0
    return 1.0 - (value - lo) / (hi - lo)


def _interval_multiplier(median_gap: float) -> float:
    if 28 <= median_gap <= 32:
        return 1.0
    if 25 <= median_gap <= 35:
        return 0.8
    if 12 <= median_gap <= 16:
        return 0.7
    if 85 <= median_gap <= 95:
        return 0.6
    if 6 <= median_gap <= 8:
        return 0.2
    return 0.3


def _keyword_bonus(texts: Iterable[str]) -> float:
    blob = " ".join(texts).casefold()
    bonus = 0.0
    for pattern, weight in _KEYWORD_FLAGS:
        if pattern.search(blob):
            bonus = max(bonus, weight)
    return min(bonus, 0.3)


def compute_rule_score(history: Sequence[Transaction]) -> RuleScore | None:
    """Score a single merchant's history in ``[0, 1]``.

    Weighted blend (35% interval regularity, 25% day-of-month concentration,
    25% amount stability, 15% keyword bonus) scaled by how close the median
    gap is to a common billing cycle. Returns ``None`` when there are fewer
    than three transactions or fewer than three distinct months.
    """

    rows = sorted(history, key=lambda t: (t.date, t.id))
    if len(rows) < 3 or len({month_key(t.date) for t in rows}) < 3:
        return None

    gaps = [float((b.date - a.date).days) for a, b in zip(rows, rows[1:], strict=False)]
    amounts = [float(abs(t.amount)) for t in rows]
    days = [t.date.day for t in rows]

    interval_regularity = _scale_down(round(_coefficient_of_variation(gaps), 2), 0.15, 0.60)
    amount_stability = _scale_down(round(_coefficient_of_variation(amounts), 2), 0.10, 0.40)

    avg_day = round(sum(days) / len(days))
    ratio = sum(1 for d in days if abs(d - avg_day) <= 3) / len(days)
    day_concentration = 0.0 if ratio < 0.6 else (ratio - 0.6) / 0.4

    keyword_bonus = _keyword_bonus(
        f"{t.merchant or ''} {t.description or ''}" for t in rows
    )
    multiplier = _interval_multiplier(round(float(median(gaps))))

    base = (
        0.35 * interval_regularity
        + 0.25 * day_concentration
        + 0.25 * amount_stability
        + 0.15 * keyword_bonus
    )
    return RuleScore(
        score=min(max(base * multiplier, 0.0), 1.0),
        interval_regularity=interval_regularity,
        day_concentration=day_concentration,
        amount_stability=amount_stability,
        keyword_bonus=keyword_bonus,
        interval_multiplier=multiplier,
    )


def rule_verdict(score: RuleScore | None) -> str | None:
    """``"fixed"``/``"not_fixed"`` when the score is decisive, else ``None``."""

    if score is None:
        return None
    if score.score >= CONFIDENT_FIXED_SCORE:
        return "fixed"
    if score.score <= CONFIDENT_NOT_FIXED_SCORE:
        return "not_fixed"
    return None


# ---- Category rule -----------------------------------------------------------


def normalize_category_key(category: str | None) -> str | None:
    if not category or not category.strip():
        return None
    s = " ".join(category.split()).casefold()
    return re.sub(r"\s*([/&])\s*", r"\1", s)


def is_fixed_category(
    category: str | None, fixed_categories: Collection[str] = DEFAULT_FIXED_CATEGORIES
) -> bool:
    key = normalize_category_key(category)
    if key is None:
        return False
    return key in {normalize_category_key(c) for c in fixed_categories}


def apply_category_rules(
    transactions: Sequence[Transaction],
    fixed_categories: Collection[str] = DEFAULT_FIXED_CATEGORIES,
) -> list[Transaction]:
    """Tag expense rows in a fixed-expense category as ``fixed`` by rule.

    Rows that already carry a user decision are left alone.
    """

    out: list[Transaction] = []
    for tx in transactions:
        if (
            tx.fixed_source != "user"
            and is_expense_like(tx)
            and is_fixed_category(tx.category, fixed_categories)
        ):
            tx = tx.replace(
                fixed_status="fixed",
                fixed_source="rule",
                fixed_confidence=1.0,
                fixed_model=None,
                fixed_explain="Category marked as fixed expense",
            )
        out.append(tx)
    return out


def rule_tags_for_history(
    history: Sequence[Transaction],
) -> dict[str, FixedExpenseTag]:
    """Return decisive rule tags keyed by transaction id.

    Each merchant's full history is scored; merchants with a decisive score
    tag every untagged row of theirs. Ambiguous merchants get nothing and are
    left for the oracle.
    """

    by_merchant: dict[str, list[Transaction]] = {}
    for tx in history:
        if is_expense_like(tx) and tx.merchant_key:
            by_merchant.setdefault(tx.merchant_key, []).append(tx)

    tags: dict[str, FixedExpenseTag] = {}
    for key, rows in by_merchant.items():
        score = compute_rule_score(rows)
        verdict = rule_verdict(score)
        if verdict is None or score is None:
            continue
        explain = (
            f"Recurring pattern score {score.score:.2f} across {len(rows)} payments"
            if verdict == "fixed"
            else f"Irregular pattern score {score.score:.2f} across {len(rows)} payments"
        )
        for tx in rows:
            if tx.fixed_status is None:
                tags[tx.id] = FixedExpenseTag(
                    transaction_id=tx.id,
                    label=verdict,
                    confidence=round(score.score if verdict == "fixed" else 1 - score.score, 4),
                    primary_type="other_fixed" if verdict == "fixed" else "not_fixed",
                    explain=explain,
                )
        _logger.debug("recurrence:rule_verdict merchant=%s verdict=%s", key, verdict)
    return tags


# ---- Candidates --------------------------------------------------------------


def detect_recurring_candidates(
    transactions: Iterable[Transaction],
    *,
    today: date,
    min_amount: Decimal = MIN_ELIGIBLE_AMOUNT,
    min_months: int = MIN_ELIGIBLE_MONTHS,
) -> list[RecurrenceCandidate]:
    """Rank per-merchant recurring signals.

    For each merchant among the eligible rows: the monthly amount is the sum
    over the most recent month with data, the month-to-date amount sums the
    current month up to ``today``, and the recurring amount is the median of
    the monthly sums. Weekly, biweekly, quarterly and annual merchants use
    the median payment scaled to one month for both amounts instead. Ordered
    by monthly amount descending, then merchant name ascending.
    """

    all_rows = list(transactions)
    eligible = select_eligible(all_rows, min_amount=min_amount, min_months=min_months)
    index = build_merchant_month_index(eligible)
    current = month_key(today)

    out: list[RecurrenceCandidate] = []
    for merchant_key, months in index.items():
        if not merchant_key:
            continue
        latest_month = max(months)
        rows = [t for ms in months.values() for t in ms]
        latest = _latest(rows)
        monthly_sums = [_outflow_sum(ms) for ms in months.values()]
        mtd = _outflow_sum(t for t in months.get(current, ()) if t.date <= today)
        score = compute_rule_score(rows)
        cadence = estimate_cadence([t.date for t in rows])
        if cadence in _PAYMENTS_PER_MONTH:
            per_payment = Decimal(median(abs(t.amount) for t in rows))
            recurring = monthly_equivalent(per_payment, cadence, latest.currency)
            monthly = recurring
        else:
            recurring = Decimal(median(monthly_sums))
            monthly = _outflow_sum(months[latest_month])
        out.append(
            RecurrenceCandidate(
                merchant_key=merchant_key,
                merchant=latest.display_merchant,
                representative_id=latest.id,
                currency=latest.currency,
                monthly_amount=monthly,
                mtd_amount=mtd,
                recurring_amount=recurring,
                months_seen=len(months),
                typical_day=int(median([t.date.day for t in rows])),
                cadence=cadence,
                rule_score=score.score if score is not None else 0.0,
                is_maybe=any(t.fixed_status in (None, "maybe") for t in rows),
                transaction_ids=tuple(t.id for t in sorted(rows, key=lambda t: (t.date, t.id))),
            )
        )

    out.sort(key=lambda c: (-c.monthly_amount, c.merchant.casefold()))
    return out



# ---- Subscription candidates -------------------------------------------------

SUBSCRIPTION_WINDOW_DAYS: int = 45

# Checked in order against lowercased merchant and description; first hit wins.
SUBSCRIPTION_PATTERNS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = tuple(
    (name, tuple(re.compile(p) for p in patterns))
    for name, patterns in (
        ("YouTube", (r"youtube(\s*premium|\s*music)?", r"google\s*youtube")),
        ("Netflix", (r"netflix",)),
        ("Spotify", (r"spotify",)),
        (
            "Apple Services",
            (r"apple\.com/bill", r"\bapple\s*(one|music|tv|icloud)\b", r"\bitunes\b",
             r"\bapp\s*store\b"),
        ),
        (
            "Google Services",
            (r"\bgoogle\s*one\b", r"\bgoogle\s*play\b", r"google\s*storage", r"g\.co/helppay"),
        ),
        ("Amazon Prime", (r"amazon\s*prime", r"\bprime\s*video\b")),
        ("Disney+", (r"disney\+|disney\s*plus",)),
        ("Hulu", (r"\bhulu\b",)),
        ("Max (HBO)", (r"\bhbo\b", r"\bmax\b")),
        ("Paramount+", (r"paramount\+|paramount\s*plus",)),
        ("Peacock", (r"peacock",)),
        (
            "Microsoft",
            (r"microsoft\s*365", r"\boffice\s*365\b", r"xbox\s*game\s*pass", r"\bxbox\b"),
        ),
        ("Adobe", (r"adobe", r"creative\s*cloud")),
        ("Dropbox", (r"dropbox",)),
        ("iCloud", (r"\bicloud\b",)),
        ("Zoom", (r"\bzoom\b",)),
        ("GitHub", (r"\bgithub\b",)),
        ("Patreon", (r"\bpatreon\b",)),
        ("NYTimes", (r"new\s*york\s*times|nytimes",)),
        ("Channel subscriptions", (r"channel\s*subscription",)),
        (
            "Subscription",
            (r"\bsubscription\b", r"\bmonthly\b", r"\bannual\b", r"\brecurring\b",
             r"\bmembership\b"),
        ),
    )
)


def match_subscription_pattern(text: str) -> str | None:
    """Name of the first subscription service whose pattern occurs in ``text``."""

    blob = text.casefold()
    for name, patterns in SUBSCRIPTION_PATTERNS:
        if any(p.search(blob) for p in patterns):
            return name
    return None


def detect_subscription_candidates(
    transactions: Iterable[Transaction],
    *,
    today: date,
    window_days: int = SUBSCRIPTION_WINDOW_DAYS,
) -> list[SubscriptionCandidate]:
    """Recent outflows at known subscription services, grouped by merchant.

    Catches subscriptions too new for :func:`detect_recurring_candidates`:
    a single non-zero outflow in the last ``window_days`` days is enough.
    Rows tagged ``not_fixed`` are skipped. Sorted by median amount
    descending, then merchant name.
    """

    start = today - timedelta(days=window_days)
    groups: dict[str, list[tuple[Transaction, str]]] = {}
    for tx in transactions:
        if (
            not tx.merchant_key
            or not start <= tx.date <= today
            or tx.amount == 0
            or tx.fixed_status == "not_fixed"
            or not is_expense_like(tx)
        ):
            continue
        service = match_subscription_pattern(f"{tx.merchant or ''} {tx.description or ''}")
        if service is not None:
            groups.setdefault(tx.merchant_key, []).append((tx, service))

    out: list[SubscriptionCandidate] = []
    for merchant_key, hits in groups.items():
        rows = [tx for tx, _ in hits]
        last = _latest(rows)
        out.append(
            SubscriptionCandidate(
                merchant_key=merchant_key,
                merchant=last.display_merchant,
                service=next(s for tx, s in hits if tx is last),
                representative_id=last.id,
                currency=last.currency,
                median_amount=quantize_amount(
                    Decimal(median(abs(t.amount) for t in rows)), last.currency
                ),
                occurrence_count=len(rows),
                last_date=last.date,
                day_of_month=last.date.day,
            )
        )

    out.sort(key=lambda c: (-c.median_amount, c.merchant.casefold()))
    _logger.debug("recurrence:subscription_candidates count=%d", len(out))
    return out


__all__ = [
    "CONFIDENT_FIXED_SCORE",
    "CONFIDENT_NOT_FIXED_SCORE",
    "DEFAULT_FIXED_CATEGORIES",
    "RuleScore",
    "apply_category_rules",
    "build_merchant_month_index",
    "compute_rule_score",
    "SUBSCRIPTION_PATTERNS",
    "SUBSCRIPTION_WINDOW_DAYS",
    "detect_recurring_candidates",
    "detect_subscription_candidates",
    "estimate_cadence",
    "is_expense_like",
    "is_fixed_category",
    "match_subscription_pattern",
    "median",
    "month_key",
    "monthly_equivalent",
    "rule_tags_for_history",
    "rule_verdict",
    "select_eligible",
]
