"""Pairwise similarity scoring for invoice deduplication.

Every function returns a score in [0, 1] and never raises on missing or
malformed input; insufficient data simply scores 0.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from dedup.hashing import coerce_amount, coerce_date
from dedup.models import ScoreBreakdown, ScoringWeights


DEFAULT_WEIGHTS = ScoringWeights().as_dict()

# Score key -> weight key
SCORE_WEIGHT_KEYS = {
    "vendor_match": "vendor_name",
    "invoice_number_match": "invoice_number",
    "date_proximity": "invoice_date",
    "amount_match": "total_amount",
}


def levenshtein_distance(s1: str, s2: str) -> int:
    """Classic O(n*m) edit distance."""
    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def vendor_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    """Levenshtein similarity of two vendor names (case-insensitive).

    Examples:
        >>> vendor_similarity("Adobe Systems", "ADOBE SYSTEMS")
        1.0
        >>> vendor_similarity("", "Adobe")
        0.0
    """
    if not name1 or not name2:
        return 0.0

    normalized1 = str(name1).strip().lower()
    normalized2 = str(name2).strip().lower()
    if not normalized1 or not normalized2:
        return 0.0
    if normalized1 == normalized2:
        return 1.0

    distance = levenshtein_distance(normalized1, normalized2)
    max_length = max(len(normalized1), len(normalized2))
    return max(0.0, min(1.0, 1.0 - distance / max_length))


def date_proximity(date1: Any, date2: Any, tolerance_days: int = 1) -> float:
    """Score how close two dates are.

    Same day 1.0, within tolerance 0.9, within 2x 0.7, within 7x 0.5.
    """
    d1 = coerce_date(date1)
    d2 = coerce_date(date2)
    if d1 is None or d2 is None:
        return 0.0

    diff_days = abs((d1 - d2).days)
    if diff_days == 0:
        return 1.0
    if diff_days <= tolerance_days:
        return 0.9
    if diff_days <= tolerance_days * 2:
        return 0.7
    if diff_days <= tolerance_days * 7:
        return 0.5
    return 0.0


def amount_match(amount1: Any, amount2: Any, tolerance: Any = Decimal("0.01")) -> float:
    """Score how close two amounts are.

    Exact 1.0; within the absolute tolerance (rounding) 0.95; within 1%
    relative 0.9; within 5% relative 0.7.
    """
    a1 = coerce_amount(amount1)
    a2 = coerce_amount(amount2)
    if a1 is None or a2 is None:
        return 0.0

    diff = abs(a1 - a2)
    if diff == 0:
        return 1.0
    if diff <= coerce_amount(tolerance):
        return 0.95

    reference = max(abs(a1), abs(a2))
    if reference == 0:
        return 0.0
    percent_diff = diff / reference
    if percent_diff <= Decimal("0.01"):
        return 0.9
    if percent_diff <= Decimal("0.05"):
        return 0.7
    return 0.0


def invoice_number_match(num1: Any, num2: Any) -> float:
    """Exact (trimmed, uppercased) 1.0; one contains the other 0.8."""
    if num1 is None or num2 is None:
        return 0.0

    normalized1 = str(num1).strip().upper()
    normalized2 = str(num2).strip().upper()
    if not normalized1 or not normalized2:
        return 0.0
    if normalized1 == normalized2:
        return 1.0
    if normalized1 in normalized2 or normalized2 in normalized1:
        return 0.8
    return 0.0


def overall_score(
    scores: Mapping[str, float],
    weights: Optional[Mapping[str, float]] = None,
) -> float:
    """Weighted average of the factor scores.

    Weights are renormalized by their sum, so a partial weight set (say only
    vendor_name and total_amount) still yields a score in [0, 1]. Factors
    without a weight do not contribute.

    Args:
        scores: vendor_match, invoice_number_match, date_proximity, amount_match
        weights: vendor_name, invoice_number, invoice_date, total_amount

    Returns:
        Score in [0, 1]
    """
    if weights is None:
        weights = DEFAULT_WEIGHTS

    weighted_sum = 0.0
    total_weight = 0.0
    for score_key, weight_key in SCORE_WEIGHT_KEYS.items():
        weight = weights.get(weight_key)
        if not weight:
            continue
        total_weight += weight
        weighted_sum += float(scores.get(score_key, 0.0) or 0.0) * weight

    if total_weight <= 0:
        return 0.0
    return max(0.0, min(1.0, weighted_sum / total_weight))


def score_invoice_pair(
    new: Mapping[str, Any],
    existing: Mapping[str, Any],
    weights: Optional[Mapping[str, float]] = None,
    tolerance_days: int = 1,
    amount_tolerance: Any = Decimal("0.01"),
) -> ScoreBreakdown:
    """Score two invoices given as {vendor_name, invoice_number, invoice_date, total_amount}."""
    scores = {
        "vendor_match": vendor_similarity(new.get("vendor_name"), existing.get("vendor_name")),
        "invoice_number_match": invoice_number_match(new.get("invoice_number"), existing.get("invoice_number")),
        "date_proximity": date_proximity(new.get("invoice_date"), existing.get("invoice_date"), tolerance_days),
        "amount_match": amount_match(new.get("total_amount"), existing.get("total_amount"), amount_tolerance),
    }
    return ScoreBreakdown(**scores, overall_score=overall_score(scores, weights))
