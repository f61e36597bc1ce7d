"""
Confidence scoring for bank / ledger transaction pairs.

A pair is only comparable when the amount difference is within the amount
tolerance and, with date range matching on, the dates are within the day
tolerance. Comparable pairs get a weighted average of an amount score, a
date score and a description score, clamped to [0, 1].
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.config import settings
from app.services.records import (
    AppTransaction,
    BankRecord,
    MatchAnalysis,
    MatchCandidate,
    MatchMethod,
    MatchOptions,
)
from app.utils.date_utils import days_between
from app.utils.text import description_similarity

AMOUNT_WEIGHT = Decimal("0.45")
DATE_WEIGHT = Decimal("0.35")
DESCRIPTION_WEIGHT = Decimal("0.20")

# Score lost when the amount difference sits exactly on the tolerance
AMOUNT_BOUNDARY_PENALTY = Decimal("0.05")
MIN_AMOUNT_SCALE = Decimal("0.01")
# Date score at the edge of the day tolerance
DATE_SCORE_FLOOR = Decimal("0.5")

CONFIDENCE_PLACES = Decimal("0.0001")
ONE = Decimal("1")
ZERO = Decimal("0")


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(value)).quantize(CONFIDENCE_PLACES, rounding=ROUND_HALF_UP)


def amount_score(amount_difference: Decimal, amount_tolerance: Decimal) -> Decimal:
    scale = max(amount_tolerance, MIN_AMOUNT_SCALE)
    return ONE - (amount_difference / scale) * AMOUNT_BOUNDARY_PENALTY


def date_score(date_difference_days: int, date_tolerance_days: int) -> Decimal:
    scale = Decimal(max(date_tolerance_days, 1))
    return ONE - (Decimal(date_difference_days) / scale) * (ONE - DATE_SCORE_FLOOR)


def calculate_confidence(
    bank: BankRecord,
    app: AppTransaction,
    use_description: bool = True,
    use_date_range: bool = True,
    date_tolerance_days: int = 2,
    amount_tolerance: Decimal = Decimal("0.01"),
) -> Optional[Decimal]:
    """
    Score a bank record against a ledger transaction.

    Returns None when the pair fails the amount gate or, with date range
    matching enabled, the date gate.
    """
    amount_difference = abs(bank.amount - app.amount)
    if amount_difference > amount_tolerance:
        return None

    weighted = AMOUNT_WEIGHT * amount_score(amount_difference, amount_tolerance)
    total_weight = AMOUNT_WEIGHT

    if use_date_range:
        day_diff = days_between(bank.transaction_date, app.transaction_date)
        if day_diff > date_tolerance_days:
            return None
        weighted += DATE_WEIGHT * date_score(day_diff, date_tolerance_days)
        total_weight += DATE_WEIGHT

    if use_description:
        similarity = _to_decimal(description_similarity(bank.description, app.description))
        weighted += DESCRIPTION_WEIGHT * similarity
        total_weight += DESCRIPTION_WEIGHT

    confidence = weighted / total_weight
    confidence = min(ONE, max(ZERO, confidence))
    return confidence.quantize(CONFIDENCE_PLACES, rounding=ROUND_HALF_UP)


def classify(confidence: Decimal, date_difference_days: int) -> Optional[MatchMethod]:
    """Exact needs a very high score on the same day; weak pairs get None."""
    if confidence >= settings.EXACT_MATCH_THRESHOLD and date_difference_days == 0:
        return MatchMethod.EXACT
    if confidence >= settings.MIN_MATCH_CONFIDENCE:
        return MatchMethod.FUZZY
    return None


def score_candidate(
    bank: BankRecord, app: AppTransaction, options: MatchOptions
) -> Optional[MatchCandidate]:
    """Build a candidate for the pair, or None if it can never be selected."""
    confidence = calculate_confidence(
        bank,
        app,
        use_description=options.use_description_matching,
        use_date_range=options.use_date_range_matching,
        date_tolerance_days=options.date_range_tolerance_days,
        amount_tolerance=options.amount_tolerance,
    )
    if confidence is None:
        return None

    day_diff = days_between(bank.transaction_date, app.transaction_date)
    method = classify(confidence, day_diff)
    if method is None:
        return None

    return MatchCandidate(
        bank=bank,
        app=app,
        confidence=confidence,
        method=method,
        date_difference_days=day_diff,
        amount_difference=abs(bank.amount - app.amount),
    )


def analyze_match(
    bank: BankRecord, app: AppTransaction, options: Optional[MatchOptions] = None
) -> MatchAnalysis:
    """Break a pair down into the signals behind its confidence."""
    options = options or MatchOptions.from_settings()
    amount_difference = abs(bank.amount - app.amount)
    day_diff = days_between(bank.transaction_date, app.transaction_date)
    similarity = _to_decimal(description_similarity(bank.description, app.description))

    return MatchAnalysis(
        amount_match=amount_difference < Decimal("0.01"),
        amount_difference=amount_difference,
        date_match=day_diff == 0,
        date_difference_days=day_diff,
        description_similar=similarity > Decimal("0.5"),
        description_similarity_score=similarity,
        confidence=calculate_confidence(
            bank,
            app,
            use_description=options.use_description_matching,
            use_date_range=options.use_date_range_matching,
            date_tolerance_days=options.date_range_tolerance_days,
            amount_tolerance=options.amount_tolerance,
        ),
    )


def match_reason(bank: BankRecord, app: AppTransaction, confidence: Decimal) -> str:
    reasons = []
    if abs(bank.amount - app.amount) < Decimal("0.01"):
        reasons.append("amount")
    if days_between(bank.transaction_date, app.transaction_date) <= 1:
        reasons.append("date")
    if description_similarity(bank.description, app.description) >= 0.7:
        reasons.append("description")

    reason = f"Matched on: {', '.join(reasons)}" if reasons else "Partial match"
    percent = (confidence * 100).quantize(ONE, rounding=ROUND_HALF_UP)
    return f"{reason} (confidence: {percent}%)"
