"""Value types shared by the confidence scorer and the transaction matcher.

Everything here is immutable and free of I/O so a matching run can be
invoked from request handlers, scripts or tests without a database.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from app.config import settings


class MatchMethod(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    MANUAL = "manual"


@dataclass(frozen=True)
class BankRecord:
    """A transaction reported by a bank feed or statement."""

    id: str
    amount: Decimal
    description: str
    transaction_date: date


@dataclass(frozen=True)
class AppTransaction:
    """A transaction already recorded in the ledger."""

    id: int
    amount: Decimal
    description: str
    transaction_date: date


@dataclass(frozen=True)
class MatchOptions:
    amount_tolerance: Decimal = Decimal("0.01")
    use_description_matching: bool = True
    use_date_range_matching: bool = True
    date_range_tolerance_days: int = 2

    @classmethod
    def from_settings(cls) -> "MatchOptions":
        return cls(
            amount_tolerance=settings.MATCH_AMOUNT_TOLERANCE,
            use_description_matching=settings.USE_DESCRIPTION_MATCHING,
            use_date_range_matching=settings.USE_DATE_RANGE_MATCHING,
            date_range_tolerance_days=settings.DATE_RANGE_TOLERANCE_DAYS,
        )


@dataclass(frozen=True)
class MatchCandidate:
    bank: BankRecord
    app: AppTransaction
    confidence: Decimal
    method: MatchMethod
    date_difference_days: int
    amount_difference: Decimal


@dataclass(frozen=True)
class MatchedPair:
    bank: BankRecord
    app: AppTransaction
    method: MatchMethod
    confidence: Decimal
    reason: str = ""


@dataclass(frozen=True)
class MatchAnalysis:
    amount_match: bool
    amount_difference: Decimal
    date_match: bool
    date_difference_days: int
    description_similar: bool
    description_similarity_score: Decimal
    confidence: Optional[Decimal]


@dataclass
class MatchResult:
    matched_pairs: list[MatchedPair] = field(default_factory=list)
    unmatched_bank_records: list[BankRecord] = field(default_factory=list)
    unmatched_app_transactions: list[AppTransaction] = field(default_factory=list)

    @property
    def exact_matches(self) -> int:
        return sum(1 for p in self.matched_pairs if p.method == MatchMethod.EXACT)

    @property
    def fuzzy_matches(self) -> int:
        return sum(1 for p in self.matched_pairs if p.method == MatchMethod.FUZZY)

    @property
    def unmatched_bank(self) -> int:
        return len(self.unmatched_bank_records)

    @property
    def unmatched_app(self) -> int:
        return len(self.unmatched_app_transactions)

    @property
    def total_bank_records(self) -> int:
        return len(self.matched_pairs) + self.unmatched_bank

    @property
    def total_app_transactions(self) -> int:
        return len(self.matched_pairs) + self.unmatched_app

    @property
    def overall_match_percentage(self) -> Decimal:
        total = self.total_bank_records + self.total_app_transactions
        if total == 0:
            return Decimal("0")
        pct = Decimal(len(self.matched_pairs) * 2) / Decimal(total) * 100
        return pct.quantize(Decimal("0.1"))
