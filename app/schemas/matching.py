from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from app.config import settings
from app.services.records import (
    AppTransaction,
    BankRecord,
    MatchAnalysis,
    MatchOptions,
    MatchResult,
    MatchedPair,
)


class BankTransactionIn(BaseModel):
    bank_transaction_id: str = Field(..., min_length=1, description="Provider-assigned transaction ID")
    amount: Decimal = Field(..., description="Signed amount, negative for outflows")
    description: str = Field(default="", description="Statement description")
    transaction_date: date

    def to_record(self) -> BankRecord:
        return BankRecord(
            id=self.bank_transaction_id,
            amount=self.amount,
            description=self.description,
            transaction_date=self.transaction_date,
        )

    @classmethod
    def from_record(cls, record: BankRecord) -> "BankTransactionIn":
        return cls(
            bank_transaction_id=record.id,
            amount=record.amount,
            description=record.description,
            transaction_date=record.transaction_date,
        )


class AppTransactionIn(BaseModel):
    id: int
    amount: Decimal
    description: str = ""
    transaction_date: date

    def to_record(self) -> AppTransaction:
        return AppTransaction(
            id=self.id,
            amount=self.amount,
            description=self.description,
            transaction_date=self.transaction_date,
        )


class MatchOptionsIn(BaseModel):
    tolerance_amount: Decimal = Field(default_factory=lambda: settings.MATCH_AMOUNT_TOLERANCE, ge=0)
    use_description_matching: bool = Field(default_factory=lambda: settings.USE_DESCRIPTION_MATCHING)
    use_date_range_matching: bool = Field(default_factory=lambda: settings.USE_DATE_RANGE_MATCHING)
    date_range_tolerance_days: int = Field(default_factory=lambda: settings.DATE_RANGE_TOLERANCE_DAYS, ge=0)

    def to_options(self) -> MatchOptions:
        return MatchOptions(
            amount_tolerance=self.tolerance_amount,
            use_description_matching=self.use_description_matching,
            use_date_range_matching=self.use_date_range_matching,
            date_range_tolerance_days=self.date_range_tolerance_days,
        )


class MatchPreviewRequest(BaseModel):
    bank_transactions: list[BankTransactionIn]
    app_transactions: list[AppTransactionIn]
    options: MatchOptionsIn = Field(default_factory=MatchOptionsIn)


class MatchedPairResponse(BaseModel):
    bank_transaction: BankTransactionIn
    app_transaction: AppTransactionIn
    match_method: str
    match_confidence: Decimal
    match_reason: str

    @classmethod
    def from_pair(cls, pair: MatchedPair) -> "MatchedPairResponse":
        return cls(
            bank_transaction=BankTransactionIn.from_record(pair.bank),
            app_transaction=AppTransactionIn(
                id=pair.app.id,
                amount=pair.app.amount,
                description=pair.app.description,
                transaction_date=pair.app.transaction_date,
            ),
            match_method=pair.method.value,
            match_confidence=pair.confidence,
            match_reason=pair.reason,
        )


class MatchResultResponse(BaseModel):
    total_bank_transactions: int
    total_app_transactions: int
    exact_matches: int
    fuzzy_matches: int
    unmatched_bank: int
    unmatched_app: int
    overall_match_percentage: Decimal
    matched_pairs: list[MatchedPairResponse]
    unmatched_bank_transactions: list[BankTransactionIn]
    unmatched_app_transactions: list[AppTransactionIn]

    @classmethod
    def from_result(cls, result: MatchResult) -> "MatchResultResponse":
        return cls(
            total_bank_transactions=result.total_bank_records,
            total_app_transactions=result.total_app_transactions,
            exact_matches=result.exact_matches,
            fuzzy_matches=result.fuzzy_matches,
            unmatched_bank=result.unmatched_bank,
            unmatched_app=result.unmatched_app,
            overall_match_percentage=result.overall_match_percentage,
            matched_pairs=[MatchedPairResponse.from_pair(p) for p in result.matched_pairs],
            unmatched_bank_transactions=[
                BankTransactionIn.from_record(b) for b in result.unmatched_bank_records
            ],
            unmatched_app_transactions=[
                AppTransactionIn(
                    id=a.id,
                    amount=a.amount,
                    description=a.description,
                    transaction_date=a.transaction_date,
                )
                for a in result.unmatched_app_transactions
            ],
        )


class ConfidenceRequest(BaseModel):
    bank_transaction: BankTransactionIn
    app_transaction: AppTransactionIn
    options: MatchOptionsIn = Field(default_factory=MatchOptionsIn)


class MatchAnalysisResponse(BaseModel):
    amount_match: bool
    amount_difference: Decimal
    date_match: bool
    date_difference_days: int
    description_similar: bool
    description_similarity_score: Decimal
    confidence: Optional[Decimal]
    match_method: Optional[str] = None

    @classmethod
    def from_analysis(
        cls, analysis: MatchAnalysis, match_method: Optional[str] = None
    ) -> "MatchAnalysisResponse":
        return cls(
            amount_match=analysis.amount_match,
            amount_difference=analysis.amount_difference,
            date_match=analysis.date_match,
            date_difference_days=analysis.date_difference_days,
            description_similar=analysis.description_similar,
            description_similarity_score=analysis.description_similarity_score,
            confidence=analysis.confidence,
            match_method=match_method,
        )
