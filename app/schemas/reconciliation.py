from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from app.config import settings
from app.schemas.matching import BankTransactionIn, MatchOptionsIn, MatchAnalysisResponse


class ReconciliationCreate(BaseModel):
    account_id: int = Field(..., gt=0)
    statement_end_date: date
    statement_end_balance: Optional[Decimal] = None


class ReconciliationResponse(BaseModel):
    id: int
    account_id: int
    statement_end_date: date
    statement_end_balance: Optional[Decimal]
    status: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReconciliationItemResponse(BaseModel):
    id: int
    reconciliation_id: int
    transaction_id: Optional[int]
    item_type: str
    match_confidence: Optional[Decimal]
    match_method: Optional[str]
    match_reason: Optional[str]
    bank_reference_data: Optional[dict]
    is_approved: bool

    class Config:
        from_attributes = True


class ReconciliationSummary(BaseModel):
    total_items: int = 0
    matched: int = 0
    unmatched_bank: int = 0
    unmatched_app: int = 0
    approved: int = 0


class ReconciliationDetailResponse(BaseModel):
    reconciliation: ReconciliationResponse
    items: list[ReconciliationItemResponse]
    summary: ReconciliationSummary


class MatchTransactionsRequest(BaseModel):
    bank_transactions: list[BankTransactionIn]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    options: MatchOptionsIn = Field(default_factory=MatchOptionsIn)

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class MatchTransactionsResponse(BaseModel):
    reconciliation_id: int
    total_bank_transactions: int
    total_app_transactions: int
    exact_matches: int
    fuzzy_matches: int
    unmatched_bank: int
    unmatched_app: int
    overall_match_percentage: Decimal
    processing_time_ms: int


class ManualMatchRequest(BaseModel):
    transaction_id: Optional[int] = None
    bank_transaction: Optional[BankTransactionIn] = None
    notes: Optional[str] = Field(default=None, max_length=200)


class ManualMatchResponse(BaseModel):
    item: ReconciliationItemResponse
    analysis: Optional[MatchAnalysisResponse] = None


class BulkApproveRequest(BaseModel):
    min_confidence: Decimal = Field(
        default_factory=lambda: settings.BULK_APPROVE_MIN_CONFIDENCE, ge=0, le=1
    )
    item_ids: Optional[list[int]] = None


class BulkApproveResponse(BaseModel):
    approved: int
    skipped: int
    errors: list[str] = []


class ItemExplanationResponse(BaseModel):
    item_id: int
    explanation: str
    recommendation: Optional[str] = None
    ai_generated: bool


class UnlinkResponse(BaseModel):
    items: list[ReconciliationItemResponse]


class ImportUnmatchedRequest(BaseModel):
    item_ids: Optional[list[int]] = None
    import_all: bool = False


class ImportUnmatchedResponse(BaseModel):
    imported: int
    skipped: int
    created_transaction_ids: list[int] = []
    errors: list[str] = []


class FinalizeRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)
    force_finalize: bool = False
