from app.schemas.matching import (
    BankTransactionIn,
    AppTransactionIn,
    MatchOptionsIn,
    MatchPreviewRequest,
    MatchResultResponse,
    ConfidenceRequest,
    MatchAnalysisResponse
)
from app.schemas.reconciliation import (
    ReconciliationCreate,
    ReconciliationResponse,
    ReconciliationDetailResponse,
    MatchTransactionsRequest,
    MatchTransactionsResponse,
    ManualMatchRequest,
    BulkApproveRequest
)

__all__ = [
    "BankTransactionIn", "AppTransactionIn", "MatchOptionsIn",
    "MatchPreviewRequest", "MatchResultResponse", "ConfidenceRequest", "MatchAnalysisResponse",
    "ReconciliationCreate", "ReconciliationResponse", "ReconciliationDetailResponse",
    "MatchTransactionsRequest", "MatchTransactionsResponse", "ManualMatchRequest", "BulkApproveRequest"
]
