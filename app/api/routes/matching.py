from fastapi import APIRouter, HTTPException

from app.schemas.matching import (
    ConfidenceRequest,
    MatchAnalysisResponse,
    MatchPreviewRequest,
    MatchResultResponse,
)
from app.services.confidence import analyze_match, classify
from app.services.exceptions import InvalidMatchInputError
from app.services.matching import TransactionMatcher

router = APIRouter()

matcher = TransactionMatcher()


@router.post("/preview", response_model=MatchResultResponse)
async def preview_matches(request: MatchPreviewRequest):
    """Match bank transactions against ledger transactions without persisting anything."""
    try:
        result = matcher.match(
            [b.to_record() for b in request.bank_transactions],
            [a.to_record() for a in request.app_transactions],
            request.options.to_options(),
        )
    except InvalidMatchInputError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return MatchResultResponse.from_result(result)


@router.post("/confidence", response_model=MatchAnalysisResponse)
async def score_pair(request: ConfidenceRequest):
    """Score a single bank / ledger pair and break down the signals."""
    analysis = analyze_match(
        request.bank_transaction.to_record(),
        request.app_transaction.to_record(),
        request.options.to_options(),
    )
    method = None
    if analysis.confidence is not None:
        classified = classify(analysis.confidence, analysis.date_difference_days)
        method = classified.value if classified else None

    return MatchAnalysisResponse.from_analysis(analysis, match_method=method)
