from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.matching import MatchAnalysisResponse
from app.schemas.reconciliation import (
    BulkApproveRequest,
    BulkApproveResponse,
    FinalizeRequest,
    ImportUnmatchedRequest,
    ImportUnmatchedResponse,
    ItemExplanationResponse,
    ManualMatchRequest,
    ManualMatchResponse,
    MatchTransactionsRequest,
    MatchTransactionsResponse,
    ReconciliationCreate,
    ReconciliationDetailResponse,
    ReconciliationItemResponse,
    ReconciliationResponse,
    ReconciliationSummary,
    UnlinkResponse,
)
from app.services.ai_analysis import AIAnalysisService
from app.services.exceptions import (
    InvalidMatchInputError,
    ReconciliationItemNotFoundError,
    ReconciliationNotFoundError,
    ReconciliationStateError,
    TransactionNotFoundError,
)
from app.services.reconciliation import ReconciliationService

router = APIRouter()


@router.post("", response_model=ReconciliationResponse, status_code=201)
async def create_reconciliation(
    data: ReconciliationCreate,
    db: AsyncSession = Depends(get_db),
):
    """Start a reconciliation for an account statement."""
    service = ReconciliationService(db)
    reconciliation = await service.create_reconciliation(
        data.account_id, data.statement_end_date, data.statement_end_balance
    )
    return ReconciliationResponse.model_validate(reconciliation)


@router.get("/{reconciliation_id}", response_model=ReconciliationDetailResponse)
async def get_reconciliation(
    reconciliation_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a reconciliation with its items."""
    service = ReconciliationService(db)
    try:
        details = await service.get_details(reconciliation_id)
    except ReconciliationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ReconciliationDetailResponse(
        reconciliation=ReconciliationResponse.model_validate(details["reconciliation"]),
        items=[ReconciliationItemResponse.model_validate(i) for i in details["items"]],
        summary=ReconciliationSummary(**details["summary"]),
    )


@router.post("/{reconciliation_id}/match", response_model=MatchTransactionsResponse)
async def match_transactions(
    reconciliation_id: int,
    request: MatchTransactionsRequest,
    db: AsyncSession = Depends(get_db),
):
    """Match a bank statement against the account's ledger and store the result."""
    service = ReconciliationService(db)
    try:
        result, processing_time_ms = await service.run_matching(
            reconciliation_id,
            [b.to_record() for b in request.bank_transactions],
            options=request.options.to_options(),
            start_date=request.start_date,
            end_date=request.end_date,
        )
    except ReconciliationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidMatchInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ReconciliationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return MatchTransactionsResponse(
        reconciliation_id=reconciliation_id,
        total_bank_transactions=result.total_bank_records,
        total_app_transactions=result.total_app_transactions,
        exact_matches=result.exact_matches,
        fuzzy_matches=result.fuzzy_matches,
        unmatched_bank=result.unmatched_bank,
        unmatched_app=result.unmatched_app,
        overall_match_percentage=result.overall_match_percentage,
        processing_time_ms=processing_time_ms,
    )


@router.post("/{reconciliation_id}/manual-match", response_model=ManualMatchResponse)
async def manual_match(
    reconciliation_id: int,
    request: ManualMatchRequest,
    db: AsyncSession = Depends(get_db),
):
    """Link a ledger transaction and/or a bank transaction by hand."""
    if request.transaction_id is None and request.bank_transaction is None:
        raise HTTPException(
            status_code=400,
            detail="Either transaction_id or bank_transaction must be provided",
        )

    service = ReconciliationService(db)
    try:
        item, analysis = await service.manual_match(
            reconciliation_id,
            transaction_id=request.transaction_id,
            bank_record=request.bank_transaction.to_record() if request.bank_transaction else None,
            notes=request.notes,
        )
    except (ReconciliationNotFoundError, TransactionNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReconciliationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ManualMatchResponse(
        item=ReconciliationItemResponse.model_validate(item),
        analysis=MatchAnalysisResponse.from_analysis(analysis) if analysis else None,
    )


@router.post("/{reconciliation_id}/approve", response_model=BulkApproveResponse)
async def bulk_approve(
    reconciliation_id: int,
    request: BulkApproveRequest,
    db: AsyncSession = Depends(get_db),
):
    """Approve matched items above a confidence threshold, or a given set of items."""
    service = ReconciliationService(db)
    try:
        result = await service.bulk_approve(
            reconciliation_id,
            min_confidence=request.min_confidence,
            item_ids=request.item_ids,
        )
    except ReconciliationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReconciliationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return BulkApproveResponse(**result)


@router.post(
    "/{reconciliation_id}/items/{item_id}/explain",
    response_model=ItemExplanationResponse,
)
async def explain_item(
    reconciliation_id: int,
    item_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Explain a reconciliation item in plain language."""
    service = ReconciliationService(db)
    try:
        item = await service.get_item(reconciliation_id, item_id)
    except ReconciliationItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    context = await service.item_context(item)
    explanation = await AIAnalysisService().explain_item(
        context["bank"], context["app"], context["analysis"], context["method"]
    )
    return ItemExplanationResponse(item_id=item.id, **explanation)


@router.delete(
    "/{reconciliation_id}/items/{item_id}/unlink",
    response_model=UnlinkResponse,
)
async def unlink_item(
    reconciliation_id: int,
    item_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Split a matched item back into unmatched ledger and bank items."""
    service = ReconciliationService(db)
    try:
        items = await service.unlink(reconciliation_id, item_id)
    except (ReconciliationNotFoundError, ReconciliationItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReconciliationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return UnlinkResponse(items=[ReconciliationItemResponse.model_validate(i) for i in items])


@router.post("/{reconciliation_id}/import-unmatched", response_model=ImportUnmatchedResponse)
async def import_unmatched(
    reconciliation_id: int,
    request: ImportUnmatchedRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create ledger transactions for unmatched bank transactions."""
    service = ReconciliationService(db)
    try:
        result = await service.import_unmatched(
            reconciliation_id, item_ids=request.item_ids, import_all=request.import_all
        )
    except ReconciliationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReconciliationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ImportUnmatchedResponse(**result)


@router.post("/{reconciliation_id}/finalize", response_model=ReconciliationResponse)
async def finalize_reconciliation(
    reconciliation_id: int,
    request: FinalizeRequest,
    db: AsyncSession = Depends(get_db),
):
    """Complete a reconciliation and mark its matched transactions reconciled."""
    service = ReconciliationService(db)
    try:
        reconciliation = await service.finalize(
            reconciliation_id, notes=request.notes, force=request.force_finalize
        )
    except ReconciliationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReconciliationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ReconciliationResponse.model_validate(reconciliation)
