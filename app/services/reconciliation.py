"""Reconciliation workflow: loads ledger transactions, runs the matcher and persists items."""
import logging
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from app.config import settings
from app.models import Transaction, Reconciliation, ReconciliationItem, ReconciliationAuditLog
from app.services.confidence import analyze_match, classify, match_reason
from app.services.exceptions import (
    ReconciliationItemNotFoundError,
    ReconciliationNotFoundError,
    ReconciliationStateError,
    TransactionNotFoundError,
)
from app.services.matching import TransactionMatcher
from app.services.records import (
    AppTransaction,
    BankRecord,
    MatchAnalysis,
    MatchMethod,
    MatchOptions,
    MatchResult,
)

logger = logging.getLogger(__name__)

ITEM_MATCHED = "matched"
ITEM_UNMATCHED_BANK = "unmatched_bank"
ITEM_UNMATCHED_APP = "unmatched_app"

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


def bank_reference_data(record: BankRecord) -> dict:
    return {
        "bank_transaction_id": record.id,
        "amount": str(record.amount),
        "description": record.description,
        "transaction_date": record.transaction_date.isoformat(),
    }


def bank_record_from_reference(data: dict) -> BankRecord:
    return BankRecord(
        id=data["bank_transaction_id"],
        amount=Decimal(data["amount"]),
        description=data.get("description", ""),
        transaction_date=date.fromisoformat(data["transaction_date"]),
    )


def item_statistics(items: list[ReconciliationItem]) -> dict:
    return {
        "total_items": len(items),
        "matched": sum(1 for i in items if i.item_type == ITEM_MATCHED),
        "unmatched_bank": sum(1 for i in items if i.item_type == ITEM_UNMATCHED_BANK),
        "unmatched_app": sum(1 for i in items if i.item_type == ITEM_UNMATCHED_APP),
        "approved": sum(1 for i in items if i.is_approved),
    }


def to_app_transaction(transaction: Transaction) -> AppTransaction:
    return AppTransaction(
        id=transaction.id,
        amount=transaction.amount,
        description=transaction.description or "",
        transaction_date=transaction.transaction_date,
    )


class ReconciliationService:
    """Service for running and reviewing bank statement reconciliations."""

    def __init__(self, db: AsyncSession, matcher: Optional[TransactionMatcher] = None):
        self.db = db
        self.matcher = matcher or TransactionMatcher()

    async def create_reconciliation(
        self,
        account_id: int,
        statement_end_date: date,
        statement_end_balance: Optional[Decimal] = None,
    ) -> Reconciliation:
        reconciliation = Reconciliation(
            account_id=account_id,
            statement_end_date=statement_end_date,
            statement_end_balance=statement_end_balance,
            status=STATUS_IN_PROGRESS,
        )
        self.db.add(reconciliation)
        await self._commit()
        await self.db.refresh(reconciliation)
        logger.info(
            f"Created reconciliation {reconciliation.id} for account {account_id}"
        )
        return reconciliation

    async def get_reconciliation(self, reconciliation_id: int) -> Reconciliation:
        reconciliation = await self.db.get(Reconciliation, reconciliation_id)
        if not reconciliation:
            raise ReconciliationNotFoundError(reconciliation_id)
        return reconciliation

    async def get_open_reconciliation(self, reconciliation_id: int) -> Reconciliation:
        """Like get_reconciliation, but refuses completed reconciliations."""
        reconciliation = await self.get_reconciliation(reconciliation_id)
        if reconciliation.status == STATUS_COMPLETED:
            raise ReconciliationStateError(f"Reconciliation {reconciliation_id} is already completed")
        return reconciliation

    async def get_items(self, reconciliation_id: int) -> list[ReconciliationItem]:
        result = await self.db.execute(
            select(ReconciliationItem)
            .where(ReconciliationItem.reconciliation_id == reconciliation_id)
            .order_by(ReconciliationItem.id)
        )
        return list(result.scalars().all())

    async def get_item(self, reconciliation_id: int, item_id: int) -> ReconciliationItem:
        item = await self.db.get(ReconciliationItem, item_id)
        if not item or item.reconciliation_id != reconciliation_id:
            raise ReconciliationItemNotFoundError(item_id)
        return item

    async def get_details(self, reconciliation_id: int) -> dict:
        """Reconciliation with its items and per-type counts."""
        reconciliation = await self.get_reconciliation(reconciliation_id)
        items = await self.get_items(reconciliation_id)

        return {
            "reconciliation": reconciliation,
            "items": items,
            "summary": item_statistics(items),
        }

    async def load_app_transactions(
        self, account_id: int, start_date: date, end_date: date
    ) -> list[Transaction]:
        """Unreconciled ledger transactions of an account within the window."""
        stmt = (
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .where(Transaction.transaction_date >= start_date)
            .where(Transaction.transaction_date <= end_date)
            .where(Transaction.is_reconciled.is_(False))
            .order_by(Transaction.transaction_date, Transaction.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def run_matching(
        self,
        reconciliation_id: int,
        bank_records: list[BankRecord],
        options: Optional[MatchOptions] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> tuple[MatchResult, int]:
        """
        Match a bank statement against the ledger and persist the outcome.

        Previous items of the reconciliation are replaced. Returns the match
        result and the processing time in milliseconds.
        """
        start_time = datetime.now()
        reconciliation = await self.get_open_reconciliation(reconciliation_id)
        options = options or MatchOptions.from_settings()

        end_date = end_date or reconciliation.statement_end_date
        start_date = start_date or (
            reconciliation.statement_end_date - timedelta(days=settings.DEFAULT_STATEMENT_WINDOW_DAYS)
        )

        transactions = await self.load_app_transactions(
            reconciliation.account_id, start_date, end_date
        )
        logger.info(
            f"Reconciliation {reconciliation_id}: matching {len(bank_records)} bank transactions "
            f"against {len(transactions)} ledger transactions ({start_date} to {end_date})"
        )

        result = self.matcher.match(
            bank_records, [to_app_transaction(t) for t in transactions], options
        )

        await self.db.execute(
            delete(ReconciliationItem).where(
                ReconciliationItem.reconciliation_id == reconciliation_id
            )
        )

        for pair in result.matched_pairs:
            self.db.add(ReconciliationItem(
                reconciliation_id=reconciliation_id,
                transaction_id=pair.app.id,
                item_type=ITEM_MATCHED,
                match_confidence=pair.confidence,
                match_method=pair.method.value,
                match_reason=pair.reason,
                bank_reference_data=bank_reference_data(pair.bank),
            ))

        for app in result.unmatched_app_transactions:
            self.db.add(ReconciliationItem(
                reconciliation_id=reconciliation_id,
                transaction_id=app.id,
                item_type=ITEM_UNMATCHED_APP,
            ))

        for bank in result.unmatched_bank_records:
            self.db.add(ReconciliationItem(
                reconciliation_id=reconciliation_id,
                item_type=ITEM_UNMATCHED_BANK,
                bank_reference_data=bank_reference_data(bank),
            ))

        self.db.add(ReconciliationAuditLog(
            reconciliation_id=reconciliation_id,
            action="bank_statement_imported",
            details={
                "bank_transactions": result.total_bank_records,
                "app_transactions": result.total_app_transactions,
                "exact_matches": result.exact_matches,
                "fuzzy_matches": result.fuzzy_matches,
                "unmatched_bank": result.unmatched_bank,
                "unmatched_app": result.unmatched_app,
            },
        ))
        await self._commit()

        processing_time_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        return result, processing_time_ms

    async def manual_match(
        self,
        reconciliation_id: int,
        transaction_id: Optional[int] = None,
        bank_record: Optional[BankRecord] = None,
        notes: Optional[str] = None,
    ) -> tuple[ReconciliationItem, Optional[MatchAnalysis]]:
        """Record a hand-made pairing (or a one-sided item) on a reconciliation."""
        if transaction_id is None and bank_record is None:
            raise ValueError("Either transaction_id or bank_transaction must be provided")

        await self.get_open_reconciliation(reconciliation_id)

        transaction = None
        if transaction_id is not None:
            transaction = await self.db.get(Transaction, transaction_id)
            if not transaction:
                raise TransactionNotFoundError(transaction_id)

        superseded = []
        for existing in await self.get_items(reconciliation_id):
            claims_app = transaction_id is not None and existing.transaction_id == transaction_id
            claims_bank = (
                bank_record is not None
                and existing.bank_reference_data is not None
                and existing.bank_reference_data.get("bank_transaction_id") == bank_record.id
            )
            if not (claims_app or claims_bank):
                continue
            if existing.item_type == ITEM_MATCHED:
                side = f"Transaction {transaction_id}" if claims_app else f"Bank transaction {bank_record.id}"
                raise ReconciliationStateError(
                    f"{side} is already matched by item {existing.id}; unlink it first"
                )
            superseded.append(existing)

        for existing in superseded:
            await self.db.delete(existing)

        analysis = None
        confidence = None
        reason = notes
        if transaction is not None and bank_record is not None:
            app = to_app_transaction(transaction)
            analysis = analyze_match(bank_record, app)
            confidence = analysis.confidence
            if confidence is not None and reason is None:
                reason = match_reason(bank_record, app, confidence)

        if transaction is not None and bank_record is not None:
            item_type = ITEM_MATCHED
        elif transaction is not None:
            item_type = ITEM_UNMATCHED_APP
        else:
            item_type = ITEM_UNMATCHED_BANK

        item = ReconciliationItem(
            reconciliation_id=reconciliation_id,
            transaction_id=transaction_id,
            item_type=item_type,
            match_confidence=confidence,
            match_method=MatchMethod.MANUAL.value,
            match_reason=reason,
            bank_reference_data=bank_reference_data(bank_record) if bank_record else None,
        )
        self.db.add(item)
        self.db.add(ReconciliationAuditLog(
            reconciliation_id=reconciliation_id,
            action="manual_match",
            details={
                "transaction_id": transaction_id,
                "bank_transaction_id": bank_record.id if bank_record else None,
                "notes": notes,
                "replaced_items": [i.id for i in superseded],
            },
        ))
        await self._commit()
        await self.db.refresh(item)
        return item, analysis

    async def unlink(self, reconciliation_id: int, item_id: int) -> list[ReconciliationItem]:
        """
        Split a matched item back into its unmatched ledger and bank sides.

        An approved match also releases its ledger transaction so it can be
        reconciled again. Returns the items that replace the match.
        """
        await self.get_open_reconciliation(reconciliation_id)
        item = await self.get_item(reconciliation_id, item_id)
        if item.item_type != ITEM_MATCHED:
            raise ReconciliationStateError(f"Item {item_id} is not a matched item")

        if item.is_approved and item.transaction_id is not None:
            transaction = await self.db.get(Transaction, item.transaction_id)
            if transaction:
                transaction.is_reconciled = False
                transaction.status = "pending"

        replacements = []
        if item.transaction_id is not None:
            replacements.append(ReconciliationItem(
                reconciliation_id=reconciliation_id,
                transaction_id=item.transaction_id,
                item_type=ITEM_UNMATCHED_APP,
            ))
        if item.bank_reference_data:
            replacements.append(ReconciliationItem(
                reconciliation_id=reconciliation_id,
                item_type=ITEM_UNMATCHED_BANK,
                bank_reference_data=dict(item.bank_reference_data),
            ))

        details = {
            "item_id": item.id,
            "transaction_id": item.transaction_id,
            "bank_transaction_id": (item.bank_reference_data or {}).get("bank_transaction_id"),
            "was_approved": item.is_approved,
        }
        await self.db.delete(item)
        self.db.add_all(replacements)
        self.db.add(ReconciliationAuditLog(
            reconciliation_id=reconciliation_id,
            action="transaction_unlinked",
            details=details,
        ))
        await self._commit()
        for replacement in replacements:
            await self.db.refresh(replacement)

        logger.info(f"Reconciliation {reconciliation_id}: unlinked item {item_id}")
        return replacements

    async def import_unmatched(
        self,
        reconciliation_id: int,
        item_ids: Optional[list[int]] = None,
        import_all: bool = False,
    ) -> dict:
        """
        Create ledger transactions for unmatched bank lines.

        Each imported line becomes a manual match against its new transaction.
        """
        reconciliation = await self.get_open_reconciliation(reconciliation_id)
        if not import_all and not item_ids:
            return {
                "imported": 0,
                "skipped": 0,
                "created_transaction_ids": [],
                "errors": ["No items specified for import"],
            }

        items = [
            i for i in await self.get_items(reconciliation_id)
            if i.item_type == ITEM_UNMATCHED_BANK and (import_all or i.id in item_ids)
        ]

        created_ids = []
        skipped = 0
        errors = []
        for item in items:
            if item.transaction_id is not None:
                skipped += 1
                continue
            if not item.bank_reference_data:
                errors.append(f"Item {item.id} has no bank transaction data")
                skipped += 1
                continue
            try:
                record = bank_record_from_reference(item.bank_reference_data)
            except (KeyError, ValueError, ArithmeticError) as e:
                errors.append(f"Item {item.id} has unreadable bank transaction data: {e}")
                skipped += 1
                continue

            transaction = Transaction(
                account_id=reconciliation.account_id,
                amount=record.amount,
                description=record.description or "Unknown",
                transaction_date=record.transaction_date,
                status="cleared",
            )
            self.db.add(transaction)
            await self.db.flush()

            item.transaction_id = transaction.id
            item.item_type = ITEM_MATCHED
            item.match_method = MatchMethod.MANUAL.value
            item.match_confidence = Decimal("1.0000")
            item.match_reason = "Imported from bank statement"
            created_ids.append(transaction.id)

        if created_ids:
            self.db.add(ReconciliationAuditLog(
                reconciliation_id=reconciliation_id,
                action="unmatched_transactions_imported",
                details={"imported": len(created_ids), "transaction_ids": created_ids},
            ))
            await self._commit()

        logger.info(
            f"Reconciliation {reconciliation_id}: imported {len(created_ids)} unmatched bank transactions"
        )
        return {
            "imported": len(created_ids),
            "skipped": skipped,
            "created_transaction_ids": created_ids,
            "errors": errors,
        }

    async def finalize(
        self,
        reconciliation_id: int,
        notes: Optional[str] = None,
        force: bool = False,
    ) -> Reconciliation:
        """
        Complete a reconciliation and mark its matched transactions reconciled.

        Refuses when the unmatched share exceeds FINALIZE_MAX_UNMATCHED_PERCENTAGE
        unless force is set.
        """
        reconciliation = await self.get_open_reconciliation(reconciliation_id)
        items = await self.get_items(reconciliation_id)
        stats = item_statistics(items)

        unmatched = stats["unmatched_bank"] + stats["unmatched_app"]
        unmatched_percentage = Decimal("0")
        match_percentage = Decimal("0")
        if stats["total_items"]:
            unmatched_percentage = (
                Decimal(unmatched) * 100 / stats["total_items"]
            ).quantize(Decimal("0.01"))
            match_percentage = (
                Decimal(stats["matched"]) * 100 / stats["total_items"]
            ).quantize(Decimal("0.01"))

        if unmatched_percentage > settings.FINALIZE_MAX_UNMATCHED_PERCENTAGE and not force:
            raise ReconciliationStateError(
                f"{unmatched_percentage}% of items are unmatched "
                f"(limit {settings.FINALIZE_MAX_UNMATCHED_PERCENTAGE}%); finalize with force to override"
            )

        marked = 0
        for item in items:
            if item.item_type != ITEM_MATCHED or item.transaction_id is None:
                continue
            transaction = await self.db.get(Transaction, item.transaction_id)
            if transaction and not transaction.is_reconciled:
                transaction.is_reconciled = True
                transaction.status = "reconciled"
                marked += 1

        reconciliation.status = STATUS_COMPLETED
        reconciliation.completed_at = datetime.now(timezone.utc)
        self.db.add(ReconciliationAuditLog(
            reconciliation_id=reconciliation_id,
            action="reconciliation_completed",
            details={
                **stats,
                "match_percentage": str(match_percentage),
                "transactions_marked_reconciled": marked,
                "notes": notes,
                "force_finalized": force,
            },
        ))
        await self._commit()
        await self.db.refresh(reconciliation)

        logger.info(
            f"Reconciliation {reconciliation_id} completed: {stats['matched']} matched, "
            f"{unmatched} unmatched, {marked} transactions marked reconciled"
        )
        return reconciliation

    async def bulk_approve(
        self,
        reconciliation_id: int,
        min_confidence: Optional[Decimal] = None,
        item_ids: Optional[list[int]] = None,
    ) -> dict:
        """
        Approve matched items and mark their ledger transactions reconciled.

        With item_ids only those items are considered; otherwise every matched
        item at or above min_confidence is approved.
        """
        await self.get_open_reconciliation(reconciliation_id)
        if min_confidence is None:
            min_confidence = settings.BULK_APPROVE_MIN_CONFIDENCE

        items = await self.get_items(reconciliation_id)
        candidates = [
            i for i in items
            if i.item_type == ITEM_MATCHED and not i.is_approved and i.transaction_id is not None
        ]

        approved = 0
        errors = []
        for item in candidates:
            if item_ids:
                if item.id not in item_ids:
                    continue
            elif item.match_confidence is None or item.match_confidence < min_confidence:
                continue

            transaction = await self.db.get(Transaction, item.transaction_id)
            if not transaction:
                errors.append(f"Transaction {item.transaction_id} for item {item.id} not found")
                continue

            item.is_approved = True
            transaction.is_reconciled = True
            transaction.status = "reconciled"
            approved += 1

        if approved:
            self.db.add(ReconciliationAuditLog(
                reconciliation_id=reconciliation_id,
                action="matches_approved",
                details={"approved": approved, "min_confidence": str(min_confidence)},
            ))
            await self._commit()

        logger.info(f"Reconciliation {reconciliation_id}: approved {approved} matched items")
        return {"approved": approved, "skipped": len(candidates) - approved, "errors": errors}

    async def item_context(self, item: ReconciliationItem) -> dict:
        """Bank and ledger sides of an item, plus analysis when both exist."""
        bank = (
            bank_record_from_reference(item.bank_reference_data)
            if item.bank_reference_data else None
        )
        app = None
        if item.transaction_id is not None:
            transaction = await self.db.get(Transaction, item.transaction_id)
            if transaction:
                app = to_app_transaction(transaction)

        analysis = None
        method = None
        if bank and app:
            analysis = analyze_match(bank, app)
            if analysis.confidence is not None:
                method = classify(analysis.confidence, analysis.date_difference_days)
        return {"bank": bank, "app": app, "analysis": analysis, "method": method}

    async def _commit(self):
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Database commit failed")
            raise
