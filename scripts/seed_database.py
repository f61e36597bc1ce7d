#!/usr/bin/env python3
"""
Database seeding script for the reconciliation system.

Reads the generated ledger from the data/ directory into the transactions
table. With --reconcile the generated bank statement is matched against it
through ReconciliationService.

Usage:
    python -m scripts.seed_database
    python -m scripts.seed_database --reconcile
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add the project root to the path so we can import app modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.database import AsyncSessionLocal, engine, init_db
from app.logging_config import configure_logging
from app.models import Transaction
from app.schemas.matching import BankTransactionIn
from app.services.reconciliation import ReconciliationService

logger = logging.getLogger("scripts.seed_database")

DATA_DIR = project_root / "data"
LEDGER_FILE = DATA_DIR / "ledger.json"
STATEMENT_FILE = DATA_DIR / "bank_statement.json"
SUMMARY_FILE = DATA_DIR / "data_summary.json"


def load_json_file(file_path: Path):
    if not file_path.exists():
        logger.warning(f"File not found: {file_path}")
        return None

    with open(file_path, "r") as f:
        return json.load(f)


def parse_ledger(data: list[dict]) -> list[Transaction]:
    transactions = []
    for item in data:
        try:
            transactions.append(Transaction(
                account_id=item["account_id"],
                amount=Decimal(item["amount"]),
                description=item.get("description", ""),
                transaction_date=date.fromisoformat(item["transaction_date"]),
                category_name=item.get("category_name"),
            ))
        except (KeyError, ValueError, ArithmeticError) as e:
            logger.error(f"Error parsing ledger entry {item.get('ledger_id', 'unknown')}: {e}")
    return transactions


async def seed_database(reconcile: bool = False):
    await init_db()

    ledger_data = load_json_file(LEDGER_FILE)
    if not ledger_data:
        logger.error("No ledger to seed. Run scripts/generate_test_data.py first.")
        await engine.dispose()
        return

    transactions = parse_ledger(ledger_data)
    async with AsyncSessionLocal() as session:
        session.add_all(transactions)
        await session.commit()
        logger.info(f"Seeded {len(transactions)} of {len(ledger_data)} ledger transactions")

        if reconcile:
            await run_reconciliation(session)

    await engine.dispose()


async def run_reconciliation(session):
    summary = load_json_file(SUMMARY_FILE)
    statement = load_json_file(STATEMENT_FILE)
    if not summary or statement is None:
        logger.error("Bank statement or summary missing; skipping reconciliation")
        return

    service = ReconciliationService(session)
    reconciliation = await service.create_reconciliation(
        summary["account_id"], date.fromisoformat(summary["statement_end_date"])
    )
    result, processing_time_ms = await service.run_matching(
        reconciliation.id,
        [BankTransactionIn(**line).to_record() for line in statement],
        start_date=date.fromisoformat(summary["statement_start_date"]),
    )

    print()
    print(f"{'Reconciliation':<24} {reconciliation.id}")
    print(f"{'Exact matches':<24} {result.exact_matches}")
    print(f"{'Fuzzy matches':<24} {result.fuzzy_matches}")
    print(f"{'Unmatched bank':<24} {result.unmatched_bank}")
    print(f"{'Unmatched ledger':<24} {result.unmatched_app}")
    print(f"{'Match rate':<24} {result.overall_match_percentage}%")
    print(f"{'Processing time':<24} {processing_time_ms} ms")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the ledger from generated test data")
    parser.add_argument("--reconcile", action="store_true", help="also match the generated bank statement")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(seed_database(reconcile=args.reconcile))
