#!/usr/bin/env python3
"""
Bank Reconciliation Engine - Test Data Generator

Generates a ledger and a matching bank statement for one account with
intentional edge cases for the matching algorithm.

Generated datasets:
- 150 ledger transactions over 30 days
- A bank statement covering the same period
- A summary of the edge cases that were planted

Edge cases included:
- Bank dates shifted by 1-3 days (card settlement lag)
- Amounts off by a cent (rounding on the bank side)
- Bank descriptions in statement style ("COUNTDOWN PONSONBY 4411")
- Recurring payments with the same amount and merchant on nearby days
- Bank-only records (fees, interest) and ledger-only records (uncleared)
"""

import json
import random
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any

from faker import Faker

fake = Faker(["en_NZ", "en_AU"])
Faker.seed(42)
random.seed(42)

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"

ACCOUNT_ID = 1
LEDGER_COUNT = 150
PERIOD_DAYS = 30

MERCHANTS = [
    "Countdown", "New World", "Pak'nSave", "Z Energy", "BP Connect", "Bunnings",
    "Mitre 10", "Flight Centre", "Air New Zealand", "Spark", "Vodafone",
    "Contact Energy", "Mercury", "Netflix", "Spotify", "Uber", "Connolly Gear",
    "Pete Selectcleaning", "The Warehouse", "Noel Leeming",
]
CATEGORIES = ["Groceries", "Fuel", "Utilities", "Travel", "Subscriptions", "Home", "Dining"]
BANK_ONLY = [("Account fee", "-5.00"), ("Interest", "0.42"), ("Overseas transaction fee", "-2.35")]

# Share of ledger transactions that get each treatment on the bank side
EDGE_CASE_RATES = {
    "date_offset": 0.20,
    "cent_difference": 0.05,
    "statement_description": 0.30,
    "missing_from_bank": 0.05,
}


def random_amount() -> Decimal:
    """Generate a spend amount; most are small, a few are large."""
    if random.random() < 0.1:
        amount = Decimal(random.uniform(500, 2500))
    else:
        amount = Decimal(random.uniform(3, 250))
    return -amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def statement_description(merchant: str) -> str:
    """Render a merchant the way a bank statement line reads."""
    suffix = random.choice([fake.city().upper(), str(fake.random_number(digits=4, fix_len=True))])
    return f"{merchant.upper()} {suffix}"


def generate_ledger(start_date: date) -> list[dict[str, Any]]:
    ledger = []
    for i in range(LEDGER_COUNT):
        ledger.append({
            "ledger_id": i + 1,
            "account_id": ACCOUNT_ID,
            "amount": str(random_amount()),
            "description": random.choice(MERCHANTS),
            "transaction_date": (start_date + timedelta(days=random.randint(0, PERIOD_DAYS - 1))).isoformat(),
            "category_name": random.choice(CATEGORIES),
        })

    # Recurring payments: same merchant and amount a few days apart
    for offset in (3, 10, 17):
        ledger.append({
            "ledger_id": len(ledger) + 1,
            "account_id": ACCOUNT_ID,
            "amount": "-800.00",
            "description": "Connolly Gear",
            "transaction_date": (start_date + timedelta(days=offset)).isoformat(),
            "category_name": "Home",
        })
    return ledger


def generate_bank_statement(ledger: list[dict[str, Any]], end_date: date) -> tuple[list[dict], dict]:
    """Derive a bank statement from the ledger, applying edge cases."""
    statement = []
    counts = {name: 0 for name in EDGE_CASE_RATES}
    counts["bank_only"] = 0

    for entry in ledger:
        if random.random() < EDGE_CASE_RATES["missing_from_bank"]:
            counts["missing_from_bank"] += 1
            continue

        amount = Decimal(entry["amount"])
        posted = date.fromisoformat(entry["transaction_date"])
        description = entry["description"]

        if random.random() < EDGE_CASE_RATES["date_offset"]:
            posted += timedelta(days=random.randint(1, 3))
            counts["date_offset"] += 1
        if random.random() < EDGE_CASE_RATES["cent_difference"]:
            amount += random.choice([Decimal("0.01"), Decimal("-0.01")])
            counts["cent_difference"] += 1
        if random.random() < EDGE_CASE_RATES["statement_description"]:
            description = statement_description(description)
            counts["statement_description"] += 1

        statement.append({
            "bank_transaction_id": f"bank_{fake.unique.random_number(digits=10, fix_len=True)}",
            "amount": str(amount),
            "description": description,
            "transaction_date": min(posted, end_date).isoformat(),
        })

    for description, amount in BANK_ONLY:
        statement.append({
            "bank_transaction_id": f"bank_{fake.unique.random_number(digits=10, fix_len=True)}",
            "amount": amount,
            "description": description,
            "transaction_date": end_date.isoformat(),
        })
        counts["bank_only"] += 1

    statement.sort(key=lambda s: (s["transaction_date"], s["bank_transaction_id"]))
    return statement, counts


def main():
    """Main function to generate all test data."""
    print("Bank Reconciliation Engine - Test Data Generator")
    print("=" * 50)

    DATA_DIR.mkdir(parents=True, exist_ok=True)

    start_date = date(2025, 7, 1)
    end_date = start_date + timedelta(days=PERIOD_DAYS)

    print(f"\nGenerating data for {start_date} to {end_date}...")

    ledger = generate_ledger(start_date)
    print(f"   Generated {len(ledger)} ledger transactions")

    statement, edge_cases = generate_bank_statement(ledger, end_date)
    print(f"   Generated {len(statement)} bank statement lines")

    summary = {
        "account_id": ACCOUNT_ID,
        "statement_start_date": start_date.isoformat(),
        "statement_end_date": end_date.isoformat(),
        "ledger_transactions": len(ledger),
        "bank_transactions": len(statement),
        "edge_cases": edge_cases,
    }

    for name, payload in (
        ("ledger.json", ledger),
        ("bank_statement.json", statement),
        ("data_summary.json", summary),
    ):
        path = DATA_DIR / name
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
        print(f"   Saved: {path}")

    print("\nEdge Cases Generated:")
    for case, count in edge_cases.items():
        print(f"  {case.replace('_', ' ').title()}: {count}")


if __name__ == "__main__":
    main()
