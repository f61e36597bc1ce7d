from app.services.matching import TransactionMatcher, validate_no_duplicate_matches
from app.services.records import AppTransaction, BankRecord, MatchOptions, MatchResult

__all__ = [
    "TransactionMatcher", "validate_no_duplicate_matches",
    "AppTransaction", "BankRecord", "MatchOptions", "MatchResult",
]
