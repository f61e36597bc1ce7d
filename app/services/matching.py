import logging
from collections import Counter
from typing import Iterable, Optional

from app.services.confidence import match_reason, score_candidate
from app.services.exceptions import DuplicateMatchError, InvalidMatchInputError
from app.services.records import (
    AppTransaction,
    BankRecord,
    MatchCandidate,
    MatchedPair,
    MatchMethod,
    MatchOptions,
    MatchResult,
)

logger = logging.getLogger(__name__)

UNMATCHED_LOG_LIMIT = 3


def _priority(candidate: MatchCandidate) -> tuple:
    # list.sort is stable, so equal keys keep generation order
    return (
        -candidate.confidence,
        candidate.date_difference_days,
        candidate.amount_difference,
    )


class TransactionMatcher:
    """
    Pairs bank statement records with ledger transactions.

    Matching runs in two global passes. Every exact candidate is considered
    before any fuzzy one, so a fuzzy pairing can never claim a record that
    binds exactly elsewhere. The matcher holds no state between runs.
    """

    def match(
        self,
        bank_records: Iterable[BankRecord],
        app_transactions: Iterable[AppTransaction],
        options: Optional[MatchOptions] = None,
    ) -> MatchResult:
        options = options or MatchOptions.from_settings()
        bank_list = self._validate_records(bank_records, BankRecord, "bank_records")
        app_list = self._validate_records(app_transactions, AppTransaction, "app_transactions")
        self._validate_options(options)

        logger.debug(
            "Starting matching with %d bank records and %d app transactions "
            "(amount tolerance %s, description %s, date range %s/%d days)",
            len(bank_list), len(app_list), options.amount_tolerance,
            options.use_description_matching, options.use_date_range_matching,
            options.date_range_tolerance_days,
        )

        candidates = self._generate_candidates(bank_list, app_list, options)
        exact = [c for c in candidates if c.method == MatchMethod.EXACT]
        fuzzy = [c for c in candidates if c.method == MatchMethod.FUZZY]
        logger.debug(
            "Found %d candidates (%d exact, %d fuzzy)",
            len(candidates), len(exact), len(fuzzy),
        )

        claimed_bank: set[str] = set()
        claimed_app: set[int] = set()
        pairs = self._select(exact, claimed_bank, claimed_app)
        pairs.extend(self._select(fuzzy, claimed_bank, claimed_app))

        validate_no_duplicate_matches(pairs)

        result = MatchResult(
            matched_pairs=pairs,
            unmatched_bank_records=[b for b in bank_list if b.id not in claimed_bank],
            unmatched_app_transactions=[a for a in app_list if a.id not in claimed_app],
        )
        self._log_summary(result)
        return result

    def find_best_match(
        self,
        bank: BankRecord,
        candidates: Iterable[AppTransaction],
        options: Optional[MatchOptions] = None,
    ) -> Optional[MatchCandidate]:
        """
        Best ledger transaction for a single bank record, or None.

        This looks at one bank record in isolation and knows nothing about
        claims made for other records; batch reconciliation goes through
        match().
        """
        options = options or MatchOptions.from_settings()
        if not isinstance(bank, BankRecord):
            raise InvalidMatchInputError("bank must be a BankRecord")
        app_list = self._validate_records(candidates, AppTransaction, "candidates")
        self._validate_options(options)

        scored = [
            candidate
            for candidate in (score_candidate(bank, app, options) for app in app_list)
            if candidate is not None
        ]
        if not scored:
            return None

        scored.sort(key=_priority)
        return scored[0]

    def _generate_candidates(
        self,
        bank_list: list[BankRecord],
        app_list: list[AppTransaction],
        options: MatchOptions,
    ) -> list[MatchCandidate]:
        candidates = []
        for bank in bank_list:
            found = 0
            for app in app_list:
                candidate = score_candidate(bank, app, options)
                if candidate is None:
                    continue
                candidates.append(candidate)
                found += 1

            if found == 0:
                logger.debug(
                    "No candidates for bank record %s (%s on %s)",
                    bank.id, bank.amount, bank.transaction_date,
                )
        return candidates

    def _select(
        self,
        candidates: list[MatchCandidate],
        claimed_bank: set[str],
        claimed_app: set[int],
    ) -> list[MatchedPair]:
        """Greedily accept candidates in priority order, skipping claimed records."""
        pairs = []
        skipped = 0
        for candidate in sorted(candidates, key=_priority):
            if candidate.bank.id in claimed_bank or candidate.app.id in claimed_app:
                skipped += 1
                continue

            claimed_bank.add(candidate.bank.id)
            claimed_app.add(candidate.app.id)
            pairs.append(MatchedPair(
                bank=candidate.bank,
                app=candidate.app,
                method=candidate.method,
                confidence=candidate.confidence,
                reason=match_reason(candidate.bank, candidate.app, candidate.confidence),
            ))
            logger.debug(
                "Matched bank %s -> app %s (%s, confidence %s)",
                candidate.bank.id, candidate.app.id, candidate.method.value, candidate.confidence,
            )

        if skipped:
            logger.debug("Skipped %d candidates whose records were already claimed", skipped)
        return pairs

    @staticmethod
    def _validate_records(records, record_type: type, name: str) -> list:
        if records is None:
            raise InvalidMatchInputError(f"{name} must not be None")

        record_list = list(records)
        for record in record_list:
            if not isinstance(record, record_type):
                raise InvalidMatchInputError(
                    f"{name} must contain {record_type.__name__} items, got {type(record).__name__}"
                )

        duplicates = [i for i, count in Counter(r.id for r in record_list).items() if count > 1]
        if duplicates:
            raise InvalidMatchInputError(f"Duplicate ids in {name}: {duplicates}")
        return record_list

    @staticmethod
    def _validate_options(options: MatchOptions) -> None:
        if not isinstance(options, MatchOptions):
            raise InvalidMatchInputError("options must be a MatchOptions")
        if options.amount_tolerance < 0:
            raise InvalidMatchInputError("amount_tolerance must not be negative")
        if options.date_range_tolerance_days < 0:
            raise InvalidMatchInputError("date_range_tolerance_days must not be negative")

    @staticmethod
    def _log_summary(result: MatchResult) -> None:
        logger.info(
            "Matching completed: %d exact, %d fuzzy, %d unmatched bank, %d unmatched app "
            "(match rate %s%%)",
            result.exact_matches, result.fuzzy_matches,
            result.unmatched_bank, result.unmatched_app, result.overall_match_percentage,
        )

        if not result.unmatched_bank_records and not result.unmatched_app_transactions:
            return

        logger.warning("Reconciliation has unmatched transactions that may need manual review")
        for label, records in (
            ("bank", result.unmatched_bank_records),
            ("app", result.unmatched_app_transactions),
        ):
            for record in records[:UNMATCHED_LOG_LIMIT]:
                logger.info(
                    "  unmatched %s %s: %s on %s | %r",
                    label, record.id, record.amount, record.transaction_date, record.description,
                )
            if len(records) > UNMATCHED_LOG_LIMIT:
                logger.info("  ... and %d more unmatched %s", len(records) - UNMATCHED_LOG_LIMIT, label)


def validate_no_duplicate_matches(pairs: list[MatchedPair]) -> None:
    """Raise DuplicateMatchError if any record appears in more than one pair."""
    duplicate_app = [i for i, n in Counter(p.app.id for p in pairs).items() if n > 1]
    if duplicate_app:
        raise DuplicateMatchError(
            f"Duplicate app transaction matches found for transaction IDs: {duplicate_app}"
        )

    duplicate_bank = [i for i, n in Counter(p.bank.id for p in pairs).items() if n > 1]
    if duplicate_bank:
        raise DuplicateMatchError(
            f"Duplicate bank transaction matches found for transaction IDs: {duplicate_bank}"
        )
