import random
import pytest
from datetime import datetime, date, timedelta
from decimal import Decimal

from app.services.confidence import score_candidate
from app.services.exceptions import DuplicateMatchError, InvalidMatchInputError
from app.services.matching import TransactionMatcher, _priority, validate_no_duplicate_matches
from app.services.records import (
    MatchCandidate,
    MatchedPair,
    MatchMethod,
    MatchOptions,
    MatchResult,
)
from app.utils.date_utils import as_date, days_between

from tests.factories import app_txn, bank


@pytest.fixture
def matcher():
    return TransactionMatcher()


class TestDateUtils:
    def test_days_between_same_day(self):
        assert days_between(date(2024, 1, 15), date(2024, 1, 15)) == 0

    def test_days_between_reversed(self):
        assert days_between(date(2024, 1, 18), date(2024, 1, 15)) == 3

    def test_days_between_with_datetime(self):
        dt1 = datetime(2024, 1, 15, 23, 30)
        dt2 = datetime(2024, 1, 18, 0, 15)
        assert days_between(dt1, dt2) == 3

    def test_as_date_strips_time(self):
        assert as_date(datetime(2024, 1, 15, 10, 30)) == date(2024, 1, 15)
        assert as_date(date(2024, 1, 15)) == date(2024, 1, 15)


class TestTransactionMatcher:
    def test_empty_inputs(self, matcher):
        result = matcher.match([], [])

        assert result.matched_pairs == []
        assert result.unmatched_bank_records == []
        assert result.unmatched_app_transactions == []
        assert result.overall_match_percentage == Decimal("0")

    def test_no_app_transactions_leaves_bank_unmatched(self, matcher):
        records = [bank("b1", "-10.00", "Coffee", "2025-07-01")]
        result = matcher.match(records, [])

        assert result.unmatched_bank_records == records
        assert result.matched_pairs == []

    def test_identical_records_match_exactly(self, matcher):
        result = matcher.match(
            [bank("b1", "-45.50", "Countdown", "2025-07-05")],
            [app_txn(1, "-45.50", "Countdown", "2025-07-05")],
        )

        assert result.exact_matches == 1
        pair = result.matched_pairs[0]
        assert pair.method == MatchMethod.EXACT
        assert pair.confidence == Decimal("1.0000")
        assert pair.reason == "Matched on: amount, date, description (confidence: 100%)"

    def test_amount_on_tolerance_boundary_is_exact(self, matcher):
        options = MatchOptions(amount_tolerance=Decimal("0.01"))
        result = matcher.match(
            [bank("b1", "-100.00", "Test Store", "2025-01-01")],
            [app_txn(1, "-99.99", "Test Store", "2025-01-01")],
            options,
        )

        assert result.exact_matches == 1
        assert result.fuzzy_matches == 0
        assert result.matched_pairs[0].confidence > Decimal("0.95")

    def test_amount_outside_tolerance_never_matches(self, matcher):
        result = matcher.match(
            [bank("b1", "-100.00", "Test Store", "2025-01-01")],
            [app_txn(1, "-100.02", "Test Store", "2025-01-01")],
            MatchOptions(amount_tolerance=Decimal("0.01")),
        )

        assert result.matched_pairs == []
        assert result.unmatched_bank == 1
        assert result.unmatched_app == 1

    def test_exact_match_prevents_duplicate_fuzzy_claim(self, matcher):
        bank_records = [
            bank("bank1", "-800.00", "Connolly Gear", "2025-07-09"),
            bank("bank2", "-800.00", "Connolly Gear", "2025-07-16"),
        ]
        app_transactions = [app_txn(318, "-800.00", "Connolly Gear", "2025-07-09")]
        options = MatchOptions(date_range_tolerance_days=7)

        result = matcher.match(bank_records, app_transactions, options)

        assert result.exact_matches == 1
        assert result.fuzzy_matches == 0
        assert result.matched_pairs[0].bank.id == "bank1"
        assert [b.id for b in result.unmatched_bank_records] == ["bank2"]

    def test_fuzzy_candidate_does_not_steal_exact_match(self, matcher):
        # bank2 is listed first, but bank1 binds exactly to the ledger entry
        bank_records = [
            bank("bank2", "-800.00", "Connolly Gear", "2025-07-16"),
            bank("bank1", "-800.00", "Connolly Gear", "2025-07-09"),
        ]
        app_transactions = [app_txn(318, "-800.00", "Connolly Gear", "2025-07-09")]

        result = matcher.match(bank_records, app_transactions, MatchOptions(date_range_tolerance_days=7))

        assert [(p.bank.id, p.method) for p in result.matched_pairs] == [("bank1", MatchMethod.EXACT)]
        assert [b.id for b in result.unmatched_bank_records] == ["bank2"]

    def test_distant_dates_do_not_steal_match(self, matcher):
        bank_records = [
            bank("bank1", "-1200.00", "Flight Centre", "2025-07-15"),
            bank("bank2", "-1200.00", "Flight Centre", "2025-06-16"),
        ]
        app_transactions = [app_txn(1, "-1200.00", "Flight Centre", "2025-06-16")]

        result = matcher.match(bank_records, app_transactions, MatchOptions(date_range_tolerance_days=7))

        assert result.exact_matches == 1
        assert result.matched_pairs[0].bank.id == "bank2"
        assert [b.id for b in result.unmatched_bank_records] == ["bank1"]

    def test_exact_priority_is_global(self, matcher):
        bank_records = [
            bank("bank1", "-100.00", "Store A", "2025-06-15"),
            bank("bank2", "-100.00", "Store A", "2025-06-16"),
            bank("bank3", "-200.00", "Store B", "2025-06-17"),
        ]
        app_transactions = [
            app_txn(1, "-100.00", "Store A", "2025-06-16"),
            app_txn(2, "-200.00", "Store B", "2025-06-17"),
        ]

        result = matcher.match(bank_records, app_transactions, MatchOptions(date_range_tolerance_days=5))

        assert result.exact_matches == 2
        assert result.fuzzy_matches == 0
        assert {(p.bank.id, p.app.id) for p in result.matched_pairs} == {("bank2", 1), ("bank3", 2)}
        assert [b.id for b in result.unmatched_bank_records] == ["bank1"]

    def test_mixed_exact_and_fuzzy(self, matcher):
        bank_records = [
            bank("bank1", "-800.00", "Connolly Gear", "2025-07-09"),
            bank("bank2", "-110.00", "Pete Select", "2025-07-03"),
        ]
        app_transactions = [
            app_txn(1, "-800.00", "Connolly Gear", "2025-07-09"),
            app_txn(2, "-110.00", "Pete Selectcleaning", "2025-07-01"),
        ]

        result = matcher.match(bank_records, app_transactions, MatchOptions(date_range_tolerance_days=5))

        assert result.exact_matches == 1
        assert result.fuzzy_matches == 1
        fuzzy = next(p for p in result.matched_pairs if p.method == MatchMethod.FUZZY)
        assert (fuzzy.bank.id, fuzzy.app.id) == ("bank2", 2)
        assert Decimal("0.5") <= fuzzy.confidence < Decimal("0.95")

    def test_better_fuzzy_candidate_wins_regardless_of_input_order(self, matcher):
        bank_records = [
            bank("far", "-60.00", "Bunnings", "2025-03-13"),
            bank("near", "-60.00", "Bunnings", "2025-03-11"),
        ]
        app_transactions = [app_txn(7, "-60.00", "Bunnings", "2025-03-10")]

        result = matcher.match(bank_records, app_transactions, MatchOptions(date_range_tolerance_days=5))

        assert [(p.bank.id, p.method) for p in result.matched_pairs] == [("near", MatchMethod.FUZZY)]

    def test_equal_candidates_keep_input_order(self, matcher):
        bank_records = [
            bank("first", "-20.00", "Cafe", "2025-02-01"),
            bank("second", "-20.00", "Cafe", "2025-02-01"),
        ]
        app_transactions = [app_txn(1, "-20.00", "Cafe", "2025-02-01")]

        result = matcher.match(bank_records, app_transactions)

        assert result.matched_pairs[0].bank.id == "first"
        assert [b.id for b in result.unmatched_bank_records] == ["second"]

    def test_other_bank_record_left_unmatched(self, matcher):
        bank_records = [
            bank("a", "-35.00", "Store A", "2025-04-04"),
            bank("b", "-35.00", "Other Merchant", "2025-04-04"),
        ]
        app_transactions = [app_txn(1, "-35.00", "Store A", "2025-04-04")]

        result = matcher.match(bank_records, app_transactions)

        assert [(p.bank.id, p.method) for p in result.matched_pairs] == [("a", MatchMethod.EXACT)]
        assert [b.id for b in result.unmatched_bank_records] == ["b"]

    def test_empty_descriptions_still_match_on_amount_and_date(self, matcher):
        result = matcher.match(
            [bank("b1", "-12.00", "", "2025-05-05")],
            [app_txn(1, "-12.00", "", "2025-05-05")],
        )

        assert result.fuzzy_matches == 1
        assert result.matched_pairs[0].confidence == Decimal("0.8000")

    def test_description_matching_disabled(self, matcher):
        options = MatchOptions(use_description_matching=False)
        result = matcher.match(
            [bank("b1", "-12.00", "POS 4411 XYZ", "2025-05-05")],
            [app_txn(1, "-12.00", "Lunch", "2025-05-05")],
            options,
        )

        assert result.exact_matches == 1

    def test_date_range_disabled_matches_distant_dates_as_fuzzy(self, matcher):
        options = MatchOptions(use_date_range_matching=False)
        result = matcher.match(
            [bank("b1", "-12.00", "Gym", "2025-05-25")],
            [app_txn(1, "-12.00", "Gym", "2025-05-05")],
            options,
        )

        assert result.fuzzy_matches == 1
        assert result.exact_matches == 0

    def test_matching_is_deterministic(self, matcher):
        bank_records = [
            bank("b1", "-50.00", "Shell", "2025-01-02"),
            bank("b2", "-50.00", "Shell", "2025-01-03"),
            bank("b3", "-50.00", "BP", "2025-01-02"),
        ]
        app_transactions = [
            app_txn(1, "-50.00", "Shell", "2025-01-02"),
            app_txn(2, "-50.00", "Shell Coles Express", "2025-01-03"),
        ]

        first = matcher.match(bank_records, app_transactions)
        second = matcher.match(bank_records, app_transactions)

        assert first == second

    def test_overall_match_percentage(self, matcher):
        result = matcher.match(
            [
                bank("b1", "-10.00", "A", "2025-01-01"),
                bank("b2", "-20.00", "B", "2025-01-01"),
                bank("b3", "-30.00", "C", "2025-01-01"),
            ],
            [
                app_txn(1, "-10.00", "A", "2025-01-01"),
                app_txn(2, "-20.00", "B", "2025-01-01"),
            ],
        )

        assert result.total_bank_records == 3
        assert result.total_app_transactions == 2
        assert result.overall_match_percentage == Decimal("80.0")

    def test_generated_statement_is_partitioned(self, matcher):
        rng = random.Random(42)
        start = date(2025, 1, 1)
        amounts = ["-10.00", "-10.01", "-25.00", "-99.99", "-100.00", "250.00"]
        names = ["Countdown", "Countdown Ponsonby", "Shell", "Netflix", "Rent", ""]

        bank_records = [
            bank(
                f"b{i}", rng.choice(amounts), rng.choice(names),
                (start + timedelta(days=rng.randint(0, 10))).isoformat(),
            )
            for i in range(30)
        ]
        app_transactions = [
            app_txn(
                i, rng.choice(amounts), rng.choice(names),
                (start + timedelta(days=rng.randint(0, 10))).isoformat(),
            )
            for i in range(30)
        ]
        options = MatchOptions(date_range_tolerance_days=3)

        result = matcher.match(bank_records, app_transactions, options)

        matched_bank = [p.bank.id for p in result.matched_pairs]
        matched_app = [p.app.id for p in result.matched_pairs]
        assert len(set(matched_bank)) == len(matched_bank)
        assert len(set(matched_app)) == len(matched_app)
        assert sorted(matched_bank + [b.id for b in result.unmatched_bank_records]) == sorted(
            b.id for b in bank_records
        )
        assert sorted(matched_app + [a.id for a in result.unmatched_app_transactions]) == sorted(
            a.id for a in app_transactions
        )

        for pair in result.matched_pairs:
            assert abs(pair.bank.amount - pair.app.amount) <= options.amount_tolerance
            assert days_between(pair.bank.transaction_date, pair.app.transaction_date) <= 3
            if pair.method == MatchMethod.EXACT:
                assert pair.confidence >= Decimal("0.95")

        # No two leftovers could still have been paired
        for b in result.unmatched_bank_records:
            for a in result.unmatched_app_transactions:
                assert score_candidate(b, a, options) is None


class TestFindBestMatch:
    def test_fuzzy_best_match(self, matcher):
        candidate = matcher.find_best_match(
            bank("b1", "-800.00", "Connolly Gear", "2025-07-09"),
            [app_txn(1, "-800.00", "Connolly Gear Trust", "2025-07-11")],
            MatchOptions(date_range_tolerance_days=5),
        )

        assert candidate is not None
        assert candidate.method == MatchMethod.FUZZY
        assert Decimal("0.5") < candidate.confidence < Decimal("0.95")

    def test_prefers_highest_confidence(self, matcher):
        candidate = matcher.find_best_match(
            bank("b1", "-45.00", "Countdown", "2025-07-05"),
            [
                app_txn(1, "-45.00", "Countdown", "2025-07-06"),
                app_txn(2, "-45.00", "Countdown", "2025-07-05"),
            ],
        )

        assert candidate.app.id == 2
        assert candidate.method == MatchMethod.EXACT

    def test_no_candidate_within_tolerance(self, matcher):
        candidate = matcher.find_best_match(
            bank("b1", "-800.00", "Connolly Gear", "2025-07-09"),
            [app_txn(1, "-800.00", "Connolly Gear", "2025-08-01")],
        )

        assert candidate is None

    def test_no_candidates(self, matcher):
        assert matcher.find_best_match(bank("b1", "-1.00", "x", "2025-01-01"), []) is None


class TestPriority:
    def _candidate(self, confidence, days, amount_diff):
        return MatchCandidate(
            bank=bank("b", "-1.00", "x", "2025-01-01"),
            app=app_txn(1, "-1.00", "x", "2025-01-01"),
            confidence=Decimal(confidence),
            method=MatchMethod.FUZZY,
            date_difference_days=days,
            amount_difference=Decimal(amount_diff),
        )

    def test_confidence_then_date_then_amount(self):
        low = self._candidate("0.7", 0, "0")
        far = self._candidate("0.9", 2, "0")
        near_off = self._candidate("0.9", 1, "0.01")
        near = self._candidate("0.9", 1, "0")

        ordered = sorted([low, far, near_off, near], key=_priority)

        assert ordered == [near, near_off, far, low]


class TestInputValidation:
    def test_none_inputs_rejected(self, matcher):
        with pytest.raises(InvalidMatchInputError):
            matcher.match(None, [])
        with pytest.raises(InvalidMatchInputError):
            matcher.match([], None)

    def test_invalid_input_is_a_value_error(self, matcher):
        with pytest.raises(ValueError):
            matcher.match(None, [])

    def test_wrong_record_type_rejected(self, matcher):
        with pytest.raises(InvalidMatchInputError):
            matcher.match([app_txn(1, "-1.00", "x", "2025-01-01")], [])

    def test_duplicate_bank_ids_rejected(self, matcher):
        records = [
            bank("dup", "-1.00", "x", "2025-01-01"),
            bank("dup", "-2.00", "y", "2025-01-02"),
        ]
        with pytest.raises(InvalidMatchInputError, match="dup"):
            matcher.match(records, [])

    def test_duplicate_app_ids_rejected(self, matcher):
        transactions = [
            app_txn(5, "-1.00", "x", "2025-01-01"),
            app_txn(5, "-2.00", "y", "2025-01-02"),
        ]
        with pytest.raises(InvalidMatchInputError):
            matcher.match([], transactions)

    def test_negative_tolerances_rejected(self, matcher):
        with pytest.raises(InvalidMatchInputError):
            matcher.match([], [], MatchOptions(amount_tolerance=Decimal("-0.01")))
        with pytest.raises(InvalidMatchInputError):
            matcher.match([], [], MatchOptions(date_range_tolerance_days=-1))


class TestValidateNoDuplicateMatches:
    def _pair(self, bank_id, app_id):
        return MatchedPair(
            bank=bank(bank_id, "-1.00", "x", "2025-01-01"),
            app=app_txn(app_id, "-1.00", "x", "2025-01-01"),
            method=MatchMethod.EXACT,
            confidence=Decimal("1"),
        )

    def test_distinct_pairs_pass(self):
        validate_no_duplicate_matches([self._pair("b1", 1), self._pair("b2", 2)])

    def test_duplicate_app_transaction(self):
        with pytest.raises(DuplicateMatchError, match="app transaction"):
            validate_no_duplicate_matches([self._pair("b1", 1), self._pair("b2", 1)])

    def test_duplicate_bank_transaction(self):
        with pytest.raises(DuplicateMatchError, match="bank transaction"):
            validate_no_duplicate_matches([self._pair("b1", 1), self._pair("b1", 2)])


def test_empty_result_counts():
    result = MatchResult()
    assert result.exact_matches == 0
    assert result.total_bank_records == 0
