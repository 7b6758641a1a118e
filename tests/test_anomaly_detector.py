"""
test_anomaly_detector.py
-------------------------
Tests for the anomaly pass.

Run from the project root:
    python -m pytest tests/test_anomaly_detector.py -v

Tests are organized by layer:
    - Merchant normalization & matching
    - String similarity
    - Category statistics
    - Individual checks (amount, duplicate, frequency)
    - AnomalyDetector (integration)
    - Review queue helpers
"""

import sys
import os
import pytest
from datetime import datetime, timedelta

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
from config.settings import AnomalyConfig
from core.anomaly_detector import AnomalyDetector, dismiss_anomaly, restore_anomaly, summarize_anomalies
from core.category_stats import calculate_category_stats
from core.merchant import (
    choose_display_name,
    extract_merchant_key,
    group_transactions_by_merchant,
    merchants_match,
    normalize_merchant_name,
)
from core.models import (
    AnomalyDetail,
    AnomalyType,
    Category,
    CategoryType,
    FrequencyPeriod,
    Transaction,
    TransactionType,
)
from core.similarity import string_similarity


# =============================================================================
# FIXTURES
# =============================================================================

DINING = Category(id="dining", name="Dining", type=CategoryType.EXPENSE)
TRANSPORT = Category(id="transportation", name="Transportation", type=CategoryType.EXPENSE)
SALARY = Category(id="income", name="Income", type=CategoryType.INCOME)
TRANSFER = Category(id="transfer", name="Transfer", type=CategoryType.EXCLUDED)


@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config cache before each test for isolation."""
    reset_config()
    yield
    reset_config()


def _make_txn(
    txn_id: str,
    date,
    description: str = "CORNER DELI",
    amount=10.0,
    category: Category | None = DINING,
    txn_type: TransactionType = TransactionType.DEBIT,
    merchant: str | None = None,
    **kwargs,
) -> Transaction:
    """Helper: builds one transaction with sensible defaults."""
    return Transaction(
        id=txn_id,
        date=date,
        description=description,
        amount=amount,
        type=txn_type,
        category=category,
        merchant=merchant,
        **kwargs,
    )


def _make_category_series(amounts, category: Category = DINING, start=datetime(2024, 1, 1)):
    """Helper: one expense per amount, 3 days apart, each at a different venue."""
    return [
        _make_txn(f"t{i}", start + timedelta(days=3 * i), f"DINER {i:02d}", amount, category)
        for i, amount in enumerate(amounts)
    ]


def _by_id(transactions):
    return {t.id: t for t in transactions}


# =============================================================================
# MERCHANT NORMALIZATION & MATCHING
# =============================================================================

class TestNormalizeMerchantName:
    def test_punctuation_becomes_space(self):
        assert normalize_merchant_name("NETFLIX.COM") == "netflix com"

    def test_payment_prefix_and_legal_suffix_removed(self):
        assert normalize_merchant_name("Payment to Spotify Ltd") == "spotify"

    def test_purchase_prefix_removed(self):
        assert normalize_merchant_name("Purchase at Whole Foods Inc.") == "whole foods"

    def test_sub_prefix_and_subscription_suffix_removed(self):
        assert normalize_merchant_name("SUB Adobe Creative Cloud Subscription") == "adobe creative cloud"

    def test_stacked_suffixes_removed(self):
        assert normalize_merchant_name("Acme Billing Pvt Ltd") == "acme"

    def test_whitespace_collapsed(self):
        assert normalize_merchant_name("  Blue    Bottle   ") == "blue bottle"

    def test_empty_and_none(self):
        assert normalize_merchant_name("") == ""
        assert normalize_merchant_name(None) == ""

    @pytest.mark.parametrize("name", [
        "NETFLIX.COM",
        "Payment to Spotify Ltd",
        "payment payment to gym llc",
        "SUB sub Subscription",
        "Bill Payment to City Water Co",
        "Purchase from Amazon Prime Inc",
        "payment",
        "The Coffee Shop & Co.",
    ])
    def test_idempotent(self, name):
        once = normalize_merchant_name(name)
        assert normalize_merchant_name(once) == once


class TestMerchantsMatch:
    def test_exact_after_normalization(self):
        assert merchants_match("Spotify Ltd", "SPOTIFY")

    def test_containment(self):
        assert merchants_match("NETFLIX.COM", "Netflix")

    def test_first_significant_word(self):
        assert merchants_match("Amazon Prime", "Amazon Marketplace")

    def test_common_first_word_does_not_match(self):
        assert not merchants_match("The Coffee Shop", "The Bakery")

    def test_unrelated(self):
        assert not merchants_match("Spotify", "Hulu")

    def test_empty_never_matches(self):
        assert not merchants_match("", "")
        assert not merchants_match("Netflix", None)

    @pytest.mark.parametrize("a,b", [
        ("NETFLIX.COM", "Netflix"),
        ("Amazon Prime", "Amazon Marketplace"),
        ("The Coffee Shop", "The Bakery"),
        ("Spotify", "Hulu"),
    ])
    def test_symmetric(self, a, b):
        assert merchants_match(a, b) == merchants_match(b, a)


class TestMerchantKey:
    def test_card_network_code_removed(self):
        assert extract_merchant_key("SQ *BLUE BOTTLE COFFEE OAKLAND") == "blue bottle coffee"

    def test_code_without_space(self):
        assert extract_merchant_key("AMZN*Marketplace") == "marketplace"

    def test_first_three_words(self):
        assert extract_merchant_key("SQ *ONE TWO THREE FOUR FIVE") == "one two three"

    def test_empty(self):
        assert extract_merchant_key("") == ""
        assert extract_merchant_key(None) == ""


class TestDisplayNameAndGrouping:
    def test_shortest_meaningful_spelling_wins(self):
        assert choose_display_name(["NETFLIX.COM", "Netflix"]) == "Netflix"

    def test_short_names_skipped(self):
        assert choose_display_name(["AB", "ABCDE"]) == "ABCDE"

    def test_no_names(self):
        assert choose_display_name([]) == "Unknown Merchant"

    def test_groups_spelling_variants(self):
        txns = [
            _make_txn("1", "2024-01-01", "NETFLIX.COM"),
            _make_txn("2", "2024-02-01", "Netflix"),
            _make_txn("3", "2024-02-03", "Spotify"),
        ]
        groups = group_transactions_by_merchant(txns)
        assert [g.normalized_name for g in groups] == ["netflix com", "spotify"]
        assert groups[0].original_names == ["NETFLIX.COM", "Netflix"]
        assert [t.id for t in groups[0].transactions] == ["1", "2"]

    def test_merchant_field_preferred_over_description(self):
        txns = [
            _make_txn("1", "2024-01-01", "POS 4411 XYZ", merchant="Netflix"),
            _make_txn("2", "2024-02-01", "POS 9876 ABC", merchant="NETFLIX.COM"),
        ]
        groups = group_transactions_by_merchant(txns)
        assert len(groups) == 1

    def test_non_expenses_ignored(self):
        txns = [
            _make_txn("1", "2024-01-01", "ACME PAYROLL", 3000.0, SALARY, TransactionType.CREDIT),
            _make_txn("2", "2024-01-02", "SAVINGS SWEEP", 500.0, TRANSFER),
            _make_txn("3", "2024-01-03", "UNKNOWN SHOP", 5.0, None),
        ]
        assert group_transactions_by_merchant(txns) == []


# =============================================================================
# STRING SIMILARITY
# =============================================================================

class TestStringSimilarity:
    def test_identical(self):
        assert string_similarity("Starbucks", "Starbucks") == 1.0

    def test_case_and_whitespace_ignored(self):
        assert string_similarity("  STARBUCKS ", "starbucks") == 1.0

    def test_both_empty(self):
        assert string_similarity("", "") == 1.0

    def test_one_empty(self):
        assert string_similarity("", "starbucks") == 0.0

    def test_edit_distance(self):
        assert string_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_range_and_symmetry(self):
        pairs = [("STARBUCKS #123", "STARBUCKS #456"), ("abc", "xyz"), ("Uber", "Uber Eats")]
        for a, b in pairs:
            score = string_similarity(a, b)
            assert 0.0 <= score <= 1.0
            assert score == string_similarity(b, a)


# =============================================================================
# CATEGORY STATISTICS
# =============================================================================

class TestCategoryStats:
    def test_population_statistics(self):
        stats = calculate_category_stats(_make_category_series([10, 20, 30, 40, 50]))
        assert stats["dining"].count == 5
        assert stats["dining"].mean == pytest.approx(30.0)
        assert stats["dining"].std_dev == pytest.approx(200 ** 0.5)

    def test_too_few_samples_omitted(self):
        assert calculate_category_stats(_make_category_series([10, 20, 30, 40])) == {}

    def test_zero_spread_omitted(self):
        assert calculate_category_stats(_make_category_series([25] * 8)) == {}

    def test_only_expenses_with_amounts_sampled(self):
        txns = _make_category_series([10, 20, 30, 40, 50])
        txns.append(_make_txn("inc", "2024-02-01", "PAYROLL", 5000.0, SALARY, TransactionType.CREDIT))
        txns.append(_make_txn("bad", "2024-02-02", "DINER XX", "not a number"))
        stats = calculate_category_stats(txns)
        assert set(stats) == {"dining"}
        assert stats["dining"].count == 5

    def test_empty_input(self):
        assert calculate_category_stats([]) == {}


# =============================================================================
# CHECKS
# =============================================================================

class TestAmountCheck:
    def test_high_amount_flagged(self):
        baseline = [20, 22, 21, 23, 19, 20] * 2
        txns = _make_category_series(baseline + [100])
        result = _by_id(AnomalyDetector(AnomalyConfig()).detect(txns))

        outlier = result["t12"]
        assert outlier.is_anomaly is True
        assert outlier.anomaly_types == (AnomalyType.HIGH_AMOUNT,)
        assert outlier.anomaly_details.amount_deviation > 2.5
        assert all(result[f"t{i}"].is_anomaly is False for i in range(12))

    def test_low_amount_flagged(self):
        baseline = [100, 102, 98, 101, 99, 100] * 2
        txns = _make_category_series(baseline + [1])
        result = _by_id(AnomalyDetector(AnomalyConfig()).detect(txns))

        outlier = result["t12"]
        assert outlier.anomaly_types == (AnomalyType.LOW_AMOUNT,)
        assert outlier.anomaly_details.amount_deviation < -2.5

    def test_no_stats_no_flag(self):
        txns = _make_category_series([20, 21, 500])
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert not any(t.is_anomaly for t in result)

    def test_amount_detail_rejects_other_types(self):
        with pytest.raises(ValueError):
            AnomalyDetail.for_amount(AnomalyType.DUPLICATE, 3.0)


class TestDuplicateCheck:
    def test_near_identical_charges_flagged(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 2, 9), "STARBUCKS STORE 1235", 4.50),
        ]
        result = _by_id(AnomalyDetector(AnomalyConfig()).detect(txns))

        assert result["b"].anomaly_types == (AnomalyType.DUPLICATE,)
        assert result["b"].anomaly_details.duplicate_of == "a"
        assert result["a"].anomaly_details.duplicate_of == "b"

    def test_first_candidate_in_input_order(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 8), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 2, 8), "STARBUCKS STORE 1234", 4.50),
            _make_txn("c", datetime(2024, 3, 2, 9), "STARBUCKS STORE 1234", 4.50),
        ]
        result = _by_id(AnomalyDetector(AnomalyConfig()).detect(txns))
        # "b" is nearer in time, but "a" comes first
        assert result["c"].anomaly_details.duplicate_of == "a"

    def test_outside_window_not_flagged(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 3, 11), "STARBUCKS STORE 1234", 4.50),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert not any(t.is_anomaly for t in result)

    def test_different_amount_not_flagged(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 1, 11), "STARBUCKS STORE 1234", 4.75),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert not any(t.is_anomaly for t in result)

    def test_dissimilar_description_not_flagged(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 1, 11), "BLUE BOTTLE COFFEE", 4.50),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert not any(t.is_anomaly for t in result)

    def test_income_never_a_duplicate(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "ACME PAYROLL", 3000.0, SALARY, TransactionType.CREDIT),
            _make_txn("b", datetime(2024, 3, 1, 11), "ACME PAYROLL", 3000.0, SALARY, TransactionType.CREDIT),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert not any(t.is_anomaly for t in result)


class TestFrequencyCheck:
    def test_burst_within_24h(self):
        start = datetime(2024, 3, 1, 8)
        txns = [
            _make_txn("a", start, "UBER TRIP", 12.10, TRANSPORT),
            _make_txn("b", start + timedelta(hours=4), "UBER TRIP", 15.40, TRANSPORT),
            _make_txn("c", start + timedelta(hours=10), "UBER TRIP", 9.80, TRANSPORT),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)

        for t in result:
            assert t.anomaly_types == (AnomalyType.UNUSUAL_FREQUENCY,)
            assert t.anomaly_details.frequency_count == 3
            assert t.anomaly_details.frequency_period == FrequencyPeriod.TWENTY_FOUR_HOURS

    def test_burst_within_7d(self):
        start = datetime(2024, 3, 1, 8)
        amounts = [12.10, 15.40, 9.80, 22.00, 18.35]
        txns = [
            _make_txn(f"r{i}", start + timedelta(hours=30 * i), "UBER TRIP", amount, TRANSPORT)
            for i, amount in enumerate(amounts)
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)

        for t in result:
            assert t.anomaly_types == (AnomalyType.UNUSUAL_FREQUENCY,)
            assert t.anomaly_details.frequency_count == 5
            assert t.anomaly_details.frequency_period == FrequencyPeriod.SEVEN_DAYS

    def test_24h_takes_priority(self):
        start = datetime(2024, 3, 1, 8)
        amounts = [12.10, 15.40, 9.80, 22.00, 18.35]
        txns = [
            _make_txn(f"r{i}", start + timedelta(hours=2 * i), "UBER TRIP", amount, TRANSPORT)
            for i, amount in enumerate(amounts)
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)

        for t in result:
            assert t.anomaly_details.frequency_count == 5
            assert t.anomaly_details.frequency_period == FrequencyPeriod.TWENTY_FOUR_HOURS

    def test_below_threshold_not_flagged(self):
        start = datetime(2024, 3, 1, 8)
        txns = [
            _make_txn("a", start, "UBER TRIP", 12.10, TRANSPORT),
            _make_txn("b", start + timedelta(hours=4), "UBER TRIP", 15.40, TRANSPORT),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert not any(t.is_anomaly for t in result)


# =============================================================================
# ANOMALY DETECTOR (INTEGRATION)
# =============================================================================

class TestAnomalyDetector:
    def test_output_preserves_order_and_length(self):
        txns = _make_category_series([20, 22, 21, 23, 19, 20])
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert [t.id for t in result] == [t.id for t in txns]

    def test_input_not_mutated(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 2, 9), "STARBUCKS STORE 1235", 4.50),
        ]
        AnomalyDetector(AnomalyConfig()).detect(txns)
        assert all(t.is_anomaly is None for t in txns)
        assert all(t.anomaly_details is None for t in txns)

    def test_clean_transactions_annotated_false(self):
        txns = _make_category_series([20, 22, 21])
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        for t in result:
            assert t.is_anomaly is False
            assert t.anomaly_types == ()
            assert t.anomaly_details is None

    def test_malformed_fields_are_skipped(self):
        txns = [
            _make_txn("bad_date", "not a date", "STARBUCKS STORE 1234", 4.50),
            _make_txn("bad_amount", datetime(2024, 3, 1, 11), "STARBUCKS STORE 1234", "n/a"),
            _make_txn("none_date", None, "STARBUCKS STORE 1234", 4.50),
            _make_txn("ok", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
        ]
        result = AnomalyDetector(AnomalyConfig()).detect(txns)
        assert len(result) == 4
        assert not any(t.is_anomaly for t in result)

    def test_dismissal_preserved(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50, anomaly_dismissed=True),
            _make_txn("b", datetime(2024, 3, 2, 9), "STARBUCKS STORE 1235", 4.50),
            _make_txn("c", datetime(2024, 4, 2, 9), "BOOKSHOP", 30.0, anomaly_dismissed=True),
        ]
        result = _by_id(AnomalyDetector(AnomalyConfig()).detect(txns))
        assert result["a"].is_anomaly is True
        assert result["a"].anomaly_dismissed is True
        assert result["c"].is_anomaly is False
        assert result["c"].anomaly_dismissed is True

    def test_multiple_findings_merged_in_check_order(self):
        baseline = [20, 22, 21, 23, 19, 20] * 4
        txns = _make_category_series(baseline)
        txns.append(_make_txn("x1", datetime(2024, 6, 1, 10), "STEAKHOUSE 77", 100.0))
        txns.append(_make_txn("x2", datetime(2024, 6, 1, 12), "STEAKHOUSE 77", 100.0))
        result = _by_id(AnomalyDetector(AnomalyConfig()).detect(txns))

        flagged = result["x2"]
        assert flagged.anomaly_types == (AnomalyType.HIGH_AMOUNT, AnomalyType.DUPLICATE)
        assert flagged.anomaly_details.duplicate_of == "x1"
        assert flagged.anomaly_details.amount_deviation > 2.5

    def test_empty_input(self):
        assert AnomalyDetector(AnomalyConfig()).detect([]) == []

    def test_defaults_loaded_from_config(self):
        detector = AnomalyDetector()
        assert detector.config == AnomalyConfig()
        assert [c.name for c in detector.checks] == ["amount", "duplicate", "frequency"]


# =============================================================================
# REVIEW QUEUE
# =============================================================================

class TestReviewQueue:
    def _flagged(self):
        txns = [
            _make_txn("a", datetime(2024, 3, 1, 10), "STARBUCKS STORE 1234", 4.50),
            _make_txn("b", datetime(2024, 3, 2, 9), "STARBUCKS STORE 1235", 4.50),
            _make_txn("c", datetime(2024, 4, 2, 9), "BOOKSHOP", 30.0),
        ]
        return AnomalyDetector(AnomalyConfig()).detect(txns)

    def test_summary_counts_open_anomalies(self):
        summary = summarize_anomalies(self._flagged())
        assert summary.count == 2
        assert summary.type_counts == {AnomalyType.DUPLICATE: 2}

    def test_dismiss_and_restore(self):
        flagged = self._flagged()
        dismissed = dismiss_anomaly(flagged, "a")

        assert _by_id(dismissed)["a"].anomaly_dismissed is True
        assert _by_id(flagged)["a"].anomaly_dismissed is False
        assert summarize_anomalies(dismissed).count == 1

        restored = restore_anomaly(dismissed, "a")
        assert summarize_anomalies(restored).count == 2

    def test_dismissal_survives_rescan(self):
        dismissed = dismiss_anomaly(self._flagged(), "a")
        rescanned = _by_id(AnomalyDetector(AnomalyConfig()).detect(dismissed))
        assert rescanned["a"].is_anomaly is True
        assert rescanned["a"].anomaly_dismissed is True
