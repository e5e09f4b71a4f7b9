"""
test_engine.py
---------------
Test suite for the subscription detection engine.

Run from the project root:
    python -m pytest tests/ -v

Tests are organized by layer:
    - Config & Text normalization
    - Service Catalog & Resolver
    - Transaction Scorer
    - Temporal Pattern Analyzer
    - Result Filter
    - Full Pipeline (integration)
"""

import sys
import os
import pytest
import pandas as pd
from datetime import datetime

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import (
    load_config,
    get_service_catalog,
    get_scoring_config,
    reset_config,
    _section,
)
from core.models import (
    FLAG_EXCLUDED,
    FLAG_INCOME,
    FLAG_LONG_CONTENT,
    FLAG_REFUND,
    ScoredResult,
    Transaction,
)
from core.parsing import parse_amount, parse_date, date_or_epoch, EPOCH
from core.text_normalizer import normalize, tokenize
from core.service_catalog import ServiceCatalog
from core.service_resolver import ServiceResolver
from core.transaction_scorer import (
    LONG_CONTENT_REASON,
    NO_INDICATOR_REASON,
    TransactionScorer,
    coerce_transaction,
)
from core.temporal_analyzer import MONTHLY, YEARLY, TemporalPatternAnalyzer
from core.result_filter import ResultFilter
from pipeline import OUTPUT_COLUMNS, SubscriptionPipeline


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config cache before each test for isolation."""
    reset_config()
    yield
    reset_config()


def _txn(content: str, amount="-1490", date: str = "2024-01-05", **extra) -> dict:
    """Helper: one raw transaction row."""
    row = {"content": content, "amount": amount, "date": date}
    row.update(extra)
    return row


def _monthly_txns(
    content: str = "Netflix",
    amount="-1490",
    n_months: int = 3,
    start_month: int = 1,
    day: int = 5,
    year: int = 2024,
) -> list[dict]:
    """Helper: the same payment on the same day of consecutive months."""
    rows = []
    for i in range(n_months):
        month = start_month + i
        y = year + (month - 1) // 12
        m = (month - 1) % 12 + 1
        rows.append(_txn(content, amount, f"{y}-{m:02d}-{day:02d}"))
    return rows


LONG_CONTENT = "Amazon.co.jp 注文 " + "ワイヤレスイヤホン高音質長時間再生防水仕様" * 8


# =============================================================================
# CONFIG & TEXT NORMALIZATION TESTS
# =============================================================================

class TestConfig:
    def test_config_loads_successfully(self):
        config = load_config()
        for section in ("scoring", "temporal", "repeat", "filtering", "services",
                        "indicators", "exclusion_keywords", "common_prices", "report"):
            assert section in config

    def test_catalog_order_preserved(self):
        names = [s["name"] for s in get_service_catalog()]
        assert names[0] == "Netflix"
        assert names.index("Google One") < names.index("Google")
        assert names.index("Apple Music") < names.index("Apple")

    def test_scoring_thresholds(self):
        scoring = get_scoring_config()
        assert scoring["max_content_length"] == 100
        assert scoring["min_score_threshold"] == 0.4

    def test_missing_section_raises(self):
        with pytest.raises(KeyError):
            _section("nonexistent_section")

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")


class TestTextNormalizer:
    def test_normalize_strips_punctuation_and_digits(self):
        assert normalize("NETFLIX.COM 1490") == "netflixcom"

    def test_normalize_folds_full_width(self):
        assert normalize("ＮＥＴＦＬＩＸ") == "netflix"

    def test_normalize_is_idempotent(self):
        for text in ("Amazon Prime 会費", "ネットフリックス（月額）", "U-NEXT", ""):
            assert normalize(normalize(text)) == normalize(text)

    def test_normalize_handles_none(self):
        assert normalize(None) == ""

    def test_tokenize_splits_scripts(self):
        assert tokenize("Amazon Prime会費") == ["amazon", "prime", "会費"]

    def test_tokenize_empty(self):
        assert tokenize("") == []
        assert tokenize(None) == []


class TestParsing:
    def test_parse_amount_formats(self):
        assert parse_amount("-1,490") == -1490.0
        assert parse_amount("¥1,490") == 1490.0
        assert parse_amount(-980) == -980.0
        assert parse_amount("１，４９０") == 1490.0

    def test_parse_amount_garbage_is_zero(self):
        assert parse_amount("abc") == 0.0
        assert parse_amount(None) == 0.0
        assert parse_amount(float("nan")) == 0.0

    def test_parse_date_formats(self):
        expected = datetime(2024, 1, 5)
        assert parse_date("2024/01/05") == expected
        assert parse_date("2024-01-05") == expected
        assert parse_date("20240105") == expected

    def test_parse_date_invalid_is_none(self):
        assert parse_date("not a date") is None
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_unparsable_date_sorts_first(self):
        assert date_or_epoch("garbage") == EPOCH
        assert date_or_epoch("2024-01-05") > EPOCH

    def test_triangle_marks_negative(self):
        assert parse_amount("△500") == -500.0
        assert parse_amount("▲1,490") == -1490.0


# =============================================================================
# SERVICE CATALOG & RESOLVER TESTS
# =============================================================================

class TestServiceCatalog:
    def test_catalog_loads(self):
        catalog = ServiceCatalog()
        assert len(catalog) > 0

    def test_specific_entry_precedes_generic(self):
        catalog = ServiceCatalog()
        assert catalog.identify(normalize("Google One")).name == "Google One"
        assert catalog.identify(normalize("Google Play")).name == "Google"
        assert catalog.identify(normalize("Apple Music")).name == "Apple Music"

    def test_short_brand_needs_word_boundary(self):
        catalog = ServiceCatalog()
        assert catalog.identify(normalize("au でんき")).name == "au"
        assert catalog.identify(normalize("Audible")).name == "Audible"

    def test_unknown_returns_none(self):
        catalog = ServiceCatalog()
        assert catalog.identify(normalize("近所のパン屋")) is None
        assert catalog.identify("") is None

    def test_exclusion_hits(self):
        catalog = ServiceCatalog()
        assert catalog.exclusion_hits(normalize("Suica チャージ")) == ["チャージ"]
        assert catalog.match_exclusions(normalize("Netflix")) is False

    def test_latin_exclusions_match_whole_tokens(self):
        catalog = ServiceCatalog()
        for text in ("Premium Treatment Club", "Dental Appointment Plan"):
            assert catalog.exclusion_hits(normalize(text), tokenize(text)) == []
        assert catalog.exclusion_hits(normalize("ATM 出金"), tokenize("ATM 出金")) == ["atm", "出金"]

    def test_direct_debit_not_excluded(self):
        catalog = ServiceCatalog()
        text = "ジム会費 口座振替"
        assert not catalog.match_exclusions(normalize(text), tokenize(text))
        assert catalog.match_exclusions(normalize("振込 ヤマダタロウ"))

    def test_nearest_common_price(self):
        catalog = ServiceCatalog()
        assert catalog.nearest_common_price(980) == (980.0, 0.0)
        # Ties resolve to the lower price.
        assert catalog.nearest_common_price(1490) == (1480.0, 10.0)

    def test_definite_brand(self):
        catalog = ServiceCatalog()
        assert catalog.is_definite_brand(normalize("NETFLIX.COM"))
        assert not catalog.is_definite_brand(normalize("ジム会費"))


class TestServiceResolver:
    def test_identify_known_service(self):
        resolver = ServiceResolver()
        assert resolver.identify_service("NETFLIX.COM") == "Netflix"
        assert resolver.identify_service("ネットフリックス") == "Netflix"

    def test_identify_unknown_service_is_normalized_content(self):
        resolver = ServiceResolver()
        assert resolver.identify_service("ABC Store 123") == "abcstore"

    def test_service_id_is_stable(self):
        assert ServiceResolver.service_id("Disney+") == "disney"
        assert ServiceResolver.service_id("Netflix") == ServiceResolver.service_id("NETFLIX")

    def test_similarity_equal(self):
        resolver = ServiceResolver()
        assert resolver.similarity("Netflix", "NETFLIX") == 1.0

    def test_similarity_empty(self):
        resolver = ServiceResolver()
        assert resolver.similarity("", "Netflix") == 0.0

    def test_similarity_containment(self):
        resolver = ServiceResolver()
        assert resolver.similarity("Spotify AB", "SPOTIFY") == pytest.approx(7 / 9 * 0.9)

    def test_similarity_shared_brand_token(self):
        resolver = ServiceResolver()
        # Jaccard is 1/4, raised to the brand floor.
        assert resolver.similarity("Amazon Prime Video", "Amazon Music") == pytest.approx(0.7)

    def test_similarity_is_symmetric_and_bounded(self):
        resolver = ServiceResolver()
        pairs = [("Netflix", "Hulu"), ("Spotify AB", "SPOTIFY"), ("ジム会費", "ジム")]
        for a, b in pairs:
            score = resolver.similarity(a, b)
            assert 0.0 <= score <= 1.0
            assert score == pytest.approx(resolver.similarity(b, a))

    def test_levenshtein(self):
        assert ServiceResolver.levenshtein("kitten", "sitting") == 3
        assert ServiceResolver.levenshtein("", "abc") == 3


# =============================================================================
# TRANSACTION SCORER TESTS
# =============================================================================

class TestTransactionScorer:
    def test_catalog_match_with_near_price(self):
        result = TransactionScorer().score(_txn("Netflix", "-1490"))
        # 0.95 catalog + 0.02 near 1480
        assert result.probability == pytest.approx(0.97)
        assert "Netflix" in result.keywords
        assert "known subscription service" in result.rationale

    def test_indicator_with_exact_price(self):
        result = TransactionScorer().score(_txn("ジム会費", "-980"))
        assert result.probability == pytest.approx(0.55)
        assert "ジム" in result.keywords
        assert "会費" in result.keywords

    def test_income_excluded(self):
        result = TransactionScorer().score(_txn("給料", "300000"))
        assert result.probability == 0.0
        assert FLAG_INCOME in result.flags

    def test_refund_is_flagged_not_income(self):
        result = TransactionScorer().score(_txn("Netflix Refund", "1490"))
        assert result.probability == 0.0
        assert FLAG_REFUND in result.flags
        assert FLAG_INCOME not in result.flags

    def test_exclusion_keyword(self):
        result = TransactionScorer().score(_txn("Suica チャージ", "-3000"))
        assert result.probability == 0.0
        assert FLAG_EXCLUDED in result.flags
        assert result.keywords == ["チャージ"]

    def test_long_content_excluded(self):
        result = TransactionScorer().score(_txn(LONG_CONTENT, "-8000"))
        assert result.probability == 0.0
        assert FLAG_LONG_CONTENT in result.flags
        assert result.rationale == LONG_CONTENT_REASON

    def test_marketplace_order_has_shorter_cutoff(self):
        content = "Amazon.co.jp " + "ワイヤレスイヤホン" * 7
        assert 70 < len(normalize(content)) <= 100
        result = TransactionScorer().score(_txn(content, "-3980"))
        assert result.probability == 0.0
        assert FLAG_LONG_CONTENT in result.flags

    def test_same_length_without_marketplace_is_scored(self):
        content = "月額プラン" + "テ" * 75
        result = TransactionScorer().score(_txn(content, "-12345"))
        # 0.8 minus 0.1 per 50 characters past 50: 30 chars -> 0.06.
        assert result.probability == pytest.approx(0.74)
        assert "long description" in result.rationale
        assert FLAG_LONG_CONTENT not in result.flags

    def test_length_penalty_skips_weak_scores(self):
        result = TransactionScorer().score(_txn("テ" * 80, "-980"))
        assert result.probability == pytest.approx(0.3)

    def test_price_only_floor_below_threshold(self):
        result = TransactionScorer().score(_txn("ABC Store", "-980"))
        # Price-only evidence stays below the bonus threshold.
        assert result.probability == pytest.approx(0.3)
        assert "common subscription price" in result.rationale

    def test_no_evidence(self):
        result = TransactionScorer().score(_txn("Lunch", "-1234"))
        assert result.probability == 0.0
        assert result.rationale == NO_INDICATOR_REASON

    def test_category_metadata_scores(self):
        result = TransactionScorer().score(
            _txn("XYZ社", "-3333", category="通信費 携帯電話")
        )
        assert result.probability == pytest.approx(0.5)
        assert "category" in result.rationale

    def test_is_expense_overrides_sign(self):
        result = TransactionScorer().score(_txn("Netflix", "1490", is_expense=True))
        assert result.probability == pytest.approx(0.97)

    def test_accepts_transaction_objects(self):
        txn = Transaction(content="Spotify", amount="-980", date="2024-01-05")
        result = TransactionScorer().score(txn)
        assert result.probability == pytest.approx(1.0)

    def test_rejects_unknown_row_type(self):
        with pytest.raises(TypeError):
            coerce_transaction(42)

    def test_scoring_is_deterministic(self):
        scorer = TransactionScorer()
        a = scorer.score(_txn("Adobe Creative Cloud", "-6480"))
        b = scorer.score(_txn("Adobe Creative Cloud", "-6480"))
        assert a.probability == b.probability
        assert a.rationale == b.rationale

    def test_probability_bounded(self):
        scorer = TransactionScorer()
        for content in ("Netflix 月額 サブスク", "Spotify Premium", "", "給料"):
            result = scorer.score(_txn(content, "-980"))
            assert 0.0 <= result.probability <= 1.0


class TestScoredResult:
    def test_bonus_capped(self):
        result = ScoredResult(content="x", amount=1.0, date="", probability=0.95)
        result.add_bonus(0.2)
        assert result.probability == 1.0

    def test_raise_to_never_lowers(self):
        result = ScoredResult(content="x", amount=1.0, date="", probability=0.8)
        result.raise_to(0.5)
        assert result.probability == 0.8

    def test_append_reason_deduplicates(self):
        result = ScoredResult(content="x", amount=1.0, date="")
        result.append_reason("monthly payment pattern detected")
        result.append_reason("monthly payment pattern detected")
        assert result.rationale == "monthly payment pattern detected"


# =============================================================================
# TEMPORAL PATTERN ANALYZER TESTS
# =============================================================================

class TestTemporalAnalyzer:
    def _score(self, rows):
        scorer = TransactionScorer()
        return [scorer.score(row, index=i) for i, row in enumerate(rows)]

    def test_groups_spellings_of_same_brand(self):
        results = self._score([
            _txn("NETFLIX.COM", "-1490", "2024-01-05"),
            _txn("ネットフリックス", "-1490", "2024-02-05"),
        ])
        groups = TemporalPatternAnalyzer().group(results)
        assert list(groups) == ["netflix"]
        assert all(r.service_name == "Netflix" for r in results)
        assert all(r.category == "Video & Music" for r in results)

    def test_detects_monthly_cadence(self):
        analyzer = TemporalPatternAnalyzer()
        dates = [datetime(2024, 1, 5), datetime(2024, 2, 5), datetime(2024, 3, 5)]
        assert analyzer._detect_cadence(dates) == (MONTHLY, 3)

    def test_detects_yearly_cadence(self):
        analyzer = TemporalPatternAnalyzer()
        dates = [datetime(2023, 1, 10), datetime(2024, 1, 10)]
        cadence, _ = analyzer._detect_cadence(dates)
        assert cadence == YEARLY

    def test_irregular_dates_have_no_cadence(self):
        analyzer = TemporalPatternAnalyzer()
        dates = [datetime(2024, 1, 5), datetime(2024, 1, 12), datetime(2024, 6, 20)]
        cadence, _ = analyzer._detect_cadence(dates)
        assert cadence is None

    def test_longest_consecutive_months(self):
        dates = [datetime(2024, 1, 5), datetime(2024, 2, 5), datetime(2024, 3, 5), datetime(2024, 5, 5)]
        assert TemporalPatternAnalyzer._longest_consecutive_months(dates) == 3

    def test_consecutive_months_span_year_end(self):
        dates = [datetime(2023, 11, 1), datetime(2023, 12, 1), datetime(2024, 1, 1)]
        assert TemporalPatternAnalyzer._longest_consecutive_months(dates) == 3

    def test_confirmed_monthly_bonus(self):
        results = self._score(_monthly_txns("Netflix", "-1490", n_months=3))
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_date_patterns(groups)
        assert groups["netflix"].cadence == MONTHLY
        assert all(r.probability == 1.0 for r in results)
        assert all(r.rationale.count("monthly payment pattern detected") == 1 for r in results)

    def test_two_month_bonus_is_smaller(self):
        results = self._score(_monthly_txns("ジム会費", "-980", n_months=2))
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_date_patterns(groups)
        # 0.55 + 0.1
        assert all(r.probability == pytest.approx(0.65) for r in results)

    def test_repeat_amount_promotes_low_scores(self):
        results = self._score(_monthly_txns("ABC Store", "-980", n_months=2))
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_repeat_amounts(groups)
        group = groups["abcstore"]
        assert group.repeat_detected
        # 0.5 + 1.0 * 0.3, plus 0.1 for a common price.
        assert all(r.probability == pytest.approx(0.9) for r in results)

    def test_repeat_amount_promotes_unscored_merchant(self):
        results = self._score(_monthly_txns("Sakura Juku", "-12345", n_months=3, day=10))
        assert all(r.probability == 0.0 for r in results)
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_repeat_amounts(groups)
        assert groups["sakurajuku"].repeat_detected
        assert all(r.probability == pytest.approx(0.8) for r in results)
        assert all("same amount (12,345) paid 3 times" in r.rationale for r in results)

    def test_unparsable_date_drops_only_that_member(self):
        results = self._score([
            _txn("ジム会費", "-980", "2024-01-15"),
            _txn("ジム会費", "-980", "not a date"),
            _txn("ジム会費", "-980", "2024-02-15"),
        ])
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_date_patterns(groups)
        group = groups[ServiceResolver.service_id("ジム会費")]
        assert group.cadence == MONTHLY
        assert group.max_consecutive_months == 2

    def test_one_valid_date_has_no_cadence(self):
        results = self._score([
            _txn("ジム会費", "-980", "2024-01-15"),
            _txn("ジム会費", "-980", "garbage"),
        ])
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_date_patterns(groups)
        assert not groups[ServiceResolver.service_id("ジム会費")].cadence

    def test_fuzzy_grouping_joins_similar_unknowns(self):
        load_config()["temporal"]["fuzzy_grouping_threshold"] = 0.6
        results = self._score([
            _txn("Sakura Juku", "-12345", "2024-01-10"),
            _txn("Sakura Juku Ltd", "-12345", "2024-02-10"),
        ])
        groups = TemporalPatternAnalyzer().group(results)
        assert list(groups) == ["sakurajuku"]
        assert len(groups["sakurajuku"]) == 2

    def test_exact_grouping_by_default(self):
        results = self._score([
            _txn("Sakura Juku", "-12345", "2024-01-10"),
            _txn("Sakura Juku Ltd", "-12345", "2024-02-10"),
        ])
        groups = TemporalPatternAnalyzer().group(results)
        assert len(groups) == 2

    def test_inconsistent_amounts_not_promoted(self):
        results = self._score([
            _txn("ABC Store", "-980", "2024-01-10"),
            _txn("ABC Store", "-1200", "2024-02-10"),
        ])
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_repeat_amounts(groups)
        assert not groups["abcstore"].repeat_detected

    def test_refund_blocks_group_bonuses(self):
        rows = _monthly_txns("Netflix", "-1490", n_months=3)
        rows.append(_txn("Netflix Refund", "1490", "2024-03-20"))
        results = self._score(rows)
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_repeat_amounts(groups)
        analyzer.analyze_date_patterns(groups)
        assert len(groups["netflix"]) == 4
        assert groups["netflix"].cadence is None
        assert all(r.probability == pytest.approx(0.97) for r in results[:3])

    def test_single_member_untouched(self):
        results = self._score([_txn("Netflix", "-1490")])
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_repeat_amounts(groups)
        analyzer.analyze_date_patterns(groups)
        assert results[0].probability == pytest.approx(0.97)
        assert not groups["netflix"].has_signal


# =============================================================================
# RESULT FILTER TESTS
# =============================================================================

class TestResultFilter:
    def _stage(self, rows):
        scorer = TransactionScorer()
        scored = [scorer.score(row, index=i) for i, row in enumerate(rows)]
        candidates = [r for r in scored if r.probability >= 0.4]
        return scored, candidates

    def test_keeps_high_probability_candidates(self):
        scored, candidates = self._stage([_txn("Netflix", "-1490"), _txn("Lunch", "-1234")])
        kept = ResultFilter().filter_final_results(scored, candidates)
        assert [r.content for r in kept] == ["Netflix"]

    def test_drops_low_candidates(self):
        scored, candidates = self._stage([_txn("XYZ社", "-3333", category="通信費")])
        assert len(candidates) == 1
        kept = ResultFilter().filter_final_results(scored, candidates)
        assert kept == []

    def test_drops_flagged_rows(self):
        scored, _ = self._stage([_txn("給料", "300000"), _txn(LONG_CONTENT, "-8000")])
        kept = ResultFilter().filter_final_results(scored, scored)
        assert kept == []

    def test_survivors_in_input_order(self):
        scored, candidates = self._stage([
            _txn("ジム会費", "-980", "2024-01-15"),
            _txn("Netflix", "-1490", "2024-01-05"),
        ])
        kept = ResultFilter().filter_final_results(scored, list(reversed(candidates)))
        assert [r.index for r in kept] == [0, 1]

    def test_consolidate_merges_by_service(self):
        scored, candidates = self._stage([
            _txn("NETFLIX.COM", "-1490", "2024-01-05"),
            _txn("ネットフリックス", "-1990", "2024-02-05"),
        ])
        groups = TemporalPatternAnalyzer().group(scored)
        result_filter = ResultFilter()
        kept = result_filter.filter_final_results(groups, candidates)
        subs = result_filter.consolidate(kept)
        assert len(subs) == 1
        assert subs[0].service_name == "Netflix"
        assert subs[0].occurrence_count == 2
        assert subs[0].average_amount == pytest.approx(1740.0)
        assert subs[0].most_recent_date == "2024-02-05"

    def test_consolidate_unknown_service_uses_content(self):
        scored, candidates = self._stage([_txn("ジム会費", "-980", "2024-01-15")])
        groups = TemporalPatternAnalyzer().group(scored)
        result_filter = ResultFilter()
        subs = result_filter.consolidate(result_filter.filter_final_results(groups, candidates))
        assert subs[0].service_name == "ジム会費"
        assert subs[0].category == "Fitness"


# =============================================================================
# FULL PIPELINE INTEGRATION TESTS
# =============================================================================

class TestPipeline:
    def test_monthly_netflix(self):
        output = SubscriptionPipeline().run(_monthly_txns("Netflix", "-1490", n_months=3))
        assert len(output) == 1
        sub = output[0]
        assert sub.service_name == "Netflix"
        assert sub.occurrence_count == 3
        assert sub.probability >= 0.95
        assert sub.average_amount == pytest.approx(1490.0)
        assert sub.most_recent_date == "2024-03-05"

    def test_payroll_deposit_not_reported(self):
        output = SubscriptionPipeline().run([_txn("給料", "300000", "2024-01-25")])
        assert output == []

    def test_long_marketplace_order_not_reported(self):
        pipeline = SubscriptionPipeline()
        rows = [_txn(LONG_CONTENT, "-8000", "2024-01-10")]
        assert pipeline.score_all(rows)[0].probability == 0.0
        assert pipeline.run(rows) == []

    def test_brand_spellings_merge(self):
        output = SubscriptionPipeline().run([
            _txn("NETFLIX.COM", "-1490", "2024-01-05"),
            _txn("ネットフリックス", "-1490", "2024-02-05"),
        ])
        assert len(output) == 1
        assert output[0].service_name == "Netflix"
        assert output[0].occurrence_count == 2

    def test_single_gym_fee_retained(self):
        output = SubscriptionPipeline().run([_txn("ジム会費", "-980", "2024-01-15")])
        assert len(output) == 1
        assert 0.4 <= output[0].probability < 0.6

    def test_repeated_unknown_merchant_retained(self):
        output = SubscriptionPipeline().run(_monthly_txns("ABC Store", "-980", n_months=2, day=10))
        assert len(output) == 1
        assert output[0].service_name == "ABC Store"
        # Promoted to 0.9, then the two-month bonus.
        assert output[0].probability == pytest.approx(1.0)
        assert output[0].category == "Other"

    def test_repeated_uncommon_amount_retained(self):
        output = SubscriptionPipeline().run(
            _monthly_txns("Sakura Juku", "-12345", n_months=3, day=10)
        )
        assert len(output) == 1
        assert output[0].service_name == "Sakura Juku"
        assert output[0].occurrence_count == 3
        assert output[0].average_amount == pytest.approx(12345.0)

    def test_direct_debit_subscription_retained(self):
        output = SubscriptionPipeline().run(_monthly_txns("ジム会費 口座振替", "-980", day=27))
        assert len(output) == 1
        assert output[0].occurrence_count == 3

    def test_latin_keyword_inside_word_not_excluded(self):
        output = SubscriptionPipeline().run(_monthly_txns("Premium Treatment Club", "-9800"))
        assert [s.service_name for s in output] == ["Premium Treatment Club"]

    def test_blank_content_labeled_for_display(self):
        rows = _monthly_txns("", "-980", n_months=2)
        pipeline = SubscriptionPipeline()
        assert all(r.content == "" for r in pipeline.score_all(rows))
        output = pipeline.run(rows)
        assert len(output) == 1
        assert output[0].service_name == "unknown service"

    def test_single_unknown_price_match_dropped(self):
        assert SubscriptionPipeline().run([_txn("ABC Store", "-980")]) == []

    def test_empty_input(self):
        assert SubscriptionPipeline().run([]) == []

    def test_invalid_container_raises(self):
        with pytest.raises(TypeError):
            SubscriptionPipeline().run("Netflix,-1490,2024-01-05")

    def test_invalid_row_raises(self):
        with pytest.raises(TypeError):
            SubscriptionPipeline().run([42])

    def test_dataframe_input(self):
        df = pd.DataFrame(_monthly_txns("Spotify", "-980", n_months=2))
        output = SubscriptionPipeline().run(df)
        assert [s.service_name for s in output] == ["Spotify"]

    def test_missing_columns_raises(self):
        bad_df = pd.DataFrame({"content": ["Netflix"], "amount": ["-1490"]})
        with pytest.raises(ValueError, match="Missing required columns"):
            SubscriptionPipeline().run(bad_df)

    def test_sorted_by_probability(self):
        rows = [_txn("ジム会費", "-980", "2024-01-15")] + _monthly_txns("Netflix", "-1490")
        output = SubscriptionPipeline().run(rows)
        assert [s.service_name for s in output] == ["Netflix", "ジム会費"]

    def test_occurrences_match_surviving_rows(self):
        rows = (
            _monthly_txns("Netflix", "-1490")
            + _monthly_txns("Spotify", "-980")
            + [_txn("給料", "300000"), _txn("Lunch", "-1234"), _txn("Suica チャージ", "-3000")]
        )
        pipeline = SubscriptionPipeline()
        output = pipeline.run(rows)
        assert sum(s.occurrence_count for s in output) == len(pipeline.run_detailed(rows)) == 6
        assert {s.service_name for s in output} == {"Netflix", "Spotify"}

    def test_more_months_never_lower_probability(self):
        pipeline = SubscriptionPipeline()
        single = pipeline.run(_monthly_txns("Hulu", "-1026", n_months=1))[0]
        repeated = pipeline.run(_monthly_txns("Hulu", "-1026", n_months=4))[0]
        assert repeated.probability >= single.probability

    def test_refund_not_reported(self):
        rows = _monthly_txns("Netflix", "-1490") + [_txn("Netflix Refund", "1490", "2024-03-20")]
        output = SubscriptionPipeline().run(rows)
        assert len(output) == 1
        assert output[0].occurrence_count == 3

    def test_run_detailed_returns_rows(self):
        rows = _monthly_txns("Netflix", "-1490", n_months=2) + [_txn("Lunch", "-1234")]
        detailed = SubscriptionPipeline().run_detailed(rows)
        assert len(detailed) == 2
        assert all(isinstance(r, ScoredResult) for r in detailed)

    def test_to_frame_columns(self):
        pipeline = SubscriptionPipeline()
        df = pipeline.to_frame(pipeline.run(_monthly_txns("Netflix", "-1490")))
        assert list(df.columns) == OUTPUT_COLUMNS
        assert len(df) == 1

    def test_to_frame_empty(self):
        df = SubscriptionPipeline.to_frame([])
        assert list(df.columns) == OUTPUT_COLUMNS
        assert df.empty
