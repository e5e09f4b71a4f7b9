"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. TransactionScorer        →  scores every transaction on its own
    2. TemporalPatternAnalyzer  →  groups by service, rewards repetition/cadence
    3. ResultFilter             →  drops unlikely results, consolidates by service
    4. Output serialization     →  DataFrame for CSV export

This is the single entry point for running the engine. Everything else
is internal machinery.

Usage:
    from pipeline import SubscriptionPipeline

    pipeline = SubscriptionPipeline()
    subscriptions = pipeline.run(transactions)
    df = pipeline.to_frame(subscriptions)
"""

import logging
from typing import List

import pandas as pd

from config.config_loader import get_filtering_config, load_config
from core.models import FLAG_REFUND, ConsolidatedSubscription, ScoredResult
from core.result_filter import ResultFilter
from core.service_catalog import ServiceCatalog
from core.service_resolver import ServiceResolver
from core.temporal_analyzer import TemporalPatternAnalyzer
from core.transaction_scorer import TransactionScorer

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["content", "amount", "date"]

OUTPUT_COLUMNS = [
    "service_name", "category", "average_amount", "most_recent_date",
    "occurrence_count", "probability", "rationale", "keywords",
]


class SubscriptionPipeline:
    """
    End-to-end subscription detection pipeline.

    Stateless between calls: every run builds its results from scratch, so
    one instance can serve independent batches. The catalog is shared
    read-only by all stages.
    """

    def __init__(self):
        self.config = load_config()
        self.catalog = ServiceCatalog()
        self.scorer = TransactionScorer(self.catalog)
        self.resolver = ServiceResolver(self.catalog)
        self.analyzer = TemporalPatternAnalyzer(self.resolver)
        self.result_filter = ResultFilter(self.catalog)
        self.candidate_threshold = get_filtering_config()["candidate_threshold"]

        logger.info(f"Pipeline initialized. Catalog: {len(self.catalog)} services.")

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, transactions) -> List[ConsolidatedSubscription]:
        """
        Run the full detection pipeline.

        Args:
            transactions: list of mappings / Transaction objects, or a
                DataFrame with content, amount and date columns.

        Returns:
            One ConsolidatedSubscription per detected service, sorted by
            probability descending.
        """
        kept = self._run_stages(transactions)
        subscriptions = self.result_filter.consolidate(kept)
        logger.info(f"Pipeline complete. Subscriptions: {len(subscriptions):,}.")
        return subscriptions

    def run_detailed(self, transactions) -> List[ScoredResult]:
        """
        Runs every stage except consolidation. Useful for debugging or when
        the caller wants one row per surviving transaction.
        """
        kept = self._run_stages(transactions)
        kept.sort(key=lambda r: -r.probability)
        return kept

    def score_all(self, transactions) -> List[ScoredResult]:
        """Runs only Stage 1. Returns one result per input row, in input order."""
        rows = self._prepare(transactions)
        return [self.scorer.score(row, index=i) for i, row in enumerate(rows)]

    # -------------------------------------------------------------------------
    # INTERNAL: STAGES
    # -------------------------------------------------------------------------

    def _run_stages(self, transactions) -> List[ScoredResult]:
        """Scoring, grouping and filtering. Survivors come back in input order."""
        rows = self._prepare(transactions)
        logger.info(f"Pipeline starting. Input: {len(rows):,} transactions.")
        if not rows:
            return []

        # --- Stage 1: Scoring ---
        scored = [self.scorer.score(row, index=i) for i, row in enumerate(rows)]
        candidates = [r for r in scored if r.probability >= self.candidate_threshold]
        logger.info(
            f"Stage 1 complete. Scored: {len(scored):,}, candidates: {len(candidates):,}."
        )

        # --- Stage 2: Grouping & temporal patterns ---
        # Unflagged expenses group even at probability 0 so repeated payments
        # to unknown merchants can be promoted. Refunds join to block bonuses.
        groupable = [r for r in scored if not r.flags or FLAG_REFUND in r.flags]
        groups = self.analyzer.group(groupable)
        self.analyzer.analyze_repeat_amounts(groups)
        self.analyzer.analyze_date_patterns(groups)
        logger.info(f"Stage 2 complete. Service groups: {len(groups):,}.")

        # --- Stage 3: Filtering ---
        kept = self.result_filter.filter_final_results(groups, candidates)
        logger.info(f"Stage 3 complete. Kept: {len(kept):,}.")
        return kept

    # -------------------------------------------------------------------------
    # INTERNAL: INPUT
    # -------------------------------------------------------------------------

    @staticmethod
    def _prepare(transactions) -> list:
        """
        Validates the container and returns a list of rows.

        Raises:
            TypeError: If transactions is not a list/tuple or DataFrame.
            ValueError: If a DataFrame lacks required columns.
        """
        if isinstance(transactions, pd.DataFrame):
            missing = [c for c in REQUIRED_COLUMNS if c not in transactions.columns]
            if missing:
                raise ValueError(f"Missing required columns: {missing}")
            return transactions.to_dict(orient="records")

        if not isinstance(transactions, (list, tuple)):
            raise TypeError(
                f"Transactions must be a list or DataFrame, got {type(transactions).__name__}"
            )
        return list(transactions)

    # -------------------------------------------------------------------------
    # OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    @staticmethod
    def to_frame(subscriptions: List[ConsolidatedSubscription]) -> pd.DataFrame:
        """Converts consolidated subscriptions to a flat DataFrame."""
        if not subscriptions:
            return pd.DataFrame(columns=OUTPUT_COLUMNS)

        rows = []
        for s in subscriptions:
            rows.append({
                "service_name": s.service_name,
                "category": s.category,
                "average_amount": round(s.average_amount, 2),
                "most_recent_date": s.most_recent_date,
                "occurrence_count": s.occurrence_count,
                "probability": round(s.probability, 4),
                "rationale": s.rationale,
                "keywords": " | ".join(s.keywords),
            })

        return pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
