"""
result_filter.py
-----------------
Final filtering and consolidation.

filter_final_results() decides which scored transactions are reported.
consolidate() merges the survivors into one record per service: averaged
amount, most recent date, max probability (with the rationale that earned
it) and the occurrence count.
"""

import logging
from typing import Dict, Iterable, List

from config.config_loader import get_filtering_config, get_report_config, get_scoring_config
from core.models import (
    FLAG_INCOME,
    FLAG_LONG_CONTENT,
    FLAG_REFUND,
    ConsolidatedSubscription,
    ScoredResult,
    ServiceGroup,
)
from core.parsing import date_or_epoch
from core.service_catalog import ServiceCatalog
from core.text_normalizer import normalize, tokenize

logger = logging.getLogger(__name__)


class ResultFilter:
    """
    Removes unlikely subscriptions and merges the rest by service.

    Usage:
        result_filter = ResultFilter()
        kept = result_filter.filter_final_results(groups, candidates)
        subscriptions = result_filter.consolidate(kept)
    """

    def __init__(self, catalog: ServiceCatalog | None = None):
        self.config = get_filtering_config()
        self.catalog = catalog or ServiceCatalog()
        self.max_content_length = get_scoring_config()["max_content_length"]
        self.report_categories: Dict[str, List[str]] = get_report_config().get("categories", {})

    # -------------------------------------------------------------------------
    # FILTERING
    # -------------------------------------------------------------------------

    def filter_final_results(
        self,
        grouped_results: Dict[str, ServiceGroup] | Iterable[ScoredResult],
        high_probability_candidates: Iterable[ScoredResult],
    ) -> List[ScoredResult]:
        """
        Applies the retention rules and returns survivors in input order.

        Candidates (probability >= 0.4 before grouping bonuses) are judged on
        their own. Any other grouped result survives only if its group showed
        a cadence or repeated-amount signal and it reached the keep threshold.
        """
        candidate_ids = {id(r) for r in high_probability_candidates}
        supported_ids = set()

        if isinstance(grouped_results, dict):
            results = []
            for group in grouped_results.values():
                results.extend(group.members)
                if group.has_signal:
                    supported_ids.update(id(m) for m in group.members)
        else:
            results = list(grouped_results)

        kept = []
        for result in results:
            if self._is_dropped(result):
                continue
            if id(result) in candidate_ids:
                if self._keep_candidate(result):
                    kept.append(result)
            elif id(result) in supported_ids and result.probability >= self.config["keep_threshold"]:
                kept.append(result)

        kept.sort(key=lambda r: r.index)
        logger.debug(f"Filter kept {len(kept):,} of {len(results):,} results.")
        return kept

    def _is_dropped(self, result: ScoredResult) -> bool:
        normalized = result.normalized or normalize(result.content)
        if len(normalized) > self.max_content_length or FLAG_LONG_CONTENT in result.flags:
            return True
        if FLAG_INCOME in result.flags or FLAG_REFUND in result.flags:
            return True
        if self.catalog.match_exclusions(normalized, tokenize(result.content)):
            return True
        return False

    def _keep_candidate(self, result: ScoredResult) -> bool:
        if result.probability >= self.config["unconditional_keep"]:
            return True
        if self.catalog.is_definite_brand(result.normalized or normalize(result.content)):
            return True
        return result.probability >= self.config["keep_threshold"]

    # -------------------------------------------------------------------------
    # CONSOLIDATION
    # -------------------------------------------------------------------------

    def consolidate(self, results: Iterable[ScoredResult]) -> List[ConsolidatedSubscription]:
        """
        Merges results by service identity, sorted by probability (stable).
        """
        merged: Dict[str, ConsolidatedSubscription] = {}

        for result in results:
            key = result.service_id if result.service_id is not None else normalize(result.content)
            amount = abs(result.amount)

            existing = merged.get(key)
            if existing is None:
                merged[key] = ConsolidatedSubscription(
                    service_name=self._display_name(result),
                    average_amount=amount,
                    most_recent_date=result.date or "",
                    occurrence_count=1,
                    probability=result.probability,
                    rationale=result.rationale,
                    category=self._category(result),
                    service_id=key,
                    keywords=list(result.keywords),
                )
                continue

            count = existing.occurrence_count + 1
            existing.average_amount = (existing.average_amount * existing.occurrence_count + amount) / count
            existing.occurrence_count = count

            if date_or_epoch(result.date) > date_or_epoch(existing.most_recent_date):
                existing.most_recent_date = result.date

            if result.probability > existing.probability:
                existing.probability = result.probability
                existing.rationale = result.rationale

            existing.keywords.extend(k for k in result.keywords if k not in existing.keywords)

        consolidated = sorted(merged.values(), key=lambda s: -s.probability)
        logger.debug(f"Consolidated into {len(consolidated):,} subscriptions.")
        return consolidated

    def _display_name(self, result: ScoredResult) -> str:
        """Blank content is shown as "unknown service"; scoring never sees this."""
        if result.service_name and self.catalog.get_entry(result.service_name) is not None:
            return result.service_name
        name = (result.content or "").strip()
        if not name:
            return self.config["unknown_service_label"]
        return name

    def _category(self, result: ScoredResult) -> str:
        if result.category:
            return result.category
        text = f"{result.service_name or ''} {result.content or ''}".lower()
        for category, keywords in self.report_categories.items():
            if any(keyword.lower() in text for keyword in keywords):
                return category
        return self.config["default_category"]
