"""
temporal_analyzer.py
---------------------
Grouping and temporal pattern analysis.

This is the cross-transaction layer. The scorer has already judged each
payment on its own; this layer answers:

    "Do the payments to this service repeat, and on what cadence?"

Design decisions:
    - Grouping key is the resolved service identity, not the raw text, so
      "NETFLIX.COM" and "ネットフリックス" land in one group.
    - Cadence detection uses inter-payment gap analysis against the bands
      in config.yaml (monthly [25, 35] days, yearly [350, 380] days).
    - Bonuses are additive, capped at 1.0, and only applied to members that
      already look like subscriptions (probability >= 0.5).
    - Groups carrying income, refund or excluded rows are left untouched.
"""

import logging
from datetime import datetime
from typing import Dict, List

import numpy as np

from config.config_loader import get_repeat_config, get_temporal_config
from core.models import ScoredResult, ServiceGroup
from core.parsing import parse_date
from core.service_resolver import ServiceResolver

logger = logging.getLogger(__name__)

MONTHLY = "monthly"
YEARLY = "yearly"


class TemporalPatternAnalyzer:
    """
    Groups scored results by service and rewards regular payment cadence.

    Usage:
        analyzer = TemporalPatternAnalyzer()
        groups = analyzer.group(results)
        analyzer.analyze_repeat_amounts(groups)
        analyzer.analyze_date_patterns(groups)
    """

    def __init__(self, resolver: ServiceResolver | None = None):
        self.config = get_temporal_config()
        self.repeat_config = get_repeat_config()
        self.resolver = resolver or ServiceResolver()
        self.monthly_gap_range = tuple(self.config["monthly_gap_range"])
        self.yearly_gap_range = tuple(self.config["yearly_gap_range"])
        self.min_bonus_probability = self.config["min_bonus_probability"]
        self.bonuses = self.config["bonuses"]
        self.fuzzy_threshold = self.config.get("fuzzy_grouping_threshold")

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def group(self, results: List[ScoredResult]) -> Dict[str, ServiceGroup]:
        """
        Groups results by resolved service identity.

        Sets service_id, service_name and (for catalog services) category on
        every result. Groups are ordered by first appearance.
        """
        groups: Dict[str, ServiceGroup] = {}

        for result in results:
            canonical = self.resolver.identify_service(result.content)
            service_id = self.resolver.service_id(canonical)

            if service_id not in groups and self.fuzzy_threshold is not None:
                service_id, canonical = self._closest_group(groups, result, service_id, canonical)

            result.service_id = service_id
            result.service_name = canonical
            result.category = result.category or self.resolver.category_for(canonical)

            if service_id not in groups:
                groups[service_id] = ServiceGroup(service_id=service_id, service_name=canonical)
            groups[service_id].members.append(result)

        logger.debug(f"Grouped {len(results):,} results into {len(groups):,} services.")
        return groups

    def analyze_repeat_amounts(self, groups: Dict[str, ServiceGroup]) -> None:
        """
        Promotes groups paid repeatedly with a consistent amount.

        Consistency is 1.0 when every amount is identical, otherwise
        1 - distinct_amounts / occurrences, and must exceed min_consistency.
        Every member, including ones the scorer gave nothing, is raised to

            base_score + consistency * consistency_weight
                       (+ common_price_bonus if the average is near a common price)

        capped at max_score.
        """
        cfg = self.repeat_config

        for group in groups.values():
            if len(group) < cfg["min_occurrences"] or self._is_blocked(group):
                continue

            amounts = [round(m.amount, 2) for m in group.members]
            distinct = len(set(amounts))
            consistency = 1.0 if distinct == 1 else 1 - distinct / len(amounts)
            average = float(np.mean(amounts))
            if consistency <= cfg["min_consistency"] or average <= 0:
                continue

            promoted = cfg["base_score"] + consistency * cfg["consistency_weight"]
            clause = f"same amount ({average:,.0f}) paid {len(group)} times"
            nearest = self.resolver.catalog.nearest_common_price(average)
            if nearest is not None and nearest[1] <= cfg["common_price_tolerance"]:
                promoted += cfg["common_price_bonus"]
                clause += ", close to a common subscription price"
            promoted = round(min(promoted, cfg["max_score"]), 4)

            group.repeat_detected = True
            for member in group.members:
                member.raise_to(promoted)
                member.append_reason(clause)

    def analyze_date_patterns(self, groups: Dict[str, ServiceGroup]) -> None:
        """Detects monthly/yearly cadence per group and applies the bonus."""
        for group in groups.values():
            if len(group) < 2 or self._is_blocked(group):
                continue

            dates = self._parse_member_dates(group.members)
            if len(dates) < 2:
                continue

            cadence, consecutive = self._detect_cadence(dates)
            if cadence is None:
                continue

            group.cadence = cadence
            group.max_consecutive_months = consecutive
            bonus, clause = self._cadence_bonus(cadence, consecutive)

            for member in group.members:
                if member.probability < self.min_bonus_probability:
                    continue
                member.add_bonus(bonus)
                member.probability = round(member.probability, 4)
                if not self._has_cadence_clause(member, cadence):
                    member.append_reason(clause)

            logger.debug(
                f"{group.service_name}: {cadence} cadence, "
                f"{consecutive} consecutive months, bonus {bonus}."
            )

    # -------------------------------------------------------------------------
    # INTERNAL: CADENCE DETECTION
    # -------------------------------------------------------------------------

    def _detect_cadence(self, dates: List[datetime]) -> tuple[str | None, int]:
        """
        Returns (cadence, longest run of consecutive calendar months).

        Monthly wins over yearly when both bands are hit.
        """
        dates = sorted(dates)
        stamps = np.array(dates, dtype="datetime64[D]")
        gaps = np.diff(stamps).astype(int)

        monthly_low, monthly_high = self.monthly_gap_range
        yearly_low, yearly_high = self.yearly_gap_range
        is_monthly = bool(np.any((gaps >= monthly_low) & (gaps <= monthly_high)))
        is_yearly = bool(np.any((gaps >= yearly_low) & (gaps <= yearly_high)))

        consecutive = self._longest_consecutive_months(dates)

        if is_monthly:
            return MONTHLY, consecutive
        if is_yearly:
            return YEARLY, consecutive
        return None, consecutive

    @staticmethod
    def _longest_consecutive_months(dates: List[datetime]) -> int:
        months = sorted({d.year * 12 + (d.month - 1) for d in dates})
        if not months:
            return 0
        longest = current = 1
        for prev, curr in zip(months, months[1:]):
            current = current + 1 if curr == prev + 1 else 1
            longest = max(longest, current)
        return longest

    def _cadence_bonus(self, cadence: str, consecutive: int) -> tuple[float, str]:
        if cadence == MONTHLY:
            if consecutive >= self.config["consecutive_months_for_confirmed"]:
                bonus = self.bonuses["monthly_confirmed"]
            else:
                bonus = self.bonuses["monthly"]
            return bonus, f"monthly payment pattern detected ({consecutive} consecutive months)"
        return self.bonuses["yearly"], "yearly payment pattern detected"

    @staticmethod
    def _has_cadence_clause(result: ScoredResult, cadence: str) -> bool:
        return f"{cadence} payment pattern detected" in result.rationale

    # -------------------------------------------------------------------------
    # INTERNAL: HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_blocked(group: ServiceGroup) -> bool:
        """Groups with income, refund or excluded members get no bonuses."""
        return any(m.is_flagged for m in group.members)

    @staticmethod
    def _parse_member_dates(members: List[ScoredResult]) -> List[datetime]:
        dates = []
        for member in members:
            parsed = member.parsed_date or parse_date(member.date)
            if parsed is not None:
                dates.append(parsed)
        return dates

    def _closest_group(
        self, groups: Dict[str, ServiceGroup], result: ScoredResult, service_id: str, canonical: str
    ) -> tuple[str, str]:
        """Best existing group above the fuzzy threshold, else the own identity."""
        best_id, best_name, best_score = service_id, canonical, self.fuzzy_threshold
        for group in groups.values():
            score = self.resolver.similarity(result.content, group.members[0].content)
            if score >= best_score and (best_id == service_id or score > best_score):
                best_id, best_name, best_score = group.service_id, group.service_name, score
        return best_id, best_name
