"""
transaction_scorer.py
----------------------
Per-transaction subscription scoring.

This layer looks at ONE transaction at a time and answers:

    "How likely is this single payment to be a subscription, and why?"

It does not know about other transactions. Repetition and cadence belong to
the grouping layer. Scoring is pure per transaction, so results do not
depend on batch order.

Scoring order (the first exclusion short-circuits with probability 0):
    1. Oversized description   → marketplace order, excluded. Descriptions
                                 matching a marketplace pattern are cut off
                                 at a shorter length.
    2. Income                  → excluded, unless a known subscription refund.
    3. Exclusion keyword       → top-ups, points, transfers, payroll, ATM...
    4. Base score              → max over catalog, indicators, category
                                 metadata and the price-only floor.
                                 Long descriptions are penalized.
    5. Base below threshold    → returned as is.
    6. Price commonality bonus → small additive bonus, capped at 1.0.
"""

import logging
import re
from collections.abc import Mapping

from config.config_loader import get_scoring_config
from core.models import (
    FLAG_EXCLUDED,
    FLAG_INCOME,
    FLAG_LONG_CONTENT,
    FLAG_REFUND,
    PreprocessedTransaction,
    ScoredResult,
    Transaction,
)
from core.parsing import parse_amount, parse_date
from core.service_catalog import ServiceCatalog
from core.text_normalizer import normalize, tokenize

logger = logging.getLogger(__name__)

LONG_CONTENT_REASON = "likely a marketplace order, excluded by length."
NO_INDICATOR_REASON = "no subscription indicators found"


def coerce_transaction(raw) -> Transaction:
    """
    Accepts a Transaction or a mapping with content/amount/date keys.

    Raises:
        TypeError: If raw is neither.
    """
    if isinstance(raw, Transaction):
        return raw
    if isinstance(raw, Mapping):
        content = raw.get("content")
        category = raw.get("category")
        is_expense = raw.get("is_expense")
        return Transaction(
            content="" if content is None or content != content else str(content),
            amount=raw.get("amount"),
            date="" if raw.get("date") is None else str(raw.get("date")),
            category=None if category is None or category != category else str(category),
            is_expense=None if is_expense is None or is_expense != is_expense else bool(is_expense),
        )
    raise TypeError(
        f"Transactions must be mappings or Transaction objects, got {type(raw).__name__}"
    )


class TransactionScorer:
    """
    Scores transactions against the service catalog.

    Usage:
        scorer = TransactionScorer()
        result = scorer.score({"content": "Netflix", "amount": "-1490", "date": "2024-01-05"})
    """

    def __init__(self, catalog: ServiceCatalog | None = None):
        self.config = get_scoring_config()
        self.catalog = catalog or ServiceCatalog()
        self.max_content_length = self.config["max_content_length"]
        self.min_score_threshold = self.config["min_score_threshold"]
        self.expense_sign = self.config.get("expense_sign", "negative")
        self.marketplace_patterns = [
            re.compile(p, re.IGNORECASE) for p in self.config.get("marketplace_patterns", [])
        ]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def preprocess(self, raw, index: int = 0) -> PreprocessedTransaction:
        """Derives the normalized, tokenized, numeric view of one row."""
        txn = coerce_transaction(raw)
        signed = parse_amount(txn.amount)
        magnitude = abs(signed)

        if txn.is_expense is not None:
            is_expense = bool(txn.is_expense) and magnitude > 0
        elif self.expense_sign == "positive":
            is_expense = signed > 0
        else:
            is_expense = signed < 0

        return PreprocessedTransaction(
            index=index,
            content=txn.content or "",
            normalized=normalize(txn.content),
            tokens=tuple(tokenize(txn.content)),
            amount=magnitude,
            is_expense=is_expense,
            date=txn.date or "",
            parsed_date=parse_date(txn.date),
            category=txn.category,
        )

    def score(self, raw, index: int = 0) -> ScoredResult:
        """Scores a raw transaction (mapping or Transaction)."""
        return self.score_preprocessed(self.preprocess(raw, index))

    def score_preprocessed(self, txn: PreprocessedTransaction) -> ScoredResult:
        result = ScoredResult(
            content=txn.content,
            amount=txn.amount,
            date=txn.date,
            index=txn.index,
            normalized=txn.normalized,
            parsed_date=txn.parsed_date,
        )

        # --- 1. Oversized description ---
        if self._is_oversized(txn.normalized):
            result.flags.add(FLAG_LONG_CONTENT)
            result.rationale = LONG_CONTENT_REASON
            return result

        # --- 2. Income ---
        if not txn.is_expense:
            if not self.catalog.match_refund(txn.normalized):
                result.flags.add(FLAG_INCOME)
                result.rationale = f"「{txn.content}」 is an income/deposit, not a payment"
                return result
            result.flags.add(FLAG_REFUND)
            result.append_reason(f"「{txn.content}」 is a subscription refund")

        # --- 3. Hard exclusions ---
        hits = self.catalog.exclusion_hits(txn.normalized, txn.tokens)
        if hits:
            result.flags.add(FLAG_EXCLUDED)
            result.keywords = hits
            result.append_reason(
                f"「{txn.content}」 is unlikely to be a subscription (contains {', '.join(hits)})"
            )
            return result

        # --- 4. Base score ---
        base_score, reasons, keywords = self._compute_base_score(txn)
        result.keywords = keywords or list(txn.tokens)

        if FLAG_REFUND in result.flags:
            # Refunds are grouped with their service but never scored up.
            for reason in reasons:
                result.append_reason(reason)
            return result

        penalized = self._length_penalty(base_score, len(txn.normalized))
        if penalized < base_score:
            reasons.append(f"long description ({len(txn.normalized)} characters), score reduced")
            base_score = penalized

        result.probability = round(min(base_score, 1.0), 4)

        # --- 5. Below threshold ---
        if base_score < self.min_score_threshold:
            result.rationale = "; ".join(reasons) if reasons else NO_INDICATOR_REASON
            return result

        for reason in reasons:
            result.append_reason(reason)

        # --- 6. Price commonality bonus ---
        bonus, price_reason = self._price_bonus(txn.amount)
        if bonus > 0:
            result.add_bonus(bonus)
            result.probability = round(result.probability, 4)
            result.append_reason(price_reason)

        return result

    # -------------------------------------------------------------------------
    # INTERNAL: LENGTH RULES
    # -------------------------------------------------------------------------

    def _is_oversized(self, normalized: str) -> bool:
        if len(normalized) > self.max_content_length:
            return True
        return (
            len(normalized) > self.config["marketplace_max_length"]
            and any(p.search(normalized) for p in self.marketplace_patterns)
        )

    def _length_penalty(self, base_score: float, length: int) -> float:
        """
        Loses 0.1 per 50 characters past length_penalty_start, at most
        length_penalty_max, never below length_penalty_floor. Scores under
        0.5 are left alone.
        """
        start = self.config["length_penalty_start"]
        if base_score < 0.5 or length <= start:
            return base_score
        penalty = min(self.config["length_penalty_max"], (length - start) / 50 * 0.1)
        return max(self.config["length_penalty_floor"], base_score - penalty)

    # -------------------------------------------------------------------------
    # INTERNAL: BASE SCORE
    # -------------------------------------------------------------------------

    def _compute_base_score(
        self, txn: PreprocessedTransaction
    ) -> tuple[float, list[str], list[str]]:
        """
        Max over every matching source, one rationale clause per source.

        Returns:
            Tuple of (base_score, rationale_clauses, keywords).
        """
        base_score = 0.0
        reasons: list[str] = []
        keywords: list[str] = []

        services = self.catalog.match_services(txn.normalized)
        if services:
            best_entry, best_score = max(services, key=lambda pair: pair[1])
            base_score = max(base_score, best_score)
            keywords.append(best_entry.name)
            reasons.append(
                f"「{best_entry.name}」 is a known subscription service "
                f"(category: {best_entry.category})"
            )

        indicators = self.catalog.match_indicators(txn.normalized)
        if indicators:
            base_score = max(base_score, max(score for _, score in indicators))
            matched = [kw for kw, _ in indicators]
            keywords.extend(kw for kw in matched if kw not in keywords)
            reasons.append(f"matches subscription keyword(s) {'、'.join(matched)}")

        category_hits = self.catalog.match_category_keywords(txn.category)
        if category_hits:
            base_score = max(base_score, max(score for _, score in category_hits))
            reasons.append(f"category「{txn.category}」suggests a recurring charge")

        if base_score == 0.0 and txn.amount > 0:
            nearest = self.catalog.nearest_common_price(txn.amount)
            if nearest is not None and nearest[1] == 0:
                base_score = self.config["price_only_score"]
                reasons.append(f"amount {txn.amount:,.0f} is a common subscription price")

        return base_score, reasons, keywords

    def _price_bonus(self, amount: float) -> tuple[float, str]:
        """Exact common price beats a near match; nothing outside tolerance."""
        if amount <= 0:
            return 0.0, ""
        nearest = self.catalog.nearest_common_price(amount)
        if nearest is None:
            return 0.0, ""

        price, distance = nearest
        if distance == 0:
            return self.config["exact_price_bonus"], f"amount {amount:,.0f} is a common subscription price"
        if distance <= self.config["price_tolerance"]:
            return (
                self.config["near_price_bonus"],
                f"amount {amount:,.0f} is close to a common subscription price ({price:,.0f})",
            )
        return 0.0, ""
