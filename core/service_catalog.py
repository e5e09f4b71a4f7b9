"""
service_catalog.py
-------------------
Service catalog lookup layer.

Loads the known-service table and the keyword lists from config.yaml and
exposes them as read-only lookups over normalized content. This is the
bridge between free-text transaction descriptions and the scoring space.

The service table is an ordered list evaluated first-match-wins for
identity, so the more specific pattern ("Google One") must precede the
generic one ("Google"). Catalog updates happen in config.yaml, not in code.
A service the engine fails to detect is a data gap.
"""

import bisect
import re
from typing import Dict, Iterable, List, Optional, Tuple

from config.config_loader import (
    get_category_keywords,
    get_common_prices,
    get_definite_brands,
    get_exclusion_keywords,
    get_major_brand_tokens,
    get_refund_allowlist,
    get_service_catalog,
    get_subscription_indicators,
)
from core.models import ServiceCatalogEntry
from core.text_normalizer import normalize


class ServiceCatalog:
    """
    Read-only lookups over the service table and keyword lists.

    Built once at init from config. Safe to share between concurrent runs.
    """

    def __init__(self):
        self.entries: List[ServiceCatalogEntry] = []
        self._by_name: Dict[str, ServiceCatalogEntry] = {}
        self._load_services()

        self.indicators: List[Tuple[str, float]] = [
            (normalize(item["indicator"]), float(item["score"]))
            for item in get_subscription_indicators()
        ]
        self.category_keywords: List[Tuple[str, float]] = [
            (normalize(item["keyword"]), float(item["score"]))
            for item in get_category_keywords()
        ]
        self.exclusion_keywords: List[str] = [normalize(k) for k in get_exclusion_keywords()]
        self.refund_allowlist: List[str] = [normalize(k) for k in get_refund_allowlist()]
        self.definite_brands: List[str] = [normalize(k) for k in get_definite_brands()]
        self.major_brand_tokens: frozenset[str] = frozenset(
            t.lower() for t in get_major_brand_tokens()
        )
        self.common_prices: List[float] = sorted(float(p) for p in get_common_prices())

    def _load_services(self) -> None:
        """Compiles the service table from config, preserving order."""
        for item in get_service_catalog():
            low, high = item["price_range"]
            entry = ServiceCatalogEntry(
                name=item["name"],
                pattern=re.compile(item["pattern"], re.IGNORECASE),
                base_score=float(item["score"]),
                category=item["category"],
                billing_period=item.get("period", "monthly"),
                price_range=(float(low), float(high)),
            )
            self.entries.append(entry)
            self._by_name.setdefault(entry.name, entry)

    # -------------------------------------------------------------------------
    # SERVICE MATCHING
    # -------------------------------------------------------------------------

    def match_services(self, normalized: str) -> List[Tuple[ServiceCatalogEntry, float]]:
        """Every catalog entry whose pattern matches, in table order."""
        if not normalized:
            return []
        return [(e, e.base_score) for e in self.entries if e.matches(normalized)]

    def identify(self, normalized: str) -> Optional[ServiceCatalogEntry]:
        """First matching entry, or None."""
        if not normalized:
            return None
        for entry in self.entries:
            if entry.matches(normalized):
                return entry
        return None

    def get_entry(self, name: str) -> Optional[ServiceCatalogEntry]:
        return self._by_name.get(name)

    # -------------------------------------------------------------------------
    # KEYWORD MATCHING
    # -------------------------------------------------------------------------

    def match_indicators(self, normalized: str) -> List[Tuple[str, float]]:
        if not normalized:
            return []
        return [(kw, score) for kw, score in self.indicators if kw and kw in normalized]

    def match_category_keywords(self, category_text: str | None) -> List[Tuple[str, float]]:
        normalized = normalize(category_text)
        if not normalized:
            return []
        return [(kw, score) for kw, score in self.category_keywords if kw and kw in normalized]

    def exclusion_hits(self, normalized: str, tokens: Iterable[str] = ()) -> List[str]:
        """
        Exclusion keywords present in a description.

        Japanese keywords match anywhere in the normalized text. Latin keywords
        must equal a whole token, so "atm" does not hit "treatment".
        """
        token_set = set(tokens)
        return [
            kw for kw in self.exclusion_keywords
            if kw and (kw in token_set if kw.isascii() else kw in normalized)
        ]

    def match_exclusions(self, normalized: str, tokens: Iterable[str] = ()) -> bool:
        return bool(self.exclusion_hits(normalized, tokens))

    def match_refund(self, normalized: str) -> bool:
        return any(kw and kw in normalized for kw in self.refund_allowlist)

    def is_definite_brand(self, normalized: str) -> bool:
        return any(b and b in normalized for b in self.definite_brands)

    # -------------------------------------------------------------------------
    # PRICES
    # -------------------------------------------------------------------------

    def nearest_common_price(self, amount: float) -> Optional[Tuple[float, float]]:
        """
        Closest common subscription price and its distance from amount.
        Returns None if the price list is empty.
        """
        prices = self.common_prices
        if not prices:
            return None
        i = bisect.bisect_left(prices, amount)
        neighbours = prices[max(i - 1, 0):i + 1]
        best = min(neighbours, key=lambda p: (abs(p - amount), p))
        return best, abs(best - amount)

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"ServiceCatalog(entries={len(self)}, indicators={len(self.indicators)})"
