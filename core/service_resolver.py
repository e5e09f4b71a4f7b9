"""
service_resolver.py
--------------------
Service identity resolution and description similarity.

identify_service() answers "which service is this?" using the same ordered
pattern table the scorer uses, so "NETFLIX.COM" and "ネットフリックス" both
resolve to "Netflix". Descriptions that match no catalog entry become their
own pseudo-identity (the normalized text), which keeps unknown merchants in
singleton groups unless they are spelled identically.

similarity() is the fuzzy fallback for comparing two free-text descriptions.
It is deterministic and symmetric.
"""

from rapidfuzz.distance import Levenshtein

from core.service_catalog import ServiceCatalog
from core.text_normalizer import normalize, tokenize

CONTAINMENT_WEIGHT = 0.9
BRAND_OVERLAP_FLOOR = 0.7


class ServiceResolver:
    """
    Resolves descriptions to canonical service names.

    Usage:
        resolver = ServiceResolver()
        resolver.identify_service("NETFLIX.COM")        # "Netflix"
        resolver.similarity("Spotify AB", "SPOTIFY")    # 0.9 * 7/9
    """

    def __init__(self, catalog: ServiceCatalog | None = None):
        self.catalog = catalog or ServiceCatalog()

    # -------------------------------------------------------------------------
    # IDENTITY
    # -------------------------------------------------------------------------

    def identify_service(self, content: str | None) -> str:
        """Canonical brand name, or the normalized content if nothing matches."""
        normalized = normalize(content)
        entry = self.catalog.identify(normalized)
        return entry.name if entry is not None else normalized

    @staticmethod
    def service_id(canonical_name: str) -> str:
        """Stable grouping key for a canonical name ("Disney+" -> "disney")."""
        return normalize(canonical_name) or (canonical_name or "").strip().lower()

    def category_for(self, canonical_name: str) -> str | None:
        entry = self.catalog.get_entry(canonical_name)
        return entry.category if entry is not None else None

    # -------------------------------------------------------------------------
    # SIMILARITY
    # -------------------------------------------------------------------------

    def similarity(self, a: str | None, b: str | None) -> float:
        """
        Similarity in [0, 1] between two descriptions.

            equal after normalization      -> 1.0
            one contains the other         -> len(shorter) / len(longer) * 0.9
            shared tokens                  -> Jaccard overlap, at least 0.7 when
                                              a major brand token is shared
            otherwise                      -> 1 - levenshtein / max length
        """
        na, nb = normalize(a), normalize(b)
        if na == nb:
            return 1.0
        if not na or not nb:
            return 0.0

        if na in nb or nb in na:
            shorter, longer = sorted((len(na), len(nb)))
            return shorter / longer * CONTAINMENT_WEIGHT

        tokens_a, tokens_b = set(tokenize(a)), set(tokenize(b))
        shared = tokens_a & tokens_b
        if shared:
            overlap = len(shared) / len(tokens_a | tokens_b)
            if shared & self.catalog.major_brand_tokens:
                overlap = max(overlap, BRAND_OVERLAP_FLOOR)
            return overlap

        return Levenshtein.normalized_similarity(na, nb)

    @staticmethod
    def levenshtein(a: str, b: str) -> int:
        """Edit distance between two strings."""
        return Levenshtein.distance(a, b)

