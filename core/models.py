"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: One raw ledger row handed to the engine by a collaborator
  (CSV upload, portal export). Immutable once ingested.

- PreprocessedTransaction: Derived once per Transaction by the scorer.
  Carries the normalized text, tokens and numeric magnitude.

- ServiceCatalogEntry: One row of the static service catalog.

- ScoredResult: Per-transaction scoring output. Probability only ever moves
  up and the rationale only ever grows as later stages add evidence.

- ServiceGroup: Transient grouping of ScoredResults sharing a service identity.

- ConsolidatedSubscription: Final, customer-facing record. One per service.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


# Markers set on ScoredResult.flags by the scorer and read by later stages.
FLAG_LONG_CONTENT = "long_content"
FLAG_INCOME = "income"
FLAG_REFUND = "refund"
FLAG_EXCLUDED = "excluded"


@dataclass(frozen=True)
class Transaction:
    """A raw transaction row: description, signed amount and date string."""

    content: str
    amount: object                   # str | int | float | Decimal, may carry symbols/commas
    date: str
    category: Optional[str] = None   # Source category metadata, if any.
    is_expense: Optional[bool] = None  # Overrides the sign convention when set.


@dataclass(frozen=True)
class PreprocessedTransaction:
    index: int                       # Position in the input batch.
    content: str                     # Original content ("" when missing).
    normalized: str
    tokens: tuple[str, ...]
    amount: float                    # Absolute payment magnitude.
    is_expense: bool
    date: str
    parsed_date: Optional[datetime]
    category: Optional[str] = None


@dataclass(frozen=True)
class ServiceCatalogEntry:
    """
    One known subscription service.

    The pattern is evaluated against normalized content. The name is the
    canonical display name every matching description resolves to.
    """

    name: str
    pattern: re.Pattern
    base_score: float
    category: str
    billing_period: str              # "monthly" | "yearly"
    price_range: tuple[float, float]

    def matches(self, normalized: str) -> bool:
        return self.pattern.search(normalized) is not None

    def price_in_range(self, amount: float) -> bool:
        low, high = self.price_range
        return low <= amount <= high


@dataclass
class ScoredResult:
    """
    Scoring output for one transaction.

    Use add_bonus() and append_reason() rather than assigning to
    probability/rationale directly: they keep probability within [0, 1],
    never lower it, and never duplicate a rationale clause.
    """

    content: str
    amount: float
    date: str
    keywords: list[str] = field(default_factory=list)
    probability: float = 0.0
    rationale: str = ""
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    category: Optional[str] = None
    flags: set[str] = field(default_factory=set)
    index: int = 0
    normalized: str = ""
    parsed_date: Optional[datetime] = None

    def add_bonus(self, bonus: float) -> None:
        self.probability = min(1.0, self.probability + max(bonus, 0.0))

    def raise_to(self, floor: float) -> None:
        self.probability = min(1.0, max(self.probability, floor))

    def append_reason(self, clause: str) -> None:
        if not clause or clause in self.rationale:
            return
        self.rationale = f"{self.rationale}; {clause}" if self.rationale else clause

    @property
    def is_flagged(self) -> bool:
        """True for income, refund, long or excluded rows."""
        return bool(self.flags & {FLAG_LONG_CONTENT, FLAG_INCOME, FLAG_REFUND, FLAG_EXCLUDED})


@dataclass
class ServiceGroup:
    service_id: str
    service_name: str
    members: list[ScoredResult] = field(default_factory=list)
    cadence: Optional[str] = None    # "monthly" | "yearly" once detected
    max_consecutive_months: int = 0
    repeat_detected: bool = False

    def __len__(self) -> int:
        return len(self.members)

    @property
    def has_signal(self) -> bool:
        """True when cadence or a repeated amount was found for the group."""
        return self.cadence is not None or self.repeat_detected


@dataclass
class ConsolidatedSubscription:
    """
    One detected subscription, merged across all its occurrences.

    This is what gets surfaced to users and written to the output table.
    """

    service_name: str
    average_amount: float
    most_recent_date: str
    occurrence_count: int
    probability: float
    rationale: str
    category: str
    service_id: str = ""
    keywords: list[str] = field(default_factory=list)
