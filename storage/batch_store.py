"""
batch_store.py
---------------
Per-user accumulation of uploaded transaction batches.

A user may upload several CSV exports before asking for an analysis; the
messaging layer keeps them here. Entries expire after a TTL (24h default)
and are evicted on every access. The store is injected into whoever needs
it; there is no module-level instance.

Not thread-safe: callers serialize access.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from config.config_loader import get_batch_store_config
from core.parsing import parse_amount

logger = logging.getLogger(__name__)


@dataclass
class UserBatch:
    transactions: List[dict] = field(default_factory=list)
    last_updated: float = 0.0
    file_count: int = 0
    last_file_name: Optional[str] = None


@dataclass
class BatchStats:
    """Summary of what a user has uploaded so far."""
    transaction_count: int
    file_count: int
    last_updated: datetime
    total_expense: float
    last_file_name: Optional[str] = None


class TransactionBatchStore:
    """
    Usage:
        store = TransactionBatchStore()
        store.add_batch("U123", rows, file_name="2024-01.csv")
        subscriptions = pipeline.run(store.get_transactions("U123"))
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.time):
        if ttl_seconds is None:
            ttl_seconds = get_batch_store_config()["ttl_seconds"]
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._batches: Dict[str, UserBatch] = {}

    def add_batch(self, user_id: str, transactions: List[dict], file_name: str | None = None) -> int:
        """Appends rows for a user and returns the user's new total row count."""
        self.evict_expired()
        batch = self._batches.setdefault(user_id, UserBatch())
        batch.transactions.extend(transactions)
        batch.file_count += 1
        batch.last_file_name = file_name
        batch.last_updated = self._clock()
        logger.info(
            f"Stored {len(transactions):,} transactions for {user_id} "
            f"(total {len(batch.transactions):,}, files {batch.file_count})."
        )
        return len(batch.transactions)

    def get_transactions(self, user_id: str) -> List[dict]:
        self.evict_expired()
        batch = self._batches.get(user_id)
        return list(batch.transactions) if batch else []

    def clear(self, user_id: str) -> bool:
        """Deletes a user's data. Returns False if there was none."""
        self.evict_expired()
        return self._batches.pop(user_id, None) is not None

    def evict_expired(self) -> int:
        """Drops every batch older than the TTL. Returns how many were dropped."""
        now = self._clock()
        expired = [
            user_id for user_id, batch in self._batches.items()
            if now - batch.last_updated > self.ttl_seconds
        ]
        for user_id in expired:
            del self._batches[user_id]
        if expired:
            logger.info(f"Evicted {len(expired)} expired batch(es).")
        return len(expired)

    def stats(self, user_id: str, expense_sign: str = "negative") -> Optional[BatchStats]:
        """
        Row count, file count, last update and total expense for a user,
        or None if nothing is stored.
        """
        self.evict_expired()
        batch = self._batches.get(user_id)
        if batch is None:
            return None

        total = 0.0
        for row in batch.transactions:
            amount = parse_amount(row.get("amount"))
            if (amount < 0) if expense_sign == "negative" else (amount > 0):
                total += abs(amount)

        return BatchStats(
            transaction_count=len(batch.transactions),
            file_count=batch.file_count,
            last_updated=datetime.fromtimestamp(batch.last_updated),
            total_expense=total,
            last_file_name=batch.last_file_name,
        )

    def __contains__(self, user_id: str) -> bool:
        self.evict_expired()
        return user_id in self._batches

    def __len__(self) -> int:
        self.evict_expired()
        return len(self._batches)
