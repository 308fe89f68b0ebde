"""
Batch Planner - Sorts transactions by merchant and slices them into batches

Flow:
1. Key every transaction with extract_merchant_key()
2. Stable sort by key (ties keep their original order)
3. Slice into batches of batch_size (last batch may be smaller)
4. Keep at most max_batches; the rest are dropped from this run

Dropped transactions are not deleted and get no suggestion. They stay
uncategorized and are picked up by the next run.
"""
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import structlog

from packages.domain.ai_categorization.merchant_keys import extract_merchant_key
from packages.domain.ai_categorization.metrics import TRANSACTIONS_DROPPED
from packages.domain.ai_categorization.schemas import TransactionForClassification

logger = structlog.get_logger()

Batch = Tuple[TransactionForClassification, ...]


@dataclass(frozen=True)
class BatchPlan:
    """Ordered batches for one job run"""
    batches: List[Batch] = field(default_factory=list)
    planned_count: int = 0
    dropped_count: int = 0

    def __len__(self) -> int:
        return len(self.batches)

    def __iter__(self):
        return iter(self.batches)


class BatchPlanner:
    """
    Deterministic merchant-grouped batching.

    Usage:
        planner = BatchPlanner(batch_size=40, max_batches=50)
        plan = planner.plan(transactions)
        for batch in plan:
            ...
    """

    def __init__(self, batch_size: int = 40, max_batches: int = 50):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if max_batches < 1:
            raise ValueError(f"max_batches must be >= 1, got {max_batches}")
        self.batch_size = batch_size
        self.max_batches = max_batches

    @property
    def capacity(self) -> int:
        """Maximum number of transactions a single run can cover"""
        return self.batch_size * self.max_batches

    def sort_by_merchant(
        self,
        transactions: Sequence[TransactionForClassification],
    ) -> List[TransactionForClassification]:
        """Stable sort so transactions from the same merchant are adjacent."""
        # sorted() is stable: equal keys keep input order
        return sorted(transactions, key=lambda tx: extract_merchant_key(tx.description))

    def plan(self, transactions: Sequence[TransactionForClassification]) -> BatchPlan:
        """
        Build the batch plan for a job run.

        Args:
            transactions: Uncategorized transactions in source order

        Returns:
            BatchPlan with at most max_batches batches
        """
        ordered = self.sort_by_merchant(transactions)

        batches: List[Batch] = [
            tuple(ordered[i:i + self.batch_size])
            for i in range(0, len(ordered), self.batch_size)
        ]

        dropped = 0
        if len(batches) > self.max_batches:
            dropped = len(ordered) - self.capacity
            batches = batches[:self.max_batches]

            logger.warning("transactions_over_batch_cap",
                           total_transactions=len(ordered),
                           max_processed=self.capacity,
                           dropped=dropped)
            TRANSACTIONS_DROPPED.inc(dropped)

        return BatchPlan(
            batches=batches,
            planned_count=len(ordered) - dropped,
            dropped_count=dropped,
        )
