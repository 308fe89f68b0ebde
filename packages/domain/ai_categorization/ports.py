"""
Collaborator interfaces consumed by the categorization orchestrator

Implementations:
- TransactionSource: packages.common.transaction_repository.TransactionRepository
- CategorySource:    packages.common.category_repository.CategoryRepository
- SuggestionSink:    packages.common.suggestion_repository.SuggestionRepository
- TransactionClassifier: packages.domain.ai_categorization.transaction_classifier
"""
from typing import List, Protocol, Sequence
from uuid import UUID

from packages.domain.ai_categorization.schemas import (
    CategoryForClassification,
    CategoryRecord,
    ClassificationResult,
    ClassificationSuggestion,
    OwnerType,
    TransactionForClassification,
    TransactionRecord,
)


class TransactionSource(Protocol):
    """Read access to a user's transactions"""

    async def list_transactions(self, user_id: UUID) -> List[TransactionRecord]:
        ...

    async def count_uncategorized(self, user_id: UUID) -> int:
        ...


class CategorySource(Protocol):
    """Read access to categories owned by a user or group"""

    async def list_categories(self, owner_type: OwnerType, owner_id: UUID) -> List[CategoryRecord]:
        ...


class TransactionClassifier(Protocol):
    """
    Remote text classifier.

    Failures are raised as exceptions whose text is the only information the
    orchestrator relies on (see ErrorClassifier / RetryPolicy).
    """

    async def classify(
        self,
        user_id: UUID,
        transactions: Sequence[TransactionForClassification],
        categories: Sequence[CategoryForClassification],
    ) -> List[ClassificationResult]:
        ...


class SuggestionSink(Protocol):
    """Write access for produced suggestions"""

    async def create_suggestions(self, suggestions: Sequence[ClassificationSuggestion]) -> None:
        ...

    async def count_pending(self, user_id: UUID) -> int:
        ...
