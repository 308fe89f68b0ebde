"""
Suggestion Repository - Persists AI categorization suggestions

Table: ai_categorization_suggestions
- exactly one of suggested_category_id / suggested_category_new (JSONB) is set
- affected_transaction_ids is a UUID[] of the other matching transactions
- soft-deleted rows (deleted_at) are ignored by every query here
"""
from typing import Callable, Sequence
from uuid import UUID

import structlog
from sqlalchemy import text

from packages.common.database import sessionmanager
from packages.domain.ai_categorization.schemas import (
    ClassificationSuggestion,
    SuggestionStatus,
)

logger = structlog.get_logger()


class SuggestionRepository:
    """Implements SuggestionSink"""

    def __init__(self, session_factory: Callable = None):
        self._session = session_factory or sessionmanager.session

    async def create_suggestions(self, suggestions: Sequence[ClassificationSuggestion]) -> None:
        """
        Insert suggestions in one transaction.

        Either every suggestion is stored or none is.
        """
        if not suggestions:
            return

        query = text("""
            INSERT INTO ai_categorization_suggestions (
                id,
                user_id,
                transaction_id,
                suggested_category_id,
                suggested_category_new,
                match_type,
                match_keyword,
                affected_transaction_ids,
                status,
                created_at,
                updated_at
            ) VALUES (
                :id,
                :user_id,
                :transaction_id,
                :suggested_category_id,
                CAST(:suggested_category_new AS JSONB),
                :match_type,
                :match_keyword,
                :affected_transaction_ids,
                :status,
                :created_at,
                :created_at
            )
        """)

        params = [
            {
                "id": s.id,
                "user_id": s.user_id,
                "transaction_id": s.transaction_id,
                "suggested_category_id": s.suggested_category_id,
                "suggested_category_new": (
                    s.suggested_category_new.model_dump_json() if s.suggested_category_new else None
                ),
                "match_type": s.match_type.value,
                "match_keyword": s.match_keyword,
                "affected_transaction_ids": list(s.affected_transaction_ids),
                "status": s.status.value,
                "created_at": s.created_at,
            }
            for s in suggestions
        ]

        async with self._session() as session:
            await session.execute(query, params)

        logger.info("suggestions_saved",
                    user_id=str(suggestions[0].user_id),
                    count=len(suggestions))

    async def count_pending(self, user_id: UUID) -> int:
        query = text("""
            SELECT COUNT(*)
            FROM ai_categorization_suggestions
            WHERE user_id = :user_id
              AND status = :status
              AND deleted_at IS NULL
        """)

        async with self._session() as session:
            result = await session.execute(query, {
                "user_id": user_id,
                "status": SuggestionStatus.PENDING.value,
            })
            return int(result.scalar_one())
