"""
Transaction Repository - Read access to a user's transactions

Opens its own session per call (background jobs run after the request-scoped
session is gone).
"""
from typing import Callable, List
from uuid import UUID

import structlog
from sqlalchemy import text

from packages.common.database import sessionmanager
from packages.domain.ai_categorization.schemas import TransactionRecord

logger = structlog.get_logger()


class TransactionRepository:
    """Implements TransactionSource over the transactions table"""

    def __init__(self, session_factory: Callable = None):
        self._session = session_factory or sessionmanager.session

    async def list_transactions(self, user_id: UUID) -> List[TransactionRecord]:
        """All transactions owned by the user, newest first."""
        query = text("""
            SELECT id, description, amount, date, type::text AS type, category_id
            FROM transactions
            WHERE user_id = :user_id
            ORDER BY date DESC, created_at DESC
        """)

        async with self._session() as session:
            result = await session.execute(query, {"user_id": user_id})
            rows = result.mappings().all()

        logger.debug("transactions_loaded", user_id=str(user_id), count=len(rows))
        return [TransactionRecord.model_validate(dict(row)) for row in rows]

    async def count_uncategorized(self, user_id: UUID) -> int:
        query = text("""
            SELECT COUNT(*)
            FROM transactions
            WHERE user_id = :user_id
              AND category_id IS NULL
        """)

        async with self._session() as session:
            result = await session.execute(query, {"user_id": user_id})
            return int(result.scalar_one())
