"""
Category Repository - Categories owned by a user or a group
"""
from typing import Callable, List
from uuid import UUID

import structlog
from sqlalchemy import text

from packages.common.database import sessionmanager
from packages.domain.ai_categorization.schemas import CategoryRecord, OwnerType

logger = structlog.get_logger()


class CategoryRepository:
    """Implements CategorySource over the categories table"""

    def __init__(self, session_factory: Callable = None):
        self._session = session_factory or sessionmanager.session

    async def list_categories(self, owner_type: OwnerType, owner_id: UUID) -> List[CategoryRecord]:
        query = text("""
            SELECT id, name, type::text AS type, icon, color
            FROM categories
            WHERE owner_type = CAST(:owner_type AS owner_type)
              AND owner_id = :owner_id
            ORDER BY name
        """)

        async with self._session() as session:
            result = await session.execute(query, {
                "owner_type": owner_type.value,
                "owner_id": owner_id,
            })
            rows = result.mappings().all()

        logger.debug("categories_loaded",
                     owner_type=owner_type.value,
                     owner_id=str(owner_id),
                     count=len(rows))
        return [CategoryRecord.model_validate(dict(row)) for row in rows]
