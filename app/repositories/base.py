"""
Base repository.

Shared query helpers for the ledger repositories. Counters are never
changed through these helpers: every balance or reward total is updated
with an atomic UPDATE in the concrete repository.
"""

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import exists as sql_exists
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from app.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository bound to one model and one session.

    Example:
        class ReferralRepository(BaseRepository[Referral]):
            def __init__(self, session: AsyncSession):
                super().__init__(Referral, session)
    """

    def __init__(
        self, model: Type[ModelType], session: AsyncSession
    ) -> None:
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    def _select(self, **filters: Any) -> Select:
        return select(self.model).filter_by(**filters)

    async def get_by_id(
        self, id: int, fresh: bool = False
    ) -> Optional[ModelType]:
        """
        Get entity by primary key.

        Args:
            id: Entity ID
            fresh: Reload from the database even if the session holds it

        Returns:
            Entity or None if not found
        """
        return await self.session.get(
            self.model, id, populate_existing=fresh
        )

    async def get_by(self, **filters: Any) -> Optional[ModelType]:
        """Get the single entity matching column filters."""
        result = await self.session.execute(self._select(**filters))
        return result.scalar_one_or_none()

    async def find_all(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        **filters: Any,
    ) -> List[ModelType]:
        """
        Find entities matching filters in primary key order.

        Args:
            limit: Max number of results
            offset: Number of results to skip
            **filters: Column filters

        Returns:
            List of matching entities
        """
        stmt = self._select(**filters).order_by(self.model.id)

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by(self, **filters: Any) -> List[ModelType]:
        """Find all entities matching column filters."""
        return await self.find_all(**filters)

    async def create(self, **data: Any) -> ModelType:
        """
        Add a new entity and flush it to get server defaults.

        The caller owns the transaction and decides when to commit.

        Args:
            **data: Column values

        Returns:
            Created entity
        """
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def count(self, **filters: Any) -> int:
        """Count entities matching column filters."""
        stmt = select(func.count()).select_from(self.model)
        if filters:
            stmt = stmt.filter_by(**filters)

        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def exists(self, **filters: Any) -> bool:
        """Check if any entity matches column filters."""
        stmt = select(sql_exists(self._select(**filters)))
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def bulk_create(
        self, items: List[Dict[str, Any]]
    ) -> List[ModelType]:
        """
        Add several entities in a single flush.

        A constraint violation on any row fails the whole flush.

        Args:
            items: Column values per entity

        Returns:
            Created entities in input order
        """
        entities = [self.model(**item) for item in items]
        self.session.add_all(entities)
        await self.session.flush()

        for entity in entities:
            await self.session.refresh(entity)

        return entities
