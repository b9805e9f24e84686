"""
Base repository class with common CRUD operations.
"""

import uuid
from typing import TypeVar, Generic, Optional, List, Type, Any, Union, Iterable

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Base, utcnow

ModelType = TypeVar("ModelType", bound=Base)

IdLike = Union[uuid.UUID, str]


def as_uuid(value: IdLike) -> uuid.UUID:
    """Normalize an id given as UUID or string."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class BaseRepository(Generic[ModelType]):
    """Base repository with common CRUD operations."""

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        self.session = session
        self.model = model

    async def create(self, **kwargs: Any) -> ModelType:
        """Create a new record."""
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: IdLike) -> Optional[ModelType]:
        """Get a record by ID."""
        result = await self.session.execute(
            select(self.model).where(self.model.id == as_uuid(id))
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, id: IdLike) -> Optional[ModelType]:
        """Get a record by ID, locking its row until the transaction ends."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == as_uuid(id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_many(self, ids: Iterable[IdLike]) -> List[ModelType]:
        """Get all records whose ID is in ``ids``."""
        id_list = [as_uuid(i) for i in ids]
        if not id_list:
            return []
        result = await self.session.execute(
            select(self.model).where(self.model.id.in_(id_list))
        )
        return list(result.scalars().all())

    async def update(self, id: IdLike, **kwargs: Any) -> Optional[ModelType]:
        """Update a record by ID."""
        updates = dict(kwargs)

        if hasattr(self.model, "updated_at"):
            updates["updated_at"] = utcnow()

        await self.session.execute(
            update(self.model)
            .where(self.model.id == as_uuid(id))
            .values(**updates)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return await self.get_by_id(id)

    async def delete(self, id: IdLike) -> bool:
        """Delete a record by ID."""
        result = await self.session.execute(
            delete(self.model).where(self.model.id == as_uuid(id))
        )
        await self.session.flush()
        return result.rowcount > 0

    async def count(self) -> int:
        """Count all records."""
        result = await self.session.execute(
            select(func.count()).select_from(self.model)
        )
        return result.scalar() or 0

    async def exists(self, id: IdLike) -> bool:
        """Check if a record exists."""
        result = await self.session.execute(
            select(func.count())
            .select_from(self.model)
            .where(self.model.id == as_uuid(id))
        )
        return (result.scalar() or 0) > 0
