"""
User repository. Tasks reference their owner through it.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models import UserModel


class UserRepository(BaseRepository[UserModel]):
    """Repository for User operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, UserModel)

    async def create_user(self, name: str) -> UserModel:
        return await self.create(name=name)
