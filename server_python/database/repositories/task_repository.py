"""
Task repository for database operations.
"""

from typing import List

from sqlalchemy import select, case
from sqlalchemy.ext.asyncio import AsyncSession

from models.task import TASK_STATUS_ORDER

from .base import BaseRepository, IdLike, as_uuid
from ..models import TaskModel


class TaskRepository(BaseRepository[TaskModel]):
    """Repository for Task operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TaskModel)

    async def list_for_user(self, user_id: IdLike) -> List[TaskModel]:
        """
        Get all tasks owned by a user.

        Ordered by lifecycle status (PLANNING, ACTIVE, COMPLETED, FAILED,
        CANCELLED), then priority descending, then newest first.
        """
        status_rank = case(
            {status.value: rank for rank, status in enumerate(TASK_STATUS_ORDER)},
            value=TaskModel.status,
            else_=len(TASK_STATUS_ORDER),
        )
        result = await self.session.execute(
            select(TaskModel)
            .where(TaskModel.created_by == as_uuid(user_id))
            .order_by(
                status_rank.asc(),
                TaskModel.priority.desc(),
                TaskModel.created_at.desc(),
            )
        )
        return list(result.scalars().all())
