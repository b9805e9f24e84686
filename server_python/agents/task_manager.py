"""
Task Manager - 태스크 생명주기 관리

태스크의 생성, 수정, 취소, 삭제, 재시도와 진행률 조회를 담당합니다.
각 태스크는 동시에 최대 하나의 그래프를 소유하며, 태스크와 그래프에 걸친
변경은 하나의 트랜잭션으로 처리됩니다.

상태 흐름:
    PLANNING -> ACTIVE -> COMPLETED | FAILED | CANCELLED
    FAILED --retry--> PLANNING
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from database import Database, TaskModel
from database.models import utcnow
from database.repositories import TaskRepository, UserRepository
from errors import (
    InvalidTransitionError,
    TaskNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from models.graph import GraphStatus
from models.task import (
    CreateTaskInput,
    Task,
    TaskMetadata,
    TaskProgress,
    TaskStatus,
    UpdateTaskInput,
)
from task_graph import GraphStore

logger = logging.getLogger(__name__)


def _invalid_input(error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return ValidationError(f"{field}: {first.get('msg')}", field=field or None)


class TaskManager:
    """
    태스크 관리자

    Example:
        manager = TaskManager(database, graph_store)
        task = await manager.create_task(
            title="Compare consensus mechanisms",
            description="PoW vs PoS",
            created_by=user.id,
            chat_id="chat-1",
            priority=2,
        )
    """

    def __init__(self, database: Database, graph_store: GraphStore):
        """
        Args:
            database: 트랜잭션을 제공하는 데이터베이스
            graph_store: 태스크가 소유한 그래프 저장소
        """
        self._db = database
        self._graphs = graph_store

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_task(
        self,
        title: str,
        description: str,
        created_by,
        chat_id: str,
        priority: int = 0,
        deadline: Optional[datetime] = None,
    ) -> Task:
        """
        PLANNING 상태의 태스크 생성

        Raises:
            ValidationError: 입력 값이 잘못된 경우
            UserNotFoundError: 생성자가 존재하지 않는 경우
        """
        try:
            data = CreateTaskInput(
                title=title,
                description=description,
                created_by=created_by,
                chat_id=chat_id,
                priority=priority,
                deadline=deadline,
            )
        except PydanticValidationError as e:
            raise _invalid_input(e)

        async def work(session: AsyncSession) -> Task:
            if not await UserRepository(session).exists(data.created_by):
                raise UserNotFoundError(data.created_by)

            now = utcnow()
            record = await TaskRepository(session).create(
                title=data.title,
                description=data.description,
                created_by=data.created_by,
                chat_id=data.chat_id,
                status=TaskStatus.PLANNING.value,
                priority=data.priority,
                deadline=data.deadline,
                metadata_json=TaskMetadata(
                    created_at=now, last_updated=now
                ).model_dump(mode="json"),
            )
            return Task.from_record(record)

        task = await self._db.run_transaction(work)
        logger.info(f"Created task {task.id}: {task.title}")
        return task

    async def get_task(self, task_id) -> Optional[Task]:
        async def work(session: AsyncSession) -> Optional[Task]:
            record = await TaskRepository(session).get_by_id(task_id)
            return Task.from_record(record) if record else None

        return await self._db.run_transaction(work)

    async def list_tasks(self, user_id) -> List[Task]:
        """사용자의 모든 태스크 (상태, 우선순위 내림차순, 최신순)"""

        async def work(session: AsyncSession) -> List[Task]:
            records = await TaskRepository(session).list_for_user(user_id)
            return [Task.from_record(record) for record in records]

        return await self._db.run_transaction(work)

    async def update_task(
        self,
        task_id,
        updates: Union[UpdateTaskInput, Dict[str, Any]],
    ) -> Task:
        """
        전달된 필드만 병합

        metadata는 얕은 병합(새 키가 기존 키를 덮어씀)이며 last_updated가 갱신됩니다.

        Raises:
            TaskNotFoundError: 태스크가 없는 경우
        """
        if not isinstance(updates, UpdateTaskInput):
            try:
                updates = UpdateTaskInput.model_validate(updates)
            except PydanticValidationError as e:
                raise _invalid_input(e)

        # deadline and graph_id may be cleared; other columns are required
        fields = {
            key: value
            for key, value in updates.model_dump(exclude_unset=True).items()
            if value is not None or key in ("deadline", "graph_id")
        }
        metadata_patch = fields.pop("metadata", None) or {}
        if "status" in fields:
            fields["status"] = fields["status"].value

        async def work(session: AsyncSession) -> Task:
            task = await self._get_task_for_update(session, task_id)
            for key, value in fields.items():
                setattr(task, key, value)
            self._touch(task, **metadata_patch)
            await session.flush()
            return Task.from_record(task)

        return await self._db.run_transaction(work)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def cancel_task(self, task_id, reason: str = "Task cancelled") -> Task:
        """
        태스크와 소유한 그래프를 함께 취소

        Raises:
            TaskNotFoundError: 태스크가 없는 경우
            InvalidTransitionError: 이미 COMPLETED, FAILED, CANCELLED인 경우
        """

        async def work(session: AsyncSession) -> Task:
            task = await self._get_task_for_update(session, task_id)
            if TaskStatus(task.status).is_terminal:
                raise InvalidTransitionError(
                    "task", task.id, task.status, TaskStatus.CANCELLED.value
                )

            if task.graph_id is not None:
                await self._graphs.cancel_graph_in(session, task.graph_id, reason)

            task.status = TaskStatus.CANCELLED.value
            self._touch(task, cancelled_at=utcnow().isoformat(), reason=reason)
            await session.flush()
            return Task.from_record(task)

        task = await self._db.run_transaction(work)
        logger.info(f"Cancelled task {task.id}")
        return task

    async def delete_task(self, task_id) -> None:
        """
        태스크 삭제 (Edges -> Nodes -> Graph -> Task 순서로 연쇄 삭제)

        Raises:
            TaskNotFoundError: 태스크가 없는 경우
        """

        async def work(session: AsyncSession) -> None:
            task = await self._get_task_for_update(session, task_id)
            if task.graph_id is not None:
                await self._graphs.delete_graph_in(session, task.graph_id)
            await TaskRepository(session).delete(task.id)

        await self._db.run_transaction(work)
        logger.info(f"Deleted task {task_id}")

    async def retry_task(self, task_id) -> Task:
        """
        실패한 태스크 재시도 준비

        그래프(노드, 엣지 포함)를 삭제하고 PLANNING으로 되돌리며
        previous_failures를 1 증가시킵니다.

        Raises:
            TaskNotFoundError: 태스크가 없는 경우
            InvalidTransitionError: FAILED 상태가 아닌 경우
        """

        async def work(session: AsyncSession) -> Task:
            task = await self._get_task_for_update(session, task_id)
            if task.status != TaskStatus.FAILED.value:
                raise InvalidTransitionError(
                    "task", task.id, task.status, TaskStatus.PLANNING.value
                )

            if task.graph_id is not None:
                await self._graphs.delete_graph_in(session, task.graph_id)

            metadata = TaskMetadata.model_validate(task.metadata_json or {})
            task.status = TaskStatus.PLANNING.value
            task.graph_id = None
            self._touch(
                task,
                previous_failures=metadata.previous_failures + 1,
                progress=0,
                retried_at=utcnow().isoformat(),
            )
            await session.flush()
            return Task.from_record(task)

        task = await self._db.run_transaction(work)
        logger.info(
            f"Task {task.id} reset for retry "
            f"(previous failures: {task.metadata.previous_failures})"
        )
        return task

    async def fail_task(self, task_id, reason: str) -> Task:
        """태스크를 FAILED로 표시하고 마지막 에러를 기록"""

        async def work(session: AsyncSession) -> Task:
            task = await self._get_task_for_update(session, task_id)
            if not TaskStatus(task.status).is_terminal:
                task.status = TaskStatus.FAILED.value
            self._touch(task, last_error=reason)
            await session.flush()
            return Task.from_record(task)

        task = await self._db.run_transaction(work)
        logger.warning(f"Task {task.id} failed: {reason}")
        return task

    async def attach_graph(self, task_id, graph_id) -> Task:
        """그래프를 연결하고 태스크를 ACTIVE로 전환"""
        return await self._db.run_transaction(
            lambda session: self.attach_graph_in(session, task_id, graph_id)
        )

    async def attach_graph_in(self, session: AsyncSession, task_id, graph_id) -> Task:
        """
        Raises:
            InvalidTransitionError: PLANNING이 아니거나 이미 그래프를 가진 경우
        """
        task = await self._get_task_for_update(session, task_id)
        if task.status != TaskStatus.PLANNING.value or task.graph_id is not None:
            raise InvalidTransitionError(
                "task", task.id, task.status, TaskStatus.ACTIVE.value
            )
        task.graph_id = graph_id
        task.status = TaskStatus.ACTIVE.value
        self._touch(task, progress=0)
        await session.flush()
        return Task.from_record(task)

    # =========================================================================
    # Progress
    # =========================================================================

    async def get_task_progress(self, task_id) -> TaskProgress:
        """
        태스크 진행률

        그래프가 없으면 0으로 채운 결과를, 있으면 그래프 상태를 조회해
        진행률을 태스크 metadata에 저장한 뒤 반환합니다.
        """
        return await self._db.run_transaction(
            lambda session: self._progress_in(session, task_id, sync_status=False)
        )

    async def sync_from_graph(self, task_id) -> TaskProgress:
        """
        그래프 상태를 태스크에 반영

        그래프가 COMPLETED/FAILED이면 ACTIVE 태스크도 같은 상태로 전환됩니다.
        """
        progress = await self._db.run_transaction(
            lambda session: self._progress_in(session, task_id, sync_status=True)
        )
        if progress.task.status.is_terminal:
            logger.info(f"Task {progress.task.id} finished as {progress.task.status.value}")
        return progress

    async def _progress_in(
        self,
        session: AsyncSession,
        task_id,
        sync_status: bool,
    ) -> TaskProgress:
        task = await self._get_task_for_update(session, task_id)
        if task.graph_id is None:
            return TaskProgress(task=Task.from_record(task))

        snapshot = await self._graphs.graph_status_in(session, task.graph_id)

        if sync_status and task.status == TaskStatus.ACTIVE.value:
            if snapshot.status is GraphStatus.COMPLETED:
                task.status = TaskStatus.COMPLETED.value
            elif snapshot.status is GraphStatus.FAILED:
                task.status = TaskStatus.FAILED.value

        self._touch(task, progress=snapshot.progress)
        await session.flush()

        return TaskProgress(
            task=Task.from_record(task),
            graph_id=snapshot.graph_id,
            status=snapshot.status,
            progress=snapshot.progress,
            total=snapshot.total,
            completed=snapshot.completed,
            failed=snapshot.failed,
            pending=snapshot.pending,
            blocked=snapshot.blocked,
            in_progress=snapshot.in_progress,
            last_updated=snapshot.last_updated,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    async def _get_task_for_update(session: AsyncSession, task_id) -> TaskModel:
        task = await TaskRepository(session).get_for_update(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _touch(task: TaskModel, **overlay: Any) -> None:
        task.metadata_json = {
            **(task.metadata_json or {}),
            **overlay,
            "last_updated": utcnow().isoformat(),
        }
        task.updated_at = utcnow()
