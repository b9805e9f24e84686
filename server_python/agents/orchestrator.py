"""
Agent Orchestrator - 태스크 실행 조립 루트

태스크마다 그래프를 만들고, 실행 가능한 노드를 한 라운드씩 병렬 실행한 뒤
그래프 상태를 태스크에 반영합니다.

- execute_task: 정확히 한 라운드만 실행
- run_until_complete: 그래프가 종료 상태가 되거나 더 실행할 노드가 없을 때까지 반복
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from config import AgentConfig
from database.models import utcnow
from errors import (
    GraphInitializationError,
    InvalidStateError,
    NoExecutableNodesError,
    TaskExecutionError,
    TaskNotFoundError,
)
from models.graph import Graph, GraphStatus, GraphStatusSnapshot, Node
from models.task import Task, TaskProgress, TaskStatus
from task_graph import ExecutionPlan, GraphStore, NodeExecutor, TaskContext

from .task_manager import TaskManager

logger = logging.getLogger(__name__)


Planner = Callable[[Task], Awaitable[ExecutionPlan]]


@dataclass
class AgentStatus:
    """오케스트레이터 실행 상태"""
    is_running: bool = False
    started_at: Optional[datetime] = None
    processed_nodes: int = 0
    last_activity: Optional[datetime] = None
    current_tasks: List[UUID] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "processed_nodes": self.processed_nodes,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "current_tasks": [str(task_id) for task_id in self.current_tasks],
        }


class ActiveTaskRegistry:
    """
    실행 중인 태스크 -> 그래프 매핑

    실행 시작 시 등록하고 태스크가 종료 상태가 되면 제거합니다.
    """

    def __init__(self):
        self._graphs: Dict[UUID, UUID] = {}

    def start(self, task_id: UUID, graph_id: UUID) -> None:
        self._graphs[task_id] = graph_id

    def finish(self, task_id: UUID) -> Optional[UUID]:
        return self._graphs.pop(task_id, None)

    def get(self, task_id: UUID) -> Optional[UUID]:
        return self._graphs.get(task_id)

    def active(self) -> Dict[UUID, UUID]:
        return dict(self._graphs)

    def __contains__(self, task_id: UUID) -> bool:
        return task_id in self._graphs

    def __len__(self) -> int:
        return len(self._graphs)


class AgentOrchestrator:
    """
    에이전트 오케스트레이터

    Example:
        orchestrator = AgentOrchestrator(store, task_manager, executor, config)
        orchestrator.start()

        plan = ExecutionPlan()
        plan.add("research", NodeTypes.RESEARCH, "Collect sources")
        plan.add("analysis", NodeTypes.ANALYSIS, "Summarize", depends_on=["research"])

        progress = await orchestrator.run_until_complete(task, plan)
    """

    def __init__(
        self,
        graph_store: GraphStore,
        task_manager: TaskManager,
        executor: NodeExecutor,
        config: Optional[AgentConfig] = None,
        services: Optional[Dict[str, Any]] = None,
        planner: Optional[Planner] = None,
    ):
        """
        Args:
            graph_store: 그래프 저장소
            task_manager: 태스크 관리자
            executor: 노드 실행기
            config: 실행 설정 (None이면 기본값)
            services: 핸들러에 전달할 협력 서비스 (LLM, memory, search)
            planner: plan 없이 실행할 때 태스크를 분해하는 함수
        """
        self.store = graph_store
        self.task_manager = task_manager
        self.executor = executor
        self.config = config or executor.config
        self.services = dict(services or {})
        self.planner = planner

        self.active_tasks = ActiveTaskRegistry()
        self._running = False
        self._started_at: Optional[datetime] = None
        self._last_activity: Optional[datetime] = None
        self._stop_requested = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """오케스트레이터 시작"""
        if self._running:
            logger.warning("Orchestrator is already running")
            return
        self._running = True
        self._stop_requested = False
        self._started_at = utcnow()
        logger.info("Orchestrator started")

    def stop(self) -> None:
        """
        오케스트레이터 정지

        run_until_complete 루프는 현재 라운드를 마친 뒤 멈춥니다.
        실행 중인 핸들러를 강제로 중단하지는 않습니다.
        """
        self._stop_requested = True
        if not self._running:
            return
        self._running = False
        logger.info(f"Orchestrator stopped ({len(self.active_tasks)} task(s) in flight)")

    def get_status(self) -> AgentStatus:
        return AgentStatus(
            is_running=self._running,
            started_at=self._started_at,
            processed_nodes=self.executor.processed_nodes,
            last_activity=self._last_activity,
            current_tasks=list(self.active_tasks.active()),
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_task(
        self,
        task: Task,
        plan: Optional[ExecutionPlan] = None,
    ) -> GraphStatusSnapshot:
        """
        태스크의 그래프를 만들고 한 라운드 실행

        그래프 생성 후 초기화 검증(실패 노드 0개), 실행 가능한 노드 계산,
        병렬 실행을 거쳐 결과 그래프 상태를 반환합니다. 이번 라운드에서
        새로 실행 가능해진 노드는 실행하지 않습니다.

        어떤 예외로 끝나든 태스크는 active_tasks에서 제거됩니다.

        Raises:
            InvalidTransitionError: 태스크가 PLANNING이 아니거나 이미 그래프를 가진 경우
            GraphInitializationError: 초기화 직후 실패 노드가 있는 경우
            NoExecutableNodesError: 실행 가능한 노드가 없는 경우
        """
        if plan is None and self.planner is not None:
            plan = await self.planner(task)

        graph = await self._create_graph_for(task)
        logger.info(f"Executing task {task.id} on graph {graph.id}")

        try:
            if plan is not None and len(plan):
                await self.store.materialize_plan(graph.id, plan)

            snapshot = await self.store.get_graph_status(graph.id)
            if snapshot.failed > 0:
                raise GraphInitializationError(task.id, graph.id)

            self.active_tasks.start(task.id, graph.id)
            return await self._run_round(task, graph.id)

        except TaskExecutionError as e:
            await self.task_manager.fail_task(task.id, e.message)
            self.active_tasks.finish(task.id)
            raise
        except Exception:
            self.active_tasks.finish(task.id)
            raise

    async def resume_task(self, task_id) -> GraphStatusSnapshot:
        """이미 그래프를 가진 ACTIVE 태스크의 다음 라운드 실행"""
        task = await self.task_manager.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status is not TaskStatus.ACTIVE or task.graph_id is None:
            raise InvalidStateError(
                f"Task {task.id} is {task.status.value} without a running graph",
                code="TASK_NOT_ACTIVE",
                details={"task_id": str(task.id), "status": task.status.value},
            )

        self.active_tasks.start(task.id, task.graph_id)
        try:
            return await self._run_round(task, task.graph_id)
        except TaskExecutionError as e:
            await self.task_manager.fail_task(task.id, e.message)
            self.active_tasks.finish(task.id)
            raise
        except Exception:
            self.active_tasks.finish(task.id)
            raise

    async def run_until_complete(
        self,
        task: Task,
        plan: Optional[ExecutionPlan] = None,
    ) -> TaskProgress:
        """
        그래프가 끝날 때까지 라운드 반복

        첫 라운드는 execute_task와 같습니다. 이후 check_interval 만큼 기다린 뒤
        실행 가능한 노드가 있으면 다음 라운드를 실행하고, 다른 실행기가 처리 중인
        노드만 남았으면 다시 기다립니다. max_rounds에 도달하거나 stop()이
        호출되면 멈춥니다.
        """
        snapshot = await self.execute_task(task, plan)
        graph_id = snapshot.graph_id
        rounds = 1

        try:
            while snapshot.status is GraphStatus.ACTIVE and not self._stop_requested:
                if rounds >= self.config.max_rounds:
                    logger.warning(
                        f"Task {task.id} reached max rounds ({self.config.max_rounds})"
                    )
                    break

                await asyncio.sleep(self.config.check_interval)
                nodes = await self.store.get_executable_nodes(graph_id)
                if nodes:
                    snapshot = await self._run_round(task, graph_id, nodes)
                elif snapshot.in_progress > 0:
                    snapshot = await self.store.get_graph_status(graph_id)
                else:
                    logger.warning(
                        f"Task {task.id} stalled: graph {graph_id} has no executable nodes "
                        f"({snapshot.blocked} blocked)"
                    )
                    break
                rounds += 1

            progress = await self.task_manager.sync_from_graph(task.id)
        except Exception:
            self.active_tasks.finish(task.id)
            raise

        if progress.task.status.is_terminal:
            self.active_tasks.finish(task.id)
        return progress

    async def _create_graph_for(self, task: Task) -> Graph:
        """그래프 생성과 태스크 연결을 한 트랜잭션으로 처리"""

        async def work(session: AsyncSession) -> Graph:
            graph = await self.store.create_graph_in(session)
            await self.task_manager.attach_graph_in(session, task.id, graph.id)
            return graph

        return await self.store.database.run_transaction(work)

    async def _run_round(
        self,
        task: Task,
        graph_id: UUID,
        nodes: Optional[Sequence[Node]] = None,
    ) -> GraphStatusSnapshot:
        if nodes is None:
            nodes = await self.store.get_executable_nodes(graph_id)
        if not nodes:
            raise NoExecutableNodesError(task.id, graph_id)

        context = TaskContext.from_task(task, graph_id=graph_id, services=self.services)
        logger.info(f"Round start: task {task.id}, {len(nodes)} executable node(s)")

        outcomes = await self.executor.execute_batch(nodes, context)
        self._last_activity = utcnow()

        failed = [outcome for outcome in outcomes if not outcome.success]
        for outcome in failed:
            logger.error(f"Node {outcome.node_id} failed: {outcome.error.message}")

        progress = await self.task_manager.sync_from_graph(task.id)
        if progress.task.status.is_terminal:
            self.active_tasks.finish(task.id)

        logger.info(
            f"Round finished: task {task.id}, "
            f"{len(outcomes) - len(failed)} succeeded, {len(failed)} failed, "
            f"graph {progress.status.value if progress.status else 'unknown'} "
            f"({progress.progress}%)"
        )
        return await self.store.get_graph_status(graph_id)
