"""
Node Executor.
Runs node handlers under a timeout with bounded retries and exponential
backoff, recording every status change through the Graph Store.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from pydantic_core import to_jsonable_python

from config import AgentConfig
from database.models import utcnow
from errors import (
    HandlerError,
    NodeExecutionError,
    NodeTimeoutError,
    UnknownNodeTypeError,
)
from models.graph import Node, NodeStatus

from .registry import NodeHandlerRegistry, TaskContext
from .store import GraphStore

logger = logging.getLogger(__name__)


@dataclass
class NodeOutcome:
    """Result of one node in a batch."""
    node_id: UUID
    success: bool
    result: Any = None
    error: Optional[NodeExecutionError] = None


class NodeExecutor:
    """
    Executes nodes against their registered handlers.

    Features:
    - Per-attempt timeout
    - Retries with exponential backoff (``max_retries`` total attempts)
    - Every attempt recorded in the node's metadata
    - Optional cap on concurrently running handlers

    Example:
        executor = NodeExecutor(store, registry, AgentConfig(max_retries=3))
        outcomes = await executor.execute_batch(nodes, context)
    """

    def __init__(
        self,
        store: GraphStore,
        registry: NodeHandlerRegistry,
        config: Optional[AgentConfig] = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config or AgentConfig()

        limit = self.config.concurrent_tasks_limit
        self._semaphore = asyncio.Semaphore(limit) if limit else None
        self.processed_nodes = 0

    async def execute_node(self, node: Node, context: TaskContext) -> Any:
        """
        Execute a single node until it completes or exhausts its retries.

        Returns:
            The handler's result

        Raises:
            UnknownNodeTypeError: No handler is registered for the node type
            NodeExecutionError: The last attempt's failure once retries are exhausted
        """
        handler = self.registry.get(node.type)
        if handler is None:
            error = UnknownNodeTypeError(node.type, node.id)
            await self.store.update_node_status(node.id, NodeStatus.IN_PROGRESS)
            await self._fail(node, error, attempts=[], retry_count=0)
            raise error

        timeout = self.config.timeout_duration
        max_attempts = self.config.max_retries
        attempts: List[Dict[str, Any]] = []
        retry_count = 0

        while True:
            attempt = retry_count + 1
            await self.store.update_node_status(
                node.id, NodeStatus.IN_PROGRESS, {"current_attempt": attempt}
            )
            logger.debug(f"Executing node {node.id} ({node.type}), attempt {attempt}/{max_attempts}")

            start_time = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    handler.execute(node, context),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                error = NodeTimeoutError(node.id, timeout)
            except NodeExecutionError as e:
                error = e
            except Exception as e:
                error = HandlerError(node.id, e)
            else:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                attempts.append(self._attempt_record(attempt, elapsed_ms))
                await self.store.update_node_status(
                    node.id,
                    NodeStatus.COMPLETED,
                    {
                        "result": to_jsonable_python(result, fallback=str),
                        "attempts": attempts,
                        "retry_count": retry_count,
                        "execution_time_ms": round(elapsed_ms, 2),
                    },
                )
                self.processed_nodes += 1
                logger.debug(f"Node completed: {node.id} ({elapsed_ms:.0f}ms)")
                return result

            elapsed_ms = (time.monotonic() - start_time) * 1000
            attempts.append(self._attempt_record(attempt, elapsed_ms, error))
            retry_count += 1

            if not error.retryable or retry_count >= max_attempts:
                await self._fail(node, error, attempts, retry_count)
                raise error

            delay = self.config.retry_delay(retry_count)
            logger.warning(
                f"Node {node.id} failed (attempt {attempt}/{max_attempts}): "
                f"{error.message}; retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    async def execute_batch(
        self,
        nodes: Sequence[Node],
        context: TaskContext,
    ) -> List[NodeOutcome]:
        """
        Execute independent nodes concurrently.

        Node failures become unsuccessful outcomes; any other error (storage,
        programming) is raised once the whole batch has settled.
        """
        results = await asyncio.gather(
            *(self._execute_limited(node, context) for node in nodes),
            return_exceptions=True,
        )

        outcomes = []
        unexpected: Optional[BaseException] = None
        for node, result in zip(nodes, results):
            if isinstance(result, NodeExecutionError):
                outcomes.append(NodeOutcome(node_id=node.id, success=False, error=result))
            elif isinstance(result, BaseException):
                logger.error(f"Unexpected error executing node {node.id}: {result!r}")
                unexpected = unexpected or result
            else:
                outcomes.append(NodeOutcome(node_id=node.id, success=True, result=result))

        if unexpected is not None:
            raise unexpected

        return outcomes

    async def _execute_limited(self, node: Node, context: TaskContext) -> Any:
        if self._semaphore is None:
            return await self.execute_node(node, context)
        async with self._semaphore:
            return await self.execute_node(node, context)

    async def _fail(
        self,
        node: Node,
        error: NodeExecutionError,
        attempts: List[Dict[str, Any]],
        retry_count: int,
    ) -> None:
        await self.store.update_node_status(
            node.id,
            NodeStatus.FAILED,
            {
                "error": error.message,
                "error_code": error.code,
                "attempts": attempts,
                "retry_count": retry_count,
            },
        )
        self.processed_nodes += 1
        logger.error(
            f"Node {node.id} ({node.type}) failed after {retry_count} attempt(s): {error.message}"
        )

    @staticmethod
    def _attempt_record(
        attempt: int,
        elapsed_ms: float,
        error: Optional[NodeExecutionError] = None,
    ) -> Dict[str, Any]:
        record = {
            "attempt": attempt,
            "success": error is None,
            "execution_time_ms": round(elapsed_ms, 2),
            "timestamp": utcnow().isoformat(),
        }
        if error is not None:
            record["error"] = error.message
            record["error_type"] = error.details.get("error_type", type(error).__name__)
        return record
