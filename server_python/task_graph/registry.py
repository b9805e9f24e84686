"""
Node Handler Registry.
Maps a node type tag to the handler that executes nodes of that type.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from models.graph import Node

logger = logging.getLogger(__name__)


@dataclass
class TaskContext:
    """
    Execution context handed to node handlers.

    Carries the owning task's identity and the collaborators handlers use
    (LLM completion, memory recall, document search). The scheduler passes
    ``services`` through untouched.
    """
    task_id: UUID
    created_by: UUID
    chat_id: str
    title: str = ""
    description: str = ""
    graph_id: Optional[UUID] = None
    services: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_task(
        cls,
        task,
        graph_id: Optional[UUID] = None,
        services: Optional[Dict[str, Any]] = None,
    ) -> "TaskContext":
        return cls(
            task_id=task.id,
            created_by=task.created_by,
            chat_id=task.chat_id,
            title=task.title,
            description=task.description,
            graph_id=graph_id or task.graph_id,
            services=dict(services or {}),
        )

    def service(self, name: str) -> Any:
        """Get a collaborator by name, or None."""
        return self.services.get(name)


class NodeHandler(ABC):
    """A handler executes one node and returns its result, raising on failure."""

    @abstractmethod
    async def execute(self, node: Node, context: TaskContext) -> Any:
        pass


HandlerFunc = Callable[[Node, TaskContext], Awaitable[Any]]


class FunctionHandler(NodeHandler):
    """Adapts a plain ``async def handler(node, context)`` to NodeHandler."""

    def __init__(self, func: HandlerFunc):
        if not callable(func):
            raise TypeError(f"Handler must be callable, got {func!r}")
        self._func = func

    async def execute(self, node: Node, context: TaskContext) -> Any:
        result = self._func(node, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self._func, '__name__', self._func)!r})"


class NodeHandlerRegistry:
    """
    Registry of node handlers keyed by node type.

    New node types are added by registering a handler, never by branching
    in the executor.

    Example:
        registry = NodeHandlerRegistry()
        registry.register("RESEARCH", ResearchHandler())

        async def analyze(node, context):
            ...

        registry.register("ANALYSIS", analyze)
    """

    def __init__(self):
        self._handlers: Dict[str, NodeHandler] = {}

    def register(
        self,
        node_type: str,
        handler: Union[NodeHandler, HandlerFunc],
    ) -> None:
        """
        Register a handler for a node type.

        Args:
            node_type: Type tag as stored on the node
            handler: NodeHandler instance or async function (node, context)
        """
        if not node_type:
            raise ValueError("node_type must be a non-empty string")

        if not isinstance(handler, NodeHandler):
            handler = FunctionHandler(handler)

        if node_type in self._handlers:
            logger.warning(f"Handler for node type '{node_type}' is already registered, overwriting")

        self._handlers[node_type] = handler
        logger.info(f"Registered node handler: {node_type}")

    def unregister(self, node_type: str) -> bool:
        """Remove a handler. Returns False if none was registered."""
        if node_type not in self._handlers:
            return False
        del self._handlers[node_type]
        logger.info(f"Unregistered node handler: {node_type}")
        return True

    def get(self, node_type: str) -> Optional[NodeHandler]:
        return self._handlers.get(node_type)

    def has(self, node_type: str) -> bool:
        return node_type in self._handlers

    def registered_types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, node_type: str) -> bool:
        return self.has(node_type)

    def __len__(self) -> int:
        return len(self._handlers)
