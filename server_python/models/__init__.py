from .graph import (
    NodeStatus,
    GraphStatus,
    GraphMetadata,
    Node,
    Edge,
    Graph,
    GraphStatusSnapshot,
)
from .task import (
    TaskStatus,
    TASK_STATUS_ORDER,
    TaskMetadata,
    Task,
    CreateTaskInput,
    UpdateTaskInput,
    TaskProgress,
)
from .user import User

__all__ = [
    # Graph
    "NodeStatus",
    "GraphStatus",
    "GraphMetadata",
    "Node",
    "Edge",
    "Graph",
    "GraphStatusSnapshot",
    # Task
    "TaskStatus",
    "TASK_STATUS_ORDER",
    "TaskMetadata",
    "Task",
    "CreateTaskInput",
    "UpdateTaskInput",
    "TaskProgress",
    # User
    "User",
]
