"""
Repository pattern implementations for database access.
"""

from .base import BaseRepository, as_uuid
from .user_repository import UserRepository
from .graph_repository import GraphRepository
from .node_repository import NodeRepository, EdgeRepository
from .task_repository import TaskRepository

__all__ = [
    "BaseRepository",
    "as_uuid",
    "UserRepository",
    "GraphRepository",
    "NodeRepository",
    "EdgeRepository",
    "TaskRepository",
]
