from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field

from .graph import GraphStatus


class TaskStatus(str, Enum):
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


# Lifecycle order used when listing tasks: open work sorts first
TASK_STATUS_ORDER = [
    TaskStatus.PLANNING,
    TaskStatus.ACTIVE,
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
]


class TaskMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    progress: int = 0
    previous_failures: int = 0
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class Task(BaseModel):
    id: UUID
    title: str
    description: str
    created_by: UUID
    chat_id: str
    status: TaskStatus
    priority: int = 0
    deadline: Optional[datetime] = None
    graph_id: Optional[UUID] = None
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "Task":
        return cls(
            id=record.id,
            title=record.title,
            description=record.description,
            created_by=record.created_by,
            chat_id=record.chat_id,
            status=record.status,
            priority=record.priority,
            deadline=record.deadline,
            graph_id=record.graph_id,
            metadata=TaskMetadata.model_validate(record.metadata_json or {}),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class CreateTaskInput(BaseModel):
    title: str = Field(min_length=1)
    description: str
    created_by: UUID
    chat_id: str
    priority: int = 0
    deadline: Optional[datetime] = None


class UpdateTaskInput(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = None
    deadline: Optional[datetime] = None
    graph_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = None


class TaskProgress(BaseModel):
    task: Task
    graph_id: Optional[UUID] = None
    status: Optional[GraphStatus] = None
    progress: int = 0
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    blocked: int = 0
    in_progress: int = 0
    last_updated: Optional[datetime] = None
