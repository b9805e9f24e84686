from enum import Enum
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class NodeStatus(str, Enum):
    PENDING = "PENDING"
    BLOCKED = "BLOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.FAILED)


class GraphStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not GraphStatus.ACTIVE


class GraphMetadata(BaseModel):
    # cancellation details and other overlays ride along as extras
    model_config = ConfigDict(extra="allow")

    progress: int = 0
    completed_nodes: int = 0
    failed_nodes: int = 0
    total_nodes: int = 0
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class Node(BaseModel):
    id: UUID
    graph_id: UUID
    type: str
    payload: str
    status: NodeStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "Node":
        return cls(
            id=record.id,
            graph_id=record.graph_id,
            type=record.type,
            payload=record.payload,
            status=record.status,
            metadata=record.metadata_json or {},
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class Edge(BaseModel):
    id: UUID
    graph_id: UUID
    type: str
    source_id: UUID
    target_id: UUID
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "Edge":
        return cls(
            id=record.id,
            graph_id=record.graph_id,
            type=record.type,
            source_id=record.source_id,
            target_id=record.target_id,
            metadata=record.metadata_json or {},
            created_at=record.created_at,
        )


class Graph(BaseModel):
    id: UUID
    status: GraphStatus
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record, nodes=None, edges=None) -> "Graph":
        return cls(
            id=record.id,
            status=record.status,
            metadata=GraphMetadata.model_validate(record.metadata_json or {}),
            nodes=[Node.from_record(n) for n in nodes or []],
            edges=[Edge.from_record(e) for e in edges or []],
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class GraphStatusSnapshot(BaseModel):
    graph_id: UUID
    status: GraphStatus
    progress: int
    total: int
    completed: int
    failed: int
    pending: int
    blocked: int
    in_progress: int = 0
    last_updated: datetime
