"""
Task Graph system.
Provides DAG-based task scheduling: graph storage, readiness resolution and
node execution.
"""

from .resolver import (
    DependencyIndex,
    compute_progress,
    derive_graph_status,
    summarize_counts,
    parse_node_status,
    can_transition,
)
from .registry import TaskContext, NodeHandler, FunctionHandler, NodeHandlerRegistry
from .plan import PlannedNode, ExecutionPlan
from .store import GraphStore
from .executor import NodeExecutor, NodeOutcome

__all__ = [
    # Resolver
    "DependencyIndex",
    "compute_progress",
    "derive_graph_status",
    "summarize_counts",
    "parse_node_status",
    "can_transition",
    # Registry
    "TaskContext",
    "NodeHandler",
    "FunctionHandler",
    "NodeHandlerRegistry",
    # Plan
    "PlannedNode",
    "ExecutionPlan",
    # Store
    "GraphStore",
    # Executor
    "NodeExecutor",
    "NodeOutcome",
]
