"""
Readiness resolution over dependency edges.

Pure, storage-free logic: which nodes may run, which blocked nodes become
runnable, whether a new dependency would close a cycle, and how graph
aggregates are derived from node statuses.
"""

import logging
import math
from collections import defaultdict, deque
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Set, Tuple

from errors import InvalidStatusError
from models.graph import GraphStatus, NodeStatus

logger = logging.getLogger(__name__)


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, NodeStatus) else str(status)


class DependencyIndex:
    """
    Adjacency view of a graph's dependency edges.

    An edge ``(source, target)`` means *target depends on source*. Parallel
    edges between the same pair are kept; they do not change readiness.

    Example:
        index = DependencyIndex([(research_id, analysis_id)])
        index.is_satisfied(analysis_id, {research_id: "COMPLETED"})  # True
    """

    def __init__(self, edges: Iterable[Tuple[Hashable, Hashable]] = ()):
        self._dependencies: Dict[Hashable, List[Hashable]] = defaultdict(list)
        self._dependents: Dict[Hashable, List[Hashable]] = defaultdict(list)
        for source, target in edges:
            self.add(source, target)

    def add(self, source: Hashable, target: Hashable) -> None:
        self._dependencies[target].append(source)
        self._dependents[source].append(target)

    def dependencies_of(self, node_id: Hashable) -> List[Hashable]:
        return list(self._dependencies.get(node_id, ()))

    def dependents_of(self, node_id: Hashable) -> List[Hashable]:
        return list(self._dependents.get(node_id, ()))

    def is_satisfied(self, node_id: Hashable, statuses: Mapping[Hashable, Any]) -> bool:
        """True when every dependency source of ``node_id`` is COMPLETED."""
        return all(
            _status_value(statuses.get(dep)) == NodeStatus.COMPLETED.value
            for dep in self._dependencies.get(node_id, ())
        )

    def executable(self, statuses: Mapping[Hashable, Any]) -> List[Hashable]:
        """Nodes that are PENDING with all dependencies COMPLETED."""
        return [
            node_id
            for node_id, status in statuses.items()
            if _status_value(status) == NodeStatus.PENDING.value
            and self.is_satisfied(node_id, statuses)
        ]

    def unblockable(
        self,
        completed_id: Hashable,
        statuses: Mapping[Hashable, Any],
    ) -> List[Hashable]:
        """
        Dependents of ``completed_id`` that should move BLOCKED -> PENDING.

        Only nodes still BLOCKED qualify, so re-evaluating an already
        PENDING dependent is a no-op.
        """
        seen: Set[Hashable] = set()
        ready = []
        for target in self._dependents.get(completed_id, ()):
            if target in seen:
                continue
            seen.add(target)
            if _status_value(statuses.get(target)) != NodeStatus.BLOCKED.value:
                continue
            if self.is_satisfied(target, statuses):
                ready.append(target)
        return ready

    def would_create_cycle(self, source: Hashable, target: Hashable) -> bool:
        """Check if adding ``target`` depends-on ``source`` closes a cycle."""
        if source == target:
            return True

        # A cycle exists if source is already reachable from target
        visited: Set[Hashable] = set()
        stack = [target]
        while stack:
            current = stack.pop()
            if current == source:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self._dependents.get(current, ()))
        return False

    def topological_order(self, node_ids: Iterable[Hashable]) -> List[Hashable]:
        """
        Order nodes dependencies-first (Kahn's algorithm).

        Raises:
            ValueError: If the dependency edges contain a cycle
        """
        nodes = list(dict.fromkeys(node_ids))
        in_degree = {node_id: 0 for node_id in nodes}
        for node_id in nodes:
            for dep in self._dependencies.get(node_id, ()):
                if dep in in_degree:
                    in_degree[node_id] += 1

        queue = deque(node_id for node_id in nodes if in_degree[node_id] == 0)
        result = []

        while queue:
            node_id = queue.popleft()
            result.append(node_id)
            for dependent in self._dependents.get(node_id, ()):
                if dependent in in_degree:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        queue.append(dependent)

        if len(result) != len(nodes):
            raise ValueError("Graph contains a cycle")

        return result


def compute_progress(completed: int, failed: int, total: int) -> int:
    """Percentage of nodes in a terminal state, rounded half up. 0 for an empty graph."""
    if total <= 0:
        return 0
    return int(math.floor(100 * (completed + failed) / total + 0.5))


def derive_graph_status(
    current: GraphStatus,
    completed: int,
    failed: int,
    total: int,
) -> GraphStatus:
    """
    Next graph status from node counts.

    Terminal graph statuses never change. An ACTIVE graph becomes FAILED as
    soon as any node failed, COMPLETED once every node completed.
    """
    current = GraphStatus(current)
    if current.is_terminal:
        return current
    if failed > 0:
        return GraphStatus.FAILED
    if total > 0 and completed == total:
        return GraphStatus.COMPLETED
    return current


def summarize_counts(counts: Mapping[str, int]) -> Dict[str, int]:
    """Normalize a status -> count mapping into the snapshot fields."""
    completed = counts.get(NodeStatus.COMPLETED.value, 0)
    failed = counts.get(NodeStatus.FAILED.value, 0)
    total = sum(counts.values())
    return {
        "total": total,
        "completed": completed,
        "failed": failed,
        "pending": counts.get(NodeStatus.PENDING.value, 0),
        "blocked": counts.get(NodeStatus.BLOCKED.value, 0),
        "in_progress": counts.get(NodeStatus.IN_PROGRESS.value, 0),
        "progress": compute_progress(completed, failed, total),
    }


def parse_node_status(status: Any) -> NodeStatus:
    """Coerce a status value, rejecting anything that is not a NodeStatus."""
    try:
        return NodeStatus(status.value if isinstance(status, NodeStatus) else status)
    except ValueError:
        raise InvalidStatusError(status, [s.value for s in NodeStatus])


# Allowed node transitions; nodes never move backward
NODE_TRANSITIONS: Dict[NodeStatus, Set[NodeStatus]] = {
    NodeStatus.BLOCKED: {
        NodeStatus.BLOCKED,
        NodeStatus.PENDING,
        NodeStatus.IN_PROGRESS,
        NodeStatus.COMPLETED,
        NodeStatus.FAILED,
    },
    NodeStatus.PENDING: {
        NodeStatus.PENDING,
        NodeStatus.IN_PROGRESS,
        NodeStatus.COMPLETED,
        NodeStatus.FAILED,
    },
    NodeStatus.IN_PROGRESS: {
        NodeStatus.IN_PROGRESS,
        NodeStatus.COMPLETED,
        NodeStatus.FAILED,
    },
    NodeStatus.COMPLETED: {NodeStatus.COMPLETED},
    NodeStatus.FAILED: {NodeStatus.FAILED},
}


def can_transition(current: NodeStatus, requested: NodeStatus) -> bool:
    return requested in NODE_TRANSITIONS.get(current, set())
