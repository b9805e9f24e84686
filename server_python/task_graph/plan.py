"""
Execution plans: a decomposed task described as keyed nodes and dependencies,
ready to be materialized into a stored graph.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from errors import CyclicDependencyError, ValidationError

from .resolver import DependencyIndex


@dataclass
class PlannedNode:
    """A node to create, referring to its dependencies by plan key."""
    key: str
    type: str
    payload: str
    depends_on: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "type": self.type,
            "payload": self.payload,
            "depends_on": list(self.depends_on),
            "metadata": self.metadata,
        }


class ExecutionPlan:
    """
    Ordered collection of planned nodes.

    Example:
        plan = ExecutionPlan()
        plan.add("research", "RESEARCH", "Collect consensus mechanisms")
        plan.add("analysis", "ANALYSIS", "Compare PoW and PoS", depends_on=["research"])
        nodes = await graph_store.materialize_plan(graph_id, plan)
    """

    def __init__(self, nodes: Optional[Sequence[PlannedNode]] = None):
        self._nodes: Dict[str, PlannedNode] = {}
        for node in nodes or ():
            self._insert(node)

    def add(
        self,
        key: str,
        node_type: str,
        payload: str,
        depends_on: Optional[Sequence[str]] = None,
        **metadata: Any,
    ) -> PlannedNode:
        """Add a node to the plan. Dependencies may be added in any order."""
        node = PlannedNode(
            key=key,
            type=node_type,
            payload=payload,
            depends_on=list(depends_on or []),
            metadata=metadata,
        )
        self._insert(node)
        return node

    def _insert(self, node: PlannedNode) -> None:
        if not node.key:
            raise ValidationError("Planned node key must not be empty", field="key")
        if node.key in self._nodes:
            raise ValidationError(f"Duplicate planned node key: {node.key}", field="key")
        self._nodes[node.key] = node

    @property
    def nodes(self) -> List[PlannedNode]:
        return list(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def ordered(self) -> List[PlannedNode]:
        """
        Planned nodes with every dependency before its dependents.

        Raises:
            ValidationError: If a node depends on an unknown key
            CyclicDependencyError: If the dependencies contain a cycle
        """
        index = DependencyIndex()
        for node in self._nodes.values():
            for dep in node.depends_on:
                if dep not in self._nodes:
                    raise ValidationError(
                        f"Planned node '{node.key}' depends on unknown key '{dep}'",
                        field="depends_on",
                    )
                if index.would_create_cycle(dep, node.key):
                    raise CyclicDependencyError(dep, node.key)
                index.add(dep, node.key)

        return [self._nodes[key] for key in index.topological_order(self._nodes)]

    @classmethod
    def from_dicts(cls, items: Sequence[Dict[str, Any]]) -> "ExecutionPlan":
        """Build a plan from dicts shaped like ``PlannedNode.to_dict()``."""
        plan = cls()
        for item in items:
            plan.add(
                item["key"],
                item["type"],
                item.get("payload", ""),
                depends_on=item.get("depends_on") or [],
                **(item.get("metadata") or {}),
            )
        return plan

    def to_dict(self) -> Dict[str, Any]:
        return {"nodes": [node.to_dict() for node in self._nodes.values()]}
