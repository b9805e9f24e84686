"""
Graph Store.

CRUD and status maintenance for graphs, nodes and edges. Every operation
that reads and then writes several records runs as one transaction through
``Database.run_transaction``; the graph row is locked before its aggregate
metadata is recomputed so concurrent node completions cannot lose updates.

The ``*_in(session, ...)`` methods do the same work inside a caller-owned
transaction, which lets the Task Manager combine graph and task changes
atomically.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from config import EdgeTypes
from database import Database, GraphModel, NodeModel
from database.models import utcnow
from database.repositories import (
    GraphRepository,
    NodeRepository,
    EdgeRepository,
    as_uuid,
)
from errors import (
    CyclicDependencyError,
    GraphNotActiveError,
    GraphNotFoundError,
    InvalidTransitionError,
    NodeNotFoundError,
)
from models.graph import (
    Edge,
    Graph,
    GraphMetadata,
    GraphStatus,
    GraphStatusSnapshot,
    Node,
    NodeStatus,
)

from .plan import ExecutionPlan
from .resolver import (
    DependencyIndex,
    can_transition,
    derive_graph_status,
    parse_node_status,
    summarize_counts,
)

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return utcnow().isoformat()


def _load_metadata(graph: GraphModel) -> GraphMetadata:
    try:
        return GraphMetadata.model_validate(graph.metadata_json or {})
    except PydanticValidationError:
        logger.warning(f"Unreadable metadata on graph {graph.id}, rebuilding")
        return GraphMetadata(created_at=graph.created_at)


class GraphStore:
    """
    Persistent store for task graphs.

    Example:
        store = GraphStore(database)
        graph = await store.create_graph()
        research = await store.create_node("RESEARCH", "Survey consensus", graph.id)
        analysis = await store.create_node(
            "ANALYSIS", "Compare PoW and PoS", graph.id, dependencies=[research.id]
        )
        await store.update_node_status(research.id, "COMPLETED", {"output": "..."})
        # analysis is now PENDING
    """

    def __init__(self, database: Database):
        self._db = database

    @property
    def database(self) -> Database:
        return self._db

    # =========================================================================
    # Graphs
    # =========================================================================

    async def create_graph(self) -> Graph:
        """Create an empty ACTIVE graph with zeroed metadata."""
        graph = await self._db.run_transaction(self.create_graph_in)
        logger.info(f"Created graph {graph.id}")
        return graph

    async def create_graph_in(self, session: AsyncSession) -> Graph:
        now = utcnow()
        metadata = GraphMetadata(created_at=now, last_updated=now)
        record = await GraphRepository(session).create(
            status=GraphStatus.ACTIVE.value,
            metadata_json=metadata.model_dump(mode="json"),
        )
        return Graph.from_record(record)

    async def get_graph(self, graph_id) -> Graph:
        """Get a graph with all of its nodes and edges."""

        async def work(session: AsyncSession) -> Graph:
            graphs = GraphRepository(session)
            record = await graphs.get_by_id(graph_id)
            if record is None:
                raise GraphNotFoundError(graph_id)
            return Graph.from_record(
                record,
                nodes=await graphs.list_nodes(record.id),
                edges=await graphs.list_edges(record.id),
            )

        return await self._db.run_transaction(work)

    async def get_current_graph(self) -> Optional[Graph]:
        """Most recently created ACTIVE graph, with its metadata healed, or None."""

        async def work(session: AsyncSession) -> Optional[Graph]:
            graphs = GraphRepository(session)
            record = await graphs.get_latest_active()
            if record is None:
                return None
            await self.graph_status_in(session, record.id)
            return Graph.from_record(
                record,
                nodes=await graphs.list_nodes(record.id),
                edges=await graphs.list_edges(record.id),
            )

        return await self._db.run_transaction(work)

    async def delete_graph(self, graph_id) -> bool:
        """Delete a graph with its edges and nodes."""
        return await self._db.run_transaction(
            lambda session: self.delete_graph_in(session, graph_id)
        )

    async def delete_graph_in(self, session: AsyncSession, graph_id) -> bool:
        deleted = await GraphRepository(session).delete_cascade(graph_id)
        if deleted:
            logger.info(f"Deleted graph {graph_id} with its nodes and edges")
        return deleted

    async def cancel_graph(self, graph_id, reason: str = "Cancelled") -> Graph:
        return await self._db.run_transaction(
            lambda session: self.cancel_graph_in(session, graph_id, reason)
        )

    async def cancel_graph_in(
        self,
        session: AsyncSession,
        graph_id,
        reason: str = "Cancelled",
    ) -> Graph:
        """
        Mark an ACTIVE graph CANCELLED. Graphs already COMPLETED, FAILED or
        CANCELLED keep their status.
        """
        graph = await GraphRepository(session).get_for_update(graph_id)
        if graph is None:
            raise GraphNotFoundError(graph_id)

        if graph.status == GraphStatus.ACTIVE.value:
            metadata = _load_metadata(graph)
            now = utcnow()
            graph.status = GraphStatus.CANCELLED.value
            graph.metadata_json = {
                **metadata.model_dump(mode="json"),
                "cancelled_at": now.isoformat(),
                "reason": reason,
                "last_updated": now.isoformat(),
            }
            await session.flush()
            logger.info(f"Cancelled graph {graph_id}: {reason}")
        else:
            logger.info(f"Graph {graph_id} already {graph.status}, not cancelling")

        return Graph.from_record(graph)

    # =========================================================================
    # Nodes and edges
    # =========================================================================

    async def create_node(
        self,
        node_type: str,
        payload: str,
        graph_id,
        metadata: Optional[Dict[str, Any]] = None,
        dependencies: Sequence = (),
    ) -> Node:
        """
        Add a node to an ACTIVE graph.

        The node starts BLOCKED when it has dependencies and PENDING
        otherwise; one DEPENDS_ON edge is created per dependency. Node,
        edges and graph metadata are written atomically.

        Raises:
            GraphNotFoundError: If the graph does not exist
            GraphNotActiveError: If the graph is not ACTIVE
            NodeNotFoundError: If a dependency is not a node of this graph
        """
        return await self._db.run_transaction(
            lambda session: self.create_node_in(
                session, node_type, payload, graph_id, metadata, dependencies
            )
        )

    async def create_node_in(
        self,
        session: AsyncSession,
        node_type: str,
        payload: str,
        graph_id,
        metadata: Optional[Dict[str, Any]] = None,
        dependencies: Sequence = (),
    ) -> Node:
        graphs = GraphRepository(session)
        nodes = NodeRepository(session)
        edges = EdgeRepository(session)

        graph = await self._get_active_graph(graphs, graph_id)
        dependency_ids = [as_uuid(dep) for dep in dependencies]

        dependency_nodes = {n.id: n for n in await nodes.get_many(set(dependency_ids))}
        for dep_id in dependency_ids:
            dep = dependency_nodes.get(dep_id)
            if dep is None or dep.graph_id != graph.id:
                raise NodeNotFoundError(dep_id)

        now = _now_iso()
        node = await nodes.create(
            graph_id=graph.id,
            type=node_type,
            payload=payload,
            status=(NodeStatus.BLOCKED if dependency_ids else NodeStatus.PENDING).value,
            metadata_json={
                **to_jsonable_python(metadata or {}, fallback=str),
                "created_at": now,
                "last_updated": now,
            },
        )

        for dep_id in dependency_ids:
            await edges.create(
                type=EdgeTypes.DEPENDS_ON,
                source_id=dep_id,
                target_id=node.id,
                graph_id=graph.id,
            )

        # Dependencies that already completed never emit another terminal
        # transition, so promote right away
        if dependency_ids and all(
            dependency_nodes[dep_id].status == NodeStatus.COMPLETED.value
            for dep_id in dependency_ids
        ):
            node.status = NodeStatus.PENDING.value

        await session.flush()
        await self._refresh_graph(session, graph)

        logger.debug(
            f"Added node {node.id} ({node_type}) to graph {graph.id} "
            f"with {len(dependency_ids)} dependencies"
        )
        return Node.from_record(node)

    async def create_edge(
        self,
        edge_type: str,
        source_id,
        target_id,
        graph_id,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Edge:
        """
        Add an edge between two nodes of an ACTIVE graph.

        DEPENDS_ON edges that would close a cycle are rejected. The target's
        stored status is not changed: a PENDING target whose new dependency is
        not COMPLETED stays PENDING but is left out of get_executable_nodes
        until the dependency completes.

        Raises:
            GraphNotFoundError: If the graph does not exist
            GraphNotActiveError: If the graph is not ACTIVE
            NodeNotFoundError: If either node is not part of the graph
            CyclicDependencyError: If a dependency cycle would be created
        """

        async def work(session: AsyncSession) -> Edge:
            graphs = GraphRepository(session)
            nodes = NodeRepository(session)
            edges = EdgeRepository(session)

            graph = await self._get_active_graph(graphs, graph_id)

            found = {n.id: n for n in await nodes.get_many({source_id, target_id})}
            for node_id in (as_uuid(source_id), as_uuid(target_id)):
                node = found.get(node_id)
                if node is None or node.graph_id != graph.id:
                    raise NodeNotFoundError(node_id)

            if edge_type == EdgeTypes.DEPENDS_ON:
                existing = await edges.get_by_graph(graph.id, EdgeTypes.DEPENDS_ON)
                index = DependencyIndex((e.source_id, e.target_id) for e in existing)
                if index.would_create_cycle(as_uuid(source_id), as_uuid(target_id)):
                    logger.warning(
                        f"Rejected dependency {source_id} -> {target_id}: would create a cycle"
                    )
                    raise CyclicDependencyError(source_id, target_id)

            now = _now_iso()
            record = await edges.create(
                type=edge_type,
                source_id=as_uuid(source_id),
                target_id=as_uuid(target_id),
                graph_id=graph.id,
                metadata_json={
                    **to_jsonable_python(metadata or {}, fallback=str),
                    "created_at": now,
                    "last_updated": now,
                },
            )
            return Edge.from_record(record)

        return await self._db.run_transaction(work)

    async def get_node(self, node_id) -> Node:
        async def work(session: AsyncSession) -> Node:
            record = await NodeRepository(session).get_by_id(node_id)
            if record is None:
                raise NodeNotFoundError(node_id)
            return Node.from_record(record)

        return await self._db.run_transaction(work)

    async def update_node_status(
        self,
        node_id,
        status,
        result: Optional[Dict[str, Any]] = None,
    ) -> Node:
        """
        Move a node to ``status`` and propagate the change.

        In one transaction: the node is updated (terminal states stamp
        ``completed_at``/``failed_at`` into its metadata, with ``result``
        overlaid), BLOCKED dependents whose dependencies are now all
        COMPLETED move to PENDING, and the graph's counts, progress and
        status are recomputed.

        Raises:
            InvalidStatusError: If ``status`` is not a node status
            NodeNotFoundError: If the node does not exist
            InvalidTransitionError: If the node would move backward
        """
        new_status = parse_node_status(status)

        async def work(session: AsyncSession) -> Node:
            graphs = GraphRepository(session)
            nodes = NodeRepository(session)

            node = await nodes.get_by_id(node_id)
            if node is None:
                raise NodeNotFoundError(node_id)

            # Lock the aggregate before touching the node
            graph = await graphs.get_for_update(node.graph_id)
            if graph is None:
                raise GraphNotFoundError(node.graph_id)
            node = await nodes.get_for_update(node_id)

            current = NodeStatus(node.status)
            if not can_transition(current, new_status):
                raise InvalidTransitionError("node", node.id, current.value, new_status.value)

            now = _now_iso()
            metadata = dict(node.metadata_json or {})
            if result:
                metadata.update(to_jsonable_python(result, fallback=str))
            if new_status is NodeStatus.COMPLETED:
                metadata["completed_at"] = now
            elif new_status is NodeStatus.FAILED:
                metadata["failed_at"] = now
            metadata["last_updated"] = now

            node.status = new_status.value
            node.metadata_json = metadata
            await session.flush()

            if new_status.is_terminal:
                unblocked = await self._unblock_dependents(session, node)
                if unblocked:
                    logger.debug(f"Node {node.id} unblocked {len(unblocked)} dependent(s)")

            await self._refresh_graph(session, graph)
            return Node.from_record(node)

        return await self._db.run_transaction(work)

    async def _unblock_dependents(self, session: AsyncSession, node: NodeModel) -> List:
        """Flip BLOCKED dependents of ``node`` to PENDING when fully satisfied."""
        nodes = NodeRepository(session)
        edges = EdgeRepository(session)

        outgoing = await edges.get_outgoing(node.id, EdgeTypes.DEPENDS_ON)
        target_ids = {edge.target_id for edge in outgoing}
        if not target_ids:
            return []

        incoming = await edges.get_incoming(target_ids, EdgeTypes.DEPENDS_ON)
        index = DependencyIndex((edge.source_id, edge.target_id) for edge in incoming)
        statuses = await nodes.get_statuses(
            target_ids | {edge.source_id for edge in incoming}
        )

        ready = index.unblockable(node.id, statuses)
        if ready:
            for target in await nodes.get_many(ready):
                target.status = NodeStatus.PENDING.value
                target.metadata_json = {
                    **(target.metadata_json or {}),
                    "unblocked_at": _now_iso(),
                    "last_updated": _now_iso(),
                }
            await session.flush()
        return ready

    async def materialize_plan(self, graph_id, plan: ExecutionPlan) -> Dict[str, Node]:
        """
        Create every node of ``plan`` in one transaction.

        Returns:
            Mapping of plan key -> created Node
        """
        ordered = plan.ordered()

        async def work(session: AsyncSession) -> Dict[str, Node]:
            created: Dict[str, Node] = {}
            for planned in ordered:
                created[planned.key] = await self.create_node_in(
                    session,
                    planned.type,
                    planned.payload,
                    graph_id,
                    metadata={**planned.metadata, "plan_key": planned.key},
                    dependencies=[created[dep].id for dep in planned.depends_on],
                )
            return created

        created = await self._db.run_transaction(work)
        logger.info(f"Materialized plan with {len(created)} node(s) into graph {graph_id}")
        return created

    # =========================================================================
    # Readiness and status
    # =========================================================================

    async def get_executable_nodes(self, graph_id) -> List[Node]:
        """All PENDING nodes whose every dependency source is COMPLETED."""

        async def work(session: AsyncSession) -> List[Node]:
            graphs = GraphRepository(session)
            if await graphs.get_by_id(graph_id) is None:
                raise GraphNotFoundError(graph_id)

            nodes = NodeRepository(session)
            pending = await nodes.get_by_status(graph_id, NodeStatus.PENDING.value)
            if not pending:
                return []

            incoming = await EdgeRepository(session).get_incoming(
                [n.id for n in pending], EdgeTypes.DEPENDS_ON
            )
            index = DependencyIndex((edge.source_id, edge.target_id) for edge in incoming)
            statuses = await nodes.get_statuses({edge.source_id for edge in incoming})
            statuses.update({n.id: n.status for n in pending})

            ready = set(index.executable(statuses))
            return [Node.from_record(n) for n in pending if n.id in ready]

        return await self._db.run_transaction(work)

    async def get_graph_status(self, graph_id) -> GraphStatusSnapshot:
        """
        Read-consistent status snapshot of a graph.

        Persisted metadata that disagrees with a fresh count of node
        statuses is recomputed and saved before returning.
        """
        return await self._db.run_transaction(
            lambda session: self.graph_status_in(session, graph_id)
        )

    async def graph_status_in(self, session: AsyncSession, graph_id) -> GraphStatusSnapshot:
        graphs = GraphRepository(session)
        graph = await graphs.get_by_id(graph_id)
        if graph is None:
            raise GraphNotFoundError(graph_id)

        counts = summarize_counts(await graphs.count_nodes_by_status(graph.id))
        metadata = _load_metadata(graph)

        stale = (
            metadata.total_nodes != counts["total"]
            or metadata.completed_nodes != counts["completed"]
            or metadata.failed_nodes != counts["failed"]
            or metadata.progress != counts["progress"]
            or metadata.last_updated is None
        )
        if stale:
            graph = await graphs.get_for_update(graph.id)
            metadata = self._apply_counts(metadata, counts)
            graph.metadata_json = {
                **(graph.metadata_json or {}),
                **metadata.model_dump(mode="json"),
            }
            await session.flush()
            logger.info(f"Recomputed stale metadata for graph {graph.id}")

        return GraphStatusSnapshot(
            graph_id=graph.id,
            status=GraphStatus(graph.status),
            last_updated=metadata.last_updated,
            **counts,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _get_active_graph(self, graphs: GraphRepository, graph_id) -> GraphModel:
        graph = await graphs.get_for_update(graph_id)
        if graph is None:
            raise GraphNotFoundError(graph_id)
        if graph.status != GraphStatus.ACTIVE.value:
            raise GraphNotActiveError(graph.id, graph.status)
        return graph

    @staticmethod
    def _apply_counts(metadata: GraphMetadata, counts: Dict[str, int]) -> GraphMetadata:
        metadata.progress = counts["progress"]
        metadata.completed_nodes = counts["completed"]
        metadata.failed_nodes = counts["failed"]
        metadata.total_nodes = counts["total"]
        metadata.last_updated = utcnow()
        return metadata

    async def _refresh_graph(self, session: AsyncSession, graph: GraphModel) -> None:
        """Recompute aggregate metadata and status of a locked graph row."""
        counts = summarize_counts(await GraphRepository(session).count_nodes_by_status(graph.id))
        metadata = self._apply_counts(_load_metadata(graph), counts)
        graph.metadata_json = {
            **(graph.metadata_json or {}),
            **metadata.model_dump(mode="json"),
        }

        current = GraphStatus(graph.status)
        new_status = derive_graph_status(
            current, counts["completed"], counts["failed"], counts["total"]
        )
        if new_status is not current:
            graph.status = new_status.value
            logger.info(
                f"Graph {graph.id} is now {new_status.value} "
                f"({counts['completed']} completed, {counts['failed']} failed, "
                f"{counts['total']} total)"
            )
        await session.flush()
