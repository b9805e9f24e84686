"""
Graph Store Unit Tests

그래프/노드/엣지 저장과 상태 전파(의존성 해제, 진행률, 그래프 상태)의 테스트입니다.
"""

import asyncio
import pytest
from uuid import uuid4

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from config import EdgeTypes
from database.repositories import GraphRepository
from errors import (
    CyclicDependencyError,
    GraphNotActiveError,
    GraphNotFoundError,
    InvalidStatusError,
    InvalidTransitionError,
    NodeNotFoundError,
)
from models.graph import GraphStatus, NodeStatus
from task_graph import ExecutionPlan


class TestGraphCreation:
    """그래프 및 노드 생성 테스트"""

    @pytest.mark.asyncio
    async def test_create_graph_is_active_and_empty(self, graph_store):
        graph = await graph_store.create_graph()

        assert graph.status == GraphStatus.ACTIVE
        assert graph.metadata.total_nodes == 0
        assert graph.metadata.progress == 0

        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.total == 0
        assert snapshot.progress == 0

    @pytest.mark.asyncio
    async def test_node_status_follows_dependency_count(self, graph_store):
        """의존성이 없으면 PENDING, 있으면 BLOCKED로 생성"""
        graph = await graph_store.create_graph()
        first = await graph_store.create_node("RESEARCH", "Collect", graph.id)
        second = await graph_store.create_node(
            "ANALYSIS", "Compare", graph.id, dependencies=[first.id]
        )

        assert first.status == NodeStatus.PENDING
        assert second.status == NodeStatus.BLOCKED

    @pytest.mark.asyncio
    async def test_create_node_writes_edges_and_metadata(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("RESEARCH", "B", graph.id)
        c = await graph_store.create_node(
            "ANALYSIS", "C", graph.id, metadata={"source": "plan"}, dependencies=[a.id, b.id]
        )

        loaded = await graph_store.get_graph(graph.id)

        assert loaded.metadata.total_nodes == 3
        assert len(loaded.edges) == 2
        assert {e.source_id for e in loaded.edges} == {a.id, b.id}
        assert all(e.target_id == c.id for e in loaded.edges)
        assert all(e.type == EdgeTypes.DEPENDS_ON for e in loaded.edges)
        assert c.metadata["source"] == "plan"

    @pytest.mark.asyncio
    async def test_dependency_already_completed_starts_pending(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.create_node("RESEARCH", "keep graph active", graph.id)
        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)

        b = await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[a.id])

        assert b.status == NodeStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_graph(self, graph_store):
        with pytest.raises(GraphNotFoundError):
            await graph_store.create_node("RESEARCH", "A", uuid4())

        with pytest.raises(GraphNotFoundError):
            await graph_store.get_graph_status(uuid4())

    @pytest.mark.asyncio
    async def test_dependency_from_other_graph_rejected(self, graph_store):
        """다른 그래프의 노드는 의존성이 될 수 없음"""
        graph = await graph_store.create_graph()
        other = await graph_store.create_graph()
        foreign = await graph_store.create_node("RESEARCH", "A", other.id)

        with pytest.raises(NodeNotFoundError):
            await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[foreign.id])

        loaded = await graph_store.get_graph(graph.id)
        assert loaded.nodes == []
        assert loaded.metadata.total_nodes == 0


class TestEdges:
    """엣지 생성 테스트"""

    @pytest.mark.asyncio
    async def test_create_edge_requires_nodes(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)

        with pytest.raises(NodeNotFoundError):
            await graph_store.create_edge(EdgeTypes.DEPENDS_ON, a.id, uuid4(), graph.id)

    @pytest.mark.asyncio
    async def test_cyclic_dependency_rejected(self, graph_store):
        """사이클을 만드는 DEPENDS_ON 엣지는 거부"""
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[a.id])
        c = await graph_store.create_node("DECISION", "C", graph.id, dependencies=[b.id])

        with pytest.raises(CyclicDependencyError):
            await graph_store.create_edge(EdgeTypes.DEPENDS_ON, c.id, a.id, graph.id)

        with pytest.raises(CyclicDependencyError):
            await graph_store.create_edge(EdgeTypes.DEPENDS_ON, a.id, a.id, graph.id)

    @pytest.mark.asyncio
    async def test_non_dependency_edges_skip_cycle_check(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[a.id])

        edge = await graph_store.create_edge(
            EdgeTypes.MEMORY_FLOW, b.id, a.id, graph.id, metadata={"key": "summary"}
        )

        assert edge.type == EdgeTypes.MEMORY_FLOW
        assert edge.metadata["key"] == "summary"

    @pytest.mark.asyncio
    async def test_flow_edge_does_not_gate_readiness(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("RESEARCH", "B", graph.id)
        await graph_store.create_edge(EdgeTypes.FLOW, a.id, b.id, graph.id)

        executable = await graph_store.get_executable_nodes(graph.id)

        assert {n.id for n in executable} == {a.id, b.id}

    @pytest.mark.asyncio
    async def test_late_dependency_gates_pending_target(self, graph_store):
        """나중에 추가된 DEPENDS_ON 엣지: 대상은 PENDING 유지, 실행 대상에서는 제외"""
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("RESEARCH", "B", graph.id)
        await graph_store.create_edge(EdgeTypes.DEPENDS_ON, a.id, b.id, graph.id)

        assert (await graph_store.get_node(b.id)).status == NodeStatus.PENDING
        executable = await graph_store.get_executable_nodes(graph.id)
        assert [n.id for n in executable] == [a.id]

        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)

        executable = await graph_store.get_executable_nodes(graph.id)
        assert [n.id for n in executable] == [b.id]


class TestStatusPropagation:
    """노드 상태 변경과 그래프 전파 테스트"""

    @pytest.mark.asyncio
    async def test_dependent_unblocks_after_completion(self, graph_store):
        """Node1 완료 후 Node2가 BLOCKED -> PENDING"""
        graph = await graph_store.create_graph()
        node1 = await graph_store.create_node("RESEARCH", "Node1", graph.id)
        node2 = await graph_store.create_node(
            "ANALYSIS", "Node2", graph.id, dependencies=[node1.id]
        )

        executable = await graph_store.get_executable_nodes(graph.id)
        assert [n.id for n in executable] == [node1.id]

        await graph_store.update_node_status(node1.id, NodeStatus.COMPLETED)

        assert (await graph_store.get_node(node2.id)).status == NodeStatus.PENDING
        executable = await graph_store.get_executable_nodes(graph.id)
        assert [n.id for n in executable] == [node2.id]

    @pytest.mark.asyncio
    async def test_waits_for_every_dependency(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("RESEARCH", "B", graph.id)
        c = await graph_store.create_node("ANALYSIS", "C", graph.id, dependencies=[a.id, b.id])

        await graph_store.update_node_status(a.id, "COMPLETED")
        assert (await graph_store.get_node(c.id)).status == NodeStatus.BLOCKED

        await graph_store.update_node_status(b.id, "COMPLETED")
        assert (await graph_store.get_node(c.id)).status == NodeStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_dependency_keeps_dependent_blocked(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[a.id])

        await graph_store.update_node_status(a.id, NodeStatus.FAILED, {"error": "boom"})

        assert (await graph_store.get_node(b.id)).status == NodeStatus.BLOCKED
        assert await graph_store.get_executable_nodes(graph.id) == []

    @pytest.mark.asyncio
    async def test_concurrent_completions_unblock_once(self, graph_store):
        """동시에 완료된 두 의존성이 집계를 잃지 않음"""
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("RESEARCH", "B", graph.id)
        c = await graph_store.create_node("ANALYSIS", "C", graph.id, dependencies=[a.id, b.id])

        await asyncio.gather(
            graph_store.update_node_status(a.id, NodeStatus.COMPLETED),
            graph_store.update_node_status(b.id, NodeStatus.COMPLETED),
        )

        assert (await graph_store.get_node(c.id)).status == NodeStatus.PENDING
        loaded = await graph_store.get_graph(graph.id)
        assert loaded.metadata.completed_nodes == 2
        assert loaded.metadata.progress == 67

    @pytest.mark.asyncio
    async def test_terminal_status_stamps_metadata(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.create_node("RESEARCH", "B", graph.id)

        done = await graph_store.update_node_status(
            a.id, NodeStatus.COMPLETED, {"result": {"summary": "ok"}}
        )

        assert done.status == NodeStatus.COMPLETED
        assert done.metadata["result"] == {"summary": "ok"}
        assert "completed_at" in done.metadata
        assert "last_updated" in done.metadata

    @pytest.mark.asyncio
    async def test_progress_recomputed_after_each_change(self, graph_store):
        graph = await graph_store.create_graph()
        nodes = [
            await graph_store.create_node("RESEARCH", f"N{i}", graph.id) for i in range(3)
        ]

        await graph_store.update_node_status(nodes[0].id, NodeStatus.COMPLETED)
        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.progress == 33
        assert snapshot.completed == 1
        assert snapshot.pending == 2

        await graph_store.update_node_status(nodes[1].id, NodeStatus.IN_PROGRESS)
        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.in_progress == 1
        assert snapshot.progress == 33

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)

        with pytest.raises(InvalidStatusError):
            await graph_store.update_node_status(a.id, "DONE")

    @pytest.mark.asyncio
    async def test_missing_node(self, graph_store):
        with pytest.raises(NodeNotFoundError):
            await graph_store.update_node_status(uuid4(), NodeStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_terminal_node_never_moves_backward(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.create_node("RESEARCH", "B", graph.id)
        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            await graph_store.update_node_status(a.id, NodeStatus.PENDING)


class TestGraphStatus:
    """그래프 상태 단조성 및 자가 복구 테스트"""

    @pytest.mark.asyncio
    async def test_graph_completes_when_all_nodes_complete(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[a.id])

        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)
        await graph_store.update_node_status(b.id, NodeStatus.COMPLETED)

        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.status == GraphStatus.COMPLETED
        assert snapshot.progress == 100

    @pytest.mark.asyncio
    async def test_completed_graph_rejects_new_nodes(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)

        with pytest.raises(GraphNotActiveError):
            await graph_store.create_node("RESEARCH", "late", graph.id)

        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.status == GraphStatus.COMPLETED
        assert snapshot.total == 1

    @pytest.mark.asyncio
    async def test_failed_graph_stays_failed(self, graph_store):
        """FAILED 이후 나머지 노드가 완료되어도 FAILED 유지"""
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        b = await graph_store.create_node("RESEARCH", "B", graph.id)

        await graph_store.update_node_status(a.id, NodeStatus.FAILED)
        assert (await graph_store.get_graph_status(graph.id)).status == GraphStatus.FAILED

        await graph_store.update_node_status(b.id, NodeStatus.COMPLETED)
        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.status == GraphStatus.FAILED
        assert snapshot.progress == 100

    @pytest.mark.asyncio
    async def test_stale_metadata_is_healed(self, graph_store, database):
        """저장된 집계가 실제 노드 수와 다르면 재계산 후 저장"""
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.create_node("RESEARCH", "B", graph.id)
        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)

        await database.run_transaction(
            lambda session: GraphRepository(session).update(
                graph.id,
                metadata_json={"progress": 0, "completed_nodes": 0, "total_nodes": 7},
            )
        )

        snapshot = await graph_store.get_graph_status(graph.id)
        assert snapshot.total == 2
        assert snapshot.completed == 1
        assert snapshot.progress == 50

        loaded = await graph_store.get_graph(graph.id)
        assert loaded.metadata.total_nodes == 2
        assert loaded.metadata.progress == 50

    @pytest.mark.asyncio
    async def test_cancel_graph(self, graph_store):
        graph = await graph_store.create_graph()
        await graph_store.create_node("RESEARCH", "A", graph.id)

        cancelled = await graph_store.cancel_graph(graph.id, reason="user request")

        assert cancelled.status == GraphStatus.CANCELLED
        assert cancelled.metadata.model_extra["reason"] == "user request"
        with pytest.raises(GraphNotActiveError):
            await graph_store.create_node("RESEARCH", "B", graph.id)

    @pytest.mark.asyncio
    async def test_cancel_keeps_terminal_status(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.update_node_status(a.id, NodeStatus.COMPLETED)

        result = await graph_store.cancel_graph(graph.id)

        assert result.status == GraphStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_get_current_graph(self, graph_store):
        assert await graph_store.get_current_graph() is None

        first = await graph_store.create_graph()
        await graph_store.cancel_graph(first.id)
        second = await graph_store.create_graph()

        current = await graph_store.get_current_graph()
        assert current.id == second.id

    @pytest.mark.asyncio
    async def test_delete_graph_cascades(self, graph_store):
        graph = await graph_store.create_graph()
        a = await graph_store.create_node("RESEARCH", "A", graph.id)
        await graph_store.create_node("ANALYSIS", "B", graph.id, dependencies=[a.id])

        assert await graph_store.delete_graph(graph.id) is True

        with pytest.raises(GraphNotFoundError):
            await graph_store.get_graph(graph.id)
        with pytest.raises(NodeNotFoundError):
            await graph_store.get_node(a.id)


class TestMaterializePlan:
    """ExecutionPlan 반영 테스트"""

    @pytest.mark.asyncio
    async def test_plan_becomes_nodes_and_edges(self, graph_store):
        plan = ExecutionPlan()
        plan.add("analysis", "ANALYSIS", "Compare", depends_on=["research"])
        plan.add("research", "RESEARCH", "Collect")

        graph = await graph_store.create_graph()
        created = await graph_store.materialize_plan(graph.id, plan)

        assert created["research"].status == NodeStatus.PENDING
        assert created["analysis"].status == NodeStatus.BLOCKED
        assert created["analysis"].metadata["plan_key"] == "analysis"

        loaded = await graph_store.get_graph(graph.id)
        assert len(loaded.nodes) == 2
        assert len(loaded.edges) == 1
        assert loaded.edges[0].source_id == created["research"].id
