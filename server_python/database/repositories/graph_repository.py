"""
Graph repository for database operations.
"""

from typing import Optional, List, Dict

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository, IdLike, as_uuid
from ..models import GraphModel, NodeModel, EdgeModel


class GraphRepository(BaseRepository[GraphModel]):
    """Repository for Graph operations, including the nodes and edges it owns."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, GraphModel)

    async def list_nodes(self, graph_id: IdLike) -> List[NodeModel]:
        """Get all nodes of a graph in creation order."""
        result = await self.session.execute(
            select(NodeModel)
            .where(NodeModel.graph_id == as_uuid(graph_id))
            .order_by(NodeModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_edges(self, graph_id: IdLike) -> List[EdgeModel]:
        """Get all edges of a graph."""
        result = await self.session.execute(
            select(EdgeModel)
            .where(EdgeModel.graph_id == as_uuid(graph_id))
            .order_by(EdgeModel.created_at.asc())
        )
        return list(result.scalars().all())

    async def count_nodes_by_status(self, graph_id: IdLike) -> Dict[str, int]:
        """Get node counts of a graph grouped by status."""
        result = await self.session.execute(
            select(NodeModel.status, func.count(NodeModel.id))
            .where(NodeModel.graph_id == as_uuid(graph_id))
            .group_by(NodeModel.status)
        )
        return dict(result.all())

    async def get_latest_active(self) -> Optional[GraphModel]:
        """Get the most recently created ACTIVE graph."""
        result = await self.session.execute(
            select(GraphModel)
            .where(GraphModel.status == "ACTIVE")
            .order_by(GraphModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def delete_cascade(self, graph_id: IdLike) -> bool:
        """Delete a graph with its edges and nodes, in dependency order."""
        gid = as_uuid(graph_id)
        await self.session.execute(delete(EdgeModel).where(EdgeModel.graph_id == gid))
        await self.session.execute(delete(NodeModel).where(NodeModel.graph_id == gid))
        result = await self.session.execute(delete(GraphModel).where(GraphModel.id == gid))
        await self.session.flush()
        return result.rowcount > 0
