"""
Node and edge repositories for database operations.
"""

from typing import Dict, List, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository, IdLike, as_uuid
from ..models import NodeModel, EdgeModel


class NodeRepository(BaseRepository[NodeModel]):
    """Repository for Node operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, NodeModel)

    async def get_statuses(self, ids: Iterable[IdLike]) -> Dict:
        """Map node id -> current status for the given ids."""
        id_list = [as_uuid(i) for i in ids]
        if not id_list:
            return {}
        result = await self.session.execute(
            select(NodeModel.id, NodeModel.status).where(NodeModel.id.in_(id_list))
        )
        return dict(result.all())

    async def get_by_status(self, graph_id: IdLike, status: str) -> List[NodeModel]:
        result = await self.session.execute(
            select(NodeModel)
            .where(NodeModel.graph_id == as_uuid(graph_id))
            .where(NodeModel.status == status)
            .order_by(NodeModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


class EdgeRepository(BaseRepository[EdgeModel]):
    """Repository for Edge operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EdgeModel)

    async def get_outgoing(
        self,
        source_id: IdLike,
        edge_type: Optional[str] = None,
    ) -> List[EdgeModel]:
        query = select(EdgeModel).where(EdgeModel.source_id == as_uuid(source_id))
        if edge_type:
            query = query.where(EdgeModel.type == edge_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_incoming(
        self,
        target_ids: Iterable[IdLike],
        edge_type: Optional[str] = None,
    ) -> List[EdgeModel]:
        id_list = [as_uuid(i) for i in target_ids]
        if not id_list:
            return []
        query = select(EdgeModel).where(EdgeModel.target_id.in_(id_list))
        if edge_type:
            query = query.where(EdgeModel.type == edge_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_by_graph(
        self,
        graph_id: IdLike,
        edge_type: Optional[str] = None,
    ) -> List[EdgeModel]:
        query = select(EdgeModel).where(EdgeModel.graph_id == as_uuid(graph_id))
        if edge_type:
            query = query.where(EdgeModel.type == edge_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())
