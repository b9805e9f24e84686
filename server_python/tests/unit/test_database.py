"""
Database Unit Tests

트랜잭션 단위, 충돌 감지, payload codec 테스트입니다.
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from database import (
    IdentityCodec,
    PayloadCodec,
    get_payload_codec,
    is_conflict_error,
    set_payload_codec,
)
from database.repositories import UserRepository


class DriverError(Exception):
    def __init__(self, sqlstate: str):
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate


class ReverseCodec(PayloadCodec):
    def encode(self, value: str) -> str:
        return value[::-1]

    def decode(self, value: str) -> str:
        return value[::-1]


class TestPayloadCodec:
    """payload codec 테스트"""

    @pytest.fixture(autouse=True)
    def restore_codec(self):
        yield
        set_payload_codec(None)

    def test_default_is_identity(self):
        assert isinstance(get_payload_codec(), IdentityCodec)

    @pytest.mark.asyncio
    async def test_payload_is_encoded_at_rest(self, graph_store, database):
        """저장 시 인코딩, 조회 시 디코딩"""
        set_payload_codec(ReverseCodec())
        graph = await graph_store.create_graph()
        node = await graph_store.create_node("RESEARCH", "secret plan", graph.id)

        assert (await graph_store.get_node(node.id)).payload == "secret plan"

        async with database.session() as session:
            raw = (await session.execute(
                text("SELECT payload FROM nodes")
            )).scalar_one()
        assert raw == "nalp terces"


class TestTransactions:
    """트랜잭션 테스트"""

    @pytest.mark.asyncio
    async def test_failed_work_rolls_back(self, database):
        async def work(session):
            await UserRepository(session).create_user("ghost")
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            await database.run_transaction(work)

        count = await database.run_transaction(lambda s: UserRepository(s).count())
        assert count == 0

    @pytest.mark.asyncio
    async def test_conflicts_are_retried(self, database):
        attempts = 0

        async def work(session):
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise OperationalError("BEGIN", {}, Exception("database is locked"))
            return "done"

        assert await database.run_transaction(work) == "done"
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_non_conflict_errors_propagate(self, database):
        async def work(session):
            raise OperationalError("SELECT", {}, Exception("no such table: nope"))

        with pytest.raises(OperationalError):
            await database.run_transaction(work)


class TestConflictDetection:
    """is_conflict_error 테스트"""

    def test_postgres_serialization_failure(self):
        orig = DriverError("40001")
        error = OperationalError("UPDATE", {}, orig)

        assert is_conflict_error(error) is True

    def test_other_errors(self):
        orig = DriverError("23505")
        error = OperationalError("INSERT", {}, orig)

        assert is_conflict_error(error) is False
