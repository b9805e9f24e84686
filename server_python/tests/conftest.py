"""
Pytest Configuration and Fixtures

테스트 전역 설정 및 공유 fixtures입니다.
"""

import pytest
import pytest_asyncio

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from config import AgentConfig
from database import Database
from database.repositories import UserRepository
from models.user import User
from task_graph import GraphStore, NodeExecutor, NodeHandlerRegistry
from agents import AgentOrchestrator, TaskManager


@pytest_asyncio.fixture
async def database(tmp_path):
    """테스트마다 새로 만드는 파일 기반 SQLite 데이터베이스"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    await db.connect()
    await db.create_tables()
    yield db
    await db.drop_tables()
    await db.disconnect()


@pytest.fixture
def fast_config() -> AgentConfig:
    """테스트용 짧은 대기 시간 설정"""
    return AgentConfig(
        max_retries=3,
        node_retry_delay=0.01,
        timeout_duration=1.0,
        concurrent_tasks_limit=5,
        check_interval=0.01,
        max_rounds=20,
    )


@pytest.fixture
def graph_store(database) -> GraphStore:
    return GraphStore(database)


@pytest.fixture
def registry() -> NodeHandlerRegistry:
    return NodeHandlerRegistry()


@pytest.fixture
def node_executor(graph_store, registry, fast_config) -> NodeExecutor:
    return NodeExecutor(graph_store, registry, fast_config)


@pytest.fixture
def task_manager(database, graph_store) -> TaskManager:
    return TaskManager(database, graph_store)


@pytest.fixture
def orchestrator(graph_store, task_manager, node_executor, fast_config) -> AgentOrchestrator:
    return AgentOrchestrator(graph_store, task_manager, node_executor, fast_config)


@pytest_asyncio.fixture
async def user(database) -> User:
    """태스크 소유자"""
    record = await database.run_transaction(
        lambda session: UserRepository(session).create_user("tester")
    )
    return User.from_record(record)


@pytest_asyncio.fixture
async def task(task_manager, user):
    """PLANNING 상태의 샘플 태스크"""
    return await task_manager.create_task(
        title="Compare consensus mechanisms",
        description="Proof of work vs proof of stake",
        created_by=user.id,
        chat_id="chat-1",
        priority=1,
    )
