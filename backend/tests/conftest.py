"""
AppWeaver - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
from faker import Faker
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test.db'
os.environ['LOG_FILE'] = ''
os.environ['DEPLOYMENT_WEBHOOK_URL'] = ''

from appweaver.core.database import Base
from appweaver.models import App, ChatMessage
from appweaver.modules.tool_execution.broadcaster import ProgressBroadcaster
from appweaver.modules.tool_execution.coordinator import CoordinatorAPI
from appweaver.modules.tool_execution.execution_log import DurableExecutionLog
from appweaver.modules.tool_execution.records import ToolCallRequest, utc_now_iso
from appweaver.modules.tool_execution.state_store import SharedStateStore
from tests.mocks.mock_redis import MockRedis

fake = Faker()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """File-backed SQLite database per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis() -> MockRedis:
    return MockRedis()


@pytest.fixture
def state_store(mock_redis) -> SharedStateStore:
    return SharedStateStore(mock_redis, default_ttl=300)


@pytest.fixture
def execution_log(session_factory) -> DurableExecutionLog:
    return DurableExecutionLog(session_factory, max_retries=10, base_delay=0, max_delay=0)


@pytest.fixture
def broadcaster(mock_redis) -> ProgressBroadcaster:
    return ProgressBroadcaster(mock_redis)


@pytest.fixture
def deploy_trigger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def api(state_store, execution_log, broadcaster, deploy_trigger) -> CoordinatorAPI:
    return CoordinatorAPI(state_store, execution_log, broadcaster, deploy_trigger)


@pytest.fixture
async def test_app(db_session) -> App:
    """Create a test app"""
    app = App(name=fake.company())
    db_session.add(app)
    await db_session.commit()
    await db_session.refresh(app)
    return app


@pytest.fixture
async def test_message(db_session, test_app) -> ChatMessage:
    """Assistant message with a plain text entry already in its flow"""
    message = ChatMessage(
        app_id=test_app.id,
        content=fake.sentence(),
        conversation_flow=[{"type": "message", "content": "Let me build that for you."}],
    )
    db_session.add(message)
    await db_session.commit()
    await db_session.refresh(message)
    return message


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose execution log reads the per-test database"""
    from appweaver.main import app
    from appweaver.api.v1.endpoints.tool_batches import get_execution_log

    app.dependency_overrides[get_execution_log] = lambda: DurableExecutionLog(session_factory)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


def write_call(path: str, content: str = "export default {}", call_id: str = None) -> dict:
    """Raw tool call in the flat shape"""
    return {
        "id": call_id or f"toolu_{fake.uuid4()[:8]}",
        "name": "os-write",
        "arguments": {"file_path": path, "content": content},
    }


def write_requests(count: int):
    """Parsed os-write requests for a batch of ``count`` tools"""
    return [ToolCallRequest(id=f"toolu_{i}", name="os-write") for i in range(count)]


async def start_batch(api, message, execution_id: str, count: int):
    """Cache state plus execution-log entry, as BatchSession creates them"""
    await api.state_store.init_execution_state(execution_id, count, message.id, message.app_id, utc_now_iso())
    await api.execution_log.append_batch(message.id, execution_id, write_requests(count))
