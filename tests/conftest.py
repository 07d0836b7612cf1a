import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-suite-0123456789")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("REPLICATE_API_TOKEN", "")

import uuid

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.main import app
from app.api.deps import get_current_user
from app.core.auth import User
from app.core.database import Base, get_async_session
from app.services.image_poller import PollPolicy
from app.services.workspaces import WorkspaceRegistry

# Tiny timings so poller tests run in milliseconds
FAST_POLICY = PollPolicy(
    initial_delay=0.01,
    interval=0.01,
    max_attempts=15,
    deadline=1.0,
    sweep_interval=0.01,
    probe_timeout=0.05,
)


async def always_ok(url, timeout):
    return True


@pytest.fixture
async def engine(tmp_path):
    # A file database gives every session its own connection, like the real pool does
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", connect_args={"timeout": 15})

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def make_user(session_factory, email=None) -> User:
    async with session_factory() as session:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            hashed_password="not-a-real-hash",
            is_active=True,
            is_verified=True,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
async def user(session_factory):
    return await make_user(session_factory, "saver@example.com")


@pytest.fixture
async def workspaces(session_factory):
    registry = WorkspaceRegistry(session_factory=session_factory, policy=FAST_POLICY, probe=always_ok)
    yield registry
    await registry.close_all()


@pytest.fixture
async def client(session_factory, user, workspaces):
    async def _session():
        async with session_factory() as session:
            yield session

    previous_factory = app.state.session_factory
    previous_workspaces = app.state.workspaces
    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[get_current_user] = lambda: user
    app.state.session_factory = session_factory
    app.state.workspaces = workspaces

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
    app.state.session_factory = previous_factory
    app.state.workspaces = previous_workspaces


@pytest.fixture
def fast_policy():
    return PollPolicy(**vars(FAST_POLICY))


@pytest.fixture
async def other_user(session_factory):
    return await make_user(session_factory, "stranger@example.com")
