"""Shared pytest fixtures for the HR workflow engine test suite.

Provides:
- In-memory async SQLite database per test (no PostgreSQL needed)
- Session factory, execution store, engine and scheduler wired to it
- A controllable clock and a recording mail channel
- Workflow / profile / contract seed helpers
- FastAPI test client (httpx.AsyncClient)
"""

import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("MAIL_ENABLED", "false")

from actions.registry import ActionRegistry  # noqa: E402
from db.base import Base  # noqa: E402
from db.session import create_session_factory  # noqa: E402
from notifications.channels import BaseChannel, DeliveryResult, OutboundMessage  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402
from workflow.scheduler import WorkflowScheduler  # noqa: E402
from workflow.store import ExecutionStore  # noqa: E402

START_TIME = datetime(2026, 1, 5, 8, 30, 0)


class FixedClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel(BaseChannel):
    """Mail channel that keeps messages in memory; can be told to fail."""

    name = "recording"

    def __init__(self):
        self.sent: list[OutboundMessage] = []
        self.failures_left = 0

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        if self.failures_left > 0:
            self.failures_left -= 1
            return DeliveryResult(success=False, recipients=message.recipients, error="SMTP unavailable")
        self.sent.append(message)
        return DeliveryResult(success=True, recipients=message.recipients, message="recorded")


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def mailer() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def action_registry() -> ActionRegistry:
    """A registry per test so custom test actions never leak."""
    return ActionRegistry()


@pytest.fixture
def store(session_factory) -> ExecutionStore:
    return ExecutionStore(session_factory)


@pytest.fixture
def engine(store, action_registry, clock, mailer) -> WorkflowEngine:
    return WorkflowEngine(store, action_registry=action_registry, clock=clock, mailer=mailer)


@pytest.fixture
def scheduler(store, clock) -> WorkflowScheduler:
    return WorkflowScheduler(store, clock=clock)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_workflow(session_factory):
    """Insert a workflow and return it."""
    from db.models.workflow import Workflow

    async def _make(definition: dict, name: str = "Test Workflow", **fields) -> Workflow:
        workflow = Workflow(name=name, description="", definition=definition, **fields)
        async with session_factory() as session:
            session.add(workflow)
            await session.commit()
        return workflow

    return _make


@pytest.fixture
def make_profile(session_factory):
    from db.models.profile import Profile

    async def _make(full_name: str, email: str, **fields) -> Profile:
        profile = Profile(full_name=full_name, email=email, **fields)
        async with session_factory() as session:
            session.add(profile)
            await session.commit()
        return profile

    return _make


@pytest.fixture
def make_contract(session_factory):
    from db.models.contract import Contract

    async def _make(employee_id: str, end_date: datetime, status: str = "active", title: str = "Employment contract"):
        contract = Contract(employee_id=employee_id, end_date=end_date, status=status, title=title)
        async with session_factory() as session:
            session.add(contract)
            await session.commit()
        return contract

    return _make


def linear_definition(*nodes: dict, variables: dict = None) -> dict:
    """Chain nodes in the given order with default edges."""
    chained = []
    for index, node in enumerate(nodes):
        node = dict(node)
        if index + 1 < len(nodes) and node.get("type") != "condition":
            node.setdefault("next_node_id", nodes[index + 1]["id"])
        chained.append(node)
    return {"nodes": chained, "variables": variables or {}}


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory):
    """FastAPI app whose dependencies use the test database."""
    from app.dependencies import get_session_factory
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
