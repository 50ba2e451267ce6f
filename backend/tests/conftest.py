"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- Environment overrides applied before any app import
- In-memory fakes for the engine's collaborators (strategy store, work
  items, data source, notifier, integration adapters)
- An engine factory running against the in-memory run recorder
- A file-backed async SQLite database per test
- FastAPI test client (httpx.AsyncClient over ASGITransport)
"""

import asyncio
import os
from dataclasses import replace
from typing import Any, AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
# Fixed Fernet key (32 bytes, urlsafe base64) for stored integration credentials
os.environ.setdefault("ENCRYPTION_KEY", "dGVzdC1lbmNyeXB0aW9uLWtleS0zMi1ieXRlcy0hISE=")

from core.constants import StrategyTarget, UpdateType  # noqa: E402
from core.exceptions import AdapterError, NotFoundError  # noqa: E402
from db.base import Base  # noqa: E402
from db.database import create_db_engine, create_session_factory  # noqa: E402
from integrations.base import (  # noqa: E402
    AdapterProvider,
    IntegrationAdapter,
    IntegrationConnection,
    IntegrationResult,
)
from workflow.context import EngineSettings, RunServices  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402
from workflow.interfaces import (  # noqa: E402
    AuditContext,
    DataQuery,
    DataSource,
    Notifier,
    StrategyStore,
    StrategyTargetState,
    WorkItemDraft,
    WorkItemStore,
)
from workflow.recorder import InMemoryRunRecorder  # noqa: E402
from workflow.run_lock import RunLock  # noqa: E402
from workflow.validation import load_definition  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStrategyStore(StrategyStore):
    def __init__(self):
        self.targets: dict[tuple, StrategyTargetState] = {}
        self.writes: list[tuple] = []

    def add(self, target_id: str, current=None, target=None, target_type=StrategyTarget.KEY_RESULT):
        self.targets[(target_type, target_id)] = StrategyTargetState(
            target_type=target_type,
            target_id=target_id,
            title=f"Target {target_id}",
            current_value=current,
            target_value=target,
        )

    def value(self, target_id: str, target_type=StrategyTarget.KEY_RESULT):
        return self.targets[(target_type, target_id)].current_value

    async def get_target(self, target_type, target_id):
        return self.targets.get((target_type, target_id))

    async def write_value(self, state, new_value, update_type: UpdateType, audit: AuditContext):
        self.targets[(state.target_type, state.target_id)] = replace(state, current_value=new_value)
        self.writes.append((state.target_id, new_value, update_type, audit))


class FakeWorkItemStore(WorkItemStore):
    def __init__(self):
        self.items: list[WorkItemDraft] = []

    async def create_work_item(self, draft: WorkItemDraft) -> str:
        self.items.append(draft)
        return f"wi-{len(self.items)}"


class FakeDataSource(DataSource):
    """Answers queries from a table → result mapping (or a callable)."""

    def __init__(self):
        self.results: dict[str, Any] = {}
        self.queries: list[DataQuery] = []

    async def query(self, query: DataQuery) -> Any:
        self.queries.append(query)
        result = self.results.get(query.source_table, 0)
        return result(query) if callable(result) else result


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: Optional[str] = None
        self.delay: float = 0

    async def send(self, channel, recipient, message, title=None, context=None) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise AdapterError(self.fail_with)
        self.sent.append({
            "channel": channel, "recipient": recipient, "message": message, "title": title,
        })


class FakeAdapter(IntegrationAdapter):
    platform_type = "fake"
    display_name = "Fake"
    actions = ("count_customers", "get_customers", "slow")

    def __init__(self, connection: IntegrationConnection, customers: list, delay: float = 0):
        super().__init__(connection)
        self.customers = customers
        self.delay = delay
        self.calls: list[tuple] = []

    async def invoke(self, action, parameters) -> IntegrationResult:
        self.ensure_action(action)
        self.calls.append((action, parameters))
        if action == "slow":
            await asyncio.sleep(self.delay)
            return IntegrationResult(count=0)
        if action == "count_customers":
            return IntegrationResult(count=len(self.customers))
        return IntegrationResult(count=len(self.customers), records=list(self.customers))


class FakeAdapterProvider(AdapterProvider):
    def __init__(self):
        self.adapters: dict[str, FakeAdapter] = {}

    def add(self, integration_id: str, customers: list, delay: float = 0) -> FakeAdapter:
        connection = IntegrationConnection(id=integration_id, name="Fake ISP", platform_type="fake")
        adapter = FakeAdapter(connection, customers, delay=delay)
        self.adapters[integration_id] = adapter
        return adapter

    async def get_adapter(self, integration_id: str) -> IntegrationAdapter:
        if integration_id not in self.adapters:
            raise NotFoundError(f"Integration {integration_id} not found")
        return self.adapters[integration_id]


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def strategy_store() -> FakeStrategyStore:
    return FakeStrategyStore()


@pytest.fixture
def work_items() -> FakeWorkItemStore:
    return FakeWorkItemStore()


@pytest.fixture
def data_source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def adapters() -> FakeAdapterProvider:
    return FakeAdapterProvider()


@pytest.fixture
def services(strategy_store, work_items, data_source, notifier, adapters) -> RunServices:
    return RunServices(
        strategy_store=strategy_store,
        work_item_store=work_items,
        data_source=data_source,
        integrations=adapters,
        notifier=notifier,
    )


@pytest.fixture
def make_engine(services) -> Callable[..., WorkflowEngine]:
    """Build an engine over the fakes; keyword args override EngineSettings."""

    def factory(**settings) -> WorkflowEngine:
        return WorkflowEngine(
            recorder=InMemoryRunRecorder(),
            services=services,
            settings=EngineSettings(**settings),
            run_lock=RunLock(),
        )

    return factory


@pytest.fixture
def engine(make_engine) -> WorkflowEngine:
    return make_engine()


def build_definition(steps: list, **fields):
    raw = {"id": "wf-1", "name": "Test Workflow", "triggerType": "manual", "steps": steps}
    raw.update(fields)
    return load_definition(raw)


@pytest.fixture
def make_definition():
    return build_definition


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Async engine over a throwaway SQLite file with all tables created."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A session that commits at the end of the test."""
    async with session_factory() as session:
        yield session
        await session.commit()


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def dispatcher(session_factory, notifier):
    """TriggerDispatcher over the test database, installed as the app singleton."""
    from services.runtime import build_run_services
    from triggers.dispatcher import TriggerDispatcher, set_trigger_dispatcher
    from workflow.recorder import SqlRunRecorder

    engine = WorkflowEngine(
        recorder=SqlRunRecorder(session_factory),
        services=build_run_services(session_factory, notifier=notifier),
        settings=EngineSettings(run_timeout_seconds=10),
        run_lock=RunLock(),
    )
    dispatcher = TriggerDispatcher(engine, session_factory)
    set_trigger_dispatcher(dispatcher)

    yield dispatcher

    await engine.shutdown()
    set_trigger_dispatcher(None)


@pytest_asyncio.fixture
async def app(db_engine, session_factory, dispatcher):
    """FastAPI app wired to the test database."""
    import db.database as db_mod
    from app.dependencies import get_db
    from app.main import create_app

    original_engine = db_mod.engine
    db_mod.engine = db_engine

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app = create_app()
    test_app.dependency_overrides[get_db] = override_get_db

    yield test_app

    db_mod.engine = original_engine


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
