"""Pytest configuration and fixtures for receiving tests.

Every test gets a fresh in-memory SQLite database (aiosqlite), the
collaborator fakes below, and helpers for seeding shipments.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from inbound.auth.deps import Principal
from inbound.auth.jwt import create_access_token
from inbound.auth.permissions import ROLE_DEFAULTS
from inbound.database import Base, get_db
from inbound.main import app
from inbound.middleware.exceptions import NonFatalSideEffectFailure
from inbound.models import Account, Location, ShipmentPhoto
from inbound.models.shipment import Shipment
from inbound.services.alerts import get_alert_queue
from inbound.services.collaborators import (
    CodeGenerationError,
    DatabaseLocationResolver,
    DatabaseManifestAllocationService,
    DatabasePhotoCounter,
    SequenceCodeGenerator,
)
from inbound.services.shipment_actions import create_shipment
from inbound.services.workflow import StageWorkflowEngine

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"
WAREHOUSE_ID = "wh-main"


# ── Collaborator fakes ───────────────────────────────────────────

class RecordingAlertQueue:
    """Keeps every enqueued alert in memory."""

    def __init__(self):
        self.alerts: list[tuple[str, str, dict]] = []

    async def enqueue(self, alert_type: str, tenant_id: str, payload: dict) -> None:
        self.alerts.append((alert_type, tenant_id, payload))

    def types(self) -> list[str]:
        return [a[0] for a in self.alerts]


class FailingAlertQueue:
    async def enqueue(self, alert_type: str, tenant_id: str, payload: dict) -> None:
        raise NonFatalSideEffectFailure(f"Queue {alert_type} alert", "connection refused")


class FailingCodeGenerator:
    """Delegates to the sequence generator, failing on the Nth call."""

    def __init__(self, inner, fail_on_call: int):
        self.inner = inner
        self.fail_on_call = fail_on_call
        self.calls = 0

    async def generate_unique_code(self, tenant_id: str, entity: str = "inventory_unit") -> str:
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise CodeGenerationError("code service unavailable")
        return await self.inner.generate_unique_code(tenant_id, entity)


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's implicit transactions break SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


# ── Principals & tokens ──────────────────────────────────────────

def make_principal(role: str = "administrator", tenant_id: str = TENANT_ID, user_id: str = "user-admin") -> Principal:
    return Principal(
        user_id=user_id,
        tenant_id=tenant_id,
        role=role,
        full_name=f"Test {role.title()}",
        permissions=frozenset(ROLE_DEFAULTS[role]),
    )


@pytest.fixture
def admin() -> Principal:
    return make_principal("administrator")


@pytest.fixture
def operator() -> Principal:
    return make_principal("operator", user_id="user-operator")


def token_for(principal: Principal) -> str:
    return create_access_token(
        user_id=principal.user_id,
        role=principal.role,
        permissions=sorted(principal.permissions),
        tenant_id=principal.tenant_id,
        name=principal.full_name,
    )


@pytest.fixture
def auth_headers(admin: Principal) -> dict:
    return {"Authorization": f"Bearer {token_for(admin)}"}


@pytest.fixture
def operator_headers(operator: Principal) -> dict:
    return {"Authorization": f"Bearer {token_for(operator)}"}


# ── Seed data ────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def account(db_session: AsyncSession) -> Account:
    acct = Account(tenant_id=TENANT_ID, name="Acme Furniture")
    db_session.add(acct)
    await db_session.commit()
    return acct


@pytest_asyncio.fixture
async def unidentified_account(db_session: AsyncSession) -> Account:
    acct = Account(tenant_id=TENANT_ID, name="UNIDENTIFIED SHIPMENT", is_unidentified=True)
    db_session.add(acct)
    await db_session.commit()
    return acct


@pytest_asyncio.fixture
async def receiving_location(db_session: AsyncSession) -> Location:
    loc = Location(
        tenant_id=TENANT_ID,
        warehouse_id=WAREHOUSE_ID,
        code="RECV-01",
        is_receiving_default=True,
    )
    db_session.add(loc)
    await db_session.commit()
    return loc


async def add_photos(db: AsyncSession, shipment: Shipment, paperwork: int = 1, condition: int = 1) -> None:
    for i in range(paperwork):
        db.add(ShipmentPhoto(
            tenant_id=shipment.tenant_id, shipment_id=shipment.id,
            category="paperwork", storage_key=f"{shipment.id}/paperwork-{i}.jpg",
        ))
    for i in range(condition):
        db.add(ShipmentPhoto(
            tenant_id=shipment.tenant_id, shipment_id=shipment.id,
            category="condition", storage_key=f"{shipment.id}/condition-{i}.jpg",
        ))
    await db.commit()


@pytest_asyncio.fixture
async def shipment_factory(db_session: AsyncSession, admin: Principal):
    """Create a shipment, optionally parked at a later stage."""

    async def _make(stage: str = "draft", **fields) -> Shipment:
        shipment = await create_shipment(db_session, admin, WAREHOUSE_ID, **fields)
        if stage != "draft":
            shipment.stage = stage
        await db_session.commit()
        return shipment

    return _make


# ── Workflow engine ──────────────────────────────────────────────

@pytest.fixture
def alerts() -> RecordingAlertQueue:
    return RecordingAlertQueue()


@pytest.fixture
def engine_factory(db_session: AsyncSession, admin: Principal, alerts: RecordingAlertQueue):
    """Build a workflow engine over the test session; override any collaborator."""

    def _make(principal: Principal | None = None, **overrides) -> StageWorkflowEngine:
        collaborators = {
            "codes": SequenceCodeGenerator(db_session),
            "locations": DatabaseLocationResolver(db_session),
            "photos": DatabasePhotoCounter(db_session),
            "alerts": alerts,
            "allocations": DatabaseManifestAllocationService(db_session),
        }
        collaborators.update(overrides)
        return StageWorkflowEngine(db_session, principal or admin, **collaborators)

    return _make


@pytest.fixture
def workflow(engine_factory) -> StageWorkflowEngine:
    return engine_factory()


# ── HTTP client ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(db_session: AsyncSession, alerts: RecordingAlertQueue) -> AsyncGenerator[AsyncClient, None]:
    """Test client sharing the test session and the recording alert queue."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    async def override_get_alert_queue():
        return alerts

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_alert_queue] = override_get_alert_queue

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ── Helper fixtures ──────────────────────────────────────────────

@pytest.fixture
def tenant_id() -> str:
    return TENANT_ID


@pytest.fixture
def principal_factory():
    return make_principal


@pytest.fixture
def photos(db_session: AsyncSession):
    """Attach paperwork / condition photos to a shipment."""

    async def _add(shipment: Shipment, paperwork: int = 1, condition: int = 1) -> None:
        await add_photos(db_session, shipment, paperwork, condition)

    return _add


@pytest.fixture
def failing_codes(db_session: AsyncSession):
    """Code generator that fails on the given call number."""

    def _make(fail_on_call: int) -> FailingCodeGenerator:
        return FailingCodeGenerator(SequenceCodeGenerator(db_session), fail_on_call)

    return _make


@pytest.fixture
def failing_alerts() -> FailingAlertQueue:
    return FailingAlertQueue()
