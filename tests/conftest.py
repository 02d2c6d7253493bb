"""
Pytest configuration and fixtures for the quality hold service tests.
"""

import os
import tempfile
import uuid

# Settings are read from the environment, so set them before the app is imported.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("POSTGRES_URL", "sqlite+aiosqlite://")
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"
os.environ["AUTO_SEED"] = "false"
os.environ.setdefault("QUALITY_MEDIA_PATH", tempfile.mkdtemp(prefix="quality-media-"))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from quality_hold.api.main import app
from quality_hold.core.deps import get_media_storage
from quality_hold.core.security import Actor, create_access_token
from quality_hold.core.storage import LocalMediaStorage
from quality_hold.db.base import Base
from quality_hold.db.models import Shipment, Supplier
from quality_hold.db.session import get_async_session


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite://"

BRANCH_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_BRANCH_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


@pytest.fixture
async def engine():
    """Fresh in-memory database per test; one shared connection keeps the data alive."""
    engine = create_async_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_maker):
    """Session used by service tests and by fixtures that seed rows."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def media_storage(tmp_path):
    return LocalMediaStorage(tmp_path / "media", "/uploads/quality")


@pytest.fixture
async def client(session_maker, media_storage):
    """
    HTTP client against the app with the database and media storage overridden.
    """
    async def override_get_async_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_media_storage] = lambda: media_storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
async def seed_supplier(db_session):
    """Create a test supplier."""
    supplier = Supplier(code="SUP-001", name="Anatolia Nuts Co.")
    db_session.add(supplier)
    await db_session.commit()
    return supplier


@pytest.fixture
async def seed_shipment(db_session, seed_supplier):
    """Create a received shipment that is not on hold."""
    shipment = Shipment(sn="SN-2024-0001", supplier_id=seed_supplier.id, status="arrived", hold_status=False)
    db_session.add(shipment)
    await db_session.commit()
    return shipment


@pytest.fixture
def operator():
    """Branch operator: may report incidents, may not review them."""
    return Actor(user_id="u-operator", role="warehouse", branch_ids=frozenset({BRANCH_ID}))


@pytest.fixture
def supervisor():
    return Actor(user_id="u-supervisor", role="supervisor", branch_ids=frozenset({BRANCH_ID}))


@pytest.fixture
def hq_admin():
    return Actor(user_id="u-admin", role="admin")


def _headers(actor: Actor) -> dict:
    token = create_access_token(actor.user_id, actor.role, [str(b) for b in actor.branch_ids])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def operator_headers(operator):
    return _headers(operator)


@pytest.fixture
def supervisor_headers(supervisor):
    return _headers(supervisor)


@pytest.fixture
def admin_headers(hq_admin):
    return _headers(hq_admin)


@pytest.fixture
async def draft_incident(db_session, seed_shipment, operator):
    """A draft incident (broken + mold) on the seeded shipment; the shipment is on hold."""
    from quality_hold.schemas.quality import IncidentCreate
    from quality_hold.services.incident_lifecycle import IncidentLifecycleManager

    payload = IncidentCreate(
        shipment_id=seed_shipment.id,
        issue_types=["broken", "mold"],
        description_short="Broken kernels near the door",
        branch_id=BRANCH_ID,
    )
    return await IncidentLifecycleManager(db_session).create(payload, operator)
