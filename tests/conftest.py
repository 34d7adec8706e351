"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and outbound HTTP.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from portalscore.database import Base
import portalscore.models  # noqa: F401  registers all tables
from portalscore.models.client import Client
from portalscore.models.recommendation import Recommendation


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    """In-memory SQLite database for tests."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_factory(engine):
    """
    Stand-in for portalscore.database.async_session_factory bound to the
    test engine, so batch and detached code paths hit the same database.
    """
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    def _factory():
        return maker()

    with patch("portalscore.database.async_session_factory", side_effect=_factory):
        yield maker


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("portalscore.utils.redis.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def mock_alert():
    """Captures operational alerts instead of sending them."""
    with patch("portalscore.services.batch_recalculate.send_alert", new_callable=AsyncMock) as mock:
        yield mock


@pytest.fixture
async def client(db):
    client = Client(
        id=uuid.uuid4(),
        name="Acme Dental",
        status="active",
        plan_type="seo",
        monthly_spend=2500.0,
    )
    db.add(client)
    await db.commit()
    return client


@pytest.fixture
def make_recommendation(db, client):
    """Factory for committed recommendations on the shared client."""
    async def _make(**overrides) -> Recommendation:
        fields = {
            "id": uuid.uuid4(),
            "client_id": client.id,
            "status": "sent",
            "sent_at": NOW,
            "predicted_monthly": 1000.0,
            "predicted_onetime": 500.0,
            "created_by": "rep@agency.test",
        }
        fields.update(overrides)
        rec = Recommendation(**fields)
        db.add(rec)
        await db.commit()
        return rec

    return _make


