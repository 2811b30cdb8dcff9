import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, MockTransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Test settings must be in place before the app (and its limiter) is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("RECONCILE_SECRET", "test-reconcile-secret")
os.environ.setdefault("AUTO_REFUND_ORPHANS", "true")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("SHIPBUBBLE_API_KEY", "sb_test_key")
os.environ.setdefault("SHIPBUBBLE_ORIGIN_NAME", "Test Store")
os.environ.setdefault("SHIPBUBBLE_ORIGIN_EMAIL", "store@example.com")
os.environ.setdefault("SHIPBUBBLE_ORIGIN_PHONE", "+2348000000000")
os.environ.setdefault("SHIPBUBBLE_ORIGIN_STREET", "1 Admiralty Way")
os.environ.setdefault("SHIPBUBBLE_ORIGIN_CITY", "Lekki")
os.environ.setdefault("SHIPBUBBLE_ORIGIN_STATE", "Lagos")

from libs.common.config import get_settings

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
settings = get_settings()

from libs.db.base import Base
from libs.db.session import get_async_db
from services.checkout_service import models as _checkout_models  # noqa: F401
from services.checkout_service.app.main import app
from services.checkout_service.fx import FxRateProvider, get_fx_provider
from services.checkout_service.paystack_client import get_paystack_client
from services.checkout_service.shipbubble_client import (
    ShipbubbleClient,
    get_shipbubble_client,
)
from tests.stubs import FakePaystack, fx_handler, shipbubble_handler


@pytest_asyncio.fixture
async def test_engine():
    """
    In-memory SQLite engine, created fresh for every test.
    StaticPool keeps the single in-memory connection shared between sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def paystack() -> FakePaystack:
    return FakePaystack(secret_key=settings.PAYSTACK_SECRET_KEY)


@pytest.fixture
def shipbubble_routes() -> dict:
    """Per-test overrides for the Shipbubble mock, keyed by (method, path)."""
    return {}


@pytest.fixture
def shipbubble(shipbubble_routes) -> ShipbubbleClient:
    async def _no_sleep(_seconds):
        return None

    return ShipbubbleClient(
        api_key="sb_test_key",
        base_url="https://shipbubble.test/v1",
        transport=MockTransport(shipbubble_handler(shipbubble_routes)),
        sleep=_no_sleep,
    )


@pytest.fixture
def fx_provider() -> FxRateProvider:
    return FxRateProvider(
        base_url="https://fx.test/v6/latest",
        transport=MockTransport(fx_handler),
    )


@pytest_asyncio.fixture
async def client(db_session, paystack, shipbubble, fx_provider) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient with the app and overridden DB and provider dependencies.
    """

    async def _db():
        yield db_session

    app.dependency_overrides[get_async_db] = _db
    app.dependency_overrides[get_paystack_client] = lambda: paystack
    app.dependency_overrides[get_shipbubble_client] = lambda: shipbubble
    app.dependency_overrides[get_fx_provider] = lambda: fx_provider

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Reconcile-Secret": settings.RECONCILE_SECRET}
