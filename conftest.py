import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Load .env.test if present, then fall back to settings that keep the suite
# self-contained (SQLite, no Redis, no outbound notifications).
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("CACHE_INVALIDATION_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")

from libs.common.config import get_settings  # noqa: E402
from libs.db.base import Base  # noqa: E402

# Import all models so metadata includes every table
from services.orders_service import models as _order_models  # noqa: E402,F401

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
settings = get_settings()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A file-backed SQLite database per test.

    Services open their own sessions, so the database must be shared across
    connections; WAL lets a test read while a service session writes.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory handed to services that open one transaction per unit."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session for arranging and asserting test data.

    Commit arranged rows before calling a service; reload with
    ``populate_existing=True`` to see what the service wrote.
    """
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture
async def client(
    session_factory, admin_user, fake_processor
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient for the orders app with DB, auth and processor
    dependencies overridden.
    """
    from libs.auth.dependencies import require_admin
    from libs.db.session import get_async_db, get_session_factory
    from services.orders_service.app.main import app
    from services.orders_service.payment_client import get_payment_processor_client

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[require_admin] = lambda: admin_user
    app.dependency_overrides[get_payment_processor_client] = lambda: fake_processor

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def admin_user():
    from libs.auth.models import AuthUser

    return AuthUser(
        sub="admin-1",
        email="admin@example.com",
        role="authenticated",
        app_metadata={"role": "admin"},
    )


@pytest.fixture
def fake_processor():
    from tests.fakes import FakeProcessorClient

    return FakeProcessorClient()


@pytest.fixture(autouse=True)
def fake_notifications(monkeypatch):
    """Capture notifications instead of calling the Communications Service."""
    from tests.fakes import FakeNotificationClient

    fake = FakeNotificationClient()
    monkeypatch.setattr(
        "services.orders_service.services.post_commit.get_notification_client",
        lambda: fake,
    )
    return fake
