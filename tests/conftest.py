"""
CivicForm Middleware - Test Configuration (conftest.py)
=========================================================

Shared pytest fixtures. Tests run against a real temporary SQLite database
through aiosqlite; every test starts from freshly created tables.

Fixture Hierarchy:
    Function-scoped:
    ├── database:    drop + create all tables, dispose engine after
    ├── db_session:  AsyncSession on the test database
    ├── test_client: HTTPX AsyncClient over ASGITransport
    ├── webhook_headers / submission_headers: valid X-Auth-Token headers
    └── mock_db_session: AsyncMock session for forcing store failures
"""

import os
import tempfile

# Override settings for testing BEFORE any civicform import
_TEST_DB_DIR = tempfile.mkdtemp(prefix="civicform_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/civicform_test.db"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["SUBMISSION_SECRET"] = "test-submission-secret"
os.environ["ALLOW_UNAUTHENTICATED"] = "false"
os.environ["SUBMISSION_DELIVERY_MODE"] = "tracked"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["TRUST_PROXY_HEADERS"] = "false"
os.environ["API_USAGE_TRACKING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]
SUBMISSION_SECRET = os.environ["SUBMISSION_SECRET"]


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def database():
    """Fresh tables for every test; pooled connections never outlive the test's loop."""
    from civicform.database import Base, engine
    import civicform.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    from civicform.database import async_session_factory

    async with async_session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    AsyncMock standing in for AsyncSession.

    Usage:
        mock_db_session.execute.side_effect = OperationalError("stmt", {}, Exception("down"))
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get_bind = MagicMock()
    session.get_bind.return_value.dialect.name = "sqlite"
    return session


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(database):
    """
    HTTPX AsyncClient wired to the FastAPI app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from civicform.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def webhook_headers():
    return {"X-Auth-Token": WEBHOOK_SECRET}


@pytest.fixture
def submission_headers():
    return {"X-Auth-Token": SUBMISSION_SECRET}
