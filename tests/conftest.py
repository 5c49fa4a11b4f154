"""
Test configuration and fixtures for the Accessibility Assurance API.

The API tests run against a throwaway SQLite file shared by the app's async
engine; service tests get a fresh in-memory database per test through
`session_factory` / `async_db`.
"""

import os
import tempfile
from typing import Generator

from dotenv import load_dotenv

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
        test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
    os.environ["DATABASE_URL"] = test_db_url
else:
    test_db_path = tempfile.mktemp(suffix=".db")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"

# Locks stay in-process and alerts never leave the test run
os.environ.pop("REDIS_URL", None)
os.environ["EMAIL_RELAY_URL"] = ""
os.environ.pop("ALERT_WEBHOOK_URL", None)

import app.platform.db.models  # noqa: E402,F401
from app.platform.db.base import Base  # noqa: E402
from app.platform.db.session import sync_database_url  # noqa: E402


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application on a freshly created schema."""
    from app.main import app

    engine = create_engine(sync_database_url(os.environ["DATABASE_URL"]))
    Base.metadata.create_all(engine)
    engine.dispose()
    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    This fixture provides a clean TestClient instance for each test function,
    ensuring proper isolation between tests.
    """
    with TestClient(test_app) as test_client:
        yield test_client


@pytest.fixture
def session_factory():
    """Sync session factory over a private in-memory database (worker-side code)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest_asyncio.fixture
async def async_db():
    """AsyncSession over a private in-memory database (API-side services)."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)
    async with factory() as session:
        yield session
    await engine.dispose()
