from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.platform.config import settings


def _pool_options(url: str) -> dict:
    # SQLite (tests, local runs) does not take QueuePool sizing arguments
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": 20,
        "max_overflow": 30,  # (burst capacity)
        "pool_timeout": 30,
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    **_pool_options(settings.DATABASE_URL),
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session


def sync_database_url(url: str) -> str:
    """Convert an async driver URL into its sync counterpart for worker sessions."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql://")
    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://")
    return url


# Single shared sync engine for Celery tasks and the threaded crawl/scan services
_sync_engine = None
_sync_session_factory = None


def get_sync_db():
    """Get a database session for Celery tasks."""
    global _sync_engine, _sync_session_factory

    if _sync_engine is None:
        db_url = sync_database_url(settings.DATABASE_URL)
        _sync_engine = create_engine(db_url, **_pool_options(db_url))
        _sync_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_sync_engine)

    return _sync_session_factory()
