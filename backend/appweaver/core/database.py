"""
Database engine and sessions

The engine is created lazily. The API process keeps one for its lifetime;
every Celery task runs its own event loop, so tool and deployment workers
dispose of the engine when the task ends (``close_db``) and the next task
builds a fresh one on its own loop.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import Any, Dict, Optional

from appweaver.core.config import settings

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """DATABASE_URL with the async driver filled in"""
    db_url = settings.DATABASE_URL
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return db_url


def engine_options(db_url: str) -> Dict[str, Any]:
    """
    Pooling per backend:
    - SQLite: NullPool, connections are not shared across threads
    - PostgreSQL in development: NullPool
    - PostgreSQL in production: queue pool sized from settings
    """
    options: Dict[str, Any] = {"echo": settings.DB_ECHO}
    if "sqlite" in db_url:
        options.update(connect_args={"check_same_thread": False}, poolclass=NullPool)
    elif settings.DEBUG or settings.ENVIRONMENT == "development":
        options.update(poolclass=NullPool)
    else:
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
        )
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        db_url = get_database_url()
        _engine = create_async_engine(db_url, **engine_options(db_url))
    return _engine


def get_session_local() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the current engine; objects stay loaded after commit"""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
    return _session_factory


async def init_db():
    """Create missing tables"""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Dispose of the engine; the next caller builds a new one"""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
