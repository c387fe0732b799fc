"""Database connection and session management."""

from functools import lru_cache

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from booknook.core.config import settings
from booknook.infrastructure.database.models import Base


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine for *url*.

    SQLite ignores ``SELECT ... FOR UPDATE``, so on SQLite every transaction
    opens with ``BEGIN IMMEDIATE`` instead. Writers then queue on the
    database lock rather than overwriting each other's read-modify-write.
    """
    engine = create_async_engine(url, echo=False, future=True, **kwargs)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_transactions(engine)
    return engine


def _serialize_sqlite_transactions(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Pooled engine, used by FastAPI request handlers (long-lived process, one event loop).
# Built lazily so importing the package never needs the database driver.
@lru_cache()
def get_engine() -> AsyncEngine:
    return build_engine(settings.database_url)


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return build_session_maker(get_engine())


# NullPool engine for Celery workers: each asyncio.run() creates a new event
# loop and pooled connections stay bound to the previous one.
@lru_cache()
def get_worker_session_maker() -> async_sessionmaker[AsyncSession]:
    return build_session_maker(build_engine(settings.database_url, poolclass=NullPool))


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
