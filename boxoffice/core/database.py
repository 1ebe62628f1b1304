"""
Database configuration and session management
"""

from typing import Optional
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool
from sqlalchemy import event
import logging
from contextlib import asynccontextmanager

from boxoffice.config import Settings

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Build the async engine for the configured database
    """
    if settings.is_sqlite:
        engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DB_ECHO,
            poolclass=NullPool,
            connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS},
        )
        _serialize_sqlite_writers(engine)
        return engine

    if settings.is_testing:
        # NullPool doesn't accept pool parameters
        return create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DB_ECHO,
            poolclass=NullPool,
        )

    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        poolclass=AsyncAdaptedQueuePool,
    )


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """
    SQLite has no row locks; take the write lock when the transaction starts so
    concurrent conditional updates queue on the busy timeout instead of failing
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """
    Create async session factory
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine):
    """
    Initialize database schema
    """
    # Register every model on Base.metadata before create_all
    import boxoffice.models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db(engine: AsyncEngine):
    """
    Close database connections
    """
    await engine.dispose()
    logger.info("Database connections closed")


class DatabaseManager:
    """
    Transaction helper bound to one session factory
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def transaction(self, session: AsyncSession):
        """
        Context manager for explicit transaction handling with proper resource management
        Uses SQLAlchemy's built-in begin() context manager for proper cleanup
        """
        try:
            async with session.begin():
                yield session
                # Transaction auto-commits on successful exit
        except Exception as e:
            # Transaction auto-rolls back on exception
            self.logger.debug(f"Transaction rolled back: {type(e).__name__}: {e}")
            raise

    @asynccontextmanager
    async def atomic_transaction(self):
        """
        Create a new session with atomic transaction
        """
        async with self.session_factory() as session:
            async with self.transaction(session) as tx_session:
                yield tx_session

    @asynccontextmanager
    async def read_session(self):
        """
        Session for read-only work; nothing is committed

        Loaded objects are expunged before the rollback so callers can keep
        using them after the block.
        """
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                session.expunge_all()
                if session.in_transaction():
                    await session.rollback()

    async def ping(self) -> bool:
        from sqlalchemy import text

        async with self.read_session() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1


def dialect_name(session: AsyncSession) -> Optional[str]:
    bind = session.get_bind()
    return bind.dialect.name if bind is not None else None
