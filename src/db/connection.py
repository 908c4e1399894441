"""
Database Connection Management
Async SQLAlchemy engine, session factory and request-scoped sessions
Source: https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.api.config import settings
from src.utils.logging import get_logger

logger = get_logger(__name__)


# Global engine instance, created lazily on first use
_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the global async engine."""
    global _engine

    if _engine is None:
        # Never log credentials
        logger.info(f"Creating database engine: {settings.database_url.split('@')[-1]}")

        if settings.is_testing:
            # NullPool takes no pool sizing arguments
            _engine = create_async_engine(
                settings.database_url,
                echo=settings.DEBUG,
                poolclass=NullPool,
            )
        else:
            _engine = create_async_engine(
                settings.database_url,
                echo=settings.DEBUG,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_pre_ping=True,
            )

    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session maker."""
    global _async_session_maker

    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _async_session_maker


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Commits when the handler returns, rolls back and re-raises on error.
    Repository writes commit individually, so a phase that records FAILED
    and then re-raises keeps its status; the rollback only discards
    uncommitted leftovers.
    """
    session_maker = get_session_maker()

    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise


async def create_tables() -> None:
    """Create all tables from model metadata (development and integration tests)."""
    from src.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def close_db_connection() -> None:
    """Dispose the engine on application shutdown."""
    global _engine, _async_session_maker

    if _engine is not None:
        logger.info("Closing database connection pool...")
        await _engine.dispose()
        _engine = None
        _async_session_maker = None


async def check_db_connection() -> bool:
    """Return True when ``SELECT 1`` succeeds."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
