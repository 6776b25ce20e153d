"""
Database session configuration with error handling.

- Connection pooling for PostgreSQL (asyncpg)
- Pool pre-ping for stale connection detection
- Typed exception mapping in the request-scoped session dependency
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import (
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import (
    TimeoutError as SQLAlchemyTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from partsync.core.config import settings
from partsync.core.exceptions import (
    DatabaseConnectionException,
    DatabaseException,
    ErrorCode,
)
from partsync.core.logging import get_logger
from partsync.db.postgres.models import Base

logger = get_logger(__name__)

# =============================================================================
# Engine Configuration
# =============================================================================

POOL_RECYCLE = 1800  # Recycle connections every 30 minutes
POOL_TIMEOUT = 30  # Seconds to wait for a pooled connection


def _engine_options(database_url: str) -> dict[str, Any]:
    """Pool options for the configured backend. SQLite takes no pool sizing."""
    if database_url.startswith("sqlite"):
        return {"echo": settings.DEBUG}
    return {
        "echo": settings.DEBUG,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": POOL_RECYCLE,
        "pool_timeout": POOL_TIMEOUT,
        "pool_pre_ping": True,
        "connect_args": {"command_timeout": 60},
    }


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT works.

    The sqlite driver otherwise issues its own implicit BEGIN, which breaks
    nested transactions (per-item sync savepoints, compatibility replace).
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine: AsyncEngine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session with error handling.

    Commits on success, rolls back on any error.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...

    Raises:
        DatabaseConnectionException: When unable to connect to database
        DatabaseException: For other database errors
    """
    session: AsyncSession | None = None
    try:
        session = async_session_maker()
        yield session
        await session.commit()

    except OperationalError as e:
        logger.error(
            "Database connection error",
            extra={"error_type": type(e).__name__, "error_message": str(e)},
            exc_info=True,
        )
        if session:
            await session.rollback()
        raise DatabaseConnectionException(original_error=e)

    except IntegrityError as e:
        logger.warning(
            "Database integrity error",
            extra={"error_type": type(e).__name__, "error_message": str(e)},
        )
        if session:
            await session.rollback()
        raise DatabaseException(
            message="A data integrity error occurred.",
            code=ErrorCode.DATABASE_INTEGRITY,
            details={"constraint_violation": True},
            original_error=e,
        )

    except SQLAlchemyTimeoutError as e:
        logger.error(
            "Database timeout error",
            extra={"error_type": type(e).__name__, "error_message": str(e)},
        )
        if session:
            await session.rollback()
        raise DatabaseException(
            message="The database operation timed out.",
            code=ErrorCode.DATABASE_TIMEOUT,
            details={"timeout": True},
            original_error=e,
        )

    except SQLAlchemyError as e:
        logger.error(
            "SQLAlchemy error",
            extra={"error_type": type(e).__name__, "error_message": str(e)},
            exc_info=True,
        )
        if session:
            await session.rollback()
        raise DatabaseException(original_error=e)

    except Exception:
        if session:
            await session.rollback()
        raise

    finally:
        if session:
            await session.close()


async def create_schema(bind: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def dispose_engine() -> None:
    """
    Dispose of the engine and all connections.

    Call this during application shutdown.
    """
    await engine.dispose()
    logger.info("Database engine disposed")


async def check_database_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection is available, False otherwise.
    """
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
            return True
    except SQLAlchemyError as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
