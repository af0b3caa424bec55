# Async SQLAlchemy connection management
import time
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from contextlib import asynccontextmanager
from typing import AsyncIterator

from core.logging import get_database_logger_safe, get_error_logger_safe

db_logger = get_database_logger_safe("database_manager")
error_logger = get_error_logger_safe("database_manager")

# The base class for all SQLAlchemy models
Base = declarative_base()

SLOW_SESSION_MS = 5000


class DatabaseManager:
    """Manages the connection to the application database"""

    def __init__(self, db_url: str, environment: str = "development", schema_management: str = "auto",
                 echo: bool = False):
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if db_url.startswith("postgresql"):
            engine_kwargs.update(
                pool_size=20,        # Base pool size
                max_overflow=30,     # Additional connections beyond pool_size
                pool_recycle=3600    # Recycle connections after 1 hour
            )
        self._engine = create_async_engine(db_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession
        )
        self._environment = environment
        self._schema_management = schema_management

    @property
    def engine(self):
        return self._engine

    async def init(self):
        """Create tables unless the schema is managed by migrations."""
        if self._schema_management == "migrations_only":
            db_logger.info("Schema managed externally; skipping create_all")
            return

        # Importing registers the tables on Base.metadata
        from core.database import models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        db_logger.info("Database initialized with create_all", environment=self._environment)

    async def verify_connection(self) -> bool:
        """Verify database connection is ready"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            error_logger.error("Database connection verification failed", error=str(e))
            return False

    async def shutdown(self):
        """Closes the database connection pool"""
        await self._engine.dispose()
        db_logger.info("Database connection pool closed.")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Provides a new database session context manager WITHOUT auto-commit.

        Callers own the transaction boundary and commit explicitly.
        """
        session_start_time = time.time()
        async with self._session_factory() as session:
            try:
                yield session
            except Exception as session_error:
                await session.rollback()
                error_logger.error("Database session error with rollback",
                                   error=str(session_error),
                                   session_duration_ms=(time.time() - session_start_time) * 1000,
                                   environment=self._environment)
                raise
            finally:
                session_duration = (time.time() - session_start_time) * 1000
                if session_duration > SLOW_SESSION_MS:
                    db_logger.warning("Long-running database session",
                                      session_duration_ms=session_duration,
                                      threshold_ms=SLOW_SESSION_MS)

    async def close(self):
        """Alias for shutdown"""
        await self.shutdown()
