"""Database client for the Supabase Postgres store.

The engine and session factory are owned by a ``DatabaseClient`` that the
service container constructs at startup and disposes at shutdown; nothing is
created at import time.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from veridicus.core.config import DatabaseSettings
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DatabaseClient:
    """PostgreSQL database client with connection and schema management."""

    def __init__(self, db_settings: DatabaseSettings):
        """Initialize database client.

        Args:
            db_settings: Connection and pool settings
        """
        self.db_settings = db_settings
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None
        self._connected = False

    def _build_engine(self) -> AsyncEngine:
        return create_async_engine(
            self.db_settings.connection_url,
            pool_size=self.db_settings.pool_size,
            max_overflow=self.db_settings.max_overflow,
            echo=self.db_settings.echo,
            # Disable prepared statement cache for PgBouncer (Supabase pooler) compatibility
            connect_args={"statement_cache_size": 0},
        )

    async def connect(self) -> None:
        """Create the engine and verify the connection."""
        if self.engine is None:
            self.engine = self._build_engine()
            self.session_maker = async_sessionmaker(
                self.engine, class_=AsyncSession, expire_on_commit=False
            )

        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            self._connected = True
            LOGGER.info("Database connection successful")
        except Exception:
            self._connected = False
            LOGGER.error("Database connection failed", exc_info=True)
            raise

    async def disconnect(self) -> None:
        """Dispose of the engine and its pool."""
        if self.engine is None:
            return
        try:
            await self.engine.dispose()
            LOGGER.info("Database connection closed")
        except Exception as e:
            LOGGER.error(
                "Error closing database connection",
                exc_info=True,
                extra={"error": str(e)},
            )
        finally:
            self._connected = False

    async def create_tables(self) -> None:
        """Create all tables that don't exist yet."""
        # Import models so they register on Base.metadata
        from veridicus.database import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        LOGGER.info("Database tables created/verified successfully")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session outside of a request (workers, WebSocket handlers)."""
        if self.session_maker is None:
            raise RuntimeError("DatabaseClient.connect() has not been called")
        async with self.session_maker() as session:
            yield session

    async def health_check(self) -> dict:
        """Check database health."""
        if self.engine is None:
            return {"status": "unhealthy", "connected": False, "error": "not connected"}
        try:
            async with self.engine.connect() as conn:
                val = await conn.scalar(text("SELECT 1"))
            self._connected = True
            return {
                "status": "healthy",
                "connected": True,
                "latency_test": "passed" if val == 1 else "failed",
            }
        except Exception as e:
            self._connected = False
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {"status": "unhealthy", "connected": False, "error": str(e)}

    @property
    def is_connected(self) -> bool:
        return self._connected
