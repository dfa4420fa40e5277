"""
Database connection and session management for Identity Reconciliation API
This module sets up the async SQLAlchemy engine and session factory with
proper transaction handling. Supports local PostgreSQL, AWS RDS (through
RDS Proxy inside Lambda) and SQLite for tests.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from models import Base

logger = logging.getLogger(__name__)


def _mask_url(database_url: str) -> str:
    if "@" not in database_url:
        return database_url
    scheme = database_url.split("://")[0]
    return f"{scheme}://[HIDDEN]@{database_url.rsplit('@', 1)[-1]}"


class DatabaseManager:
    """
    Database connection manager that handles the SQLAlchemy engine,
    session creation, and connection lifecycle management

    The engine is created on first use so importing the application never
    opens a connection.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.SessionLocal: Optional[async_sessionmaker] = None

    def _engine_options(self, database_url: str) -> dict:
        if database_url.startswith("sqlite"):
            return {"echo": settings.DEBUG}

        if settings.is_lambda_environment():
            # Single concurrent execution per Lambda container
            return {
                "echo": settings.DEBUG,
                "pool_pre_ping": True,
                "pool_size": 1,
                "max_overflow": 0,
                "pool_recycle": 3600,
                "pool_timeout": 10,
                "connect_args": {
                    "command_timeout": 10,
                    "server_settings": {"application_name": "identity-reconciliation-lambda"}
                }
            }

        return {
            "echo": settings.DEBUG,
            "pool_pre_ping": True,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "connect_args": {
                "server_settings": {"application_name": "identity-reconciliation"}
            }
        }

    def _initialize_database(self):
        """Initialize database engine and session factory"""
        database_url = self.database_url or settings.get_active_database_url()
        logger.info(f"Initializing database connection to: {_mask_url(database_url)}")

        try:
            self.engine = create_async_engine(database_url, **self._engine_options(database_url))
        except Exception as e:
            logger.error(f"Failed to initialize database connection: {e}")
            raise

        self.SessionLocal = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
        logger.info("Database connection initialized successfully")

    def get_engine(self) -> AsyncEngine:
        """Get database engine, creating it if necessary"""
        if self.engine is None:
            self._initialize_database()
        return self.engine

    def get_session_factory(self) -> async_sessionmaker:
        """Get session factory, creating it if necessary"""
        if self.SessionLocal is None:
            self._initialize_database()
        return self.SessionLocal

    async def create_tables(self):
        """Create all database tables defined in models"""
        logger.info("Creating database tables...")
        async with self.get_engine().begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def test_connection(self) -> bool:
        """Test database connection"""
        try:
            async with self.get_engine().connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.info("Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for one transactional session
        Commits when the block exits cleanly, rolls back otherwise.
        Usage:
            async with db_manager.get_session() as session:
                # database operations
        """
        session = self.get_session_factory()()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()

    async def dispose(self):
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.SessionLocal = None


# Global database manager instance
db_manager = DatabaseManager()
