# app/infrastructure/postgres_connection.py

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


# Base class for SQLAlchemy models
Base = declarative_base()


class PostgresConnection:
    """Simple PostgreSQL connection manager using SQLAlchemy"""

    def __init__(self):
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None

    async def connect(self):
        """Connect to PostgreSQL"""
        if self.engine is not None:
            return  # Already connected

        try:
            self.engine = create_async_engine(
                settings.DATABASE_URL,
                echo=settings.DEBUG,  # Log SQL queries in debug mode
                pool_pre_ping=True,  # Verify connections before using them
                pool_size=10,
                max_overflow=20,
            )

            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            # Test connection
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            logger.info(f"✅ Connected to PostgreSQL at {settings.POSTGRES_HOST}:{settings.POSTGRES_PORT}/{settings.POSTGRES_DB}")
        except Exception as e:
            logger.error(f"❌ Failed to connect to PostgreSQL: {e}")
            self.engine = None
            self.session_factory = None
            raise

    async def disconnect(self):
        """Disconnect from PostgreSQL"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            logger.info("✅ Disconnected from PostgreSQL")

    def get_engine(self) -> AsyncEngine:
        """Get the SQLAlchemy async engine instance"""
        if not self.engine:
            raise RuntimeError("PostgreSQL engine is not connected. Call connect() first.")
        return self.engine

    def get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get the session factory for creating database sessions"""
        if not self.session_factory:
            raise RuntimeError("PostgreSQL session factory is not initialized. Call connect() first.")
        return self.session_factory


# Shared instance
postgres_connection = PostgresConnection()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory for creating database sessions"""
    return postgres_connection.get_session_factory()


async def get_db_session() -> AsyncSession:
    """
    Dependency for FastAPI routes to get a database session.

    Usage in routes:
        @router.get("/friends")
        async def list_friends(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
