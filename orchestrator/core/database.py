"""
Database connection and session management using SQLAlchemy.
"""
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

# Create declarative base for models
Base = declarative_base()


class Database:
    """Owns the async engine and the session factory handed to services."""

    def __init__(self, url: str, echo: bool = False):
        """
        Create engine and session factory for a database URL.

        Args:
            url: Async SQLAlchemy URL
            echo: Log SQL statements
        """
        self.url = url
        if url.startswith("sqlite"):
            database = make_url(url).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            # SQLite doesn't support connection pooling well
            self.engine: AsyncEngine = create_async_engine(
                url,
                echo=echo,
                poolclass=NullPool,
                connect_args={"check_same_thread": False, "timeout": 30}
            )
        else:
            self.engine = create_async_engine(
                url,
                echo=echo,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,
            )

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    async def init(self) -> None:
        """Create all tables defined in models."""
        # Import models so their tables are registered on Base.metadata
        import orchestrator.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop(self) -> None:
        """
        Drop all database tables.
        Warning: This will delete all data!
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Close database engine and connections."""
        await self.engine.dispose()
