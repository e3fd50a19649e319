"""
Database layer for the cardtasks engine.

Provides SQLAlchemy ORM models, async engine/session management, and database
initialization. Task nodes are stored flat with a parent_id back-reference;
hierarchy views are rebuilt at read time.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import Date, DateTime, Float, Integer, String, Text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from cardtasks.config import DEFAULT_DATABASE_URL
from cardtasks.logging_config import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class CardORM(Base):
    """
    SQLAlchemy ORM model for cards.

    Reference registry used for card existence checks; full card data
    lives with the board collaborator.
    """
    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<CardORM(id={self.id}, title={self.title})>"


class TaskNodeORM(Base):
    """
    SQLAlchemy ORM model for task nodes.

    Corresponds to the TaskNode Pydantic model. Neither card_id nor parent_id
    carries a foreign key: cards may live in an external directory, and
    subtree deletion and sibling compaction happen in the engine inside one
    transaction.
    """
    __tablename__ = "task_nodes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    card_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="todo")
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    estimated_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    assignee: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TaskNodeORM(id={self.id}, title={self.title}, "
            f"parent_id={self.parent_id}, order_index={self.order_index})>"
        )


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Handles async engine creation, session management, and database
    initialization for both production and testing scenarios.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        """
        Initialize database manager with connection URL.

        Args:
            database_url: SQLAlchemy database URL (default: local SQLite file)
            echo: Log every SQL statement
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """
        Initialize the database engine and create tables.
        """
        try:
            logger.info(f"Initializing database: {self.database_url}")

            url = make_url(self.database_url)
            if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
            )

            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """
        Close the database engine and cleanup resources.
        """
        if self.engine:
            logger.info("Closing database connection")
            try:
                await self.engine.dispose()
                self.engine = None
                self.session_maker = None
                logger.info("Database connection closed successfully")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}", exc_info=True)
                raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        Commits when the block exits normally and rolls back on any
        exception, so a failed operation leaves no partial writes.

        Yields:
            AsyncSession for database operations

        Example:
            async with db_manager.get_session() as session:
                result = await session.execute(select(TaskNodeORM))
                nodes = result.scalars().all()
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.debug(f"Database session rolled back: {e!r}")
                await session.rollback()
                raise


async def init_database(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> DatabaseManager:
    """
    Initialize the database and return the manager instance.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log every SQL statement

    Returns:
        Initialized DatabaseManager instance
    """
    db_manager = DatabaseManager(database_url, echo=echo)
    await db_manager.initialize()
    return db_manager
