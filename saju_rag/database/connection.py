"""
Async SQLAlchemy engine and session management.

Each store call acquires its own session through ``get_session`` and
releases it on exit: committed on success, rolled back on error, always
closed.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from saju_rag.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM entities."""


def create_session_maker(
    db_url: Optional[str] = None,
    **engine_kwargs: Any,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the async engine and its session factory."""
    db_url = db_url or settings.DATABASE_URL
    engine = create_async_engine(db_url, echo=settings.DATABASE_ECHO, **engine_kwargs)

    if db_url.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def get_session(
    session_maker: async_sessionmaker[AsyncSession],
    read_only: bool = False,
) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        try:
            yield session
            if not read_only:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_all_tables(engine: AsyncEngine) -> None:
    # Entities must be imported so their tables register on Base.metadata
    from saju_rag.database import entities  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("🗄️ Database tables ready")
