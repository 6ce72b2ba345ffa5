"""Async engine and sessions for the scoring store.

The service writes ``weight_configs``, ``score_records``, ``score_alerts`` and
``scoring_jobs``. The TNA, plan and scholar tables it reads are owned by the
training platform and are only created here for local development.
"""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import settings
from src.db.models import Base

logger = structlog.get_logger()

SCORING_TABLES = ("weight_configs", "score_records", "score_alerts", "scoring_jobs")

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; repositories commit explicitly, failures roll back here."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def tables_to_create(include_source: bool = False) -> list:
    if include_source:
        return list(Base.metadata.sorted_tables)
    return [t for t in Base.metadata.sorted_tables if t.name in SCORING_TABLES]


async def init_db(bind: AsyncEngine | None = None, include_source: bool | None = None) -> None:
    """Create the scoring tables if missing, plus the source tables when configured."""
    if include_source is None:
        include_source = settings.db_create_source_tables
    tables = tables_to_create(include_source)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=tables)
    logger.info("database_initialized", tables=[t.name for t in tables])


async def check_db() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("database_check_failed", exc_info=True)
        return False
