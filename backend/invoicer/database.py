import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from invoicer.config import settings
from invoicer.exceptions import StorageFailure

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, echo=False)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)

COUNTER_NAMES = ("invoice", "receipt")


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed reads and writes as one all-or-nothing unit.

    The session auto-begins on its first statement, so reads made earlier on
    the same session are folded into this unit. Any SQLAlchemy error rolls
    everything back and is re-raised as StorageFailure; application errors
    roll back and propagate unchanged.
    """
    try:
        yield db
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Transaction rolled back: %s", exc, exc_info=True)
        raise StorageFailure("The change could not be saved; nothing was written.") from exc
    except BaseException:
        await db.rollback()
        raise


async def seed_counters(session: AsyncSession) -> None:
    """Insert the invoice and receipt counters at 0 if they are missing."""
    from invoicer.models.db_models import Counter

    async with atomic(session):
        result = await session.execute(select(Counter.name))
        existing = set(result.scalars().all())
        for name in COUNTER_NAMES:
            if name not in existing:
                session.add(Counter(name=name, value=0))
                logger.info("Seeded counter '%s' at 0", name)


async def init_db(
    bind: AsyncEngine | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    """Create all tables and seed the counters on startup."""
    bind = bind or engine
    session_factory = session_factory or async_session_factory

    # Ensure data directories exist
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.logos_dir.mkdir(parents=True, exist_ok=True)

    async with bind.begin() as conn:
        # Import models so Base knows about them
        from invoicer.models import db_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        await seed_counters(session)
