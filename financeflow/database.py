import logging

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from financeflow.config import DATABASE_ECHO, DATABASE_URL
from financeflow.errors import ConflictError

logger = logging.getLogger(__name__)

engine = create_async_engine(
    DATABASE_URL,
    echo=DATABASE_ECHO,
    pool_size=5,
    max_overflow=10,
    pool_recycle=1800,
    pool_pre_ping=True,  # hosted Postgres drops idle connections
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def dispose_engine():
    """Closes pooled connections on application shutdown."""
    await engine.dispose()


async def commit_or_raise(session: AsyncSession, conflict_detail: str | None = None):
    """
    Commits the session. A unique or check violation becomes a 409 with
    ``conflict_detail`` when given; any other failure is a 500.
    """
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if conflict_detail:
            raise ConflictError(conflict_detail) from e
        logger.error(f"Integrity error on commit: {e}")
        raise HTTPException(status_code=500, detail="Database error") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error on commit: {e}")
        raise HTTPException(status_code=500, detail="Database error") from e


async def flush_or_raise(session: AsyncSession, conflict_detail: str | None = None):
    """Flushes pending changes with the same error mapping as ``commit_or_raise``."""
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        if conflict_detail:
            raise ConflictError(conflict_detail) from e
        logger.error(f"Integrity error on flush: {e}")
        raise HTTPException(status_code=500, detail="Database error") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error on flush: {e}")
        raise HTTPException(status_code=500, detail="Database error") from e
