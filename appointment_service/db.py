"""
Database layer: ORM tables, async engine/session factory and transaction helper.

Appointments reference their owner through ``patient_id``; the patient side
holds no collection, owner appointments are queried through the store.
"""

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from . import config
from .exceptions import Conflict, StoreUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


class TimestampMixin:
    """Adds tracked created_at/updated_at columns (timezone-aware UTC)."""

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


class Patient(Base, TimestampMixin):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    # Unique index turns the create race into an IntegrityError
    ssn = Column(String(64), unique=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Patient id={self.id} ssn={self.ssn!r}>"


class Appointment(Base, TimestampMixin):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reason = Column(String(500), nullable=False)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Appointment id={self.id} reason={self.reason!r} date={self.date}>"


def create_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create the async engine for ``url`` (defaults to DATABASE_URL)."""
    url = url or config.DATABASE_URL
    logger.info("Creating async database engine for %s", url.split("@")[-1])
    return create_async_engine(url, echo=config.DB_ECHO, future=True, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return create_engine()


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return create_session_factory(get_engine())


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def transaction(session: AsyncSession):
    """
    Commit everything done inside the block, or roll all of it back.

    Commit failures are translated like store failures: IntegrityError
    becomes Conflict, any other SQLAlchemyError becomes StoreUnavailable.
    """
    try:
        yield session
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.error(f"Integrity error on commit: {e}")
        raise Conflict("Unique constraint violated") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database error on commit: {e}")
        raise StoreUnavailable("commit", str(e)) from e
    except Exception:
        await session.rollback()
        raise
