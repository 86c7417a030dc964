# ==== DATABASE CONNECTION AND SESSION MANAGEMENT ==== #

"""
Database connection and session management for the parcel billing engine.

This module owns the async SQLAlchemy engine (asyncpg driver), the session
factory, and the FastAPI session dependency used by the invoice store.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from parcel_billing.settings import settings
from parcel_billing.observability.metrics import db_connections_active


# ==== SQLALCHEMY CONFIGURATION ==== #

# SQLAlchemy base for model definitions
Base = declarative_base()

# Global engine and session factory instances
engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(db_url: str) -> str:
    """Force the asyncpg driver and its SSL parameter spelling."""
    if not db_url.startswith("postgresql+asyncpg://"):
        db_url = db_url.replace("postgresql+psycopg://", "postgresql+asyncpg://")
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://")

    # asyncpg spells it ssl=require
    if "sslmode=require" in db_url:
        db_url = db_url.replace("sslmode=require", "ssl=require")

    return db_url


# ==== DATABASE INITIALIZATION ==== #

def init_database() -> None:
    """
    Initialize database engine and session factory.

    Connections through a pooler (PgBouncer) use ``NullPool`` and disable
    the asyncpg statement cache to avoid double pooling.
    """
    global engine, SessionLocal

    if engine is not None:
        return

    db_url = normalize_database_url(settings.DATABASE_URL)
    is_pooler = "pooler" in db_url

    connect_args = {
        "server_settings": {
            "application_name": settings.SERVICE_NAME,
            "timezone": "UTC"
        }
    }
    if is_pooler:
        connect_args["statement_cache_size"] = 0

    engine = create_async_engine(
        db_url,
        echo=settings.APP_ENV == "dev",
        poolclass=NullPool if is_pooler else None,
        connect_args=connect_args,
    )

    SessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session with automatic cleanup.

    Yields:
        AsyncSession: Database session, committed on success and rolled
        back on error
    """
    if SessionLocal is None:
        init_database()

    async with SessionLocal() as session:
        try:
            db_connections_active.inc()
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            db_connections_active.dec()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Yields:
        AsyncSession: Database session for request handling
    """
    async with get_session() as session:
        yield session


async def check_database() -> bool:
    """Readiness probe: run ``SELECT 1`` against the database."""
    async with get_session() as session:
        await session.execute(text("SELECT 1"))
    return True


async def close_database() -> None:
    """Close database connections on shutdown."""
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
        engine = None
        SessionLocal = None
