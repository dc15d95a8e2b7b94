"""SQLAlchemy 2.x async engine and declarative base.

The reconciliation tables live in the shared RailSync PostgreSQL database.
Tests run the same models on SQLite, so column types that differ between
the two backends are declared here once.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.core.config import Settings

# JSONB on PostgreSQL, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Pool sizing for the PostgreSQL server; other backends use their default pool.
POSTGRES_POOL_OPTIONS: dict[str, Any] = {
    "pool_size": 20,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_recycle": 300,
}


class Base(DeclarativeBase):
    """Declarative base shared by every reconciliation model."""


def create_engine(settings: Settings) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the async engine and a session factory bound to it.

    Sessions keep loaded attributes after commit so that routes can
    serialize a resolved discrepancy without another round trip.
    """
    url = settings.database_url or ""
    options: dict[str, Any] = {"echo": settings.debug}
    if url.startswith("postgresql"):
        options.update(POSTGRES_POOL_OPTIONS)

    engine = create_async_engine(url, **options)
    return engine, async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
