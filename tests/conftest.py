"""Shared test fixtures for the RailSync reconciliation test suite.

Provides test settings, mock database sessions, and an in-memory SQLite
database holding the reconciliation tables plus minimal versions of the
RailSync target tables.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.core.models  # noqa: F401 - registers every model with Base.metadata
from src.core.config import Settings
from src.core.database import Base
from tests.factories import MockSessionFactory, target_metadata


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't connect to real services."""
    return Settings(
        app_env="testing",
        debug=False,
        postgres_host="localhost",
        postgres_port=5432,
        postgres_db="railsync_test",
        postgres_user="railsync_test",
        postgres_password="test_password",
        database_url="sqlite+aiosqlite://",
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create a mock async database session.

    Note: session.add() is synchronous in SQLAlchemy, so we use
    MagicMock for it. All async methods (execute, commit, flush,
    rollback, close) use AsyncMock.
    """
    session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = None
    mock_result.scalar.return_value = 0
    mock_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=mock_result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_session_factory(mock_db_session: AsyncMock) -> MockSessionFactory:
    return MockSessionFactory(mock_db_session)


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with reconciliation and target tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(target_metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(db_session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with db_session_factory() as session:
        yield session


@pytest.fixture
async def test_app(db_session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[Any, None]:
    """Create a test FastAPI application backed by the in-memory database.

    The lifespan is skipped; instead, we manually set app.state
    with the SQLite session factory.
    """
    from fastapi import FastAPI

    from src.api.middleware import AuditLoggingMiddleware, RequestIDMiddleware, SecurityHeadersMiddleware
    from src.api.routes import health, reconciliation

    @asynccontextmanager
    async def test_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        yield

    app = FastAPI(lifespan=test_lifespan)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(AuditLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router)
    app.include_router(reconciliation.router)

    app.state.db_session_factory = db_session_factory
    app.state.db_engine = MagicMock()

    yield app


@pytest.fixture
async def client(test_app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
