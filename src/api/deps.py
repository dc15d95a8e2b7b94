"""Shared FastAPI dependencies.

Provides the canonical database session dependency, the acting operator's
identity and the audit transition logger used by the reconciliation routes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import DatabaseTransitionLogger, TransitionLogger


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state via FastAPI dependency injection.

    Yields a session from the async session factory stored in app.state.
    The session is scoped to the request lifecycle.
    """
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


async def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str:
    """Return the operator id from ``X-Actor-Id``; mutations are refused without it."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    return x_actor_id.strip()


def get_transition_logger(request: Request) -> TransitionLogger:
    """Audit logger writing to ``state_transition_log`` in its own session."""
    return DatabaseTransitionLogger(getattr(request.app.state, "db_session_factory", None))
