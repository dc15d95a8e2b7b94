"""Transition audit logging.

Adapter over the shared ``state_transition_log`` table. Every transition is
written as a structured log record for SIEM ingestion and, when a session
factory is configured, persisted in its own session so that an audit write
never shares a transaction with the business change it describes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.models import StateTransitionLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionRecord:
    """A single lifecycle transition to be audited."""

    process_type: str
    entity_id: str
    to_state: str
    from_state: str | None = None
    actor_id: str | None = None
    entity_number: str | None = None
    notes: str | None = None
    is_reversible: bool = False
    side_effects: list[Any] = field(default_factory=list)


class TransitionLogger(Protocol):
    """Anything that accepts transition records (fire-and-forget)."""

    async def log(self, record: TransitionRecord) -> None: ...


class DatabaseTransitionLogger:
    """Persist transitions to ``state_transition_log``.

    Args:
        session_factory: Factory for a dedicated session per write. When None,
            transitions are only emitted to the log stream.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def log(self, record: TransitionRecord) -> None:
        logger.info(
            "TRANSITION process=%s entity=%s number=%s from=%s to=%s actor=%s",
            record.process_type,
            record.entity_id,
            record.entity_number or "none",
            record.from_state or "none",
            record.to_state,
            record.actor_id or "system",
        )

        if self._session_factory is None:
            return

        async with self._session_factory() as session:
            session.add(
                StateTransitionLog(
                    process_type=record.process_type,
                    entity_id=record.entity_id,
                    entity_number=record.entity_number,
                    from_state=record.from_state,
                    to_state=record.to_state,
                    is_reversible=record.is_reversible,
                    actor_id=record.actor_id,
                    notes=record.notes,
                    side_effects=list(record.side_effects),
                )
            )
            await session.commit()
