"""Audit model: StateTransitionLog.

Append-only record of lifecycle transitions written by the audit
collaborator. Reconciliation writes one row per resolved discrepancy.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base, JSONType


class StateTransitionLog(Base):
    """One state transition of a tracked entity.

    Append-only: rows are never updated or deleted.
    """

    __tablename__ = "state_transition_log"
    __table_args__ = (
        Index("ix_state_transition_log_process_entity", "process_type", "entity_id"),
        Index("ix_state_transition_log_actor_created_at", "actor_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    process_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    from_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_state: Mapped[str] = mapped_column(String(64), nullable=False)
    is_reversible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    side_effects: Mapped[list[Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<StateTransitionLog(id={self.id}, process='{self.process_type}', "
            f"entity='{self.entity_id}', {self.from_state} -> {self.to_state})>"
        )
