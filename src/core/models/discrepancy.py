"""Discrepancy model: source/target differences found during reconciliation.

A discrepancy is created unresolved and transitions exactly once to
resolved. The resolution columns are set together or not at all, which the
``ck_discrepancy_resolution_complete`` constraint enforces at the database.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base, JSONType


class DiscrepancyType(enum.StrEnum):
    """Kinds of difference between the source and target systems."""

    FIELD_MISMATCH = "field_mismatch"
    MISSING_IN_TARGET = "missing_in_target"
    MISSING_IN_SOURCE = "missing_in_source"
    DUPLICATE = "duplicate"
    COUNT_MISMATCH = "count_mismatch"


class Severity(enum.StrEnum):
    """Producer-assigned severity of a discrepancy."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ResolutionAction(enum.StrEnum):
    """How an operator resolved a discrepancy."""

    ACCEPT_SOURCE = "accept_source"
    ACCEPT_TARGET = "accept_target"
    IGNORE = "ignore"


class DiscrepancyStatus(enum.StrEnum):
    """Listing filter over the resolution lifecycle."""

    OPEN = "open"
    RESOLVED = "resolved"
    ALL = "all"


# Display and sort order for severities (critical first).
SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 1,
    Severity.WARNING: 2,
    Severity.INFO: 3,
}


def _new_id() -> str:
    return str(uuid.uuid4())


class Discrepancy(Base):
    """One detected difference between source and target data."""

    __tablename__ = "parallel_run_discrepancies"
    __table_args__ = (
        CheckConstraint(
            "(resolved_at IS NULL AND resolved_by IS NULL AND resolution_type IS NULL)"
            " OR (resolved_at IS NOT NULL AND resolved_by IS NOT NULL AND resolution_type IS NOT NULL)",
            name="ck_discrepancy_resolution_complete",
        ),
        Index("ix_discrepancies_run_id", "run_id"),
        Index("ix_discrepancies_open_severity", "resolved_at", "severity"),
        Index("ix_discrepancies_entity", "entity_type", "entity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    discrepancy_type: Mapped[DiscrepancyType] = mapped_column(
        Enum(DiscrepancyType, name="discrepancytype", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    severity: Mapped[Severity] = mapped_column(
        Enum(Severity, name="discrepancyseverity", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    field_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    detection_pass: Mapped[int | None] = mapped_column(Integer, nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolution_type: Mapped[ResolutionAction | None] = mapped_column(
        Enum(ResolutionAction, name="resolutionaction", values_callable=lambda e: [x.value for x in e]),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def __repr__(self) -> str:
        return (
            f"<Discrepancy(id={self.id}, type={self.discrepancy_type}, "
            f"entity={self.entity_type}:{self.entity_id}, resolved={self.is_resolved})>"
        )
