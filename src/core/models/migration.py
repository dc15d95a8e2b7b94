"""Migration pipeline models: import runs, row errors and parallel-run summaries.

``migration_runs`` and ``migration_row_errors`` are written by the bulk
import pipeline; the reconciliation engine only reads them.
``parallel_run_results`` holds one summary per reconciled migration run.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database import Base, JSONType


class MigrationRunStatus(enum.StrEnum):
    """Known import run states. The column itself stays an open string."""

    PENDING = "pending"
    IMPORTING = "importing"
    COMPLETE = "complete"
    FAILED = "failed"


class MigrationRun(Base):
    """One bulk import of a source-system extract into the target tables."""

    __tablename__ = "migration_runs"
    __table_args__ = (Index("ix_migration_runs_entity_status", "entity_type", "status"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    source_file: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=MigrationRunStatus.PENDING.value)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )

    row_errors: Mapped[list[MigrationRowError]] = relationship(
        "MigrationRowError", back_populates="migration_run", cascade="all, delete-orphan"
    )

    @property
    def is_complete(self) -> bool:
        return self.status == MigrationRunStatus.COMPLETE.value

    def __repr__(self) -> str:
        return f"<MigrationRun(id={self.id}, entity_type='{self.entity_type}', status='{self.status}')>"


class MigrationRowError(Base):
    """A source row the import pipeline could not load."""

    __tablename__ = "migration_row_errors"
    __table_args__ = (Index("ix_migration_row_errors_run_id", "migration_run_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    migration_run_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("migration_runs.id", ondelete="CASCADE"), nullable=False
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    field_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_type: Mapped[str] = mapped_column(String(64), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    migration_run: Mapped[MigrationRun] = relationship("MigrationRun", back_populates="row_errors")

    def __repr__(self) -> str:
        return f"<MigrationRowError(run={self.migration_run_id}, row={self.row_number}, type='{self.error_type}')>"


class ParallelRunSummary(Base):
    """Per-run aggregate updated by each reconciliation pass."""

    __tablename__ = "parallel_run_results"
    __table_args__ = (Index("ix_parallel_run_results_run_date", "run_date"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    migration_run_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    run_date: Mapped[date] = mapped_column(Date, nullable=False, default=lambda: datetime.now(UTC).date())
    comparison_type: Mapped[str] = mapped_column(String(64), nullable=False)
    source_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mismatch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pass_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ParallelRunSummary(id={self.id}, run={self.migration_run_id}, "
            f"mismatches={self.mismatch_count}, passes={self.pass_count})>"
        )
