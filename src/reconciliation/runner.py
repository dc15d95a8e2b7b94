"""Reconciliation runner: materialize discrepancies for a completed migration run.

One pass does two comparisons against the target tables:

* Row errors: every row the import pipeline failed to load is looked up by
  its natural key; rows still absent from the target become
  ``missing_in_target`` discrepancies.
* Counts: the run's imported row count is compared with the number of
  target rows created inside the run's time window; a difference becomes a
  single ``count_mismatch`` discrepancy.

Passes are not idempotent. Re-running a migration run inserts new rows,
tagged with the next ``detection_pass`` of the run's parallel-run summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings
from src.core.models import (
    DiscrepancyType,
    MigrationRowError,
    MigrationRun,
    ParallelRunSummary,
    Severity,
)
from src.reconciliation.entities import EntityRegistry, EntityTarget, default_registry
from src.reconciliation.errors import InvalidStateError, NotFoundError, StorageError
from src.reconciliation.store import DiscrepancyDraft, DiscrepancyStore, storage_guard

logger = logging.getLogger(__name__)

ROW_ERROR_SOURCE = "migration_row_errors"
RECORD_COUNT_FIELD = "record_count"


@dataclass(frozen=True)
class FailedRow:
    """A source row the import pipeline rejected."""

    raw_value: str | None
    error_type: str


@dataclass(frozen=True)
class TimeWindow:
    """Creation-time window of target rows attributed to a run (inclusive)."""

    start: datetime | None
    end: datetime


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of one reconciliation pass."""

    run_id: str
    new_issues: int
    detection_pass: int


class MigrationRunReader(Protocol):
    """Read access to the migration pipeline's records and the target tables."""

    async def get_run(self, run_id: str) -> MigrationRun | None: ...

    async def list_failed_rows(self, run_id: str) -> list[FailedRow]: ...

    async def count_target_rows(self, target: EntityTarget, window: TimeWindow) -> int: ...

    async def natural_key_exists(self, target: EntityTarget, value: str) -> bool: ...


class SqlMigrationRunReader:
    """:class:`MigrationRunReader` over the shared PostgreSQL schema."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_run(self, run_id: str) -> MigrationRun | None:
        with storage_guard(f"loading migration run {run_id}"):
            return await self._session.get(MigrationRun, run_id)

    async def list_failed_rows(self, run_id: str) -> list[FailedRow]:
        query = (
            select(MigrationRowError.raw_value, MigrationRowError.error_type)
            .where(
                MigrationRowError.migration_run_id == run_id,
                MigrationRowError.raw_value.is_not(None),
            )
            .order_by(MigrationRowError.row_number, MigrationRowError.id)
        )
        with storage_guard(f"listing row errors for run {run_id}"):
            result = await self._session.execute(query)
        return [FailedRow(raw_value=raw, error_type=error_type) for raw, error_type in result.all()]

    async def count_target_rows(self, target: EntityTarget, window: TimeWindow) -> int:
        tbl = target.clause()
        created = tbl.c[target.created_column]
        query = select(func.count()).select_from(tbl).where(created <= window.end)
        if window.start is not None:
            query = query.where(created >= window.start)
        with storage_guard(f"counting {target.table_name} rows"):
            result = await self._session.execute(query)
        return int(result.scalar() or 0)

    async def natural_key_exists(self, target: EntityTarget, value: str) -> bool:
        tbl = target.clause()
        key = tbl.c[target.natural_key]
        with storage_guard(f"looking up {target.table_name}.{target.natural_key}"):
            result = await self._session.execute(select(key).where(key == value).limit(1))
        return result.scalar_one_or_none() is not None


@dataclass(frozen=True)
class SeverityPolicy:
    """Severity assignment for discrepancies produced by the runner.

    Args:
        critical_pct: Count gaps strictly above this percentage of the
            source count are critical.
        safety_critical: Entity types whose missing rows are critical.
    """

    critical_pct: float = 5.0
    safety_critical: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls, settings: Settings) -> SeverityPolicy:
        return cls(
            critical_pct=settings.count_mismatch_critical_pct,
            safety_critical=frozenset(settings.safety_critical_entity_types),
        )

    def row_error_severity(self, entity_type: str) -> Severity:
        return Severity.CRITICAL if entity_type.lower() in self.safety_critical else Severity.WARNING

    @staticmethod
    def difference_pct(source_count: int, target_count: int) -> float:
        if source_count == 0:
            return 0.0 if target_count == 0 else 100.0
        return abs(source_count - target_count) / source_count * 100

    def count_mismatch_severity(self, source_count: int, target_count: int) -> Severity:
        if self.difference_pct(source_count, target_count) > self.critical_pct:
            return Severity.CRITICAL
        return Severity.WARNING


class ReconciliationRunner:
    """Drive one reconciliation pass per call."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        reader: MigrationRunReader | None = None,
        policy: SeverityPolicy | None = None,
        registry: EntityRegistry | None = None,
        store: DiscrepancyStore | None = None,
    ) -> None:
        self._session = session
        self._reader = reader or SqlMigrationRunReader(session)
        self._policy = policy or SeverityPolicy()
        self._registry = registry or default_registry()
        self._store = store or DiscrepancyStore(session)

    async def run_reconciliation(self, run_id: str) -> ReconciliationOutcome:
        """Reconcile a completed migration run and return the inserted count.

        Raises:
            NotFoundError: The migration run does not exist.
            InvalidStateError: The run is not complete, or its entity type has
                no registered target table.
        """
        run = await self._reader.get_run(run_id)
        if run is None:
            raise NotFoundError("migration run not found")
        if not run.is_complete:
            raise InvalidStateError("migration run is not complete")
        target = self._registry.get(run.entity_type)
        if target is None:
            raise InvalidStateError(f"no reconciliation target for entity type {run.entity_type}")

        try:
            summary = await self._get_or_create_summary(run_id, target)
            summary.pass_count += 1
            detection_pass = summary.pass_count

            missing = await self._reconcile_row_errors(run_id, target, detection_pass)
            source_count, target_count, count_issue = await self._reconcile_counts(run, target, detection_pass)
            new_issues = missing + count_issue

            summary.source_count = source_count
            summary.target_count = target_count
            summary.mismatch_count = new_issues
            summary.updated_at = datetime.now(UTC)
            summary.summary = {
                "migration_run_id": run_id,
                "entity_type": target.name,
                "detection_pass": detection_pass,
                "missing_in_target": missing,
                "count_mismatch": bool(count_issue),
                "new_discrepancies": new_issues,
                "reconciled_at": summary.updated_at.isoformat(),
            }
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise StorageError(f"storage failure while reconciling run {run_id}") from exc
        except Exception:
            await self._session.rollback()
            raise

        logger.info(
            "Reconciliation pass complete: run=%s entity=%s pass=%d new_issues=%d",
            run_id,
            target.name,
            detection_pass,
            new_issues,
        )
        return ReconciliationOutcome(run_id=run_id, new_issues=new_issues, detection_pass=detection_pass)

    async def _get_or_create_summary(self, run_id: str, target: EntityTarget) -> ParallelRunSummary:
        result = await self._session.execute(
            select(ParallelRunSummary).where(ParallelRunSummary.migration_run_id == run_id)
        )
        summary = result.scalar_one_or_none()
        if summary is None:
            summary = ParallelRunSummary(
                migration_run_id=run_id,
                comparison_type=f"reconciliation_{target.name}",
                pass_count=0,
                mismatch_count=0,
                source_count=0,
                target_count=0,
            )
            self._session.add(summary)
            await self._session.flush()
        return summary

    async def _reconcile_row_errors(self, run_id: str, target: EntityTarget, detection_pass: int) -> int:
        inserted = 0
        severity = self._policy.row_error_severity(target.name)
        for row in await self._reader.list_failed_rows(run_id):
            if not row.raw_value:
                continue
            if await self._reader.natural_key_exists(target, row.raw_value):
                continue
            await self._store.insert(
                DiscrepancyDraft(
                    run_id=run_id,
                    entity_type=target.name,
                    entity_id=row.raw_value,
                    discrepancy_type=DiscrepancyType.MISSING_IN_TARGET,
                    severity=severity,
                    field_name=target.natural_key,
                    source_value=row.raw_value,
                    details={"error_type": row.error_type, "source": ROW_ERROR_SOURCE},
                    detection_pass=detection_pass,
                )
            )
            inserted += 1
        return inserted

    async def _reconcile_counts(
        self,
        run: MigrationRun,
        target: EntityTarget,
        detection_pass: int,
    ) -> tuple[int, int, int]:
        window = TimeWindow(start=run.started_at, end=run.completed_at or datetime.now(UTC))
        source_count = run.imported_rows or 0
        target_count = await self._reader.count_target_rows(target, window)
        if source_count == target_count:
            return source_count, target_count, 0

        await self._store.insert(
            DiscrepancyDraft(
                run_id=run.id,
                entity_type=target.name,
                entity_id=f"run:{run.id}",
                discrepancy_type=DiscrepancyType.COUNT_MISMATCH,
                severity=self._policy.count_mismatch_severity(source_count, target_count),
                field_name=RECORD_COUNT_FIELD,
                source_value=str(source_count),
                target_value=str(target_count),
                details={
                    "source_count": source_count,
                    "target_count": target_count,
                    "difference": source_count - target_count,
                    "difference_pct": round(self._policy.difference_pct(source_count, target_count), 2),
                },
                detection_pass=detection_pass,
            )
        )
        return source_count, target_count, 1
