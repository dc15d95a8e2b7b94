"""Go-live readiness: parallel-run health score and checklist.

Both views are derived from the same snapshot of discrepancy and
reconciliation-run statistics, so ``go_live_ready`` on the health score
always equals ``overall`` on the checklist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.core.models import MigrationRun, ParallelRunSummary, Severity
from src.reconciliation.entities import EntityRegistry, default_registry
from src.reconciliation.store import DiscrepancyStore, storage_guard

logger = logging.getLogger(__name__)

RESOLUTION_WEIGHT = 0.5
CRITICAL_WEIGHT = 0.3
COVERAGE_WEIGHT = 0.2
CRITICAL_PENALTY = 20


@dataclass(frozen=True)
class ReadinessSnapshot:
    open_critical: int
    open_warning: int
    total_discrepancies: int
    resolved_discrepancies: int
    total_runs: int
    first_run_date: date | None
    reconciled_entity_types: frozenset[str]
    registered_entity_types: tuple[str, ...]
    as_of: date

    @property
    def resolution_rate(self) -> int:
        if self.total_discrepancies == 0:
            return 100
        return round(self.resolved_discrepancies / self.total_discrepancies * 100)

    @property
    def days_in_parallel(self) -> int:
        if self.first_run_date is None:
            return 0
        return max(0, (self.as_of - self.first_run_date).days)

    @property
    def coverage_pct(self) -> int:
        if not self.registered_entity_types:
            return 0
        covered = sum(1 for name in self.registered_entity_types if name in self.reconciled_entity_types)
        return round(covered / len(self.registered_entity_types) * 100)

    @property
    def missing_entity_types(self) -> list[str]:
        return [name for name in self.registered_entity_types if name not in self.reconciled_entity_types]


@dataclass
class HealthScore:
    overall_score: int
    resolution_rate: int
    coverage_pct: int
    open_critical: int
    open_warning: int
    total_runs: int
    days_in_parallel: int
    go_live_ready: bool


@dataclass
class ChecklistItem:
    check: str
    label: str
    passed: bool
    value: str
    target: str


@dataclass
class GoLiveChecklist:
    items: list[ChecklistItem] = field(default_factory=list)
    overall: bool = False


class ReadinessScorer:
    """Score how close the parallel run is to cut-over."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        registry: EntityRegistry | None = None,
        store: DiscrepancyStore | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._registry = registry or default_registry()
        self._store = store or DiscrepancyStore(session)

    async def snapshot(self, as_of: date | None = None) -> ReadinessSnapshot:
        by_severity = await self._store.count_by_severity()
        total, resolved = await self._store.count_resolution_totals()

        with storage_guard("reading reconciliation run statistics"):
            run_stats = await self._session.execute(
                select(func.count(ParallelRunSummary.id), func.min(ParallelRunSummary.run_date))
            )
            total_runs, first_run_date = run_stats.one()

            reconciled_rows = await self._session.execute(
                select(MigrationRun.entity_type)
                .join(ParallelRunSummary, ParallelRunSummary.migration_run_id == MigrationRun.id)
                .distinct()
            )
        reconciled: set[str] = set()
        for (entity_type,) in reconciled_rows.all():
            target = self._registry.get(entity_type)
            if target is not None:
                reconciled.add(target.name)

        return ReadinessSnapshot(
            open_critical=by_severity.get(Severity.CRITICAL.value, 0),
            open_warning=by_severity.get(Severity.WARNING.value, 0),
            total_discrepancies=total,
            resolved_discrepancies=resolved,
            total_runs=int(total_runs or 0),
            first_run_date=first_run_date,
            reconciled_entity_types=frozenset(reconciled),
            registered_entity_types=tuple(self._registry.names()),
            as_of=as_of or datetime.now(UTC).date(),
        )

    def build_checklist(self, snap: ReadinessSnapshot) -> GoLiveChecklist:
        s = self._settings
        items = [
            ChecklistItem(
                check="noCriticalDiscrepancies",
                label="No unresolved critical discrepancies",
                passed=snap.open_critical == 0,
                value=str(snap.open_critical),
                target="0",
            ),
            ChecklistItem(
                check="resolutionRate",
                label=f"Discrepancy resolution rate >= {s.golive_min_resolution_rate}%",
                passed=snap.resolution_rate >= s.golive_min_resolution_rate,
                value=f"{snap.resolution_rate}%",
                target=f"{s.golive_min_resolution_rate}%",
            ),
            ChecklistItem(
                check="minimumParallelDays",
                label=f"Minimum {s.golive_min_parallel_days} days of parallel running",
                passed=snap.days_in_parallel >= s.golive_min_parallel_days,
                value=f"{snap.days_in_parallel} days",
                target=f"{s.golive_min_parallel_days} days",
            ),
            ChecklistItem(
                check="minimumRuns",
                label=f"Minimum {s.golive_min_runs} reconciliation runs",
                passed=snap.total_runs >= s.golive_min_runs,
                value=str(snap.total_runs),
                target=str(s.golive_min_runs),
            ),
            ChecklistItem(
                check="allEntitiesReconciled",
                label="Every entity type reconciled at least once",
                passed=not snap.missing_entity_types,
                value=f"{snap.coverage_pct}%",
                target="100%",
            ),
        ]
        return GoLiveChecklist(items=items, overall=all(item.passed for item in items))

    def build_health_score(self, snap: ReadinessSnapshot) -> HealthScore:
        critical_component = max(0, 100 - CRITICAL_PENALTY * snap.open_critical)
        overall = round(
            RESOLUTION_WEIGHT * snap.resolution_rate
            + CRITICAL_WEIGHT * critical_component
            + COVERAGE_WEIGHT * snap.coverage_pct
        )
        return HealthScore(
            overall_score=overall,
            resolution_rate=snap.resolution_rate,
            coverage_pct=snap.coverage_pct,
            open_critical=snap.open_critical,
            open_warning=snap.open_warning,
            total_runs=snap.total_runs,
            days_in_parallel=snap.days_in_parallel,
            go_live_ready=self.build_checklist(snap).overall,
        )

    async def get_health_score(self) -> HealthScore:
        score = self.build_health_score(await self.snapshot())
        logger.debug("Health score computed: overall=%d ready=%s", score.overall_score, score.go_live_ready)
        return score

    async def get_go_live_checklist(self) -> GoLiveChecklist:
        return self.build_checklist(await self.snapshot())
