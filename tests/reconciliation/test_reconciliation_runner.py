"""Tests for the reconciliation runner and its severity policy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import Settings
from src.core.models import Discrepancy, DiscrepancyType, ParallelRunSummary, Severity
from src.reconciliation.errors import InvalidStateError, NotFoundError, StorageError
from src.reconciliation.runner import (
    ReconciliationRunner,
    SeverityPolicy,
    SqlMigrationRunReader,
    TimeWindow,
)
from tests.factories import add_migration_run, add_target_rows, cars_table, numbered_cars

STARTED = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
COMPLETED = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
INSIDE = datetime(2026, 3, 1, 8, 30, tzinfo=UTC)


async def _discrepancies(factory: async_sessionmaker[AsyncSession], run_id: str) -> list[Discrepancy]:
    async with factory() as session:
        result = await session.execute(
            select(Discrepancy).where(Discrepancy.run_id == run_id).order_by(Discrepancy.discrepancy_type)
        )
        return list(result.scalars().all())


class TestSeverityPolicy:
    def test_exactly_at_threshold_is_warning(self) -> None:
        assert SeverityPolicy(critical_pct=5.0).count_mismatch_severity(100, 95) == Severity.WARNING

    def test_above_threshold_is_critical(self) -> None:
        assert SeverityPolicy(critical_pct=5.0).count_mismatch_severity(100, 94) == Severity.CRITICAL

    def test_surplus_in_target_uses_absolute_difference(self) -> None:
        assert SeverityPolicy(critical_pct=5.0).count_mismatch_severity(100, 110) == Severity.CRITICAL

    def test_empty_source_with_target_rows_is_full_difference(self) -> None:
        assert SeverityPolicy.difference_pct(0, 3) == 100.0
        assert SeverityPolicy.difference_pct(0, 0) == 0.0

    def test_row_error_severity_by_entity_type(self) -> None:
        policy = SeverityPolicy(safety_critical=frozenset({"cars"}))
        assert policy.row_error_severity("cars") == Severity.CRITICAL
        assert policy.row_error_severity("allocations") == Severity.WARNING

    def test_from_settings(self, test_settings: Settings) -> None:
        policy = SeverityPolicy.from_settings(test_settings)
        assert policy.critical_pct == test_settings.count_mismatch_critical_pct
        assert "cars" in policy.safety_critical


class TestRunReconciliation:
    @pytest.mark.asyncio
    async def test_missing_row_and_count_gap(
        self,
        db_session: AsyncSession,
        db_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await add_migration_run(
            db_session,
            "mig-run-1",
            entity_type="cars",
            imported_rows=100,
            started_at=STARTED,
            completed_at=COMPLETED,
            failed_rows=[("UTLX_BAD_001", "invalid_car_mark")],
        )
        await add_target_rows(db_session, cars_table, numbered_cars(95, "utlx", INSIDE))

        outcome = await ReconciliationRunner(db_session).run_reconciliation("mig-run-1")

        assert outcome.new_issues == 2
        assert outcome.detection_pass == 1

        count_issue, missing = await _discrepancies(db_session_factory, "mig-run-1")
        assert missing.discrepancy_type == DiscrepancyType.MISSING_IN_TARGET
        assert missing.entity_id == "UTLX_BAD_001"
        assert missing.field_name == "car_number"
        assert missing.details == {"error_type": "invalid_car_mark", "source": "migration_row_errors"}
        assert missing.detection_pass == 1

        assert count_issue.discrepancy_type == DiscrepancyType.COUNT_MISMATCH
        assert count_issue.severity == Severity.WARNING
        assert count_issue.entity_id == "run:mig-run-1"
        assert count_issue.source_value == "100"
        assert count_issue.target_value == "95"
        assert count_issue.details == {
            "source_count": 100,
            "target_count": 95,
            "difference": 5,
            "difference_pct": 5.0,
        }

    @pytest.mark.asyncio
    async def test_rows_outside_window_are_not_counted(self, db_session: AsyncSession) -> None:
        await add_migration_run(db_session, "run-w", imported_rows=3, started_at=STARTED, completed_at=COMPLETED)
        await add_target_rows(db_session, cars_table, numbered_cars(3, "in", INSIDE))
        await add_target_rows(db_session, cars_table, numbered_cars(2, "before", STARTED - timedelta(days=1)))
        await add_target_rows(db_session, cars_table, numbered_cars(2, "after", COMPLETED + timedelta(minutes=1)))

        outcome = await ReconciliationRunner(db_session).run_reconciliation("run-w")

        assert outcome.new_issues == 0

    @pytest.mark.asyncio
    async def test_failed_row_present_in_target_is_not_reported(self, db_session: AsyncSession) -> None:
        await add_migration_run(
            db_session,
            "run-p",
            imported_rows=1,
            started_at=STARTED,
            completed_at=COMPLETED,
            failed_rows=[("GATX0001", "duplicate_key"), (None, "blank_row")],
        )
        await add_target_rows(db_session, cars_table, [{"id": "c1", "car_number": "GATX0001", "created_at": INSIDE}])

        outcome = await ReconciliationRunner(db_session).run_reconciliation("run-p")

        assert outcome.new_issues == 0

    @pytest.mark.asyncio
    async def test_safety_critical_missing_rows_are_critical(
        self,
        db_session: AsyncSession,
        db_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await add_migration_run(
            db_session,
            "run-c",
            failed_rows=[("TILX0009", "invalid_car_mark")],
            started_at=STARTED,
            completed_at=COMPLETED,
        )
        runner = ReconciliationRunner(db_session, policy=SeverityPolicy(safety_critical=frozenset({"cars"})))

        outcome = await runner.run_reconciliation("run-c")

        assert outcome.new_issues == 1
        (missing,) = await _discrepancies(db_session_factory, "run-c")
        assert missing.severity == Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_singular_entity_type_resolves_to_target(self, db_session: AsyncSession) -> None:
        await add_migration_run(
            db_session, "run-s", entity_type="car", imported_rows=0, started_at=STARTED, completed_at=COMPLETED
        )

        outcome = await ReconciliationRunner(db_session).run_reconciliation("run-s")

        assert outcome.new_issues == 0

    @pytest.mark.asyncio
    async def test_rerun_inserts_again_with_next_pass(
        self,
        db_session: AsyncSession,
        db_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await add_migration_run(
            db_session,
            "run-r",
            failed_rows=[("UTLX_BAD_002", "invalid_car_mark")],
            started_at=STARTED,
            completed_at=COMPLETED,
        )
        runner = ReconciliationRunner(db_session)

        first = await runner.run_reconciliation("run-r")
        second = await runner.run_reconciliation("run-r")

        assert (first.detection_pass, second.detection_pass) == (1, 2)
        rows = await _discrepancies(db_session_factory, "run-r")
        assert sorted(d.detection_pass for d in rows) == [1, 2]

        async with db_session_factory() as session:
            summary = (
                await session.execute(select(ParallelRunSummary).where(ParallelRunSummary.migration_run_id == "run-r"))
            ).scalar_one()
        assert summary.pass_count == 2
        assert summary.mismatch_count == 1
        assert summary.comparison_type == "reconciliation_cars"

    @pytest.mark.asyncio
    async def test_unknown_run_raises_not_found(self, db_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError, match="migration run not found"):
            await ReconciliationRunner(db_session).run_reconciliation("nope")

    @pytest.mark.asyncio
    async def test_incomplete_run_is_rejected_without_writes(
        self,
        db_session: AsyncSession,
        db_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await add_migration_run(db_session, "run-i", status="importing", failed_rows=[("UTLX1", "bad")])

        with pytest.raises(InvalidStateError, match="not complete"):
            await ReconciliationRunner(db_session).run_reconciliation("run-i")

        assert await _discrepancies(db_session_factory, "run-i") == []

    @pytest.mark.asyncio
    async def test_unregistered_entity_type_is_rejected(self, db_session: AsyncSession) -> None:
        await add_migration_run(db_session, "run-u", entity_type="locomotives")

        with pytest.raises(InvalidStateError, match="locomotives"):
            await ReconciliationRunner(db_session).run_reconciliation("run-u")

    @pytest.mark.asyncio
    async def test_failure_midway_leaves_no_partial_writes(
        self,
        db_session: AsyncSession,
        db_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await add_migration_run(
            db_session,
            "run-f",
            imported_rows=10,
            failed_rows=[("UTLX_BAD_003", "invalid_car_mark")],
            started_at=STARTED,
            completed_at=COMPLETED,
        )
        reader = SqlMigrationRunReader(db_session)
        reader.count_target_rows = AsyncMock(  # type: ignore[method-assign]
            side_effect=OperationalError("SELECT", {}, Exception("connection lost"))
        )

        with pytest.raises(StorageError):
            await ReconciliationRunner(db_session, reader=reader).run_reconciliation("run-f")

        assert await _discrepancies(db_session_factory, "run-f") == []


class TestRunnerWithStubReader:
    @pytest.mark.asyncio
    async def test_count_window_uses_run_timestamps(self, mock_db_session: AsyncMock) -> None:
        run = MagicMock(
            id="run-x",
            status="complete",
            entity_type="cars",
            imported_rows=0,
            started_at=STARTED,
            completed_at=COMPLETED,
        )
        reader = AsyncMock()
        reader.get_run.return_value = run
        reader.list_failed_rows.return_value = []
        reader.count_target_rows.return_value = 0
        summary = ParallelRunSummary(migration_run_id="run-x", comparison_type="reconciliation_cars", pass_count=0)
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = summary

        outcome = await ReconciliationRunner(mock_db_session, reader=reader).run_reconciliation("run-x")

        target, window = reader.count_target_rows.call_args.args
        assert target.name == "cars"
        assert window == TimeWindow(start=STARTED, end=COMPLETED)
        assert outcome.new_issues == 0
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_incomplete_run_reported_by_model_is_rejected(self, mock_db_session: AsyncMock) -> None:
        reader = AsyncMock()
        reader.get_run.return_value = MagicMock(id="run-y", status="importing", is_complete=False)

        with pytest.raises(InvalidStateError, match="not complete"):
            await ReconciliationRunner(mock_db_session, reader=reader).run_reconciliation("run-y")

        reader.list_failed_rows.assert_not_called()
        mock_db_session.commit.assert_not_called()
