"""Tests for the reconciliation CLI."""

from __future__ import annotations

import argparse
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.reconciliation import cli
from src.reconciliation.errors import NotFoundError
from src.reconciliation.readiness import ChecklistItem, GoLiveChecklist
from src.reconciliation.runner import ReconciliationOutcome


class TestParseArgs:
    def test_reconcile(self) -> None:
        args = cli._parse_args(["reconcile", "mig-run-1"])

        assert args.command == "reconcile"
        assert args.run_id == "mig-run-1"
        assert args.log_level == "INFO"

    def test_duplicates_with_promote(self) -> None:
        args = cli._parse_args(["--log-level", "DEBUG", "duplicates", "customers", "--promote"])

        assert args.command == "duplicates"
        assert args.entity_type == "customers"
        assert args.promote is True
        assert args.log_level == "DEBUG"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            cli._parse_args([])


class TestCommands:
    @pytest.mark.asyncio
    async def test_reconcile_prints_outcome(
        self, mock_db_session: AsyncMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        outcome = ReconciliationOutcome(run_id="mig-run-1", new_issues=2, detection_pass=1)
        with patch.object(cli.ReconciliationRunner, "run_reconciliation", AsyncMock(return_value=outcome)):
            code = await cli._reconcile(mock_db_session, argparse.Namespace(run_id="mig-run-1"))

        assert code == 0
        assert "New discrepancies:  2" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unsupported_duplicate_entity(
        self, mock_db_session: AsyncMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = await cli._duplicates(mock_db_session, argparse.Namespace(entity_type="locomotives", promote=False))

        assert code == 2
        assert "Unsupported entity type" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_readiness_exit_code_follows_checklist(self, mock_db_session: AsyncMock) -> None:
        checklist = GoLiveChecklist(
            items=[ChecklistItem(check="minimumRuns", label="Minimum 10 runs", passed=False, value="3", target="10")],
            overall=False,
        )
        with patch.object(cli.ReadinessScorer, "get_go_live_checklist", AsyncMock(return_value=checklist)):
            code = await cli._readiness(mock_db_session, argparse.Namespace())

        assert code == 1

    @pytest.mark.asyncio
    async def test_run_reports_engine_errors(self, mock_session_factory: MagicMock) -> None:
        engine = MagicMock()
        engine.dispose = AsyncMock()
        failing = AsyncMock(side_effect=NotFoundError("migration run not found"))

        with (
            patch.object(cli, "create_engine", return_value=(engine, mock_session_factory)),
            patch.dict(cli._COMMANDS, {"reconcile": failing}),
        ):
            code = await cli._run(argparse.Namespace(command="reconcile", run_id="nope"))

        assert code == 1
        engine.dispose.assert_awaited_once()

    def test_main_exits_with_command_code(self) -> None:
        with patch.object(cli, "_run", AsyncMock(return_value=0)), pytest.raises(SystemExit) as exc_info:
            cli.main(["readiness"])

        assert exc_info.value.code == 0
