"""CLI entry point for reconciliation jobs.

Usage::

    python -m src.reconciliation.cli reconcile <run_id>
    python -m src.reconciliation.cli duplicates <entity_type> [--promote]
    python -m src.reconciliation.cli readiness

Each command opens its own engine from settings, runs one operation and
prints a human-readable summary to stdout. The exit code is non-zero when
the operation fails or, for ``readiness``, when go-live criteria are not met.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.database import create_engine
from src.reconciliation.duplicates import DuplicateCandidate, DuplicateDetector, SqlRecordSource, candidate_to_draft
from src.reconciliation.errors import ReconciliationError
from src.reconciliation.readiness import ReadinessScorer
from src.reconciliation.runner import ReconciliationRunner, SeverityPolicy
from src.reconciliation.store import DiscrepancyStore

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="reconciliation_cli",
        description="Run data reconciliation jobs against the RailSync database.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    reconcile = commands.add_parser("reconcile", help="Reconcile a completed migration run.")
    reconcile.add_argument("run_id", help="ID of the migration run to reconcile.")

    duplicates = commands.add_parser("duplicates", help="Detect duplicate records for an entity type.")
    duplicates.add_argument("entity_type", help="Entity type, e.g. customers or cars.")
    duplicates.add_argument(
        "--promote",
        action="store_true",
        default=False,
        help="Record every candidate as a duplicate discrepancy.",
    )

    commands.add_parser("readiness", help="Print the go-live checklist.")
    return parser.parse_args(argv)


def _print_candidates(entity_type: str, candidates: list[DuplicateCandidate]) -> None:
    print(f"\nDuplicate candidates for {entity_type}: {len(candidates)}")
    print("-" * 60)
    for c in candidates:
        fields = ", ".join(c.matched_fields)
        print(f"  {c.match_confidence:.2f}  {c.entity_a_label} <-> {c.entity_b_label}  [{fields}]")
    print()


async def _reconcile(session: AsyncSession, args: argparse.Namespace) -> int:
    settings = get_settings()
    runner = ReconciliationRunner(session, policy=SeverityPolicy.from_settings(settings))
    outcome = await runner.run_reconciliation(args.run_id)
    print(f"\nReconciliation of run {outcome.run_id} (pass {outcome.detection_pass})")
    print("-" * 60)
    print(f"  New discrepancies:  {outcome.new_issues}")
    print()
    return 0


async def _duplicates(session: AsyncSession, args: argparse.Namespace) -> int:
    detector = DuplicateDetector(SqlRecordSource(session), settings=get_settings())
    if not detector.supports(args.entity_type):
        print(f"Unsupported entity type for duplicate detection: {args.entity_type}", file=sys.stderr)
        return 2

    candidates = await detector.detect_duplicates(args.entity_type)
    _print_candidates(args.entity_type, candidates)

    if args.promote and candidates:
        store = DiscrepancyStore(session)
        for candidate in candidates:
            await store.insert(candidate_to_draft(candidate))
        await session.commit()
        logger.info("Promoted %d duplicate candidates to discrepancies", len(candidates))
    return 0


async def _readiness(session: AsyncSession, args: argparse.Namespace) -> int:
    checklist = await ReadinessScorer(session, get_settings()).get_go_live_checklist()
    print("\nGo-live checklist")
    print("-" * 60)
    for item in checklist.items:
        mark = "PASS" if item.passed else "FAIL"
        print(f"  [{mark}] {item.label}: {item.value} (target {item.target})")
    print(f"\n  Ready for go-live: {'yes' if checklist.overall else 'no'}\n")
    return 0 if checklist.overall else 1


_COMMANDS = {
    "reconcile": _reconcile,
    "duplicates": _duplicates,
    "readiness": _readiness,
}


async def _run(args: argparse.Namespace) -> int:
    """Create a session and execute the selected command."""
    engine, session_factory = create_engine(get_settings())
    try:
        async with session_factory() as session:
            return await _COMMANDS[args.command](session, args)
    except ReconciliationError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        return 1
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    exit_code = asyncio.run(_run(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
