"""Resolution workflow for discrepancies.

Transitions discrepancies from open to resolved, singly or in bulk, and
emits one audit transition per resolution. Bulk resolution is strictly
all-or-nothing: any missing or already-resolved id rolls back the batch.

Audit emission is best-effort. It runs after the commit and a failure is
logged without undoing the resolution.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import TransitionLogger, TransitionRecord
from src.core.models import Discrepancy, ResolutionAction
from src.reconciliation.errors import AlreadyResolvedError, InvalidArgumentError, NotFoundError
from src.reconciliation.store import DiscrepancyStore

logger = logging.getLogger(__name__)

PROCESS_TYPE = "data_reconciliation"
OPEN_STATE = "open"


@dataclass(frozen=True)
class Resolution:
    """Operator decision applied to one or more discrepancies."""

    action: ResolutionAction
    notes: str | None = None


@dataclass
class BulkResolution:
    """Outcome of a bulk resolve; ``resolved_ids`` follows input order."""

    resolved_count: int = 0
    resolved_ids: list[str] = field(default_factory=list)


def resolved_state(action: ResolutionAction) -> str:
    return f"resolved:{action.value}"


class ResolutionWorkflow:
    """Resolve discrepancies with persistence and audit exactly once."""

    def __init__(
        self,
        session: AsyncSession,
        transition_logger: TransitionLogger,
        store: DiscrepancyStore | None = None,
    ) -> None:
        self._session = session
        self._transitions = transition_logger
        self._store = store or DiscrepancyStore(session)

    async def resolve_discrepancy(
        self,
        discrepancy_id: str,
        resolution: Resolution,
        actor_id: str,
    ) -> Discrepancy:
        """Resolve a single open discrepancy.

        Raises:
            NotFoundError: The discrepancy does not exist.
            AlreadyResolvedError: The discrepancy is already resolved.
        """
        try:
            existing = await self._check_open(discrepancy_id)
            resolved = await self._store.mark_resolved(
                discrepancy_id,
                resolution.action,
                resolution.notes,
                actor_id,
                datetime.now(UTC),
            )
        except Exception:
            await self._session.rollback()
            raise
        await self._session.commit()

        logger.info(
            "Discrepancy resolved: id=%s action=%s actor=%s",
            discrepancy_id,
            resolution.action.value,
            actor_id,
        )
        await self._emit_transition(existing.entity_id, discrepancy_id, resolution, actor_id)
        return resolved

    async def bulk_resolve_discrepancies(
        self,
        discrepancy_ids: Sequence[str],
        resolution: Resolution,
        actor_id: str,
    ) -> BulkResolution:
        """Resolve every id in one transaction or none of them.

        Raises:
            InvalidArgumentError: ``discrepancy_ids`` is empty or repeats an id.
            NotFoundError: Any id does not exist (batch rolled back).
            AlreadyResolvedError: Any id is already resolved (batch rolled back).
        """
        if not discrepancy_ids:
            raise InvalidArgumentError("No discrepancy IDs provided")
        repeated = sorted(i for i, n in Counter(discrepancy_ids).items() if n > 1)
        if repeated:
            raise InvalidArgumentError(f"Duplicate discrepancy IDs provided: {', '.join(repeated)}")

        timestamp = datetime.now(UTC)
        entity_ids: list[str] = []
        try:
            for discrepancy_id in discrepancy_ids:
                existing = await self._check_open(discrepancy_id)
                entity_ids.append(existing.entity_id)
                await self._store.mark_resolved(
                    discrepancy_id,
                    resolution.action,
                    resolution.notes,
                    actor_id,
                    timestamp,
                )
        except Exception:
            await self._session.rollback()
            logger.warning(
                "Bulk resolution aborted: %d ids, action=%s actor=%s",
                len(discrepancy_ids),
                resolution.action.value,
                actor_id,
            )
            raise
        await self._session.commit()

        result = BulkResolution(resolved_count=len(discrepancy_ids), resolved_ids=list(discrepancy_ids))
        logger.info(
            "Bulk resolution committed: count=%d action=%s actor=%s",
            result.resolved_count,
            resolution.action.value,
            actor_id,
        )
        for discrepancy_id, entity_id in zip(discrepancy_ids, entity_ids, strict=True):
            await self._emit_transition(entity_id, discrepancy_id, resolution, actor_id)
        return result

    async def _check_open(self, discrepancy_id: str) -> Discrepancy:
        existing = await self._store.get(discrepancy_id)
        if existing is None:
            raise NotFoundError(f"discrepancy {discrepancy_id} not found")
        if existing.is_resolved:
            raise AlreadyResolvedError(f"discrepancy {discrepancy_id} already resolved")
        return existing

    async def _emit_transition(
        self,
        entity_number: str,
        discrepancy_id: str,
        resolution: Resolution,
        actor_id: str,
    ) -> None:
        record = TransitionRecord(
            process_type=PROCESS_TYPE,
            entity_id=discrepancy_id,
            entity_number=entity_number,
            from_state=OPEN_STATE,
            to_state=resolved_state(resolution.action),
            actor_id=actor_id,
            notes=resolution.notes or f"Resolved via {resolution.action.value}",
            is_reversible=True,
        )
        try:
            await self._transitions.log(record)
        except Exception:  # Intentionally broad: audit is fire-and-forget
            logger.exception(
                "Failed to record audit transition for discrepancy %s (resolution kept)",
                discrepancy_id,
            )
