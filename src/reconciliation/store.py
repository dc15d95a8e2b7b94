"""Discrepancy store: persistence and invariant-preserving access.

All reads and writes of ``parallel_run_discrepancies`` go through
:class:`DiscrepancyStore`. The store never commits; transaction boundaries
belong to the caller (resolution workflow, reconciliation runner, route).

``mark_resolved`` is the only mutation and is a single conditional UPDATE
(``WHERE resolved_at IS NULL``) checked for exactly one affected row, so two
concurrent resolutions of the same id yield one success and one
``AlreadyResolvedError``.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from src.core.models import (
    SEVERITY_RANK,
    Discrepancy,
    DiscrepancyStatus,
    DiscrepancyType,
    ResolutionAction,
    Severity,
)
from src.reconciliation.errors import AlreadyResolvedError, NotFoundError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class DiscrepancyDraft:
    """Fields of a new discrepancy. Resolution state is never part of a draft."""

    entity_type: str
    entity_id: str
    discrepancy_type: DiscrepancyType
    severity: Severity
    run_id: str | None = None
    field_name: str | None = None
    source_value: str | None = None
    target_value: str | None = None
    details: dict[str, Any] | None = None
    detection_pass: int | None = None


@dataclass(frozen=True)
class DiscrepancyFilter:
    """Listing filters. ``status`` defaults to open (unresolved) discrepancies."""

    entity_type: str | None = None
    severity: Severity | None = None
    discrepancy_type: DiscrepancyType | None = None
    status: DiscrepancyStatus = DiscrepancyStatus.OPEN
    search: str | None = None


@dataclass(frozen=True)
class BreakdownRow:
    """Open discrepancy count for one (severity, entity type, type) combination."""

    severity: str
    entity_type: str
    discrepancy_type: str
    count: int


def total_pages(total: int, page_size: int) -> int:
    """Number of pages for ``total`` items; at least one even when empty."""
    return max(1, math.ceil(total / page_size))


def _value(member: Any) -> str:
    return member.value if hasattr(member, "value") else str(member)


@contextmanager
def storage_guard(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into :class:`StorageError`."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure while %s: %s", action, exc)
        raise StorageError(f"storage failure while {action}") from exc


_severity_order = case(
    *[(Discrepancy.severity == severity, rank) for severity, rank in SEVERITY_RANK.items()],
    else_=len(SEVERITY_RANK) + 1,
)

_open = Discrepancy.resolved_at.is_(None)


class DiscrepancyStore:
    """Data access for discrepancy records bound to one session."""

    def __init__(self, session: AsyncSession, *, max_page_size: int = DEFAULT_MAX_PAGE_SIZE) -> None:
        self._session = session
        self._max_page_size = max_page_size

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def insert(self, draft: DiscrepancyDraft) -> str:
        """Create an unresolved discrepancy and return its id."""
        discrepancy = Discrepancy(
            id=str(uuid.uuid4()),
            run_id=draft.run_id,
            entity_type=draft.entity_type,
            entity_id=draft.entity_id,
            discrepancy_type=draft.discrepancy_type,
            severity=draft.severity,
            field_name=draft.field_name,
            source_value=draft.source_value,
            target_value=draft.target_value,
            details=draft.details,
            detection_pass=draft.detection_pass,
        )
        with storage_guard("inserting discrepancy"):
            self._session.add(discrepancy)
            await self._session.flush()
        return discrepancy.id

    async def get(self, discrepancy_id: str) -> Discrepancy | None:
        with storage_guard(f"loading discrepancy {discrepancy_id}"):
            return await self._session.get(Discrepancy, discrepancy_id)

    async def list(
        self,
        filters: DiscrepancyFilter | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> tuple[list[Discrepancy], int]:
        """Return one page of matching discrepancies and the total match count.

        ``page`` is 1-indexed and clamped to at least 1; ``page_size`` is
        clamped to ``[1, max_page_size]``.
        """
        filters = filters or DiscrepancyFilter()
        page = max(1, page)
        page_size = min(self._max_page_size, max(1, page_size))
        conditions = self._conditions(filters)

        count_q = select(func.count()).select_from(Discrepancy).where(*conditions)
        query = (
            select(Discrepancy)
            .where(*conditions)
            .order_by(_severity_order, Discrepancy.created_at.desc(), Discrepancy.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )

        with storage_guard("listing discrepancies"):
            total = (await self._session.execute(count_q)).scalar() or 0
            items = list((await self._session.execute(query)).scalars().all())
        return items, total

    @staticmethod
    def _conditions(filters: DiscrepancyFilter) -> list[Any]:
        conditions: list[Any] = []
        if filters.entity_type:
            conditions.append(Discrepancy.entity_type == filters.entity_type)
        if filters.severity:
            conditions.append(Discrepancy.severity == filters.severity)
        if filters.discrepancy_type:
            conditions.append(Discrepancy.discrepancy_type == filters.discrepancy_type)
        if filters.status == DiscrepancyStatus.OPEN:
            conditions.append(_open)
        elif filters.status == DiscrepancyStatus.RESOLVED:
            conditions.append(Discrepancy.resolved_at.is_not(None))
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    Discrepancy.entity_id.ilike(pattern),
                    Discrepancy.field_name.ilike(pattern),
                    Discrepancy.source_value.ilike(pattern),
                    Discrepancy.target_value.ilike(pattern),
                    Discrepancy.notes.ilike(pattern),
                )
            )
        return conditions

    async def _count_open_by(self, column: InstrumentedAttribute[Any]) -> dict[str, int]:
        query = select(column, func.count()).where(_open).group_by(column)
        with storage_guard(f"counting open discrepancies by {column.key}"):
            rows = (await self._session.execute(query)).all()
        return {_value(key): int(count) for key, count in rows}

    async def count_by_severity(self) -> dict[str, int]:
        return await self._count_open_by(Discrepancy.severity)

    async def count_by_entity_type(self) -> dict[str, int]:
        return await self._count_open_by(Discrepancy.entity_type)

    async def count_by_discrepancy_type(self) -> dict[str, int]:
        return await self._count_open_by(Discrepancy.discrepancy_type)

    async def count_open_breakdown(self) -> Sequence[BreakdownRow]:
        """Open counts grouped by all three dashboard dimensions in one read."""
        dims = (Discrepancy.severity, Discrepancy.entity_type, Discrepancy.discrepancy_type)
        query = select(*dims, func.count()).where(_open).group_by(*dims)
        with storage_guard("aggregating open discrepancies"):
            rows = (await self._session.execute(query)).all()
        return [
            BreakdownRow(
                severity=_value(severity),
                entity_type=entity_type,
                discrepancy_type=_value(discrepancy_type),
                count=int(count),
            )
            for severity, entity_type, discrepancy_type, count in rows
        ]

    async def count_resolution_totals(self) -> tuple[int, int]:
        """Return ``(total, resolved)`` counts across all discrepancies."""
        query = select(
            func.count(),
            func.count(Discrepancy.resolved_at),
        ).select_from(Discrepancy)
        with storage_guard("counting resolution totals"):
            total, resolved = (await self._session.execute(query)).one()
        return int(total or 0), int(resolved or 0)

    async def mark_resolved(
        self,
        discrepancy_id: str,
        resolution_type: ResolutionAction,
        notes: str | None,
        actor_id: str,
        timestamp: datetime,
    ) -> Discrepancy:
        """Atomically resolve one open discrepancy.

        Raises:
            NotFoundError: No discrepancy has this id.
            AlreadyResolvedError: The discrepancy was already resolved.
        """
        values: dict[str, Any] = {
            "resolved_at": timestamp,
            "resolved_by": actor_id,
            "resolution_type": resolution_type,
        }
        if notes is not None:
            values["notes"] = notes

        stmt = (
            update(Discrepancy)
            .where(Discrepancy.id == discrepancy_id, _open)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        with storage_guard(f"resolving discrepancy {discrepancy_id}"):
            result = await self._session.execute(stmt)
            if result.rowcount != 1:
                existing = await self._session.scalar(select(Discrepancy.id).where(Discrepancy.id == discrepancy_id))
                if existing is None:
                    raise NotFoundError(f"discrepancy {discrepancy_id} not found")
                raise AlreadyResolvedError(f"discrepancy {discrepancy_id} already resolved")

            resolved = await self._session.get(Discrepancy, discrepancy_id, populate_existing=True)

        if resolved is None:  # pragma: no cover - row vanished inside our own transaction
            raise NotFoundError(f"discrepancy {discrepancy_id} not found")
        return resolved
