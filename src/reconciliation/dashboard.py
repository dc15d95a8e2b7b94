"""Dashboard aggregation over open discrepancies."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from src.core.models import SEVERITY_RANK, Severity
from src.reconciliation.store import DiscrepancyStore


@dataclass
class DashboardSummary:
    """Open discrepancy totals; each bucket list sums to ``total_discrepancies``."""

    total_discrepancies: int = 0
    by_severity: list[dict[str, Any]] = field(default_factory=list)
    by_entity_type: list[dict[str, Any]] = field(default_factory=list)
    by_discrepancy_type: list[dict[str, Any]] = field(default_factory=list)


def _severity_sort_key(item: tuple[str, int]) -> tuple[int, str]:
    name = item[0]
    try:
        rank = SEVERITY_RANK[Severity(name)]
    except ValueError:
        rank = len(SEVERITY_RANK) + 1
    return rank, name


def _by_count(counts: Counter[str], dimension: str) -> list[dict[str, Any]]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{dimension: name, "count": count} for name, count in ordered]


class DashboardAggregator:
    """Build the reconciliation dashboard from one grouped read of the store."""

    def __init__(self, store: DiscrepancyStore) -> None:
        self._store = store

    async def get_dashboard(self) -> DashboardSummary:
        rows = await self._store.count_open_breakdown()

        severities: Counter[str] = Counter()
        entity_types: Counter[str] = Counter()
        discrepancy_types: Counter[str] = Counter()
        for row in rows:
            severities[row.severity] += row.count
            entity_types[row.entity_type] += row.count
            discrepancy_types[row.discrepancy_type] += row.count

        return DashboardSummary(
            total_discrepancies=sum(row.count for row in rows),
            by_severity=[
                {"severity": name, "count": count}
                for name, count in sorted(severities.items(), key=_severity_sort_key)
            ],
            by_entity_type=_by_count(entity_types, "entity_type"),
            by_discrepancy_type=_by_count(discrepancy_types, "discrepancy_type"),
        )
