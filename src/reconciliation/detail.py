"""Discrepancy detail view: field comparisons, suggested action, related records and run context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import String, cast, column, or_, select, table
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.models import (
    Discrepancy,
    DiscrepancyType,
    MigrationRun,
    ParallelRunSummary,
    ResolutionAction,
    Severity,
)
from src.reconciliation.entities import EntityRegistry, default_registry
from src.reconciliation.errors import StorageError
from src.reconciliation.store import DiscrepancyStore, storage_guard

logger = logging.getLogger(__name__)

RELATED_LIMIT = 5

# Platform tables that are not reconciled themselves but give context.
shopping_events = table("shopping_events", column("id"), column("car_number"), column("event_type"))
shops = table("shops", column("shop_code"), column("shop_name"))


@dataclass(frozen=True)
class SuggestedResolution:
    action: ResolutionAction
    reason: str


@dataclass(frozen=True)
class RelatedEntity:
    entity_type: str
    entity_id: str
    label: str


@dataclass
class DiscrepancyDetail:
    discrepancy: Discrepancy
    field_comparisons: list[dict[str, Any]] = field(default_factory=list)
    suggested_resolution: SuggestedResolution | None = None
    related_entities: list[RelatedEntity] = field(default_factory=list)
    run_info: dict[str, Any] | None = None


def build_field_comparisons(discrepancy: Discrepancy) -> list[dict[str, Any]]:
    """Side-by-side values for display.

    Prefers an explicit ``details.field_comparisons`` list, then zips
    ``details.source_fields`` with ``details.target_fields``, and finally
    falls back to the discrepancy's own field columns.
    """
    details = discrepancy.details if isinstance(discrepancy.details, dict) else {}

    explicit = details.get("field_comparisons")
    if isinstance(explicit, list):
        return [dict(item) for item in explicit if isinstance(item, dict)]

    source_fields = details.get("source_fields")
    target_fields = details.get("target_fields")
    if isinstance(source_fields, dict) and isinstance(target_fields, dict):
        names = dict.fromkeys([*source_fields, *target_fields])
        return [
            {"field": name, "source": source_fields.get(name), "target": target_fields.get(name)}
            for name in names
        ]

    if discrepancy.field_name:
        return [
            {
                "field": discrepancy.field_name,
                "source": discrepancy.source_value,
                "target": discrepancy.target_value,
            }
        ]
    return []


_SUGGESTIONS: dict[DiscrepancyType, SuggestedResolution] = {
    DiscrepancyType.MISSING_IN_SOURCE: SuggestedResolution(
        ResolutionAction.ACCEPT_TARGET,
        "Record exists in RailSync but not in the CIPROTS source. It may have been created directly "
        "in RailSync, so accepting the target keeps the RailSync data.",
    ),
    DiscrepancyType.MISSING_IN_TARGET: SuggestedResolution(
        ResolutionAction.ACCEPT_SOURCE,
        "Record exists in the CIPROTS source but not in RailSync, which points to a failed or skipped "
        "import. Accepting the source queues it for re-import.",
    ),
    DiscrepancyType.FIELD_MISMATCH: SuggestedResolution(
        ResolutionAction.ACCEPT_SOURCE,
        "Field values differ between source and target. CIPROTS is the system of record during "
        "migration, so accepting the source aligns RailSync with it.",
    ),
    DiscrepancyType.COUNT_MISMATCH: SuggestedResolution(
        ResolutionAction.ACCEPT_SOURCE,
        "Row counts differ for the migration window. Re-check the import against the CIPROTS "
        "extract, which remains authoritative.",
    ),
    DiscrepancyType.DUPLICATE: SuggestedResolution(
        ResolutionAction.ACCEPT_TARGET,
        "Probable duplicate records in RailSync. Keep the target records as they are unless a manual "
        "review finds one should be merged or removed.",
    ),
}

_MINOR_MISMATCH = SuggestedResolution(
    ResolutionAction.IGNORE,
    "Minor field-level difference with low severity, likely formatting or rounding that does not "
    "affect operational accuracy.",
)


def suggest_resolution(discrepancy: Discrepancy) -> SuggestedResolution | None:
    """Default operator action for a discrepancy, by type and severity, with the reason for it."""
    if discrepancy.discrepancy_type == DiscrepancyType.FIELD_MISMATCH and discrepancy.severity == Severity.INFO:
        return _MINOR_MISMATCH
    return _SUGGESTIONS.get(discrepancy.discrepancy_type)


async def _related_to_car(session: AsyncSession, registry: EntityRegistry, car_number: str) -> list[RelatedEntity]:
    related: list[RelatedEntity] = []
    allocations_target = registry.get("allocations")
    if allocations_target is not None:
        allocations = allocations_target.clause("target_month")
        rows = await session.execute(
            select(allocations.c.id, allocations.c.target_month)
            .where(allocations.c.car_number == car_number)
            .limit(RELATED_LIMIT)
        )
        related.extend(
            RelatedEntity("allocation", str(row.id), f"Allocation for {car_number} in {row.target_month}")
            for row in rows
        )

    rows = await session.execute(
        select(shopping_events.c.id, shopping_events.c.event_type)
        .where(shopping_events.c.car_number == car_number)
        .limit(RELATED_LIMIT)
    )
    related.extend(
        RelatedEntity("shopping_event", str(row.id), f"Shopping event ({row.event_type}) for {car_number}")
        for row in rows
    )
    return related


async def _related_to_customer(
    session: AsyncSession, registry: EntityRegistry, customer_key: str
) -> list[RelatedEntity]:
    customers_target = registry.get("customers")
    contracts_target = registry.get("contracts")
    if customers_target is None or contracts_target is None:
        return []
    customers = customers_target.clause()
    leases = contracts_target.clause("customer_id")
    rows = await session.execute(
        select(leases.c.id, leases.c.lease_number)
        .join(customers, customers.c.id == leases.c.customer_id)
        .where(or_(customers.c.customer_code == customer_key, cast(customers.c.id, String) == customer_key))
        .limit(RELATED_LIMIT)
    )
    return [RelatedEntity("contract", str(row.id), f"Contract {row.lease_number}") for row in rows]


async def _related_to_invoice(
    session: AsyncSession, registry: EntityRegistry, invoice_key: str
) -> list[RelatedEntity]:
    invoices_target = registry.get("invoices")
    if invoices_target is None:
        return []
    invoices = invoices_target.clause("shop_code")
    shop_code = (
        await session.execute(
            select(invoices.c.shop_code)
            .where(or_(invoices.c.invoice_number == invoice_key, cast(invoices.c.id, String) == invoice_key))
            .limit(1)
        )
    ).scalar_one_or_none()
    if not shop_code:
        return []
    shop = (
        await session.execute(select(shops.c.shop_code, shops.c.shop_name).where(shops.c.shop_code == shop_code))
    ).first()
    if shop is None:
        return []
    return [RelatedEntity("shop", str(shop.shop_code), f"Shop {shop.shop_name} ({shop.shop_code})")]


_RELATED_LOOKUPS = {
    "cars": _related_to_car,
    "customers": _related_to_customer,
    "invoices": _related_to_invoice,
}


async def find_related_entities(
    session: AsyncSession,
    entity_type: str,
    entity_id: str,
    registry: EntityRegistry | None = None,
) -> list[RelatedEntity]:
    """Records linked to a discrepancy's entity, for context.

    Contracts and allocations have none; their own id is enough. Lookup
    failures are logged and yield an empty list.
    """
    registry = registry or default_registry()
    target = registry.get(entity_type)
    lookup = _RELATED_LOOKUPS.get(target.name) if target else None
    if lookup is None:
        return []
    try:
        with storage_guard(f"loading entities related to {target.name} {entity_id}"):
            return await lookup(session, registry, entity_id)
    except StorageError:
        logger.warning("Related entity lookup failed for %s %s", entity_type, entity_id)
        return []


async def _run_info(session: AsyncSession, run_id: str) -> dict[str, Any] | None:
    with storage_guard(f"loading run context for {run_id}"):
        run = await session.get(MigrationRun, run_id)
        result = await session.execute(
            select(ParallelRunSummary).where(ParallelRunSummary.migration_run_id == run_id)
        )
    summary = result.scalar_one_or_none()
    if run is None and summary is None:
        return None

    info: dict[str, Any] = {"run_id": run_id}
    if run is not None:
        info.update(
            entity_type=run.entity_type,
            status=run.status,
            source_file=run.source_file,
            started_at=run.started_at.isoformat() if run.started_at else None,
            completed_at=run.completed_at.isoformat() if run.completed_at else None,
        )
    if summary is not None:
        info.update(
            run_date=summary.run_date.isoformat() if summary.run_date else None,
            comparison_type=summary.comparison_type,
            pass_count=summary.pass_count,
        )
    return info


async def get_discrepancy_detail(
    session: AsyncSession,
    discrepancy_id: str,
    store: DiscrepancyStore | None = None,
    registry: EntityRegistry | None = None,
) -> DiscrepancyDetail | None:
    """Return the detail view for one discrepancy, or None if it does not exist."""
    store = store or DiscrepancyStore(session)
    discrepancy = await store.get(discrepancy_id)
    if discrepancy is None:
        return None

    run_info = await _run_info(session, discrepancy.run_id) if discrepancy.run_id else None
    # Last, since a failed lookup may leave the transaction unusable on PostgreSQL.
    related = await find_related_entities(session, discrepancy.entity_type, discrepancy.entity_id, registry)
    return DiscrepancyDetail(
        discrepancy=discrepancy,
        field_comparisons=build_field_comparisons(discrepancy),
        suggested_resolution=suggest_resolution(discrepancy),
        related_entities=related,
        run_info=run_info,
    )
