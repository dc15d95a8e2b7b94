"""Tests for the discrepancy detail view."""

from __future__ import annotations

from datetime import UTC, date, datetime

import logging
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.models import Discrepancy, DiscrepancyType, ParallelRunSummary, ResolutionAction, Severity
from src.reconciliation.detail import (
    RelatedEntity,
    build_field_comparisons,
    find_related_entities,
    get_discrepancy_detail,
    suggest_resolution,
)
from tests.factories import (
    add_discrepancy,
    add_migration_run,
    add_target_rows,
    allocations_table,
    customers_table,
    invoices_table,
    leases_table,
    shopping_events_table,
    shops_table,
)


def _discrepancy(**kwargs: object) -> Discrepancy:
    values: dict[str, object] = {
        "id": "disc-1",
        "entity_type": "cars",
        "entity_id": "UTLX1",
        "discrepancy_type": DiscrepancyType.FIELD_MISMATCH,
        "severity": Severity.WARNING,
    }
    values.update(kwargs)
    return Discrepancy(**values)


class TestBuildFieldComparisons:
    def test_explicit_comparisons_win(self) -> None:
        discrepancy = _discrepancy(
            field_name="car_mark",
            details={"field_comparisons": [{"field": "car_mark", "source": "UTLX", "target": "GATX", "match": False}]},
        )

        assert build_field_comparisons(discrepancy) == [
            {"field": "car_mark", "source": "UTLX", "target": "GATX", "match": False}
        ]

    def test_zips_source_and_target_fields(self) -> None:
        discrepancy = _discrepancy(
            details={
                "source_fields": {"car_mark": "UTLX", "lessee": "ACME"},
                "target_fields": {"car_mark": "UTLX", "shop_code": "KC"},
            }
        )

        assert build_field_comparisons(discrepancy) == [
            {"field": "car_mark", "source": "UTLX", "target": "UTLX"},
            {"field": "lessee", "source": "ACME", "target": None},
            {"field": "shop_code", "source": None, "target": "KC"},
        ]

    def test_falls_back_to_field_columns(self) -> None:
        discrepancy = _discrepancy(field_name="car_mark", source_value="UTLX", target_value="GATX")

        assert build_field_comparisons(discrepancy) == [{"field": "car_mark", "source": "UTLX", "target": "GATX"}]

    def test_nothing_to_compare(self) -> None:
        assert build_field_comparisons(_discrepancy()) == []


class TestSuggestResolution:
    @pytest.mark.parametrize(
        ("discrepancy_type", "severity", "expected"),
        [
            (DiscrepancyType.MISSING_IN_TARGET, Severity.CRITICAL, ResolutionAction.ACCEPT_SOURCE),
            (DiscrepancyType.MISSING_IN_SOURCE, Severity.WARNING, ResolutionAction.ACCEPT_TARGET),
            (DiscrepancyType.FIELD_MISMATCH, Severity.WARNING, ResolutionAction.ACCEPT_SOURCE),
            (DiscrepancyType.FIELD_MISMATCH, Severity.INFO, ResolutionAction.IGNORE),
            (DiscrepancyType.COUNT_MISMATCH, Severity.CRITICAL, ResolutionAction.ACCEPT_SOURCE),
            (DiscrepancyType.DUPLICATE, Severity.WARNING, ResolutionAction.ACCEPT_TARGET),
        ],
    )
    def test_suggestions(
        self,
        discrepancy_type: DiscrepancyType,
        severity: Severity,
        expected: ResolutionAction,
    ) -> None:
        discrepancy = _discrepancy(discrepancy_type=discrepancy_type, severity=severity)

        suggestion = suggest_resolution(discrepancy)

        assert suggestion is not None
        assert suggestion.action == expected
        assert suggestion.reason

    def test_minor_mismatch_reason_mentions_formatting(self) -> None:
        suggestion = suggest_resolution(_discrepancy(severity=Severity.INFO))

        assert suggestion is not None
        assert "formatting or rounding" in suggestion.reason


class TestGetDiscrepancyDetail:
    @pytest.mark.asyncio
    async def test_unknown_id_returns_none(self, db_session: AsyncSession) -> None:
        assert await get_discrepancy_detail(db_session, "missing") is None

    @pytest.mark.asyncio
    async def test_includes_run_info(self, db_session: AsyncSession) -> None:
        await add_migration_run(
            db_session,
            "mig-run-1",
            started_at=datetime(2026, 3, 1, 8, 0, tzinfo=UTC),
            completed_at=datetime(2026, 3, 1, 9, 0, tzinfo=UTC),
        )
        db_session.add(
            ParallelRunSummary(
                migration_run_id="mig-run-1",
                run_date=date(2026, 3, 1),
                comparison_type="reconciliation_cars",
                pass_count=2,
            )
        )
        await db_session.commit()
        await add_discrepancy(
            db_session,
            "disc-9",
            run_id="mig-run-1",
            discrepancy_type=DiscrepancyType.MISSING_IN_TARGET,
            field_name="car_number",
            source_value="UTLX_BAD_001",
        )

        detail = await get_discrepancy_detail(db_session, "disc-9")

        assert detail is not None
        assert detail.discrepancy.id == "disc-9"
        assert detail.suggested_resolution is not None
        assert detail.suggested_resolution.action == ResolutionAction.ACCEPT_SOURCE
        assert detail.related_entities == []
        assert detail.field_comparisons == [{"field": "car_number", "source": "UTLX_BAD_001", "target": None}]
        assert detail.run_info is not None
        assert detail.run_info["run_id"] == "mig-run-1"
        assert detail.run_info["entity_type"] == "cars"
        assert detail.run_info["status"] == "complete"
        assert detail.run_info["run_date"] == "2026-03-01"
        assert detail.run_info["pass_count"] == 2

    @pytest.mark.asyncio
    async def test_run_info_absent_without_run(self, db_session: AsyncSession) -> None:
        await add_discrepancy(db_session, "disc-1")
        await add_discrepancy(db_session, "disc-2", run_id="deleted-run")

        first = await get_discrepancy_detail(db_session, "disc-1")
        second = await get_discrepancy_detail(db_session, "disc-2")

        assert first is not None and first.run_info is None
        assert second is not None and second.run_info is None


class TestFindRelatedEntities:
    @pytest.mark.asyncio
    async def test_car_links_allocations_and_shopping_events(self, db_session: AsyncSession) -> None:
        await add_target_rows(
            db_session,
            allocations_table,
            [
                {"id": "alloc-1", "car_number": "UTLX1", "target_month": "2026-03"},
                {"id": "alloc-2", "car_number": "GATX9", "target_month": "2026-03"},
            ],
        )
        await add_target_rows(
            db_session,
            shopping_events_table,
            [{"id": "evt-1", "car_number": "UTLX1", "event_type": "qualification"}],
        )

        related = await find_related_entities(db_session, "cars", "UTLX1")

        assert related == [
            RelatedEntity("allocation", "alloc-1", "Allocation for UTLX1 in 2026-03"),
            RelatedEntity("shopping_event", "evt-1", "Shopping event (qualification) for UTLX1"),
        ]

    @pytest.mark.asyncio
    async def test_car_lookup_is_capped(self, db_session: AsyncSession) -> None:
        await add_target_rows(
            db_session,
            allocations_table,
            [{"id": f"alloc-{i}", "car_number": "UTLX1", "target_month": "2026-03"} for i in range(7)],
        )

        related = await find_related_entities(db_session, "car", "UTLX1")

        assert len(related) == 5

    @pytest.mark.asyncio
    async def test_customer_links_contracts_by_code_or_id(self, db_session: AsyncSession) -> None:
        await add_target_rows(
            db_session,
            customers_table,
            [{"id": "cust-1", "customer_code": "ACME", "customer_name": "Acme Rail"}],
        )
        await add_target_rows(
            db_session,
            leases_table,
            [
                {"id": "lease-1", "lease_number": "ML-100", "customer_id": "cust-1"},
                {"id": "lease-2", "lease_number": "ML-200", "customer_id": "cust-9"},
            ],
        )

        by_code = await find_related_entities(db_session, "customers", "ACME")
        by_id = await find_related_entities(db_session, "customers", "cust-1")

        assert by_code == [RelatedEntity("contract", "lease-1", "Contract ML-100")]
        assert by_id == by_code

    @pytest.mark.asyncio
    async def test_invoice_links_its_shop(self, db_session: AsyncSession) -> None:
        await add_target_rows(
            db_session,
            invoices_table,
            [{"id": "inv-1", "invoice_number": "INV-2026-001", "shop_code": "BNSF-KC"}],
        )
        await add_target_rows(
            db_session,
            shops_table,
            [{"id": "shop-1", "shop_code": "BNSF-KC", "shop_name": "BNSF Kansas City"}],
        )

        related = await find_related_entities(db_session, "invoices", "INV-2026-001")

        assert related == [RelatedEntity("shop", "BNSF-KC", "Shop BNSF Kansas City (BNSF-KC)")]

    @pytest.mark.asyncio
    async def test_invoice_without_shop_has_none(self, db_session: AsyncSession) -> None:
        await add_target_rows(db_session, invoices_table, [{"id": "inv-1", "invoice_number": "INV-1"}])

        assert await find_related_entities(db_session, "invoices", "INV-1") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity_type", ["contracts", "allocations", "locomotives"])
    async def test_types_without_links(self, db_session: AsyncSession, entity_type: str) -> None:
        assert await find_related_entities(db_session, entity_type, "X1") == []

    @pytest.mark.asyncio
    async def test_lookup_failure_is_not_fatal(
        self, mock_db_session: AsyncMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("relation does not exist"))

        with caplog.at_level(logging.WARNING, logger="src.reconciliation.detail"):
            related = await find_related_entities(mock_db_session, "cars", "UTLX1")

        assert related == []
        assert "Related entity lookup failed for cars UTLX1" in caplog.text

    @pytest.mark.asyncio
    async def test_detail_includes_related_entities(self, db_session: AsyncSession) -> None:
        await add_target_rows(
            db_session,
            shopping_events_table,
            [{"id": "evt-1", "car_number": "TILX0009", "event_type": "repair"}],
        )
        await add_discrepancy(db_session, "disc-1", entity_id="TILX0009")

        detail = await get_discrepancy_detail(db_session, "disc-1")

        assert detail is not None
        assert detail.related_entities == [
            RelatedEntity("shopping_event", "evt-1", "Shopping event (repair) for TILX0009")
        ]
