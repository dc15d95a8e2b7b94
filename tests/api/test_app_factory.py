"""Tests for FastAPI application assembly."""

from __future__ import annotations

from fastapi import FastAPI

from src.api.main import create_app


def test_create_app_registers_routes() -> None:
    app = create_app()

    assert isinstance(app, FastAPI)
    paths = {route.path for route in app.routes}
    assert "/api/v1/health" in paths
    assert "/api/v1/reconciliation/dashboard" in paths
    assert "/api/v1/reconciliation/discrepancies/{discrepancy_id}/resolve" in paths
    assert "/api/v1/reconciliation/runs/{run_id}/reconcile" in paths
    assert "/api/v1/reconciliation/go-live-checklist" in paths
