"""Pydantic schemas for the data reconciliation API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.core.models import ResolutionAction, Severity


class DiscrepancyRead(BaseModel):
    """Schema for reading a discrepancy."""

    id: str
    run_id: str | None = None
    entity_type: str
    entity_id: str
    discrepancy_type: str
    severity: str
    field_name: str | None = None
    source_value: str | None = None
    target_value: str | None = None
    details: dict[str, Any] | None = None
    detection_pass: int | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution_type: str | None = None
    notes: str | None = None
    created_at: str


class DiscrepancyListResponse(BaseModel):
    """Paginated response for discrepancy listings."""

    data: list[DiscrepancyRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class FieldComparison(BaseModel):
    field: str
    source: Any = None
    target: Any = None


class SuggestedResolutionRead(BaseModel):
    action: str
    reason: str


class RelatedEntityRead(BaseModel):
    entity_type: str
    entity_id: str
    label: str


class DiscrepancyDetailRead(BaseModel):
    """Discrepancy with side-by-side values, a suggested action and linked records."""

    discrepancy: DiscrepancyRead
    field_comparisons: list[FieldComparison]
    suggested_resolution: SuggestedResolutionRead | None = None
    related_entities: list[RelatedEntityRead] = Field(default_factory=list)
    run_info: dict[str, Any] | None = None


class ResolveRequest(BaseModel):
    """Schema for resolving a single discrepancy."""

    action: ResolutionAction
    notes: str | None = Field(default=None, max_length=5000)


class BulkResolveRequest(BaseModel):
    """Schema for resolving many discrepancies in one transaction."""

    ids: list[str]
    action: ResolutionAction
    notes: str | None = Field(default=None, max_length=5000)


class BulkResolveResponse(BaseModel):
    resolved_count: int
    resolved_ids: list[str]


class SeverityCount(BaseModel):
    severity: str
    count: int


class EntityTypeCount(BaseModel):
    entity_type: str
    count: int


class DiscrepancyTypeCount(BaseModel):
    discrepancy_type: str
    count: int


class DashboardResponse(BaseModel):
    """Open discrepancy totals by dimension."""

    total_discrepancies: int
    by_severity: list[SeverityCount]
    by_entity_type: list[EntityTypeCount]
    by_discrepancy_type: list[DiscrepancyTypeCount]


class DuplicateCandidateRead(BaseModel):
    entity_type: str
    entity_a_id: str
    entity_b_id: str
    entity_a_label: str | None = None
    entity_b_label: str | None = None
    match_confidence: float = Field(gt=0.0, le=1.0)
    matched_fields: list[str]


class DuplicateListResponse(BaseModel):
    entity_type: str
    candidates: list[DuplicateCandidateRead]
    total: int


class PromoteDuplicateRequest(BaseModel):
    """Promote a detected candidate to a ``duplicate`` discrepancy."""

    candidate: DuplicateCandidateRead
    severity: Severity = Severity.WARNING
    run_id: str | None = None


class PromoteDuplicateResponse(BaseModel):
    id: str


class ReconcileResponse(BaseModel):
    run_id: str
    new_issues: int
    detection_pass: int


class HealthScoreResponse(BaseModel):
    """Composite parallel-run health score (0-100)."""

    overall_score: int
    resolution_rate: int
    coverage_pct: int
    open_critical: int
    open_warning: int
    total_runs: int
    days_in_parallel: int
    go_live_ready: bool


class ChecklistItemRead(BaseModel):
    check: str
    label: str
    passed: bool
    value: str
    target: str


class GoLiveChecklistResponse(BaseModel):
    items: list[ChecklistItemRead]
    overall: bool
