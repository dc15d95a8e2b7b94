"""Data reconciliation routes.

Operator API for the parallel-run reconciliation engine: dashboard,
discrepancy listing and detail, single and bulk resolution, duplicate
detection and promotion, reconciliation runs, and go-live readiness.

Mutating endpoints require the ``X-Actor-Id`` header.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_actor_id, get_session, get_transition_logger
from src.api.schemas.reconciliation import (
    BulkResolveRequest,
    BulkResolveResponse,
    DashboardResponse,
    DiscrepancyDetailRead,
    DiscrepancyListResponse,
    DiscrepancyRead,
    DuplicateListResponse,
    GoLiveChecklistResponse,
    HealthScoreResponse,
    PromoteDuplicateRequest,
    PromoteDuplicateResponse,
    ReconcileResponse,
    ResolveRequest,
)
from src.core.audit import TransitionLogger
from src.core.config import get_settings
from src.core.models import Discrepancy, DiscrepancyStatus, DiscrepancyType, Severity
from src.reconciliation.dashboard import DashboardAggregator
from src.reconciliation.detail import get_discrepancy_detail
from src.reconciliation.duplicates import (
    DuplicateCandidate,
    DuplicateDetector,
    SqlRecordSource,
    candidate_to_draft,
)
from src.reconciliation.errors import (
    AlreadyResolvedError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    ReconciliationError,
    StorageError,
)
from src.reconciliation.readiness import ReadinessScorer
from src.reconciliation.resolution import Resolution, ResolutionWorkflow
from src.reconciliation.runner import ReconciliationRunner, SeverityPolicy
from src.reconciliation.store import DiscrepancyFilter, DiscrepancyStore, total_pages

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/reconciliation", tags=["reconciliation"])

_ERROR_STATUS: dict[type[ReconciliationError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyResolvedError: status.HTTP_409_CONFLICT,
    InvalidStateError: status.HTTP_409_CONFLICT,
    InvalidArgumentError: 422,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: ReconciliationError) -> HTTPException:
    """Map an engine error to its HTTP status, keeping the operator message."""
    for error_type, code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


def _discrepancy_to_read(obj: Discrepancy) -> DiscrepancyRead:
    """Convert a Discrepancy ORM instance to a read schema."""
    return DiscrepancyRead(
        id=obj.id,
        run_id=obj.run_id,
        entity_type=obj.entity_type,
        entity_id=obj.entity_id,
        discrepancy_type=str(obj.discrepancy_type),
        severity=str(obj.severity),
        field_name=obj.field_name,
        source_value=obj.source_value,
        target_value=obj.target_value,
        details=obj.details,
        detection_pass=obj.detection_pass,
        resolved_at=obj.resolved_at.isoformat() if obj.resolved_at else None,
        resolved_by=obj.resolved_by,
        resolution_type=str(obj.resolution_type) if obj.resolution_type else None,
        notes=obj.notes,
        created_at=obj.created_at.isoformat() if obj.created_at else "",
    )


def _store(session: AsyncSession) -> DiscrepancyStore:
    return DiscrepancyStore(session, max_page_size=get_settings().reconciliation_max_page_size)


# ---------------------------------------------------------------------------
# GET /api/v1/reconciliation/dashboard
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_model=DashboardResponse, summary="Open discrepancy summary")
async def get_dashboard(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    try:
        summary = await DashboardAggregator(_store(session)).get_dashboard()
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {
        "total_discrepancies": summary.total_discrepancies,
        "by_severity": summary.by_severity,
        "by_entity_type": summary.by_entity_type,
        "by_discrepancy_type": summary.by_discrepancy_type,
    }


# ---------------------------------------------------------------------------
# GET /api/v1/reconciliation/discrepancies
# ---------------------------------------------------------------------------


@router.get("/discrepancies", response_model=DiscrepancyListResponse, summary="List discrepancies")
async def list_discrepancies(
    session: AsyncSession = Depends(get_session),
    entity_type: str | None = Query(None, description="Filter by entity type"),
    severity: Severity | None = Query(None, description="Filter by severity"),
    discrepancy_type: DiscrepancyType | None = Query(None, description="Filter by discrepancy type"),
    status_filter: DiscrepancyStatus = Query(DiscrepancyStatus.OPEN, alias="status"),
    search: str | None = Query(None, max_length=200, description="Free-text search"),
    page: int = Query(1, ge=1, description="1-indexed page number"),
    page_size: int | None = Query(None, ge=1, description="Page size"),
) -> dict[str, Any]:
    settings = get_settings()
    size = min(page_size or settings.reconciliation_default_page_size, settings.reconciliation_max_page_size)
    filters = DiscrepancyFilter(
        entity_type=entity_type,
        severity=severity,
        discrepancy_type=discrepancy_type,
        status=status_filter,
        search=search,
    )
    try:
        items, total = await _store(session).list(filters, page=page, page_size=size)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc

    return {
        "data": [_discrepancy_to_read(item) for item in items],
        "total": total,
        "page": page,
        "page_size": size,
        "total_pages": total_pages(total, size),
    }


# ---------------------------------------------------------------------------
# POST /api/v1/reconciliation/discrepancies/bulk-resolve
# ---------------------------------------------------------------------------


@router.post(
    "/discrepancies/bulk-resolve",
    response_model=BulkResolveResponse,
    summary="Resolve many discrepancies atomically",
)
async def bulk_resolve(
    body: BulkResolveRequest,
    session: AsyncSession = Depends(get_session),
    actor_id: str = Depends(get_actor_id),
    transitions: TransitionLogger = Depends(get_transition_logger),
) -> dict[str, Any]:
    workflow = ResolutionWorkflow(session, transitions, store=_store(session))
    try:
        result = await workflow.bulk_resolve_discrepancies(
            body.ids,
            Resolution(action=body.action, notes=body.notes),
            actor_id,
        )
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"resolved_count": result.resolved_count, "resolved_ids": result.resolved_ids}


# ---------------------------------------------------------------------------
# GET /api/v1/reconciliation/discrepancies/{discrepancy_id}
# ---------------------------------------------------------------------------


@router.get(
    "/discrepancies/{discrepancy_id}",
    response_model=DiscrepancyDetailRead,
    summary="Discrepancy detail",
)
async def get_discrepancy(
    discrepancy_id: str,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        detail = await get_discrepancy_detail(session, discrepancy_id, store=_store(session))
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    if detail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"discrepancy {discrepancy_id} not found",
        )
    suggestion = detail.suggested_resolution
    return {
        "discrepancy": _discrepancy_to_read(detail.discrepancy),
        "field_comparisons": detail.field_comparisons,
        "suggested_resolution": (
            {"action": str(suggestion.action), "reason": suggestion.reason} if suggestion else None
        ),
        "related_entities": [related.__dict__ for related in detail.related_entities],
        "run_info": detail.run_info,
    }


# ---------------------------------------------------------------------------
# POST /api/v1/reconciliation/discrepancies/{discrepancy_id}/resolve
# ---------------------------------------------------------------------------


@router.post(
    "/discrepancies/{discrepancy_id}/resolve",
    response_model=DiscrepancyRead,
    summary="Resolve a discrepancy",
)
async def resolve_discrepancy(
    discrepancy_id: str,
    body: ResolveRequest,
    session: AsyncSession = Depends(get_session),
    actor_id: str = Depends(get_actor_id),
    transitions: TransitionLogger = Depends(get_transition_logger),
) -> dict[str, Any]:
    workflow = ResolutionWorkflow(session, transitions, store=_store(session))
    try:
        resolved = await workflow.resolve_discrepancy(
            discrepancy_id,
            Resolution(action=body.action, notes=body.notes),
            actor_id,
        )
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return _discrepancy_to_read(resolved).model_dump()


# ---------------------------------------------------------------------------
# Duplicates
# ---------------------------------------------------------------------------


@router.get("/duplicates", response_model=DuplicateListResponse, summary="Detect duplicate records")
async def detect_duplicates(
    entity_type: str = Query(..., min_length=1, description="Entity type to scan"),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    detector = DuplicateDetector(SqlRecordSource(session), settings=get_settings())
    if not detector.supports(entity_type):
        raise HTTPException(
            status_code=422,
            detail=f"Unsupported entity type for duplicate detection: {entity_type}",
        )
    try:
        candidates = await detector.detect_duplicates(entity_type)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {
        "entity_type": entity_type,
        "candidates": [c.__dict__ for c in candidates],
        "total": len(candidates),
    }


@router.post(
    "/duplicates/promote",
    response_model=PromoteDuplicateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a duplicate candidate as a discrepancy",
)
async def promote_duplicate(
    body: PromoteDuplicateRequest,
    session: AsyncSession = Depends(get_session),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    if not DuplicateDetector(SqlRecordSource(session), settings=get_settings()).supports(body.candidate.entity_type):
        raise HTTPException(
            status_code=422,
            detail=f"Unsupported entity type for duplicate detection: {body.candidate.entity_type}",
        )
    candidate = DuplicateCandidate(**body.candidate.model_dump())
    try:
        discrepancy_id = await _store(session).insert(candidate_to_draft(candidate, body.severity, body.run_id))
        await session.commit()
    except ReconciliationError as exc:
        await session.rollback()
        raise _http_error(exc) from exc
    logger.info(
        "Duplicate promoted: id=%s entity=%s pair=%s/%s actor=%s",
        discrepancy_id,
        candidate.entity_type,
        candidate.entity_a_id,
        candidate.entity_b_id,
        actor_id,
    )
    return {"id": discrepancy_id}


# ---------------------------------------------------------------------------
# POST /api/v1/reconciliation/runs/{run_id}/reconcile
# ---------------------------------------------------------------------------


@router.post("/runs/{run_id}/reconcile", response_model=ReconcileResponse, summary="Reconcile a migration run")
async def reconcile_run(
    run_id: str,
    session: AsyncSession = Depends(get_session),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    runner = ReconciliationRunner(session, policy=SeverityPolicy.from_settings(get_settings()), store=_store(session))
    try:
        outcome = await runner.run_reconciliation(run_id)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    logger.info("Reconciliation triggered: run=%s actor=%s new_issues=%d", run_id, actor_id, outcome.new_issues)
    return {"run_id": outcome.run_id, "new_issues": outcome.new_issues, "detection_pass": outcome.detection_pass}


# ---------------------------------------------------------------------------
# Go-live readiness
# ---------------------------------------------------------------------------


@router.get("/health-score", response_model=HealthScoreResponse, summary="Parallel-run health score")
async def get_health_score(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    try:
        score = await ReadinessScorer(session, get_settings(), store=_store(session)).get_health_score()
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return score.__dict__


@router.get("/go-live-checklist", response_model=GoLiveChecklistResponse, summary="Go-live checklist")
async def get_go_live_checklist(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    try:
        checklist = await ReadinessScorer(session, get_settings(), store=_store(session)).get_go_live_checklist()
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return {"items": [item.__dict__ for item in checklist.items], "overall": checklist.overall}
