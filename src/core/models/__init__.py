"""SQLAlchemy models for the reconciliation service.

This package re-exports all models and enums from domain-specific modules
so that code can use ``from src.core.models import X``.
"""

from src.core.models.audit import StateTransitionLog
from src.core.models.discrepancy import (
    SEVERITY_RANK,
    Discrepancy,
    DiscrepancyStatus,
    DiscrepancyType,
    ResolutionAction,
    Severity,
)
from src.core.models.migration import (
    MigrationRowError,
    MigrationRun,
    MigrationRunStatus,
    ParallelRunSummary,
)

__all__ = [
    "SEVERITY_RANK",
    "Discrepancy",
    "DiscrepancyStatus",
    "DiscrepancyType",
    "MigrationRowError",
    "MigrationRun",
    "MigrationRunStatus",
    "ParallelRunSummary",
    "ResolutionAction",
    "Severity",
    "StateTransitionLog",
]
