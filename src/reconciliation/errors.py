"""Error taxonomy for the reconciliation engine.

Every error carries a human-readable message suitable for direct display in
an operator UI. ``StorageError`` is fatal; the rest are expected outcomes
returned to the caller.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(ReconciliationError):
    """A referenced discrepancy or migration run does not exist."""


class AlreadyResolvedError(ReconciliationError):
    """A resolution was attempted on a discrepancy that is already resolved."""


class InvalidArgumentError(ReconciliationError, ValueError):
    """Malformed caller input, e.g. an empty id list."""


class InvalidStateError(ReconciliationError):
    """Operation preconditions are not met, e.g. an incomplete migration run."""


class StorageError(ReconciliationError):
    """The underlying persistence layer failed."""
