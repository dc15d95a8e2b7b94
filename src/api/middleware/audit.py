"""Request audit logging middleware.

Writes one structured log line per mutating request with the acting
operator (``X-Actor-Id``), path, status and duration. Resolution history
itself is recorded in ``state_transition_log`` by the resolution workflow;
this middleware only covers the HTTP surface.
"""

from __future__ import annotations

import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Log mutating HTTP requests for the operator audit trail."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method not in MUTATING_METHODS:
            return await call_next(request)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        logger.info(
            "AUDIT method=%s path=%s actor=%s status=%d duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            request.headers.get("x-actor-id") or "anonymous",
            response.status_code,
            duration_ms,
            getattr(request.state, "request_id", "unknown"),
        )
        return response
