"""FastAPI middleware for the RailSync reconciliation service."""

from src.api.middleware.audit import AuditLoggingMiddleware
from src.api.middleware.security import RequestIDMiddleware, SecurityHeadersMiddleware

__all__ = [
    "AuditLoggingMiddleware",
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
]
