"""Observability infrastructure for the cloud portal.

Structured logging, Prometheus counters for the reconciliation loop, and
request-ID correlation middleware for the HTTP layer.
"""

from .logging import bind_resource, configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text

__all__ = [
    "bind_resource",
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]
