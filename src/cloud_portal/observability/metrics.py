"""Prometheus metrics for the cloud portal.

Counters live on the default global registry so prometheus_client's
built-in process/platform collectors are exported alongside them.

Usage::

    from cloud_portal.observability.metrics import RECONCILE_TICKS_TOTAL

    RECONCILE_TICKS_TOTAL.labels(kind="account_request", outcome="progressed").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Reconciliation metrics
# ---------------------------------------------------------------------------

RECONCILE_TICKS_TOTAL = Counter(
    "cloud_portal_reconcile_ticks_total",
    "Reconciliation ticks by resource kind and outcome.",
    labelnames=["kind", "outcome"],
    registry=REGISTRY,
)

RESOURCE_TRANSITIONS_TOTAL = Counter(
    "cloud_portal_resource_transitions_total",
    "Persisted resource status transitions.",
    labelnames=["kind", "from_status", "to_status"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# External adapter metrics
# ---------------------------------------------------------------------------

ADAPTER_ERRORS_TOTAL = Counter(
    "cloud_portal_adapter_errors_total",
    "Transient adapter failures seen by the reconciliation loop.",
    labelnames=["adapter"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
