"""Prometheus metrics for remote calls, fallbacks and the activity log.

Provides:
- remote_requests_total: outcome of every remote operation attempt
- fallback_total: operations served by the local store
- activity_log_failures_total: activity records that could not be persisted
- remote_circuit_open: 1 while the remote circuit breaker is open
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# ── Remote Metrics ───────────────────────────────────────────────────────────

remote_requests_total = Counter(
    "crm_remote_requests_total",
    "Total remote CRM API operations",
    ["operation", "outcome"],
)

remote_circuit_open = Gauge(
    "crm_remote_circuit_open",
    "1 while the remote CRM circuit breaker is open",
)

# ── Fallback Metrics ─────────────────────────────────────────────────────────

fallback_total = Counter(
    "crm_fallback_total",
    "Operations served by the local fallback store",
    ["entity", "operation"],
)

activity_log_failures_total = Counter(
    "crm_activity_log_failures_total",
    "Activity records that failed to persist",
)
