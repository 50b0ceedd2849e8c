# -*- coding: utf-8 -*-
"""
Prometheus Metrics - P6/EBS Integration Core

10 Prometheus metrics for reconciliation and synchronization monitoring.

Metrics:
    1.  p6ebs_sync_sessions_total (Counter, labels: sync_type, status)
    2.  p6ebs_integration_runs_total (Counter, labels: sync_type, outcome)
    3.  p6ebs_discrepancies_detected_total (Counter, labels: entity_type, type)
    4.  p6ebs_resolutions_applied_total (Counter, labels: action)
    5.  p6ebs_writebacks_total (Counter, labels: system, result)
    6.  p6ebs_processing_errors_total (Counter, labels: error_type)
    7.  p6ebs_processing_duration_seconds (Histogram, labels: operation)
    8.  p6ebs_active_syncs (Gauge)
    9.  p6ebs_correlations (Gauge)
    10. p6ebs_validation_issues_total (Counter, labels: severity)

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1. Sync sessions finished by type and status
p6ebs_sync_sessions_total = Counter(
    "p6ebs_sync_sessions_total",
    "Total synchronization sessions finished",
    labelnames=["sync_type", "status"],
)

# 2. Integration runs by outcome (includes skipped/rejected/cancelled)
p6ebs_integration_runs_total = Counter(
    "p6ebs_integration_runs_total",
    "Total integration runs by outcome",
    labelnames=["sync_type", "outcome"],
)

# 3. Discrepancies detected by entity type and discrepancy type
p6ebs_discrepancies_detected_total = Counter(
    "p6ebs_discrepancies_detected_total",
    "Total discrepancy records detected between P6 and EBS",
    labelnames=["entity_type", "type"],
)

# 4. Field resolutions applied by action
p6ebs_resolutions_applied_total = Counter(
    "p6ebs_resolutions_applied_total",
    "Total field-level resolutions applied",
    labelnames=["action"],
)

# 5. Write-back calls by target system and result
p6ebs_writebacks_total = Counter(
    "p6ebs_writebacks_total",
    "Total entity write-back calls",
    labelnames=["system", "result"],
)

# 6. Processing errors by error type
p6ebs_processing_errors_total = Counter(
    "p6ebs_processing_errors_total",
    "Total processing errors encountered",
    labelnames=["error_type"],
)

# 7. Processing duration by operation
p6ebs_processing_duration_seconds = Histogram(
    "p6ebs_processing_duration_seconds",
    "P6/EBS integration processing duration in seconds",
    labelnames=["operation"],
    buckets=(
        0.01, 0.05, 0.1, 0.5, 1.0,
        5.0, 10.0, 30.0, 60.0, 300.0,
    ),
)

# 8. Currently running sync sessions
p6ebs_active_syncs = Gauge(
    "p6ebs_active_syncs",
    "Number of currently running synchronization sessions",
)

# 9. Correlations held by the ID correlation store
p6ebs_correlations = Gauge(
    "p6ebs_correlations",
    "Number of P6/EBS id correlations held in the store",
)

# 10. Validation issues by severity
p6ebs_validation_issues_total = Counter(
    "p6ebs_validation_issues_total",
    "Total pre-flight validation issues found",
    labelnames=["severity"],
)


# ---------------------------------------------------------------------------
# Enable switch
# ---------------------------------------------------------------------------

_enabled = True


def set_metrics_enabled(enabled: bool) -> None:
    """Turn metric recording on or off for the whole process."""
    global _enabled
    _enabled = bool(enabled)
    logger.info("Prometheus metrics %s", "enabled" if _enabled else "disabled")


def metrics_enabled() -> bool:
    return _enabled


def _when_enabled(fn: Callable[..., None]) -> Callable[..., None]:
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        if _enabled:
            fn(*args, **kwargs)
    return wrapper


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


@_when_enabled
def inc_sync_sessions(sync_type: str, status: str) -> None:
    """Record a finished sync session.

    Args:
        sync_type: Integration type of the session.
        status: Final session status (Completed, Failed).
    """
    p6ebs_sync_sessions_total.labels(sync_type=sync_type, status=status).inc()


@_when_enabled
def inc_integration_runs(sync_type: str, outcome: str) -> None:
    """Record an integration run outcome.

    Args:
        sync_type: Integration type that ran.
        outcome: completed, partial, failed, skipped, cancelled, rejected.
    """
    p6ebs_integration_runs_total.labels(
        sync_type=sync_type, outcome=outcome,
    ).inc()


@_when_enabled
def inc_discrepancies(
    entity_type: str,
    discrepancy_type: str,
    count: int = 1,
) -> None:
    """Record discrepancy records detected.

    Args:
        entity_type: Entity type compared.
        discrepancy_type: MissingInP6, MissingInEbs or ValueMismatch.
        count: Number of records.
    """
    if count <= 0:
        return
    p6ebs_discrepancies_detected_total.labels(
        entity_type=entity_type or "unknown", type=discrepancy_type,
    ).inc(count)


@_when_enabled
def inc_resolutions(action: str, count: int = 1) -> None:
    """Record field resolutions applied.

    Args:
        action: UseA, UseB, Ignore or Custom.
        count: Number of fields resolved.
    """
    if count <= 0:
        return
    p6ebs_resolutions_applied_total.labels(action=action).inc(count)


@_when_enabled
def inc_writebacks(system: str, result: str) -> None:
    """Record a write-back call.

    Args:
        system: Target system (P6, EBS).
        result: success or failure.
    """
    p6ebs_writebacks_total.labels(system=system, result=result).inc()


@_when_enabled
def inc_errors(error_type: str) -> None:
    """Record a processing error.

    Args:
        error_type: Error classification (connection, validation,
            mapping, writeback, scheduling, notification, detection,
            resolution, integration).
    """
    p6ebs_processing_errors_total.labels(error_type=error_type).inc()


@_when_enabled
def observe_duration(operation: str, duration: float) -> None:
    """Record processing duration.

    Args:
        operation: Operation name (detect, commit, sync, transform).
        duration: Duration in seconds.
    """
    p6ebs_processing_duration_seconds.labels(operation=operation).observe(
        duration,
    )


@_when_enabled
def set_active_syncs(count: int) -> None:
    """Set the running sync sessions gauge."""
    p6ebs_active_syncs.set(count)


@_when_enabled
def set_correlations(count: int) -> None:
    """Set the correlation count gauge."""
    p6ebs_correlations.set(count)


@_when_enabled
def inc_validation_issues(blocking: int, warnings: int) -> None:
    """Record validation issues by severity.

    Args:
        blocking: Number of blocking issues.
        warnings: Number of non-blocking issues.
    """
    if blocking > 0:
        p6ebs_validation_issues_total.labels(severity="blocking").inc(blocking)
    if warnings > 0:
        p6ebs_validation_issues_total.labels(severity="warning").inc(warnings)


__all__ = [
    "p6ebs_sync_sessions_total",
    "p6ebs_integration_runs_total",
    "p6ebs_discrepancies_detected_total",
    "p6ebs_resolutions_applied_total",
    "p6ebs_writebacks_total",
    "p6ebs_processing_errors_total",
    "p6ebs_processing_duration_seconds",
    "p6ebs_active_syncs",
    "p6ebs_correlations",
    "p6ebs_validation_issues_total",
    "metrics_enabled",
    "set_metrics_enabled",
    "inc_sync_sessions",
    "inc_integration_runs",
    "inc_discrepancies",
    "inc_resolutions",
    "inc_writebacks",
    "inc_errors",
    "observe_duration",
    "set_active_syncs",
    "set_correlations",
    "inc_validation_issues",
]
