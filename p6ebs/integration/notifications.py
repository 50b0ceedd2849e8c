# -*- coding: utf-8 -*-
"""
Notifications and Reports - P6/EBS Integration Core

Formats integration outcomes for people and hands them to the configured
collaborators:

* ``NotificationDispatcher`` sends Success, Failure, ValidationReport and
  StatusReport notifications to a ``NotificationSink``. Delivery is
  fire-and-forget: a sink failure is logged and counted, never raised
  into the sync.
* ``build_reconciliation_report`` renders discrepancy records as the
  plain-text DATA RECONCILIATION REPORT, grouped by discrepancy type, and
  ``write_reconciliation_report`` hands it to a ``ReportSink``.
* ``build_summary_report`` and ``build_detailed_report`` render the sync
  history, last sync times and recent log entries as plain text.

Example:
    >>> dispatcher = NotificationDispatcher(sink)
    >>> dispatcher.notify_success("timesheet", {"totalEntities": 12})

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from p6ebs.integration.collaborators import NotificationSink, ReportSink
from p6ebs.integration.log_buffer import LogEntry
from p6ebs.integration.metrics import inc_errors
from p6ebs.integration.models import (
    DiscrepancyRecord,
    DiscrepancyType,
    NotificationKind,
    ScheduleInfo,
    SyncRecord,
    SyncStatus,
    ValidationReport,
)
from p6ebs.integration.validation import format_issue

logger = logging.getLogger(__name__)

#: Validation issues listed in a ValidationReport notification.
TOP_ISSUES = 10

#: Sync records listed in the summary report.
SUMMARY_HISTORY_LIMIT = 10

#: Warning and error log entries listed in the summary report.
SUMMARY_LOG_LIMIT = 20

#: Log entries mentioning the type listed in a detailed report.
DETAILED_LOG_LIMIT = 50

_SEPARATOR = "=" * 50
_RULE = "-" * 50

_SUMMARY_KEYS = (
    ("totalEntities", "Total entities"),
    ("updatedEntities", "Updated entities"),
    ("failedEntities", "Failed entities"),
    ("discrepancies", "Discrepancies"),
)


def _timestamp(when: Optional[datetime] = None) -> str:
    return (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S %Z")


# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------


def format_success(integration_type: str, results: Mapping[str, Any]) -> Dict[str, str]:
    """Subject and body for a completed integration."""
    lines = [
        f"Integration completed successfully for: {integration_type}",
        "",
        "Summary:",
    ]
    for key, label in _SUMMARY_KEYS:
        if key in results:
            lines.append(f"{label}: {results[key]}")
    lines.extend(["", f"Timestamp: {_timestamp()}"])
    return {
        "subject": f"Integration Success: {integration_type}",
        "body": "\n".join(lines),
    }


def format_failure(integration_type: str, error_message: str) -> Dict[str, str]:
    """Subject and body for a failed integration."""
    body = "\n".join([
        f"Integration failed for: {integration_type}",
        "",
        f"Error: {error_message}",
        "",
        f"Timestamp: {_timestamp()}",
        "",
        "Please check the integration logs for more details.",
    ])
    return {
        "subject": f"Integration Failure: {integration_type}",
        "body": body,
    }


def format_validation(
    integration_type: str,
    report: ValidationReport,
) -> Dict[str, str]:
    """Subject and body for a validation report, listing the top issues."""
    lines = [
        f"Validation completed for: {integration_type}",
        "",
        "Summary:",
        f"Total issues: {report.total_issues}",
        f"Blocking issues: {report.blocking_issues}",
        f"Warning issues: {report.warning_issues}",
    ]
    if report.issues:
        lines.extend(["", "Top issues:"])
        for issue in report.issues[:TOP_ISSUES]:
            lines.append(f"- {format_issue(issue)}")
    lines.extend(["", f"Timestamp: {_timestamp(report.generated_at)}"])
    return {
        "subject": f"Integration Validation Issues: {integration_type}",
        "body": "\n".join(lines),
    }


def format_status_report(
    schedules: Iterable[ScheduleInfo],
    generated_at: Optional[datetime] = None,
) -> Dict[str, str]:
    """Subject and body listing every schedule's state and run times."""
    lines = ["P6-EBS Integration Status Report", "", "Integration Schedules:"]
    collected = sorted(schedules, key=lambda s: s.integration_type)
    if not collected:
        lines.append("No integrations scheduled.")
    for info in collected:
        lines.append(f"- {info.integration_type}:")
        lines.append(f"  Status: {'Active' if info.active else 'Inactive'}")
        lines.append(f"  Interval: Every {info.interval_hours} hours")
        lines.append(
            f"  Last run: {_timestamp(info.last_run) if info.last_run else 'Never'}"
        )
        if info.next_run is not None:
            lines.append(f"  Next run: {_timestamp(info.next_run)}")
        if info.error:
            lines.append(f"  Error: {info.error}")
        lines.append("")
    lines.append(f"Report generated: {_timestamp(generated_at)}")
    return {
        "subject": "P6-EBS Integration Status Report",
        "body": "\n".join(lines),
    }


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Fire-and-forget delivery to an optional NotificationSink."""

    def __init__(self, sink: Optional[NotificationSink] = None) -> None:
        self._sink = sink
        self._sent = 0
        self._failed = 0

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    def notify(self, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        """Deliver one notification.

        Returns:
            True if the sink accepted it. False when no sink is configured
            or the sink raised; the failure is logged, not propagated.
        """
        if self._sink is None:
            logger.debug("No notification sink configured, skipping %s", kind.value)
            return False
        try:
            self._sink.notify(kind, payload)
        except Exception as exc:
            self._failed += 1
            inc_errors("notification")
            logger.error(
                "Failed to send %s notification for %s: %s",
                kind.value, payload.get("integration_type", "?"), exc,
            )
            return False
        self._sent += 1
        logger.info(
            "Sent %s notification for %s",
            kind.value, payload.get("integration_type", "?"),
        )
        return True

    def notify_success(self, integration_type: str, results: Mapping[str, Any]) -> bool:
        payload: Dict[str, Any] = dict(format_success(integration_type, results))
        payload.update(integration_type=integration_type, results=dict(results))
        return self.notify(NotificationKind.SUCCESS, payload)

    def notify_failure(self, integration_type: str, error_message: str) -> bool:
        payload: Dict[str, Any] = dict(format_failure(integration_type, error_message))
        payload.update(integration_type=integration_type, error=error_message)
        return self.notify(NotificationKind.FAILURE, payload)

    def notify_validation(self, integration_type: str, report: ValidationReport) -> bool:
        payload: Dict[str, Any] = dict(format_validation(integration_type, report))
        payload.update(
            integration_type=integration_type,
            report=report.model_dump(mode="json"),
        )
        return self.notify(NotificationKind.VALIDATION_REPORT, payload)

    def notify_status_report(self, schedules: Iterable[ScheduleInfo]) -> bool:
        collected = list(schedules)
        payload: Dict[str, Any] = dict(format_status_report(collected))
        payload.update(
            integration_type="all",
            schedules=[s.model_dump(mode="json") for s in collected],
        )
        return self.notify(NotificationKind.STATUS_REPORT, payload)

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def failed_count(self) -> int:
        return self._failed


# ---------------------------------------------------------------------------
# Reconciliation report
# ---------------------------------------------------------------------------


def _display(value: Any) -> str:
    return "N/A" if value is None else str(value)


def build_reconciliation_report(
    records: Iterable[DiscrepancyRecord],
    entity_type: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render discrepancy records as a DATA RECONCILIATION REPORT.

    Records are grouped by discrepancy type in the order MissingInEbs,
    MissingInP6, ValueMismatch; each lists its status and field values.
    """
    collected = list(records)
    if entity_type is None:
        types = sorted({r.entity_type for r in collected if r.entity_type})
        entity_type = ", ".join(types) or "all"

    lines: List[str] = [
        "DATA RECONCILIATION REPORT",
        f"Generated: {_timestamp(generated_at)}",
        f"Entity Type: {entity_type}",
        f"Total Discrepancies: {len(collected)}",
        _SEPARATOR,
        "",
    ]

    for discrepancy_type in (DiscrepancyType.MISSING_IN_EBS,
                             DiscrepancyType.MISSING_IN_P6,
                             DiscrepancyType.VALUE_MISMATCH):
        group = [r for r in collected if r.discrepancy_type == discrepancy_type]
        if not group:
            continue
        lines.append(f"{discrepancy_type.value.upper()} ({len(group)})")
        lines.append(_RULE)
        for record in group:
            lines.append(f"Entity: {record.entity_id} - {record.entity_name}")
            lines.append(f"Status: {record.status.value}")
            if record.error:
                lines.append(f"Error: {record.error}")
            if record.field_discrepancies:
                lines.append("Field Discrepancies:")
                for field in record.field_discrepancies:
                    lines.append(f"  * {field.field_name}")
                    lines.append(f"    P6: {_display(field.value_a)}")
                    lines.append(f"    EBS: {_display(field.value_b)}")
                    lines.append(f"    Resolution: {field.resolution.value}")
            lines.append("")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def write_reconciliation_report(
    records: Iterable[DiscrepancyRecord],
    sink: ReportSink,
    destination_path: str,
    entity_type: Optional[str] = None,
) -> str:
    """Render the report and hand it to ``sink``. Returns the text.

    Unlike notifications, a sink failure here propagates to the caller.
    """
    text = build_reconciliation_report(records, entity_type=entity_type)
    sink.write_report(text, destination_path)
    logger.info("Reconciliation report written to %s", destination_path)
    return text


# ---------------------------------------------------------------------------
# History reports
# ---------------------------------------------------------------------------


def _newest_first(history: Iterable[SyncRecord]) -> List[SyncRecord]:
    # Later insertions win ties on start time.
    records = list(history)[::-1]
    records.sort(key=lambda r: r.start_time, reverse=True)
    return records


def _record_lines(record: SyncRecord, detailed: bool) -> List[str]:
    lines = [f"Session: {record.session_id}"]
    if not detailed:
        lines.append(f"  Type: {record.sync_type}")
        lines.append(f"  Status: {record.status.value}")
    lines.append(f"  Started: {_timestamp(record.start_time)}")
    if detailed:
        lines.append(f"  Ended: {_timestamp(record.end_time)}")
        lines.append(f"  Direction: {record.direction.value}")
        lines.append(f"  Status: {record.status.value}")
    lines.append(f"  Duration: {record.duration_ms // 1000} seconds")
    lines.append(f"  Entities processed: {record.entities_processed}")
    lines.append(f"  Entities updated: {record.entities_updated}")
    if detailed:
        lines.append(f"  Entities failed: {record.entities_failed}")
    if record.error_message:
        lines.append(f"  Error: {record.error_message}")
    lines.append("")
    return lines


def build_summary_report(
    history: Iterable[SyncRecord],
    last_sync_times: Mapping[str, Optional[datetime]],
    recent_logs: Sequence[LogEntry] = (),
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the INTEGRATION SUMMARY REPORT.

    Lists the last sync time per type, the newest sync records (by start
    time) and the newest warning and error log entries.
    """
    lines: List[str] = [
        "P6-EBS INTEGRATION SUMMARY REPORT",
        f"Generated: {_timestamp(generated_at)}",
        _RULE,
        "",
        "LAST SYNCHRONIZATION TIMES:",
    ]
    if not last_sync_times:
        lines.append("No synchronization records found.")
    for integration_type, when in sorted(last_sync_times.items()):
        lines.append(f"{integration_type}: {_timestamp(when) if when else 'Never'}")

    lines.extend(["", "SYNCHRONIZATION HISTORY:"])
    records = _newest_first(history)[:SUMMARY_HISTORY_LIMIT]
    if not records:
        lines.append("No synchronization history found.")
    for record in records:
        lines.extend(_record_lines(record, detailed=False))

    lines.extend(["", "RECENT LOG ENTRIES:"])
    warnings = [e for e in reversed(recent_logs) if e.levelno >= logging.WARNING]
    warnings.sort(key=lambda e: e.timestamp, reverse=True)
    if not warnings:
        lines.append("No relevant log entries found.")
    for entry in warnings[:SUMMARY_LOG_LIMIT]:
        lines.append(entry.format())
    return "\n".join(lines).rstrip() + "\n"


def build_detailed_report(
    integration_type: str,
    history: Iterable[SyncRecord],
    recent_logs: Sequence[LogEntry] = (),
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the detailed report for one integration type.

    Every record of the type, newest first, followed by run statistics
    and the newest log entries that mention the type.
    """
    records = _newest_first(r for r in history if r.sync_type == integration_type)
    lines: List[str] = [
        f"{integration_type.upper()} INTEGRATION DETAILED REPORT",
        f"Generated: {_timestamp(generated_at)}",
        _RULE,
        "",
        "SYNCHRONIZATION HISTORY:",
    ]
    if not records:
        lines.append(f"No synchronization history found for {integration_type}.")
    for record in records:
        lines.extend(_record_lines(record, detailed=True))

    total = len(records)
    successful = sum(1 for r in records if r.status == SyncStatus.COMPLETED)
    lines.extend([
        "",
        "STATISTICS:",
        f"Total runs: {total}",
        f"Successful runs: {successful}",
        f"Failed runs: {total - successful}",
        f"Success rate: {successful * 100 // total if total else 0}%",
        f"Total entities processed: {sum(r.entities_processed for r in records)}",
        f"Total entities updated: {sum(r.entities_updated for r in records)}",
    ])
    if total:
        average = sum(r.duration_ms for r in records) // total // 1000
        lines.append(f"Average duration: {average} seconds")

    lines.extend(["", "RECENT LOG ENTRIES:"])
    related = [e for e in reversed(recent_logs) if integration_type in e.message]
    related.sort(key=lambda e: e.timestamp, reverse=True)
    if not related:
        lines.append("No log entries found.")
    for entry in related[:DETAILED_LOG_LIMIT]:
        lines.append(entry.format())
    return "\n".join(lines).rstrip() + "\n"


__all__ = [
    "DETAILED_LOG_LIMIT",
    "NotificationDispatcher",
    "SUMMARY_HISTORY_LIMIT",
    "SUMMARY_LOG_LIMIT",
    "TOP_ISSUES",
    "build_detailed_report",
    "build_reconciliation_report",
    "build_summary_report",
    "format_failure",
    "format_status_report",
    "format_success",
    "format_validation",
    "write_reconciliation_report",
]
