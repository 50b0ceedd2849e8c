"""
Tests for notifications and the reconciliation report.
"""

from datetime import datetime, timedelta, timezone

import pytest

from p6ebs.integration.log_buffer import LogEntry
from p6ebs.integration.models import (
    DiscrepancyRecord,
    DiscrepancyType,
    FieldDiscrepancy,
    NotificationKind,
    RecordStatus,
    ResolutionAction,
    ScheduleInfo,
    SyncRecord,
    SyncStatus,
    ValidationIssue,
    ValidationReport,
)
from p6ebs.integration.notifications import (
    SUMMARY_HISTORY_LIMIT,
    NotificationDispatcher,
    build_detailed_report,
    build_reconciliation_report,
    build_summary_report,
    format_failure,
    format_status_report,
    format_success,
    write_reconciliation_report,
)

from conftest import MemoryReportSink, RecordingSink


def _records():
    return [
        DiscrepancyRecord(
            entity_id="101", entity_name="Plant Upgrade", entity_type="project",
            discrepancy_type=DiscrepancyType.VALUE_MISMATCH,
            field_discrepancies=[FieldDiscrepancy(
                field_name="planned_cost / budget_amount",
                p6_field="planned_cost", ebs_field="budget_amount",
                value_a=100, value_b=None, resolution=ResolutionAction.USE_A,
            )],
            status=RecordStatus.RESOLVED,
            error="EBS rejected update for E-1",
        ),
        DiscrepancyRecord(
            entity_id="103", entity_name="Pipeline", entity_type="project",
            discrepancy_type=DiscrepancyType.MISSING_IN_EBS,
            field_discrepancies=[FieldDiscrepancy(
                field_name="proj_id", p6_field="proj_id", value_a="103",
            )],
        ),
    ]


class TestFormatting:
    """Test subject and body formatting."""

    def test_success(self):
        message = format_success(
            "timesheet", {"totalEntities": 12, "updatedEntities": 3},
        )
        assert message["subject"] == "Integration Success: timesheet"
        assert "Total entities: 12" in message["body"]
        assert "Updated entities: 3" in message["body"]
        assert "Failed entities" not in message["body"]

    def test_failure(self):
        message = format_failure("procurement", "EBS unreachable")
        assert message["subject"] == "Integration Failure: procurement"
        assert "Error: EBS unreachable" in message["body"]


class TestDispatcher:
    """Test fire-and-forget delivery."""

    def test_success_payload(self, sink):
        dispatcher = NotificationDispatcher(sink)
        assert dispatcher.notify_success("timesheet", {"totalEntities": 1})
        kind, payload = sink.sent[0]
        assert kind == NotificationKind.SUCCESS
        assert payload["integration_type"] == "timesheet"
        assert payload["results"] == {"totalEntities": 1}
        assert dispatcher.sent_count == 1

    def test_validation_lists_top_issues(self, sink):
        """Test the validation body lists at most ten issues."""
        issues = [
            ValidationIssue(entity_type="wbs", issue_type="DUPLICATE_ID",
                            description=f"dup {n}", blocking=True)
            for n in range(12)
        ]
        report = ValidationReport(
            total_issues=12, blocking_issues=12, issues=issues,
        )
        NotificationDispatcher(sink).notify_validation("projectWbs", report)
        kind, payload = sink.sent[0]
        assert kind == NotificationKind.VALIDATION_REPORT
        assert payload["subject"] == "Integration Validation Issues: projectWbs"
        assert payload["body"].count("- [BLOCKING] DUPLICATE_ID") == 10
        assert payload["report"]["blocking_issues"] == 12

    def test_sink_failure_swallowed(self):
        """Test a failing sink is counted, not raised."""
        dispatcher = NotificationDispatcher(RecordingSink(fail=True))
        assert dispatcher.notify_failure("timesheet", "boom") is False
        assert dispatcher.failed_count == 1

    def test_no_sink(self):
        dispatcher = NotificationDispatcher()
        assert not dispatcher.enabled
        assert dispatcher.notify_failure("timesheet", "boom") is False


class TestReconciliationReport:
    """Test the DATA RECONCILIATION REPORT."""

    def test_layout(self):
        """Test header, grouping order and field lines."""
        text = build_reconciliation_report(
            _records(), generated_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        )
        lines = text.splitlines()
        assert lines[0] == "DATA RECONCILIATION REPORT"
        assert lines[1] == "Generated: 2026-10-01 00:00:00 UTC"
        assert lines[2] == "Entity Type: project"
        assert lines[3] == "Total Discrepancies: 2"
        assert lines[4] == "=" * 50
        assert text.index("MISSINGINEBS (1)") < text.index("VALUEMISMATCH (1)")
        assert "Entity: 101 - Plant Upgrade" in lines
        assert "Error: EBS rejected update for E-1" in lines
        assert "    P6: 100" in lines
        assert "    EBS: N/A" in lines
        assert "    Resolution: UseA" in lines
        assert "MISSINGINP6" not in text

    def test_empty(self):
        text = build_reconciliation_report([], entity_type="wbs")
        assert "Total Discrepancies: 0" in text
        assert "Entity Type: wbs" in text

    def test_write_to_sink(self):
        sink = MemoryReportSink()
        text = write_reconciliation_report(_records(), sink, "/tmp/recon.txt")
        assert sink.reports["/tmp/recon.txt"] == text

    def test_sink_failure_propagates(self):
        class Broken:
            def write_report(self, text, destination_path):
                raise PermissionError(destination_path)

        with pytest.raises(PermissionError):
            write_reconciliation_report(_records(), Broken(), "/root/x.txt")


T0 = datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc)


def _sync(session_id, sync_type="timesheet", minutes=0, status=SyncStatus.COMPLETED,
          processed=4, updated=2, duration_ms=3000, error=None):
    start = T0 + timedelta(minutes=minutes)
    return SyncRecord(
        session_id=session_id, sync_type=sync_type, start_time=start,
        end_time=start + timedelta(milliseconds=duration_ms),
        duration_ms=duration_ms, status=status, error_message=error,
        entities_processed=processed, entities_updated=updated,
    )


def _log(level, levelno, message, minutes=0):
    return LogEntry(
        timestamp=T0 + timedelta(minutes=minutes), level=level,
        levelno=levelno, logger_name="p6ebs", message=message,
    )


class TestStatusReport:
    """Test the schedule overview."""

    def test_layout(self):
        schedules = [
            ScheduleInfo(integration_type="timesheet", interval_hours=24,
                         last_run=T0, next_run=T0 + timedelta(hours=24)),
            ScheduleInfo(integration_type="procurement", interval_hours=6,
                         active=False, error="boom"),
        ]
        body = format_status_report(schedules, generated_at=T0)["body"]
        lines = body.splitlines()
        assert lines[3] == "- procurement:"
        assert "  Status: Inactive" in lines
        assert "  Last run: Never" in lines
        assert "  Error: boom" in lines
        assert "  Interval: Every 24 hours" in lines
        assert "  Next run: 2026-10-02 08:00:00 UTC" in lines
        assert lines[-1] == "Report generated: 2026-10-01 08:00:00 UTC"

    def test_empty(self):
        body = format_status_report([])["body"]
        assert "No integrations scheduled." in body

    def test_dispatch(self, sink):
        notifier = NotificationDispatcher(sink)
        assert notifier.notify_status_report([
            ScheduleInfo(integration_type="timesheet", interval_hours=24),
        ])
        assert sink.kinds() == [NotificationKind.STATUS_REPORT]
        payload = sink.sent[0][1]
        assert payload["integration_type"] == "all"
        assert payload["subject"] == "P6-EBS Integration Status Report"
        assert payload["schedules"][0]["interval_hours"] == 24


class TestSummaryReport:
    """Test the cross-type summary report."""

    def test_newest_history_first_and_limited(self):
        history = [_sync(f"s{i}", minutes=i) for i in range(12)]
        report = build_summary_report(history, {"timesheet": T0}, generated_at=T0)
        assert report.count("Session: ") == SUMMARY_HISTORY_LIMIT
        assert report.index("Session: s11\n") < report.index("Session: s2\n")
        assert "Session: s1\n" not in report
        assert "Session: s0\n" not in report

    def test_ties_keep_latest_appended_first(self):
        report = build_summary_report([_sync("first"), _sync("second")], {})
        assert report.index("Session: second") < report.index("Session: first")

    def test_last_sync_times_and_logs(self):
        """Test never-run types and warning-or-worse log entries."""
        logs = [
            _log("INFO", 20, "routine"),
            _log("WARNING", 30, "slow EBS", minutes=1),
            _log("ERROR", 40, "timesheet failed", minutes=2),
        ]
        report = build_summary_report(
            [], {"timesheet": T0, "procurement": None}, logs,
        )
        assert "procurement: Never" in report
        assert "timesheet: 2026-10-01 08:00:00 UTC" in report
        assert "routine" not in report
        assert report.index("[ERROR] timesheet failed") < report.index("[WARNING] slow EBS")

    def test_empty(self):
        report = build_summary_report([], {})
        assert "No synchronization records found." in report
        assert "No synchronization history found." in report
        assert "No relevant log entries found." in report


class TestDetailedReport:
    """Test the per-type detailed report."""

    def test_statistics(self):
        history = [
            _sync("ok"),
            _sync("bad", minutes=5, status=SyncStatus.FAILED, processed=0,
                  updated=0, duration_ms=1000, error="EBS down"),
            _sync("other", sync_type="procurement"),
        ]
        logs = [
            _log("INFO", 20, "Integration timesheet started"),
            _log("INFO", 20, "procurement ok"),
        ]
        report = build_detailed_report("timesheet", history, logs, generated_at=T0)
        lines = report.splitlines()
        assert lines[0] == "TIMESHEET INTEGRATION DETAILED REPORT"
        assert report.index("Session: bad") < report.index("Session: ok")
        assert "Session: other" not in report
        assert "  Error: EBS down" in lines
        for expected in ("Total runs: 2", "Successful runs: 1", "Failed runs: 1",
                         "Success rate: 50%", "Total entities processed: 4",
                         "Total entities updated: 2", "Average duration: 2 seconds"):
            assert expected in lines
        assert "[INFO] Integration timesheet started" in report
        assert "procurement ok" not in report

    def test_no_history(self):
        report = build_detailed_report("projectWbs", [])
        assert "No synchronization history found for projectWbs." in report
        assert "Success rate: 0%" in report
        assert "Average duration" not in report
        assert "No log entries found." in report
