"""
Tests for sync session lifecycle and history.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from p6ebs.exceptions import IntegrationError, SourceConnectionError, SyncInProgressError
from p6ebs.integration.config import IntegrationConfig
from p6ebs.integration.correlation_store import CorrelationStore
from p6ebs.integration.models import SyncDirection, SyncStatus
from p6ebs.integration.sync_manager import SynchronizationManager

from conftest import FixedClock, MemoryPersistence


@pytest.fixture
def manager(config, correlation_store, clock):
    return SynchronizationManager(
        config=config, correlation_store=correlation_store, clock=clock,
    )


class TestSessionLifecycle:
    """Test start, complete and fail."""

    def test_start_uses_configured_direction(self, manager):
        """Test new sessions carry the configured direction."""
        session = manager.start_sync("procurement", {"batch": "1"})
        assert session.status == SyncStatus.IN_PROGRESS
        assert session.direction == SyncDirection.EBS_TO_P6
        assert session.params == {"batch": "1"}
        assert manager.is_active("procurement")

    def test_one_session_per_type(self, manager):
        """Test a second start for the same type is rejected."""
        first = manager.start_sync("timesheet")
        with pytest.raises(SyncInProgressError) as info:
            manager.start_sync("timesheet")
        assert info.value.context["session_id"] == first.session_id
        other = manager.start_sync("projectWbs")
        assert other.session_id != first.session_id

    def test_complete_records_history_and_last_sync(self, manager, clock):
        """Test completion appends a record and sets last sync time."""
        session = manager.start_sync("timesheet")
        clock.now += timedelta(seconds=2)
        record = manager.complete_sync(
            session,
            {"totalEntities": 12, "updatedEntities": 3, "failedEntities": 1},
        )
        assert record.status == SyncStatus.COMPLETED
        assert record.duration_ms == 2000
        assert (record.entities_processed, record.entities_updated,
                record.entities_failed) == (12, 3, 1)
        assert manager.get_last_sync_time("timesheet") == clock.now
        assert not manager.is_active("timesheet")

    def test_complete_persists_correlations(self, manager, correlation_store, persistence):
        correlation_store.correlate("project", "1", "A")
        manager.complete_sync(manager.start_sync("projectFinancials"))
        assert persistence.data == {"project": {"1": "A"}}

    def test_persist_failure_does_not_fail_session(self, config, clock):
        """Test a correlation save error is logged, not raised."""
        persistence = MemoryPersistence()
        persistence.fail = True
        manager = SynchronizationManager(
            config=config, correlation_store=CorrelationStore(persistence),
            clock=clock,
        )
        record = manager.complete_sync(manager.start_sync("timesheet"))
        assert record.status == SyncStatus.COMPLETED

    def test_fail_keeps_last_sync(self, manager):
        """Test a failed session leaves the last sync time unchanged."""
        session = manager.start_sync("procurement")
        record = manager.fail_sync(
            session, SourceConnectionError("EBS unreachable", system="EBS"),
        )
        assert record.status == SyncStatus.FAILED
        assert record.error_message == "EBS unreachable"
        assert manager.get_last_sync_time("procurement") is None
        assert not manager.is_active("procurement")

    def test_fail_with_plain_exception(self, manager):
        record = manager.fail_sync(manager.start_sync("timesheet"), ValueError())
        assert record.error_message == "ValueError"

    def test_finished_session_cannot_finish_again(self, manager):
        session = manager.start_sync("timesheet")
        manager.complete_sync(session)
        with pytest.raises(IntegrationError):
            manager.fail_sync(session, "late")

    def test_abandon_writes_no_history(self, manager):
        """Test an abandoned session frees the type without a record."""
        session = manager.start_sync("timesheet")
        manager.abandon_sync(session, "validation blocked")
        assert manager.history_count == 0
        assert not manager.is_active("timesheet")
        manager.start_sync("timesheet")

    def test_concurrent_starts_admit_one(self, manager):
        """Test only one of many racing starts wins."""
        started, rejected = [], []
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            try:
                started.append(manager.start_sync("timesheet"))
            except SyncInProgressError:
                rejected.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(started) == 1
        assert len(rejected) == 7


class TestHistory:
    """Test history ordering and bounds."""

    def test_insertion_order_and_filter(self, manager, clock):
        """Test history grows monotonically in insertion order."""
        counts = []
        for sync_type in ("timesheet", "procurement", "timesheet"):
            clock.now += timedelta(minutes=1)
            manager.complete_sync(manager.start_sync(sync_type))
            counts.append(manager.history_count)
        assert counts == [1, 2, 3]
        assert [r.sync_type for r in manager.get_history()] == [
            "timesheet", "procurement", "timesheet",
        ]
        assert len(manager.get_history("timesheet")) == 2

    def test_unbounded_by_default(self, manager):
        for _ in range(5):
            manager.complete_sync(manager.start_sync("timesheet"))
        assert manager.history_count == 5

    def test_max_history_drops_oldest(self, tmp_path, clock):
        """Test the opt-in retention limit keeps the newest records."""
        config = IntegrationConfig(
            correlation_file=str(tmp_path / "c.json"), max_history=2,
        )
        manager = SynchronizationManager(config=config, clock=clock)
        kept = []
        for sync_type in ("timesheet", "procurement", "projectWbs"):
            clock.now += timedelta(minutes=1)
            kept.append(manager.complete_sync(manager.start_sync(sync_type)))
        assert manager.history_count == 2
        assert manager.get_history() == kept[1:]

    def test_recent_history_newest_first(self, manager, clock):
        for sync_type in ("timesheet", "procurement", "projectWbs"):
            clock.now += timedelta(minutes=1)
            manager.complete_sync(manager.start_sync(sync_type))
        recent = manager.get_recent_history()
        assert [r.sync_type for r in recent] == [
            "projectWbs", "procurement", "timesheet",
        ]
        assert recent[0].start_time > recent[-1].start_time
        assert manager.get_recent_history("timesheet", limit=1) == recent[-1:]

    def test_recent_history_ties_latest_first(self, manager):
        """Test records sharing a start time come back latest-appended first."""
        first = manager.complete_sync(manager.start_sync("timesheet"))
        second = manager.complete_sync(manager.start_sync("timesheet"))
        assert manager.get_recent_history(limit=1) == [second]
        assert manager.get_recent_history() == [second, first]

    def test_record_result(self, manager, clock):
        record = manager.record_result(
            "resourceManagement", {"totalEntities": 4},
            duration=timedelta(milliseconds=250),
        )
        assert record.duration_ms == 250
        assert record.direction == SyncDirection.BIDIRECTIONAL
        assert manager.get_last_sync_time("resourceManagement") == clock.now

    def test_clear_history(self, manager):
        manager.complete_sync(manager.start_sync("timesheet"))
        manager.clear_history()
        assert manager.get_history() == []


class TestCancellationAndQueries:
    """Test cancellation flags and sync-needed checks."""

    def test_request_cancel_only_when_active(self, manager):
        assert manager.request_cancel("timesheet") is False
        manager.start_sync("timesheet")
        assert manager.request_cancel("timesheet") is True
        assert manager.is_cancel_requested("timesheet")

    def test_cancel_flag_cleared_on_finish(self, manager):
        session = manager.start_sync("timesheet")
        manager.request_cancel("timesheet")
        manager.fail_sync(session, "Cancelled by user")
        assert not manager.is_cancel_requested("timesheet")

    def test_is_sync_needed(self, manager, clock):
        """Test sync is needed when never run or either side changed."""
        assert manager.is_sync_needed("timesheet")
        manager.complete_sync(manager.start_sync("timesheet"))
        assert not manager.is_sync_needed(
            "timesheet", last_change_p6=clock.now - timedelta(hours=1),
        )
        naive_later = (clock.now + timedelta(hours=1)).replace(tzinfo=None)
        assert manager.is_sync_needed("timesheet", last_change_ebs=naive_later)

    def test_direction_overrides(self, manager):
        manager.set_directions({"timesheet": "EBS_TO_P6"})
        assert manager.get_direction("timesheet") == SyncDirection.EBS_TO_P6
        assert manager.get_direction("procurement") == SyncDirection.EBS_TO_P6
        assert manager.get_direction("projectWbs") == SyncDirection.P6_TO_EBS

    def test_set_last_sync_time_naive(self, manager):
        manager.set_last_sync_time("timesheet", datetime(2026, 1, 1))
        assert manager.get_last_sync_time("timesheet").tzinfo == timezone.utc
        assert "timesheet" in manager.get_completed_integrations()

    def test_clock_default(self, config):
        manager = SynchronizationManager(config=config)
        session = manager.start_sync("timesheet")
        assert session.start_time.tzinfo is not None
        assert isinstance(FixedClock()(), datetime)
