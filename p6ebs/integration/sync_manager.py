# -*- coding: utf-8 -*-
"""
Synchronization Manager - P6/EBS Integration Core

Owns the lifecycle of sync sessions and the sync history:

    start_sync -> InProgress -> complete_sync (Completed) | fail_sync (Failed)

* ``start_sync`` creates a session with a fresh UUID and the direction
  configured for the type. At most one session per integration type may be
  in progress; a second start for the same type raises
  ``SyncInProgressError``. Other types start independently.
* ``complete_sync`` appends a SyncRecord, sets the type's last sync time
  to the session end time, and persists the correlation store.
* ``fail_sync`` appends a SyncRecord but leaves the last sync time alone.
* History is kept in insertion order. ``get_recent_history`` returns it
  newest first by start time. Retention is unbounded unless
  ``IntegrationConfig.max_history`` opts in to a limit, in which case
  the oldest records are dropped once the limit is exceeded.

The active-type map, the cancellation flags, the history list and the
last-sync map share one lock, so readers never see a half-appended record.

Example:
    >>> from p6ebs.integration.sync_manager import SynchronizationManager
    >>> manager = SynchronizationManager()
    >>> session = manager.start_sync("timesheet")
    >>> record = manager.complete_sync(session, {"totalEntities": 12})
    >>> manager.get_last_sync_time("timesheet") == record.end_time
    True

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from p6ebs.exceptions import IntegrationError, P6EbsException, SyncInProgressError
from p6ebs.integration.config import IntegrationConfig, get_config
from p6ebs.integration.correlation_store import CorrelationStore
from p6ebs.integration.metrics import (
    inc_errors,
    inc_sync_sessions,
    set_active_syncs,
)
from p6ebs.integration.models import (
    SyncDirection,
    SyncRecord,
    SyncSession,
    SyncStatus,
)
from p6ebs.integration.provenance import ProvenanceLedger

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _now() -> datetime:
    """Return the current UTC time (microsecond precision for durations)."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SynchronizationManager:
    """Sync session lifecycle, history and last-sync bookkeeping.

    Attributes:
        _config: Integration configuration (directions, history bound).
        _correlations: Store persisted after each completed session.
        _active: Integration type -> running session.
        _cancel_requested: Types whose running session should stop.
        _history: SyncRecords in insertion order.
        _last_sync: Integration type -> end time of last completed session.
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        correlation_store: Optional[CorrelationStore] = None,
        provenance: Optional[ProvenanceLedger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize SynchronizationManager.

        Args:
            config: Integration configuration; the global one when omitted.
            correlation_store: Store saved on session completion.
            provenance: Provenance ledger for session events.
            clock: Time source, UTC. Overridable for tests.
        """
        self._config = config or get_config()
        self._correlations = correlation_store
        self._provenance = provenance or ProvenanceLedger()
        self._clock = clock or _now
        self._direction_overrides: Dict[str, SyncDirection] = {}
        self._active: Dict[str, SyncSession] = {}
        self._cancel_requested: set = set()
        self._history: List[SyncRecord] = []
        self._last_sync: Dict[str, datetime] = {}
        self._lock = threading.RLock()
        logger.info(
            "SynchronizationManager initialized: max_history=%d, "
            "correlation_store=%s",
            self._config.max_history,
            "yes" if correlation_store is not None else "no",
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_directions(
        self,
        directions: Mapping[str, Union[SyncDirection, str]],
    ) -> None:
        """Override configured directions (from persisted settings)."""
        with self._lock:
            self._direction_overrides = {
                key: SyncDirection(value) for key, value in directions.items()
            }

    def get_direction(self, sync_type: str) -> SyncDirection:
        with self._lock:
            override = self._direction_overrides.get(sync_type)
        if override is not None:
            return override
        return SyncDirection(self._config.get_direction(sync_type))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_sync(
        self,
        sync_type: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> SyncSession:
        """Start a session for ``sync_type``.

        Args:
            sync_type: Integration type.
            params: Caller parameters stored on the session.

        Returns:
            The new InProgress session.

        Raises:
            SyncInProgressError: If a session for the type is running.
        """
        direction = self.get_direction(sync_type)
        with self._lock:
            running = self._active.get(sync_type)
            if running is not None:
                logger.warning(
                    "Rejected start for %s: session %s already in progress",
                    sync_type, running.session_id,
                )
                raise SyncInProgressError(
                    f"Synchronization already in progress for {sync_type}",
                    integration_type=sync_type,
                    session_id=running.session_id,
                )
            session = SyncSession(
                session_id=str(uuid.uuid4()),
                sync_type=sync_type,
                start_time=self._clock(),
                direction=direction,
                params=dict(params or {}),
            )
            self._active[sync_type] = session
            self._cancel_requested.discard(sync_type)
            active_count = len(self._active)

        set_active_syncs(active_count)
        self._provenance.record(
            "sync_session", session.session_id, "start",
            self._provenance.digest({
                "sync_type": sync_type, "direction": direction.value,
            }),
        )
        logger.info(
            "Starting synchronization session %s for %s (direction=%s)",
            session.session_id, sync_type, direction.value,
        )
        return session

    def complete_sync(
        self,
        session: SyncSession,
        results: Optional[Mapping[str, Any]] = None,
    ) -> SyncRecord:
        """Mark ``session`` Completed and record it.

        Updates the last sync time for the type and persists the
        correlation store. A persistence failure is logged; the session
        still counts as completed.

        Args:
            session: InProgress session.
            results: Result values (``totalEntities``, ``updatedEntities``,
                ``failedEntities`` and any extras).

        Returns:
            The appended SyncRecord.

        Raises:
            IntegrationError: If the session already finished.
        """
        self._ensure_running(session)
        session.end_time = self._clock()
        session.status = SyncStatus.COMPLETED
        session.results = dict(results or {})

        record = self._finish(session, update_last_sync=True)

        if self._correlations is not None:
            try:
                self._correlations.save()
            except Exception as exc:
                logger.error(
                    "Session %s completed but correlations were not "
                    "persisted: %s",
                    session.session_id, exc,
                )

        logger.info(
            "Completed synchronization session %s for %s in %dms "
            "(processed=%d, updated=%d, failed=%d)",
            session.session_id, session.sync_type, record.duration_ms,
            record.entities_processed, record.entities_updated,
            record.entities_failed,
        )
        return record

    def fail_sync(
        self,
        session: SyncSession,
        error: Union[BaseException, str],
        results: Optional[Mapping[str, Any]] = None,
    ) -> SyncRecord:
        """Mark ``session`` Failed and record it.

        The last sync time is not updated.

        Args:
            session: InProgress session.
            error: Exception or message describing the failure.
            results: Partial results, if any.

        Returns:
            The appended SyncRecord.

        Raises:
            IntegrationError: If the session already finished.
        """
        self._ensure_running(session)
        if isinstance(error, P6EbsException):
            message = error.message
        else:
            message = str(error) or type(error).__name__
        session.end_time = self._clock()
        session.status = SyncStatus.FAILED
        session.error_message = message
        if results:
            session.results = dict(results)

        record = self._finish(session, update_last_sync=False)
        inc_errors("sync")
        logger.error(
            "Failed synchronization session %s for %s: %s",
            session.session_id, session.sync_type, message,
        )
        return record

    def abandon_sync(self, session: SyncSession, reason: str) -> None:
        """Release a session that never did any work.

        Used when pre-flight validation skips a run: the type becomes free
        again, no history record is written and the last sync time is
        unchanged.
        """
        with self._lock:
            current = self._active.get(session.sync_type)
            if current is not None and current.session_id == session.session_id:
                del self._active[session.sync_type]
            self._cancel_requested.discard(session.sync_type)
            active_count = len(self._active)
        set_active_syncs(active_count)
        logger.warning(
            "Abandoned synchronization session %s for %s: %s",
            session.session_id, session.sync_type, reason,
        )

    def _ensure_running(self, session: SyncSession) -> None:
        if session.status != SyncStatus.IN_PROGRESS:
            raise IntegrationError(
                f"Session {session.session_id} already finished with "
                f"status {session.status.value}",
                integration_type=session.sync_type,
            )

    def _finish(self, session: SyncSession, update_last_sync: bool) -> SyncRecord:
        record = SyncRecord.from_session(session)
        with self._lock:
            self._append_locked(record)
            if update_last_sync and session.end_time is not None:
                self._last_sync[session.sync_type] = session.end_time
            current = self._active.get(session.sync_type)
            if current is not None and current.session_id == session.session_id:
                del self._active[session.sync_type]
            self._cancel_requested.discard(session.sync_type)
            active_count = len(self._active)

        set_active_syncs(active_count)
        inc_sync_sessions(session.sync_type, session.status.value)
        self._provenance.record(
            "sync_session", session.session_id, session.status.value.lower(),
            self._provenance.digest(record.model_dump(mode="json")),
        )
        return record

    def _append_locked(self, record: SyncRecord) -> None:
        self._history.append(record)
        limit = self._config.max_history
        if limit and len(self._history) > limit:
            dropped = len(self._history) - limit
            del self._history[:dropped]
            logger.debug(
                "History retention limit %d reached; dropped %d oldest record(s)",
                limit, dropped,
            )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def request_cancel(self, sync_type: str) -> bool:
        """Flag the running session of ``sync_type`` for cancellation.

        Best effort: the running task checks the flag between phases.

        Returns:
            True if a session was running.
        """
        with self._lock:
            if sync_type not in self._active:
                return False
            self._cancel_requested.add(sync_type)
        logger.info("Cancellation requested for %s", sync_type)
        return True

    def is_cancel_requested(self, sync_type: str) -> bool:
        with self._lock:
            return sync_type in self._cancel_requested

    # ------------------------------------------------------------------
    # Direct history entries
    # ------------------------------------------------------------------

    def record_result(
        self,
        integration_type: str,
        results: Mapping[str, Any],
        duration: Optional[timedelta] = None,
    ) -> SyncRecord:
        """Append a Completed record for work done outside a session.

        Args:
            integration_type: Integration type the result belongs to.
            results: Result values, same keys as ``complete_sync``.
            duration: How long the work took, when known.

        Returns:
            The appended SyncRecord.
        """
        end = self._clock()
        start = end - (duration or timedelta(0))
        session = SyncSession(
            sync_type=integration_type,
            start_time=start,
            end_time=end,
            direction=self.get_direction(integration_type),
            status=SyncStatus.COMPLETED,
            results=dict(results),
        )
        record = SyncRecord.from_session(session)
        with self._lock:
            self._append_locked(record)
            self._last_sync[integration_type] = end
        logger.info("Recorded synchronization result for %s", integration_type)
        return record

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
        logger.info("Synchronization history cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_history(self, sync_type: Optional[str] = None) -> List[SyncRecord]:
        """Return history records in insertion order, optionally filtered."""
        with self._lock:
            if sync_type is None:
                return list(self._history)
            return [r for r in self._history if r.sync_type == sync_type]

    def get_recent_history(
        self,
        sync_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SyncRecord]:
        """Return history newest first by start time, at most ``limit``.

        Records with the same start time keep the later-appended one first.
        """
        records = self.get_history(sync_type)
        records.reverse()
        records.sort(key=lambda r: r.start_time, reverse=True)
        return records if limit is None else records[:limit]

    def get_last_sync_time(self, sync_type: str) -> Optional[datetime]:
        with self._lock:
            return self._last_sync.get(sync_type)

    def set_last_sync_time(self, sync_type: str, when: datetime) -> None:
        """Seed the last sync time (e.g. restored from an external log)."""
        with self._lock:
            self._last_sync[sync_type] = _as_utc(when)

    def get_completed_integrations(self) -> Dict[str, datetime]:
        with self._lock:
            return dict(self._last_sync)

    def is_sync_needed(
        self,
        sync_type: str,
        last_change_p6: Optional[datetime] = None,
        last_change_ebs: Optional[datetime] = None,
    ) -> bool:
        """True if never synced or either system changed after the last sync."""
        last_sync = self.get_last_sync_time(sync_type)
        if last_sync is None:
            return True
        last_sync = _as_utc(last_sync)
        for changed in (last_change_p6, last_change_ebs):
            if changed is not None and _as_utc(changed) > last_sync:
                return True
        return False

    def is_active(self, sync_type: str) -> bool:
        with self._lock:
            return sync_type in self._active

    def get_active_session(self, sync_type: str) -> Optional[SyncSession]:
        with self._lock:
            return self._active.get(sync_type)

    def get_active_sessions(self) -> Dict[str, SyncSession]:
        with self._lock:
            return dict(self._active)

    @property
    def history_count(self) -> int:
        with self._lock:
            return len(self._history)


__all__ = [
    "SynchronizationManager",
]
