# -*- coding: utf-8 -*-
"""
Integration Scheduler - P6/EBS Integration Core

Recurring and on-demand triggering of integration runs, one recurring job
per integration type. Built on APScheduler's ``BackgroundScheduler`` with
an ``IntervalTrigger``; the job id is the integration type, so scheduling
a type again replaces its job (at most one active timer per type).

Initial delay:
    * never synced, or the interval already elapsed since the last sync:
      ``initial_delay_seconds`` (one minute by default)
    * otherwise: ``interval - (now - last_sync)``

``run_now`` goes through the same ``_execute`` path as a timer firing, on
a worker thread, independent of the schedule. A failure inside a run is
logged and counted; the job keeps firing on its normal cadence.

Example:
    >>> scheduler = IntegrationScheduler(runner=service.run_integration,
    ...                                  sync_manager=manager)
    >>> scheduler.schedule_integration("timesheet", interval_hours=4)
    >>> scheduler.start()

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from p6ebs.exceptions import SchedulingError
from p6ebs.integration.config import IntegrationConfig, get_config
from p6ebs.integration.metrics import inc_errors, observe_duration
from p6ebs.integration.models import ScheduleInfo
from p6ebs.integration.sync_manager import SynchronizationManager

logger = logging.getLogger(__name__)

Runner = Callable[[str], Any]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationScheduler:
    """One recurring APScheduler job per integration type.

    Args:
        runner: Callable executing one integration run for a type.
        sync_manager: Source of last sync times.
        config: Integration configuration; the global one when omitted.
        scheduler: APScheduler instance; a ``BackgroundScheduler`` in UTC
            when omitted.
        executor: Pool used by ``run_now``; created when omitted.
        clock: UTC time source.
    """

    def __init__(
        self,
        runner: Runner,
        sync_manager: SynchronizationManager,
        config: Optional[IntegrationConfig] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._runner = runner
        self._sync_manager = sync_manager
        self._config = config or get_config()
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="p6ebs-run-now",
        )
        self._clock = clock or _now
        self._schedules: Dict[str, ScheduleInfo] = {}
        self._pending: set = set()
        self._lock = threading.Lock()
        self._started = False
        logger.info(
            "IntegrationScheduler initialized: initial_delay=%ds, workers=%d",
            self._config.initial_delay_seconds, self._config.max_workers,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the underlying scheduler. Idempotent."""
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        logger.info(
            "Integration scheduler started with %d jobs", len(self._schedules),
        )

    def schedule_configured(self) -> int:
        """Schedule every type listed in the configured intervals."""
        for integration_type in self._config.sync_intervals:
            self.schedule_integration(integration_type)
        return len(self._config.sync_intervals)

    def shutdown(self, wait: bool = True) -> None:
        """Stop firing timers and the run-now pool.

        With ``wait`` set, in-flight run-now calls get up to
        ``scheduler_shutdown_timeout`` seconds to finish.
        """
        if self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
        with self._lock:
            pending = list(self._pending)
        if wait and pending:
            _, not_done = wait_futures(
                pending, timeout=self._config.scheduler_shutdown_timeout,
            )
            if not_done:
                logger.warning(
                    "%d manual runs still executing at shutdown", len(not_done),
                )
        if self._owns_executor:
            self._executor.shutdown(wait=False)
        with self._lock:
            for info in self._schedules.values():
                info.active = False
        logger.info("Integration scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def compute_initial_delay(
        self,
        integration_type: str,
        interval_hours: Optional[int] = None,
    ) -> float:
        """Seconds until the first fire for ``integration_type``."""
        hours = (
            interval_hours if interval_hours is not None
            else self._config.get_interval_hours(integration_type)
        )
        minimum = float(self._config.initial_delay_seconds)

        last_sync = self._sync_manager.get_last_sync_time(integration_type)
        if last_sync is None:
            return minimum
        if last_sync.tzinfo is None:
            last_sync = last_sync.replace(tzinfo=timezone.utc)

        elapsed = (self._clock() - last_sync).total_seconds()
        interval = hours * 3600.0
        if elapsed >= interval:
            return minimum
        return interval - elapsed

    def schedule_integration(
        self,
        integration_type: str,
        interval_hours: Optional[int] = None,
    ) -> ScheduleInfo:
        """Schedule (or re-schedule) the recurring job for a type.

        Args:
            integration_type: Integration type; also the job id.
            interval_hours: Interval; the configured one when omitted.

        Returns:
            The schedule entry.

        Raises:
            ValueError: If the interval is below one hour.
            SchedulingError: If the job could not be submitted.
        """
        hours = (
            interval_hours if interval_hours is not None
            else self._config.get_interval_hours(integration_type)
        )
        if hours < 1:
            raise ValueError(f"interval_hours must be >= 1, got {hours}")

        delay = self.compute_initial_delay(integration_type, hours)
        first_fire = self._clock() + timedelta(seconds=delay)
        info = self._build_info(integration_type, hours)

        try:
            self._scheduler.add_job(
                self._execute,
                trigger=IntervalTrigger(hours=hours, start_date=first_fire),
                args=[integration_type],
                id=integration_type,
                name=f"P6/EBS {integration_type} every {hours}h",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=3600,
            )
        except Exception as exc:
            info.active = False
            info.error = str(exc)
            with self._lock:
                self._schedules[integration_type] = info
            inc_errors("scheduling")
            logger.error(
                "Failed to schedule %s: %s", integration_type, exc,
                exc_info=True,
            )
            raise SchedulingError(
                f"Failed to schedule {integration_type}: {exc}",
                integration_type=integration_type,
            ) from exc

        with self._lock:
            self._schedules[integration_type] = info
        logger.info(
            "Scheduled integration for %s every %d hours "
            "(first run in %.0fs)",
            integration_type, hours, delay,
        )
        return info

    def cancel(self, integration_type: str) -> bool:
        """Cancel the recurring job for a type. No-op if not scheduled.

        Returns:
            True if a job was removed.
        """
        with self._lock:
            info = self._schedules.pop(integration_type, None)
        try:
            self._scheduler.remove_job(integration_type)
        except JobLookupError:
            return False
        if info is not None:
            info.active = False
        logger.info("Cancelled scheduled integration for %s", integration_type)
        return True

    def run_now(self, integration_type: str) -> Future:
        """Trigger one run for a type on a worker thread.

        Raises:
            SchedulingError: If the run could not be submitted.
        """
        logger.info("Manually triggering integration for %s", integration_type)
        try:
            future = self._executor.submit(self._execute, integration_type)
        except RuntimeError as exc:
            inc_errors("scheduling")
            raise SchedulingError(
                f"Failed to submit run for {integration_type}: {exc}",
                integration_type=integration_type,
            ) from exc
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _execute(self, integration_type: str) -> Any:
        """Run one integration; failures are logged, never propagated."""
        start = time.time()
        logger.info("Executing scheduled integration for %s", integration_type)
        try:
            result = self._runner(integration_type)
        except Exception as exc:
            inc_errors("scheduled_run")
            logger.error(
                "Scheduled integration failed for %s: %s",
                integration_type, exc, exc_info=True,
            )
            result = None
        finally:
            observe_duration("scheduled_run", time.time() - start)
            self._refresh(integration_type)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_scheduled_task(self, integration_type: str) -> Optional[ScheduleInfo]:
        """Schedule entry for a type with fresh last/next run times."""
        with self._lock:
            info = self._schedules.get(integration_type)
            if info is None:
                return None
            hours = info.interval_hours
            active, error = info.active, info.error
        fresh = self._build_info(integration_type, hours)
        fresh.active = active and self._scheduler.get_job(integration_type) is not None
        fresh.error = error
        return fresh

    def get_all_scheduled_tasks(self) -> List[ScheduleInfo]:
        """Entries for every configured or scheduled type, sorted by type."""
        with self._lock:
            types = set(self._schedules) | set(self._config.sync_intervals)
        tasks: List[ScheduleInfo] = []
        for integration_type in sorted(types):
            info = self.get_scheduled_task(integration_type)
            if info is None:
                info = self._build_info(
                    integration_type,
                    self._config.get_interval_hours(integration_type),
                )
                info.active = False
            tasks.append(info)
        return tasks

    def _build_info(self, integration_type: str, hours: int) -> ScheduleInfo:
        last_run = self._sync_manager.get_last_sync_time(integration_type)
        next_run = last_run + timedelta(hours=hours) if last_run else None
        return ScheduleInfo(
            integration_type=integration_type,
            interval_hours=hours,
            last_run=last_run,
            next_run=next_run,
        )

    def _refresh(self, integration_type: str) -> None:
        with self._lock:
            info = self._schedules.get(integration_type)
            if info is None:
                return
            info.last_run = self._sync_manager.get_last_sync_time(integration_type)
            if info.last_run is not None:
                info.next_run = info.last_run + timedelta(hours=info.interval_hours)


__all__ = [
    "IntegrationScheduler",
]
