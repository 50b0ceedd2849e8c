# -*- coding: utf-8 -*-
"""
P6/EBS Integration Service Setup

Provides ``configure_integration(app)`` which wires up the integration core
(entity mapper, correlation store, synchronization manager, discrepancy
detector, resolution engine, transformation service, validation gate,
notifications, scheduler, provenance ledger) and mounts the REST API.

Also exposes ``get_service()`` for programmatic access and the
``P6EbsIntegrationService`` facade class.

Usage:
    >>> from fastapi import FastAPI
    >>> from p6ebs.integration.setup import configure_integration
    >>> app = FastAPI()
    >>> import asyncio
    >>> service = asyncio.run(configure_integration(app, p6=p6, ebs=ebs))

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Dict, List, Mapping, Optional, Union

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from p6ebs.integration.collaborators import (
    ConfigurationStore,
    CorrelationPersistence,
    NotificationSink,
    SystemConnector,
)
from p6ebs.integration.config import IntegrationConfig, get_config
from p6ebs.integration.correlation_store import (
    CorrelationStore,
    JsonFileCorrelationPersistence,
)
from p6ebs.integration.entity_mapper import EntityMapper
from p6ebs.integration.integration_service import IntegrationService
from p6ebs.integration.log_buffer import LogEntry, RecentLogHandler
from p6ebs.integration.metrics import set_metrics_enabled
from p6ebs.integration.models import (
    EntityRecord,
    IntegrationSettings,
    ScheduleInfo,
    SyncRecord,
)
from p6ebs.integration.notifications import (
    NotificationDispatcher,
    build_detailed_report,
    build_summary_report,
)
from p6ebs.integration.provenance import ProvenanceLedger
from p6ebs.integration.scheduler import IntegrationScheduler
from p6ebs.integration.sync_manager import SynchronizationManager

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/p6ebs"


class _UnconfiguredConnector:
    """Connector placeholder that fails every call until one is supplied."""

    def __init__(self, system: str) -> None:
        self.system = system

    def fetch_entities(
        self,
        entity_type: str,
        connection_params: Mapping[str, str],
    ) -> List[EntityRecord]:
        raise RuntimeError(f"No {self.system} connector configured")

    def write_entity(
        self,
        entity_type: str,
        connection_params: Mapping[str, str],
        entity_id: str,
        field_updates: Mapping[str, Any],
    ) -> bool:
        raise RuntimeError(f"No {self.system} connector configured")


# ===================================================================
# Request models
# ===================================================================


class ScheduleRequest(BaseModel):
    """Body of ``POST /schedules/{integration_type}``."""

    interval_hours: Optional[int] = Field(None, ge=1)

    model_config = {"extra": "forbid"}


# ===================================================================
# Facade
# ===================================================================


class P6EbsIntegrationService:
    """Facade wiring every integration engine for one process.

    Attributes:
        config: Integration configuration.
        provenance: Shared provenance ledger.
        correlation_store: Persistent P6/EBS id correlations.
        mapper: Entity mapping tables.
        sync_manager: Session lifecycle and history.
        integration: Phase orchestrator.
        scheduler: Recurring and run-now triggering.
        notifier: Notification dispatcher shared with the orchestrator.
        log_handler: Recent log buffer attached to the ``p6ebs`` logger
            while the service is started.
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        p6: Optional[SystemConnector] = None,
        ebs: Optional[SystemConnector] = None,
        configuration_store: Optional[ConfigurationStore] = None,
        notification_sink: Optional[NotificationSink] = None,
        correlation_persistence: Optional[CorrelationPersistence] = None,
    ) -> None:
        self.config = config or get_config()
        self._configuration_store = configuration_store
        self.provenance = ProvenanceLedger(
            enabled=self.config.enable_provenance,
            capacity=self.config.provenance_max_entries,
        )
        self.correlation_store = CorrelationStore(
            correlation_persistence
            or JsonFileCorrelationPersistence(self.config.correlation_path),
        )
        self.mapper = EntityMapper()
        self.notifier = NotificationDispatcher(notification_sink)
        self.log_handler = RecentLogHandler(
            capacity=self.config.recent_log_capacity,
        )
        self.sync_manager = SynchronizationManager(
            config=self.config,
            correlation_store=self.correlation_store,
            provenance=self.provenance,
        )
        self.integration = IntegrationService(
            p6=p6 or _UnconfiguredConnector("P6"),
            ebs=ebs or _UnconfiguredConnector("EBS"),
            config=self.config,
            settings=self._load_settings(),
            mapper=self.mapper,
            correlation_store=self.correlation_store,
            sync_manager=self.sync_manager,
            notifier=self.notifier,
            provenance=self.provenance,
        )
        self.scheduler = IntegrationScheduler(
            runner=self.integration.run_integration,
            sync_manager=self.sync_manager,
            config=self.config,
        )
        self._started = False
        self._start_time: Optional[float] = None
        self._lock = threading.Lock()
        logger.info("P6EbsIntegrationService created")

    def _load_settings(self) -> IntegrationSettings:
        if self._configuration_store is None:
            return IntegrationSettings()
        settings = self._configuration_store.load_configuration()
        logger.info(
            "Loaded integration settings: enabled=%s",
            settings.enabled_integrations or "all",
        )
        return settings

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def startup(self) -> None:
        """Load correlations, schedule enabled types and start the scheduler.

        Safe to call multiple times.
        """
        with self._lock:
            if self._started:
                logger.debug("P6EbsIntegrationService already started; skipping")
                return
            logger.info("P6EbsIntegrationService starting up...")
            package_logger = logging.getLogger("p6ebs")
            package_logger.setLevel(self.config.log_level)
            package_logger.addHandler(self.log_handler)
            set_metrics_enabled(self.config.enable_metrics)
            self.correlation_store.load()
            self._schedule_enabled()
            self.scheduler.start()
            self._started = True
            self._start_time = time.time()
        logger.info("P6EbsIntegrationService startup complete")

    def shutdown(self) -> None:
        """Stop the scheduler and worker pools and persist correlations."""
        with self._lock:
            if not self._started:
                return
            self._started = False
        self.scheduler.shutdown(wait=True)
        self.integration.shutdown(wait=True)
        try:
            self.correlation_store.save()
        except Exception as exc:
            logger.error("Correlations not saved on shutdown: %s", exc)
        logger.info("P6EbsIntegrationService shut down")
        logging.getLogger("p6ebs").removeHandler(self.log_handler)

    @property
    def started(self) -> bool:
        return self._started

    def _intervals(self) -> Dict[str, int]:
        intervals = dict(self.config.sync_intervals)
        intervals.update(self.integration.settings.sync_intervals)
        return intervals

    def _schedule_enabled(self) -> int:
        settings = self.integration.settings
        scheduled = 0
        for integration_type, hours in sorted(self._intervals().items()):
            if not settings.is_enabled(integration_type):
                self.scheduler.cancel(integration_type)
                continue
            self.scheduler.schedule_integration(integration_type, hours)
            scheduled += 1
        return scheduled

    # ==================================================================
    # Operations
    # ==================================================================

    def update_settings(self, settings: IntegrationSettings) -> None:
        """Persist settings, apply them and re-schedule."""
        if self._configuration_store is not None:
            self._configuration_store.save_configuration(settings)
        self.integration.update_settings(settings)
        if self._started:
            self._schedule_enabled()

    def run_now(self, integration_type: str) -> Future:
        return self.scheduler.run_now(integration_type)

    def schedule(
        self,
        integration_type: str,
        interval_hours: Optional[int] = None,
    ) -> ScheduleInfo:
        if interval_hours is None:
            interval_hours = self._intervals().get(integration_type)
        return self.scheduler.schedule_integration(integration_type, interval_hours)

    def cancel_schedule(self, integration_type: str) -> bool:
        return self.scheduler.cancel(integration_type)

    def cancel_run(self, integration_type: str) -> bool:
        return self.integration.cancel(integration_type)

    def get_history(self, sync_type: Optional[str] = None) -> List[SyncRecord]:
        return self.sync_manager.get_history(sync_type)

    def get_recent_history(
        self,
        sync_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SyncRecord]:
        return self.sync_manager.get_recent_history(sync_type, limit)

    def get_schedules(self) -> List[ScheduleInfo]:
        return self.scheduler.get_all_scheduled_tasks()

    # ==================================================================
    # Reports and logs
    # ==================================================================

    def get_recent_logs(self, min_level: Union[int, str] = logging.NOTSET) -> List[LogEntry]:
        """Buffered ``p6ebs`` log entries at or above ``min_level``."""
        return self.log_handler.get_recent_logs(min_level)

    def summary_report(self) -> str:
        """Last sync times, newest sync records and recent warnings."""
        last_sync = dict.fromkeys(self._intervals())
        last_sync.update(self.sync_manager.get_completed_integrations())
        text = build_summary_report(
            self.sync_manager.get_history(), last_sync, self.get_recent_logs(),
        )
        logger.info("Generated integration summary report")
        return text

    def detailed_report(self, integration_type: str) -> str:
        """History, statistics and related log entries for one type."""
        text = build_detailed_report(
            integration_type,
            self.sync_manager.get_history(integration_type),
            self.get_recent_logs(),
        )
        logger.info("Generated detailed report for %s", integration_type)
        return text

    def send_status_report(self) -> bool:
        """Send the schedule overview through the notification sink."""
        return self.notifier.notify_status_report(self.get_schedules())

    # ==================================================================
    # Health and statistics
    # ==================================================================

    def health_check(self) -> Dict[str, Any]:
        """Report liveness of the scheduler and integrity of provenance."""
        chain_valid, _ = self.provenance.verify()
        healthy = self._started and self.scheduler.running and chain_valid
        return {
            "status": "healthy" if healthy else (
                "degraded" if self._started else "not_started"
            ),
            "started": self._started,
            "scheduler_running": self.scheduler.running,
            "provenance_chain_valid": chain_valid,
            "active_syncs": sorted(self.sync_manager.get_active_sessions()),
            "uptime_seconds": (
                round(time.time() - self._start_time, 3)
                if self._start_time and self._started else 0.0
            ),
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "history_count": self.sync_manager.history_count,
            "active_syncs": len(self.sync_manager.get_active_sessions()),
            "correlations": self.correlation_store.count(),
            "scheduled_types": sum(1 for s in self.get_schedules() if s.active),
            "total_resolutions": self.integration.resolver.total_resolutions,
            "total_commits": self.integration.resolver.total_commits,
            "total_commit_failures": self.integration.resolver.total_failures,
            "provenance_entries": self.provenance.entry_count,
            "provenance_dropped": self.provenance.dropped_count,
            "metrics_enabled": self.config.enable_metrics,
            "provenance_enabled": self.config.enable_provenance,
        }


# ===================================================================
# Singleton
# ===================================================================

_service_instance: Optional[P6EbsIntegrationService] = None
_service_lock = threading.Lock()


def get_service() -> P6EbsIntegrationService:
    """Get the singleton P6EbsIntegrationService, creating it if needed."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = P6EbsIntegrationService()
    return _service_instance


def set_service(service: P6EbsIntegrationService) -> None:
    global _service_instance
    with _service_lock:
        _service_instance = service


def reset_service() -> None:
    """Shut down and drop the singleton. Intended for testing teardown."""
    global _service_instance
    with _service_lock:
        service, _service_instance = _service_instance, None
    if service is not None:
        service.shutdown()


async def configure_integration(
    app: Any,
    config: Optional[IntegrationConfig] = None,
    **collaborators: Any,
) -> P6EbsIntegrationService:
    """Configure the integration service on a FastAPI application.

    Creates the service, stores it in app.state and as the singleton,
    mounts the API router, and starts the service.

    Args:
        app: FastAPI application instance.
        config: Optional integration config.
        **collaborators: ``p6``, ``ebs``, ``configuration_store``,
            ``notification_sink``, ``correlation_persistence``.

    Returns:
        P6EbsIntegrationService instance.
    """
    service = P6EbsIntegrationService(config=config, **collaborators)
    set_service(service)
    app.state.p6ebs_integration_service = service
    app.include_router(get_router())
    logger.info("P6/EBS integration API router mounted")

    service.startup()
    logger.info("P6/EBS integration service configured on app")
    return service


def get_integration(app: Any) -> P6EbsIntegrationService:
    """Return the service attached to ``app`` by ``configure_integration``.

    Raises:
        RuntimeError: If the service was not configured on the app.
    """
    service = getattr(app.state, "p6ebs_integration_service", None)
    if service is None:
        raise RuntimeError(
            "P6/EBS integration service not configured; "
            "call configure_integration(app) first"
        )
    return service


# ===================================================================
# API router
# ===================================================================


def get_router() -> APIRouter:
    """Create the API router at prefix ``/api/v1/p6ebs``."""
    router = APIRouter(prefix=API_PREFIX, tags=["p6ebs"])

    def _svc() -> P6EbsIntegrationService:
        return get_service()

    @router.get("/health")
    async def get_health() -> Dict[str, Any]:
        """Service health."""
        return _svc().health_check()

    @router.get("/stats")
    async def get_stats() -> Dict[str, Any]:
        return _svc().get_stats()

    @router.get("/history", response_model=List[SyncRecord])
    async def get_history(
        sync_type: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ) -> List[SyncRecord]:
        """Most recent sync records, newest first."""
        return _svc().get_recent_history(sync_type, limit)

    @router.get("/active")
    async def get_active() -> Dict[str, Any]:
        sessions = _svc().sync_manager.get_active_sessions()
        return {
            sync_type: session.model_dump(mode="json")
            for sync_type, session in sessions.items()
        }

    @router.get("/schedules", response_model=List[ScheduleInfo])
    async def get_schedules() -> List[ScheduleInfo]:
        return _svc().get_schedules()

    @router.post("/schedules/{integration_type}", response_model=ScheduleInfo)
    async def post_schedule(
        integration_type: str,
        request: ScheduleRequest,
    ) -> ScheduleInfo:
        """Schedule or re-schedule a type."""
        try:
            return _svc().schedule(integration_type, request.interval_hours)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @router.delete("/schedules/{integration_type}", status_code=204)
    async def delete_schedule(integration_type: str) -> None:
        if not _svc().cancel_schedule(integration_type):
            raise HTTPException(status_code=404, detail="Schedule not found")

    @router.post("/run/{integration_type}", status_code=202)
    async def post_run_now(integration_type: str) -> Dict[str, Any]:
        """Trigger a run outside the schedule."""
        _svc().run_now(integration_type)
        return {"integration_type": integration_type, "status": "submitted"}

    @router.post("/cancel/{integration_type}")
    async def post_cancel(integration_type: str) -> Dict[str, Any]:
        if not _svc().cancel_run(integration_type):
            raise HTTPException(status_code=404, detail="No active session")
        return {"integration_type": integration_type, "status": "cancel_requested"}

    @router.get("/logs")
    async def get_logs(
        min_level: str = Query("INFO"),
        limit: int = Query(100, ge=1, le=1000),
    ) -> List[Dict[str, Any]]:
        """Buffered log entries, newest first."""
        try:
            entries = _svc().get_recent_logs(min_level)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return [
            {
                "timestamp": e.timestamp.isoformat(),
                "level": e.level,
                "logger": e.logger_name,
                "message": e.message,
            }
            for e in reversed(entries[-limit:])
        ]

    @router.get("/reports/summary", response_class=PlainTextResponse)
    async def get_summary_report() -> str:
        return _svc().summary_report()

    @router.get("/reports/{integration_type}", response_class=PlainTextResponse)
    async def get_detailed_report(integration_type: str) -> str:
        return _svc().detailed_report(integration_type)

    @router.post("/status-report")
    async def post_status_report() -> Dict[str, Any]:
        """Send the schedule status report notification."""
        return {"sent": _svc().send_status_report()}

    @router.get("/correlations")
    async def get_correlations(
        entity_type: Optional[str] = Query(None),
    ) -> Dict[str, Dict[str, str]]:
        return _svc().correlation_store.get_correlations(entity_type)

    return router


__all__ = [
    "API_PREFIX",
    "P6EbsIntegrationService",
    "ScheduleRequest",
    "configure_integration",
    "get_integration",
    "get_router",
    "get_service",
    "reset_service",
    "set_service",
]
