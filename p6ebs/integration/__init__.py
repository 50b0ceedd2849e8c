# -*- coding: utf-8 -*-
"""
P6/EBS Integration Core
=======================

Reconciliation and synchronization of project data between Primavera P6
and Oracle EBS. It supports:

- Per-entity-type field mapping tables (P6 <-> EBS), swapped atomically
- A persistent, thread-safe P6/EBS id correlation store with exact
  business-key matching (P6 short name against EBS segment1)
- Discrepancy detection: MissingInEbs, MissingInP6 and field-level
  ValueMismatch with type-aware normalization
- Field-level resolution (UseA, UseB, Ignore, Custom) and write-back
  commit, EBS first, with per-record failure isolation and retries that
  write only the side that failed
- Value transformation: date formats, 2-place monetary rounding, status
  codes, direction-aware financial merging
- Session lifecycle and history with at most one running session per
  integration type
- Recurring scheduling with drift-aware initial delay (APScheduler)
- Pre-flight validation that can block a sync
- Notifications, the DATA RECONCILIATION REPORT, summary and per-type
  reports, and a bounded buffer of recent log records
- Bounded SHA-256 provenance ledger and 10 Prometheus metrics
- REST API endpoints (FastAPI)

Key Components:
    - config: IntegrationConfig with P6EBS_ env prefix
    - models: Pydantic v2 data model
    - entity_mapper: Field mapping tables
    - correlation_store: P6/EBS id correlations
    - discrepancy_detector: Discrepancy detection
    - resolution_engine: Field resolution and write-back commit
    - transformation: Value transformation
    - sync_manager: Session lifecycle and history
    - scheduler: Recurring and run-now triggering
    - validation: Pre-flight validation gate
    - notifications: Notifications and reconciliation reports
    - integration_service: Phase orchestration
    - collaborators: External collaborator protocols
    - provenance: Bounded hash-chained audit ledger
    - log_buffer: Recent log records for reports and the API
    - metrics: Prometheus metrics
    - setup: Service facade and FastAPI integration

Example:
    >>> from p6ebs.integration import P6EbsIntegrationService
    >>> service = P6EbsIntegrationService(p6=p6_connector, ebs=ebs_connector)
    >>> service.startup()
    >>> service.run_now("projectFinancials").result().outcome
    <IntegrationOutcome.COMPLETED: 'completed'>

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from p6ebs.integration.collaborators import (
    ConfigurationStore,
    CorrelationMap,
    CorrelationPersistence,
    NotificationSink,
    ReportSink,
    SystemConnector,
)
from p6ebs.integration.config import (
    IntegrationConfig,
    get_config,
    reset_config,
    set_config,
)
from p6ebs.integration.correlation_store import (
    CorrelationStore,
    JsonFileCorrelationPersistence,
)
from p6ebs.integration.discrepancy_detector import (
    DiscrepancyDetector,
    normalize_for_comparison,
    values_equal,
)
from p6ebs.integration.entity_mapper import (
    EntityMapper,
    EntityTypeMapping,
    default_mappings,
)
from p6ebs.integration.integration_service import IntegrationService
from p6ebs.integration.log_buffer import LogEntry, RecentLogHandler
from p6ebs.integration.models import (
    INTEGRATION_ENTITY_TYPES,
    CommitResult,
    DiscrepancyRecord,
    DiscrepancySummary,
    DiscrepancyType,
    EntityRecord,
    EntityType,
    FieldDiscrepancy,
    IntegrationOutcome,
    IntegrationResult,
    IntegrationSettings,
    IntegrationType,
    NotificationKind,
    RecordStatus,
    ResolutionAction,
    ScheduleInfo,
    SyncDirection,
    SyncRecord,
    SyncSession,
    SyncStatus,
    SystemName,
    ValidationIssue,
    ValidationReport,
    WritePayload,
)
from p6ebs.integration.notifications import (
    NotificationDispatcher,
    build_detailed_report,
    build_reconciliation_report,
    build_summary_report,
    write_reconciliation_report,
)
from p6ebs.integration.provenance import LedgerEntry, ProvenanceLedger
from p6ebs.integration.resolution_engine import (
    ResolutionEngine,
    action_for_direction,
)
from p6ebs.integration.scheduler import IntegrationScheduler
from p6ebs.integration.setup import (
    P6EbsIntegrationService,
    configure_integration,
    get_integration,
    get_router,
    get_service,
    reset_service,
    set_service,
)
from p6ebs.integration.sync_manager import SynchronizationManager
from p6ebs.integration.transformation import DataTransformationService
from p6ebs.integration.validation import ValidationGate

__all__ = [
    # Collaborators
    "ConfigurationStore",
    "CorrelationMap",
    "CorrelationPersistence",
    "NotificationSink",
    "ReportSink",
    "SystemConnector",
    # Configuration
    "IntegrationConfig",
    "get_config",
    "reset_config",
    "set_config",
    # Models
    "INTEGRATION_ENTITY_TYPES",
    "CommitResult",
    "DiscrepancyRecord",
    "DiscrepancySummary",
    "DiscrepancyType",
    "EntityRecord",
    "EntityType",
    "FieldDiscrepancy",
    "IntegrationOutcome",
    "IntegrationResult",
    "IntegrationSettings",
    "IntegrationType",
    "NotificationKind",
    "RecordStatus",
    "ResolutionAction",
    "ScheduleInfo",
    "SyncDirection",
    "SyncRecord",
    "SyncSession",
    "SyncStatus",
    "SystemName",
    "ValidationIssue",
    "ValidationReport",
    "WritePayload",
    # Engines
    "CorrelationStore",
    "DataTransformationService",
    "DiscrepancyDetector",
    "EntityMapper",
    "EntityTypeMapping",
    "IntegrationScheduler",
    "IntegrationService",
    "JsonFileCorrelationPersistence",
    "NotificationDispatcher",
    "ResolutionEngine",
    "SynchronizationManager",
    "ValidationGate",
    "action_for_direction",
    "build_detailed_report",
    "build_reconciliation_report",
    "build_summary_report",
    "default_mappings",
    "normalize_for_comparison",
    "values_equal",
    "write_reconciliation_report",
    # Provenance and logs
    "LedgerEntry",
    "LogEntry",
    "ProvenanceLedger",
    "RecentLogHandler",
    # Facade
    "P6EbsIntegrationService",
    "configure_integration",
    "get_integration",
    "get_router",
    "get_service",
    "reset_service",
    "set_service",
]
