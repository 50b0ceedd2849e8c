# -*- coding: utf-8 -*-
"""
P6/EBS Integration Data Models

Pydantic v2 data models for the reconciliation and synchronization core.
Defines enumerations, entity and discrepancy models, sync session and
history models, scheduling and validation models, and the persisted
integration settings object.

Enumerations (9):
    - SystemName, SyncDirection, IntegrationType, EntityType,
      DiscrepancyType, RecordStatus, ResolutionAction, SyncStatus,
      IntegrationOutcome, NotificationKind

Models (13):
    - EntityRecord, FieldDiscrepancy, DiscrepancyRecord, WritePayload,
      CommitResult, SyncSession, SyncRecord, ScheduleInfo,
      ValidationIssue, ValidationReport, IntegrationSettings,
      IntegrationResult, DiscrepancySummary

Example:
    >>> from p6ebs.integration.models import EntityRecord
    >>> rec = EntityRecord.from_fields(
    ...     {"proj_id": "P1", "proj_name": "Plant upgrade"},
    ...     id_field="proj_id", name_field="proj_name",
    ... )
    >>> rec.id, rec.name
    ('P1', 'Plant upgrade')

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Value type
# ---------------------------------------------------------------------------

#: A single field value carried by an entity record.
Value = Union[bool, int, float, Decimal, datetime, date, str, None]


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SystemName(str, Enum):
    """One of the two record systems being reconciled.

    P6: Primavera P6 scheduling system (system A).
    EBS: Oracle E-Business Suite ERP system (system B).
    """

    P6 = "P6"
    EBS = "EBS"

    @property
    def other(self) -> SystemName:
        """The opposite system."""
        return SystemName.EBS if self is SystemName.P6 else SystemName.P6


class SyncDirection(str, Enum):
    """Direction data flows for an integration type.

    P6_TO_EBS: P6 is authoritative; EBS receives updates.
    EBS_TO_P6: EBS is authoritative; P6 receives updates.
    BIDIRECTIONAL: Both systems may receive updates.
    """

    P6_TO_EBS = "P6_TO_EBS"
    EBS_TO_P6 = "EBS_TO_P6"
    BIDIRECTIONAL = "BIDIRECTIONAL"


class IntegrationType(str, Enum):
    """Named integration flows that can be scheduled and run.

    PROJECT_FINANCIALS: Project budgets and costs.
    RESOURCE_MANAGEMENT: Resources and people.
    PROCUREMENT: Purchase commitments.
    TIMESHEET: Hours booked against activities.
    PROJECT_WBS: Work breakdown structure and activities.
    EBS_TASKS_TO_P6: EBS project tasks pushed into P6 activities.
    """

    PROJECT_FINANCIALS = "projectFinancials"
    RESOURCE_MANAGEMENT = "resourceManagement"
    PROCUREMENT = "procurement"
    TIMESHEET = "timesheet"
    PROJECT_WBS = "projectWbs"
    EBS_TASKS_TO_P6 = "ebsTasksToP6"


class EntityType(str, Enum):
    """Logical entity types with registered field mappings.

    PROJECT: P6 project / EBS project.
    ACTIVITY: P6 activity / EBS task.
    TASK: EBS task / P6 activity (mapping keyed from the EBS side).
    RESOURCE: P6 resource / EBS person.
    WBS: P6 WBS node / EBS WBS element.
    """

    PROJECT = "project"
    ACTIVITY = "activity"
    TASK = "task"
    RESOURCE = "resource"
    WBS = "wbs"


#: Entity type each integration flow reconciles.
INTEGRATION_ENTITY_TYPES: Dict[str, str] = {
    IntegrationType.PROJECT_FINANCIALS.value: EntityType.PROJECT.value,
    IntegrationType.RESOURCE_MANAGEMENT.value: EntityType.RESOURCE.value,
    IntegrationType.PROCUREMENT.value: EntityType.PROJECT.value,
    IntegrationType.TIMESHEET.value: EntityType.ACTIVITY.value,
    IntegrationType.PROJECT_WBS.value: EntityType.WBS.value,
    IntegrationType.EBS_TASKS_TO_P6.value: EntityType.TASK.value,
}


class DiscrepancyType(str, Enum):
    """Classification of a detected discrepancy.

    MISSING_IN_P6: Entity exists in EBS but not in P6.
    MISSING_IN_EBS: Entity exists in P6 but not in EBS.
    VALUE_MISMATCH: Entity exists in both, at least one mapped field differs.
    """

    MISSING_IN_P6 = "MissingInP6"
    MISSING_IN_EBS = "MissingInEbs"
    VALUE_MISMATCH = "ValueMismatch"


class RecordStatus(str, Enum):
    """Lifecycle status of a discrepancy record.

    UNRESOLVED: At least one field discrepancy is still pending.
    RESOLVED: Every field discrepancy carries a terminal resolution.
    APPLIED: The resolution was written back; never re-opened.
    """

    UNRESOLVED = "Unresolved"
    RESOLVED = "Resolved"
    APPLIED = "Applied"


class ResolutionAction(str, Enum):
    """Resolution chosen for one field discrepancy.

    PENDING: Not yet resolved.
    USE_A: Keep the P6 value; write it to EBS.
    USE_B: Keep the EBS value; write it to P6.
    IGNORE: Leave both systems as they are.
    CUSTOM: Write a supplied value to both systems.
    """

    PENDING = "Pending"
    USE_A = "UseA"
    USE_B = "UseB"
    IGNORE = "Ignore"
    CUSTOM = "Custom"


class SyncStatus(str, Enum):
    """Status of a sync session.

    IN_PROGRESS: Session started and not yet finished.
    COMPLETED: Session finished (possibly with per-entity failures).
    FAILED: Session aborted with an error.
    """

    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class IntegrationOutcome(str, Enum):
    """Outcome of one integration run as reported to callers.

    COMPLETED: Every resolved record was applied.
    PARTIAL: Session completed with some write-back failures.
    FAILED: Session failed (connection or orchestration error).
    SKIPPED: Blocking validation issue; no session was recorded.
    CANCELLED: Cancellation was requested between phases.
    REJECTED: A session for the type was already in progress.
    """

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class NotificationKind(str, Enum):
    """Kind of notification handed to the notification sink.

    SUCCESS: Integration completed (possibly partial).
    FAILURE: Integration failed.
    VALIDATION_REPORT: Blocking validation issues prevented a sync.
    STATUS_REPORT: Schedule overview sent on request.
    """

    SUCCESS = "Success"
    FAILURE = "Failure"
    VALIDATION_REPORT = "ValidationReport"
    STATUS_REPORT = "StatusReport"


# ---------------------------------------------------------------------------
# Entity models
# ---------------------------------------------------------------------------


class EntityRecord(BaseModel):
    """One record fetched from either system.

    Attributes:
        id: System-local identifier; unique only within one system.
        name: Display name.
        fields: Field name to value map, including the id and name fields.
    """

    id: Optional[str] = Field(
        None, description="System-local identifier",
    )
    name: str = Field(
        default="", description="Display name",
    )
    fields: Dict[str, Value] = Field(
        default_factory=dict, description="Field name to value map",
    )

    model_config = {"extra": "forbid"}

    @classmethod
    def from_fields(
        cls,
        fields: Mapping[str, Any],
        id_field: str,
        name_field: Optional[str] = None,
    ) -> EntityRecord:
        """Build a record from a raw field map.

        Args:
            fields: Raw field map as returned by a data source.
            id_field: Field holding the system-local id.
            name_field: Field holding the display name.

        Returns:
            EntityRecord with ``id`` and ``name`` lifted from the map.
        """
        raw_id = fields.get(id_field)
        raw_name = fields.get(name_field) if name_field else None
        return cls(
            id=None if raw_id is None else str(raw_id),
            name="" if raw_name is None else str(raw_name),
            fields=dict(fields),
        )

    def get(self, field_name: str, default: Any = None) -> Any:
        """Return a field value or ``default`` when absent."""
        return self.fields.get(field_name, default)


# ---------------------------------------------------------------------------
# Discrepancy models
# ---------------------------------------------------------------------------


class FieldDiscrepancy(BaseModel):
    """A single field-level difference between P6 and EBS.

    Attributes:
        field_name: Display name (``"p6_field / ebs_field"`` for mapped
            pairs, the raw field name for missing records).
        p6_field: Field name on the P6 side, if any.
        ebs_field: Field name on the EBS side, if any.
        value_a: P6 value (None when absent).
        value_b: EBS value (None when absent).
        resolution: Current resolution action.
        custom_value: Value written to both systems for CUSTOM.
        selected: Whether the field is selected for the next action.
    """

    field_name: str = Field(
        ..., description="Display name of the differing field",
    )
    p6_field: Optional[str] = Field(
        None, description="Field name on the P6 side",
    )
    ebs_field: Optional[str] = Field(
        None, description="Field name on the EBS side",
    )
    value_a: Value = Field(
        None, description="P6 value",
    )
    value_b: Value = Field(
        None, description="EBS value",
    )
    resolution: ResolutionAction = Field(
        default=ResolutionAction.PENDING,
        description="Current resolution action",
    )
    custom_value: Value = Field(
        None, description="Value written to both systems for CUSTOM",
    )
    selected: bool = Field(
        default=False, description="Selected for the next action",
    )

    model_config = {"extra": "forbid"}

    @field_validator("field_name")
    @classmethod
    def validate_field_name(cls, v: str) -> str:
        """Validate field_name is non-empty."""
        if not v or not v.strip():
            raise ValueError("field_name must be non-empty")
        return v

    @property
    def is_pending(self) -> bool:
        """True while no terminal resolution has been chosen."""
        return self.resolution == ResolutionAction.PENDING


class DiscrepancyRecord(BaseModel):
    """All differences detected for one logical entity.

    Attributes:
        record_id: Unique identifier for this discrepancy record.
        entity_id: Entity identifier shared by both systems.
        entity_name: Display name ("Unknown" when neither side has one).
        entity_type: Logical entity type the record was detected for.
        discrepancy_type: Presence or value mismatch classification.
        status: Lifecycle status.
        field_discrepancies: Field-level differences.
        error: Last write-back error, if the commit failed.
        written_systems: Systems already written for the current
            resolution; a retried commit skips them.
        detected_at: When the discrepancy was detected.
    """

    record_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this discrepancy record",
    )
    entity_id: str = Field(
        ..., description="Entity identifier",
    )
    entity_name: str = Field(
        default="Unknown", description="Entity display name",
    )
    entity_type: str = Field(
        default="", description="Logical entity type",
    )
    discrepancy_type: DiscrepancyType = Field(
        ..., description="Presence or value mismatch classification",
    )
    status: RecordStatus = Field(
        default=RecordStatus.UNRESOLVED, description="Lifecycle status",
    )
    field_discrepancies: List[FieldDiscrepancy] = Field(
        default_factory=list, description="Field-level differences",
    )
    error: Optional[str] = Field(
        None, description="Last write-back error",
    )
    written_systems: List[SystemName] = Field(
        default_factory=list,
        description="Systems whose write-back already succeeded",
    )
    detected_at: datetime = Field(
        default_factory=_utcnow, description="Detection timestamp",
    )

    model_config = {"extra": "forbid"}

    @property
    def pending_fields(self) -> List[FieldDiscrepancy]:
        """Field discrepancies still awaiting a resolution."""
        return [f for f in self.field_discrepancies if f.is_pending]

    @property
    def is_fully_resolved(self) -> bool:
        """True when no field discrepancy is pending."""
        return not self.pending_fields


class DiscrepancySummary(BaseModel):
    """Counts of discrepancy records by type and by status."""

    total: int = 0
    missing_in_p6: int = 0
    missing_in_ebs: int = 0
    value_mismatch: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    field_count: int = 0


class WritePayload(BaseModel):
    """Field updates to write back for one entity.

    Attributes:
        entity_id: Entity being updated.
        p6_updates: P6 field name to new value.
        ebs_updates: EBS field name to new value.
    """

    entity_id: str
    p6_updates: Dict[str, Value] = Field(default_factory=dict)
    ebs_updates: Dict[str, Value] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.p6_updates and not self.ebs_updates


class CommitResult(BaseModel):
    """Outcome of committing a batch of resolved records.

    Attributes:
        applied: Records written back and marked Applied.
        failed: Records whose write-back failed.
        skipped: Records not in Resolved status.
        errors: Record id to error message for failed records.
    """

    applied: int = 0
    failed: int = 0
    skipped: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_partial(self) -> bool:
        """True when some records applied and some failed."""
        return self.failed > 0 and self.applied > 0


# ---------------------------------------------------------------------------
# Synchronization models
# ---------------------------------------------------------------------------


class SyncSession(BaseModel):
    """An in-flight synchronization session.

    Attributes:
        session_id: Fresh UUID per session.
        sync_type: Integration type being synchronized.
        start_time: When the session started.
        end_time: When the session finished.
        direction: Direction read from configuration at start.
        status: Session status.
        error_message: Failure message for failed sessions.
        params: Caller-supplied parameters.
        results: Result values (``totalEntities``, ``updatedEntities``,
            ``failedEntities`` and any extras).
    """

    session_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique session identifier",
    )
    sync_type: str = Field(..., description="Integration type")
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    status: SyncStatus = SyncStatus.IN_PROGRESS
    error_message: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    results: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("sync_type")
    @classmethod
    def validate_sync_type(cls, v: str) -> str:
        """Validate sync_type is non-empty."""
        if not v or not v.strip():
            raise ValueError("sync_type must be non-empty")
        return v


class SyncRecord(BaseModel):
    """Immutable history entry derived from a finished session."""

    session_id: str
    sync_type: str
    start_time: datetime
    end_time: datetime
    duration_ms: int = 0
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    status: SyncStatus
    error_message: Optional[str] = None
    entities_processed: int = 0
    entities_updated: int = 0
    entities_failed: int = 0
    results: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid", "frozen": True}

    @classmethod
    def from_session(cls, session: SyncSession) -> SyncRecord:
        """Build a history entry from a finished session.

        Args:
            session: Session with ``end_time`` set.

        Returns:
            SyncRecord with duration and entity counts derived.
        """
        end_time = session.end_time or _utcnow()
        duration = end_time - session.start_time
        results = dict(session.results)
        return cls(
            session_id=session.session_id,
            sync_type=session.sync_type,
            start_time=session.start_time,
            end_time=end_time,
            duration_ms=max(0, int(duration.total_seconds() * 1000)),
            direction=session.direction,
            status=session.status,
            error_message=session.error_message,
            entities_processed=_as_int(results.get("totalEntities")),
            entities_updated=_as_int(results.get("updatedEntities")),
            entities_failed=_as_int(results.get("failedEntities")),
            results=results,
        )


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class ScheduleInfo(BaseModel):
    """Scheduling state for one integration type.

    ``next_run`` is ``last_run + interval_hours`` when ``last_run`` is
    known and unset otherwise.
    """

    integration_type: str
    interval_hours: int = Field(..., ge=1)
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    active: bool = True
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Validation models
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    """One pre-flight validation finding.

    Attributes:
        entity_type: Entity or integration type the issue belongs to.
        entity_id: Offending entity id, empty for type-level issues.
        issue_type: Short machine-readable classification.
        description: Human-readable description.
        blocking: Whether the issue prevents the sync from running.
    """

    entity_type: str
    entity_id: str = ""
    issue_type: str
    description: str
    blocking: bool = False

    model_config = {"extra": "forbid"}


class ValidationReport(BaseModel):
    """Aggregate of validation issues."""

    total_issues: int = 0
    blocking_issues: int = 0
    warning_issues: int = 0
    issues_by_type: Dict[str, int] = Field(default_factory=dict)
    issues: List[ValidationIssue] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_blocking(self) -> bool:
        return self.blocking_issues > 0


# ---------------------------------------------------------------------------
# Settings and results
# ---------------------------------------------------------------------------


class IntegrationSettings(BaseModel):
    """Persisted integration configuration object.

    Loaded and saved by a ``ConfigurationStore`` collaborator; the core
    only consumes it.

    Attributes:
        p6_connection: Connection parameters for the P6 database.
        ebs_connection: Connection parameters for the EBS database.
        enabled_integrations: Integration types that may run.
        sync_directions: Per-type direction overrides.
        sync_intervals: Per-type interval overrides in hours.
    """

    p6_connection: Dict[str, str] = Field(default_factory=dict)
    ebs_connection: Dict[str, str] = Field(default_factory=dict)
    enabled_integrations: List[str] = Field(default_factory=list)
    sync_directions: Dict[str, SyncDirection] = Field(default_factory=dict)
    sync_intervals: Dict[str, int] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("sync_intervals")
    @classmethod
    def validate_sync_intervals(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Validate every interval is at least one hour."""
        for key, hours in v.items():
            if hours < 1:
                raise ValueError(f"sync interval for {key} must be >= 1")
        return v

    def is_enabled(self, integration_type: str) -> bool:
        """An empty enabled list enables every type."""
        return (
            not self.enabled_integrations
            or integration_type in self.enabled_integrations
        )


class IntegrationResult(BaseModel):
    """Outcome of one integration run.

    Attributes:
        integration_type: Integration type that ran.
        outcome: Completed, partial, failed, skipped, cancelled, rejected.
        session_id: Session identifier (None when no session was started).
        total_entities: Entities fetched from both systems.
        discrepancies: Discrepancy records detected.
        applied: Records written back.
        failed: Records whose write-back failed.
        issues: Validation issues reported for the run.
        error_message: Error for failed or rejected runs.
        duration_ms: Wall-clock duration of the run.
    """

    integration_type: str
    outcome: IntegrationOutcome
    session_id: Optional[str] = None
    total_entities: int = 0
    discrepancies: int = 0
    applied: int = 0
    failed: int = 0
    issues: List[ValidationIssue] = Field(default_factory=list)
    error_message: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome in (
            IntegrationOutcome.COMPLETED, IntegrationOutcome.PARTIAL,
        )


__all__ = [
    "Value",
    # Enumerations
    "SystemName",
    "SyncDirection",
    "IntegrationType",
    "EntityType",
    "DiscrepancyType",
    "RecordStatus",
    "ResolutionAction",
    "SyncStatus",
    "IntegrationOutcome",
    "NotificationKind",
    "INTEGRATION_ENTITY_TYPES",
    # Models
    "EntityRecord",
    "FieldDiscrepancy",
    "DiscrepancyRecord",
    "DiscrepancySummary",
    "WritePayload",
    "CommitResult",
    "SyncSession",
    "SyncRecord",
    "ScheduleInfo",
    "ValidationIssue",
    "ValidationReport",
    "IntegrationSettings",
    "IntegrationResult",
]
