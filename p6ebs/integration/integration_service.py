# -*- coding: utf-8 -*-
"""
Integration Service - P6/EBS Integration Core

Runs one synchronization session per integration type through the fixed
phase sequence:

    1. Validate   pre-flight checks (type known, registered custom checks)
    2. Fetch      entities from P6 and EBS via the SystemConnectors
    3. Map        normalize values, correlate ids, re-key EBS entities
                  to their P6 ids, run entity-level validation
    4. Detect     discrepancy records for the type's entity mapping
    5. Resolve    value mismatches per the type's sync direction
    6. Commit     write-back (EBS first, then P6)
    7. Record     complete the session, notify

Blocking validation issues skip the run (no history record, Validation
Report notification). A type whose entity has no registered field
mapping is not blocked: a WARNING is logged, the comparison reports no
discrepancies and the session completes. An unreachable system fails the session. A cancel
request is honoured between phases; writes already committed stay in
place and the session is recorded as Failed.

Missing-in-P6 and Missing-in-EBS records are detected and reported but
never auto-resolved: creating entities in either system is an
interactive decision (``compare`` + ``apply_resolutions``).

Example:
    >>> service = IntegrationService(p6=p6_connector, ebs=ebs_connector)
    >>> result = service.run_integration("projectFinancials")
    >>> result.outcome
    <IntegrationOutcome.COMPLETED: 'completed'>

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import dataclasses
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from p6ebs.exceptions import (
    P6EbsException,
    SourceConnectionError,
    SyncInProgressError,
    ValidationBlockingError,
)
from p6ebs.integration.collaborators import SystemConnector
from p6ebs.integration.config import IntegrationConfig, get_config
from p6ebs.integration.correlation_store import CorrelationStore
from p6ebs.integration.discrepancy_detector import DiscrepancyDetector
from p6ebs.integration.entity_mapper import EntityMapper, EntityTypeMapping
from p6ebs.integration.metrics import (
    inc_errors,
    inc_integration_runs,
    observe_duration,
)
from p6ebs.integration.models import (
    INTEGRATION_ENTITY_TYPES,
    CommitResult,
    DiscrepancyRecord,
    DiscrepancyType,
    EntityRecord,
    IntegrationOutcome,
    IntegrationResult,
    IntegrationSettings,
    IntegrationType,
    SyncSession,
    SystemName,
    ValidationIssue,
)
from p6ebs.integration.notifications import NotificationDispatcher
from p6ebs.integration.provenance import ProvenanceLedger
from p6ebs.integration.resolution_engine import ResolutionEngine
from p6ebs.integration.sync_manager import SynchronizationManager
from p6ebs.integration.transformation import (
    P6_TO_EBS_FINANCIALS,
    TIMESHEET_FIELDS,
    DataTransformationService,
)
from p6ebs.integration.validation import ValidationGate

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]
CompletionCallback = Callable[[IntegrationResult], None]
CheckFactory = Callable[[str], Iterable[ValidationIssue]]

TOTAL_PHASES = 7

CANCELLED_MESSAGE = "Cancelled by user"

#: Fields compared on top of the entity mapping for some integration types.
_EXTRA_PAIRS = {
    IntegrationType.PROJECT_FINANCIALS.value: P6_TO_EBS_FINANCIALS,
    IntegrationType.TIMESHEET.value: TIMESHEET_FIELDS,
}


class _Cancelled(Exception):
    """Raised internally when a cancel request is seen between phases."""


def _no_progress(current: int, total: int, message: str) -> None:
    logger.debug("[%d/%d] %s", current, total, message)


class IntegrationService:
    """Orchestrates validation, reconciliation and write-back per type.

    Every engine is injectable; defaults are built from ``config``.
    """

    def __init__(
        self,
        p6: SystemConnector,
        ebs: SystemConnector,
        config: Optional[IntegrationConfig] = None,
        settings: Optional[IntegrationSettings] = None,
        mapper: Optional[EntityMapper] = None,
        correlation_store: Optional[CorrelationStore] = None,
        sync_manager: Optional[SynchronizationManager] = None,
        detector: Optional[DiscrepancyDetector] = None,
        resolver: Optional[ResolutionEngine] = None,
        transformer: Optional[DataTransformationService] = None,
        validation: Optional[ValidationGate] = None,
        notifier: Optional[NotificationDispatcher] = None,
        provenance: Optional[ProvenanceLedger] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._p6 = p6
        self._ebs = ebs
        self._config = config or get_config()
        self._settings = settings or IntegrationSettings()
        self._provenance = provenance or ProvenanceLedger()
        self._mapper = mapper or EntityMapper()
        self._correlations = correlation_store or CorrelationStore()
        self._sync = sync_manager or SynchronizationManager(
            config=self._config,
            correlation_store=self._correlations,
            provenance=self._provenance,
        )
        if self._settings.sync_directions:
            self._sync.set_directions(self._settings.sync_directions)
        self._detector = detector or DiscrepancyDetector(
            mapper=self._mapper, provenance=self._provenance,
        )
        self._resolver = resolver or ResolutionEngine(provenance=self._provenance)
        self._transformer = transformer or DataTransformationService(
            mapper=self._mapper,
            bidirectional_priority=self._config.bidirectional_priority,
        )
        self._validation = validation or ValidationGate(mapper=self._mapper)
        self._notifier = notifier or NotificationDispatcher()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="p6ebs-integration",
        )
        self._custom_checks: Dict[str, List[CheckFactory]] = {}
        logger.info(
            "IntegrationService initialized: enabled=%s, priority=%s, "
            "workers=%d",
            self._settings.enabled_integrations or "all",
            self._config.bidirectional_priority,
            self._config.max_workers,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def sync_manager(self) -> SynchronizationManager:
        return self._sync

    @property
    def correlation_store(self) -> CorrelationStore:
        return self._correlations

    @property
    def mapper(self) -> EntityMapper:
        return self._mapper

    @property
    def resolver(self) -> ResolutionEngine:
        return self._resolver

    @property
    def settings(self) -> IntegrationSettings:
        return self._settings

    def update_settings(self, settings: IntegrationSettings) -> None:
        """Replace connection params, enabled types and direction overrides."""
        self._settings = settings
        self._sync.set_directions(settings.sync_directions)
        logger.info("Integration settings updated")

    def register_check(self, integration_type: str, factory: CheckFactory) -> None:
        """Add a pre-flight check run before fetching for a type."""
        self._custom_checks.setdefault(integration_type, []).append(factory)

    # ------------------------------------------------------------------
    # Synchronous run
    # ------------------------------------------------------------------

    def run_integration(
        self,
        integration_type: str,
        progress: Optional[ProgressCallback] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> IntegrationResult:
        """Run one session for ``integration_type``.

        Args:
            integration_type: Integration type to run.
            progress: ``(current, total, message)`` callback.
            params: Caller parameters stored on the session.

        Returns:
            IntegrationResult. Failures are reported in the result, not
            raised.
        """
        start = time.time()
        report = progress or _no_progress

        if not self._settings.is_enabled(integration_type):
            logger.info("Integration %s is disabled, skipping", integration_type)
            return self._finish_result(IntegrationResult(
                integration_type=integration_type,
                outcome=IntegrationOutcome.SKIPPED,
                error_message="Integration type is disabled",
            ), start)

        try:
            session = self._sync.start_sync(integration_type, params)
        except SyncInProgressError as exc:
            return self._finish_result(IntegrationResult(
                integration_type=integration_type,
                outcome=IntegrationOutcome.REJECTED,
                session_id=exc.context.get("session_id"),
                error_message=exc.message,
            ), start)

        try:
            result = self._run_session(session, report)
        except ValidationBlockingError as exc:
            result = self._skip(session, exc)
        except _Cancelled:
            self._sync.fail_sync(session, CANCELLED_MESSAGE)
            result = IntegrationResult(
                integration_type=integration_type,
                outcome=IntegrationOutcome.CANCELLED,
                session_id=session.session_id,
                error_message=CANCELLED_MESSAGE,
            )
        except Exception as exc:
            message = exc.message if isinstance(exc, P6EbsException) else str(exc)
            logger.error(
                "Integration %s failed: %s", integration_type, message,
                exc_info=not isinstance(exc, SourceConnectionError),
            )
            self._sync.fail_sync(session, exc)
            self._notifier.notify_failure(integration_type, message)
            result = IntegrationResult(
                integration_type=integration_type,
                outcome=IntegrationOutcome.FAILED,
                session_id=session.session_id,
                error_message=message,
            )
        return self._finish_result(result, start)

    def _run_session(
        self,
        session: SyncSession,
        report: ProgressCallback,
    ) -> IntegrationResult:
        integration_type = session.sync_type

        # 1. Validate
        report(1, TOTAL_PHASES, f"Validating data for {integration_type}")
        issues = self._preflight(integration_type)
        self._validation.ensure_no_blocking(issues, integration_type)
        self._check_cancel(integration_type)

        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        mapping = self._mapping_for(integration_type, entity_type)
        mapped = self._mapper.has_mapping(entity_type)
        if not mapped:
            logger.warning(
                "No field mapping registered for %s; %s will report no "
                "discrepancies", entity_type, integration_type,
            )

        # 2. Fetch
        report(2, TOTAL_PHASES, f"Fetching {entity_type} data for {integration_type}")
        p6_raw = self._fetch(self._p6, SystemName.P6, integration_type, entity_type)
        ebs_raw = self._fetch(self._ebs, SystemName.EBS, integration_type, entity_type)
        self._check_cancel(integration_type)

        # 3. Map
        report(3, TOTAL_PHASES, f"Mapping {integration_type}")
        p6_entities = [self._normalize(integration_type, entity_type, e, mapping, SystemName.P6)
                       for e in p6_raw]
        ebs_entities = [self._normalize(integration_type, entity_type, e, mapping, SystemName.EBS)
                        for e in ebs_raw]
        # Entity checks need the mapping's id fields.
        entity_issues = self._validation.validate_integration(
            integration_type, p6_entities, ebs_entities,
        ) if mapped else []
        issues.extend(entity_issues)
        self._validation.ensure_no_blocking(issues, integration_type)
        ebs_ids = self._correlate(entity_type, mapping, p6_entities, ebs_entities)
        ebs_keyed = self._rekey(ebs_entities, mapping, ebs_ids)
        self._check_cancel(integration_type)

        # 4. Detect
        report(4, TOTAL_PHASES, f"Detecting discrepancies for {integration_type}")
        records = self._detector.detect_for_type(
            entity_type, p6_entities, ebs_keyed, mapping=mapping,
        ) if mapped else []
        self._check_cancel(integration_type)

        # 5. Resolve
        report(5, TOTAL_PHASES, f"Resolving {integration_type}")
        mismatches = [
            r for r in records
            if r.discrepancy_type == DiscrepancyType.VALUE_MISMATCH
        ]
        self._resolver.resolve_by_direction(
            mismatches, session.direction, self._config.bidirectional_priority,
        )
        self._check_cancel(integration_type)

        # 6. Commit
        report(6, TOTAL_PHASES, f"Writing back {integration_type}")
        commit = self._commit(mismatches, entity_type, ebs_ids)

        # 7. Record
        report(7, TOTAL_PHASES, f"Recording {integration_type}")
        summary = DiscrepancyDetector.summarize(records)
        results = {
            "totalEntities": len(p6_entities) + len(ebs_entities),
            "updatedEntities": commit.applied,
            "failedEntities": commit.failed,
            "discrepancies": summary.total,
            "missingInP6": summary.missing_in_p6,
            "missingInEbs": summary.missing_in_ebs,
            "valueMismatch": summary.value_mismatch,
            "warnings": len(issues),
        }
        self._sync.complete_sync(session, results)
        self._notifier.notify_success(integration_type, results)

        return IntegrationResult(
            integration_type=integration_type,
            outcome=(IntegrationOutcome.PARTIAL if commit.failed
                     else IntegrationOutcome.COMPLETED),
            session_id=session.session_id,
            total_entities=results["totalEntities"],
            discrepancies=summary.total,
            applied=commit.applied,
            failed=commit.failed,
            issues=issues,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _preflight(self, integration_type: str) -> List[ValidationIssue]:
        checks: List[Callable[[], Iterable[ValidationIssue]]] = [
            lambda: self._type_checks(integration_type),
        ]
        for factory in self._custom_checks.get(integration_type, []):
            checks.append(lambda f=factory: f(integration_type))
        return self._validation.validate(checks, integration_type)

    def _type_checks(self, integration_type: str) -> List[ValidationIssue]:
        if integration_type not in INTEGRATION_ENTITY_TYPES:
            raise ValueError(f"Unknown integration type: {integration_type}")
        return []

    def _skip(
        self,
        session: SyncSession,
        exc: ValidationBlockingError,
    ) -> IntegrationResult:
        integration_type = session.sync_type
        issues = [
            ValidationIssue.model_validate(issue)
            for issue in exc.context.get("issues", [])
        ]
        logger.error("%s, skipping %s", exc.message, integration_type)
        self._sync.abandon_sync(session, "blocking validation issues")
        self._notifier.notify_validation(
            integration_type, self._validation.generate_report(issues),
        )
        return IntegrationResult(
            integration_type=integration_type,
            outcome=IntegrationOutcome.SKIPPED,
            session_id=session.session_id,
            issues=issues,
            error_message="Blocking validation issues",
        )

    def _check_cancel(self, integration_type: str) -> None:
        if self._sync.is_cancel_requested(integration_type):
            logger.warning("Integration %s cancelled", integration_type)
            raise _Cancelled(integration_type)

    def _mapping_for(self, integration_type: str, entity_type: str) -> EntityTypeMapping:
        mapping = self._mapper.snapshot().get(entity_type) or EntityTypeMapping(
            entity_type=entity_type, pairs=(),
        )
        additions = _EXTRA_PAIRS.get(integration_type, ())
        if additions:
            known = {p6 for p6, _ in mapping.pairs} | {ebs for _, ebs in mapping.pairs}
            extra = tuple(
                pair for pair in additions
                if pair[0] not in known and pair[1] not in known
            )
            mapping = dataclasses.replace(mapping, pairs=mapping.pairs + extra)
        return mapping

    def _fetch(
        self,
        connector: SystemConnector,
        system: SystemName,
        integration_type: str,
        entity_type: str,
    ) -> List[Union[EntityRecord, Mapping[str, Any]]]:
        params = self._connection_params(system)
        start = time.time()
        try:
            entities = list(connector.fetch_entities(entity_type, params))
        except Exception as exc:
            inc_errors("fetch")
            raise SourceConnectionError(
                f"Failed to fetch {entity_type} from {system.value}: {exc}",
                system=system.value,
                integration_type=integration_type,
                cause=exc,
            ) from exc
        observe_duration("fetch", time.time() - start)
        logger.info(
            "Fetched %d %s records from %s", len(entities), entity_type, system.value,
        )
        return entities

    def _normalize(
        self,
        integration_type: str,
        entity_type: str,
        entity: Union[EntityRecord, Mapping[str, Any]],
        mapping: EntityTypeMapping,
        system: SystemName,
    ) -> EntityRecord:
        if not isinstance(entity, EntityRecord):
            entity = EntityRecord.from_fields(
                entity, mapping.id_field(system), mapping.name_field(system),
            )
        fields = self._transformer.apply_transforms(entity_type, entity.fields)
        if integration_type == IntegrationType.PROJECT_FINANCIALS.value:
            fields = self._transformer.apply_transforms("financial", fields)
        elif integration_type == IntegrationType.TIMESHEET.value:
            fields = self._transformer.apply_transforms("timesheet", fields)
        return entity.model_copy(update={"fields": fields})

    def _correlate(
        self,
        entity_type: str,
        mapping: EntityTypeMapping,
        p6_entities: Sequence[EntityRecord],
        ebs_entities: Sequence[EntityRecord],
    ) -> Dict[str, str]:
        """Return P6 id -> EBS id for every correlated EBS entity."""
        if entity_type == "project":
            self._correlations.match_by_business_key(
                p6_entities, ebs_entities,
                key_field_a="proj_short_name",
                key_field_b="segment1",
                entity_type=entity_type,
                id_field_a=mapping.p6_id_field,
                id_field_b=mapping.ebs_id_field,
                persist=False,
            )
        ebs_ids: Dict[str, str] = {}
        for entity in ebs_entities:
            if not entity.id:
                continue
            p6_id = self._correlations.lookup_a(entity_type, entity.id)
            if p6_id is not None:
                ebs_ids[p6_id] = entity.id
        return ebs_ids

    @staticmethod
    def _rekey(
        entities: Sequence[EntityRecord],
        mapping: EntityTypeMapping,
        ebs_ids: Mapping[str, str],
    ) -> List[EntityRecord]:
        """Give correlated EBS entities their P6 id so both sides pair up."""
        p6_by_ebs = {ebs_id: p6_id for p6_id, ebs_id in ebs_ids.items()}
        keyed: List[EntityRecord] = []
        for entity in entities:
            p6_id = p6_by_ebs.get(entity.id or "")
            if p6_id is None:
                keyed.append(entity)
                continue
            fields = dict(entity.fields)
            fields[mapping.ebs_id_field] = p6_id
            keyed.append(entity.model_copy(update={"id": p6_id, "fields": fields}))
        return keyed

    def _connection_params(self, system: SystemName) -> Dict[str, str]:
        """Connection params for ``system`` with the retry policy filled in."""
        params = {
            "retry_count": str(self._config.retry_count),
            "retry_delay_ms": str(self._config.retry_delay_ms),
        }
        params.update(
            self._settings.p6_connection if system is SystemName.P6
            else self._settings.ebs_connection
        )
        return params

    def _commit(
        self,
        records: Sequence[DiscrepancyRecord],
        entity_type: str,
        ebs_ids: Mapping[str, str],
    ) -> CommitResult:
        total = CommitResult()
        size = self._config.batch_size
        p6_params = self._connection_params(SystemName.P6)
        ebs_params = self._connection_params(SystemName.EBS)
        for offset in range(0, len(records), size):
            chunk = records[offset:offset + size]
            batch = self._resolver.commit(
                chunk,
                self._p6,
                self._ebs,
                p6_params=p6_params,
                ebs_params=ebs_params,
                entity_type=entity_type,
                ebs_ids=ebs_ids,
            )
            total.applied += batch.applied
            total.failed += batch.failed
            total.skipped += batch.skipped
            total.errors.update(batch.errors)
            logger.debug(
                "Committed %s batch %d-%d of %d",
                entity_type, offset + 1, offset + len(chunk), len(records),
            )
        return total

    def _finish_result(self, result: IntegrationResult, start: float) -> IntegrationResult:
        elapsed = time.time() - start
        result.duration_ms = round(elapsed * 1000, 3)
        inc_integration_runs(result.integration_type, result.outcome.value)
        observe_duration("integration", elapsed)
        logger.info(
            "Integration %s finished: outcome=%s applied=%d failed=%d in %.3fms",
            result.integration_type, result.outcome.value,
            result.applied, result.failed, result.duration_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Batch and background execution
    # ------------------------------------------------------------------

    def run_all(
        self,
        integration_types: Optional[Iterable[str]] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> List[IntegrationResult]:
        """Run several types one after another (all enabled when omitted)."""
        if integration_types is None:
            integration_types = (
                self._settings.enabled_integrations
                or list(INTEGRATION_ENTITY_TYPES)
            )
        return [self.run_integration(t, progress) for t in integration_types]

    def submit(
        self,
        integration_type: str,
        progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> Future:
        """Run a type on the worker pool; returns a Future of the result."""
        future = self._executor.submit(self.run_integration, integration_type, progress)
        if on_complete is not None:
            future.add_done_callback(
                lambda f: self._deliver(f, on_complete, integration_type),
            )
        return future

    @staticmethod
    def _deliver(future: Future, callback: Callable[[Any], None], label: str) -> None:
        try:
            callback(future.result())
        except Exception:
            logger.error("Completion callback failed for %s", label, exc_info=True)

    def cancel(self, integration_type: str) -> bool:
        """Request best-effort cancellation of a running type."""
        return self._sync.request_cancel(integration_type)

    # ------------------------------------------------------------------
    # Interactive reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, entity_type: str) -> List[DiscrepancyRecord]:
        """Fetch both systems and detect discrepancies without a session."""
        mapping = self._mapper.get_mapping(entity_type)
        p6_raw = self._fetch(self._p6, SystemName.P6, entity_type, entity_type)
        ebs_raw = self._fetch(self._ebs, SystemName.EBS, entity_type, entity_type)
        p6_entities = [self._normalize(entity_type, entity_type, e, mapping, SystemName.P6)
                       for e in p6_raw]
        ebs_entities = [self._normalize(entity_type, entity_type, e, mapping, SystemName.EBS)
                        for e in ebs_raw]
        ebs_ids = self._correlate(entity_type, mapping, p6_entities, ebs_entities)
        ebs_keyed = self._rekey(ebs_entities, mapping, ebs_ids)
        return self._detector.detect_for_type(
            entity_type, p6_entities, ebs_keyed, mapping=mapping,
        )

    def compare(
        self,
        entity_type: str,
        on_complete: Optional[Callable[[List[DiscrepancyRecord]], None]] = None,
    ) -> Future:
        """Run ``reconcile`` on the worker pool."""
        future = self._executor.submit(self.reconcile, entity_type)
        if on_complete is not None:
            future.add_done_callback(
                lambda f: self._deliver(f, on_complete, entity_type),
            )
        return future

    def apply_resolutions(
        self,
        records: Sequence[DiscrepancyRecord],
        entity_type: Optional[str] = None,
    ) -> CommitResult:
        """Commit interactively resolved records, translating EBS ids."""
        target_type = entity_type or (records[0].entity_type if records else "")
        ebs_ids: Dict[str, str] = {}
        for record in records:
            ebs_id = self._correlations.lookup_b(target_type, record.entity_id)
            if ebs_id is not None:
                ebs_ids[record.entity_id] = ebs_id
        return self._commit(records, target_type, ebs_ids)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        logger.info("IntegrationService shut down")


__all__ = [
    "CANCELLED_MESSAGE",
    "IntegrationService",
    "TOTAL_PHASES",
]
