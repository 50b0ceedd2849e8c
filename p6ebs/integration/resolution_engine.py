# -*- coding: utf-8 -*-
"""
Resolution Engine - P6/EBS Integration Core

Applies per-field resolution actions to discrepancy records and commits
resolved records back to P6 and EBS.

Actions:
    - UseA: keep the P6 value; it goes into the EBS write payload.
    - UseB: keep the EBS value; it goes into the P6 write payload.
    - Ignore: no write.
    - Custom: a supplied value goes into both payloads.

Record lifecycle: ``Unresolved -> Resolved`` once no field discrepancy is
pending, then ``Resolved -> Applied`` when ``commit`` writes the payloads.
A record whose write-back fails keeps its prior status and carries the
error; other records in the batch are unaffected. Applied records are
never re-opened.

For missing-entity records the absent side has no values, so copying
from it writes nothing. For value mismatches a null value is written as
an explicit null, except under BIDIRECTIONAL policy resolution: there a
field the priority system holds no value for keeps the other system's
value instead.

A commit that fails after one system was written remembers the written
side in ``written_systems``; retrying the record writes only the rest.

Example:
    >>> from p6ebs.integration.resolution_engine import ResolutionEngine
    >>> from p6ebs.integration.models import ResolutionAction
    >>> engine = ResolutionEngine()
    >>> engine.apply_resolution(record, record.field_discrepancies,
    ...                         ResolutionAction.USE_A)
    >>> result = engine.commit([record], p6_connector, ebs_connector)

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from p6ebs.exceptions import ResolutionError, WriteBackError
from p6ebs.integration.collaborators import SystemConnector
from p6ebs.integration.metrics import (
    inc_errors,
    inc_resolutions,
    inc_writebacks,
    observe_duration,
)
from p6ebs.integration.models import (
    CommitResult,
    DiscrepancyRecord,
    DiscrepancyType,
    FieldDiscrepancy,
    RecordStatus,
    ResolutionAction,
    SyncDirection,
    SystemName,
    WritePayload,
)
from p6ebs.integration.provenance import ProvenanceLedger

logger = logging.getLogger(__name__)

FieldSelector = Union[FieldDiscrepancy, str]


def action_for_direction(
    direction: Union[SyncDirection, str],
    priority: Union[SystemName, str] = SystemName.EBS,
) -> ResolutionAction:
    """Return the policy action implied by a sync direction.

    P6_TO_EBS keeps P6 values, EBS_TO_P6 keeps EBS values, and
    BIDIRECTIONAL keeps the values of the priority system.

    Args:
        direction: Configured sync direction.
        priority: System that wins for BIDIRECTIONAL.

    Returns:
        USE_A or USE_B.
    """
    direction = SyncDirection(direction)
    if direction == SyncDirection.P6_TO_EBS:
        return ResolutionAction.USE_A
    if direction == SyncDirection.EBS_TO_P6:
        return ResolutionAction.USE_B
    if SystemName(priority) is SystemName.P6:
        return ResolutionAction.USE_A
    return ResolutionAction.USE_B


class ResolutionEngine:
    """Field-level resolution and write-back commit.

    Attributes:
        _provenance: Provenance ledger for resolve/commit.
        _total_resolutions: Field resolutions applied (changed fields).
        _total_commits: Records applied by commit.
        _total_failures: Records whose commit failed.
    """

    def __init__(
        self,
        provenance: Optional[ProvenanceLedger] = None,
    ) -> None:
        self._provenance = provenance or ProvenanceLedger()
        self._total_resolutions = 0
        self._total_commits = 0
        self._total_failures = 0
        logger.info("ResolutionEngine initialized")

    # ------------------------------------------------------------------
    # Field resolution
    # ------------------------------------------------------------------

    def apply_resolution(
        self,
        record: DiscrepancyRecord,
        selected_fields: Optional[Sequence[FieldSelector]],
        action: Union[ResolutionAction, str],
        custom_value: Any = None,
    ) -> DiscrepancyRecord:
        """Apply ``action`` to the selected fields of ``record``.

        Re-applying the action a field already carries is a no-op. Once
        no field is pending the record moves to Resolved.

        Args:
            record: Record to resolve (mutated in place).
            selected_fields: Field discrepancies of the record, or their
                ``field_name``. None uses the fields flagged ``selected``.
            action: UseA, UseB, Ignore or Custom.
            custom_value: Value for Custom.

        Returns:
            The same record.

        Raises:
            ResolutionError: If the record is already Applied, the action
                is Pending, Custom has no value, or a selected field does
                not belong to the record.
        """
        action = ResolutionAction(action)
        if record.status == RecordStatus.APPLIED:
            raise ResolutionError(
                f"Record {record.entity_id} is already applied and cannot "
                f"be re-resolved",
                context={"record_id": record.record_id},
            )
        if action == ResolutionAction.PENDING:
            raise ResolutionError(
                "Pending is not a resolution action",
                context={"record_id": record.record_id},
            )
        if action == ResolutionAction.CUSTOM and custom_value is None:
            raise ResolutionError(
                "Custom resolution requires a value",
                context={"record_id": record.record_id},
            )

        targets = self._select(record, selected_fields)
        changed = 0
        for fd in targets:
            same_custom = (
                action != ResolutionAction.CUSTOM
                or fd.custom_value == custom_value
            )
            if fd.resolution == action and same_custom:
                continue
            fd.resolution = action
            fd.custom_value = (
                custom_value if action == ResolutionAction.CUSTOM else None
            )
            fd.selected = False
            changed += 1

        previous = record.status
        if record.is_fully_resolved:
            record.status = RecordStatus.RESOLVED

        if changed:
            record.written_systems = []
            self._total_resolutions += changed
            inc_resolutions(action.value, changed)
            self._provenance.record(
                "discrepancy",
                record.record_id,
                "resolve",
                self._provenance.digest({
                    "action": action.value,
                    "fields": [fd.field_name for fd in targets],
                    "custom_value": custom_value,
                }),
            )

        logger.debug(
            "Resolution %s applied to %d/%d fields of %s (%s -> %s)",
            action.value, changed, len(targets), record.entity_id,
            previous.value, record.status.value,
        )
        return record

    def resolve_all(
        self,
        records: Iterable[DiscrepancyRecord],
        action: Union[ResolutionAction, str],
        custom_value: Any = None,
    ) -> int:
        """Apply ``action`` to every pending field of every open record.

        Returns:
            Number of records that are Resolved afterwards.
        """
        resolved = 0
        for record in records:
            if record.status == RecordStatus.APPLIED:
                continue
            pending = record.pending_fields
            if pending:
                self.apply_resolution(record, pending, action, custom_value)
            elif record.status == RecordStatus.UNRESOLVED:
                record.status = RecordStatus.RESOLVED
            if record.status == RecordStatus.RESOLVED:
                resolved += 1
        return resolved

    def resolve_by_direction(
        self,
        records: Iterable[DiscrepancyRecord],
        direction: Union[SyncDirection, str],
        priority: Union[SystemName, str] = SystemName.EBS,
    ) -> int:
        """Resolve every pending field using the direction's policy.

        For BIDIRECTIONAL the priority system's value wins, but a field
        it holds no value for takes the other system's value, so a gap on
        the priority side never blanks the other side.

        Returns:
            Number of records that are Resolved afterwards.
        """
        action = action_for_direction(direction, priority)
        if SyncDirection(direction) != SyncDirection.BIDIRECTIONAL:
            return self.resolve_all(records, action)

        fallback = (
            ResolutionAction.USE_A if action == ResolutionAction.USE_B
            else ResolutionAction.USE_B
        )
        resolved = 0
        for record in records:
            if record.status == RecordStatus.APPLIED:
                continue
            for fd in record.pending_fields:
                kept = fd.value_b if action == ResolutionAction.USE_B else fd.value_a
                self.apply_resolution(
                    record, [fd], fallback if kept is None else action,
                )
            if record.status == RecordStatus.UNRESOLVED and record.is_fully_resolved:
                record.status = RecordStatus.RESOLVED
            if record.status == RecordStatus.RESOLVED:
                resolved += 1
        return resolved

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    @staticmethod
    def build_updates(record: DiscrepancyRecord) -> WritePayload:
        """Build the P6 and EBS write payloads for a record.

        Args:
            record: Record whose fields carry terminal resolutions.

        Returns:
            WritePayload keyed by each system's field names.
        """
        payload = WritePayload(entity_id=record.entity_id)
        missing = record.discrepancy_type != DiscrepancyType.VALUE_MISMATCH

        for fd in record.field_discrepancies:
            if fd.resolution == ResolutionAction.USE_A:
                if fd.ebs_field and not (missing and fd.value_a is None):
                    payload.ebs_updates[fd.ebs_field] = fd.value_a
            elif fd.resolution == ResolutionAction.USE_B:
                if fd.p6_field and not (missing and fd.value_b is None):
                    payload.p6_updates[fd.p6_field] = fd.value_b
            elif fd.resolution == ResolutionAction.CUSTOM:
                if fd.p6_field:
                    payload.p6_updates[fd.p6_field] = fd.custom_value
                if fd.ebs_field:
                    payload.ebs_updates[fd.ebs_field] = fd.custom_value
        return payload

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(
        self,
        records: Iterable[DiscrepancyRecord],
        p6: SystemConnector,
        ebs: SystemConnector,
        p6_params: Optional[Mapping[str, str]] = None,
        ebs_params: Optional[Mapping[str, str]] = None,
        entity_type: Optional[str] = None,
        ebs_ids: Optional[Mapping[str, str]] = None,
    ) -> CommitResult:
        """Write resolved records back and mark them Applied.

        Only Resolved records are written; others are counted as skipped.
        Each record is isolated: a failed write leaves that record in its
        prior status with ``error`` set, and processing continues. EBS is
        written before P6; when the P6 write fails after the EBS write
        succeeded, the EBS change stays in place and is recorded in
        ``written_systems`` so a retry writes only P6.

        Args:
            records: Records to commit.
            p6: P6 connector.
            ebs: EBS connector.
            p6_params: P6 connection parameters.
            ebs_params: EBS connection parameters.
            entity_type: Entity type passed to the connectors; each
                record's own ``entity_type`` when omitted.
            ebs_ids: Record entity id -> EBS id, for records keyed by the
                P6 id. Ids not in the map are written unchanged.

        Returns:
            CommitResult with applied, failed and skipped counts.
        """
        start = time.time()
        result = CommitResult()
        ebs_ids = ebs_ids or {}

        for record in records:
            if record.status != RecordStatus.RESOLVED:
                result.skipped += 1
                continue

            payload = self.build_updates(record)
            target_type = entity_type or record.entity_type
            written = record.written_systems
            try:
                if payload.ebs_updates and SystemName.EBS not in written:
                    self._write(
                        ebs, SystemName.EBS, target_type, ebs_params,
                        ebs_ids.get(record.entity_id, record.entity_id),
                        payload.ebs_updates,
                    )
                    written.append(SystemName.EBS)
                if payload.p6_updates and SystemName.P6 not in written:
                    self._write(
                        p6, SystemName.P6, target_type, p6_params,
                        record.entity_id, payload.p6_updates,
                    )
                    written.append(SystemName.P6)
            except WriteBackError as exc:
                record.error = exc.message
                result.failed += 1
                result.errors[record.record_id] = exc.message
                self._total_failures += 1
                inc_errors("writeback")
                logger.error(
                    "Write-back failed for %s %s: %s",
                    target_type, record.entity_id, exc.message,
                )
                continue

            record.status = RecordStatus.APPLIED
            record.error = None
            result.applied += 1
            self._total_commits += 1
            self._provenance.record(
                "discrepancy",
                record.record_id,
                "commit",
                self._provenance.digest(payload.model_dump(mode="json")),
            )

        elapsed = time.time() - start
        observe_duration("commit", elapsed)
        logger.info(
            "Commit finished: applied=%d failed=%d skipped=%d in %.3fms",
            result.applied, result.failed, result.skipped, elapsed * 1000,
        )
        return result

    @staticmethod
    def _write(
        connector: SystemConnector,
        system: SystemName,
        entity_type: str,
        params: Optional[Mapping[str, str]],
        entity_id: str,
        updates: Mapping[str, Any],
    ) -> None:
        try:
            ok = connector.write_entity(
                entity_type, params or {}, entity_id, dict(updates),
            )
        except Exception as exc:
            inc_writebacks(system.value, "failure")
            raise WriteBackError(
                f"{system.value} write failed for {entity_id}: {exc}",
                system=system.value,
                entity_id=entity_id,
                cause=exc,
            ) from exc
        if not ok:
            inc_writebacks(system.value, "failure")
            raise WriteBackError(
                f"{system.value} rejected update for {entity_id}",
                system=system.value,
                entity_id=entity_id,
            )
        inc_writebacks(system.value, "success")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _select(
        record: DiscrepancyRecord,
        selected_fields: Optional[Sequence[FieldSelector]],
    ) -> List[FieldDiscrepancy]:
        if selected_fields is None:
            return [fd for fd in record.field_discrepancies if fd.selected]

        chosen: List[FieldDiscrepancy] = []
        for selector in selected_fields:
            name = (
                selector.field_name
                if isinstance(selector, FieldDiscrepancy) else selector
            )
            match = next(
                (
                    fd for fd in record.field_discrepancies
                    if fd is selector or fd.field_name == name
                ),
                None,
            )
            if match is None:
                raise ResolutionError(
                    f"Field '{name}' is not part of record "
                    f"{record.entity_id}",
                    context={"record_id": record.record_id},
                )
            if not any(existing is match for existing in chosen):
                chosen.append(match)
        return chosen

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def total_resolutions(self) -> int:
        return self._total_resolutions

    @property
    def total_commits(self) -> int:
        return self._total_commits

    @property
    def total_failures(self) -> int:
        return self._total_failures


__all__ = [
    "ResolutionEngine",
    "action_for_direction",
]
