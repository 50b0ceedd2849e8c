# -*- coding: utf-8 -*-
"""
Discrepancy Detector Engine - P6/EBS Integration Core

Compares two entity collections of the same logical type, one from P6
(system A) and one from EBS (system B), and produces discrepancy records:

    - MissingInEbs: id present in P6 only; one field discrepancy per P6
      field, EBS value absent.
    - MissingInP6: id present in EBS only; one field discrepancy per EBS
      field, P6 value absent.
    - ValueMismatch: id present in both and at least one mapped field pair
      differs; one field discrepancy per differing pair.

Ids present in both with no differing mapped field produce no record, and
so does an entity type with an empty mapping. Entities whose id field is
null or absent are skipped with a warning.

Value equality (``values_equal``) normalizes both sides to a canonical
string first:
    - missing (None) equals missing, and never equals a present value
    - bool -> "true" / "false"
    - int, float, Decimal and numeric strings -> plain decimal notation
      without trailing zeros ("100", "100.0" and Decimal("100.00") agree)
    - date and datetime -> ISO ``yyyy-MM-dd`` (datetimes compare at date
      granularity, like the transformed values written back)
    - anything else -> ``str(value).strip()``, case-sensitive

Example:
    >>> from p6ebs.integration.discrepancy_detector import DiscrepancyDetector
    >>> detector = DiscrepancyDetector()
    >>> records = detector.detect(
    ...     [{"id": "P1", "budget": 100}], [{"id": "P1", "budget": 95}],
    ...     "id", "id", "name", "name", {"budget": "budget"},
    ... )
    >>> records[0].discrepancy_type.value
    'ValueMismatch'

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from p6ebs.integration.entity_mapper import EntityMapper, EntityTypeMapping
from p6ebs.integration.metrics import inc_discrepancies, observe_duration
from p6ebs.integration.models import (
    DiscrepancyRecord,
    DiscrepancySummary,
    DiscrepancyType,
    EntityRecord,
    FieldDiscrepancy,
    SystemName,
)
from p6ebs.integration.provenance import ProvenanceLedger

logger = logging.getLogger(__name__)

Entity = Union[EntityRecord, Mapping[str, Any]]
FieldPairs = Union[Mapping[str, str], Iterable[Tuple[str, str]]]

UNKNOWN_NAME = "Unknown"


# ---------------------------------------------------------------------------
# Value equality
# ---------------------------------------------------------------------------


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Parse ``value`` as a finite Decimal, or return None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def normalize_for_comparison(value: Any) -> Optional[str]:
    """Normalize a field value to its canonical comparison string.

    Args:
        value: Raw field value from either system.

    Returns:
        Canonical string, or None for a missing value.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    number = _to_decimal(value)
    if number is not None:
        if number == 0:
            return "0"
        return format(number.normalize(), "f")
    return str(value).strip()


def values_equal(value_a: Any, value_b: Any) -> bool:
    """Compare two field values after canonical normalization."""
    return normalize_for_comparison(value_a) == normalize_for_comparison(value_b)


# ---------------------------------------------------------------------------
# Entity access helpers
# ---------------------------------------------------------------------------


def _fields_of(entity: Entity) -> Mapping[str, Any]:
    if isinstance(entity, EntityRecord):
        return entity.fields
    return entity


def _id_of(entity: Entity, id_field: str) -> Optional[str]:
    value = _fields_of(entity).get(id_field)
    if value is None and isinstance(entity, EntityRecord):
        value = entity.id
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _name_of(entity: Optional[Entity], name_field: str) -> Optional[str]:
    if entity is None:
        return None
    value = _fields_of(entity).get(name_field)
    if value is None and isinstance(entity, EntityRecord) and entity.name:
        value = entity.name
    return None if value is None else str(value)


def _pairs_of(field_mappings: FieldPairs) -> List[Tuple[str, str]]:
    if isinstance(field_mappings, EntityTypeMapping):
        return list(field_mappings.pairs)
    if isinstance(field_mappings, Mapping):
        return list(field_mappings.items())
    return [(a, b) for a, b in field_mappings]


# ---------------------------------------------------------------------------
# DiscrepancyDetector
# ---------------------------------------------------------------------------


class DiscrepancyDetector:
    """Detects presence and value discrepancies between P6 and EBS.

    Attributes:
        _provenance: Provenance ledger for detection runs.
        _mapper: Entity mapper used by ``detect_for_type``.

    Example:
        >>> detector = DiscrepancyDetector()
        >>> records = detector.detect(
        ...     [{"id": "P1", "name": "A"}], [], "id", "id", "name", "name", {},
        ... )
        >>> records[0].discrepancy_type.value, records[0].status.value
        ('MissingInEbs', 'Unresolved')
    """

    def __init__(
        self,
        mapper: Optional[EntityMapper] = None,
        provenance: Optional[ProvenanceLedger] = None,
    ) -> None:
        """Initialize DiscrepancyDetector.

        Args:
            mapper: Mapper supplying per-type tables and id/name fields.
            provenance: Provenance ledger; a private one when omitted.
        """
        self._mapper = mapper or EntityMapper()
        self._provenance = provenance or ProvenanceLedger()
        logger.info("DiscrepancyDetector initialized")

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(
        self,
        entities_a: Sequence[Entity],
        entities_b: Sequence[Entity],
        id_field_a: str,
        id_field_b: str,
        name_field_a: str,
        name_field_b: str,
        field_mappings: FieldPairs,
        entity_type: str = "",
    ) -> List[DiscrepancyRecord]:
        """Compute discrepancy records for two entity collections.

        Args:
            entities_a: P6 entities.
            entities_b: EBS entities.
            id_field_a: Id field on the P6 side.
            id_field_b: Id field on the EBS side.
            name_field_a: Name field on the P6 side.
            name_field_b: Name field on the EBS side.
            field_mappings: ``p6_field -> ebs_field`` pairs to compare.
            entity_type: Entity type label stored on each record.

        Returns:
            MissingInEbs records (P6 order), then MissingInP6 records
            (EBS order), then ValueMismatch records (P6 order).
        """
        start = time.time()
        pairs = _pairs_of(field_mappings)
        forward = dict(pairs)
        inverse = {b: a for a, b in pairs}

        index_a = self._index(entities_a, id_field_a, SystemName.P6)
        index_b = self._index(entities_b, id_field_b, SystemName.EBS)

        records: List[DiscrepancyRecord] = []

        # Present in P6 only
        for entity_id, entity in index_a.items():
            if entity_id in index_b:
                continue
            fields = [
                FieldDiscrepancy(
                    field_name=field_name,
                    p6_field=field_name,
                    ebs_field=forward.get(field_name),
                    value_a=value,
                    value_b=None,
                )
                for field_name, value in _fields_of(entity).items()
            ]
            records.append(DiscrepancyRecord(
                entity_id=entity_id,
                entity_name=_name_of(entity, name_field_a) or UNKNOWN_NAME,
                entity_type=entity_type,
                discrepancy_type=DiscrepancyType.MISSING_IN_EBS,
                field_discrepancies=fields,
            ))

        # Present in EBS only
        for entity_id, entity in index_b.items():
            if entity_id in index_a:
                continue
            fields = [
                FieldDiscrepancy(
                    field_name=field_name,
                    p6_field=inverse.get(field_name),
                    ebs_field=field_name,
                    value_a=None,
                    value_b=value,
                )
                for field_name, value in _fields_of(entity).items()
            ]
            records.append(DiscrepancyRecord(
                entity_id=entity_id,
                entity_name=_name_of(entity, name_field_b) or UNKNOWN_NAME,
                entity_type=entity_type,
                discrepancy_type=DiscrepancyType.MISSING_IN_P6,
                field_discrepancies=fields,
            ))

        # Present in both
        for entity_id, entity_a in index_a.items():
            entity_b = index_b.get(entity_id)
            if entity_b is None:
                continue
            fields_a = _fields_of(entity_a)
            fields_b = _fields_of(entity_b)
            diffs: List[FieldDiscrepancy] = []
            for field_a, field_b in pairs:
                value_a = fields_a.get(field_a)
                value_b = fields_b.get(field_b)
                if values_equal(value_a, value_b):
                    continue
                diffs.append(FieldDiscrepancy(
                    field_name=(
                        field_a if field_a == field_b
                        else f"{field_a} / {field_b}"
                    ),
                    p6_field=field_a,
                    ebs_field=field_b,
                    value_a=value_a,
                    value_b=value_b,
                ))
            if diffs:
                name = (
                    _name_of(entity_a, name_field_a)
                    or _name_of(entity_b, name_field_b)
                    or UNKNOWN_NAME
                )
                records.append(DiscrepancyRecord(
                    entity_id=entity_id,
                    entity_name=name,
                    entity_type=entity_type,
                    discrepancy_type=DiscrepancyType.VALUE_MISMATCH,
                    field_discrepancies=diffs,
                ))

        summary = self.summarize(records)
        label = entity_type or "unknown"
        inc_discrepancies(label, DiscrepancyType.MISSING_IN_EBS.value,
                          summary.missing_in_ebs)
        inc_discrepancies(label, DiscrepancyType.MISSING_IN_P6.value,
                          summary.missing_in_p6)
        inc_discrepancies(label, DiscrepancyType.VALUE_MISMATCH.value,
                          summary.value_mismatch)

        self._provenance.record_step(
            "detect",
            self._provenance.digest({
                "entity_type": entity_type,
                "ids_a": sorted(index_a),
                "ids_b": sorted(index_b),
                "pairs": pairs,
            }),
            self._provenance.digest(
                [(r.entity_id, r.discrepancy_type.value) for r in records]
            ),
            detail={"entity_type": entity_type, "records": len(records)},
        )

        elapsed = time.time() - start
        observe_duration("detect", elapsed)
        logger.info(
            "Detected %d discrepancies for %s (missing_in_ebs=%d, "
            "missing_in_p6=%d, value_mismatch=%d) from %d/%d entities "
            "in %.3fms",
            len(records), label,
            summary.missing_in_ebs, summary.missing_in_p6,
            summary.value_mismatch,
            len(index_a), len(index_b),
            elapsed * 1000,
        )
        return records

    def detect_for_type(
        self,
        entity_type: str,
        p6_entities: Sequence[Entity],
        ebs_entities: Sequence[Entity],
        mapping: Optional[EntityTypeMapping] = None,
    ) -> List[DiscrepancyRecord]:
        """Detect discrepancies using the registered table for a type.

        Unknown entity types get an empty mapping; only presence
        discrepancies can then be reported.

        Args:
            entity_type: Entity type to compare.
            p6_entities: P6 entities.
            ebs_entities: EBS entities.
            mapping: Table from a session snapshot; looked up when omitted.

        Returns:
            Discrepancy records for the type.
        """
        if mapping is None:
            mapping = self._mapper.get_mapping(entity_type)
        return self.detect(
            p6_entities,
            ebs_entities,
            id_field_a=mapping.p6_id_field,
            id_field_b=mapping.ebs_id_field,
            name_field_a=mapping.p6_name_field,
            name_field_b=mapping.ebs_name_field,
            field_mappings=mapping.pairs,
            entity_type=entity_type,
        )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    @staticmethod
    def summarize(records: Iterable[DiscrepancyRecord]) -> DiscrepancySummary:
        """Count records by discrepancy type and status."""
        summary = DiscrepancySummary()
        for record in records:
            summary.total += 1
            summary.field_count += len(record.field_discrepancies)
            if record.discrepancy_type == DiscrepancyType.MISSING_IN_P6:
                summary.missing_in_p6 += 1
            elif record.discrepancy_type == DiscrepancyType.MISSING_IN_EBS:
                summary.missing_in_ebs += 1
            else:
                summary.value_mismatch += 1
            status = record.status.value
            summary.by_status[status] = summary.by_status.get(status, 0) + 1
        return summary

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _index(
        entities: Sequence[Entity],
        id_field: str,
        system: SystemName,
    ) -> Dict[str, Entity]:
        index: Dict[str, Entity] = {}
        skipped = 0
        for entity in entities:
            entity_id = _id_of(entity, id_field)
            if entity_id is None:
                skipped += 1
                continue
            if entity_id in index:
                logger.warning(
                    "Duplicate %s id %s on field %s; keeping last entity",
                    system.value, entity_id, id_field,
                )
            index[entity_id] = entity
        if skipped:
            logger.warning(
                "Skipped %d %s entities with null or missing id field '%s'",
                skipped, system.value, id_field,
            )
        return index


__all__ = [
    "DiscrepancyDetector",
    "UNKNOWN_NAME",
    "normalize_for_comparison",
    "values_equal",
]
