# -*- coding: utf-8 -*-
"""
Entity Mapper Engine - P6/EBS Integration Core

Bidirectional field-name translation between the P6 and EBS schemas,
keyed by entity type. Each entity type owns an immutable
``EntityTypeMapping`` holding its P6->EBS field pairs plus the id and name
fields used to index records on each side.

Mapping is a strict projection: only fields named in the table are carried
over; everything else is dropped. The EBS->P6 direction uses the inverse
table. Unknown entity types yield an empty mapping and a warning rather
than an error.

Tables are swapped, never mutated. ``register_mapping`` installs a new
table set; a session that took a ``snapshot()`` keeps reading the tables
it started with.

Example:
    >>> from p6ebs.integration.entity_mapper import EntityMapper
    >>> mapper = EntityMapper()
    >>> mapper.map_p6_to_ebs("project", {"proj_id": "P1", "wbs_id": "W9"})
    {'project_id': 'P1'}

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from p6ebs.exceptions import MappingGapError
from p6ebs.integration.models import EntityRecord, SystemName, Value

logger = logging.getLogger(__name__)

#: Optional value hook: (entity_type, target_field, value) -> value.
ValueConverter = Callable[[str, str, Value], Value]


# ---------------------------------------------------------------------------
# Mapping table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityTypeMapping:
    """Immutable field mapping for one entity type.

    Attributes:
        entity_type: Logical entity type name.
        pairs: Ordered ``(p6_field, ebs_field)`` pairs.
        p6_id_field: Field holding the P6 id.
        ebs_id_field: Field holding the EBS id.
        p6_name_field: Field holding the P6 display name.
        ebs_name_field: Field holding the EBS display name.
    """

    entity_type: str
    pairs: Tuple[Tuple[str, str], ...]
    p6_id_field: str = "id"
    ebs_id_field: str = "id"
    p6_name_field: str = "name"
    ebs_name_field: str = "name"
    forward: Mapping[str, str] = field(init=False, repr=False, compare=False)
    inverse: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        seen_p6 = set()
        seen_ebs = set()
        for p6_field, ebs_field in self.pairs:
            if not p6_field or not ebs_field:
                raise ValueError(
                    f"Empty field name in mapping for {self.entity_type}"
                )
            if p6_field in seen_p6:
                raise ValueError(
                    f"Duplicate P6 field '{p6_field}' in mapping for "
                    f"{self.entity_type}"
                )
            if ebs_field in seen_ebs:
                raise ValueError(
                    f"Duplicate EBS field '{ebs_field}' in mapping for "
                    f"{self.entity_type}"
                )
            seen_p6.add(p6_field)
            seen_ebs.add(ebs_field)
        object.__setattr__(
            self, "forward", MappingProxyType(dict(self.pairs)),
        )
        object.__setattr__(
            self,
            "inverse",
            MappingProxyType({ebs: p6 for p6, ebs in self.pairs}),
        )

    def table_for(self, source_system: Union[SystemName, str]) -> Mapping[str, str]:
        """Return the source->target table for ``source_system``."""
        if SystemName(source_system) is SystemName.P6:
            return self.forward
        return self.inverse

    def id_field(self, system: Union[SystemName, str]) -> str:
        if SystemName(system) is SystemName.P6:
            return self.p6_id_field
        return self.ebs_id_field

    def name_field(self, system: Union[SystemName, str]) -> str:
        if SystemName(system) is SystemName.P6:
            return self.p6_name_field
        return self.ebs_name_field

    def __len__(self) -> int:
        return len(self.pairs)


def _empty_mapping(entity_type: str) -> EntityTypeMapping:
    """Mapping used for entity types without a registered table."""
    return EntityTypeMapping(entity_type=entity_type, pairs=())


# ---------------------------------------------------------------------------
# Default tables
# ---------------------------------------------------------------------------


def default_mappings() -> Dict[str, EntityTypeMapping]:
    """Return the built-in P6<->EBS tables keyed by entity type."""
    tables = [
        EntityTypeMapping(
            entity_type="project",
            pairs=(
                ("proj_id", "project_id"),
                ("proj_name", "project_name"),
                ("proj_short_name", "segment1"),
                ("status_code", "project_status_code"),
                ("plan_start_date", "start_date"),
                ("plan_end_date", "completion_date"),
            ),
            p6_id_field="proj_id",
            ebs_id_field="project_id",
            p6_name_field="proj_name",
            ebs_name_field="project_name",
        ),
        EntityTypeMapping(
            entity_type="activity",
            pairs=(
                ("activity_id", "task_id"),
                ("activity_name", "task_name"),
                ("activity_code", "task_number"),
                ("start_date", "start_date"),
                ("finish_date", "completion_date"),
                ("status_code", "task_status_code"),
            ),
            p6_id_field="activity_id",
            ebs_id_field="task_id",
            p6_name_field="activity_name",
            ebs_name_field="task_name",
        ),
        EntityTypeMapping(
            entity_type="task",
            pairs=(
                ("activity_id", "task_id"),
                ("activity_name", "task_name"),
                ("activity_code", "task_number"),
                ("start_date", "start_date"),
                ("finish_date", "completion_date"),
                ("status_code", "task_status_code"),
                ("act_start_date", "actual_start_date"),
                ("act_end_date", "actual_finish_date"),
                ("duration", "planned_duration"),
                ("proj_id", "project_id"),
            ),
            p6_id_field="activity_id",
            ebs_id_field="task_id",
            p6_name_field="activity_name",
            ebs_name_field="task_name",
        ),
        EntityTypeMapping(
            entity_type="resource",
            pairs=(
                ("rsrc_id", "person_id"),
                ("rsrc_name", "full_name"),
                ("email_addr", "email_address"),
            ),
            p6_id_field="rsrc_id",
            ebs_id_field="person_id",
            p6_name_field="rsrc_name",
            ebs_name_field="full_name",
        ),
        EntityTypeMapping(
            entity_type="wbs",
            pairs=(
                ("wbs_id", "wbs_id"),
                ("wbs_name", "wbs_name"),
            ),
            p6_id_field="wbs_id",
            ebs_id_field="wbs_id",
            p6_name_field="wbs_name",
            ebs_name_field="wbs_name",
        ),
    ]
    return {t.entity_type: t for t in tables}


# ---------------------------------------------------------------------------
# EntityMapper
# ---------------------------------------------------------------------------


class EntityMapper:
    """Bidirectional P6<->EBS field mapper keyed by entity type.

    Attributes:
        _tables: Current immutable table set (replaced, never mutated).
        _converter: Optional per-value hook applied during mapping.
        _lock: Guards table swaps.

    Example:
        >>> mapper = EntityMapper()
        >>> mapper.map_ebs_to_p6("resource", {"person_id": 7, "full_name": "Ada"})
        {'rsrc_id': 7, 'rsrc_name': 'Ada'}
    """

    def __init__(
        self,
        tables: Optional[Mapping[str, EntityTypeMapping]] = None,
        converter: Optional[ValueConverter] = None,
    ) -> None:
        """Initialize EntityMapper.

        Args:
            tables: Mapping tables keyed by entity type. Defaults to the
                built-in project/activity/task/resource/wbs tables.
            converter: Optional hook applied to every mapped value.
        """
        initial = dict(tables) if tables is not None else default_mappings()
        self._tables: Mapping[str, EntityTypeMapping] = MappingProxyType(initial)
        self._converter = converter
        self._lock = threading.Lock()
        logger.info(
            "EntityMapper initialized: entity_types=%s",
            sorted(initial.keys()),
        )

    # ------------------------------------------------------------------
    # Table management
    # ------------------------------------------------------------------

    def register_mapping(
        self,
        entity_type: str,
        pairs: Iterable[Tuple[str, str]],
        p6_id_field: str = "id",
        ebs_id_field: str = "id",
        p6_name_field: str = "name",
        ebs_name_field: str = "name",
    ) -> EntityTypeMapping:
        """Install or replace the table for ``entity_type``.

        The table set is copied and swapped; snapshots taken earlier are
        unaffected.

        Args:
            entity_type: Entity type to register.
            pairs: ``(p6_field, ebs_field)`` pairs.
            p6_id_field: P6 id field.
            ebs_id_field: EBS id field.
            p6_name_field: P6 name field.
            ebs_name_field: EBS name field.

        Returns:
            The registered EntityTypeMapping.

        Raises:
            ValueError: If entity_type is empty or pairs repeat a field.
        """
        if not entity_type or not entity_type.strip():
            raise ValueError("entity_type must be non-empty")

        mapping = EntityTypeMapping(
            entity_type=entity_type,
            pairs=tuple((str(a), str(b)) for a, b in pairs),
            p6_id_field=p6_id_field,
            ebs_id_field=ebs_id_field,
            p6_name_field=p6_name_field,
            ebs_name_field=ebs_name_field,
        )
        with self._lock:
            updated = dict(self._tables)
            replaced = entity_type in updated
            updated[entity_type] = mapping
            self._tables = MappingProxyType(updated)

        logger.info(
            "Mapping %s for entity_type=%s (%d fields)",
            "replaced" if replaced else "registered",
            entity_type,
            len(mapping),
        )
        return mapping

    def snapshot(self) -> Mapping[str, EntityTypeMapping]:
        """Return the current immutable table set for one session."""
        return self._tables

    def entity_types(self) -> Tuple[str, ...]:
        return tuple(sorted(self._tables.keys()))

    def has_mapping(self, entity_type: str) -> bool:
        mapping = self._tables.get(entity_type)
        return mapping is not None and len(mapping) > 0

    def get_mapping(
        self,
        entity_type: str,
        strict: bool = False,
    ) -> EntityTypeMapping:
        """Return the table for ``entity_type``.

        Args:
            entity_type: Entity type to look up.
            strict: Raise instead of returning an empty mapping.

        Returns:
            The registered mapping, or an empty one for unknown types.

        Raises:
            MappingGapError: If strict and no mapping is registered.
        """
        mapping = self._tables.get(entity_type)
        if mapping is not None:
            return mapping
        if strict:
            raise MappingGapError(
                f"No field mapping registered for entity type "
                f"'{entity_type}'",
                entity_type=entity_type,
            )
        logger.warning(
            "No field mapping registered for entity type '%s'; "
            "using empty mapping",
            entity_type,
        )
        return _empty_mapping(entity_type)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map_fields(
        self,
        entity_type: str,
        source_system: Union[SystemName, str],
        record: Union[EntityRecord, Mapping[str, Any]],
        mapping: Optional[EntityTypeMapping] = None,
    ) -> Dict[str, Any]:
        """Project ``record`` onto the other system's field names.

        Args:
            entity_type: Entity type of the record.
            source_system: System the record came from (P6 or EBS).
            record: Source record or raw field map.
            mapping: Table to use (from a session snapshot). Looked up by
                ``entity_type`` when omitted.

        Returns:
            New dict holding only mapped fields, keyed by target names.
        """
        if mapping is None:
            mapping = self.get_mapping(entity_type)
        fields = record.fields if isinstance(record, EntityRecord) else record
        table = mapping.table_for(source_system)

        mapped: Dict[str, Any] = {}
        for source_field, target_field in table.items():
            if source_field in fields:
                mapped[target_field] = self._convert(
                    entity_type, target_field, fields[source_field],
                )
        return mapped

    def map_p6_to_ebs(
        self,
        entity_type: str,
        record: Union[EntityRecord, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        return self.map_fields(entity_type, SystemName.P6, record)

    def map_ebs_to_p6(
        self,
        entity_type: str,
        record: Union[EntityRecord, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        return self.map_fields(entity_type, SystemName.EBS, record)

    def map_record(
        self,
        entity_type: str,
        source_system: Union[SystemName, str],
        record: EntityRecord,
        mapping: Optional[EntityTypeMapping] = None,
    ) -> EntityRecord:
        """Map a whole EntityRecord, lifting id and name on the target side."""
        if mapping is None:
            mapping = self.get_mapping(entity_type)
        fields = self.map_fields(entity_type, source_system, record, mapping)
        target = SystemName(source_system).other
        return EntityRecord.from_fields(
            fields,
            id_field=mapping.id_field(target),
            name_field=mapping.name_field(target),
        )

    def _convert(self, entity_type: str, target_field: str, value: Any) -> Any:
        if self._converter is None:
            return value
        return self._converter(entity_type, target_field, value)


__all__ = [
    "EntityMapper",
    "EntityTypeMapping",
    "ValueConverter",
    "default_mappings",
]
