# -*- coding: utf-8 -*-
"""
Data Transformation Service - P6/EBS Integration Core

Type and format conversion applied after field mapping and before
comparison or write-back:

    1. Field-name translation through the EntityMapper (strict projection).
    2. Per-field value transforms looked up by
       ``(entity_type, target_field)``:
         - dates -> ISO ``yyyy-MM-dd``
         - monetary and hour values -> Decimal, 2 places, ROUND_HALF_UP
         - status codes -> names (1 APPROVED, 2 IN_PROGRESS,
           3 COMPLETED, 4 CANCELLED); unknown codes pass through

Financial merge (``transform_financial_data``) produces one record from
both systems' values for an entity:

    - P6_TO_EBS: planned_cost -> budget_amount, actual_cost -> actual_cost,
      remaining_cost -> committed_amount
    - EBS_TO_P6: budgeted_amount -> target_cost, actual_cost -> act_cost,
      committed_amount -> remain_cost
    - BIDIRECTIONAL: the priority system's record wins on conflict
      (EBS unless configured otherwise); fields it lacks, or holds as
      null, are filled from the other system. Known monetary fields are
      rounded.

Example:
    >>> from p6ebs.integration.transformation import DataTransformationService
    >>> svc = DataTransformationService()
    >>> svc.transform("project", {"proj_id": "P1", "status_code": 2,
    ...                           "plan_start_date": "2025-03-01"}, "P6", "EBS")
    {'project_id': 'P1', 'project_status_code': 'IN_PROGRESS', 'start_date': '2025-03-01'}

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from p6ebs.integration.entity_mapper import EntityMapper
from p6ebs.integration.metrics import inc_errors
from p6ebs.integration.models import EntityRecord, SyncDirection, SystemName

logger = logging.getLogger(__name__)

ValueTransform = Callable[[Any], Any]

ISO_DATE_FORMAT = "%Y-%m-%d"

_TWO_PLACES = Decimal("0.01")

STATUS_CODES: Dict[str, str] = {
    "1": "APPROVED",
    "2": "IN_PROGRESS",
    "3": "COMPLETED",
    "4": "CANCELLED",
}

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%Y/%m/%d",
)

P6_TO_EBS_FINANCIALS: Tuple[Tuple[str, str], ...] = (
    ("planned_cost", "budget_amount"),
    ("actual_cost", "actual_cost"),
    ("remaining_cost", "committed_amount"),
)

EBS_TO_P6_FINANCIALS: Tuple[Tuple[str, str], ...] = (
    ("budgeted_amount", "target_cost"),
    ("actual_cost", "act_cost"),
    ("committed_amount", "remain_cost"),
)

TIMESHEET_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("work_date", "work_date"),
    ("hours", "hours"),
)

MONETARY_FIELDS = frozenset({
    "planned_cost", "actual_cost", "remaining_cost",
    "budget_amount", "budgeted_amount", "committed_amount",
    "target_cost", "act_cost", "remain_cost",
})


# ---------------------------------------------------------------------------
# Value transforms
# ---------------------------------------------------------------------------


def format_date(value: Any) -> Any:
    """Format a date-like value as ``yyyy-MM-dd``.

    Accepts date, datetime, epoch milliseconds and strings in common
    database formats. Anything that cannot be parsed is returned unchanged.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).strftime(
                ISO_DATE_FORMAT,
            )
        except (OverflowError, OSError, ValueError):
            logger.warning("Failed to format epoch date: %r", value)
            return value
    if isinstance(value, datetime):
        return value.strftime(ISO_DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(ISO_DATE_FORMAT)
    if not isinstance(value, str):
        return value

    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime(ISO_DATE_FORMAT)
        except ValueError:
            continue

    logger.warning("Failed to format date: %r", value)
    return value


def to_decimal(value: Any) -> Decimal:
    """Convert to Decimal rounded to 2 places (ROUND_HALF_UP).

    None, booleans and unparseable values become ``Decimal("0.00")``.
    Floats are converted through ``str`` so 2.675 rounds to 2.68.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0.00")
    try:
        if isinstance(value, Decimal):
            number = value
        elif isinstance(value, (int, float)):
            number = Decimal(str(value))
        elif isinstance(value, str):
            number = Decimal(value.strip())
        else:
            return Decimal("0.00")
    except InvalidOperation:
        logger.debug("Cannot convert to decimal: %r", value)
        return Decimal("0.00")
    if not number.is_finite():
        return Decimal("0.00")
    return number.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def round_decimal(value: Any) -> Any:
    """Round numeric values to 2 places; leave non-numeric values alone."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return to_decimal(value)
    if isinstance(value, str):
        try:
            Decimal(value.strip())
        except InvalidOperation:
            return value
        return to_decimal(value)
    return value


def map_status_code(value: Any) -> Any:
    """Translate a numeric status code; unknown codes pass through."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    key = str(value).strip()
    if isinstance(value, float) and value.is_integer():
        key = str(int(value))
    return STATUS_CODES.get(key, value)


def _default_transforms() -> Dict[Tuple[str, str], ValueTransform]:
    transforms: Dict[Tuple[str, str], ValueTransform] = {}

    def _register(entity_type: str, fields: Tuple[str, ...], fn: ValueTransform) -> None:
        for field_name in fields:
            transforms[(entity_type, field_name)] = fn

    # project
    _register("project", (
        "start_date", "completion_date", "plan_start_date", "plan_end_date",
    ), format_date)
    _register("project", ("project_status_code", "status_code"), map_status_code)

    # activity / task
    for entity_type in ("activity", "task"):
        _register(entity_type, (
            "start_date", "finish_date", "completion_date",
            "act_start_date", "act_end_date",
            "actual_start_date", "actual_finish_date",
        ), format_date)
        _register(entity_type, ("duration", "planned_duration"), round_decimal)

    # financial
    _register("financial", tuple(sorted(MONETARY_FIELDS)), round_decimal)

    # timesheet
    _register("timesheet", ("work_date",), format_date)
    _register("timesheet", ("hours",), round_decimal)
    return transforms


# ---------------------------------------------------------------------------
# DataTransformationService
# ---------------------------------------------------------------------------


class DataTransformationService:
    """Field mapping plus per-field value transforms.

    Attributes:
        _mapper: Entity mapper used for field-name translation.
        _transforms: ``(entity_type, target_field) -> transform``.
        _priority: System that wins BIDIRECTIONAL financial merges.
    """

    def __init__(
        self,
        mapper: Optional[EntityMapper] = None,
        bidirectional_priority: Union[SystemName, str] = SystemName.EBS,
    ) -> None:
        """Initialize DataTransformationService.

        Args:
            mapper: Entity mapper; the default tables when omitted.
            bidirectional_priority: System whose values win on conflict
                in a BIDIRECTIONAL financial merge.
        """
        self._mapper = mapper or EntityMapper()
        self._transforms = _default_transforms()
        self._priority = SystemName(bidirectional_priority)
        self._lock = threading.Lock()
        logger.info(
            "DataTransformationService initialized: %d field transforms, "
            "bidirectional_priority=%s",
            len(self._transforms), self._priority.value,
        )

    @property
    def bidirectional_priority(self) -> SystemName:
        return self._priority

    def register_transform(
        self,
        entity_type: str,
        target_field: str,
        transform: ValueTransform,
    ) -> None:
        """Install or replace the transform for one target field."""
        with self._lock:
            updated = dict(self._transforms)
            updated[(entity_type, target_field)] = transform
            self._transforms = updated
        logger.info(
            "Transform registered for %s.%s", entity_type, target_field,
        )

    def get_transform(
        self,
        entity_type: str,
        target_field: str,
    ) -> Optional[ValueTransform]:
        return self._transforms.get((entity_type, target_field))

    # ------------------------------------------------------------------
    # Record transforms
    # ------------------------------------------------------------------

    def transform(
        self,
        entity_type: str,
        record: Union[EntityRecord, Mapping[str, Any]],
        source_system: Union[SystemName, str],
        target_system: Union[SystemName, str],
    ) -> Dict[str, Any]:
        """Map ``record`` to the target schema and transform its values.

        Args:
            entity_type: Entity type of the record.
            record: Source record or raw field map.
            source_system: System the record came from.
            target_system: System the result is meant for.

        Returns:
            Target-schema field map. When source and target are the same
            system, a copy of the record's fields is returned unchanged.
        """
        source = SystemName(source_system)
        target = SystemName(target_system)
        if source is target:
            logger.warning(
                "Transform requested from %s to itself for %s; "
                "returning fields unchanged",
                source.value, entity_type,
            )
            fields = record.fields if isinstance(record, EntityRecord) else record
            return dict(fields)

        mapped = self._mapper.map_fields(entity_type, source, record)
        return self.apply_transforms(entity_type, mapped)

    def transform_record(
        self,
        entity_type: str,
        record: EntityRecord,
        source_system: Union[SystemName, str],
    ) -> EntityRecord:
        """Transform an EntityRecord into the other system's schema."""
        source = SystemName(source_system)
        target = source.other
        mapping = self._mapper.get_mapping(entity_type)
        fields = self.transform(entity_type, record, source, target)
        return EntityRecord.from_fields(
            fields,
            id_field=mapping.id_field(target),
            name_field=mapping.name_field(target),
        )

    def apply_transforms(
        self,
        entity_type: str,
        fields: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Apply registered transforms to a target-schema field map.

        A transform that raises leaves the value unchanged and is logged.
        """
        transforms = self._transforms
        result: Dict[str, Any] = {}
        for field_name, value in fields.items():
            fn = transforms.get((entity_type, field_name))
            if fn is not None:
                try:
                    value = fn(value)
                except Exception:
                    logger.warning(
                        "Transform failed for %s.%s (value=%r)",
                        entity_type, field_name, value, exc_info=True,
                    )
                    inc_errors("transform")
            result[field_name] = value
        return result

    # ------------------------------------------------------------------
    # Financial merge
    # ------------------------------------------------------------------

    def transform_financial_data(
        self,
        p6_data: Optional[Mapping[str, Any]],
        ebs_data: Optional[Mapping[str, Any]],
        direction: Union[SyncDirection, str],
    ) -> Dict[str, Any]:
        """Produce one financial record from both systems' values.

        Args:
            p6_data: P6 financial fields for the entity.
            ebs_data: EBS financial fields for the entity.
            direction: P6_TO_EBS, EBS_TO_P6 or BIDIRECTIONAL.

        Returns:
            Merged record; see the module docstring for the field rules.
        """
        direction = SyncDirection(direction)
        logger.debug(
            "Transforming financial data with direction %s", direction.value,
        )

        if direction == SyncDirection.P6_TO_EBS:
            return self._project_financials(p6_data, P6_TO_EBS_FINANCIALS)
        if direction == SyncDirection.EBS_TO_P6:
            return self._project_financials(ebs_data, EBS_TO_P6_FINANCIALS)
        return self._merge_financials(p6_data, ebs_data)

    @staticmethod
    def _project_financials(
        data: Optional[Mapping[str, Any]],
        pairs: Tuple[Tuple[str, str], ...],
    ) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if not data:
            return result
        for source_field, target_field in pairs:
            if source_field in data:
                result[target_field] = to_decimal(data[source_field])
        return result

    def _merge_financials(
        self,
        p6_data: Optional[Mapping[str, Any]],
        ebs_data: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        if self._priority is SystemName.EBS:
            primary, secondary = ebs_data or {}, p6_data or {}
        else:
            primary, secondary = p6_data or {}, ebs_data or {}

        merged: Dict[str, Any] = dict(primary)
        for key, value in secondary.items():
            if merged.get(key) is None:
                merged[key] = value

        for key in MONETARY_FIELDS.intersection(merged):
            merged[key] = round_decimal(merged[key])
        return merged

    # ------------------------------------------------------------------
    # Timesheet and resource
    # ------------------------------------------------------------------

    def transform_timesheet_data(
        self,
        source_data: Mapping[str, Any],
        source_system: Union[SystemName, str] = SystemName.P6,
        target_system: Union[SystemName, str] = SystemName.EBS,
    ) -> Dict[str, Any]:
        """Normalize a timesheet row, keeping all of its fields.

        ``work_date`` is formatted and ``hours`` rounded to 2 places; both
        systems share the timesheet layout so no field is renamed.
        """
        logger.debug(
            "Transforming timesheet row %s -> %s",
            SystemName(source_system).value, SystemName(target_system).value,
        )
        return self.apply_transforms("timesheet", source_data)

    def transform_resource_data(
        self,
        source_data: Mapping[str, Any],
        source_system: Union[SystemName, str],
        target_system: Union[SystemName, str],
    ) -> Dict[str, Any]:
        return self.transform("resource", source_data, source_system, target_system)


__all__ = [
    "DataTransformationService",
    "EBS_TO_P6_FINANCIALS",
    "MONETARY_FIELDS",
    "P6_TO_EBS_FINANCIALS",
    "STATUS_CODES",
    "TIMESHEET_FIELDS",
    "format_date",
    "map_status_code",
    "round_decimal",
    "to_decimal",
]
