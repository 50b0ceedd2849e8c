"""
Tests for discrepancy detection and value normalization.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from p6ebs.integration.discrepancy_detector import (
    DiscrepancyDetector,
    normalize_for_comparison,
    values_equal,
)
from p6ebs.integration.models import (
    DiscrepancyType,
    EntityRecord,
    RecordStatus,
    ResolutionAction,
)


@pytest.fixture
def detector():
    return DiscrepancyDetector()


def _detect(detector, a, b, pairs):
    return detector.detect(a, b, "id", "id", "name", "name", pairs)


class TestNormalization:
    """Test canonical comparison strings."""

    @pytest.mark.parametrize("left,right", [
        (100, "100.0"),
        (Decimal("100.00"), 100),
        (0.5, "0.50"),
        (0, "0.00"),
        (True, "true"),
        (datetime(2026, 1, 5, 14, 30), date(2026, 1, 5)),
        (date(2026, 1, 5), "2026-01-05"),
        ("  Active ", "Active"),
        (None, None),
    ])
    def test_equal_pairs(self, left, right):
        """Test values that compare equal after normalization."""
        assert values_equal(left, right)

    @pytest.mark.parametrize("left,right", [
        (None, ""),
        (None, 0),
        ("Active", "active"),
        (False, 0),
        (100, "100.01"),
    ])
    def test_unequal_pairs(self, left, right):
        """Test values that stay distinct after normalization."""
        assert not values_equal(left, right)

    def test_missing_normalizes_to_none(self):
        assert normalize_for_comparison(None) is None

    def test_non_finite_is_plain_text(self):
        assert normalize_for_comparison("NaN") == "NaN"


class TestDetect:
    """Test presence and value discrepancy detection."""

    def test_identical_inputs_yield_nothing(self, detector):
        """Test no records for equal collections."""
        rows = [{"id": "1", "name": "A", "budget": 100}]
        assert _detect(detector, rows, list(rows), {"budget": "budget"}) == []

    def test_missing_in_ebs(self, detector):
        """Test P6-only entity yields one field per P6 field."""
        records = _detect(
            detector, [{"id": "1", "name": "Plant", "budget": 10}], [], {},
        )
        assert len(records) == 1
        record = records[0]
        assert record.discrepancy_type == DiscrepancyType.MISSING_IN_EBS
        assert record.entity_name == "Plant"
        assert record.status == RecordStatus.UNRESOLVED
        assert [f.field_name for f in record.field_discrepancies] == [
            "id", "name", "budget",
        ]
        assert all(f.value_b is None for f in record.field_discrepancies)
        assert all(
            f.resolution == ResolutionAction.PENDING
            for f in record.field_discrepancies
        )

    def test_missing_in_p6(self, detector):
        records = _detect(detector, [], [{"id": "9", "amount": 5}], {})
        assert records[0].discrepancy_type == DiscrepancyType.MISSING_IN_P6
        assert records[0].entity_name == "Unknown"
        assert records[0].field_discrepancies[1].value_b == 5
        assert records[0].field_discrepancies[1].value_a is None

    def test_value_mismatch_names_pair(self, detector):
        """Test differing pairs are reported as 'p6 / ebs' fields."""
        records = detector.detect(
            [{"pid": "1", "pname": "A", "cost": 100, "code": "X"}],
            [{"eid": "1", "ename": "B", "budget": 90, "code": "X"}],
            "pid", "eid", "pname", "ename",
            {"cost": "budget", "code": "code"},
        )
        assert len(records) == 1
        diff = records[0].field_discrepancies
        assert len(diff) == 1
        assert diff[0].field_name == "cost / budget"
        assert (diff[0].value_a, diff[0].value_b) == (100, 90)
        assert records[0].entity_name == "A"

    def test_completeness_partition(self, detector):
        """Test each id lands in exactly one bucket."""
        a = [{"id": str(i), "v": i} for i in (1, 2, 3, 4)]
        b = [{"id": "3", "v": 3}, {"id": "4", "v": 40}, {"id": "5", "v": 5}]
        records = _detect(detector, a, b, {"v": "v"})
        by_type = {}
        for record in records:
            by_type.setdefault(record.discrepancy_type, []).append(record.entity_id)
        assert by_type[DiscrepancyType.MISSING_IN_EBS] == ["1", "2"]
        assert by_type[DiscrepancyType.MISSING_IN_P6] == ["5"]
        assert by_type[DiscrepancyType.VALUE_MISMATCH] == ["4"]
        assert len(records) == len({r.entity_id for r in records})

    def test_ordering(self, detector):
        """Test MissingInEbs, MissingInP6, then ValueMismatch."""
        records = _detect(
            detector,
            [{"id": "1", "v": 1}, {"id": "2", "v": 2}],
            [{"id": "2", "v": 3}, {"id": "3", "v": 3}],
            {"v": "v"},
        )
        assert [r.discrepancy_type for r in records] == [
            DiscrepancyType.MISSING_IN_EBS,
            DiscrepancyType.MISSING_IN_P6,
            DiscrepancyType.VALUE_MISMATCH,
        ]

    def test_null_ids_skipped(self, detector):
        records = _detect(detector, [{"id": None, "v": 1}, {"v": 2}], [], {})
        assert records == []

    def test_empty_mapping_reports_presence_only(self, detector):
        """Test ids in both with no mapped pairs produce no record."""
        records = _detect(
            detector, [{"id": "1", "v": 1}], [{"id": "1", "v": 2}], {},
        )
        assert records == []

    def test_entity_records_accepted(self, detector):
        a = EntityRecord.from_fields({"id": "1", "name": "N", "v": 1}, "id", "name")
        b = EntityRecord.from_fields({"id": "1", "name": "N", "v": 2}, "id", "name")
        records = _detect(detector, [a], [b], [("v", "v")])
        assert records[0].discrepancy_type == DiscrepancyType.VALUE_MISMATCH


class TestDetectForType:
    """Test detection with registered tables."""

    def test_project_table(self, detector):
        """Test project ids and fields come from the project table."""
        records = detector.detect_for_type(
            "project",
            [{"proj_id": "1", "proj_name": "Plant", "status_code": "Active"}],
            [{"project_id": "1", "project_name": "Plant",
              "project_status_code": "Closed"}],
        )
        assert len(records) == 1
        assert records[0].entity_type == "project"
        field = records[0].field_discrepancies[0]
        assert field.field_name == "status_code / project_status_code"

    def test_summarize(self, detector):
        records = _detect(
            detector, [{"id": "1"}, {"id": "2", "v": 1}],
            [{"id": "2", "v": 2}], {"v": "v"},
        )
        summary = DiscrepancyDetector.summarize(records)
        assert summary.total == 2
        assert summary.missing_in_ebs == 1
        assert summary.value_mismatch == 1
        assert summary.by_status == {"Unresolved": 2}
