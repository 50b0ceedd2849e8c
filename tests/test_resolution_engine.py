"""
Tests for field resolution and write-back commit.
"""

import pytest

from p6ebs.exceptions import ResolutionError
from p6ebs.integration.models import (
    DiscrepancyRecord,
    DiscrepancyType,
    FieldDiscrepancy,
    RecordStatus,
    ResolutionAction,
    SystemName,
)
from p6ebs.integration.resolution_engine import (
    ResolutionEngine,
    action_for_direction,
)

from conftest import FakeConnector


@pytest.fixture
def engine():
    return ResolutionEngine()


@pytest.fixture
def p6():
    return FakeConnector("P6")


@pytest.fixture
def ebs():
    return FakeConnector("EBS")


def mismatch(entity_id="P1", value_a=100, value_b=95):
    return DiscrepancyRecord(
        entity_id=entity_id,
        entity_name="Plant",
        entity_type="project",
        discrepancy_type=DiscrepancyType.VALUE_MISMATCH,
        field_discrepancies=[
            FieldDiscrepancy(
                field_name="budget", p6_field="budget", ebs_field="budget",
                value_a=value_a, value_b=value_b,
            ),
        ],
    )


def two_field_mismatch():
    return DiscrepancyRecord(
        entity_id="P2",
        discrepancy_type=DiscrepancyType.VALUE_MISMATCH,
        field_discrepancies=[
            FieldDiscrepancy(field_name="cost / budget", p6_field="cost",
                             ebs_field="budget", value_a=1, value_b=2),
            FieldDiscrepancy(field_name="status_code / project_status_code",
                             p6_field="status_code",
                             ebs_field="project_status_code",
                             value_a="Active", value_b="Closed"),
        ],
    )


class TestActionForDirection:
    """Test direction policy."""

    def test_directions(self):
        assert action_for_direction("P6_TO_EBS") == ResolutionAction.USE_A
        assert action_for_direction("EBS_TO_P6") == ResolutionAction.USE_B

    def test_bidirectional_uses_priority(self):
        """Test BIDIRECTIONAL follows the priority system."""
        assert action_for_direction("BIDIRECTIONAL") == ResolutionAction.USE_B
        assert action_for_direction("BIDIRECTIONAL", "P6") == ResolutionAction.USE_A


class TestApplyResolution:
    """Test per-field resolution."""

    def test_partial_resolution_stays_unresolved(self, engine):
        """Test a record resolves only when no field is pending."""
        record = two_field_mismatch()
        engine.apply_resolution(record, ["cost / budget"], "UseA")
        assert record.status == RecordStatus.UNRESOLVED
        engine.apply_resolution(
            record, ["status_code / project_status_code"], ResolutionAction.IGNORE,
        )
        assert record.status == RecordStatus.RESOLVED

    def test_idempotent(self, engine):
        """Test re-applying the same action changes nothing."""
        record = mismatch()
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        count = engine.total_resolutions
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        assert engine.total_resolutions == count
        assert record.status == RecordStatus.RESOLVED

    def test_selected_flag_used_when_fields_omitted(self, engine):
        record = two_field_mismatch()
        record.field_discrepancies[1].selected = True
        engine.apply_resolution(record, None, "UseB")
        assert record.field_discrepancies[0].is_pending
        assert record.field_discrepancies[1].resolution == ResolutionAction.USE_B
        assert record.field_discrepancies[1].selected is False

    def test_custom_requires_value(self, engine):
        record = mismatch()
        with pytest.raises(ResolutionError):
            engine.apply_resolution(record, record.field_discrepancies, "Custom")

    def test_pending_is_not_an_action(self, engine):
        record = mismatch()
        with pytest.raises(ResolutionError):
            engine.apply_resolution(record, record.field_discrepancies, "Pending")

    def test_unknown_field_rejected(self, engine):
        with pytest.raises(ResolutionError):
            engine.apply_resolution(mismatch(), ["nope"], "UseA")

    def test_applied_record_never_reopened(self, engine, p6, ebs):
        """Test an Applied record rejects further resolution."""
        record = mismatch()
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        engine.commit([record], p6, ebs)
        with pytest.raises(ResolutionError):
            engine.apply_resolution(record, record.field_discrepancies, "UseB")


class TestBuildUpdates:
    """Test write payload construction."""

    def test_use_a_and_use_b(self, engine):
        record = two_field_mismatch()
        engine.apply_resolution(record, ["cost / budget"], "UseA")
        engine.apply_resolution(record, ["status_code / project_status_code"], "UseB")
        payload = ResolutionEngine.build_updates(record)
        assert payload.ebs_updates == {"budget": 1}
        assert payload.p6_updates == {"status_code": "Closed"}

    def test_custom_goes_to_both(self, engine):
        record = mismatch()
        engine.apply_resolution(record, record.field_discrepancies, "Custom", 97)
        payload = ResolutionEngine.build_updates(record)
        assert payload.p6_updates == {"budget": 97}
        assert payload.ebs_updates == {"budget": 97}

    def test_ignore_writes_nothing(self, engine):
        record = mismatch()
        engine.apply_resolution(record, record.field_discrepancies, "Ignore")
        assert ResolutionEngine.build_updates(record).is_empty

    def test_null_written_for_value_mismatch(self, engine):
        """Test an explicit null is written when the kept value is null."""
        record = mismatch(value_a=None, value_b=5)
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        assert ResolutionEngine.build_updates(record).ebs_updates == {"budget": None}

    def test_missing_side_writes_nothing(self, engine):
        """Test copying from the absent side of a missing record is empty."""
        record = DiscrepancyRecord(
            entity_id="P3",
            discrepancy_type=DiscrepancyType.MISSING_IN_EBS,
            field_discrepancies=[
                FieldDiscrepancy(field_name="budget", p6_field="budget",
                                 ebs_field="budget", value_a=5),
            ],
        )
        engine.apply_resolution(record, record.field_discrepancies, "UseB")
        assert ResolutionEngine.build_updates(record).is_empty


class TestCommit:
    """Test write-back commit."""

    def test_use_a_writes_p6_value_to_ebs(self, engine, p6, ebs):
        """Test UseA writes budget=100 to EBS and marks the record Applied."""
        record = mismatch(value_a=100, value_b=95)
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        result = engine.commit([record], p6, ebs)
        assert ebs.writes == [("project", "P1", {"budget": 100})]
        assert p6.writes == []
        assert result.applied == 1
        assert record.status == RecordStatus.APPLIED

    def test_failure_isolated_per_record(self, engine, p6, ebs):
        """Test one failed write leaves the rest of the batch applied."""
        good = mismatch("P1")
        bad = mismatch("P2")
        ebs.reject_ids.add("P2")
        engine.resolve_all([good, bad], "UseA")
        result = engine.commit([good, bad], p6, ebs)
        assert (result.applied, result.failed) == (1, 1)
        assert result.is_partial
        assert good.status == RecordStatus.APPLIED
        assert bad.status == RecordStatus.RESOLVED
        assert "rejected" in bad.error
        assert result.errors[bad.record_id] == bad.error

    def test_exception_becomes_write_back_error(self, engine, p6, ebs):
        record = mismatch()
        p6.raise_on_write.add("P1")
        engine.apply_resolution(record, record.field_discrepancies, "UseB")
        result = engine.commit([record], p6, ebs)
        assert result.failed == 1
        assert "P6 write failed" in record.error

    def test_unresolved_records_skipped(self, engine, p6, ebs):
        result = engine.commit([mismatch()], p6, ebs)
        assert result.skipped == 1
        assert ebs.writes == []

    def test_ebs_ids_translate_target(self, engine, p6, ebs):
        """Test EBS writes use the correlated EBS id."""
        record = mismatch("101")
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        engine.commit([record], p6, ebs, ebs_ids={"101": "E-1"})
        assert ebs.writes[0][1] == "E-1"

    def test_resolve_by_direction(self, engine):
        records = [mismatch("1"), mismatch("2")]
        assert engine.resolve_by_direction(records, "EBS_TO_P6") == 2
        assert all(
            r.field_discrepancies[0].resolution == ResolutionAction.USE_B
            for r in records
        )

    def test_retry_skips_system_already_written(self, engine, p6, ebs):
        """Test a retry after a P6 failure writes only P6."""
        record = two_field_mismatch()
        engine.apply_resolution(record, ["cost / budget"], "UseA")
        engine.apply_resolution(record, ["status_code / project_status_code"], "UseB")
        p6.reject_ids.add("P2")

        first = engine.commit([record], p6, ebs, entity_type="project")
        assert first.failed == 1
        assert record.written_systems == [SystemName.EBS]
        assert ebs.writes == [("project", "P2", {"budget": 1})]

        p6.reject_ids.clear()
        second = engine.commit([record], p6, ebs, entity_type="project")
        assert second.applied == 1
        assert record.status == RecordStatus.APPLIED
        assert len(ebs.writes) == 1
        assert p6.writes == [("project", "P2", {"status_code": "Closed"})]

    def test_re_resolution_clears_written_systems(self, engine, p6, ebs):
        record = mismatch()
        engine.apply_resolution(record, record.field_discrepancies, "UseA")
        record.written_systems.append(SystemName.EBS)
        engine.apply_resolution(record, record.field_discrepancies, "Custom", 97)
        assert record.written_systems == []


class TestBidirectionalPolicy:
    """Test priority resolution with a null on one side."""

    def test_priority_value_wins(self, engine):
        record = mismatch(value_a=100, value_b=95)
        engine.resolve_by_direction([record], "BIDIRECTIONAL", "EBS")
        assert record.field_discrepancies[0].resolution == ResolutionAction.USE_B

    def test_null_on_priority_side_keeps_other_value(self, engine):
        """Test an EBS null does not blank the P6 value."""
        record = mismatch(value_a="ada@x.com", value_b=None)
        assert engine.resolve_by_direction([record], "BIDIRECTIONAL", "EBS") == 1
        assert record.field_discrepancies[0].resolution == ResolutionAction.USE_A
        payload = ResolutionEngine.build_updates(record)
        assert payload.p6_updates == {}
        assert payload.ebs_updates == {"budget": "ada@x.com"}

    def test_null_on_p6_priority_side(self, engine):
        record = mismatch(value_a=None, value_b=95)
        engine.resolve_by_direction([record], "BIDIRECTIONAL", "P6")
        assert record.field_discrepancies[0].resolution == ResolutionAction.USE_B

    def test_one_directional_still_writes_null(self, engine):
        """Test EBS_TO_P6 keeps the explicit null of the authoritative side."""
        record = mismatch(value_a="ada@x.com", value_b=None)
        engine.resolve_by_direction([record], "EBS_TO_P6")
        assert ResolutionEngine.build_updates(record).p6_updates == {"budget": None}
