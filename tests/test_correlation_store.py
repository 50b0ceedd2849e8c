"""
Tests for the P6/EBS id correlation store.
"""

import json
import threading

import pytest

from p6ebs.integration.correlation_store import (
    CorrelationStore,
    JsonFileCorrelationPersistence,
)
from p6ebs.integration.models import EntityRecord

from conftest import MemoryPersistence


class TestCorrelate:
    """Test correlation and lookups."""

    def test_lookups_both_directions(self, correlation_store):
        """Test lookup_b and lookup_a invert each other."""
        correlation_store.correlate("project", "P-100", "E-7")
        assert correlation_store.lookup_b("project", "P-100") == "E-7"
        assert correlation_store.lookup_a("project", "E-7") == "P-100"

    def test_lookups_are_scoped_by_type(self, correlation_store):
        correlation_store.correlate("project", "1", "A")
        assert correlation_store.lookup_b("resource", "1") is None
        assert correlation_store.lookup_a("resource", "A") is None

    def test_overwrite_keeps_one_entry(self, correlation_store):
        """Test a second correlate for the same P6 id overwrites."""
        correlation_store.correlate("project", "P-1", "E-1")
        correlation_store.correlate("project", "P-1", "E-2")
        assert correlation_store.lookup_b("project", "P-1") == "E-2"
        assert correlation_store.lookup_a("project", "E-1") is None
        assert correlation_store.count("project") == 1

    @pytest.mark.parametrize("args", [
        ("", "P", "E"), ("project", "", "E"), ("project", "P", None),
    ])
    def test_empty_arguments_rejected(self, correlation_store, args):
        with pytest.raises(ValueError):
            correlation_store.correlate(*args)

    def test_remove_and_clear(self, correlation_store):
        correlation_store.correlate("project", "1", "A")
        correlation_store.correlate("wbs", "2", "B")
        assert correlation_store.remove("project", "1") is True
        assert correlation_store.remove("project", "1") is False
        correlation_store.clear()
        assert correlation_store.count() == 0

    def test_get_correlations_is_a_copy(self, correlation_store):
        """Test mutating the returned map leaves the store intact."""
        correlation_store.correlate("project", "1", "A")
        snapshot = correlation_store.get_correlations()
        snapshot["project"]["1"] = "Z"
        assert correlation_store.lookup_b("project", "1") == "A"

    def test_concurrent_correlate(self, correlation_store):
        """Test parallel writers lose no entries."""
        def worker(offset):
            for i in range(100):
                correlation_store.correlate("project", f"{offset}-{i}", f"E{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert correlation_store.count("project") == 400


class TestBusinessKeyMatching:
    """Test exact business-key matching."""

    def test_match_project_ids(self, correlation_store, persistence,
                               p6_projects, ebs_projects):
        """Test projects correlate on short name == segment1."""
        matched = correlation_store.match_project_ids(p6_projects, ebs_projects)
        assert matched == {"101": "E-1", "102": "E-2"}
        assert correlation_store.lookup_a("project", "E-2") == "102"
        assert persistence.data["project"] == {"101": "E-1", "102": "E-2"}

    def test_no_persist_when_disabled(self, correlation_store, persistence,
                                      p6_projects, ebs_projects):
        correlation_store.match_by_business_key(
            p6_projects, ebs_projects, "proj_short_name", "segment1",
            id_field_a="proj_id", id_field_b="project_id", persist=False,
        )
        assert persistence.persist_calls == 0

    def test_match_is_exact(self, correlation_store):
        """Test case differences do not match."""
        matched = correlation_store.match_by_business_key(
            [{"id": "1", "code": "ab"}], [{"id": "X", "code": "AB"}],
            "code", "code",
        )
        assert matched == {}

    def test_entity_records_use_record_id(self, correlation_store):
        a = EntityRecord.from_fields({"k": "1", "code": "C"}, "k")
        b = EntityRecord.from_fields({"k": "E1", "code": "C"}, "k")
        matched = correlation_store.match_by_business_key(
            [a], [b], "code", "code", entity_type="wbs",
        )
        assert matched == {"1": "E1"}


class TestPersistence:
    """Test load/save through persistence collaborators."""

    def test_json_round_trip(self, tmp_path):
        """Test correlations survive save and load through a JSON file."""
        path = tmp_path / "nested" / "ids.json"
        store = CorrelationStore(JsonFileCorrelationPersistence(path))
        store.correlate("project", "P-1", "E-1")
        store.correlate("resource", "R-1", "42")
        store.save()

        reloaded = CorrelationStore(JsonFileCorrelationPersistence(path))
        assert reloaded.load() == 2
        assert reloaded.get_correlations() == store.get_correlations()
        assert json.loads(path.read_text())["resource"] == {"R-1": "42"}

    def test_missing_file_loads_empty(self, tmp_path):
        persistence = JsonFileCorrelationPersistence(tmp_path / "absent.json")
        assert persistence.load() == {}

    def test_malformed_file_raises(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"project": ["P-1"]}))
        with pytest.raises(ValueError):
            JsonFileCorrelationPersistence(path).load()

    def test_save_failure_propagates(self):
        """Test persistence errors are raised to the caller."""
        persistence = MemoryPersistence()
        persistence.fail = True
        store = CorrelationStore(persistence)
        store.correlate("project", "1", "A")
        with pytest.raises(OSError):
            store.save()

    def test_memory_only_store(self):
        store = CorrelationStore()
        store.correlate("project", "1", "A")
        store.save()
        assert store.load() == 0
        assert store.lookup_b("project", "1") == "A"
