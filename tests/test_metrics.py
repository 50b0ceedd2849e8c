"""
Tests for Prometheus metric helpers.
"""

import pytest
from prometheus_client import REGISTRY

from p6ebs.integration import metrics


@pytest.fixture(autouse=True)
def _metrics_on():
    metrics.set_metrics_enabled(True)
    yield
    metrics.set_metrics_enabled(True)


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestHelpers:
    """Test helpers record into the default registry."""

    def test_writebacks_counter(self):
        labels = {"system": "EBS", "result": "success"}
        before = _sample("p6ebs_writebacks_total", labels)
        metrics.inc_writebacks("EBS", "success")
        assert _sample("p6ebs_writebacks_total", labels) == before + 1

    def test_zero_count_ignored(self):
        labels = {"entity_type": "wbs", "type": "MissingInP6"}
        before = _sample("p6ebs_discrepancies_detected_total", labels)
        metrics.inc_discrepancies("wbs", "MissingInP6", 0)
        metrics.inc_discrepancies("wbs", "MissingInP6", 3)
        assert _sample("p6ebs_discrepancies_detected_total", labels) == before + 3

    def test_gauges(self):
        metrics.set_correlations(5)
        metrics.set_active_syncs(2)
        assert _sample("p6ebs_correlations") == 5
        assert _sample("p6ebs_active_syncs") == 2


class TestEnableSwitch:
    """Test recording can be switched off."""

    def test_disabled_records_nothing(self):
        labels = {"error_type": "fetch"}
        before = _sample("p6ebs_processing_errors_total", labels)
        metrics.set_metrics_enabled(False)
        assert metrics.metrics_enabled() is False
        metrics.inc_errors("fetch")
        assert _sample("p6ebs_processing_errors_total", labels) == before

    def test_reenabled(self):
        labels = {"severity": "blocking"}
        metrics.set_metrics_enabled(False)
        metrics.set_metrics_enabled(True)
        before = _sample("p6ebs_validation_issues_total", labels)
        metrics.inc_validation_issues(blocking=2, warnings=0)
        assert _sample("p6ebs_validation_issues_total", labels) == before + 2
