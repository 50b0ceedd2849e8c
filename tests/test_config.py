"""
Tests for IntegrationConfig and the config singleton.
"""

import pytest

from p6ebs.integration.config import (
    IntegrationConfig,
    get_config,
    reset_config,
    set_config,
)


class TestDefaults:
    """Test default configuration values."""

    def test_per_type_defaults(self):
        """Test default directions and intervals per integration type."""
        cfg = IntegrationConfig()
        assert cfg.get_direction("projectFinancials") == "P6_TO_EBS"
        assert cfg.get_direction("resourceManagement") == "BIDIRECTIONAL"
        assert cfg.get_direction("procurement") == "EBS_TO_P6"
        assert cfg.get_interval_hours("timesheet") == 4
        assert cfg.get_interval_hours("procurement") == 6
        assert cfg.get_interval_hours("resourceManagement") == 12

    def test_unknown_type_fallbacks(self):
        """Test unset types default to BIDIRECTIONAL every 24 hours."""
        cfg = IntegrationConfig()
        assert cfg.get_direction("ebsTasksToP6") == "BIDIRECTIONAL"
        assert cfg.get_interval_hours("ebsTasksToP6") == 24

    def test_correlation_path_expands_home(self):
        cfg = IntegrationConfig()
        assert not cfg.correlation_path.startswith("~")
        assert cfg.correlation_path.endswith("id_correlations.json")


class TestValidation:
    """Test __post_init__ constraint checks."""

    @pytest.mark.parametrize("kwargs", [
        {"batch_size": 0},
        {"retry_count": -1},
        {"max_workers": 0},
        {"log_level": "VERBOSE"},
        {"bidirectional_priority": "SAP"},
        {"sync_intervals": {"timesheet": 0}},
        {"sync_directions": {"timesheet": "SIDEWAYS"}},
        {"correlation_file": "  "},
        {"recent_log_capacity": 0},
        {"provenance_max_entries": 0},
    ])
    def test_invalid_values_raise(self, kwargs):
        """Test each invalid value is rejected."""
        with pytest.raises(ValueError, match="IntegrationConfig validation failed"):
            IntegrationConfig(**kwargs)

    def test_all_errors_reported(self):
        """Test every violated constraint appears in the message."""
        with pytest.raises(ValueError) as info:
            IntegrationConfig(batch_size=0, max_history=-5)
        assert "batch_size" in str(info.value)
        assert "max_history" in str(info.value)


class TestFromEnv:
    """Test environment variable overrides."""

    def test_scalar_overrides(self, monkeypatch):
        """Test scalar fields read from P6EBS_ variables."""
        monkeypatch.setenv("P6EBS_BATCH_SIZE", "25")
        monkeypatch.setenv("P6EBS_LOG_LEVEL", "debug")
        monkeypatch.setenv("P6EBS_ENABLE_METRICS", "no")
        monkeypatch.setenv("P6EBS_BIDIRECTIONAL_PRIORITY", "p6")
        cfg = IntegrationConfig.from_env()
        assert cfg.batch_size == 25
        assert cfg.log_level == "DEBUG"
        assert cfg.enable_metrics is False
        assert cfg.bidirectional_priority == "P6"

    def test_buffer_sizes(self, monkeypatch):
        """Test log buffer and provenance sizes read from the environment."""
        monkeypatch.setenv("P6EBS_RECENT_LOG_CAPACITY", "200")
        monkeypatch.setenv("P6EBS_PROVENANCE_MAX_ENTRIES", "500")
        cfg = IntegrationConfig.from_env()
        assert cfg.recent_log_capacity == 200
        assert cfg.provenance_max_entries == 500

    def test_invalid_integer_keeps_default(self, monkeypatch):
        monkeypatch.setenv("P6EBS_MAX_WORKERS", "many")
        assert IntegrationConfig.from_env().max_workers == 4

    def test_per_type_maps_merge_over_defaults(self, monkeypatch):
        """Test per-type lists merge over defaults and skip bad entries."""
        monkeypatch.setenv("P6EBS_SYNC_INTERVALS", "timesheet=2,bogus,procurement=x")
        monkeypatch.setenv("P6EBS_SYNC_DIRECTIONS", "projectWbs=bidirectional")
        cfg = IntegrationConfig.from_env()
        assert cfg.get_interval_hours("timesheet") == 2
        assert cfg.get_interval_hours("procurement") == 6
        assert cfg.get_interval_hours("projectFinancials") == 24
        assert cfg.get_direction("projectWbs") == "BIDIRECTIONAL"


class TestSingleton:
    """Test get/set/reset of the config singleton."""

    def test_set_and_reset(self):
        custom = IntegrationConfig(batch_size=7)
        set_config(custom)
        assert get_config() is custom
        reset_config()
        assert get_config() is not custom
