"""Shared pytest fixtures for the P6/EBS integration test suite.

Provides in-memory system connectors, sinks and stores standing in for the
P6 and EBS databases, plus sample project data used across modules.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest

from p6ebs.integration.config import IntegrationConfig, reset_config, set_config
from p6ebs.integration.correlation_store import CorrelationStore
from p6ebs.integration.models import EntityRecord, IntegrationSettings, NotificationKind
from p6ebs.integration.setup import reset_service


# ==============================================================================
# Fakes
# ==============================================================================

class FakeConnector:
    """In-memory SystemConnector for one system.

    When ``id_fields`` names the id field of an entity type, accepted
    writes are applied to the stored rows.
    """

    def __init__(self, name: str, entities: Optional[Dict[str, List[Any]]] = None,
                 id_fields: Optional[Dict[str, str]] = None):
        self.name = name
        self.entities: Dict[str, List[Any]] = entities or {}
        self.id_fields = id_fields or {}
        self.writes: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail_fetch = False
        self.reject_ids: set = set()
        self.raise_on_write: set = set()
        self.params_seen: List[Dict[str, str]] = []

    def fetch_entities(self, entity_type: str, connection_params: Mapping[str, str]):
        self.params_seen.append(dict(connection_params))
        if self.fail_fetch:
            raise ConnectionError(f"{self.name} unreachable")
        return list(self.entities.get(entity_type, []))

    def write_entity(self, entity_type, connection_params, entity_id, field_updates):
        if entity_id in self.raise_on_write:
            raise IOError(f"{self.name} write error for {entity_id}")
        if entity_id in self.reject_ids:
            return False
        self.writes.append((entity_type, entity_id, dict(field_updates)))
        id_field = self.id_fields.get(entity_type)
        if id_field:
            for row in self.entities.get(entity_type, []):
                if str(row.get(id_field)) == entity_id:
                    row.update(field_updates)
        return True


class MemoryPersistence:
    """CorrelationPersistence keeping the last persisted map."""

    def __init__(self, initial=None):
        self.data = initial or {}
        self.persist_calls = 0
        self.fail = False

    def persist(self, correlations):
        if self.fail:
            raise OSError("disk full")
        self.persist_calls += 1
        self.data = {k: dict(v) for k, v in correlations.items()}

    def load(self):
        return {k: dict(v) for k, v in self.data.items()}


class RecordingSink:
    """NotificationSink that records (kind, payload) pairs."""

    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[NotificationKind, Dict[str, Any]]] = []
        self.fail = fail

    def notify(self, kind, payload):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((kind, dict(payload)))

    def kinds(self) -> List[NotificationKind]:
        return [kind for kind, _ in self.sent]


class MemoryReportSink:
    def __init__(self):
        self.reports: Dict[str, str] = {}

    def write_report(self, text, destination_path):
        self.reports[destination_path] = text


class MemoryConfigurationStore:
    def __init__(self, settings: Optional[IntegrationSettings] = None):
        self.settings = settings or IntegrationSettings()
        self.saved: List[IntegrationSettings] = []

    def load_configuration(self):
        return self.settings

    def save_configuration(self, config):
        self.saved.append(config)
        self.settings = config


class FixedClock:
    """Settable UTC clock."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset module-level singletons between tests."""
    yield
    reset_service()
    reset_config()


@pytest.fixture
def config(tmp_path):
    """Integration config isolated to a temporary directory."""
    cfg = IntegrationConfig(
        correlation_file=str(tmp_path / "id_correlations.json"),
        initial_delay_seconds=60,
        max_workers=2,
        scheduler_shutdown_timeout=5,
    )
    set_config(cfg)
    return cfg


@pytest.fixture
def persistence():
    return MemoryPersistence()


@pytest.fixture
def correlation_store(persistence):
    return CorrelationStore(persistence)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def p6_projects():
    """P6 projects as raw field maps."""
    return [
        {"proj_id": "101", "proj_name": "Plant Upgrade", "proj_short_name": "PU-01",
         "status_code": "Active", "plan_start_date": "2026-01-05",
         "planned_cost": 100},
        {"proj_id": "102", "proj_name": "Office Fitout", "proj_short_name": "OF-02",
         "status_code": "Active", "plan_start_date": "2026-02-01",
         "planned_cost": 250.5},
        {"proj_id": "103", "proj_name": "Pipeline", "proj_short_name": "PL-03",
         "status_code": "Planned", "plan_start_date": "2026-03-01",
         "planned_cost": 75},
    ]


@pytest.fixture
def ebs_projects():
    """EBS projects; E-1 matches PU-01 with a budget mismatch."""
    return [
        {"project_id": "E-1", "project_name": "Plant Upgrade", "segment1": "PU-01",
         "project_status_code": "Active", "start_date": "2026-01-05",
         "budget_amount": 90},
        {"project_id": "E-2", "project_name": "Office Fitout", "segment1": "OF-02",
         "project_status_code": "Active", "start_date": "2026-02-01",
         "budget_amount": "250.50"},
        {"project_id": "E-9", "project_name": "Warehouse", "segment1": "WH-09",
         "project_status_code": "Active", "start_date": "2026-04-01",
         "budget_amount": 10},
    ]


@pytest.fixture
def p6(p6_projects):
    return FakeConnector("P6", {"project": p6_projects}, {"project": "proj_id"})


@pytest.fixture
def ebs(ebs_projects):
    return FakeConnector("EBS", {"project": ebs_projects}, {"project": "project_id"})


def make_record(id_field: str, name_field: str, **fields) -> EntityRecord:
    """Build an EntityRecord from keyword fields."""
    return EntityRecord.from_fields(fields, id_field, name_field)
