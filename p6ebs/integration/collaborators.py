# -*- coding: utf-8 -*-
"""
Collaborator Protocols - P6/EBS Integration Core

Interfaces the core consumes but does not implement: database access for
both systems, configuration persistence, correlation persistence,
notification delivery and report writing. Implementations are injected
into the engines at construction time.

Protocols:
    - SystemConnector: fetch all entities of a type / write field updates
    - ConfigurationStore: load and save IntegrationSettings
    - CorrelationPersistence: persist and load the correlation map
    - NotificationSink: fire-and-forget notifications
    - ReportSink: write a text report to a destination

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Protocol, runtime_checkable

from p6ebs.integration.models import (
    EntityRecord,
    IntegrationSettings,
    NotificationKind,
)

#: Correlation map layout: entity type -> P6 id -> EBS id.
CorrelationMap = Dict[str, Dict[str, str]]


@runtime_checkable
class SystemConnector(Protocol):
    """Entity access for one of the two systems.

    Raising from ``fetch_entities`` is treated as the system being
    unreachable. ``write_entity`` reports failure by returning False or
    raising.
    """

    def fetch_entities(
        self,
        entity_type: str,
        connection_params: Mapping[str, str],
    ) -> List[EntityRecord]:
        """Fetch every entity of ``entity_type``."""
        ...

    def write_entity(
        self,
        entity_type: str,
        connection_params: Mapping[str, str],
        entity_id: str,
        field_updates: Mapping[str, Any],
    ) -> bool:
        """Write ``field_updates`` to entity ``entity_id``."""
        ...


@runtime_checkable
class ConfigurationStore(Protocol):
    """Load and save the persisted integration settings."""

    def load_configuration(self) -> IntegrationSettings:
        ...

    def save_configuration(self, config: IntegrationSettings) -> None:
        ...


@runtime_checkable
class CorrelationPersistence(Protocol):
    """Persist and load the correlation map.

    ``load`` returns an empty map when nothing has been persisted yet.
    """

    def persist(self, correlations: CorrelationMap) -> None:
        ...

    def load(self) -> CorrelationMap:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Deliver a notification (e-mail, chat, log). Failures are tolerated."""

    def notify(self, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        ...


@runtime_checkable
class ReportSink(Protocol):
    """Write a rendered text report to a destination path."""

    def write_report(self, text: str, destination_path: str) -> None:
        ...


__all__ = [
    "CorrelationMap",
    "SystemConnector",
    "ConfigurationStore",
    "CorrelationPersistence",
    "NotificationSink",
    "ReportSink",
]
