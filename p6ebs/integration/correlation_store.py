# -*- coding: utf-8 -*-
"""
ID Correlation Store - P6/EBS Integration Core

Persistent bidirectional mapping of entity identifiers across P6 and EBS,
keyed by entity type. Correlations are built by exact business-key
matching (for projects, P6 ``proj_short_name`` against EBS ``segment1``)
and reused across runs.

At most one correlation exists per ``(entity_type, p6_id)``; a new
``correlate`` call overwrites it. ``lookup_a`` (EBS id -> P6 id) is a
linear scan over the entries of one type, which is fine for thousands of
correlations per type but not for millions.

The store is the single writer of correlation state. Every read and write
goes through one re-entrant lock, and persistence is delegated to a
``CorrelationPersistence`` collaborator. A JSON file implementation is
provided; a missing file loads as an empty map.

Example:
    >>> from p6ebs.integration.correlation_store import CorrelationStore
    >>> store = CorrelationStore()
    >>> store.correlate("project", "P-100", "E-7")
    >>> store.lookup_b("project", "P-100"), store.lookup_a("project", "E-7")
    ('E-7', 'P-100')

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from p6ebs.integration.collaborators import (
    CorrelationMap,
    CorrelationPersistence,
)
from p6ebs.integration.metrics import inc_errors, set_correlations
from p6ebs.integration.models import EntityRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON file persistence
# ---------------------------------------------------------------------------


class JsonFileCorrelationPersistence:
    """Correlation persistence backed by one JSON file.

    Layout: ``{"<entity_type>": {"<p6_id>": "<ebs_id>", ...}, ...}``.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(os.path.expanduser(str(path)))

    def load(self) -> CorrelationMap:
        """Load correlations; a missing file yields an empty map.

        Raises:
            ValueError: If the file exists but is not a JSON object of
                objects.
        """
        if not self.path.exists():
            logger.info(
                "No correlation file at %s; starting with empty store",
                self.path,
            )
            return {}

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(
                f"Correlation file {self.path} must hold a JSON object"
            )
        loaded: CorrelationMap = {}
        for entity_type, pairs in data.items():
            if not isinstance(pairs, dict):
                raise ValueError(
                    f"Correlations for '{entity_type}' in {self.path} "
                    f"must be a JSON object"
                )
            loaded[str(entity_type)] = {
                str(k): str(v) for k, v in pairs.items()
            }
        return loaded

    def persist(self, correlations: CorrelationMap) -> None:
        """Write correlations, replacing the file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(correlations, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)
        logger.debug("Correlations written to %s", self.path)


# ---------------------------------------------------------------------------
# CorrelationStore
# ---------------------------------------------------------------------------


class CorrelationStore:
    """Thread-safe P6<->EBS id correlation store.

    Attributes:
        _correlations: entity type -> P6 id -> EBS id.
        _persistence: Optional persistence collaborator.
        _lock: Re-entrant lock guarding every access.
    """

    def __init__(
        self,
        persistence: Optional[CorrelationPersistence] = None,
    ) -> None:
        """Initialize CorrelationStore.

        Args:
            persistence: Collaborator used by ``load`` and ``save``. When
                None the store is memory-only.
        """
        self._correlations: Dict[str, Dict[str, str]] = {}
        self._persistence = persistence
        self._lock = threading.RLock()
        logger.info(
            "CorrelationStore initialized: persistence=%s",
            type(persistence).__name__ if persistence else "none",
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace in-memory correlations with the persisted ones.

        Returns:
            Number of correlations loaded.
        """
        if self._persistence is None:
            return 0
        loaded = self._persistence.load() or {}
        with self._lock:
            self._correlations = {
                entity_type: dict(pairs)
                for entity_type, pairs in loaded.items()
            }
            total = self._count_locked()
        set_correlations(total)
        logger.info("Loaded %d correlations", total)
        return total

    def save(self) -> None:
        """Persist the current correlations.

        Raises:
            Exception: Whatever the persistence collaborator raises, after
                it has been logged.
        """
        if self._persistence is None:
            return
        snapshot = self.get_correlations()
        try:
            self._persistence.persist(snapshot)
        except Exception:
            logger.error("Failed to persist correlations", exc_info=True)
            inc_errors("correlation_persist")
            raise
        logger.debug(
            "Persisted correlations for %d entity types", len(snapshot),
        )

    # ------------------------------------------------------------------
    # Correlation
    # ------------------------------------------------------------------

    def correlate(self, entity_type: str, p6_id: str, ebs_id: str) -> None:
        """Record ``p6_id <-> ebs_id``, overwriting any entry for p6_id.

        Raises:
            ValueError: If any argument is empty.
        """
        if not entity_type or p6_id in (None, "") or ebs_id in (None, ""):
            raise ValueError(
                "entity_type, p6_id and ebs_id must all be non-empty"
            )
        with self._lock:
            pairs = self._correlations.setdefault(entity_type, {})
            previous = pairs.get(str(p6_id))
            pairs[str(p6_id)] = str(ebs_id)
            total = self._count_locked()
        set_correlations(total)
        if previous is not None and previous != str(ebs_id):
            logger.info(
                "Correlation overwritten: %s %s -> %s (was %s)",
                entity_type, p6_id, ebs_id, previous,
            )

    def lookup_b(self, entity_type: str, p6_id: str) -> Optional[str]:
        """Return the EBS id correlated with ``p6_id``."""
        with self._lock:
            return self._correlations.get(entity_type, {}).get(str(p6_id))

    def lookup_a(self, entity_type: str, ebs_id: str) -> Optional[str]:
        """Return the P6 id correlated with ``ebs_id`` (linear scan)."""
        target = str(ebs_id)
        with self._lock:
            for p6_id, mapped in self._correlations.get(entity_type, {}).items():
                if mapped == target:
                    return p6_id
        return None

    def match_by_business_key(
        self,
        entities_a: Iterable[Union[EntityRecord, Mapping[str, Any]]],
        entities_b: Iterable[Union[EntityRecord, Mapping[str, Any]]],
        key_field_a: str,
        key_field_b: str,
        entity_type: str = "project",
        id_field_a: Optional[str] = None,
        id_field_b: Optional[str] = None,
        persist: bool = True,
    ) -> Dict[str, str]:
        """Correlate entities whose business keys are exactly equal.

        Builds an index of ``entities_b`` by ``key_field_b``; every A entity
        whose ``key_field_a`` value is in the index is correlated. When
        several B entities share a key the last one wins.

        Args:
            entities_a: P6 entities.
            entities_b: EBS entities.
            key_field_a: Business key field on the P6 side.
            key_field_b: Business key field on the EBS side.
            entity_type: Entity type the correlations are stored under.
            id_field_a: P6 id field; ``EntityRecord.id`` when omitted.
            id_field_b: EBS id field; ``EntityRecord.id`` when omitted.
            persist: Save the store after the batch.

        Returns:
            Map of P6 id to EBS id created by this call.
        """
        start = time.time()

        index: Dict[str, str] = {}
        for entity in entities_b:
            key = _field(entity, key_field_b)
            entity_id = _entity_id(entity, id_field_b)
            if key is None or entity_id is None:
                continue
            index[str(key)] = entity_id

        matched: Dict[str, str] = {}
        for entity in entities_a:
            key = _field(entity, key_field_a)
            entity_id = _entity_id(entity, id_field_a)
            if key is None or entity_id is None:
                continue
            ebs_id = index.get(str(key))
            if ebs_id is not None:
                matched[entity_id] = ebs_id

        with self._lock:
            for p6_id, ebs_id in matched.items():
                self.correlate(entity_type, p6_id, ebs_id)

        if persist and matched:
            self.save()

        elapsed_ms = (time.time() - start) * 1000
        logger.info(
            "Business-key match %s (%s=%s): %d correlations in %.3fms",
            entity_type, key_field_a, key_field_b, len(matched), elapsed_ms,
        )
        return matched

    def match_project_ids(
        self,
        p6_projects: Iterable[Union[EntityRecord, Mapping[str, Any]]],
        ebs_projects: Iterable[Union[EntityRecord, Mapping[str, Any]]],
    ) -> Dict[str, str]:
        """Correlate projects by P6 short name against EBS segment1."""
        return self.match_by_business_key(
            p6_projects,
            ebs_projects,
            key_field_a="proj_short_name",
            key_field_b="segment1",
            entity_type="project",
            id_field_a="proj_id",
            id_field_b="project_id",
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_correlations(
        self,
        entity_type: Optional[str] = None,
    ) -> Dict[str, Dict[str, str]]:
        """Return a deep copy of all correlations (or one type's)."""
        with self._lock:
            if entity_type is not None:
                return {
                    entity_type: dict(self._correlations.get(entity_type, {}))
                }
            return {
                key: dict(pairs) for key, pairs in self._correlations.items()
            }

    def count(self, entity_type: Optional[str] = None) -> int:
        with self._lock:
            if entity_type is not None:
                return len(self._correlations.get(entity_type, {}))
            return self._count_locked()

    def remove(self, entity_type: str, p6_id: str) -> bool:
        """Drop one correlation. Returns True if it existed."""
        with self._lock:
            removed = self._correlations.get(entity_type, {}).pop(
                str(p6_id), None,
            )
            total = self._count_locked()
        set_correlations(total)
        return removed is not None

    def clear(self, entity_type: Optional[str] = None) -> None:
        with self._lock:
            if entity_type is None:
                self._correlations.clear()
            else:
                self._correlations.pop(entity_type, None)
            total = self._count_locked()
        set_correlations(total)

    def _count_locked(self) -> int:
        return sum(len(pairs) for pairs in self._correlations.values())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _field(entity: Union[EntityRecord, Mapping[str, Any]], name: str) -> Any:
    if isinstance(entity, EntityRecord):
        return entity.fields.get(name)
    return entity.get(name)


def _entity_id(
    entity: Union[EntityRecord, Mapping[str, Any]],
    id_field: Optional[str],
) -> Optional[str]:
    if id_field:
        value = _field(entity, id_field)
    elif isinstance(entity, EntityRecord):
        value = entity.id
    else:
        value = entity.get("id")
    return None if value is None else str(value)


__all__ = [
    "CorrelationStore",
    "JsonFileCorrelationPersistence",
]
