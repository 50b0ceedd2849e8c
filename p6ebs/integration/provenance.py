# -*- coding: utf-8 -*-
"""
Provenance Ledger - P6/EBS Integration Core

Hash-chained audit ledger of what the integration did: detection runs,
field resolutions, write-back commits and session transitions. Each
entry stores the chain hash of its predecessor (``parent_hash``) and its
own ``chain_hash``, computed over the parent and the entry's content, so
editing any retained entry breaks verification.

The ledger is bounded. Only the newest ``capacity`` entries are kept
(``IntegrationConfig.provenance_max_entries``); older entries fall off
the front and ``dropped_count`` says how many. Verification then starts
at the oldest retained entry instead of the genesis hash.

Example:
    >>> ledger = ProvenanceLedger(capacity=1000)
    >>> head = ledger.record("discrepancy", "101", "commit", ledger.digest({"budget": 100}))
    >>> ledger.verify("discrepancy", "101")[0]
    True

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

#: Default number of entries retained by a ledger.
DEFAULT_CAPACITY = 10000

#: Subject used for pipeline steps that are not tied to one entity.
STEP_SUBJECT = "step"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LedgerEntry:
    """One hash-chained ledger entry.

    Attributes:
        sequence: Position in the ledger since creation or reset.
        subject: ``"<entity_type>:<entity_id>"`` or ``"step"``.
        action: What happened (detect, resolve, commit, start, ...).
        input_hash: Digest of what the action consumed.
        output_hash: Digest of what the action produced.
        recorded_at: ISO-8601 UTC timestamp.
        parent_hash: Chain hash of the previous entry.
        chain_hash: Digest of the parent hash and this entry's content.
        detail: Free-form context, not covered by the chain hash.
    """

    sequence: int
    subject: str
    action: str
    input_hash: str
    output_hash: str
    recorded_at: str
    parent_hash: str
    chain_hash: str
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def chain_hash_for(
    parent_hash: str,
    sequence: int,
    subject: str,
    action: str,
    input_hash: str,
    output_hash: str,
    recorded_at: str,
) -> str:
    """Chain hash of an entry with the given parent and content."""
    return _sha256("|".join((
        parent_hash, str(sequence), subject, action,
        input_hash, output_hash, recorded_at,
    )))


class ProvenanceLedger:
    """Bounded, thread-safe hash chain of integration actions.

    A disabled ledger still returns digests and chain hashes, so callers
    never branch on it, but retains nothing.
    """

    GENESIS_HASH = _sha256("p6ebs-integration-genesis")

    def __init__(self, enabled: bool = True, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.enabled = enabled
        self._entries: Deque[LedgerEntry] = deque(maxlen=capacity)
        self._head = self.GENESIS_HASH
        self._sequence = 0
        self._dropped = 0
        self._lock = threading.Lock()
        logger.info(
            "ProvenanceLedger initialized: enabled=%s, capacity=%d",
            enabled, capacity,
        )

    @staticmethod
    def digest(data: Any) -> str:
        """SHA-256 of ``data`` serialized as canonical JSON.

        Keys are sorted and Decimals serialize as their string form, so
        ``{"v": Decimal("1.50")}`` and ``{"v": "1.50"}`` digest alike.
        """
        return _sha256(json.dumps(data, sort_keys=True, default=_json_default))

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        data_hash: str,
    ) -> str:
        """Record an action on one entity; returns the new chain hash."""
        entry = self._append(
            f"{entity_type}:{entity_id}", action, data_hash, data_hash, None,
        )
        return entry.chain_hash

    def record_step(
        self,
        action: str,
        input_hash: str,
        output_hash: str,
        detail: Optional[Dict[str, Any]] = None,
    ) -> LedgerEntry:
        """Record a pipeline step with distinct input and output digests."""
        return self._append(STEP_SUBJECT, action, input_hash, output_hash, detail)

    def _append(
        self,
        subject: str,
        action: str,
        input_hash: str,
        output_hash: str,
        detail: Optional[Dict[str, Any]],
    ) -> LedgerEntry:
        recorded_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            sequence = self._sequence
            entry = LedgerEntry(
                sequence=sequence,
                subject=subject,
                action=action,
                input_hash=input_hash,
                output_hash=output_hash,
                recorded_at=recorded_at,
                parent_hash=self._head,
                chain_hash=chain_hash_for(
                    self._head, sequence, subject, action,
                    input_hash, output_hash, recorded_at,
                ),
                detail=dict(detail or {}),
            )
            if self.enabled:
                if len(self._entries) == self._entries.maxlen:
                    self._dropped += 1
                self._entries.append(entry)
                self._head = entry.chain_hash
                self._sequence += 1
        logger.debug(
            "Ledger %s %s -> %s", subject, action, entry.chain_hash[:16],
        )
        return entry

    # ------------------------------------------------------------------
    # Verification and retrieval
    # ------------------------------------------------------------------

    def verify(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Tuple[bool, List[Dict[str, Any]]]:
        """Recompute chain hashes and check the links between entries.

        Every retained entry's ``chain_hash`` is recomputed from its
        ``parent_hash`` and content, and each entry must point at the
        chain hash of the entry before it. With nothing dropped the
        first entry must point at the genesis hash. With an entity
        filter only the content check applies, since one entity's
        entries are interleaved with others.

        Returns:
            ``(valid, entries)`` with entries as dicts, oldest first.
        """
        with self._lock:
            entries = list(self._entries)
            dropped = self._dropped

        scoped = bool(entity_type and entity_id)
        if scoped:
            subject = f"{entity_type}:{entity_id}"
            entries = [e for e in entries if e.subject == subject]

        expected_parent = None if (scoped or dropped) else self.GENESIS_HASH
        for entry in entries:
            recomputed = chain_hash_for(
                entry.parent_hash, entry.sequence, entry.subject, entry.action,
                entry.input_hash, entry.output_hash, entry.recorded_at,
            )
            if recomputed != entry.chain_hash:
                logger.warning(
                    "Ledger entry %d (%s %s) does not match its chain hash",
                    entry.sequence, entry.subject, entry.action,
                )
                return False, [e.to_dict() for e in entries]
            if expected_parent is not None and entry.parent_hash != expected_parent:
                logger.warning(
                    "Ledger entry %d is not linked to its predecessor",
                    entry.sequence,
                )
                return False, [e.to_dict() for e in entries]
            if not scoped:
                expected_parent = entry.chain_hash
        return True, [e.to_dict() for e in entries]

    def entries(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> List[LedgerEntry]:
        """Retained entries, oldest first, optionally for one entity."""
        with self._lock:
            entries = list(self._entries)
        if entity_type and entity_id:
            subject = f"{entity_type}:{entity_id}"
            entries = [e for e in entries if e.subject == subject]
        return entries

    def to_json(self) -> str:
        return json.dumps(
            [e.to_dict() for e in self.entries()], indent=2, default=_json_default,
        )

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._head = self.GENESIS_HASH
            self._sequence = 0
            self._dropped = 0
        logger.info("ProvenanceLedger reset")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def head(self) -> str:
        """Chain hash of the newest entry (genesis when empty)."""
        with self._lock:
            return self._head

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    @property
    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def dropped_count(self) -> int:
        with self._lock:
            return self._dropped


__all__ = [
    "DEFAULT_CAPACITY",
    "LedgerEntry",
    "ProvenanceLedger",
    "chain_hash_for",
]
