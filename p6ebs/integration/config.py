# -*- coding: utf-8 -*-
"""
P6/EBS Integration Service Configuration

Centralized configuration for the reconciliation and synchronization core
covering:
- Batch and retry defaults carried by the persisted integration settings
- Per-integration-type sync direction and interval (hours)
- Scheduler timing (initial delay, shutdown timeout, worker pool size)
- Correlation store location, history retention and provenance size
- Priority system for BIDIRECTIONAL financial merges

All settings can be overridden via environment variables with the
``P6EBS_`` prefix (e.g. ``P6EBS_BATCH_SIZE``). Per-type maps use a
comma-separated ``type=value`` list, e.g.
``P6EBS_SYNC_INTERVALS="timesheet=2,procurement=8"``.

Example:
    >>> from p6ebs.integration.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.get_interval_hours("timesheet"), cfg.get_direction("procurement"))
    4 EBS_TO_P6

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "P6EBS_"

_VALID_DIRECTIONS = ("P6_TO_EBS", "EBS_TO_P6", "BIDIRECTIONAL")
_VALID_SYSTEMS = ("P6", "EBS")
_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_DIRECTION = "BIDIRECTIONAL"
DEFAULT_INTERVAL_HOURS = 24


def _default_directions() -> Dict[str, str]:
    return {
        "projectFinancials": "P6_TO_EBS",
        "resourceManagement": "BIDIRECTIONAL",
        "procurement": "EBS_TO_P6",
        "timesheet": "P6_TO_EBS",
        "projectWbs": "P6_TO_EBS",
    }


def _default_intervals() -> Dict[str, int]:
    return {
        "projectFinancials": 24,
        "resourceManagement": 12,
        "procurement": 6,
        "timesheet": 4,
        "projectWbs": 24,
    }


# ---------------------------------------------------------------------------
# IntegrationConfig
# ---------------------------------------------------------------------------


@dataclass
class IntegrationConfig:
    """Complete configuration for the P6/EBS integration core.

    Attributes:
        log_level: Logging level applied to the ``p6ebs`` logger on
            service startup.
        batch_size: Number of entities written per commit batch.
        retry_count: Retry count handed to connectors (``retry_count``
            connection param) that retry their own I/O. The core itself
            never retries within a session; the next scheduled run is the
            retry.
        retry_delay_ms: Delay between connector retries (``retry_delay_ms``
            connection param).
        correlation_file: JSON file backing the ID correlation store.
            ``~`` is expanded.
        sync_directions: Per-integration-type direction
            (P6_TO_EBS, EBS_TO_P6, BIDIRECTIONAL).
        sync_intervals: Per-integration-type recurring interval in hours.
        initial_delay_seconds: Delay used for the first fire when a type
            has never been synced or its interval already elapsed.
        scheduler_shutdown_timeout: Seconds to wait for running jobs on
            scheduler shutdown.
        max_workers: Worker threads for run-now and background compares.
        max_history: Opt-in retention limit for sync history. 0 keeps
            every record; a positive value drops the oldest records once
            the limit is exceeded.
        bidirectional_priority: System whose values win on conflict in a
            BIDIRECTIONAL financial merge (P6 or EBS).
        enable_metrics: Publish Prometheus metrics.
        enable_provenance: Record SHA-256 provenance entries.
        provenance_max_entries: Newest provenance entries kept in memory.
        recent_log_capacity: Newest log records kept for reports.
    """

    # -- Logging -------------------------------------------------------------
    log_level: str = "INFO"
    recent_log_capacity: int = 1000

    # -- Processing ----------------------------------------------------------
    batch_size: int = 100
    retry_count: int = 3
    retry_delay_ms: int = 5000

    # -- Correlation store ---------------------------------------------------
    correlation_file: str = "~/.p6ebs/id_correlations.json"

    # -- Per-type settings ---------------------------------------------------
    sync_directions: Dict[str, str] = field(default_factory=_default_directions)
    sync_intervals: Dict[str, int] = field(default_factory=_default_intervals)

    # -- Scheduler -----------------------------------------------------------
    initial_delay_seconds: int = 60
    scheduler_shutdown_timeout: int = 10
    max_workers: int = 4

    # -- History -------------------------------------------------------------
    max_history: int = 0

    # -- Merge policy --------------------------------------------------------
    bidirectional_priority: str = "EBS"

    # -- Feature toggles -----------------------------------------------------
    enable_metrics: bool = True
    enable_provenance: bool = True
    provenance_max_entries: int = 10000

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> IntegrationConfig:
        """Build an IntegrationConfig from environment variables.

        Every scalar field can be overridden via ``P6EBS_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).
        ``P6EBS_SYNC_DIRECTIONS`` and ``P6EBS_SYNC_INTERVALS`` are merged
        over the defaults.

        Returns:
            Populated IntegrationConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        def _pairs(name: str) -> Dict[str, str]:
            val = _env(name)
            if not val:
                return {}
            parsed: Dict[str, str] = {}
            for item in val.split(","):
                key, sep, value = item.partition("=")
                if not sep or not key.strip():
                    logger.warning(
                        "Ignoring malformed entry %r in %s%s",
                        item, prefix, name,
                    )
                    continue
                parsed[key.strip()] = value.strip()
            return parsed

        directions = _default_directions()
        directions.update(
            {k: v.upper() for k, v in _pairs("SYNC_DIRECTIONS").items()}
        )

        intervals = _default_intervals()
        for key, value in _pairs("SYNC_INTERVALS").items():
            try:
                intervals[key] = int(value)
            except ValueError:
                logger.warning(
                    "Invalid interval for %s in %sSYNC_INTERVALS=%s, "
                    "keeping %d",
                    key, prefix, value, intervals.get(key, DEFAULT_INTERVAL_HOURS),
                )

        config = cls(
            # Logging
            log_level=_str("LOG_LEVEL", cls.log_level).upper(),
            recent_log_capacity=_int(
                "RECENT_LOG_CAPACITY", cls.recent_log_capacity,
            ),
            # Processing
            batch_size=_int("BATCH_SIZE", cls.batch_size),
            retry_count=_int("RETRY_COUNT", cls.retry_count),
            retry_delay_ms=_int("RETRY_DELAY_MS", cls.retry_delay_ms),
            # Correlation store
            correlation_file=_str("CORRELATION_FILE", cls.correlation_file),
            # Per-type settings
            sync_directions=directions,
            sync_intervals=intervals,
            # Scheduler
            initial_delay_seconds=_int(
                "INITIAL_DELAY_SECONDS", cls.initial_delay_seconds,
            ),
            scheduler_shutdown_timeout=_int(
                "SCHEDULER_SHUTDOWN_TIMEOUT", cls.scheduler_shutdown_timeout,
            ),
            max_workers=_int("MAX_WORKERS", cls.max_workers),
            # History
            max_history=_int("MAX_HISTORY", cls.max_history),
            # Merge policy
            bidirectional_priority=_str(
                "BIDIRECTIONAL_PRIORITY", cls.bidirectional_priority,
            ).upper(),
            # Feature toggles
            enable_metrics=_bool("ENABLE_METRICS", cls.enable_metrics),
            enable_provenance=_bool(
                "ENABLE_PROVENANCE", cls.enable_provenance,
            ),
            provenance_max_entries=_int(
                "PROVENANCE_MAX_ENTRIES", cls.provenance_max_entries,
            ),
        )

        logger.info(
            "IntegrationConfig loaded: batch_size=%d, retry_count=%d, "
            "max_workers=%d, initial_delay=%ds, priority=%s, "
            "correlation_file=%s",
            config.batch_size,
            config.retry_count,
            config.max_workers,
            config.initial_delay_seconds,
            config.bidirectional_priority,
            config.correlation_file,
        )
        return config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def __post_init__(self) -> None:
        """Validate all configuration constraints after initialization.

        Raises:
            ValueError: If any constraint is violated.
        """
        errors: list[str] = []

        if self.log_level not in _VALID_LOG_LEVELS:
            errors.append(
                f"log_level must be one of {_VALID_LOG_LEVELS}, "
                f"got '{self.log_level}'"
            )
        if self.recent_log_capacity < 1:
            errors.append("recent_log_capacity must be >= 1")

        # Processing
        if self.batch_size < 1:
            errors.append("batch_size must be >= 1")
        if self.retry_count < 0:
            errors.append("retry_count must be >= 0")
        if self.retry_delay_ms < 0:
            errors.append("retry_delay_ms must be >= 0")

        if not self.correlation_file or not self.correlation_file.strip():
            errors.append("correlation_file must not be empty")

        # Per-type settings
        for sync_type, direction in self.sync_directions.items():
            if direction not in _VALID_DIRECTIONS:
                errors.append(
                    f"sync_directions[{sync_type}] must be one of "
                    f"{_VALID_DIRECTIONS}, got '{direction}'"
                )
        for sync_type, hours in self.sync_intervals.items():
            if hours < 1:
                errors.append(f"sync_intervals[{sync_type}] must be >= 1")

        # Scheduler
        if self.initial_delay_seconds < 0:
            errors.append("initial_delay_seconds must be >= 0")
        if self.scheduler_shutdown_timeout < 0:
            errors.append("scheduler_shutdown_timeout must be >= 0")
        if self.max_workers < 1:
            errors.append("max_workers must be >= 1")

        if self.max_history < 0:
            errors.append("max_history must be >= 0")
        if self.provenance_max_entries < 1:
            errors.append("provenance_max_entries must be >= 1")

        if self.bidirectional_priority not in _VALID_SYSTEMS:
            errors.append(
                f"bidirectional_priority must be one of {_VALID_SYSTEMS}, "
                f"got '{self.bidirectional_priority}'"
            )

        if errors:
            raise ValueError(
                "IntegrationConfig validation failed:\n"
                + "\n".join(f"  - {e}" for e in errors)
            )

    # ------------------------------------------------------------------
    # Per-type accessors
    # ------------------------------------------------------------------

    def get_direction(self, sync_type: str) -> str:
        """Return the configured direction, BIDIRECTIONAL when unset."""
        return self.sync_directions.get(sync_type, DEFAULT_DIRECTION)

    def get_interval_hours(self, sync_type: str) -> int:
        """Return the configured interval in hours, 24 when unset."""
        return self.sync_intervals.get(sync_type, DEFAULT_INTERVAL_HOURS)

    @property
    def correlation_path(self) -> str:
        """Correlation file path with ``~`` expanded."""
        return os.path.expanduser(self.correlation_file)


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[IntegrationConfig] = None
_config_lock = threading.Lock()


def get_config() -> IntegrationConfig:
    """Return the singleton IntegrationConfig, creating from env if needed.

    Returns:
        IntegrationConfig singleton instance.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = IntegrationConfig.from_env()
    return _config_instance


def set_config(config: IntegrationConfig) -> None:
    """Replace the singleton IntegrationConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("IntegrationConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "DEFAULT_DIRECTION",
    "DEFAULT_INTERVAL_HOURS",
    "IntegrationConfig",
    "get_config",
    "set_config",
    "reset_config",
]
