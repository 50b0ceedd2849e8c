"""P6/EBS Integration Exception Hierarchy.

This module provides the exception hierarchy used by the reconciliation and
synchronization core, with rich error context for logging, notifications and
API responses.

Exception Hierarchy:
    P6EbsException (base)
    ├── IntegrationError
    │   ├── SyncInProgressError
    │   ├── ValidationBlockingError
    │   └── SchedulingError
    ├── DataException
    │   ├── SourceConnectionError
    │   ├── MappingGapError
    │   └── WriteBackError
    └── ResolutionError

All exceptions include rich context:
- error_code: Unique error identifier
- integration_type: Integration type the error belongs to (optional)
- context: Dictionary with error-specific details
- timestamp: When the error occurred (UTC)

Example:
    >>> from p6ebs.exceptions import SourceConnectionError
    >>> raise SourceConnectionError(
    ...     message="EBS database unreachable",
    ...     system="EBS",
    ...     context={"host": "ebs-db01", "port": 1521}
    ... )

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ==============================================================================
# Base Exception
# ==============================================================================

class P6EbsException(Exception):
    """Base exception for all P6/EBS integration errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "P6EBS_WRITE_BACK_ERROR")
        integration_type: Integration type that raised the error (optional)
        context: Dictionary with error-specific details
        timestamp: When the error occurred
    """

    ERROR_PREFIX = "P6EBS"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        integration_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception with rich context.

        Args:
            message: Human-readable error message
            error_code: Unique error identifier (auto-generated if not provided)
            integration_type: Integration type being processed
            context: Dictionary with error-specific details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.integration_type = integration_type
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def _generate_error_code(self) -> str:
        """Generate error code based on exception class.

        Returns:
            Error code like "P6EBS_SCHEDULING_ERROR"
        """
        class_name = self.__class__.__name__
        error_type = re.sub(r'(?<!^)(?=[A-Z])', '_', class_name).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary with all error details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "integration_type": self.integration_type,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        parts = [f"[{self.error_code}]"]
        if self.integration_type:
            parts.append(f"Integration: {self.integration_type}")
        parts.append(self.message)
        return " - ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}', "
            f"integration_type='{self.integration_type}')"
        )


# ==============================================================================
# Integration Exceptions
# ==============================================================================

class IntegrationError(P6EbsException):
    """Base exception for integration orchestration errors.

    Raised for unknown integration types or failures while running the
    validate/fetch/compare/commit pipeline.
    """


class SyncInProgressError(IntegrationError):
    """A session for the integration type is already running.

    Example:
        >>> raise SyncInProgressError(
        ...     message="Synchronization already in progress",
        ...     integration_type="timesheet",
        ...     session_id="5f0c..."
        ... )
    """

    def __init__(
        self,
        message: str,
        integration_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ):
        """Initialize in-progress error.

        Args:
            message: Error message
            integration_type: Integration type already running
            context: Error context
            session_id: Identifier of the running session
        """
        if session_id:
            context = context or {}
            context["session_id"] = session_id
        super().__init__(
            message, integration_type=integration_type, context=context,
        )


class ValidationBlockingError(IntegrationError):
    """Pre-flight validation found at least one blocking issue.

    The session for the type is skipped, not failed, and retried on the
    next scheduled fire.
    """

    def __init__(
        self,
        message: str,
        integration_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        issues: Optional[list] = None,
    ):
        """Initialize validation blocking error.

        Args:
            message: Error message
            integration_type: Integration type that was blocked
            context: Error context
            issues: Blocking issues (as dictionaries)
        """
        context = context or {}
        if issues:
            context["issues"] = issues
        super().__init__(
            message, integration_type=integration_type, context=context,
        )


class SchedulingError(IntegrationError):
    """Timer or task submission failed.

    The schedule entry is marked inactive and must be re-scheduled
    manually.
    """


# ==============================================================================
# Data Exceptions
# ==============================================================================

class DataException(P6EbsException):
    """Base exception for data access and mapping errors."""


class SourceConnectionError(DataException):
    """One of the two systems is unreachable.

    Aborts the session with status Failed. No write-back is attempted for
    that run.

    Example:
        >>> raise SourceConnectionError(
        ...     message="Failed to fetch projects",
        ...     system="P6",
        ...     cause=OSError("Connection refused")
        ... )
    """

    def __init__(
        self,
        message: str,
        system: Optional[str] = None,
        integration_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """Initialize connection error.

        Args:
            message: Error message
            system: System that failed (P6 or EBS)
            integration_type: Integration type being processed
            context: Error context
            cause: Original exception
        """
        context = context or {}
        if system:
            context["system"] = system
        if cause:
            context["cause"] = str(cause)
            context["cause_type"] = type(cause).__name__
        self.system = system
        super().__init__(
            message, integration_type=integration_type, context=context,
        )


class MappingGapError(DataException):
    """No field mapping is registered for an entity type."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if entity_type:
            context["entity_type"] = entity_type
        super().__init__(message, context=context)


class WriteBackError(DataException):
    """An individual entity update failed to commit.

    Isolated per entity. The owning discrepancy record keeps its prior
    status and carries the error message.
    """

    def __init__(
        self,
        message: str,
        system: Optional[str] = None,
        entity_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """Initialize write-back error.

        Args:
            message: Error message
            system: Target system of the failed write (P6 or EBS)
            entity_id: Identifier of the entity being written
            context: Error context
            cause: Original exception
        """
        context = context or {}
        if system:
            context["system"] = system
        if entity_id:
            context["entity_id"] = entity_id
        if cause:
            context["cause"] = str(cause)
            context["cause_type"] = type(cause).__name__
        super().__init__(message, context=context)


# ==============================================================================
# Resolution Exceptions
# ==============================================================================

class ResolutionError(P6EbsException):
    """A resolution action could not be applied.

    Raised for CUSTOM without a value, PENDING as an action, or an attempt
    to re-open a record that was already applied.
    """


__all__ = [
    "P6EbsException",
    "IntegrationError",
    "SyncInProgressError",
    "ValidationBlockingError",
    "SchedulingError",
    "DataException",
    "SourceConnectionError",
    "MappingGapError",
    "WriteBackError",
    "ResolutionError",
]
