# -*- coding: utf-8 -*-
"""
Validation Gate - P6/EBS Integration Core

Pre-flight checks that can block a synchronization for one integration
type. A check is any callable returning ``ValidationIssue`` objects;
``validate`` runs them all and collects the issues. A sync proceeds only
when no issue is blocking; ``ensure_no_blocking`` raises
``ValidationBlockingError`` otherwise. Warnings are reported but do not
halt processing.

A check that raises, or an unknown integration type, becomes a single
blocking ``VALIDATION_ERROR`` issue so the sync is skipped rather than
run on data that could not be checked.

Built-in checks per integration type:

    ==================  ==================================================
    projectFinancials   MISSING_ID, NEGATIVE_BUDGET, MISSING_FINANCIAL_DATA
    resourceManagement  MISSING_ID, MISSING_NAME
    procurement         MISSING_ID, NEGATIVE_AMOUNT
    timesheet           MISSING_ID, NEGATIVE_HOURS, EXCESSIVE_HOURS
    projectWbs          MISSING_ID, DUPLICATE_ID
    ebsTasksToP6        MISSING_ID, MISSING_PROJECT
    ==================  ==================================================

Example:
    >>> gate = ValidationGate()
    >>> issues = gate.validate_integration("timesheet", p6_rows, ebs_rows)
    >>> gate.has_blocking_issues(issues)
    False

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from p6ebs.exceptions import ValidationBlockingError
from p6ebs.integration.entity_mapper import EntityMapper
from p6ebs.integration.metrics import inc_validation_issues
from p6ebs.integration.models import (
    INTEGRATION_ENTITY_TYPES,
    EntityRecord,
    IntegrationType,
    SystemName,
    ValidationIssue,
    ValidationReport,
)

logger = logging.getLogger(__name__)

Check = Callable[[], Iterable[ValidationIssue]]

VALIDATION_ERROR = "VALIDATION_ERROR"

#: Hours above which a single timesheet row is flagged.
MAX_DAILY_HOURS = Decimal("24")

#: Number of issues listed by ``format_report``.
REPORT_ISSUE_LIMIT = 10

_BUDGET_FIELDS = ("planned_cost", "budget_amount", "budgeted_amount")
_COST_FIELDS = _BUDGET_FIELDS + (
    "actual_cost", "remaining_cost", "committed_amount",
)
_PROCUREMENT_FIELDS = ("committed_amount", "po_amount", "amount")


def _number(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


class ValidationGate:
    """Runs pre-flight checks and aggregates their issues.

    Attributes:
        _mapper: Source of id and name fields per entity type.
    """

    def __init__(self, mapper: Optional[EntityMapper] = None) -> None:
        self._mapper = mapper or EntityMapper()
        self._type_checks: Dict[str, Callable[..., List[ValidationIssue]]] = {
            IntegrationType.PROJECT_FINANCIALS.value: self._check_financials,
            IntegrationType.RESOURCE_MANAGEMENT.value: self._check_resources,
            IntegrationType.PROCUREMENT.value: self._check_procurement,
            IntegrationType.TIMESHEET.value: self._check_timesheet,
            IntegrationType.PROJECT_WBS.value: self._check_wbs,
            IntegrationType.EBS_TASKS_TO_P6.value: self._check_ebs_tasks,
        }
        logger.info(
            "ValidationGate initialized with %d integration types",
            len(self._type_checks),
        )

    # ------------------------------------------------------------------
    # Generic gate
    # ------------------------------------------------------------------

    def validate(
        self,
        checks: Iterable[Check],
        integration_type: str = "",
    ) -> List[ValidationIssue]:
        """Run every check and collect the issues they report."""
        issues: List[ValidationIssue] = []
        for check in checks:
            try:
                issues.extend(check())
            except Exception as exc:
                logger.error(
                    "Validation error for %s: %s",
                    integration_type or "integration", exc, exc_info=True,
                )
                issues.append(_error_issue(integration_type, exc))
        return issues

    @staticmethod
    def has_blocking_issues(issues: Iterable[ValidationIssue]) -> bool:
        return any(issue.blocking for issue in issues)

    def ensure_no_blocking(
        self,
        issues: Sequence[ValidationIssue],
        integration_type: str = "",
    ) -> None:
        """Raise if any issue blocks the sync.

        Raises:
            ValidationBlockingError: Carrying every issue, blocking or not,
                as dictionaries under ``context["issues"]``.
        """
        blocking = sum(1 for issue in issues if issue.blocking)
        if blocking:
            raise ValidationBlockingError(
                f"{blocking} blocking validation issue(s) for "
                f"{integration_type or 'integration'}",
                integration_type=integration_type or None,
                issues=[issue.model_dump() for issue in issues],
            )

    # ------------------------------------------------------------------
    # Built-in checks
    # ------------------------------------------------------------------

    def validate_integration(
        self,
        integration_type: str,
        p6_entities: Sequence[EntityRecord],
        ebs_entities: Sequence[EntityRecord],
        extra_checks: Optional[Iterable[Check]] = None,
    ) -> List[ValidationIssue]:
        """Run the built-in checks for a type, plus any extra checks.

        Args:
            integration_type: Integration type being validated.
            p6_entities: Entities fetched from P6.
            ebs_entities: Entities fetched from EBS.
            extra_checks: Additional caller-supplied checks.

        Returns:
            All issues found. An unknown type yields one blocking
            ``VALIDATION_ERROR``.
        """
        start = time.time()
        logger.info("Validating data for integration type: %s", integration_type)

        type_check = self._type_checks.get(integration_type)
        if type_check is None:
            issues = [_error_issue(
                integration_type,
                ValueError(f"Unknown integration type: {integration_type}"),
            )]
        else:
            checks: List[Check] = [
                lambda: type_check(integration_type, p6_entities, ebs_entities),
            ]
            checks.extend(extra_checks or ())
            issues = self.validate(checks, integration_type)

        blocking = sum(1 for issue in issues if issue.blocking)
        inc_validation_issues(blocking, len(issues) - blocking)
        elapsed_ms = (time.time() - start) * 1000
        if issues:
            logger.warning(
                "Validation issues found for %s: %d issues (%d blocking) "
                "in %.3fms",
                integration_type, len(issues), blocking, elapsed_ms,
            )
        else:
            logger.info(
                "Validation passed for %s in %.3fms",
                integration_type, elapsed_ms,
            )
        return issues

    def _check_financials(self, integration_type, p6_entities, ebs_entities):
        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        issues = self._missing_ids(entity_type, p6_entities, ebs_entities)
        for system, entities in ((SystemName.P6, p6_entities),
                                 (SystemName.EBS, ebs_entities)):
            for entity in entities:
                for field_name in _COST_FIELDS:
                    amount = _number(entity.get(field_name))
                    if field_name in _BUDGET_FIELDS and amount is not None and amount < 0:
                        issues.append(ValidationIssue(
                            entity_type=entity_type,
                            entity_id=entity.id or "",
                            issue_type="NEGATIVE_BUDGET",
                            description=(
                                f"{system.value} {field_name} is negative "
                                f"({amount})"
                            ),
                            blocking=True,
                        ))
                if entity.id and not any(
                    entity.get(name) is not None for name in _COST_FIELDS
                ):
                    issues.append(ValidationIssue(
                        entity_type=entity_type,
                        entity_id=entity.id,
                        issue_type="MISSING_FINANCIAL_DATA",
                        description=(
                            f"{system.value} project has no financial data"
                        ),
                    ))
        return issues

    def _check_resources(self, integration_type, p6_entities, ebs_entities):
        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        issues = self._missing_ids(entity_type, p6_entities, ebs_entities)
        mapping = self._mapper.get_mapping(entity_type)
        for system, entities in ((SystemName.P6, p6_entities),
                                 (SystemName.EBS, ebs_entities)):
            name_field = mapping.name_field(system)
            for entity in entities:
                name = entity.get(name_field) if name_field else entity.name
                if entity.id and not (name or entity.name):
                    issues.append(ValidationIssue(
                        entity_type=entity_type,
                        entity_id=entity.id,
                        issue_type="MISSING_NAME",
                        description=f"{system.value} resource has no name",
                    ))
        return issues

    def _check_procurement(self, integration_type, p6_entities, ebs_entities):
        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        issues = self._missing_ids(entity_type, p6_entities, ebs_entities)
        for entity in ebs_entities:
            for field_name in _PROCUREMENT_FIELDS:
                amount = _number(entity.get(field_name))
                if amount is not None and amount < 0:
                    issues.append(ValidationIssue(
                        entity_type=entity_type,
                        entity_id=entity.id or "",
                        issue_type="NEGATIVE_AMOUNT",
                        description=f"EBS {field_name} is negative ({amount})",
                        blocking=True,
                    ))
        return issues

    def _check_timesheet(self, integration_type, p6_entities, ebs_entities):
        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        issues = self._missing_ids(entity_type, p6_entities, ebs_entities)
        for system, entities in ((SystemName.P6, p6_entities),
                                 (SystemName.EBS, ebs_entities)):
            for entity in entities:
                hours = _number(entity.get("hours"))
                if hours is None:
                    continue
                if hours < 0:
                    issues.append(ValidationIssue(
                        entity_type=entity_type,
                        entity_id=entity.id or "",
                        issue_type="NEGATIVE_HOURS",
                        description=f"{system.value} row books {hours} hours",
                        blocking=True,
                    ))
                elif hours > MAX_DAILY_HOURS:
                    issues.append(ValidationIssue(
                        entity_type=entity_type,
                        entity_id=entity.id or "",
                        issue_type="EXCESSIVE_HOURS",
                        description=(
                            f"{system.value} row books {hours} hours "
                            f"(more than {MAX_DAILY_HOURS})"
                        ),
                    ))
        return issues

    def _check_wbs(self, integration_type, p6_entities, ebs_entities):
        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        issues = self._missing_ids(entity_type, p6_entities, ebs_entities)
        for system, entities in ((SystemName.P6, p6_entities),
                                 (SystemName.EBS, ebs_entities)):
            counts = Counter(e.id for e in entities if e.id)
            for entity_id, count in sorted(counts.items()):
                if count > 1:
                    issues.append(ValidationIssue(
                        entity_type=entity_type,
                        entity_id=entity_id,
                        issue_type="DUPLICATE_ID",
                        description=(
                            f"{system.value} WBS id appears {count} times"
                        ),
                        blocking=True,
                    ))
        return issues

    def _check_ebs_tasks(self, integration_type, p6_entities, ebs_entities):
        entity_type = INTEGRATION_ENTITY_TYPES[integration_type]
        issues = self._missing_ids(entity_type, [], ebs_entities)
        for entity in ebs_entities:
            if entity.id and entity.get("project_id") is None:
                issues.append(ValidationIssue(
                    entity_type=entity_type,
                    entity_id=entity.id,
                    issue_type="MISSING_PROJECT",
                    description="EBS task has no project_id",
                ))
        return issues

    @staticmethod
    def _missing_ids(
        entity_type: str,
        p6_entities: Sequence[EntityRecord],
        ebs_entities: Sequence[EntityRecord],
    ) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for system, entities in ((SystemName.P6, p6_entities),
                                 (SystemName.EBS, ebs_entities)):
            missing = sum(1 for entity in entities if not entity.id)
            if missing:
                issues.append(ValidationIssue(
                    entity_type=entity_type,
                    issue_type="MISSING_ID",
                    description=(
                        f"{missing} {system.value} {entity_type} records "
                        f"have no id"
                    ),
                    blocking=True,
                ))
        return issues

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def generate_report(issues: Iterable[ValidationIssue]) -> ValidationReport:
        """Aggregate issues into totals by severity and issue type."""
        collected = list(issues)
        blocking = sum(1 for issue in collected if issue.blocking)
        by_type = Counter(issue.issue_type for issue in collected)
        return ValidationReport(
            total_issues=len(collected),
            blocking_issues=blocking,
            warning_issues=len(collected) - blocking,
            issues_by_type=dict(sorted(by_type.items())),
            issues=collected,
        )

    @staticmethod
    def format_report(
        report: ValidationReport,
        limit: int = REPORT_ISSUE_LIMIT,
    ) -> str:
        """Render a report as plain text, listing the first ``limit`` issues."""
        lines = [
            "Validation Report",
            f"Generated: {report.generated_at.isoformat()}",
            f"Total issues: {report.total_issues}",
            f"Blocking issues: {report.blocking_issues}",
            f"Warnings: {report.warning_issues}",
        ]
        if report.issues_by_type:
            lines.append("")
            lines.append("Issues by type:")
            for issue_type, count in report.issues_by_type.items():
                lines.append(f"  {issue_type}: {count}")
        if report.issues:
            lines.append("")
            lines.append("Issues:")
            for issue in report.issues[:limit]:
                lines.append("  " + format_issue(issue))
            remaining = len(report.issues) - limit
            if remaining > 0:
                lines.append(f"  ... and {remaining} more")
        return "\n".join(lines)


def format_issue(issue: ValidationIssue) -> str:
    """``[BLOCKING] TYPE: description`` or ``[WARNING] TYPE: description``."""
    severity = "BLOCKING" if issue.blocking else "WARNING"
    return f"[{severity}] {issue.issue_type}: {issue.description}"


def _error_issue(integration_type: str, exc: BaseException) -> ValidationIssue:
    return ValidationIssue(
        entity_type=integration_type,
        issue_type=VALIDATION_ERROR,
        description=f"Error during validation: {exc}",
        blocking=True,
    )


__all__ = [
    "MAX_DAILY_HOURS",
    "VALIDATION_ERROR",
    "ValidationGate",
    "format_issue",
]
