"""Table-driven classification of post-fix verification into regressions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from review_orchestrator.core.models import (
    CheckName,
    RegressionKind,
    RegressionRecord,
    RegressionSeverity,
)
from review_orchestrator.core.verification import CheckResult
from review_orchestrator.project.contracts import ContractChange, ContractChangeType

logger = logging.getLogger(__name__)


# Failing check -> (kind, severity); passing or skipped checks produce nothing
CHECK_SEVERITY: dict[CheckName, tuple[RegressionKind, RegressionSeverity]] = {
    CheckName.TYPECHECK: (RegressionKind.TYPE_ERROR, RegressionSeverity.ERROR),
    CheckName.TESTS: (RegressionKind.TEST_FAILURE, RegressionSeverity.ERROR),
    CheckName.LINT: (RegressionKind.LINT_ERROR, RegressionSeverity.WARNING),
    CheckName.BEHAVIOR_DIFF: (RegressionKind.BEHAVIOR_CHANGE, RegressionSeverity.ERROR),
}

# Removed or narrowed contracts are errors; widened or altered ones are warnings
CONTRACT_SEVERITY: dict[ContractChangeType, RegressionSeverity] = {
    ContractChangeType.SYMBOL_REMOVED: RegressionSeverity.ERROR,
    ContractChangeType.SIGNATURE_NARROWED: RegressionSeverity.ERROR,
    ContractChangeType.REQUIRED_FIELD_REMOVED: RegressionSeverity.ERROR,
    ContractChangeType.REQUIRED_FIELD_ADDED: RegressionSeverity.ERROR,
    ContractChangeType.DEFAULT_CHANGED: RegressionSeverity.WARNING,
    ContractChangeType.ERROR_TYPE_CHANGED: RegressionSeverity.WARNING,
    ContractChangeType.OPTIONAL_FIELD_ADDED: RegressionSeverity.WARNING,
    ContractChangeType.OPTIONAL_PARAMETER_ADDED: RegressionSeverity.WARNING,
}


@dataclass
class RegressionReport:
    """Classified regressions plus the files they leave untouched."""

    records: list[RegressionRecord] = field(default_factory=list)
    safe_changes: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[RegressionRecord]:
        return [r for r in self.records if r.severity == RegressionSeverity.ERROR]

    @property
    def warnings(self) -> list[RegressionRecord]:
        return [r for r in self.records if r.severity == RegressionSeverity.WARNING]

    @property
    def has_errors(self) -> bool:
        """Whether the regression gate must block."""
        return bool(self.errors)

    @property
    def affected_files(self) -> list[str]:
        """Files with at least one attributed record."""
        return sorted({r.file for r in self.records if r.file})

    def summary(self) -> str:
        """One-line summary for logs and reports."""
        return (
            f"{len(self.errors)} errors, {len(self.warnings)} warnings, "
            f"{len(self.safe_changes)} safe files"
        )


class RegressionClassifier:
    """
    Maps verification results and contract changes to regression records.

    Severities come from lookup tables, never from the raw failure output.
    A failing check whose output names no file yields one unattributed
    record (file ""), which marks no touched file as safe.
    """

    def __init__(
        self,
        check_table: dict[CheckName, tuple[RegressionKind, RegressionSeverity]] | None = None,
        contract_table: dict[ContractChangeType, RegressionSeverity] | None = None,
    ) -> None:
        self.check_table = CHECK_SEVERITY if check_table is None else check_table
        self.contract_table = CONTRACT_SEVERITY if contract_table is None else contract_table

    def classify(
        self,
        results: dict[CheckName, CheckResult],
        contract_changes: list[ContractChange] | None = None,
        touched_files: list[str] | None = None,
    ) -> RegressionReport:
        """
        Classify verification output.

        Args:
            results: Verification results per check.
            contract_changes: Contract diffs against the baseline (thorough mode).
            touched_files: Files with applied edits.

        Returns:
            RegressionReport with records and safe changes.
        """
        report = RegressionReport()

        for check in CheckName:
            result = results.get(check)
            if result is None or not result.failed:
                continue
            report.records.extend(self._records_for_check(check, result))

        for change in contract_changes or []:
            report.records.append(
                RegressionRecord(
                    kind=RegressionKind.BEHAVIOR_CHANGE,
                    file=change.file,
                    message=change.message,
                    severity=self.contract_table.get(change.change_type, RegressionSeverity.ERROR),
                    source=change.change_type.value,
                )
            )

        report.safe_changes = self._safe_changes(report.records, touched_files or [])

        if report.records:
            logger.warning("Regression classification: %s", report.summary())
        else:
            logger.info("Regression classification: no regressions")
        return report

    def _records_for_check(self, check: CheckName, result: CheckResult) -> list[RegressionRecord]:
        kind, severity = self.check_table[check]
        if not result.details:
            return [
                RegressionRecord(
                    kind=kind,
                    file="",
                    message=result.message or f"{check.value} failed",
                    severity=severity,
                    source=check.value,
                )
            ]
        return [
            RegressionRecord(
                kind=kind,
                file=detail.file,
                message=f"{detail.file}:{detail.line}: {detail.message}" if detail.line else detail.message,
                severity=severity,
                source=check.value,
            )
            for detail in result.details
        ]

    @staticmethod
    def _safe_changes(records: list[RegressionRecord], touched_files: list[str]) -> list[str]:
        if any(not r.file for r in records):
            return []
        flagged = {_normalize_path(r.file) for r in records}
        return [f for f in touched_files if _normalize_path(f) not in flagged]


def _normalize_path(path: str) -> str:
    return path.replace("\\", "/").removeprefix("./")
