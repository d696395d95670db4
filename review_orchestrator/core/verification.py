"""Verification runner for post-fix checks (typecheck, lint, tests)."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from review_orchestrator.config.settings import VerificationSettings
from review_orchestrator.core.models import CheckName, CheckStatus

logger = logging.getLogger(__name__)


class CheckDetail(BaseModel):
    """One diagnostic reported by a check."""

    file: str = ""
    line: int | None = None
    message: str


class CheckResult(BaseModel):
    """Result of a single verification check."""

    name: CheckName
    status: CheckStatus
    details: list[CheckDetail] = Field(default_factory=list)
    message: str = ""
    duration_seconds: float = 0.0
    exit_code: int | None = None

    @property
    def failed(self) -> bool:
        """Whether the check failed."""
        return self.status == CheckStatus.FAIL


class VerificationRunner(Protocol):
    """Runs verification checks and reports pass/fail/skipped per check."""

    async def run(self, checks: set[CheckName]) -> dict[CheckName, CheckResult]:
        ...


# file:line: message  (mypy, ruff, flake8, pyright in text mode)
DIAGNOSTIC_PATTERN = re.compile(r"^(?P<file>[^\s:][^:]*\.\w+):(?P<line>\d+)(?::\d+)?:\s*(?P<message>.+)$")
# FAILED tests/test_x.py::test_name - AssertionError
PYTEST_FAILURE_PATTERN = re.compile(r"^FAILED (?P<file>[^:\s]+)::(?P<test>\S+)(?: - (?P<message>.*))?$")


def parse_diagnostics(output: str) -> list[CheckDetail]:
    """Extract file-attributed diagnostics from linter/type-checker output."""
    details = []
    for raw_line in output.splitlines():
        match = DIAGNOSTIC_PATTERN.match(raw_line.strip())
        if match:
            details.append(
                CheckDetail(
                    file=match.group("file"),
                    line=int(match.group("line")),
                    message=match.group("message").strip(),
                )
            )
    return details


def parse_pytest_failures(output: str) -> list[CheckDetail]:
    """Extract failing tests from pytest short summary output."""
    details = []
    for raw_line in output.splitlines():
        match = PYTEST_FAILURE_PATTERN.match(raw_line.strip())
        if match:
            message = match.group("message") or "failed"
            details.append(
                CheckDetail(
                    file=match.group("file"),
                    message=f"{match.group('test')}: {message}",
                )
            )
    return details


class SubprocessVerificationRunner:
    """
    Runs verification commands as subprocesses in the project directory.

    Checks:
    1. typecheck - type checker (mypy by default)
    2. lint - linter (ruff by default)
    3. tests - test runner (pytest by default)

    behavior_diff is not a command; it is covered by contract snapshots and
    reported here as skipped. A missing tool is reported as skipped too.
    """

    def __init__(
        self,
        config: VerificationSettings | None = None,
        working_dir: Path | str | None = None,
    ) -> None:
        self.config = config or VerificationSettings()
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()

    async def run(self, checks: set[CheckName]) -> dict[CheckName, CheckResult]:
        """
        Run the requested checks sequentially.

        Args:
            checks: Checks to run.

        Returns:
            Result per requested check.
        """
        results: dict[CheckName, CheckResult] = {}
        for check in CheckName:
            if check not in checks:
                continue
            if check == CheckName.BEHAVIOR_DIFF:
                results[check] = CheckResult(
                    name=check,
                    status=CheckStatus.SKIPPED,
                    message="Covered by contract snapshot comparison",
                )
                continue
            logger.info("Running verification check: %s", check.value)
            results[check] = await self._run_check(check)

        logger.info(
            "Verification completed",
            extra={
                "checks": {name.value: result.status.value for name, result in results.items()},
            },
        )
        return results

    def _command_for(self, check: CheckName) -> tuple[list[str], float]:
        if check == CheckName.TYPECHECK:
            return self.config.typecheck_command, self.config.typecheck_timeout
        if check == CheckName.LINT:
            return self.config.lint_command, self.config.lint_timeout
        return self.config.tests_command, self.config.tests_timeout

    async def _run_check(self, check: CheckName) -> CheckResult:
        """Run one check command."""
        command, timeout = self._command_for(check)
        if not command:
            return CheckResult(name=check, status=CheckStatus.SKIPPED, message="No command configured")

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_dir,
            )
        except FileNotFoundError:
            # Tool not installed
            return CheckResult(
                name=check,
                status=CheckStatus.SKIPPED,
                message=f"Tool not found: {command[0]}",
                exit_code=-1,
            )
        except OSError as e:
            return CheckResult(
                name=check,
                status=CheckStatus.FAIL,
                message=f"Error running {' '.join(command)}: {e}",
                exit_code=-1,
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return CheckResult(
                name=check,
                status=CheckStatus.FAIL,
                message=f"{check.value} timed out after {timeout}s",
                duration_seconds=time.monotonic() - start,
                exit_code=-1,
            )

        duration = time.monotonic() - start
        output = stdout.decode("utf-8", errors="replace") + "\n" + stderr.decode("utf-8", errors="replace")
        passed = process.returncode == 0

        if check == CheckName.TESTS:
            # pytest exit code 5: no tests collected
            if process.returncode == 5:
                return CheckResult(
                    name=check,
                    status=CheckStatus.SKIPPED,
                    message="No tests collected",
                    duration_seconds=duration,
                    exit_code=process.returncode,
                )
            details = [] if passed else parse_pytest_failures(output)
        else:
            details = [] if passed else parse_diagnostics(output)

        return CheckResult(
            name=check,
            status=CheckStatus.PASS if passed else CheckStatus.FAIL,
            details=details,
            message=f"{' '.join(command)} {'passed' if passed else 'failed'}",
            duration_seconds=duration,
            exit_code=process.returncode,
        )
