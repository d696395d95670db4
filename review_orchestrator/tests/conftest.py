"""Test fixtures for Review Orchestrator."""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from review_orchestrator.config.settings import ResilienceSettings, ScoringSettings, Settings
from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    CheckName,
    CheckStatus,
    DecisionKind,
    Finding,
    LineRange,
    PendingDecision,
    ReviewMode,
    StackProfile,
)
from review_orchestrator.core.verification import CheckResult
from review_orchestrator.human_loop.decision_gates import DecisionResponse

APP_SOURCE = """\
def compute(a, b):
    if a:
        if b:
            return 1
    return 0


def helper(x, y=2):
    return x + y
"""


def make_finding(
    category: Category = Category.SIMPLIFY,
    file: str = "src/app.py",
    start: int = 2,
    end: int | None = None,
    summary: str = "Nested conditionals can be flattened",
    fix: str = "",
    confidence: float = 9.5,
    finding_id: str | None = None,
) -> Finding:
    """Build a finding with sensible defaults."""
    kwargs = {}
    if finding_id is not None:
        kwargs["id"] = finding_id
    return Finding(
        category=category,
        file=file,
        line_range=LineRange(start=start, end=end or start),
        issue_summary=summary,
        proposed_fix=fix,
        confidence=confidence,
        **kwargs,
    )


class FakeWorker:
    """
    Scripted worker.

    `findings` maps a category to the list each analysis call returns.
    `scores` maps a category to successive score values; the last repeats.
    `delay_for` and `fail_for` receive (category, per-category call index).
    """

    def __init__(
        self,
        findings: dict[Category, list[Finding]] | None = None,
        scores: dict[Category, list[float]] | None = None,
        delay_for: Callable[[Category, int], float] | None = None,
        fail_for: Callable[[Category, int], bool] | None = None,
    ) -> None:
        self.findings = findings or {}
        self.scores = scores or {}
        self.delay_for = delay_for
        self.fail_for = fail_for
        self.analysis_calls: dict[Category, int] = {}
        self.score_calls: dict[Category, int] = {}
        self.scored_changes: dict[Category, list[AppliedChange]] = {}

    async def run_analysis_unit(
        self,
        category: Category,
        files: list[str],
        stack_profile: StackProfile,
        mode: ReviewMode,
    ) -> list[Finding]:
        index = self.analysis_calls.get(category, 0)
        self.analysis_calls[category] = index + 1
        if self.delay_for is not None:
            delay = self.delay_for(category, index)
            if delay:
                await asyncio.sleep(delay)
        if self.fail_for is not None and self.fail_for(category, index):
            raise RuntimeError(f"scripted failure for {category.value} call {index}")
        return list(self.findings.get(category, []))

    async def run_score_unit(self, category: Category, applied_changes: list[AppliedChange]) -> float:
        index = self.score_calls.get(category, 0)
        self.score_calls[category] = index + 1
        self.scored_changes[category] = list(applied_changes)
        values = self.scores.get(category) or [10.0]
        return values[min(index, len(values) - 1)]


class FakeVerificationRunner:
    """
    Returns scripted results; unscripted checks pass.

    Like a real runner it only answers typecheck, lint and tests; a
    requested behavior_diff gets no result.
    """

    COMMANDS = (CheckName.TYPECHECK, CheckName.LINT, CheckName.TESTS)

    def __init__(self, results: dict[CheckName, CheckResult] | None = None) -> None:
        self.results = results or {}
        self.calls: list[set[CheckName]] = []

    async def run(self, checks: set[CheckName]) -> dict[CheckName, CheckResult]:
        self.calls.append(set(checks))
        return {
            check: self.results.get(check, CheckResult(name=check, status=CheckStatus.PASS))
            for check in checks
            if check in self.COMMANDS
        }


class RecordingDecisionChannel:
    """Answers decisions from a per-kind handler and records what it saw."""

    def __init__(
        self,
        handlers: dict[DecisionKind, Callable[[PendingDecision], DecisionResponse]] | None = None,
    ) -> None:
        self.handlers = handlers or {}
        self.decisions: list[PendingDecision] = []

    async def decide(self, decision: PendingDecision) -> DecisionResponse:
        self.decisions.append(decision)
        handler = self.handlers.get(decision.kind)
        if handler is None:
            return DecisionResponse(selected_option=None, reason="unanswered")
        return handler(decision)


@pytest.fixture
def temp_project_dir() -> Generator[Path, None, None]:
    """Create a temporary project directory."""
    temp_dir = tempfile.mkdtemp(prefix="review_orchestrator_test_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def sample_project(temp_project_dir: Path) -> Path:
    """A small Python project with one source file."""
    (temp_project_dir / "pyproject.toml").write_text('[project]\nname = "sample"\n')
    src = temp_project_dir / "src"
    src.mkdir()
    (src / "app.py").write_text(APP_SOURCE)
    return temp_project_dir


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with no retry waits and a short worker timeout."""
    return Settings(
        resilience=ResilienceSettings(
            phase_retries=2,
            retry_min_wait=0,
            retry_max_wait=0,
            worker_timeout=0.5,
        ),
        scoring=ScoringSettings(threshold=9.0, cycle_cap=5),
    )
