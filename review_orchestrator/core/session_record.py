"""Immutable session records, listing summaries and session comparison."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    ChangeOutcome,
    Finding,
    MergeStrategy,
    PendingDecision,
    PhaseTransition,
    RegressionRecord,
    RegressionSeverity,
    ReviewMode,
    ScoreSet,
    SessionState,
    SessionStatus,
    StackProfile,
    Verdict,
    WorkerTimeout,
)


class SessionSummary(BaseModel):
    """One-line listing form of a persisted session."""

    model_config = ConfigDict(frozen=True)

    id: str
    target: str
    project_path: str
    mode: ReviewMode
    status: SessionStatus
    final_verdict: Verdict | None = None
    created_at: datetime
    cycles: int = 0
    finding_count: int = 0
    applied_count: int = 0
    regression_count: int = 0
    min_score: float | None = None

    def format_row(self) -> str:
        score = f"{self.min_score:.1f}" if self.min_score is not None else "-"
        return (
            f"{self.id:<24} {self.mode.value:<9} {self.status.value:<24} "
            f"findings={self.finding_count:<4} applied={self.applied_count:<4} "
            f"regressions={self.regression_count:<3} min_score={score:<5} {self.target}"
        )


class SessionRecord(BaseModel):
    """Frozen audit record of one review run."""

    model_config = ConfigDict(frozen=True)

    id: str
    target: str
    project_path: str
    mode: ReviewMode
    categories: tuple[Category, ...]
    sample_count: int
    strategy: MergeStrategy
    status: SessionStatus
    final_verdict: Verdict | None = None
    cycles: int = 0

    files: tuple[str, ...] = ()
    stack_profile: StackProfile | None = None
    findings: tuple[Finding, ...] = ()
    instance_counts: dict[Category, int] = {}
    worker_timeouts: tuple[WorkerTimeout, ...] = ()
    applied_changes: tuple[AppliedChange, ...] = ()
    remaining_issues: tuple[Finding, ...] = ()
    score_history: tuple[ScoreSet, ...] = ()
    regressions: tuple[RegressionRecord, ...] = ()
    safe_changes: tuple[str, ...] = ()
    rolled_back_files: tuple[str, ...] = ()
    pending_decisions: tuple[PendingDecision, ...] = ()
    phase_history: tuple[PhaseTransition, ...] = ()
    baseline_captured: bool = False

    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    created_at: datetime
    completed_at: datetime | None = None

    @property
    def final_scores(self) -> dict[Category, float]:
        """Scores of the last cycle, empty when SCORE never ran."""
        return dict(self.score_history[-1].scores) if self.score_history else {}

    def count_outcome(self, outcome: ChangeOutcome) -> int:
        return sum(1 for c in self.applied_changes if c.outcome == outcome)

    @property
    def applied_count(self) -> int:
        """Changes that landed on disk."""
        return sum(1 for c in self.applied_changes if c.is_applied)

    @property
    def error_regression_count(self) -> int:
        return sum(1 for r in self.regressions if r.severity == RegressionSeverity.ERROR)

    def summary(self) -> str:
        """Human-readable multi-line report."""
        lines = [
            f"Session {self.id} [{self.mode.value}] {self.target}",
            f"  Status:      {self.status.value}"
            + (f" (verdict: {self.final_verdict.value})" if self.final_verdict else ""),
            f"  Files:       {len(self.files)}",
            f"  Findings:    {len(self.findings)}"
            + (f" ({len(self.worker_timeouts)} worker timeouts)" if self.worker_timeouts else ""),
            f"  Changes:     {self.count_outcome(ChangeOutcome.APPLIED)} applied, "
            f"{self.count_outcome(ChangeOutcome.APPLIED_WITH_NOTE)} applied with note, "
            f"{self.count_outcome(ChangeOutcome.SKIPPED)} skipped",
        ]
        if self.score_history:
            scores = ", ".join(f"{c.value}={s:.1f}" for c, s in self.final_scores.items())
            lines.append(f"  Scores:      {scores} after {self.cycles} cycle(s)")
        lines.append(
            f"  Regressions: {self.error_regression_count} errors, "
            f"{len(self.regressions) - self.error_regression_count} warnings"
        )
        if self.safe_changes:
            lines.append(f"  Safe files:  {', '.join(self.safe_changes)}")
        if self.rolled_back_files:
            lines.append(f"  Rolled back: {', '.join(self.rolled_back_files)}")
        unresolved = [d for d in self.pending_decisions if not d.is_resolved]
        if unresolved:
            lines.append(f"  Pending decisions: {len(unresolved)}")
            lines.extend(f"    - {d.title}" for d in unresolved)
        for warning in self.warnings:
            lines.append(f"  WARNING: {warning}")
        for error in self.errors:
            lines.append(f"  ERROR: {error}")
        return "\n".join(lines)

    def to_summary_row(self) -> SessionSummary:
        """Listing form of this record."""
        final = self.final_scores
        return SessionSummary(
            id=self.id,
            target=self.target,
            project_path=self.project_path,
            mode=self.mode,
            status=self.status,
            final_verdict=self.final_verdict,
            created_at=self.created_at,
            cycles=self.cycles,
            finding_count=len(self.findings),
            applied_count=self.applied_count,
            regression_count=len(self.regressions),
            min_score=min(final.values()) if final else None,
        )


def build_session_record(state: SessionState) -> SessionRecord:
    """Build the immutable record of a session from a deep copy of its state."""
    state = state.model_copy(deep=True)
    return SessionRecord(
        id=state.id,
        target=state.target,
        project_path=state.project_path,
        mode=state.mode,
        categories=tuple(state.categories),
        sample_count=state.sample_count,
        strategy=state.strategy,
        status=state.status,
        final_verdict=state.final_verdict,
        cycles=state.cycle,
        files=tuple(state.files),
        stack_profile=state.stack_profile,
        findings=tuple(state.findings),
        instance_counts=dict(state.instance_counts),
        worker_timeouts=tuple(state.worker_timeouts),
        applied_changes=tuple(state.applied_changes),
        remaining_issues=tuple(state.remaining_issues),
        score_history=tuple(state.score_history),
        regressions=tuple(state.regressions),
        safe_changes=tuple(state.safe_changes),
        rolled_back_files=tuple(state.rolled_back_files),
        pending_decisions=tuple(state.pending_decisions),
        phase_history=tuple(state.phase_history),
        baseline_captured=state.baseline is not None,
        warnings=tuple(state.warnings),
        errors=tuple(state.errors),
        created_at=state.created_at,
        completed_at=state.completed_at,
    )


@dataclass
class SessionComparison:
    """Deltas between two sessions (b minus a)."""

    session_a: str
    session_b: str
    score_deltas: dict[Category, float | None] = field(default_factory=dict)
    finding_delta: int = 0
    applied_delta: int = 0
    regression_delta: int = 0
    error_regression_delta: int = 0
    cycle_delta: int = 0
    status_a: SessionStatus | None = None
    status_b: SessionStatus | None = None

    def format(self) -> str:
        lines = [
            f"Comparing {self.session_a} -> {self.session_b}",
            f"  Status:      {self.status_a.value if self.status_a else '-'} -> "
            f"{self.status_b.value if self.status_b else '-'}",
            f"  Findings:    {self.finding_delta:+d}",
            f"  Applied:     {self.applied_delta:+d}",
            f"  Regressions: {self.regression_delta:+d} ({self.error_regression_delta:+d} errors)",
            f"  Cycles:      {self.cycle_delta:+d}",
        ]
        if self.score_deltas:
            lines.append("  Final score deltas:")
            for category, delta in self.score_deltas.items():
                lines.append(f"    {category.value:<12} {f'{delta:+.2f}' if delta is not None else 'n/a'}")
        return "\n".join(lines)


def compare_sessions(a: SessionRecord, b: SessionRecord) -> SessionComparison:
    """Compare two records; score deltas are None when either side lacks the category."""
    scores_a, scores_b = a.final_scores, b.final_scores
    deltas: dict[Category, float | None] = {}
    for category in Category:
        if category not in scores_a and category not in scores_b:
            continue
        if category in scores_a and category in scores_b:
            deltas[category] = round(scores_b[category] - scores_a[category], 4)
        else:
            deltas[category] = None

    return SessionComparison(
        session_a=a.id,
        session_b=b.id,
        score_deltas=deltas,
        finding_delta=len(b.findings) - len(a.findings),
        applied_delta=b.applied_count - a.applied_count,
        regression_delta=len(b.regressions) - len(a.regressions),
        error_regression_delta=b.error_regression_count - a.error_regression_count,
        cycle_delta=b.cycles - a.cycles,
        status_a=a.status,
        status_b=b.status,
    )
