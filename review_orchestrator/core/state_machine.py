"""Phase state machine driving a review-and-repair session.

INIT -> ANALYSIS -> [SNAPSHOT] -> FIX -> [SCORE <-> FIX] -> REGRESSION -> REPORT

- Worker instances of a phase are fanned out concurrently, bounded by a semaphore
- Each instance has its own timeout; a timed-out instance is dropped, siblings continue
- Each phase is retried with backoff when incomplete; exhaustion short-circuits to REPORT
- Only this coordinator mutates SessionState; workers receive copies
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Awaitable, Callable

from review_orchestrator.config.settings import ModeProfile, Settings, get_settings
from review_orchestrator.core.convergence import ConvergenceConfig, ScoringConvergenceController
from review_orchestrator.core.exceptions import EditConflictError, RollbackError, StorageUnavailableError
from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    ChangeOutcome,
    CheckName,
    ContractSnapshot,
    Finding,
    MergeStrategy,
    RegressionRecord,
    ReviewMode,
    ReviewPhase,
    ScoreSet,
    SessionState,
    SessionStatus,
    StackProfile,
    Verdict,
    WorkerTimeout,
)
from review_orchestrator.core.retry_utils import (
    PhaseExecutionError,
    PhaseIncompleteError,
    RetryableError,
    create_phase_retrying,
)
from review_orchestrator.core.session_record import SessionRecord, build_session_record
from review_orchestrator.core.session_store import FileSessionStore, SessionStore
from review_orchestrator.core.verification import (
    CheckResult,
    SubprocessVerificationRunner,
    VerificationRunner,
)
from review_orchestrator.human_loop.decision_gates import (
    PROCEED_WITH_WARNING,
    ROLLBACK_ALL,
    ROLLBACK_SPECIFIC,
    DecisionChannel,
    DecisionGates,
    build_regression_decision,
)
from review_orchestrator.project.contracts import (
    ContractChange,
    ContractSnapshotter,
    PythonContractSnapshotter,
)
from review_orchestrator.project.resolver import GlobTargetResolver, TargetResolver
from review_orchestrator.reviewing.conflict_resolution import ConflictResolver
from review_orchestrator.reviewing.edit_applier import FileEditor
from review_orchestrator.reviewing.ensemble_merge import EnsembleMerger, InstanceFindings
from review_orchestrator.reviewing.regression_classifier import RegressionClassifier
from review_orchestrator.reviewing.similarity import SimilarityFunction
from review_orchestrator.workers.base import AnalysisWorker

logger = logging.getLogger(__name__)

# Checks answered by the verification runner; behavior_diff comes from contract snapshots
COMMAND_CHECKS = (CheckName.TYPECHECK, CheckName.LINT, CheckName.TESTS)


# =========================================================================
# Completion signals
# =========================================================================


class PhaseCompletion:
    """Structural completion signal returned by a phase handler."""

    phase: ReviewPhase

    def missing(self) -> list[str]:
        raise NotImplementedError

    def is_complete(self) -> bool:
        return not self.missing()

    def require(self) -> None:
        """Raise PhaseIncompleteError if anything is missing."""
        missing = self.missing()
        if missing:
            raise PhaseIncompleteError(self.phase.value, missing)


@dataclass
class AnalysisCompletion(PhaseCompletion):
    """ANALYSIS is complete when every category has merged findings and a finished instance."""

    requested: list[Category]
    findings: dict[Category, list[Finding]]
    instance_counts: dict[Category, int]
    phase: ReviewPhase = ReviewPhase.ANALYSIS

    def missing(self) -> list[str]:
        missing = []
        for category in self.requested:
            if category not in self.findings:
                missing.append(f"{category.value} findings")
            elif self.instance_counts.get(category, 0) < 1:
                missing.append(f"{category.value} instances")
        return missing


@dataclass
class SnapshotCompletion(PhaseCompletion):
    """SNAPSHOT is complete once a baseline has been captured."""

    baseline: ContractSnapshot | None
    phase: ReviewPhase = ReviewPhase.SNAPSHOT

    def missing(self) -> list[str]:
        return [] if self.baseline is not None else ["baseline snapshot"]


@dataclass
class FixCompletion(PhaseCompletion):
    """FIX is complete when every finding behind a proposal has a recorded outcome."""

    proposed_finding_ids: set[str]
    resolved_finding_ids: set[str]
    phase: ReviewPhase = ReviewPhase.FIX

    def missing(self) -> list[str]:
        return [
            f"outcome for finding {fid}"
            for fid in sorted(self.proposed_finding_ids - self.resolved_finding_ids)
        ]


@dataclass
class ScoreCompletion(PhaseCompletion):
    """SCORE is complete when every category has an averaged score."""

    requested: list[Category]
    score_set: ScoreSet
    phase: ReviewPhase = ReviewPhase.SCORE

    def missing(self) -> list[str]:
        return [f"{c.value} score" for c in self.requested if c not in self.score_set.scores]


@dataclass
class RegressionCompletion(PhaseCompletion):
    """
    REGRESSION is complete when every requested command check reported a
    result and, if behavior_diff was requested, the contracts were compared.
    """

    requested: set[CheckName]
    results: dict[CheckName, CheckResult]
    contracts_diffed: bool = False
    phase: ReviewPhase = ReviewPhase.REGRESSION

    def missing(self) -> list[str]:
        missing = [
            f"{c.value} result"
            for c in COMMAND_CHECKS
            if c in self.requested and c not in self.results
        ]
        if CheckName.BEHAVIOR_DIFF in self.requested and not self.contracts_diffed:
            missing.append("behavior_diff contract comparison")
        return missing


# =========================================================================
# Outcome
# =========================================================================


@dataclass
class ReviewOutcome:
    """Result of one orchestrated run."""

    state: SessionState
    record: SessionRecord
    record_path: Path | None = None
    storage_error: str | None = None

    @property
    def status(self) -> SessionStatus:
        return self.record.status

    @property
    def succeeded(self) -> bool:
        """Whether the session completed (possibly with warnings)."""
        return self.status in (SessionStatus.COMPLETED, SessionStatus.COMPLETED_WITH_WARNINGS)

    @property
    def inline_report(self) -> str | None:
        """Full record as JSON when it could not be persisted."""
        if self.record_path is not None:
            return None
        return self.record.model_dump_json(indent=2)


@dataclass
class _UnitResult:
    category: Category
    instance_id: str
    value: Any = None
    ok: bool = False


# =========================================================================
# Orchestrator
# =========================================================================


class ReviewOrchestrator:
    """
    Coordinates one review session through the phase state machine.

    Collaborators (worker, resolver, verifier, store, snapshotter, decision
    channel, similarity) are injected; every one except the worker has a
    default implementation.
    """

    def __init__(
        self,
        project_path: Path,
        worker: AnalysisWorker,
        settings: Settings | None = None,
        *,
        resolver: TargetResolver | None = None,
        verifier: VerificationRunner | None = None,
        store: SessionStore | None = None,
        snapshotter: ContractSnapshotter | None = None,
        decision_channel: DecisionChannel | None = None,
        similarity: SimilarityFunction | None = None,
        dry_run: bool = False,
    ) -> None:
        self.project_path = project_path.resolve()
        self.settings = settings or get_settings()
        self.worker = worker
        self.dry_run = dry_run

        self.resolver = resolver or GlobTargetResolver(self.project_path)
        self.verifier = verifier or SubprocessVerificationRunner(
            self.settings.verification, working_dir=self.project_path
        )
        self.store = store or FileSessionStore(self.project_path, self.settings.state_dir)
        self.snapshotter = snapshotter or PythonContractSnapshotter()
        self.gates = DecisionGates(decision_channel)

        ensemble = self.settings.ensemble
        self.merger = EnsembleMerger(
            similarity=similarity,
            similarity_threshold=ensemble.similarity_threshold,
            line_tolerance=ensemble.line_tolerance,
            boost_table=tuple(ensemble.boost_table),
        )
        self.conflict_resolver = ConflictResolver(
            auto_apply=self.settings.confidence.auto_apply,
            apply_with_note=self.settings.confidence.apply_with_note,
        )
        self.convergence = ScoringConvergenceController(
            ConvergenceConfig(
                threshold=self.settings.scoring.threshold,
                cycle_cap=self.settings.scoring.cycle_cap,
            )
        )
        self.classifier = RegressionClassifier()

        # Per-run
        self.state: SessionState | None = None
        self.editor = FileEditor(self.project_path, dry_run=dry_run)
        self._profile: ModeProfile | None = None
        self._consensus_threshold = ensemble.consensus_threshold
        self._semaphore: asyncio.Semaphore | None = None
        self._post_fix_snapshot: ContractSnapshot | None = None

    async def run(
        self,
        target: str,
        mode: ReviewMode | str = ReviewMode.STANDARD,
        *,
        focus: list[Category] | None = None,
        sample_count: int | None = None,
        strategy: MergeStrategy | str | None = None,
        consensus_threshold: int | None = None,
    ) -> ReviewOutcome:
        """
        Run a full review session.

        Args:
            target: File, directory or glob pattern relative to the project.
            mode: quick, standard or thorough.
            focus: Categories to analyze (default: all).
            sample_count: Worker instances per category (default: mode profile).
            strategy: Ensemble merge strategy (default: settings).
            consensus_threshold: Minimum agreement for the consensus strategy.

        Returns:
            ReviewOutcome with the frozen state and its record.

        Raises:
            NoFilesMatchedError: If the target matches no files.
        """
        mode = ReviewMode(mode)
        self._profile = self.settings.get_profile(mode)
        categories = list(dict.fromkeys(focus)) if focus else list(Category)
        samples = sample_count or self._profile.sample_count
        if consensus_threshold is not None:
            self._consensus_threshold = consensus_threshold

        self.state = SessionState(
            target=target,
            project_path=str(self.project_path),
            mode=mode,
            phase_path=self._profile.phase_path(),
            categories=categories,
            sample_count=samples,
            strategy=MergeStrategy(strategy) if strategy else self.settings.ensemble.strategy,
        )
        self.editor = FileEditor(self.project_path, dry_run=self.dry_run)
        self._post_fix_snapshot = None
        max_concurrent = self.settings.resilience.max_concurrent_workers or samples * len(categories)
        self._semaphore = asyncio.Semaphore(max_concurrent)

        logger.info(
            "Starting session %s: target=%s mode=%s categories=%s samples=%d strategy=%s",
            self.state.id,
            target,
            mode.value,
            ",".join(c.value for c in categories),
            samples,
            self.state.strategy.value,
        )

        # Resolution errors abort before INIT completes
        await self._phase_init()
        self.state.transition_to(ReviewPhase.ANALYSIS)

        await self._run_pipeline()
        return await self._phase_report()

    async def _run_pipeline(self) -> None:
        """Execute phases until REPORT is reached."""
        assert self.state is not None
        handlers: dict[ReviewPhase, Callable[[], Awaitable[ReviewPhase]]] = {
            ReviewPhase.ANALYSIS: self._phase_analysis,
            ReviewPhase.SNAPSHOT: self._phase_snapshot,
            ReviewPhase.FIX: self._phase_fix,
            ReviewPhase.SCORE: self._phase_score,
            ReviewPhase.REGRESSION: self._phase_regression,
        }

        while self.state.phase != ReviewPhase.REPORT:
            phase = self.state.phase
            try:
                next_phase = await self._run_phase_with_retry(handlers[phase])
            except RetryableError as e:
                logger.error("Phase %s failed after retries: %s", phase.value, e, exc_info=True)
                self.state.add_error(f"{phase.value} phase failed after retries: {e}")
                self.state.status = SessionStatus.INCOMPLETE
                self.state.transition_to(ReviewPhase.REPORT)
                break
            self.state.transition_to(next_phase)

    async def _run_phase_with_retry(self, handler: Callable[[], Awaitable[ReviewPhase]]) -> ReviewPhase:
        resilience = self.settings.resilience
        next_phase = ReviewPhase.REPORT
        async for attempt in create_phase_retrying(
            max_retries=resilience.phase_retries,
            min_wait=resilience.retry_min_wait,
            max_wait=resilience.retry_max_wait,
        ):
            with attempt:
                next_phase = await handler()
        return next_phase

    # =========================================================================
    # Phases
    # =========================================================================

    async def _phase_init(self) -> None:
        """Resolve the target into files and a stack profile."""
        assert self.state is not None
        logger.info("=== INIT PHASE ===")
        files, stack_profile = self.resolver.resolve(self.state.target)
        self.state.files = files
        self.state.stack_profile = stack_profile

    async def _phase_analysis(self) -> ReviewPhase:
        """Fan out analysis workers, then merge per category."""
        assert self.state is not None
        state = self.state
        logger.info(
            "=== ANALYSIS PHASE (%d categories x %d instances) ===",
            len(state.categories),
            state.sample_count,
        )

        files = list(state.files)
        stack_profile = state.stack_profile.model_copy(deep=True) if state.stack_profile else StackProfile()
        mode = state.mode

        def analysis_call(category: Category) -> Awaitable[list[Finding]]:
            return self.worker.run_analysis_unit(category, list(files), stack_profile, mode)

        results = await self._fan_out(ReviewPhase.ANALYSIS, state.sample_count, analysis_call)

        merged: dict[Category, list[Finding]] = {}
        instance_counts: dict[Category, int] = {}
        for category in state.categories:
            instances = [
                InstanceFindings(
                    instance_id=r.instance_id,
                    findings=[
                        f if f.category == category else f.model_copy(update={"category": category})
                        for f in r.value
                    ],
                )
                for r in results
                if r.category == category and r.ok
            ]
            instance_counts[category] = len(instances)
            if not instances:
                continue
            merge = self.merger.merge(
                category,
                instances,
                strategy=state.strategy,
                consensus_threshold=self._consensus_threshold,
            )
            merged[category] = merge.findings
            logger.info("Merged %s", merge.summary())

        AnalysisCompletion(
            requested=list(state.categories),
            findings=merged,
            instance_counts=instance_counts,
        ).require()

        state.findings = [f for category in state.categories for f in merged[category]]
        state.instance_counts = instance_counts
        logger.info("Analysis complete: %d merged findings", len(state.findings))
        return state.next_phase()

    async def _phase_snapshot(self) -> ReviewPhase:
        """Capture the pre-fix contract baseline (thorough mode)."""
        assert self.state is not None
        logger.info("=== SNAPSHOT PHASE ===")

        try:
            stored = await self.store.load_baseline()
        except StorageUnavailableError as e:
            logger.warning("Stored baseline unavailable: %s", e)
            stored = None

        baseline = self.snapshotter.capture(self.state.files, self.project_path)
        baseline.session_id = self.state.id
        SnapshotCompletion(baseline=baseline).require()

        if stored is not None:
            drift = self.snapshotter.diff(stored, baseline)
            if drift:
                logger.info("%d contract changes since the stored baseline", len(drift))

        self.state.baseline = baseline
        return self.state.next_phase()

    async def _phase_fix(self) -> ReviewPhase:
        """Build proposals, resolve conflicts and apply edits sequentially."""
        assert self.state is not None
        state = self.state
        if state.cycle == 0:
            state.cycle = 1
        first_pass = not state.score_history
        findings = state.findings if first_pass else state.remaining_issues
        logger.info("=== FIX PHASE (cycle %d, %d findings) ===", state.cycle, len(findings))

        proposals = self.conflict_resolver.build_proposals(findings, digest_for=self.editor.original_digest)
        resolution = self.conflict_resolver.resolve(proposals, cycle=state.cycle)

        FixCompletion(
            proposed_finding_ids={fid for p in proposals for fid in p.source_finding_ids},
            resolved_finding_ids={
                fid for c in resolution.changes for fid in c.proposal.source_finding_ids
            },
        ).require()

        to_apply: list[AppliedChange] = []
        for change in resolution.changes:
            if change.is_applied:
                to_apply.append(change)
            else:
                state.record_change(change)

        option_proposals = [c.proposal for c in resolution.changes]
        for decision in resolution.pending_decisions:
            resolved = await self.gates.resolve(decision)
            state.pending_decisions.append(resolved)
            decided = self.conflict_resolver.resolve_decision(resolved, option_proposals, cycle=state.cycle)
            if decided is None:
                state.add_warning(f"Conflicting edits at {decision.context.get('file')}:"
                                  f"{decision.context.get('line_range')} left unapplied: {decision.title}")
            elif decided.is_applied:
                to_apply.append(decided)
            else:
                state.record_change(decided)

        # Bottom-up per file keeps earlier line numbers valid
        for change in sorted(to_apply, key=lambda c: (c.proposal.file, -c.proposal.line_range.start)):
            state.record_change(self._apply_change(change))

        applied = sum(1 for c in state.applied_changes if c.cycle == state.cycle and c.is_applied)
        logger.info("Fix cycle %d: %d changes applied", state.cycle, applied)
        if ReviewPhase.SCORE not in state.phase_path:
            state.remaining_issues = [f for f in findings if f.id not in state.applied_finding_ids]
        return state.next_phase()

    def _apply_change(self, change: AppliedChange) -> AppliedChange:
        try:
            self.editor.apply(change.proposal)
        except EditConflictError as e:
            logger.warning("Edit conflict for %s: %s", change.proposal.id, e)
            assert self.state is not None
            self.state.add_warning(f"Edit conflict at {change.proposal.file}:{change.proposal.line_range}: {e.reason}")
            return change.model_copy(
                update={"outcome": ChangeOutcome.SKIPPED, "note": f"Edit conflict: {e.reason}"}
            )
        except OSError as e:
            logger.error("Write failed for %s: %s", change.proposal.id, e)
            assert self.state is not None
            self.state.add_warning(f"Write failed at {change.proposal.file}:{change.proposal.line_range}: {e}")
            return change.model_copy(
                update={"outcome": ChangeOutcome.SKIPPED, "note": f"Write failed: {e}"}
            )
        if self.dry_run:
            note = f"{change.note}; dry run, not written" if change.note else "Dry run, not written"
            return change.model_copy(update={"note": note})
        return change

    async def _phase_score(self) -> ReviewPhase:
        """Score every category and decide the convergence verdict."""
        assert self.state is not None
        state = self.state
        logger.info("=== SCORE PHASE (cycle %d) ===", state.cycle)

        applied = [c for c in state.applied_changes if c.is_applied]

        def score_call(category: Category) -> Awaitable[float]:
            return self.worker.run_score_unit(
                category, [c for c in applied if c.proposal.category == category]
            )

        results = await self._fan_out(ReviewPhase.SCORE, state.sample_count, score_call)
        instance_scores: dict[Category, list[float]] = {}
        for r in results:
            if r.ok:
                instance_scores.setdefault(r.category, []).append(max(0.0, min(10.0, float(r.value))))

        score_set = self.convergence.average_scores(state.cycle, instance_scores)
        ScoreCompletion(requested=list(state.categories), score_set=score_set).require()

        state.record_scores(score_set)
        decision = self.convergence.evaluate(score_set, state.cycle)
        state.final_verdict = decision.verdict

        if decision.verdict == Verdict.PASS:
            state.remaining_issues = []
            return ReviewPhase.REGRESSION

        state.remaining_issues = self.convergence.remaining_issues(
            state.findings, decision.below_threshold, state.applied_finding_ids
        )
        if decision.verdict == Verdict.RETRY:
            state.cycle = decision.next_cycle
            return ReviewPhase.FIX

        state.add_warning(decision.warning or decision.reason)
        return ReviewPhase.REGRESSION

    async def _phase_regression(self) -> ReviewPhase:
        """Verify, classify and gate on error-severity regressions."""
        assert self.state is not None and self._profile is not None
        state = self.state
        logger.info("=== REGRESSION PHASE ===")

        touched = self.editor.touched_files
        checks = set(self._profile.checks) if touched else set()
        if not touched:
            logger.info("No files changed; skipping verification")
        if CheckName.BEHAVIOR_DIFF in checks and state.baseline is None:
            logger.warning("behavior_diff requested without a baseline snapshot; skipping it")
            checks.discard(CheckName.BEHAVIOR_DIFF)

        command_checks = {c for c in COMMAND_CHECKS if c in checks}
        results: dict[CheckName, CheckResult] = {}
        if command_checks:
            try:
                results = await self.verifier.run(command_checks)
            except OSError as e:
                raise PhaseExecutionError(f"Verification runner failed: {e}") from e

        contract_changes: list[ContractChange] = []
        contracts_diffed = False
        if CheckName.BEHAVIOR_DIFF in checks and state.baseline is not None:
            self._post_fix_snapshot = self.snapshotter.capture(state.files, self.project_path)
            contract_changes = self.snapshotter.diff(state.baseline, self._post_fix_snapshot)
            contracts_diffed = True

        RegressionCompletion(
            requested=checks,
            results=results,
            contracts_diffed=contracts_diffed,
        ).require()

        report = self.classifier.classify(results, contract_changes, touched)
        state.regressions = report.records
        state.safe_changes = report.safe_changes

        if report.warnings:
            state.add_warning(f"{len(report.warnings)} warning-severity regression(s) recorded")

        if report.has_errors:
            await self._regression_gate(report.errors, touched)

        return ReviewPhase.REPORT

    async def _regression_gate(self, errors: list[RegressionRecord], touched: list[str]) -> None:
        """Block on a decision; never silently roll back or hide errors."""
        assert self.state is not None
        state = self.state
        logger.warning("Regression gate: %d error-severity regression(s)", len(errors))

        decision = await self.gates.resolve(build_regression_decision(errors, touched))
        state.pending_decisions.append(decision)
        choice = decision.resolved_option or PROCEED_WITH_WARNING

        if choice == ROLLBACK_ALL:
            restored = self._rollback(None)
            state.rolled_back_files = restored
            state.safe_changes = []
            if state.status == SessionStatus.IN_PROGRESS:
                state.status = SessionStatus.ROLLED_BACK
            state.add_warning(f"Rolled back {len(restored)} file(s) after {len(errors)} regression error(s)")
        elif choice == ROLLBACK_SPECIFIC:
            restored = self._rollback(decision.resolution_files)
            state.rolled_back_files = restored
            state.safe_changes = [f for f in state.safe_changes if f not in restored]
            state.add_warning(
                f"Rolled back {', '.join(restored) or 'no files'}; "
                f"{len(errors)} regression error(s) recorded"
            )
        else:
            if decision.resolved_option is None:
                logger.warning("Regression gate unanswered; proceeding with warning")
            state.add_warning(f"Proceeding with {len(errors)} regression error(s)")

    def _rollback(self, files: list[str] | None) -> list[str]:
        """Restore files; a failed restore is recorded and leaves the session incomplete."""
        assert self.state is not None
        try:
            return self.editor.rollback(files)
        except RollbackError as e:
            for file, reason in sorted(e.failed.items()):
                self.state.add_error(f"Rollback of {file} failed: {reason}")
            self.state.status = SessionStatus.INCOMPLETE
            return e.restored

    async def _phase_report(self) -> ReviewOutcome:
        """Build, persist and freeze the session record."""
        assert self.state is not None
        state = self.state
        if state.phase != ReviewPhase.REPORT:
            state.transition_to(ReviewPhase.REPORT)
        logger.info("=== REPORT PHASE ===")

        if state.status == SessionStatus.IN_PROGRESS:
            state.status = SessionStatus.COMPLETED_WITH_WARNINGS if state.warnings else SessionStatus.COMPLETED
        state.completed_at = datetime.now(UTC)

        record = build_session_record(state)
        record_path: Path | None = None
        storage_error: str | None = None
        try:
            record_path = await self.store.save(record)
            new_baseline = self._post_fix_snapshot or state.baseline
            # Incomplete and rolled-back runs keep the previous baseline
            finished = state.status in (SessionStatus.COMPLETED, SessionStatus.COMPLETED_WITH_WARNINGS)
            if new_baseline is not None and not self.dry_run and finished:
                await self.store.save_baseline(new_baseline)
        except StorageUnavailableError as e:
            storage_error = str(e)
            logger.warning("Session store unavailable (%s); reporting session %s inline", e, state.id)

        state.freeze()
        logger.info("Session %s finished: %s", state.id, state.status.value)
        return ReviewOutcome(
            state=state,
            record=record,
            record_path=record_path,
            storage_error=storage_error,
        )

    # =========================================================================
    # Concurrent fan-out
    # =========================================================================

    async def _fan_out(
        self,
        phase: ReviewPhase,
        sample_count: int,
        call: Callable[[Category], Awaitable[Any]],
    ) -> list[_UnitResult]:
        """
        Run `sample_count` instances per category concurrently.

        Each instance has an individual timeout so a single hanging worker
        cannot block the phase. Failed and timed-out instances are dropped.
        """
        assert self.state is not None and self._semaphore is not None
        timeout = self.settings.resilience.worker_timeout
        semaphore = self._semaphore

        units = [
            _UnitResult(category=category, instance_id=f"{category.value}-{index + 1}")
            for category in self.state.categories
            for index in range(sample_count)
        ]

        async def invoke_with_timeout(unit: _UnitResult) -> _UnitResult:
            async with semaphore:
                try:
                    unit.value = await asyncio.wait_for(call(unit.category), timeout=timeout)
                    unit.ok = True
                except asyncio.TimeoutError:
                    logger.warning(
                        "Worker %s timed out after %.1fs (per-instance limit)",
                        unit.instance_id,
                        timeout,
                    )
            return unit

        results = await asyncio.gather(
            *(invoke_with_timeout(unit) for unit in units),
            return_exceptions=True,
        )

        # Fold in results on the coordinator only
        completed: list[_UnitResult] = []
        for unit, result in zip(units, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                logger.warning(
                    "Worker %s raised during %s: %s",
                    unit.instance_id,
                    phase.value,
                    result,
                    exc_info=result,
                )
                self.state.add_warning(f"Worker {unit.instance_id} failed in {phase.value}: {result}")
                continue
            if not result.ok:
                self.state.worker_timeouts.append(
                    WorkerTimeout(
                        phase=phase,
                        category=unit.category,
                        instance_id=unit.instance_id,
                        timeout_seconds=timeout,
                    )
                )
                self.state.add_warning(
                    f"Worker {unit.instance_id} timed out in {phase.value} after {timeout:g}s"
                )
                continue
            completed.append(result)

        logger.info(
            "%s fan-out complete: %d/%d instances finished",
            phase.value,
            len(completed),
            len(units),
        )
        return completed
