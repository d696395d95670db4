"""Review phase definitions and session state models."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, UTC
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from review_orchestrator.core.exceptions import (
    InvalidPhaseTransitionError,
    SessionFrozenError,
)


class ReviewPhase(str, Enum):
    """Phases of the review pipeline."""

    INIT = "init"
    ANALYSIS = "analysis"
    SNAPSHOT = "snapshot"  # Thorough mode only
    FIX = "fix"
    SCORE = "score"  # Skipped in quick mode
    REGRESSION = "regression"
    REPORT = "report"


class ReviewMode(str, Enum):
    """Depth of a review run."""

    QUICK = "quick"
    STANDARD = "standard"
    THOROUGH = "thorough"


class Category(str, Enum):
    """Closed set of analysis dimensions."""

    SIMPLIFY = "simplify"  # Complexity reduction
    DEDUPE = "dedupe"  # Duplication
    DECOMPOSE = "decompose"  # Decomposition
    CLARITY = "clarity"  # Naming / clarity
    CONSISTENCY = "consistency"  # Cross-file consistency


class MergeStrategy(str, Enum):
    """Which merged ensemble groups survive."""

    UNION = "union"  # Keep every group (recall)
    CONSENSUS = "consensus"  # Keep groups with enough agreement (precision)
    WEIGHTED = "weighted"  # Keep every group, ordered for prioritization


class ChangeOutcome(str, Enum):
    """Outcome of a change proposal."""

    APPLIED = "applied"
    APPLIED_WITH_NOTE = "applied_with_note"
    SKIPPED = "skipped"


class Verdict(str, Enum):
    """Verdict of one scoring cycle."""

    PASS = "pass"
    RETRY = "retry"
    PASS_FORCED = "pass_forced"  # Cycle cap reached below threshold


class CheckName(str, Enum):
    """Verification checks run after fixes."""

    TYPECHECK = "typecheck"
    LINT = "lint"
    TESTS = "tests"
    BEHAVIOR_DIFF = "behavior_diff"


class CheckStatus(str, Enum):
    """Status of a single verification check."""

    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


class RegressionKind(str, Enum):
    """Kind of regression observed after fixes."""

    TYPE_ERROR = "type_error"
    TEST_FAILURE = "test_failure"
    LINT_ERROR = "lint_error"
    BEHAVIOR_CHANGE = "behavior_change"


class RegressionSeverity(str, Enum):
    """Regression severity; errors gate the pipeline."""

    ERROR = "error"
    WARNING = "warning"


class SessionStatus(str, Enum):
    """Overall status of a review session."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    INCOMPLETE = "incomplete"
    ROLLED_BACK = "rolled_back"


class DecisionKind(str, Enum):
    """Why the engine is waiting on an external decision."""

    TIE_VOTE = "tie_vote"
    REGRESSION_GATE = "regression_gate"


def normalize_text(text: str) -> str:
    """Normalize free text for exact comparison."""
    text = text.lower()
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"^(critical|high|medium|low|bug|issue|error):\s*", "", text)
    return text.strip()


def fingerprint(*parts: Any) -> str:
    """Stable short id derived from content."""
    digest = hashlib.sha1("\x1f".join(str(p) for p in parts).encode("utf-8"))
    return digest.hexdigest()[:12]


def new_session_id() -> str:
    """Timestamp-derived session id, sortable by creation time."""
    return f"{datetime.now(UTC).strftime('%Y%m%d-%H%M%S')}-{uuid4().hex[:6]}"


class LineRange(BaseModel):
    """Inclusive 1-based line range."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1)
    end: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> LineRange:
        if self.end < self.start:
            raise ValueError(f"line range end {self.end} before start {self.start}")
        return self

    def overlaps(self, other: LineRange, tolerance: int = 0) -> bool:
        """Whether the ranges overlap, allowing a gap of up to `tolerance` lines."""
        return self.start <= other.end + tolerance and other.start <= self.end + tolerance

    def union(self, other: LineRange) -> LineRange:
        """Smallest range covering both."""
        return LineRange(start=min(self.start, other.start), end=max(self.end, other.end))

    def __str__(self) -> str:
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"


class StackProfile(BaseModel):
    """Opaque description of the target's stack, produced by the resolver."""

    languages: list[str] = Field(default_factory=list)
    frameworks: list[str] = Field(default_factory=list)
    markers: dict[str, str] = Field(default_factory=dict)


class Finding(BaseModel):
    """A single issue reported by one worker instance (or merged from several)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4())[:8])
    category: Category
    file: str
    line_range: LineRange
    issue_summary: str
    proposed_fix: str = ""
    confidence: float = Field(ge=1.0, le=10.0)
    agreement_count: int = Field(default=1, ge=1)
    instance_ids: tuple[str, ...] = ()

    @property
    def location(self) -> str:
        """Location in `file:lines` form."""
        return f"{self.file}:{self.line_range}"

    @property
    def exact_key(self) -> tuple[str, int, int, str]:
        """Identity used for exact duplicate detection."""
        return (
            self.file,
            self.line_range.start,
            self.line_range.end,
            normalize_text(self.issue_summary),
        )


class ChangeProposal(BaseModel):
    """An edit derived from one or more findings targeting the same location."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: Category
    file: str
    line_range: LineRange
    edit_payload: str
    source_finding_ids: tuple[str, ...]
    confidence: float
    content_digest: str | None = None  # Digest of target lines when proposed

    @property
    def normalized_payload(self) -> str:
        """Payload with whitespace collapsed, for compatibility checks."""
        return re.sub(r"\s+", " ", self.edit_payload).strip()


class VotingRecord(BaseModel):
    """How a conflicting cluster of proposals was resolved."""

    model_config = ConfigDict(frozen=True)

    cluster_id: str
    votes: dict[Category, str]  # category -> proposal id it supports
    support: dict[str, int]  # proposal id -> supporting categories
    rule: str  # majority | plurality | priority_table | decision | split
    conflict_type: str | None = None
    winner_id: str | None = None


class AppliedChange(BaseModel):
    """Append-only record of what happened to a proposal."""

    model_config = ConfigDict(frozen=True)

    proposal: ChangeProposal
    outcome: ChangeOutcome
    note: str = ""
    voting_record: VotingRecord | None = None
    cycle: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_applied(self) -> bool:
        """Whether the edit landed on disk."""
        return self.outcome in (ChangeOutcome.APPLIED, ChangeOutcome.APPLIED_WITH_NOTE)


class ScoreSet(BaseModel):
    """Per-category scores collected in one scoring cycle."""

    model_config = ConfigDict(frozen=True)

    cycle: int
    scores: dict[Category, float]
    instances: dict[Category, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def min_score(self) -> float:
        """Lowest category score (0 when empty)."""
        return min(self.scores.values()) if self.scores else 0.0

    def below(self, threshold: float) -> list[Category]:
        """Categories scoring under the threshold, in enum order."""
        return [c for c in Category if c in self.scores and self.scores[c] < threshold]


class RegressionRecord(BaseModel):
    """A classified regression."""

    model_config = ConfigDict(frozen=True)

    kind: RegressionKind
    file: str
    message: str
    severity: RegressionSeverity
    source: str = ""  # check name or contract change type


class DecisionOption(BaseModel):
    """An option offered at a decision point."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    description: str = ""
    proposal_id: str | None = None
    is_default: bool = False


class PendingDecision(BaseModel):
    """A suspension point awaiting an external decision."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4())[:8])
    kind: DecisionKind
    title: str
    description: str
    options: list[DecisionOption] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    resolved_option: str | None = None
    resolution_files: list[str] = Field(default_factory=list)
    resolved_by: str | None = None  # channel or policy that answered

    @property
    def default_option(self) -> DecisionOption | None:
        """Option marked as default, if any."""
        for option in self.options:
            if option.is_default:
                return option
        return None

    @property
    def is_resolved(self) -> bool:
        """Whether an option was chosen."""
        return self.resolved_option is not None


class ParameterContract(BaseModel):
    """A parameter of a public callable."""

    name: str
    kind: str = "positional"  # positional | keyword_only | var_positional | var_keyword
    has_default: bool = False
    default: str | None = None


class SymbolContract(BaseModel):
    """Public contract of one exported symbol."""

    name: str
    kind: str  # function | class | method
    parameters: list[ParameterContract] = Field(default_factory=list)
    raises: list[str] = Field(default_factory=list)
    fields: dict[str, bool] = Field(default_factory=dict)  # field name -> required


class ContractSnapshot(BaseModel):
    """Baseline facts about the public surface of the target files."""

    captured_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    session_id: str | None = None
    symbols: dict[str, dict[str, SymbolContract]] = Field(default_factory=dict)


class WorkerTimeout(BaseModel):
    """A worker instance dropped for exceeding its wait bound."""

    phase: ReviewPhase
    category: Category
    instance_id: str
    timeout_seconds: float


class PhaseTransition(BaseModel):
    """One entry of the phase history."""

    from_phase: ReviewPhase
    to_phase: ReviewPhase
    at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def build_phase_path(*, snapshot: bool, score: bool) -> list[ReviewPhase]:
    """Forward path through the pipeline with the optional phases switched on or off."""
    path = [ReviewPhase.INIT, ReviewPhase.ANALYSIS]
    if snapshot:
        path.append(ReviewPhase.SNAPSHOT)
    path.append(ReviewPhase.FIX)
    if score:
        path.append(ReviewPhase.SCORE)
    path.extend([ReviewPhase.REGRESSION, ReviewPhase.REPORT])
    return path


def default_phase_path(mode: ReviewMode) -> list[ReviewPhase]:
    """Forward path for a mode's built-in profile."""
    return build_phase_path(snapshot=mode == ReviewMode.THOROUGH, score=mode != ReviewMode.QUICK)


class ReadOnlyList(list):
    """List that rejects in-place mutation; copies are plain lists."""

    def _read_only(self, *args: Any, **kwargs: Any) -> Any:
        raise SessionFrozenError("Session is frozen; its collections are read-only")

    append = extend = insert = remove = pop = clear = sort = reverse = _read_only
    __setitem__ = __delitem__ = __iadd__ = __imul__ = _read_only

    def __reduce_ex__(self, protocol: Any) -> Any:
        return (list, (list(self),))


class ReadOnlyDict(dict):
    """Dict that rejects in-place mutation; copies are plain dicts."""

    def _read_only(self, *args: Any, **kwargs: Any) -> Any:
        raise SessionFrozenError("Session is frozen; its collections are read-only")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only

    def __reduce_ex__(self, protocol: Any) -> Any:
        return (dict, (dict(self),))


class SessionState(BaseModel):
    """Complete state of one review run.

    Owned by the state machine for the lifetime of a run and frozen once
    REPORT completes.
    """

    # Identity
    id: str = Field(default_factory=new_session_id)

    # Request
    target: str
    project_path: str
    mode: ReviewMode = ReviewMode.STANDARD
    categories: list[Category] = Field(default_factory=lambda: list(Category))
    sample_count: int = 1
    strategy: MergeStrategy = MergeStrategy.UNION

    # Phase tracking
    phase: ReviewPhase = ReviewPhase.INIT
    phase_path: list[ReviewPhase] = Field(default_factory=list)
    phase_history: list[PhaseTransition] = Field(default_factory=list)
    cycle: int = 0
    status: SessionStatus = SessionStatus.IN_PROGRESS

    # Target
    files: list[str] = Field(default_factory=list)
    stack_profile: StackProfile | None = None

    # Analysis
    findings: list[Finding] = Field(default_factory=list)
    instance_counts: dict[Category, int] = Field(default_factory=dict)
    worker_timeouts: list[WorkerTimeout] = Field(default_factory=list)

    # Snapshot
    baseline: ContractSnapshot | None = None

    # Fix / score
    applied_changes: list[AppliedChange] = Field(default_factory=list)
    remaining_issues: list[Finding] = Field(default_factory=list)
    score_history: list[ScoreSet] = Field(default_factory=list)
    final_verdict: Verdict | None = None

    # Regression
    regressions: list[RegressionRecord] = Field(default_factory=list)
    safe_changes: list[str] = Field(default_factory=list)
    rolled_back_files: list[str] = Field(default_factory=list)

    # Decisions
    pending_decisions: list[PendingDecision] = Field(default_factory=list)

    # Timestamps
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    # Error tracking
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    _frozen: bool = PrivateAttr(default=False)

    @model_validator(mode="after")
    def _fill_phase_path(self) -> SessionState:
        if not self.phase_path:
            self.phase_path = default_phase_path(self.mode)
        return self

    def __setattr__(self, name: str, value: Any) -> None:
        private = getattr(self, "__pydantic_private__", None) or {}
        if private.get("_frozen") and name != "_frozen":
            raise SessionFrozenError(f"Session {self.id} is frozen; cannot set {name}")
        super().__setattr__(name, value)

    @property
    def is_frozen(self) -> bool:
        """Whether REPORT has completed."""
        return self._frozen

    def freeze(self) -> None:
        """Make the session read-only, including its list and dict fields."""
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, list) and not isinstance(value, ReadOnlyList):
                setattr(self, name, ReadOnlyList(value))
            elif isinstance(value, dict) and not isinstance(value, ReadOnlyDict):
                setattr(self, name, ReadOnlyDict(value))
        self._frozen = True

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise SessionFrozenError(f"Session {self.id} is frozen")

    def can_transition_to(self, phase: ReviewPhase) -> bool:
        """Check a transition against the mode path and the FIX <-> SCORE loop."""
        if self.phase == ReviewPhase.REPORT:
            return False
        if phase == ReviewPhase.REPORT:
            return True
        if self.phase == ReviewPhase.SCORE and phase == ReviewPhase.FIX:
            return True
        if self.phase not in self.phase_path or phase not in self.phase_path:
            return False
        return self.phase_path.index(phase) == self.phase_path.index(self.phase) + 1

    def transition_to(self, phase: ReviewPhase) -> None:
        """Transition to a new phase, recording history."""
        self._ensure_mutable()
        if not self.can_transition_to(phase):
            raise InvalidPhaseTransitionError(self.phase, phase, self.id)
        self.phase_history.append(PhaseTransition(from_phase=self.phase, to_phase=phase))
        self.phase = phase
        self.updated_at = datetime.now(UTC)

    def next_phase(self) -> ReviewPhase:
        """Next phase on the forward path."""
        index = self.phase_path.index(self.phase)
        return self.phase_path[min(index + 1, len(self.phase_path) - 1)]

    def add_error(self, error: str) -> None:
        """Record an error."""
        self._ensure_mutable()
        self.errors.append(f"[{datetime.now(UTC).isoformat()}] {error}")
        self.updated_at = datetime.now(UTC)

    def add_warning(self, warning: str) -> None:
        """Record a warning surfaced in the report."""
        self._ensure_mutable()
        self.warnings.append(warning)
        self.updated_at = datetime.now(UTC)

    def record_change(self, change: AppliedChange) -> None:
        """Append to the applied-change log."""
        self._ensure_mutable()
        self.applied_changes.append(change)
        self.updated_at = datetime.now(UTC)

    def record_scores(self, score_set: ScoreSet) -> None:
        """Append a scoring cycle."""
        self._ensure_mutable()
        self.score_history.append(score_set)
        self.updated_at = datetime.now(UTC)

    @property
    def latest_scores(self) -> ScoreSet | None:
        """Most recent score set."""
        return self.score_history[-1] if self.score_history else None

    @property
    def touched_files(self) -> list[str]:
        """Files with at least one applied edit, in first-touch order."""
        return list(dict.fromkeys(c.proposal.file for c in self.applied_changes if c.is_applied))

    @property
    def applied_finding_ids(self) -> set[str]:
        """Finding ids whose proposals landed."""
        ids: set[str] = set()
        for change in self.applied_changes:
            if change.is_applied:
                ids.update(change.proposal.source_finding_ids)
        return ids

    @property
    def has_error_regressions(self) -> bool:
        """Whether any regression record is an error."""
        return any(r.severity == RegressionSeverity.ERROR for r in self.regressions)

    def to_checkpoint_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return self.model_dump(mode="json")

    @classmethod
    def from_checkpoint_dict(cls, data: dict[str, Any]) -> SessionState:
        """Restore from a persisted dictionary."""
        return cls.model_validate(data)
