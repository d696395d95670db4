"""Core orchestration module."""

from review_orchestrator.core.exceptions import (
    EditConflictError,
    InvalidPhaseTransitionError,
    NoFilesMatchedError,
    ReviewOrchestratorError,
    RollbackError,
    SessionFrozenError,
    SessionNotFoundError,
    StorageUnavailableError,
    WorkerProtocolError,
)
from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    ChangeOutcome,
    ChangeProposal,
    Finding,
    LineRange,
    MergeStrategy,
    RegressionRecord,
    ReviewMode,
    ReviewPhase,
    ScoreSet,
    SessionState,
    SessionStatus,
    Verdict,
)

__all__ = [
    # Errors
    "EditConflictError",
    "InvalidPhaseTransitionError",
    "NoFilesMatchedError",
    "ReviewOrchestratorError",
    "RollbackError",
    "SessionFrozenError",
    "SessionNotFoundError",
    "StorageUnavailableError",
    "WorkerProtocolError",
    # Models
    "AppliedChange",
    "Category",
    "ChangeOutcome",
    "ChangeProposal",
    "Finding",
    "LineRange",
    "MergeStrategy",
    "RegressionRecord",
    "ReviewMode",
    "ReviewPhase",
    "ScoreSet",
    "SessionState",
    "SessionStatus",
    "Verdict",
]
