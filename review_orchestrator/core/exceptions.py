"""Exception hierarchy for the review orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from review_orchestrator.core.models import ReviewPhase


class ReviewOrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class NoFilesMatchedError(ReviewOrchestratorError):
    """Target pattern resolved to an empty file set. Fatal."""

    def __init__(self, pattern: str) -> None:
        super().__init__(f"No files matched target pattern: {pattern!r}")
        self.pattern = pattern


class InvalidPhaseTransitionError(ReviewOrchestratorError):
    """Raised when a phase transition would leave the mode path.

    Attributes:
        current: The phase the session is in.
        target: The attempted target phase.
        session_id: The session that failed to transition.
    """

    def __init__(
        self,
        current: ReviewPhase,
        target: ReviewPhase,
        session_id: str | None = None,
    ) -> None:
        self.current = current
        self.target = target
        self.session_id = session_id
        msg = f"Invalid phase transition from {current.value} to {target.value}"
        if session_id:
            msg += f" for session {session_id}"
        super().__init__(msg)


class SessionFrozenError(ReviewOrchestratorError):
    """Raised when a frozen (reported) session is mutated."""


class EditConflictError(ReviewOrchestratorError):
    """File content changed between proposal and application."""

    def __init__(self, file: str, reason: str) -> None:
        super().__init__(f"Edit conflict in {file}: {reason}")
        self.file = file
        self.reason = reason


class StorageUnavailableError(ReviewOrchestratorError):
    """Session store cannot be read or written."""


class SessionNotFoundError(StorageUnavailableError):
    """Requested session id does not exist in the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class WorkerProtocolError(ReviewOrchestratorError):
    """Worker returned output that does not match the finding/score contract."""


class RollbackError(ReviewOrchestratorError):
    """One or more files could not be restored to their original content.

    Attributes:
        restored: Files that were restored before or after the failures.
        failed: File -> OS error message for each file left as edited.
    """

    def __init__(self, restored: list[str], failed: dict[str, str]) -> None:
        super().__init__(f"Rollback failed for {', '.join(sorted(failed))}")
        self.restored = restored
        self.failed = failed
