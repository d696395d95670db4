"""Tenacity-based retry utilities for phase execution.

A phase is retried when it fails or emits a structurally incomplete
completion signal. Waits use exponential backoff with jitter.
"""

from __future__ import annotations

import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from review_orchestrator.core.exceptions import ReviewOrchestratorError

logger = logging.getLogger(__name__)


class RetryableError(ReviewOrchestratorError):
    """Exception that should trigger phase retry logic."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class PhaseIncompleteError(RetryableError):
    """A phase produced a completion signal missing required parts."""

    def __init__(self, phase: str, missing: list[str]) -> None:
        super().__init__(f"Phase {phase} incomplete: missing {', '.join(missing)}")
        self.phase = phase
        self.missing = missing


class PhaseExecutionError(RetryableError):
    """A phase handler failed with an unexpected error."""


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging."""
    logger.warning(
        "Retry attempt %d after %.2fs (exception: %s)",
        retry_state.attempt_number + 1,
        retry_state.seconds_since_start or 0.0,
        retry_state.outcome.exception() if retry_state.outcome else "unknown",
    )


def create_phase_retrying(
    max_retries: int = 2,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_exceptions: tuple[type[Exception], ...] = (RetryableError,),
) -> AsyncRetrying:
    """
    Create an async retry controller for one phase.

    Args:
        max_retries: Retries after the first attempt (total attempts = retries + 1).
        min_wait: Backoff multiplier in seconds (0 disables waiting).
        max_wait: Maximum wait time cap in seconds.
        retry_exceptions: Exception types that trigger a retry.

    Returns:
        A tenacity AsyncRetrying that reraises the last error once exhausted.

    Example:
        async for attempt in create_phase_retrying(max_retries=2):
            with attempt:
                await run_phase()
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_random_exponential(multiplier=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=log_retry_attempt,
        reraise=True,
    )
