"""Decision points: tie votes and regression gates resolved through a channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Callable, Protocol

from review_orchestrator.core.models import (
    DecisionKind,
    DecisionOption,
    PendingDecision,
    RegressionRecord,
)

logger = logging.getLogger(__name__)

PROCEED_WITH_WARNING = "proceed_with_warning"
ROLLBACK_ALL = "rollback_all"
ROLLBACK_SPECIFIC = "rollback_specific"


@dataclass
class DecisionResponse:
    """Answer to a pending decision."""

    selected_option: str | None
    files: list[str] = field(default_factory=list)  # For rollback_specific
    reason: str = ""
    responded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    was_timeout: bool = False


class DecisionChannel(Protocol):
    """Anything that can answer a PendingDecision."""

    async def decide(self, decision: PendingDecision) -> DecisionResponse:
        ...


def build_regression_decision(
    errors: list[RegressionRecord],
    touched_files: list[str],
) -> PendingDecision:
    """Build the blocking decision raised when regressions include errors."""
    affected = sorted({r.file for r in errors if r.file})
    lines = [f"- [{r.kind.value}] {r.file or '<unattributed>'}: {r.message}" for r in errors[:10]]
    if len(errors) > 10:
        lines.append(f"- ... and {len(errors) - 10} more")

    return PendingDecision(
        kind=DecisionKind.REGRESSION_GATE,
        title="Regressions detected after fixes",
        description=f"{len(errors)} error-severity regression(s):\n" + "\n".join(lines),
        options=[
            DecisionOption(
                key=PROCEED_WITH_WARNING,
                label="Proceed with warning",
                description="Keep all changes and record the regressions in the report",
                is_default=True,
            ),
            DecisionOption(
                key=ROLLBACK_ALL,
                label="Rollback all",
                description="Restore every touched file to its original content",
            ),
            DecisionOption(
                key=ROLLBACK_SPECIFIC,
                label="Rollback specific files",
                description="Restore only the chosen files",
            ),
        ],
        context={
            "error_count": len(errors),
            "affected_files": affected,
            "touched_files": list(touched_files),
        },
    )


class DefaultDecisionPolicy:
    """
    Non-interactive policy.

    Regression gates are answered with their default (proceed with warning);
    the policy never rolls back and never hides an error. Tie votes are left
    unanswered so they stay pending in the report for a human to settle.
    """

    async def decide(self, decision: PendingDecision) -> DecisionResponse:
        if decision.kind == DecisionKind.TIE_VOTE:
            return DecisionResponse(selected_option=None, reason="Default policy: left for external decision")
        default = decision.default_option
        return DecisionResponse(
            selected_option=default.key if default else None,
            reason="Default policy",
        )


class CallbackDecisionChannel:
    """Answers decisions with a synchronous callback (automation, tests)."""

    def __init__(self, handler: Callable[[PendingDecision], DecisionResponse]) -> None:
        self._handler = handler

    async def decide(self, decision: PendingDecision) -> DecisionResponse:
        return self._handler(decision)


class ConsoleDecisionChannel:
    """Prompts on the console; falls back to the default option on timeout."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        input_func: Callable[[str], str] = input,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._input = input_func

    async def decide(self, decision: PendingDecision) -> DecisionResponse:
        self._print_decision_ui(decision)
        try:
            if self.timeout_seconds:
                return await asyncio.wait_for(self._read_decision(decision), timeout=self.timeout_seconds)
            return await self._read_decision(decision)
        except asyncio.TimeoutError:
            default = decision.default_option
            return DecisionResponse(
                selected_option=default.key if default else None,
                reason="Timeout waiting for decision",
                was_timeout=True,
            )

    async def _prompt(self, text: str) -> str:
        loop = asyncio.get_running_loop()
        # Run blocking input in thread pool
        return (await loop.run_in_executor(None, self._input, text)).strip()

    async def _read_decision(self, decision: PendingDecision) -> DecisionResponse:
        choice = (await self._prompt("\nEnter your choice: ")).lower()

        selected: DecisionOption | None = None
        for index, option in enumerate(decision.options, 1):
            if choice in (str(index), option.key.lower(), option.label.lower()):
                selected = option
                break
        if selected is None:
            selected = decision.default_option

        if selected is None:
            return DecisionResponse(selected_option=None, reason="No matching option")

        files: list[str] = []
        if selected.key == ROLLBACK_SPECIFIC:
            raw = await self._prompt("Files to roll back (comma-separated): ")
            files = [f.strip() for f in raw.split(",") if f.strip()]

        return DecisionResponse(selected_option=selected.key, files=files, reason="Console")

    def _print_decision_ui(self, decision: PendingDecision) -> None:
        """Print decision UI to console."""
        print()
        print("+" + "=" * 61 + "+")
        print(f"|  [{decision.kind.value.upper()}] {decision.title[:44]:<44} |")
        print("+" + "=" * 61 + "+")
        print()

        for line in decision.description.split("\n"):
            print(f"  {line}")
        print()

        if decision.options:
            print("  Options:")
            for i, opt in enumerate(decision.options, 1):
                default = " (Default)" if opt.is_default else ""
                print(f"    [{i}] {opt.label}{default}")
                if opt.description:
                    print(f"        {opt.description}")
            print()

        print("+" + "-" * 61 + "+")


class DecisionGates:
    """
    Routes pending decisions to a channel and records the answers.

    Answers naming an unknown option fall back to the decision's default.
    """

    def __init__(self, channel: DecisionChannel | None = None) -> None:
        self.channel: DecisionChannel = channel or DefaultDecisionPolicy()

    async def resolve(self, decision: PendingDecision) -> PendingDecision:
        """
        Ask the channel and return the decision with its resolution filled in.

        Args:
            decision: The pending decision.

        Returns:
            A copy of the decision with resolved_option, resolution_files and
            resolved_by set.
        """
        response = await self.channel.decide(decision)

        valid_keys = {option.key for option in decision.options}
        selected = response.selected_option
        if selected is not None and selected not in valid_keys:
            logger.warning(
                "Decision %s answered with unknown option %r; using default",
                decision.id,
                selected,
            )
            default = decision.default_option
            selected = default.key if default else None

        resolved = decision.model_copy(
            update={
                "resolved_option": selected,
                "resolution_files": list(response.files) if selected == ROLLBACK_SPECIFIC else [],
                "resolved_by": (response.reason or type(self.channel).__name__) if selected else None,
            }
        )
        logger.info(
            "Decision %s (%s): %s",
            decision.id,
            decision.kind.value,
            selected or "unanswered",
        )
        return resolved
