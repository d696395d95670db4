"""Bounded FIX <-> SCORE convergence loop control."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from review_orchestrator.core.models import Category, Finding, ScoreSet, Verdict

logger = logging.getLogger(__name__)


@dataclass
class ConvergenceConfig:
    """Configuration for the scoring convergence loop."""

    threshold: float = 9.0
    cycle_cap: int = 5


@dataclass
class ConvergenceDecision:
    """Verdict for one scoring cycle."""

    verdict: Verdict
    reason: str
    cycle: int
    next_cycle: int
    min_score: float
    below_threshold: list[Category] = field(default_factory=list)
    warning: str | None = None

    @property
    def should_continue(self) -> bool:
        """Whether FIX should run again."""
        return self.verdict == Verdict.RETRY


class ScoringConvergenceController:
    """
    Decides pass / retry / pass_forced from a cycle's scores.

    Exit conditions:
    1. Every category at or above the threshold: pass
    2. Below threshold with cycles left: retry with cycle + 1
    3. Below threshold on the cap cycle: pass_forced plus a warning

    Retry is never returned on or beyond the cap cycle, so the loop runs at
    most `cycle_cap` times.
    """

    def __init__(self, config: ConvergenceConfig | None = None) -> None:
        self.config = config or ConvergenceConfig()

    def average_scores(self, cycle: int, instance_scores: dict[Category, list[float]]) -> ScoreSet:
        """
        Average per-instance scores into one ScoreSet.

        Categories without any completed instance are left out.
        """
        scores: dict[Category, float] = {}
        instances: dict[Category, int] = {}
        for category in Category:
            values = instance_scores.get(category) or []
            if not values:
                continue
            scores[category] = round(sum(values) / len(values), 4)
            instances[category] = len(values)
        return ScoreSet(cycle=cycle, scores=scores, instances=instances)

    def evaluate(self, score_set: ScoreSet, cycle: int) -> ConvergenceDecision:
        """
        Decide the verdict for a cycle.

        Args:
            score_set: Averaged scores of the cycle.
            cycle: Current cycle (1-based).

        Returns:
            ConvergenceDecision with the verdict and the categories still below threshold.
        """
        threshold = self.config.threshold
        below = score_set.below(threshold)
        min_score = score_set.min_score

        if score_set.scores and not below:
            logger.info("CONVERGED: cycle %d, min score %.2f >= %.2f", cycle, min_score, threshold)
            return ConvergenceDecision(
                verdict=Verdict.PASS,
                reason=f"All categories at or above {threshold}",
                cycle=cycle,
                next_cycle=cycle,
                min_score=min_score,
            )

        if cycle < self.config.cycle_cap:
            logger.info(
                "RETRY: cycle %d, %d categories below %.2f (%s)",
                cycle,
                len(below),
                threshold,
                ", ".join(c.value for c in below) or "no scores",
            )
            return ConvergenceDecision(
                verdict=Verdict.RETRY,
                reason=f"Min score {min_score:.2f} below {threshold}",
                cycle=cycle,
                next_cycle=cycle + 1,
                min_score=min_score,
                below_threshold=below,
            )

        warning = (
            f"Cycle cap ({self.config.cycle_cap}) reached with min score "
            f"{min_score:.2f} below threshold {threshold}"
        )
        logger.warning("PASS_FORCED: %s", warning)
        return ConvergenceDecision(
            verdict=Verdict.PASS_FORCED,
            reason=warning,
            cycle=cycle,
            next_cycle=cycle,
            min_score=min_score,
            below_threshold=below,
            warning=warning,
        )

    @staticmethod
    def remaining_issues(
        findings: list[Finding],
        below_threshold: list[Category],
        applied_finding_ids: set[str],
    ) -> list[Finding]:
        """Findings of below-threshold categories whose edits have not landed."""
        categories = set(below_threshold)
        return [
            f for f in findings if f.category in categories and f.id not in applied_finding_ids
        ]
