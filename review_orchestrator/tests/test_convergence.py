"""Tests for the scoring convergence controller."""

import pytest

from review_orchestrator.core.convergence import (
    ConvergenceConfig,
    ScoringConvergenceController,
)
from review_orchestrator.core.models import Category, ScoreSet, Verdict
from review_orchestrator.tests.conftest import make_finding


def _controller(threshold: float = 9.0, cycle_cap: int = 5) -> ScoringConvergenceController:
    return ScoringConvergenceController(ConvergenceConfig(threshold=threshold, cycle_cap=cycle_cap))


class TestScoringConvergenceController:
    """Tests for ScoringConvergenceController."""

    def test_retry_scenario(self):
        """Below-threshold category triggers a retry limited to its findings."""
        controller = _controller(threshold=9.0, cycle_cap=5)
        score_set = ScoreSet(cycle=1, scores={Category.SIMPLIFY: 9.5, Category.DEDUPE: 8.0})

        decision = controller.evaluate(score_set, cycle=1)

        assert decision.verdict == Verdict.RETRY
        assert decision.should_continue is True
        assert decision.next_cycle == 2
        assert decision.below_threshold == [Category.DEDUPE]

        findings = [
            make_finding(Category.SIMPLIFY, finding_id="s1"),
            make_finding(Category.DEDUPE, start=8, finding_id="d1"),
            make_finding(Category.DEDUPE, start=9, finding_id="d2"),
        ]
        remaining = controller.remaining_issues(findings, decision.below_threshold, applied_finding_ids={"d2"})
        assert [f.id for f in remaining] == ["d1"]

    @pytest.mark.parametrize("cycle", [1, 3, 5, 9])
    def test_pass_regardless_of_cycle(self, cycle):
        controller = _controller(threshold=9.0, cycle_cap=5)
        score_set = ScoreSet(cycle=cycle, scores={c: 9.0 for c in Category})

        decision = controller.evaluate(score_set, cycle=cycle)

        assert decision.verdict == Verdict.PASS
        assert decision.below_threshold == []
        assert decision.warning is None

    def test_cap_forces_pass_with_warning(self):
        controller = _controller(threshold=9.0, cycle_cap=3)
        decision = controller.evaluate(ScoreSet(cycle=3, scores={Category.CLARITY: 7.5}), cycle=3)

        assert decision.verdict == Verdict.PASS_FORCED
        assert decision.should_continue is False
        assert "Cycle cap (3)" in decision.warning

    @pytest.mark.parametrize("cap", [1, 2, 5])
    @pytest.mark.parametrize("threshold", [0.5, 9.0, 10.0])
    def test_loop_terminates_within_cap(self, cap, threshold):
        """Driving the loop with never-improving scores stops by the cap cycle."""
        controller = ScoringConvergenceController(ConvergenceConfig(threshold=threshold, cycle_cap=cap))
        cycle = 1
        cycles_run = 0
        while True:
            cycles_run += 1
            decision = controller.evaluate(ScoreSet(cycle=cycle, scores={Category.SIMPLIFY: 0.0}), cycle)
            if not decision.should_continue:
                break
            assert cycle < cap
            cycle = decision.next_cycle

        assert cycles_run <= cap
        assert decision.verdict != Verdict.RETRY

    def test_empty_scores_never_pass(self):
        controller = _controller(cycle_cap=1)
        decision = controller.evaluate(ScoreSet(cycle=1, scores={}), cycle=1)
        assert decision.verdict == Verdict.PASS_FORCED

    def test_average_scores(self):
        controller = _controller()
        score_set = controller.average_scores(
            2,
            {Category.SIMPLIFY: [8.0, 9.0, 10.0], Category.DEDUPE: [], Category.CLARITY: [7.0]},
        )

        assert score_set.cycle == 2
        assert score_set.scores == {Category.SIMPLIFY: 9.0, Category.CLARITY: 7.0}
        assert score_set.instances[Category.SIMPLIFY] == 3
        assert score_set.below(9.0) == [Category.CLARITY]
        assert score_set.min_score == 7.0
