"""Tests for session records and comparison."""

import pytest
from pydantic import ValidationError

from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    ChangeOutcome,
    ChangeProposal,
    DecisionKind,
    LineRange,
    PendingDecision,
    RegressionKind,
    RegressionRecord,
    RegressionSeverity,
    ScoreSet,
    SessionState,
    SessionStatus,
    StackProfile,
    Verdict,
)
from review_orchestrator.core.session_record import build_session_record, compare_sessions


def _change(outcome: ChangeOutcome, proposal_id: str = "p1") -> AppliedChange:
    proposal = ChangeProposal(
        id=proposal_id,
        category=Category.SIMPLIFY,
        file="src/app.py",
        line_range=LineRange(start=2, end=4),
        edit_payload="pass",
        source_finding_ids=("f1",),
        confidence=9.0,
    )
    return AppliedChange(proposal=proposal, outcome=outcome, cycle=1)


def _state(session_id: str, scores: dict[Category, float], regressions: int = 0) -> SessionState:
    state = SessionState(id=session_id, target="src", project_path="/tmp/project")
    state.cycle = 2
    state.status = SessionStatus.COMPLETED_WITH_WARNINGS
    state.final_verdict = Verdict.PASS_FORCED
    state.record_scores(ScoreSet(cycle=1, scores={c: s - 1 for c, s in scores.items()}))
    state.record_scores(ScoreSet(cycle=2, scores=scores))
    state.record_change(_change(ChangeOutcome.APPLIED, "p1"))
    state.record_change(_change(ChangeOutcome.APPLIED_WITH_NOTE, "p2"))
    state.record_change(_change(ChangeOutcome.SKIPPED, "p3"))
    state.regressions = [
        RegressionRecord(
            kind=RegressionKind.TYPE_ERROR,
            file="src/app.py",
            message="bad type",
            severity=RegressionSeverity.ERROR,
        )
    ] * regressions
    state.add_warning("Cycle cap reached")
    return state


class TestSessionRecord:
    """Tests for SessionRecord."""

    def test_build_copies_state(self):
        record = build_session_record(_state("s1", {Category.SIMPLIFY: 9.5, Category.DEDUPE: 8.0}, 1))

        assert record.status == SessionStatus.COMPLETED_WITH_WARNINGS
        assert record.final_verdict == Verdict.PASS_FORCED
        assert record.cycles == 2
        assert record.final_scores == {Category.SIMPLIFY: 9.5, Category.DEDUPE: 8.0}
        assert record.applied_count == 2
        assert record.count_outcome(ChangeOutcome.SKIPPED) == 1
        assert record.error_regression_count == 1
        assert record.baseline_captured is False

    def test_record_is_frozen(self):
        record = build_session_record(_state("s1", {Category.SIMPLIFY: 9.5}))
        with pytest.raises(ValidationError):
            record.status = SessionStatus.COMPLETED

    def test_record_does_not_share_state_objects(self):
        state = _state("s1", {Category.SIMPLIFY: 9.5})
        state.stack_profile = StackProfile(languages=["python"])
        state.pending_decisions.append(
            PendingDecision(kind=DecisionKind.TIE_VOTE, title="Tie", description="Two proposals tie")
        )
        record = build_session_record(state)

        state.stack_profile.languages.append("go")
        assert record.stack_profile.languages == ["python"]
        assert record.score_history[0] is not state.score_history[0]
        with pytest.raises(ValidationError):
            record.score_history[0].cycle = 5
        with pytest.raises(ValidationError):
            record.pending_decisions[0].resolved_option = "p1"

    def test_summary_mentions_verdict_and_warnings(self):
        summary = build_session_record(_state("s1", {Category.SIMPLIFY: 9.5})).summary()

        assert "verdict: pass_forced" in summary
        assert "1 applied, 1 applied with note, 1 skipped" in summary
        assert "simplify=9.5 after 2 cycle(s)" in summary
        assert "WARNING: Cycle cap reached" in summary

    def test_summary_row(self):
        row = build_session_record(_state("s1", {Category.SIMPLIFY: 9.5, Category.DEDUPE: 8.0})).to_summary_row()

        assert row.min_score == 8.0
        assert row.applied_count == 2
        assert "s1" in row.format_row()


class TestCompareSessions:
    """Tests for compare_sessions."""

    def test_deltas(self):
        a = build_session_record(_state("a", {Category.SIMPLIFY: 8.0, Category.DEDUPE: 7.0}, 2))
        b = build_session_record(_state("b", {Category.SIMPLIFY: 9.5, Category.CLARITY: 9.0}))

        comparison = compare_sessions(a, b)

        assert comparison.score_deltas[Category.SIMPLIFY] == 1.5
        assert comparison.score_deltas[Category.DEDUPE] is None
        assert comparison.score_deltas[Category.CLARITY] is None
        assert Category.CONSISTENCY not in comparison.score_deltas
        assert comparison.regression_delta == -2
        assert comparison.error_regression_delta == -2
        assert comparison.applied_delta == 0

        text = comparison.format()
        assert "Comparing a -> b" in text
        assert "+1.50" in text
        assert "n/a" in text
