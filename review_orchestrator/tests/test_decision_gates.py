"""Tests for decision gates and channels."""

import pytest

from review_orchestrator.core.models import (
    DecisionKind,
    DecisionOption,
    PendingDecision,
    RegressionKind,
    RegressionRecord,
    RegressionSeverity,
)
from review_orchestrator.human_loop.decision_gates import (
    PROCEED_WITH_WARNING,
    ROLLBACK_ALL,
    ROLLBACK_SPECIFIC,
    CallbackDecisionChannel,
    ConsoleDecisionChannel,
    DecisionGates,
    DecisionResponse,
    build_regression_decision,
)


def _regression_decision() -> PendingDecision:
    errors = [
        RegressionRecord(
            kind=RegressionKind.TYPE_ERROR,
            file="src/app.py",
            message="src/app.py:3: bad type",
            severity=RegressionSeverity.ERROR,
        )
    ]
    return build_regression_decision(errors, ["src/app.py", "src/util.py"])


def _tie_decision() -> PendingDecision:
    return PendingDecision(
        kind=DecisionKind.TIE_VOTE,
        title="Conflicting edits at src/app.py:2-4",
        description="2 proposals are tied",
        options=[
            DecisionOption(key="p1", label="Apply simplify proposal", proposal_id="p1"),
            DecisionOption(key="skip", label="Skip", is_default=True),
        ],
    )


class TestBuildRegressionDecision:
    """Tests for build_regression_decision."""

    def test_options_and_context(self):
        decision = _regression_decision()

        assert decision.kind == DecisionKind.REGRESSION_GATE
        assert [o.key for o in decision.options] == [PROCEED_WITH_WARNING, ROLLBACK_ALL, ROLLBACK_SPECIFIC]
        assert decision.default_option.key == PROCEED_WITH_WARNING
        assert decision.context["affected_files"] == ["src/app.py"]
        assert "bad type" in decision.description


class TestDecisionGates:
    """Tests for DecisionGates."""

    @pytest.mark.asyncio
    async def test_default_policy_proceeds_on_regression(self):
        gates = DecisionGates()
        resolved = await gates.resolve(_regression_decision())

        assert resolved.resolved_option == PROCEED_WITH_WARNING
        assert resolved.resolved_by == "Default policy"

    @pytest.mark.asyncio
    async def test_default_policy_leaves_ties_pending(self):
        resolved = await DecisionGates().resolve(_tie_decision())

        assert resolved.is_resolved is False
        assert resolved.resolved_by is None

    @pytest.mark.asyncio
    async def test_rollback_specific_keeps_files(self):
        channel = CallbackDecisionChannel(
            lambda d: DecisionResponse(selected_option=ROLLBACK_SPECIFIC, files=["src/app.py"], reason="ci")
        )
        resolved = await DecisionGates(channel).resolve(_regression_decision())

        assert resolved.resolved_option == ROLLBACK_SPECIFIC
        assert resolved.resolution_files == ["src/app.py"]
        assert resolved.resolved_by == "ci"

    @pytest.mark.asyncio
    async def test_unknown_option_falls_back_to_default(self):
        channel = CallbackDecisionChannel(lambda d: DecisionResponse(selected_option="explode"))
        resolved = await DecisionGates(channel).resolve(_regression_decision())
        assert resolved.resolved_option == PROCEED_WITH_WARNING

    @pytest.mark.asyncio
    async def test_original_decision_is_not_mutated(self):
        decision = _tie_decision()
        channel = CallbackDecisionChannel(lambda d: DecisionResponse(selected_option="p1"))
        resolved = await DecisionGates(channel).resolve(decision)

        assert resolved.resolved_option == "p1"
        assert decision.resolved_option is None


class TestConsoleDecisionChannel:
    """Tests for ConsoleDecisionChannel with scripted input."""

    @pytest.mark.asyncio
    async def test_numbered_choice_and_files(self, capsys):
        answers = iter(["3", "src/app.py, src/util.py"])
        channel = ConsoleDecisionChannel(input_func=lambda prompt: next(answers))

        response = await channel.decide(_regression_decision())

        assert response.selected_option == ROLLBACK_SPECIFIC
        assert response.files == ["src/app.py", "src/util.py"]
        assert "REGRESSION_GATE" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unrecognized_input_uses_default(self):
        channel = ConsoleDecisionChannel(input_func=lambda prompt: "whatever")
        response = await channel.decide(_regression_decision())
        assert response.selected_option == PROCEED_WITH_WARNING
