"""Decision channels and gates."""

from review_orchestrator.human_loop.decision_gates import (
    PROCEED_WITH_WARNING,
    ROLLBACK_ALL,
    ROLLBACK_SPECIFIC,
    CallbackDecisionChannel,
    ConsoleDecisionChannel,
    DecisionChannel,
    DecisionGates,
    DecisionResponse,
    DefaultDecisionPolicy,
    build_regression_decision,
)

__all__ = [
    "PROCEED_WITH_WARNING",
    "ROLLBACK_ALL",
    "ROLLBACK_SPECIFIC",
    "CallbackDecisionChannel",
    "ConsoleDecisionChannel",
    "DecisionChannel",
    "DecisionGates",
    "DecisionResponse",
    "DefaultDecisionPolicy",
    "build_regression_decision",
]
