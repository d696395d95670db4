"""
Review Orchestrator - Multi-Phase Review and Repair Engine

Drives a codebase through analysis, ensemble merge, conflict resolution,
a bounded fix/score convergence loop and regression gating.
"""

__version__ = "0.1.0"

from review_orchestrator.core.session_record import SessionRecord, build_session_record
from review_orchestrator.core.session_store import FileSessionStore
from review_orchestrator.core.state_machine import ReviewOrchestrator, ReviewOutcome

__all__ = [
    "FileSessionStore",
    "ReviewOrchestrator",
    "ReviewOutcome",
    "SessionRecord",
    "build_session_record",
]
