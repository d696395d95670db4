"""Analysis and scoring workers."""

from review_orchestrator.workers.base import (
    AnalysisResponse,
    AnalysisWorker,
    ScoreResponse,
    WorkerFinding,
)
from review_orchestrator.workers.command import CommandWorker

__all__ = [
    "AnalysisResponse",
    "AnalysisWorker",
    "CommandWorker",
    "ScoreResponse",
    "WorkerFinding",
]
