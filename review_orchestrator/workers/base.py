"""Worker interface and wire schemas for analysis and scoring units."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field, field_validator

from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    Finding,
    LineRange,
    ReviewMode,
    StackProfile,
)


class AnalysisWorker(Protocol):
    """
    Judgment-based analysis capability.

    Implementations receive read-only inputs and return structured results;
    they never touch session state. Timeouts are enforced by the caller.
    """

    async def run_analysis_unit(
        self,
        category: Category,
        files: list[str],
        stack_profile: StackProfile,
        mode: ReviewMode,
    ) -> list[Finding]:
        ...

    async def run_score_unit(
        self,
        category: Category,
        applied_changes: list[AppliedChange],
    ) -> float:
        ...


class WorkerFinding(BaseModel):
    """A finding as emitted by an external worker."""

    file: str
    start_line: int = Field(ge=1)
    end_line: int | None = None
    issue_summary: str
    proposed_fix: str = ""
    confidence: float = 5.0

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return max(1.0, min(10.0, value))

    def to_finding(self, category: Category) -> Finding:
        end = self.end_line if self.end_line and self.end_line >= self.start_line else self.start_line
        return Finding(
            category=category,
            file=self.file,
            line_range=LineRange(start=self.start_line, end=end),
            issue_summary=self.issue_summary,
            proposed_fix=self.proposed_fix,
            confidence=self.confidence,
        )


class AnalysisResponse(BaseModel):
    """Worker reply to an analysis request."""

    findings: list[WorkerFinding] = Field(default_factory=list)


class ScoreResponse(BaseModel):
    """Worker reply to a scoring request."""

    score: float = Field(ge=0.0, le=10.0)
    rationale: str = ""
