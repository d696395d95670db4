"""Pydantic settings for review orchestrator configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml

from review_orchestrator.core.models import CheckName, MergeStrategy, ReviewMode, ReviewPhase, build_phase_path


class ModeProfile(BaseModel):
    """Which optional phases and checks a mode runs."""

    snapshot: bool = False
    score: bool = True
    checks: list[CheckName] = Field(
        default_factory=lambda: [CheckName.TYPECHECK, CheckName.LINT, CheckName.TESTS]
    )
    sample_count: int = Field(default=1, ge=1)

    def phase_path(self) -> list[ReviewPhase]:
        """Forward path through the pipeline for this profile."""
        return build_phase_path(snapshot=self.snapshot, score=self.score)


class ModeProfiles(BaseModel):
    """Profiles for the three review modes."""

    quick: ModeProfile = Field(default_factory=lambda: ModeProfile(
        snapshot=False,
        score=False,
        checks=[CheckName.TYPECHECK, CheckName.LINT],
    ))
    standard: ModeProfile = Field(default_factory=ModeProfile)
    thorough: ModeProfile = Field(default_factory=lambda: ModeProfile(
        snapshot=True,
        score=True,
        checks=[CheckName.TYPECHECK, CheckName.LINT, CheckName.TESTS, CheckName.BEHAVIOR_DIFF],
        sample_count=3,
    ))

    def for_mode(self, mode: ReviewMode) -> ModeProfile:
        """Get the profile for a mode."""
        return getattr(self, mode.value)


class EnsembleSettings(BaseModel):
    """Ensemble merge settings."""

    strategy: MergeStrategy = MergeStrategy.UNION
    consensus_threshold: int = Field(default=2, ge=1)
    line_tolerance: int = 5
    similarity_threshold: float = 0.8
    # Confidence multiplier by agreement count; the last entry applies to larger groups
    boost_table: list[float] = Field(default_factory=lambda: [1.0, 1.2, 1.5])


class ScoringSettings(BaseModel):
    """Convergence loop settings."""

    threshold: float = 9.0
    cycle_cap: int = Field(default=5, ge=1)


class ConfidenceGates(BaseModel):
    """Confidence gates for auto-applying proposals."""

    auto_apply: float = 9.0  # Applied outright
    apply_with_note: float = 6.0  # Applied but flagged


class ResilienceSettings(BaseModel):
    """Retry and timeout settings."""

    phase_retries: int = Field(default=2, ge=0)
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0
    worker_timeout: float = 300.0  # 5 min per worker instance
    max_concurrent_workers: int | None = None  # Default: sample_count x categories


class VerificationSettings(BaseModel):
    """Commands backing each verification check."""

    typecheck_command: list[str] = Field(default_factory=lambda: ["mypy", "."])
    lint_command: list[str] = Field(default_factory=lambda: ["ruff", "check", "."])
    tests_command: list[str] = Field(default_factory=lambda: ["pytest", "-q", "--tb=short"])
    typecheck_timeout: float = 300.0
    lint_timeout: float = 300.0
    tests_timeout: float = 600.0


class Settings(BaseSettings):
    """Main settings for the review orchestrator."""

    model_config = SettingsConfigDict(
        env_prefix="REVIEW_ORCHESTRATOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # General
    debug: bool = False
    verbose: bool = False
    log_level: str = "WARNING"  # Used when neither debug nor verbose is set

    # Pipeline
    modes: ModeProfiles = Field(default_factory=ModeProfiles)
    ensemble: EnsembleSettings = Field(default_factory=EnsembleSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    confidence: ConfidenceGates = Field(default_factory=ConfidenceGates)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)

    # Worker command used by the CLI (JSON over stdin/stdout)
    worker_command: list[str] = Field(default_factory=list)

    # Paths
    state_dir: str = ".review_orchestrator"

    def get_profile(self, mode: ReviewMode) -> ModeProfile:
        """Get the mode profile."""
        return self.modes.for_mode(mode)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_settings_from_yaml(yaml_path: Path) -> Settings:
    """Load settings from a YAML file."""
    with open(yaml_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return Settings.model_validate(data or {})


def get_default_config() -> dict[str, Any]:
    """Get default configuration as a dictionary."""
    return Settings().model_dump(mode="json")
