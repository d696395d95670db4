"""Ensemble merge, conflict resolution, edits and regression classification."""

from review_orchestrator.reviewing.conflict_resolution import (
    ConflictResolver,
    ConflictType,
    ResolutionResult,
    ResolutionRule,
    classify_conflict,
)
from review_orchestrator.reviewing.edit_applier import FileEditor
from review_orchestrator.reviewing.ensemble_merge import (
    EnsembleMerger,
    InstanceFindings,
    MergeResult,
)
from review_orchestrator.reviewing.regression_classifier import (
    RegressionClassifier,
    RegressionReport,
)
from review_orchestrator.reviewing.similarity import (
    SimilarityFunction,
    sequence_similarity,
    token_jaccard_similarity,
)

__all__ = [
    "ConflictResolver",
    "ConflictType",
    "EnsembleMerger",
    "FileEditor",
    "InstanceFindings",
    "MergeResult",
    "RegressionClassifier",
    "RegressionReport",
    "ResolutionResult",
    "ResolutionRule",
    "SimilarityFunction",
    "classify_conflict",
    "sequence_similarity",
    "token_jaccard_similarity",
]
