"""Target resolution and public contract snapshots."""

from review_orchestrator.project.contracts import (
    ContractChange,
    ContractChangeType,
    ContractSnapshotter,
    PythonContractSnapshotter,
)
from review_orchestrator.project.resolver import GlobTargetResolver, TargetResolver

__all__ = [
    "ContractChange",
    "ContractChangeType",
    "ContractSnapshotter",
    "GlobTargetResolver",
    "PythonContractSnapshotter",
    "TargetResolver",
]
