"""Ensemble merge engine for findings from parallel worker instances.

Combines the finding lists that several independent instances of the same
category produced, detects exact and fuzzy duplicates, boosts confidence by
agreement and applies a survival strategy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from review_orchestrator.core.models import (
    Category,
    Finding,
    MergeStrategy,
    normalize_text,
)
from review_orchestrator.reviewing.similarity import SimilarityFunction, sequence_similarity

logger = logging.getLogger(__name__)


@dataclass
class InstanceFindings:
    """Findings returned by one worker instance."""

    instance_id: str
    findings: list[Finding] = field(default_factory=list)


@dataclass
class MergedGroup:
    """Findings from different instances judged to be the same issue."""

    members: list[tuple[str, Finding]]  # (instance_id, finding)
    merged: Finding

    @property
    def agreement_count(self) -> int:
        """Number of instances that reported this issue."""
        return len(self.members)

    @property
    def priority(self) -> float:
        """Weight used by the weighted strategy."""
        return self.merged.confidence * self.agreement_count


@dataclass
class MergeResult:
    """Result of merging one category's instance outputs."""

    category: Category
    strategy: MergeStrategy
    groups: list[MergedGroup]
    instance_count: int = 0
    total_source_items: int = 0
    group_count: int = 0  # Before the strategy filter
    consensus_threshold: int | None = None

    @property
    def findings(self) -> list[Finding]:
        """Surviving merged findings, in output order."""
        return [group.merged for group in self.groups]

    @property
    def duplicate_count(self) -> int:
        """Source findings folded into another group."""
        return self.total_source_items - self.group_count

    @property
    def filtered_count(self) -> int:
        """Groups dropped by the strategy."""
        return self.group_count - len(self.groups)

    def summary(self) -> str:
        """Generate human-readable merge summary."""
        lines = [
            f"Ensemble merge [{self.category.value}] ({self.strategy.value}):",
            f"  Instances: {self.instance_count}",
            f"  Source findings: {self.total_source_items}",
            f"  Groups: {self.group_count}",
            f"  Duplicates merged: {self.duplicate_count}",
            f"  Filtered by strategy: {self.filtered_count}",
        ]
        return "\n".join(lines)


class EnsembleMerger:
    """
    Deterministically merges per-instance finding lists.

    Matching:
    - Exact: same file, same line range, same normalized summary
    - Fuzzy: same file, ranges overlapping within `line_tolerance` lines,
      and summary similarity strictly above `similarity_threshold`

    A group never holds two findings from the same instance, so a single
    instance's list keeps every finding and its values. The output is in
    canonical order (file, line range, normalized summary, id) whatever
    order the instance reported in.

    Example:
        merger = EnsembleMerger()
        result = merger.merge(Category.SIMPLIFY, [run_a, run_b, run_c])
        # result.findings holds one finding per distinct issue
    """

    def __init__(
        self,
        similarity: SimilarityFunction | None = None,
        similarity_threshold: float = 0.8,
        line_tolerance: int = 5,
        boost_table: Iterable[float] = (1.0, 1.2, 1.5),
    ) -> None:
        """
        Initialize the merger.

        Args:
            similarity: Text similarity function returning [0, 1].
            similarity_threshold: Similarity must exceed this for a fuzzy match.
            line_tolerance: Allowed gap between line ranges for a fuzzy match.
            boost_table: Confidence multiplier for agreement 1, 2, ... (last entry caps).
        """
        self.similarity = similarity or sequence_similarity
        self.similarity_threshold = similarity_threshold
        self.line_tolerance = line_tolerance
        self.boost_table = tuple(boost_table) or (1.0,)

    def boost(self, agreement_count: int) -> float:
        """Confidence multiplier; non-decreasing in agreement and capped."""
        index = max(agreement_count, 1) - 1
        return self.boost_table[min(index, len(self.boost_table) - 1)]

    def merge(
        self,
        category: Category,
        instances: list[InstanceFindings],
        strategy: MergeStrategy = MergeStrategy.UNION,
        consensus_threshold: int = 2,
    ) -> MergeResult:
        """
        Merge the outputs of several instances of one category.

        Args:
            category: Category all findings belong to.
            instances: One entry per completed worker instance.
            strategy: Which merged groups survive.
            consensus_threshold: Minimum agreement for the consensus strategy.

        Returns:
            MergeResult with merged findings in canonical order.
        """
        ordered = self._order(instances)
        total_source = sum(len(findings) for _, findings in ordered)

        pending: list[list[tuple[str, Finding]]] = []
        for instance_id, findings in ordered:
            for finding in findings:
                if finding.category != category:
                    logger.debug(
                        "Ignoring %s finding in %s merge: %s",
                        finding.category.value, category.value, finding.location,
                    )
                    total_source -= 1
                    continue
                target = self._find_group(pending, instance_id, finding)
                if target is None:
                    pending.append([(instance_id, finding)])
                else:
                    target.append((instance_id, finding))

        groups = [self._merge_group(members) for members in pending]
        surviving = self._apply_strategy(groups, strategy, consensus_threshold)

        result = MergeResult(
            category=category,
            strategy=strategy,
            groups=surviving,
            instance_count=len(ordered),
            total_source_items=total_source,
            group_count=len(groups),
            consensus_threshold=consensus_threshold if strategy == MergeStrategy.CONSENSUS else None,
        )
        logger.debug("Merge complete:\n%s", result.summary())
        return result

    def _order(self, instances: list[InstanceFindings]) -> list[tuple[str, list[Finding]]]:
        """Sort instances by id and findings by location so arrival order is irrelevant."""
        ordered = []
        for instance in sorted(instances, key=lambda i: i.instance_id):
            findings = sorted(instance.findings, key=self._finding_sort_key)
            ordered.append((instance.instance_id, findings))
        return ordered

    @staticmethod
    def _finding_sort_key(finding: Finding) -> tuple:
        return (*finding.exact_key, -finding.confidence, finding.id)

    def _find_group(
        self,
        groups: list[list[tuple[str, Finding]]],
        instance_id: str,
        finding: Finding,
    ) -> list[tuple[str, Finding]] | None:
        """Pick the group a finding joins: exact match first, then best fuzzy match."""
        best: list[tuple[str, Finding]] | None = None
        best_similarity = self.similarity_threshold

        for members in groups:
            if any(member_instance == instance_id for member_instance, _ in members):
                continue
            if any(member.exact_key == finding.exact_key for _, member in members):
                return members
            for _, member in members:
                if member.file != finding.file:
                    continue
                if not member.line_range.overlaps(finding.line_range, self.line_tolerance):
                    continue
                similarity = self.similarity(member.issue_summary, finding.issue_summary)
                if similarity > best_similarity:
                    best = members
                    best_similarity = similarity

        return best

    def _merge_group(self, members: list[tuple[str, Finding]]) -> MergedGroup:
        """Merge matched findings into a single finding."""
        # Highest confidence wins; earliest instance breaks ties
        representative = members[0][1]
        for _, member in members[1:]:
            if member.confidence > representative.confidence:
                representative = member

        line_range = representative.line_range
        for _, member in members:
            line_range = line_range.union(member.line_range)

        agreement = len(members)
        confidence = min(10.0, representative.confidence * self.boost(agreement))
        if confidence != representative.confidence:
            confidence = round(confidence, 4)

        merged = representative.model_copy(
            update={
                "line_range": line_range,
                "confidence": confidence,
                "agreement_count": agreement,
                "instance_ids": tuple(sorted(instance_id for instance_id, _ in members)),
            }
        )
        return MergedGroup(members=list(members), merged=merged)

    def _apply_strategy(
        self,
        groups: list[MergedGroup],
        strategy: MergeStrategy,
        consensus_threshold: int,
    ) -> list[MergedGroup]:
        """Filter and order groups for the chosen strategy."""
        canonical = sorted(
            groups,
            key=lambda g: (
                g.merged.file,
                g.merged.line_range.start,
                g.merged.line_range.end,
                normalize_text(g.merged.issue_summary),
                g.merged.id,
            ),
        )

        if strategy == MergeStrategy.CONSENSUS:
            return [g for g in canonical if g.agreement_count >= consensus_threshold]

        if strategy == MergeStrategy.WEIGHTED:
            # Stable sort keeps canonical order among equal priorities
            return sorted(canonical, key=lambda g: -g.priority)

        return canonical
