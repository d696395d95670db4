"""Conflict resolution for overlapping edit proposals.

Turns merged findings into change proposals, clusters proposals that touch
overlapping lines, votes across categories and gates the winners by
confidence.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from review_orchestrator.core.models import (
    AppliedChange,
    Category,
    ChangeOutcome,
    ChangeProposal,
    DecisionKind,
    DecisionOption,
    Finding,
    LineRange,
    PendingDecision,
    VotingRecord,
    fingerprint,
)
from review_orchestrator.utils import truncate_with_marker

logger = logging.getLogger(__name__)


class ConflictType(str, Enum):
    """Heuristic shape of a conflict between proposals."""

    NAMING = "naming"
    STRUCTURAL = "structural"
    PATTERN = "pattern"
    UNKNOWN = "unknown"


class ResolutionRule(str, Enum):
    """Rule that decided a cluster."""

    MAJORITY = "majority"
    PLURALITY = "plurality"
    PRIORITY_TABLE = "priority_table"
    DECISION = "decision"
    SPLIT = "split"


# Tie-break table: which category wins an exact tie for each conflict type
DEFAULT_PRIORITY_TABLE: dict[ConflictType, Category] = {
    ConflictType.NAMING: Category.CLARITY,
    ConflictType.STRUCTURAL: Category.DECOMPOSE,
    ConflictType.PATTERN: Category.CONSISTENCY,
}

CONFLICT_KEYWORDS: dict[ConflictType, list[str]] = {
    ConflictType.NAMING: ["rename", "name", "identifier", "variable", "call it"],
    ConflictType.STRUCTURAL: [
        "extract", "split", "move", "inline", "decompose", "helper", "def ", "class ", "module",
    ],
    ConflictType.PATTERN: ["pattern", "consistent", "convention", "idiom", "style", "same as"],
}


def classify_conflict(proposals: list[ChangeProposal]) -> ConflictType:
    """
    Classify a conflict by keyword and shape match on the competing payloads.

    Payloads that share the same token skeleton and differ only in words are
    naming conflicts. Otherwise the keyword family with the most hits wins;
    a tie between families is UNKNOWN.
    """
    if len(proposals) < 2:
        return ConflictType.UNKNOWN

    skeletons = {re.sub(r"\w+", "w", p.normalized_payload) for p in proposals}
    payloads = {p.normalized_payload for p in proposals}
    if len(skeletons) == 1 and len(payloads) > 1:
        return ConflictType.NAMING

    text = " ".join(p.edit_payload.lower() for p in proposals)
    hits = {
        conflict_type: sum(text.count(keyword) for keyword in keywords)
        for conflict_type, keywords in CONFLICT_KEYWORDS.items()
    }
    best = max(hits.values())
    if best == 0:
        return ConflictType.UNKNOWN
    leaders = [t for t, count in hits.items() if count == best]
    return leaders[0] if len(leaders) == 1 else ConflictType.UNKNOWN


@dataclass
class ResolutionResult:
    """Outcome of resolving a proposal set."""

    changes: list[AppliedChange] = field(default_factory=list)
    pending_decisions: list[PendingDecision] = field(default_factory=list)
    cluster_count: int = 0
    conflict_count: int = 0

    @property
    def to_apply(self) -> list[AppliedChange]:
        """Changes whose intended outcome writes to disk."""
        return [c for c in self.changes if c.is_applied]

    @property
    def skipped(self) -> list[AppliedChange]:
        """Changes recorded as skipped."""
        return [c for c in self.changes if c.outcome == ChangeOutcome.SKIPPED]


class ConflictResolver:
    """
    Resolves overlapping edit proposals from different categories.

    Rules:
    1. Each category casts one vote in a cluster: its highest-confidence proposal
    2. Majority (> 50% of voting categories) wins outright
    3. A unique plurality leader wins next
    4. Exact tie: the priority table keyed by conflict type picks the winner
    5. Otherwise the cluster is split: nothing applied, a decision is raised

    Winners and lone proposals then pass the confidence gate:
    >= auto_apply applied, >= apply_with_note flagged, lower skipped.
    """

    def __init__(
        self,
        priority_table: dict[ConflictType, Category] | None = None,
        auto_apply: float = 9.0,
        apply_with_note: float = 6.0,
    ) -> None:
        self.priority_table = DEFAULT_PRIORITY_TABLE if priority_table is None else priority_table
        self.auto_apply = auto_apply
        self.apply_with_note = apply_with_note

    def build_proposals(
        self,
        findings: list[Finding],
        digest_for: Callable[[str, LineRange], str | None] | None = None,
    ) -> list[ChangeProposal]:
        """
        Derive change proposals from findings.

        Findings of one category with the same location and the same
        normalized fix collapse into a single proposal. Findings without a
        proposed fix produce no proposal.

        Args:
            findings: Merged findings across categories.
            digest_for: Optional callback returning a digest of the target lines.

        Returns:
            Proposals sorted by (file, start, end, id).
        """
        grouped: dict[tuple, list[Finding]] = defaultdict(list)
        for finding in findings:
            payload = re.sub(r"\s+", " ", finding.proposed_fix).strip()
            if not payload:
                continue
            key = (
                finding.category,
                finding.file,
                finding.line_range.start,
                finding.line_range.end,
                payload,
            )
            grouped[key].append(finding)

        proposals = []
        for (category, file, start, end, payload), members in grouped.items():
            line_range = LineRange(start=start, end=end)
            best = max(members, key=lambda f: (f.confidence, f.id))
            proposals.append(
                ChangeProposal(
                    id=fingerprint(category.value, file, start, end, payload),
                    category=category,
                    file=file,
                    line_range=line_range,
                    edit_payload=best.proposed_fix,
                    source_finding_ids=tuple(sorted(f.id for f in members)),
                    confidence=max(f.confidence for f in members),
                    content_digest=digest_for(file, line_range) if digest_for else None,
                )
            )

        proposals.sort(key=self._proposal_sort_key)
        return proposals

    @staticmethod
    def _proposal_sort_key(proposal: ChangeProposal) -> tuple:
        return (proposal.file, proposal.line_range.start, proposal.line_range.end, proposal.id)

    def cluster(self, proposals: list[ChangeProposal]) -> list[list[ChangeProposal]]:
        """Partition proposals into clusters of overlapping (file, line range)."""
        clusters: list[list[ChangeProposal]] = []
        current: list[ChangeProposal] = []
        current_file: str | None = None
        current_end = 0

        for proposal in sorted(proposals, key=self._proposal_sort_key):
            if current and proposal.file == current_file and proposal.line_range.start <= current_end:
                current.append(proposal)
                current_end = max(current_end, proposal.line_range.end)
                continue
            if current:
                clusters.append(current)
            current = [proposal]
            current_file = proposal.file
            current_end = proposal.line_range.end

        if current:
            clusters.append(current)
        return clusters

    def resolve(self, proposals: list[ChangeProposal], cycle: int = 0) -> ResolutionResult:
        """
        Resolve a proposal set into intended outcomes.

        Args:
            proposals: Proposals across all categories.
            cycle: Convergence cycle the changes belong to.

        Returns:
            ResolutionResult with one AppliedChange per recorded proposal and
            a PendingDecision for every split cluster.
        """
        result = ResolutionResult()
        clusters = self.cluster(proposals)
        result.cluster_count = len(clusters)

        for members in clusters:
            categories = {p.category for p in members}
            if len(categories) == 1:
                self._resolve_single_category(members, cycle, result)
            else:
                result.conflict_count += 1
                self._resolve_vote(members, cycle, result)

        logger.info(
            "Resolved %d proposals in %d clusters (%d conflicts): %d to apply, %d skipped, %d pending",
            len(proposals),
            result.cluster_count,
            result.conflict_count,
            len(result.to_apply),
            len(result.skipped),
            len(result.pending_decisions),
        )
        return result

    def gate(self, confidence: float) -> ChangeOutcome:
        """Confidence gate for auto-application."""
        if confidence >= self.auto_apply:
            return ChangeOutcome.APPLIED
        if confidence >= self.apply_with_note:
            return ChangeOutcome.APPLIED_WITH_NOTE
        return ChangeOutcome.SKIPPED

    def _gated_change(
        self,
        proposal: ChangeProposal,
        cycle: int,
        voting_record: VotingRecord | None = None,
    ) -> AppliedChange:
        outcome = self.gate(proposal.confidence)
        if outcome == ChangeOutcome.APPLIED_WITH_NOTE:
            note = f"Moderate confidence ({proposal.confidence:.1f}); review recommended"
        elif outcome == ChangeOutcome.SKIPPED:
            note = f"Confidence {proposal.confidence:.1f} below apply gate"
        else:
            note = ""
        return AppliedChange(
            proposal=proposal,
            outcome=outcome,
            note=note,
            voting_record=voting_record,
            cycle=cycle,
        )

    def _top_by_category(
        self,
        members: list[ChangeProposal],
    ) -> tuple[dict[Category, ChangeProposal], list[ChangeProposal]]:
        """Each category's voting proposal plus the proposals it supersedes."""
        by_category: dict[Category, list[ChangeProposal]] = defaultdict(list)
        for proposal in members:
            by_category[proposal.category].append(proposal)

        top: dict[Category, ChangeProposal] = {}
        superseded: list[ChangeProposal] = []
        for category in sorted(by_category, key=lambda c: c.value):
            ranked = sorted(by_category[category], key=lambda p: (-p.confidence, p.id))
            top[category] = ranked[0]
            superseded.extend(ranked[1:])
        return top, superseded

    def _resolve_single_category(
        self,
        members: list[ChangeProposal],
        cycle: int,
        result: ResolutionResult,
    ) -> None:
        top, superseded = self._top_by_category(members)
        (winner,) = top.values()
        result.changes.append(self._gated_change(winner, cycle))
        for proposal in superseded:
            result.changes.append(
                AppliedChange(
                    proposal=proposal,
                    outcome=ChangeOutcome.SKIPPED,
                    note=f"Superseded by overlapping proposal {winner.id}",
                    cycle=cycle,
                )
            )

    def _resolve_vote(
        self,
        members: list[ChangeProposal],
        cycle: int,
        result: ResolutionResult,
    ) -> None:
        cluster_id = fingerprint(*sorted(p.id for p in members))
        top, superseded = self._top_by_category(members)

        # Categories proposing the same normalized payload support the same option
        supporters: dict[str, list[ChangeProposal]] = defaultdict(list)
        for category in sorted(top, key=lambda c: c.value):
            proposal = top[category]
            supporters[proposal.normalized_payload].append(proposal)

        options: dict[str, ChangeProposal] = {}
        for payload, backing in supporters.items():
            representative = sorted(backing, key=lambda p: (-p.confidence, p.id))[0]
            options[payload] = representative.model_copy(
                update={
                    "source_finding_ids": tuple(
                        sorted({fid for p in backing for fid in p.source_finding_ids})
                    ),
                    "confidence": max(p.confidence for p in backing),
                }
            )

        total = len(top)
        support = {options[payload].id: len(backing) for payload, backing in supporters.items()}
        votes = {category: options[proposal.normalized_payload].id for category, proposal in top.items()}
        lead = max(support.values())
        leaders = sorted(
            (payload for payload, backing in supporters.items() if len(backing) == lead),
            key=lambda payload: options[payload].id,
        )

        winner: ChangeProposal | None = None
        conflict_type: ConflictType | None = None
        if lead * 2 > total:
            rule = ResolutionRule.MAJORITY
            winner = options[leaders[0]]
        elif len(leaders) == 1:
            rule = ResolutionRule.PLURALITY
            winner = options[leaders[0]]
        else:
            conflict_type = classify_conflict([options[p] for p in leaders])
            favored = self.priority_table.get(conflict_type)
            favored_payloads = [
                payload
                for payload in leaders
                if favored is not None and any(p.category == favored for p in supporters[payload])
            ]
            if favored_payloads:
                rule = ResolutionRule.PRIORITY_TABLE
                winner = options[favored_payloads[0]]
            else:
                rule = ResolutionRule.SPLIT

        record = VotingRecord(
            cluster_id=cluster_id,
            votes=votes,
            support=support,
            rule=rule.value,
            conflict_type=conflict_type.value if conflict_type else None,
            winner_id=winner.id if winner else None,
        )

        if winner is None:
            self._record_split(cluster_id, [options[p] for p in leaders], options, record, cycle, result)
        else:
            logger.info(
                "Cluster %s resolved by %s: %s wins (%d/%d categories)",
                cluster_id, rule.value, winner.id, support[winner.id], total,
            )
            result.changes.append(self._gated_change(winner, cycle, record))
            for payload, option in options.items():
                if option.id == winner.id:
                    continue
                result.changes.append(
                    AppliedChange(
                        proposal=option,
                        outcome=ChangeOutcome.SKIPPED,
                        note=f"Outvoted by {winner.id} ({rule.value})",
                        voting_record=record,
                        cycle=cycle,
                    )
                )

        for proposal in superseded:
            result.changes.append(
                AppliedChange(
                    proposal=proposal,
                    outcome=ChangeOutcome.SKIPPED,
                    note="Superseded by the category's higher-confidence proposal",
                    voting_record=record,
                    cycle=cycle,
                )
            )

    def _record_split(
        self,
        cluster_id: str,
        tied: list[ChangeProposal],
        options: dict[str, ChangeProposal],
        record: VotingRecord,
        cycle: int,
        result: ResolutionResult,
    ) -> None:
        """Skip every option of a split cluster and raise a decision for the tied ones."""
        first = tied[0]
        logger.warning(
            "Cluster %s at %s:%s split %s with no priority rule; deferring to external decision",
            cluster_id, first.file, first.line_range, record.support,
        )
        decision = PendingDecision(
            kind=DecisionKind.TIE_VOTE,
            title=f"Conflicting edits at {first.file}:{first.line_range}",
            description=(
                f"{len(tied)} proposals are tied with no priority rule for "
                f"conflict type '{record.conflict_type}'."
            ),
            options=[
                DecisionOption(
                    key=proposal.id,
                    label=f"Apply {proposal.category.value} proposal",
                    description=truncate_with_marker(proposal.edit_payload, 200),
                    proposal_id=proposal.id,
                )
                for proposal in tied
            ]
            + [
                DecisionOption(
                    key="skip",
                    label="Skip",
                    description="Leave the code unchanged",
                    is_default=True,
                )
            ],
            context={
                "cluster_id": cluster_id,
                "file": first.file,
                "line_range": str(first.line_range),
                "support": record.support,
                "conflict_type": record.conflict_type,
            },
        )
        result.pending_decisions.append(decision)
        for option in options.values():
            result.changes.append(
                AppliedChange(
                    proposal=option,
                    outcome=ChangeOutcome.SKIPPED,
                    note=f"Pending decision {decision.id}: vote split",
                    voting_record=record,
                    cycle=cycle,
                )
            )

    def resolve_decision(
        self,
        decision: PendingDecision,
        proposals: list[ChangeProposal],
        cycle: int = 0,
    ) -> AppliedChange | None:
        """
        Turn an answered tie decision into a gated change.

        Returns None when the decision was left unanswered or skipped.
        """
        if decision.resolved_option in (None, "skip"):
            return None
        for proposal in proposals:
            if proposal.id == decision.resolved_option:
                record = VotingRecord(
                    cluster_id=str(decision.context.get("cluster_id", "")),
                    votes={},
                    support=dict(decision.context.get("support", {})),
                    rule=ResolutionRule.DECISION.value,
                    conflict_type=decision.context.get("conflict_type"),
                    winner_id=proposal.id,
                )
                return self._gated_change(proposal, cycle, record)
        logger.warning("Decision %s chose unknown option %s", decision.id, decision.resolved_option)
        return None
