"""Tests for the ensemble merge engine."""

import pytest

from review_orchestrator.core.models import Category, MergeStrategy
from review_orchestrator.reviewing.ensemble_merge import (
    EnsembleMerger,
    InstanceFindings,
)
from review_orchestrator.reviewing.similarity import (
    sequence_similarity,
    token_jaccard_similarity,
)
from review_orchestrator.tests.conftest import make_finding


def _instances() -> list[InstanceFindings]:
    return [
        InstanceFindings(
            instance_id="simplify-1",
            findings=[
                make_finding(
                    file="file.ts", start=10, end=12,
                    summary="Nested conditionals can be flattened with early returns",
                    confidence=8.0, finding_id="a1",
                ),
            ],
        ),
        InstanceFindings(
            instance_id="simplify-2",
            findings=[
                make_finding(
                    file="file.ts", start=11, end=13,
                    summary="Nested conditionals can be flattened using early returns",
                    confidence=7.0, finding_id="a2",
                ),
            ],
        ),
        InstanceFindings(
            instance_id="simplify-3",
            findings=[
                make_finding(
                    file="other.ts", start=5, end=5,
                    summary="Redundant boolean comparison",
                    confidence=6.0, finding_id="b1",
                ),
            ],
        ),
    ]


class TestSimilarity:
    """Tests for the similarity functions."""

    def test_identical_text(self):
        assert sequence_similarity("Rename x", "rename   X") == 1.0
        assert token_jaccard_similarity("Rename x", "x rename") == 1.0

    def test_unrelated_text(self):
        assert sequence_similarity("Flatten loop", "Missing docstring") < 0.8
        assert token_jaccard_similarity("flatten loop", "missing docstring") == 0.0


class TestEnsembleMerger:
    """Tests for EnsembleMerger."""

    def test_three_instance_scenario(self):
        """Fuzzy duplicates across instances collapse into one boosted group."""
        result = EnsembleMerger().merge(Category.SIMPLIFY, _instances())

        assert len(result.findings) == 2
        merged_a, merged_b = result.findings

        assert merged_a.file == "file.ts"
        assert merged_a.agreement_count == 2
        assert merged_a.id == "a1"  # highest-confidence representative
        assert merged_a.confidence == pytest.approx(8.0 * 1.2)
        assert merged_a.line_range.start == 10
        assert merged_a.line_range.end == 13
        assert merged_a.instance_ids == ("simplify-1", "simplify-2")

        assert merged_b.file == "other.ts"
        assert merged_b.agreement_count == 1
        assert merged_b.confidence == 6.0

        assert result.duplicate_count == 1
        assert result.instance_count == 3

    def test_single_instance_is_idempotent(self):
        """A single instance's list merges to itself."""
        findings = [
            make_finding(start=2, summary="Flatten the nested if", finding_id="f1"),
            make_finding(start=3, summary="Flatten the nested if", finding_id="f2"),
            make_finding(start=8, summary="Inline the helper", confidence=6.0, finding_id="f3"),
        ]
        result = EnsembleMerger().merge(
            Category.SIMPLIFY,
            [InstanceFindings(instance_id="simplify-1", findings=findings)],
        )

        assert [f.id for f in result.findings] == ["f1", "f2", "f3"]
        for original, merged in zip(findings, result.findings):
            assert merged.agreement_count == 1
            assert merged.confidence == original.confidence
            assert merged.line_range == original.line_range
            assert merged.issue_summary == original.issue_summary

    def test_single_unsorted_instance_comes_back_in_canonical_order(self):
        """Values survive a single-instance merge; only the order is canonical."""
        findings = [
            make_finding(file="b.py", start=8, summary="Inline the helper", confidence=7.123456, finding_id="f3"),
            make_finding(file="a.py", start=20, summary="Split the loop", confidence=6.5, finding_id="f2"),
            make_finding(file="a.py", start=3, summary="Flatten the nested if", finding_id="f1"),
        ]
        result = EnsembleMerger().merge(
            Category.SIMPLIFY,
            [InstanceFindings(instance_id="simplify-1", findings=findings)],
        )

        assert [f.id for f in result.findings] == ["f1", "f2", "f3"]
        by_id = {f.id: f for f in result.findings}
        for original in findings:
            merged = by_id[original.id]
            assert merged.confidence == original.confidence
            assert merged.line_range == original.line_range
            assert merged.file == original.file
        assert result.duplicate_count == 0

    def test_merge_is_deterministic_across_arrival_order(self):
        instances = _instances()
        forward = EnsembleMerger().merge(Category.SIMPLIFY, instances)
        backward = EnsembleMerger().merge(
            Category.SIMPLIFY,
            [
                InstanceFindings(instance_id=i.instance_id, findings=list(reversed(i.findings)))
                for i in reversed(instances)
            ],
        )
        assert forward.findings == backward.findings

    def test_exact_duplicates_match_regardless_of_similarity(self):
        """Exact key matches do not consult the similarity function."""
        merger = EnsembleMerger(similarity=lambda a, b: 0.0)
        result = merger.merge(
            Category.CLARITY,
            [
                InstanceFindings("clarity-1", [make_finding(Category.CLARITY, summary="Bad name")]),
                InstanceFindings("clarity-2", [make_finding(Category.CLARITY, summary="bad  NAME")]),
            ],
        )
        assert len(result.findings) == 1
        assert result.findings[0].agreement_count == 2

    def test_far_apart_ranges_do_not_fuzzy_match(self):
        result = EnsembleMerger(line_tolerance=5).merge(
            Category.SIMPLIFY,
            [
                InstanceFindings("simplify-1", [make_finding(start=10, summary="Flatten nested loop")]),
                InstanceFindings("simplify-2", [make_finding(start=40, summary="Flatten nested loops")]),
            ],
        )
        assert len(result.findings) == 2

    def test_same_instance_findings_never_merge(self):
        result = EnsembleMerger().merge(
            Category.SIMPLIFY,
            [
                InstanceFindings(
                    "simplify-1",
                    [
                        make_finding(start=10, summary="Flatten nested loop", finding_id="x"),
                        make_finding(start=10, summary="Flatten nested loop", finding_id="y"),
                    ],
                )
            ],
        )
        assert len(result.findings) == 2

    def test_confidence_boost_is_capped(self):
        merger = EnsembleMerger(boost_table=(1.0, 1.2, 1.5))
        assert merger.boost(1) == 1.0
        assert merger.boost(2) == 1.2
        assert merger.boost(3) == 1.5
        assert merger.boost(7) == 1.5

        instances = [
            InstanceFindings(f"simplify-{n}", [make_finding(confidence=9.0, summary="Flatten")])
            for n in range(1, 4)
        ]
        result = merger.merge(Category.SIMPLIFY, instances)
        assert result.findings[0].confidence == 10.0

    def test_findings_of_other_categories_are_ignored(self):
        result = EnsembleMerger().merge(
            Category.SIMPLIFY,
            [InstanceFindings("simplify-1", [make_finding(Category.DEDUPE)])],
        )
        assert result.findings == []
        assert result.total_source_items == 0


class TestMergeStrategies:
    """Tests for union, consensus and weighted strategies."""

    def test_consensus_keeps_agreed_groups_only(self):
        result = EnsembleMerger().merge(
            Category.SIMPLIFY, _instances(), MergeStrategy.CONSENSUS, consensus_threshold=2
        )
        assert [f.file for f in result.findings] == ["file.ts"]
        assert result.filtered_count == 1

    @pytest.mark.parametrize("threshold", [1, 2, 3, 4])
    def test_union_is_superset_of_consensus(self, threshold):
        union = EnsembleMerger().merge(Category.SIMPLIFY, _instances(), MergeStrategy.UNION)
        consensus = EnsembleMerger().merge(
            Category.SIMPLIFY, _instances(), MergeStrategy.CONSENSUS, consensus_threshold=threshold
        )
        assert len(union.findings) >= len(consensus.findings)
        assert {f.id for f in consensus.findings} <= {f.id for f in union.findings}

    def test_weighted_orders_by_priority(self):
        result = EnsembleMerger().merge(Category.SIMPLIFY, _instances(), MergeStrategy.WEIGHTED)
        priorities = [f.confidence * f.agreement_count for f in result.findings]
        assert priorities == sorted(priorities, reverse=True)
        assert len(result.findings) == 2

    def test_summary_mentions_counts(self):
        summary = EnsembleMerger().merge(Category.SIMPLIFY, _instances()).summary()
        assert "[simplify]" in summary
        assert "Duplicates merged: 1" in summary
