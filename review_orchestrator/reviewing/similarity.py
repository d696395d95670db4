"""Pluggable text similarity for fuzzy finding matching."""

from __future__ import annotations

from difflib import SequenceMatcher
from typing import Callable

from review_orchestrator.core.models import normalize_text

SimilarityFunction = Callable[[str, str], float]
"""Contract: returns a similarity in [0, 1]; 1 means identical."""


def sequence_similarity(text1: str, text2: str) -> float:
    """Similarity using SequenceMatcher over normalized text."""
    a = normalize_text(text1)
    b = normalize_text(text2)
    if not a and not b:
        return 1.0
    return SequenceMatcher(None, a, b).ratio()


def token_jaccard_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of word sets; order-insensitive alternative."""
    first_set = set(normalize_text(text1).split())
    other_set = set(normalize_text(text2).split())
    if not first_set and not other_set:
        return 1.0
    union = len(first_set | other_set)
    return len(first_set & other_set) / union if union > 0 else 0.0
