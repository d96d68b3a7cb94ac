"""Score normalization shared by retrieval and reranking."""

from __future__ import annotations

import math
from typing import Any, Callable, Sequence


def zscore_normalizer(scores: Sequence[float]) -> Callable[[float], float]:
    """
    Build a z-score mapping for a list of raw scores.

    Uses the population standard deviation. A zero deviation is replaced by 1 so
    equal inputs map to 0 without dividing by zero. An empty list yields mean 0
    and deviation 1.
    """
    values = [float(score) for score in scores]
    count = max(1, len(values))
    mean = sum(values) / count
    variance = sum((value - mean) ** 2 for value in values) / count
    std = math.sqrt(variance) or 1.0

    def normalize(score: float) -> float:
        return (float(score) - mean) / std

    return normalize


def normalize_zscores(scores: Sequence[float]) -> list[float]:
    """Z-normalize every score of ``scores`` against the list itself."""
    normalize = zscore_normalizer(scores)
    return [normalize(score) for score in scores]


def sigmoid(x: float) -> float:
    """Numerically safe sigmoid used for reranker logit normalization."""
    try:
        return 1.0 / (1.0 + math.exp(-x))
    except OverflowError:
        return 0.0


def normalize_sigmoid_scores(raw_scores: Any) -> list[float]:
    """
    Normalize reranker logits to [0, 1].

    Accepts lists, tuples, numpy arrays, or scalar numeric values.
    """
    if raw_scores is None:
        return []
    if hasattr(raw_scores, "tolist"):
        raw_scores = raw_scores.tolist()
    if isinstance(raw_scores, (int, float)):
        raw_scores = [raw_scores]
    return [sigmoid(float(score)) for score in list(raw_scores)]
