"""
Vector normalization, cosine scoring and ranking.

Embeddings are compared by direction only: both operands are rescaled to
unit length and their cosine similarity is mapped onto a 0-100 score.
Negative similarities (opposite colour profiles) clamp to 0 and
zero-magnitude vectors always score 0, so ranking never fails on black
or flat images.

The display threshold is applied after ranking and never influences how
scores are computed.
"""

import os
import logging
from typing import Iterable, List, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = int(os.environ.get("DEFAULT_TOP_K", "10"))
DEFAULT_THRESHOLD = int(os.environ.get("DEFAULT_THRESHOLD", "30"))

SimilarityScore = Tuple[int, float]


def normalize_vector(vector: Sequence[float]) -> np.ndarray:
    """
    Rescale a vector to unit Euclidean norm.

    Zero-magnitude and non-finite inputs collapse to the all-zero vector
    of the same length instead of raising.

    Args:
        vector: Any 1-D sequence of numbers.

    Returns:
        New float64 array; the input is never modified.
    """
    values = np.asarray(vector, dtype=np.float64).ravel()
    magnitude = float(np.sqrt(np.sum(values * values)))
    if not np.isfinite(magnitude) or magnitude == 0:
        return np.zeros_like(values)
    return values / magnitude


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors in [-1, 1].

    If the lengths differ, both vectors are truncated to the shorter one.
    Returns 0.0 when either operand has zero magnitude.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    length = min(a.size, b.size)
    a, b = a[:length], b[:length]

    mag_a = float(np.dot(a, a))
    mag_b = float(np.dot(b, b))
    if mag_a == 0 or mag_b == 0 or not np.isfinite(mag_a * mag_b):
        return 0.0

    similarity = float(np.dot(a, b)) / float(np.sqrt(mag_a * mag_b))
    return float(np.clip(similarity, -1.0, 1.0))


def similarity_score(a: Sequence[float], b: Sequence[float]) -> float:
    """Map cosine similarity onto a 0-100 score, clamping negatives to 0."""
    return max(0.0, cosine_similarity(normalize_vector(a), normalize_vector(b))) * 100


def rank_results(scores: Iterable[SimilarityScore]) -> List[SimilarityScore]:
    """
    Sort (id, score) pairs by score, highest first.

    The sort is stable, so equal scores keep their catalog order.
    """
    return sorted(scores, key=lambda item: -item[1])


def rank_embeddings(query: Sequence[float],
                    catalog: Iterable[Tuple[int, Sequence[float]]],
                    top_k: int = DEFAULT_TOP_K) -> List[SimilarityScore]:
    """
    Score every catalog embedding against a query and keep the best top_k.

    Args:
        query: Query embedding, normalized or not.
        catalog: (id, embedding) pairs in catalog order.
        top_k: Maximum number of results to return.

    Returns:
        (id, score) pairs sorted by score descending, at most top_k long.
    """
    if top_k <= 0:
        return []

    query_vector = normalize_vector(query)
    scores = [
        (entry_id, similarity_score(query_vector, embedding))
        for entry_id, embedding in catalog
    ]
    return rank_results(scores)[:top_k]


def filter_by_threshold(scores: Iterable[SimilarityScore],
                        threshold: float = DEFAULT_THRESHOLD) -> List[SimilarityScore]:
    """
    Keep only results whose score meets the display threshold.

    Raises:
        ValueError: If threshold is outside [0, 100].
    """
    if not 0 <= threshold <= 100:
        raise ValueError(f"Threshold must be within [0, 100], got {threshold}")
    return [item for item in scores if item[1] >= threshold]
