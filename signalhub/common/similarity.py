"""
Similarity Engine

Pure functions comparing content pairs on two separate scales:

- Cosine scale (0.0-1.0, strictly [-1, 1]): embeddings compared directly,
  e.g. feature matching and group embeddings. Default threshold 0.5.
- Percent scale (0-100): keyword matching surfaced to humans, e.g.
  thread-to-issue classification. Default threshold 60.

Scores from one scale are never compared against a threshold from the
other; ``passes_threshold`` enforces that at runtime.
"""

import re
from enum import Enum
from typing import Iterable, List, Optional, Set

import numpy as np

DEFAULT_MIN_SIMILARITY_PERCENT = 60.0
DEFAULT_MIN_SIMILARITY_COSINE = 0.5
DEFAULT_DUPLICATE_THRESHOLD = 0.9

_PUNCTUATION = re.compile(r"[^\w\s]")


class Scale(str, Enum):
    """Scale a similarity score is expressed on"""
    COSINE = "cosine"  # 0.0 - 1.0
    PERCENT = "percent"  # 0 - 100


def _as_padded_pair(a: Iterable[float], b: Iterable[float]):
    v1 = np.asarray(list(a), dtype=float)
    v2 = np.asarray(list(b), dtype=float)
    if v1.shape != v2.shape:
        # Vectors from one model always agree; padding only guards stale rows
        size = max(v1.size, v2.size)
        v1 = np.pad(v1, (0, size - v1.size))
        v2 = np.pad(v2, (0, size - v2.size))
    return v1, v2


def cosine_similarity(a: Iterable[float], b: Iterable[float]) -> float:
    """
    Cosine similarity between two vectors.

    Args:
        a: First embedding vector
        b: Second embedding vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude
    """
    v1, v2 = _as_padded_pair(a, b)
    if v1.size == 0:
        return 0.0

    norm = float(np.linalg.norm(v1) * np.linalg.norm(v2))
    if norm == 0.0:
        return 0.0

    similarity = float(np.dot(v1, v2) / norm)

    # Clamp to valid range (numerical precision issues)
    return max(-1.0, min(1.0, similarity))


def batch_cosine_similarity(
    query_vec: Iterable[float],
    vectors: List[List[float]]
) -> List[float]:
    """
    Cosine similarity between a query and multiple vectors.

    Args:
        query_vec: Query embedding vector
        vectors: Embedding vectors to compare against

    Returns:
        One score per vector, in input order
    """
    if not vectors:
        return []

    query = np.asarray(list(query_vec), dtype=float)
    width = max(query.size, max(len(v) for v in vectors))
    query = np.pad(query, (0, width - query.size))
    matrix = np.array([np.pad(np.asarray(v, dtype=float), (0, width - len(v))) for v in vectors])

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / np.where(norms > 0, norms, 1.0), 0.0)

    return np.clip(scores, -1.0, 1.0).tolist()


def extract_words(text: Optional[str]) -> Set[str]:
    """Lowercased word set with punctuation stripped and words of length <= 2 dropped"""
    if not text:
        return set()
    cleaned = _PUNCTUATION.sub(" ", text.lower())
    return {w for w in cleaned.split() if len(w) > 2}


def keyword_similarity(text_a: Optional[str], text_b: Optional[str]) -> float:
    """
    Jaccard similarity over the word sets of two texts.

    Returns:
        Similarity in [0, 1]; 0.0 when either side has no usable words
    """
    words_a = extract_words(text_a)
    words_b = extract_words(text_b)
    if not words_a or not words_b:
        return 0.0

    intersection = len(words_a & words_b)
    union = len(words_a | words_b)
    return intersection / union if union else 0.0


def keyword_match_percent(text_a: Optional[str], text_b: Optional[str]) -> float:
    """Keyword similarity on the percent scale (0-100), rounded to 2 places"""
    return round(keyword_similarity(text_a, text_b) * 100.0, 2)


def matched_terms(text_a: Optional[str], text_b: Optional[str]) -> List[str]:
    """Words shared by both texts, sorted for stable output"""
    return sorted(extract_words(text_a) & extract_words(text_b))


def threshold_fits_scale(threshold: float, scale: Scale) -> bool:
    """False when ``threshold`` can only belong to the other scale"""
    if scale == Scale.COSINE:
        return threshold <= 1.0
    return not 0.0 < threshold < 1.0


def passes_threshold(score: float, threshold: float, scale: Scale) -> bool:
    """
    Compare a score against a threshold on the same scale.

    Raises:
        ValueError: if the threshold cannot belong to ``scale`` (e.g. a
            percent threshold of 60 used with a cosine score)
    """
    if not threshold_fits_scale(threshold, scale):
        if scale == Scale.COSINE:
            raise ValueError(f"Threshold {threshold} is on the percent scale, expected cosine (<= 1.0)")
        raise ValueError(f"Threshold {threshold} looks like a cosine value, expected percent (0-100)")
    return score >= threshold
