"""Cosine similarity primitive and vector helpers."""

from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as _pairwise_cosine


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors, in [-1, 1].

    A zero vector has no direction; its similarity to anything is 0.0.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Embeddings must have the same dimension ({va.size} != {vb.size})")

    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def similarity_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine similarity for a stack of embeddings (n x n)."""
    matrix = np.asarray(embeddings, dtype=float)
    if matrix.ndim != 2:
        raise ValueError("Embeddings must form a 2-D array of equal-length vectors")
    if matrix.shape[0] == 0:
        return np.zeros((0, 0))
    return np.clip(_pairwise_cosine(matrix), -1.0, 1.0)


def centroid(embeddings: Sequence[Sequence[float]]) -> list[float]:
    """Element-wise mean of member embeddings."""
    matrix = np.asarray(embeddings, dtype=float)
    if matrix.size == 0:
        return []
    return matrix.mean(axis=0).tolist()


def mean_pairwise_similarity(embeddings: Sequence[Sequence[float]]) -> float:
    """Average similarity over all unordered pairs; 1.0 for fewer than two vectors."""
    n = len(embeddings)
    if n < 2:
        return 1.0
    sims = similarity_matrix(embeddings)
    upper = sims[np.triu_indices(n, k=1)]
    return float(upper.mean())
