"""Cosine similarity between embedding vectors."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from clinical_rag.errors import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``a·b / (|a||b|)``.

    A zero-magnitude (or empty) vector on either side scores ``0.0``.

    Raises
    ------
    DimensionMismatchError
        When the vectors have different lengths.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def score_chunks(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> list[float]:
    """Score every vector against *query* in one linear pass.

    Equivalent to calling :func:`cosine_similarity` per vector, vectorised
    as a single matrix product.
    """
    if not vectors:
        return []
    for vector in vectors:
        if len(vector) != len(query):
            raise DimensionMismatchError(len(query), len(vector))

    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return [0.0] * len(vectors)

    norms = np.linalg.norm(matrix, axis=1)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms == 0, 0.0, dots / (norms * q_norm))
    return [float(s) for s in scores]
