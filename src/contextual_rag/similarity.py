"""Cosine similarity helpers shared by chunking and reranking."""

from __future__ import annotations

from math import sqrt


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to [-1, 1].

    Empty vectors, mismatched lengths and zero-magnitude vectors score 0.
    """

    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, numerator / (norm_a * norm_b)))


def cosine_distance(a: list[float], b: list[float]) -> float:
    return 1.0 - cosine_similarity(a, b)


def adjacent_distances(vectors: list[list[float]]) -> list[float]:
    """Distances between each vector and its right neighbour (`n-1` values)."""

    return [cosine_distance(vectors[i], vectors[i + 1]) for i in range(len(vectors) - 1)]
