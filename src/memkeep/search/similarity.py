"""Vector helpers, plain Python."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def normalize(vector: Sequence[float]) -> list[float]:
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0.0:
        return list(vector)
    return [x / norm for x in vector]


def rank(
    query: Sequence[float],
    candidates: Iterable[tuple[str, Sequence[float]]],
    threshold: float = 0.0,
    limit: int | None = None,
) -> list[tuple[str, float]]:
    """(id, similarity) pairs at or above threshold, most similar first."""
    scored = [(cid, cosine_similarity(query, vec)) for cid, vec in candidates]
    scored = [(cid, s) for cid, s in scored if s >= threshold]
    scored.sort(key=lambda x: (-x[1], x[0]))
    return scored[:limit] if limit else scored
