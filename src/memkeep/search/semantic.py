"""Semantic search and link suggestions over the embedding cache."""

from __future__ import annotations

import logging
from itertools import combinations

from memkeep.errors import UnavailableError, ValidationError
from memkeep.graph.labels import AUTO_LINK_LABEL
from memkeep.graph.store import GraphStore
from memkeep.memory.store import MemoryStore
from memkeep.search.cache import EmbeddingCache
from memkeep.search.embedding import Embedder
from memkeep.search.keyword import extract_snippet, keyword_search
from memkeep.search.similarity import cosine_similarity, rank

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.5
AUTO_LINK_THRESHOLD = 0.85
SUGGEST_THRESHOLD = 0.75
DUPLICATE_THRESHOLD = 0.92


def effective_threshold(threshold: float | None, for_auto_link: bool = False) -> float:
    """Auto-link intent never goes below AUTO_LINK_THRESHOLD."""
    if for_auto_link:
        return max(threshold if threshold is not None else AUTO_LINK_THRESHOLD, AUTO_LINK_THRESHOLD)
    return threshold if threshold is not None else DEFAULT_THRESHOLD


def _fallback(store: MemoryStore, query: str, threshold: float, for_auto_link: bool,
              limit: int | None, type: str | None, reason: str) -> dict:
    logger.warning("Semantic search unavailable, using keyword search: %s", reason)
    results = keyword_search(store, query, type=type, limit=limit)
    if for_auto_link:
        results = [r for r in results if r["score"] >= threshold]
    return {
        "mode": "keyword-fallback",
        "threshold": threshold,
        "fallbackReason": reason,
        "results": results,
    }


def semantic_search(
    store: MemoryStore,
    embedder: Embedder | None,
    query: str,
    threshold: float | None = None,
    for_auto_link: bool = False,
    limit: int | None = 20,
    type: str | None = None,
) -> dict:
    """Rank memories by cosine similarity to query; keyword search when the provider is down."""
    query = (query or "").strip()
    if not query:
        raise ValidationError(
            "Query is required", remediation="Pass a non-empty search query", field="query"
        )
    floor = effective_threshold(threshold, for_auto_link)

    if embedder is None or not embedder.is_available():
        return _fallback(store, query, floor, for_auto_link, limit, type, "embedding provider unavailable")

    cache = EmbeddingCache(store.root)
    try:
        refreshed = cache.refresh(store, embedder)
        query_vector = embedder.embed(query)
    except UnavailableError as e:
        return _fallback(store, query, floor, for_auto_link, limit, type, e.message)

    memories = {m.id: m for m in refreshed["memories"] if not type or m.type.value == type}
    vectors = cache.fresh_vectors(list(memories.values()))
    results = []
    for memory_id, similarity in rank(query_vector, vectors.items(), threshold=floor, limit=limit):
        memory = memories[memory_id]
        results.append(
            {
                "id": memory.id,
                "type": memory.type.value,
                "title": memory.title,
                "tags": list(memory.tags),
                "scope": store.scope.value,
                "score": round(similarity, 4),
                "snippet": extract_snippet(memory.content, query),
            }
        )
    return {"mode": "semantic", "threshold": floor, "results": results}


def similar_pairs(vectors: dict[str, list[float]], threshold: float) -> list[tuple[str, str, float]]:
    """Unordered id pairs with similarity >= threshold, most similar first."""
    pairs = []
    for (a, va), (b, vb) in combinations(sorted(vectors.items()), 2):
        s = cosine_similarity(va, vb)
        if s >= threshold:
            pairs.append((a, b, round(s, 4)))
    pairs.sort(key=lambda p: (-p[2], p[0], p[1]))
    return pairs


def suggest_links(
    store: MemoryStore,
    graph: GraphStore,
    embedder: Embedder | None,
    threshold: float = SUGGEST_THRESHOLD,
    auto_link: bool = False,
    limit: int | None = 50,
) -> dict:
    """Propose links between unlinked but similar memories; optionally create them."""
    if embedder is None or not embedder.is_available():
        raise UnavailableError(
            "Embedding provider unavailable, cannot suggest links",
            remediation="Start Ollama or set MEMKEEP_EMBEDDING_ENDPOINT",
        )
    cache = EmbeddingCache(store.root)
    refreshed = cache.refresh(store, embedder)
    vectors = cache.fresh_vectors(refreshed["memories"])
    adj = graph.adjacency

    suggestions = []
    for a, b, score in similar_pairs(vectors, threshold):
        if b in adj.neighbours(a):
            continue
        suggestions.append({"source": a, "target": b, "similarity": score})
    if limit:
        suggestions = suggestions[:limit]

    linked = []
    if auto_link:
        floor = effective_threshold(threshold, for_auto_link=True)
        for s in suggestions:
            if s["similarity"] < floor:
                continue
            result = graph.link(s["source"], s["target"], AUTO_LINK_LABEL)
            if not result["alreadyExists"]:
                linked.append(s)
    return {"threshold": threshold, "suggestions": suggestions, "linked": linked}
