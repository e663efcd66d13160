"""Safe auto-repair for one scope.

Only mechanically unambiguous fixes are applied. Anything that needs a human
decision (near-duplicates, empty hubs, unreadable files) is reported.
"""

from __future__ import annotations

import logging

from memkeep.errors import UnavailableError
from memkeep.graph.store import GraphStore
from memkeep.memory.store import MemoryStore
from memkeep.search.cache import EmbeddingCache
from memkeep.search.embedding import Embedder
from memkeep.search.semantic import DUPLICATE_THRESHOLD, similar_pairs

logger = logging.getLogger(__name__)


def repair(store: MemoryStore, embedder: Embedder | None = None) -> dict:
    """Rebuild the index, resync graph and frontmatter, refresh embeddings."""
    report: dict = {"scope": store.scope.value, "root": str(store.root), "actions": {}, "review": {}}
    actions = report["actions"]
    failures: list[dict] = []

    # 1. Index from files
    index = store.rebuild_index()
    actions["indexRebuilt"] = len(index)
    failures.extend({"id": i, "severity": "critical", "error": err} for i, err in index.skipped)

    # 2. Graph nodes and edges against the fresh index
    graph = GraphStore(store, cascade=False)
    actions["graphRebuiltFromFrontmatter"] = graph.rebuilt
    nodes = graph.sync_nodes()
    actions["nodesAdded"] = nodes["added"]
    actions["ghostNodesRemoved"] = nodes["removed"]
    broken = graph.broken_edges()
    actions["brokenEdgesRemoved"] = [
        f"{e.source} -[{e.label}]-> {e.target}" for e in broken
    ]
    graph.remove_edges(broken)
    graph.save()

    # 3. links frontmatter as a projection of the repaired graph
    actions["linksResynced"] = graph.sync_links()

    # 4. Embeddings
    cache = EmbeddingCache(store.root)
    orphans = cache.prune(index.ids())
    actions["embeddingsPruned"] = orphans
    if orphans:
        cache.save()
    if embedder is not None and embedder.is_available():
        try:
            actions["embeddingsGenerated"] = cache.refresh(store, embedder)["generated"]
        except UnavailableError as e:
            report["skipped"] = [f"embeddings: {e.message}"]
    else:
        report["skipped"] = ["embeddings: embedding provider unavailable"]

    # 5. Judgment calls, reported only
    review = report["review"]
    memories = list(store.iter_memories())
    vectors = cache.fresh_vectors(memories)
    review["nearDuplicates"] = [
        {"a": a, "b": b, "similarity": s} for a, b, s in similar_pairs(vectors, DUPLICATE_THRESHOLD)
    ]
    review["emptyHubs"] = graph.empty_hubs()

    report["failures"] = failures
    logger.info(
        "Repaired %s: %d indexed, %d ghost nodes, %d broken edges, %d links resynced",
        store.root,
        actions["indexRebuilt"],
        len(actions["ghostNodesRemoved"]),
        len(broken),
        len(actions["linksResynced"]),
    )
    return report
