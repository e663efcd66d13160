"""Scope health: drift between the memory files, index.json and graph.json."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from memkeep.graph.store import GraphStore
from memkeep.memory.index import INDEX_FILENAME, memory_files
from memkeep.memory.store import MemoryStore
from memkeep.models import now_iso
from memkeep.quality.assess import ORPHAN_MIN_NODES, ScopeContext, audit, score_to_rating
from memkeep.search.cache import EmbeddingCache
from memkeep.search.semantic import DUPLICATE_THRESHOLD, similar_pairs

logger = logging.getLogger(__name__)

MAX_DETAILS = 10

# (severity, deduction, per_occurrence)
HEALTH_CHECKS = {
    "missing_index": ("critical", 30, False),
    "corrupt_index": ("critical", 30, False),
    "missing_graph": ("critical", 30, False),
    "corrupt_graph": ("critical", 30, False),
    "index_drift": ("warning", 10, False),
    "sync_mismatch": ("warning", 10, False),
    "ghost_nodes": ("warning", 10, True),
    "broken_edges": ("warning", 10, True),
    "low_connectivity": ("warning", 10, False),
    "near_duplicates": ("warning", 10, False),
    "empty_hubs": ("info", 0, False),
}


@dataclass
class HealthIssue:
    type: str
    count: int = 1
    details: list[str] = field(default_factory=list)

    @property
    def severity(self) -> str:
        return HEALTH_CHECKS[self.type][0]

    @property
    def deduction(self) -> int:
        _, penalty, per_occurrence = HEALTH_CHECKS[self.type]
        return penalty * self.count if per_occurrence else penalty

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "count": self.count,
            "deduction": self.deduction,
            "details": self.details[:MAX_DETAILS],
        }


def _status(score: int) -> str:
    if score >= 90:
        return "healthy"
    if score >= 70:
        return "warning"
    return "critical"


def health_report(
    store: MemoryStore,
    project_root: Path | None = None,
    deep: bool = False,
) -> dict:
    """Read-only consistency report for one scope; nothing is written."""
    issues: list[HealthIssue] = []
    root = store.root
    if not root.exists():
        return {
            "scope": store.scope.value,
            "root": str(root),
            "score": 100,
            "rating": "excellent",
            "status": "empty",
            "stats": {"totalMemories": 0, "totalNodes": 0, "totalEdges": 0},
            "issues": [],
            "timestamp": now_iso(),
        }
    index_path = root / INDEX_FILENAME
    had_index = index_path.exists()

    index = store.index  # rebuilds in memory when missing/corrupt, never saves here
    if not had_index:
        issues.append(HealthIssue("missing_index"))
    elif index.rebuilt:
        issues.append(HealthIssue("corrupt_index"))
    else:
        on_disk = {p.stem for p in memory_files(root)}
        indexed = index.ids()
        drift = sorted(on_disk ^ indexed)
        if drift:
            issues.append(HealthIssue("index_drift", len(drift), drift))

    graph = GraphStore(store, cascade=False)
    if not graph.existed:
        issues.append(HealthIssue("missing_graph"))
    elif graph.rebuilt:
        issues.append(HealthIssue("corrupt_graph"))

    missing_nodes = sorted(i for i in index.ids() if i not in graph.nodes)
    if missing_nodes and graph.existed:
        issues.append(HealthIssue("sync_mismatch", len(missing_nodes), missing_nodes))

    ghosts = graph.ghost_nodes()
    if ghosts:
        issues.append(HealthIssue("ghost_nodes", len(ghosts), ghosts))

    broken = graph.broken_edges()
    if broken:
        issues.append(
            HealthIssue(
                "broken_edges",
                len(broken),
                [f"{e.source} -[{e.label}]-> {e.target}" for e in broken],
            )
        )

    adj = graph.adjacency
    total_nodes = len(graph.nodes)
    orphans = [n for n in graph.nodes if adj.degree(n) == 0]
    ratio = (total_nodes - len(orphans)) / total_nodes if total_nodes else 1.0
    if ratio < 0.5 and total_nodes > ORPHAN_MIN_NODES:
        issues.append(HealthIssue("low_connectivity", 1, orphans))

    hubs = graph.empty_hubs()
    if hubs:
        issues.append(HealthIssue("empty_hubs", len(hubs), hubs))

    skipped = []
    cache = EmbeddingCache(root)
    if deep:
        if cache.existed and len(cache):
            vectors = cache.fresh_vectors(list(store.iter_memories()))
            pairs = similar_pairs(vectors, DUPLICATE_THRESHOLD)
            if pairs:
                issues.append(
                    HealthIssue("near_duplicates", len(pairs), [f"{a} ~ {b} ({s:.2f})" for a, b, s in pairs])
                )
        else:
            skipped.append("near_duplicates: embedding cache absent, run repair to generate it")

    score = max(0, min(100, 100 - sum(i.deduction for i in issues)))
    ctx = ScopeContext(store, graph, project_root=project_root, deep=deep)
    quality = audit(ctx, threshold=0)["summary"]

    report = {
        "scope": store.scope.value,
        "root": str(root),
        "score": score,
        "rating": score_to_rating(score),
        "status": _status(score),
        "stats": {
            "totalMemories": len(index),
            "totalNodes": total_nodes,
            "totalEdges": len(graph.edges),
            "orphanedNodes": len(orphans),
            "connectivityRatio": round(ratio, 3),
            "embeddings": len(cache),
        },
        "quality": quality,
        "issues": [i.to_dict() for i in issues],
        "timestamp": now_iso(),
    }
    if skipped:
        report["skipped"] = skipped
    logger.debug("Health check %s: score %d, %d issues", root, score, len(issues))
    return report
