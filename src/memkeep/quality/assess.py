"""Per-memory quality checks and scoring.

Every issue carries a fixed deduction; a memory starts at 100 and the score is
clamped to [0, 100].
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from memkeep.errors import MemkeepError
from memkeep.graph.store import GraphStore
from memkeep.memory.store import MemoryStore
from memkeep.models import Memory, parse_timestamp
from memkeep.search.cache import EmbeddingCache
from memkeep.search.similarity import cosine_similarity

logger = logging.getLogger(__name__)

DEDUCTIONS = {
    "critical": 30,
    "error": 30,
    "high": 20,
    "medium": 10,
    "warning": 10,
    "low": 5,
    "info": 0,
}

STALE_DAYS = 90
MIN_CONTENT_CHARS = 10
ORPHAN_MIN_NODES = 5
DUPLICATE_SIMILARITY = 0.92
OUTLIER_SIMILARITY = 0.3
OUTLIER_NEIGHBOURS = 3

_FILE_REF = re.compile(r"`([^`\s]+\.(?:ts|js|py|rs|go|md))`")


@dataclass
class QualityIssue:
    type: str
    severity: str
    message: str
    details: str | None = None

    @property
    def deduction(self) -> int:
        return DEDUCTIONS[self.severity]

    def to_dict(self) -> dict:
        out = {"type": self.type, "severity": self.severity, "message": self.message,
               "deduction": self.deduction}
        if self.details:
            out["details"] = self.details
        return out


def score_issues(issues: list[QualityIssue]) -> int:
    return max(0, min(100, 100 - sum(i.deduction for i in issues)))


def score_to_rating(score: int) -> str:
    if score >= 90:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "needs_attention"
    if score >= 25:
        return "poor"
    return "critical"


class ScopeContext:
    """Graph, vectors and paths shared by every assessment in one scope."""

    def __init__(
        self,
        store: MemoryStore,
        graph: GraphStore,
        project_root: Path | None = None,
        deep: bool = False,
        now: datetime | None = None,
    ) -> None:
        self.store = store
        self.graph = graph
        self.project_root = project_root or Path.cwd()
        self.now = now or datetime.now(timezone.utc)
        self.deep = deep
        self.vectors: dict[str, list[float]] | None = None
        if deep:
            cache = EmbeddingCache(store.root)
            if cache.existed and len(cache):
                self.vectors = cache.fresh_vectors(list(store.iter_memories()))


def _structural_checks(memory: Memory, ctx: ScopeContext) -> list[QualityIssue]:
    issues = []
    if not memory.title.strip():
        issues.append(QualityIssue("missing_title", "high", "Memory has no title"))
    if len(memory.content.strip()) < MIN_CONTENT_CHARS:
        issues.append(QualityIssue("empty_content", "high", "Memory content is empty or very short"))
    if not memory.tags:
        issues.append(QualityIssue("missing_tags", "medium", "Memory has no tags"))

    graph = ctx.graph
    if memory.id not in graph.nodes:
        issues.append(QualityIssue("not_in_graph", "medium", "Memory is not in the graph"))
    elif len(graph.nodes) > ORPHAN_MIN_NODES and graph.adjacency.degree(memory.id) == 0:
        issues.append(QualityIssue("orphaned", "medium", "Memory has no graph connections (orphaned)"))

    for ref in _FILE_REF.findall(memory.content):
        if not (ref.startswith("src/") or ref.startswith("./")):
            continue
        if not (ctx.project_root / ref).exists():
            issues.append(
                QualityIssue("stale_file_reference", "medium", f"References non-existent file: {ref}", ref)
            )

    updated = parse_timestamp(memory.updated)
    if updated is not None:
        days = (ctx.now - updated).days
        if days > STALE_DAYS:
            issues.append(QualityIssue("stale", "low", f"Memory not updated in {days} days"))
    return issues


def _embedding_checks(memory: Memory, ctx: ScopeContext) -> tuple[list[QualityIssue], bool]:
    """Near-duplicate and cluster-outlier checks. Returns (issues, ran)."""
    vectors = ctx.vectors
    if not vectors or memory.id not in vectors:
        return [], False

    mine = vectors[memory.id]
    sims = sorted(
        ((cosine_similarity(mine, v), other) for other, v in vectors.items() if other != memory.id),
        reverse=True,
    )
    issues = []
    for sim, other in sims:
        if sim < DUPLICATE_SIMILARITY:
            break
        issues.append(
            QualityIssue("near_duplicate", "medium", f"Very similar to {other} ({sim:.2f})", other)
        )
    top = [s for s, _ in sims[:OUTLIER_NEIGHBOURS]]
    if len(top) == OUTLIER_NEIGHBOURS and sum(top) / len(top) < OUTLIER_SIMILARITY:
        issues.append(
            QualityIssue("cluster_outlier", "low", "Memory is far from every other memory in its scope")
        )
    return issues, True


def assess_memory(memory: Memory, ctx: ScopeContext) -> dict:
    issues = _structural_checks(memory, ctx)
    tiers = ["structural"]
    skipped = []
    if ctx.deep:
        extra, ran = _embedding_checks(memory, ctx)
        issues.extend(extra)
        if ran:
            tiers.append("embedding")
        else:
            skipped.append("embedding: no current cache entry, run repair to generate embeddings")
    score = score_issues(issues)
    result = {
        "id": memory.id,
        "scope": ctx.store.scope.value,
        "score": score,
        "rating": score_to_rating(score),
        "issues": [i.to_dict() for i in issues],
        "checks": tiers,
    }
    if skipped:
        result["skipped"] = skipped
    return result


def assess(ctx: ScopeContext, memory_id: str) -> dict:
    return assess_memory(ctx.store.read(memory_id), ctx)


def audit(ctx: ScopeContext, threshold: int = 100) -> dict:
    """Assess every memory. Unreadable memories count as critical, never abort the scan."""
    summary = {r: 0 for r in ("excellent", "good", "needs_attention", "poor", "critical")}
    results = []
    ids = list(ctx.store.index.entries)
    for memory_id in ids:
        try:
            result = assess(ctx, memory_id)
        except (MemkeepError, OSError) as e:
            logger.error("Audit failed for %s: %s", memory_id, e)
            issue = QualityIssue("parse_error", "critical", f"Could not assess memory: {e}")
            result = {
                "id": memory_id,
                "scope": ctx.store.scope.value,
                "score": 0,
                "rating": "critical",
                "issues": [issue.to_dict()],
                "checks": [],
            }
        summary[result["rating"]] += 1
        if result["score"] < threshold:
            results.append(result)
    results.sort(key=lambda r: (r["score"], r["id"]))
    return {"scanned": len(ids), "threshold": threshold, "summary": summary, "results": results}
