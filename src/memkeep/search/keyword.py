"""Case-insensitive keyword search over titles, tags and bodies."""

from __future__ import annotations

import logging

from memkeep.errors import MemkeepError, ValidationError
from memkeep.memory.store import MemoryStore

logger = logging.getLogger(__name__)

SNIPPET_BEFORE = 50
SNIPPET_AFTER = 100
SNIPPET_MAX = 150


def score_match(query: str, title: str, content: str, tags: list[str]) -> float:
    """Title hits outweigh tag hits, which outweigh body hits."""
    q = query.lower()
    score = 0.0
    if q in title.lower():
        score += 0.5
        if title.lower() == q:
            score += 0.3
    if any(q in t.lower() for t in tags):
        score += 0.3
    body = content.lower()
    if q in body:
        score += 0.2
        score += min(body.count(q) * 0.02, 0.1)
    return round(min(score, 1.0), 4)


def extract_snippet(content: str, query: str, max_length: int = SNIPPET_MAX) -> str:
    idx = content.lower().find(query.lower())
    if idx == -1:
        snippet = content[:max_length].strip()
        if len(content) > max_length:
            snippet = snippet[: max_length - 3] + "..."
        return snippet

    start = max(0, idx - SNIPPET_BEFORE)
    end = min(len(content), idx + len(query) + SNIPPET_AFTER)
    snippet = content[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    if len(snippet) > max_length:
        snippet = snippet[: max_length - 3] + "..."
    return snippet


def keyword_search(
    store: MemoryStore,
    query: str,
    type: str | None = None,
    tag: str | None = None,
    limit: int | None = 20,
) -> list[dict]:
    """Score every indexed memory of one scope against query, best first."""
    query = (query or "").strip()
    if not query:
        raise ValidationError(
            "Query is required", remediation="Pass a non-empty search query", field="query"
        )

    results = []
    for entry in store.list(type=type, tag=tag):
        try:
            content = store.read(entry.id).content
        except (MemkeepError, OSError) as e:
            logger.warning("Skipping %s during search: %s", entry.id, e)
            continue
        score = score_match(query, entry.title, content, entry.tags)
        if score <= 0:
            continue
        results.append(
            {
                "id": entry.id,
                "type": entry.type.value,
                "title": entry.title,
                "tags": list(entry.tags),
                "scope": store.scope.value,
                "score": score,
                "snippet": extract_snippet(content, query),
                "updated": entry.updated,
            }
        )

    results.sort(key=lambda r: (-r["score"], r["id"]))
    return results[:limit] if limit else results
