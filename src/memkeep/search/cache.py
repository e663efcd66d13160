"""Persisted embedding cache (embeddings.json), keyed by memory id.

An entry is only valid while its content hash matches the memory's current
title and body; stale entries are regenerated, never served.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from memkeep.errors import CorruptionError
from memkeep.fsutil import read_json, write_json
from memkeep.memory.store import MemoryStore
from memkeep.models import Memory, now_iso
from memkeep.search.embedding import Embedder

logger = logging.getLogger(__name__)

CACHE_FILENAME = "embeddings.json"
CACHE_VERSION = 1


def embedding_text(memory: Memory) -> str:
    return f"{memory.title}\n\n{memory.content}"


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


@dataclass
class CacheEntry:
    id: str
    vector: list[float]
    content_hash: str
    timestamp: str

    def to_dict(self) -> dict:
        return {"embedding": self.vector, "hash": self.content_hash, "timestamp": self.timestamp}


class EmbeddingCache:
    def __init__(self, root: Path) -> None:
        self.path = root / CACHE_FILENAME
        self.entries: dict[str, CacheEntry] = {}
        self.model: str | None = None
        self.existed = False
        self._load()

    def _load(self) -> None:
        try:
            data = read_json(self.path)
        except CorruptionError as e:
            logger.warning("Discarding corrupt embedding cache %s: %s", self.path, e.message)
            return
        if data is None:
            return
        self.existed = True
        self.model = data.get("model")
        for memory_id, raw in (data.get("memories") or {}).items():
            if not isinstance(raw, dict) or not raw.get("embedding"):
                continue
            self.entries[memory_id] = CacheEntry(
                memory_id, list(raw["embedding"]), raw.get("hash", ""), raw.get("timestamp", "")
            )

    def save(self) -> None:
        write_json(
            self.path,
            {
                "version": CACHE_VERSION,
                "model": self.model,
                "memories": {k: e.to_dict() for k, e in self.entries.items()},
            },
        )
        self.existed = True

    def __len__(self) -> int:
        return len(self.entries)

    def is_fresh(self, memory: Memory) -> bool:
        entry = self.entries.get(memory.id)
        return entry is not None and entry.content_hash == content_hash(embedding_text(memory))

    def put(self, memory: Memory, vector: list[float]) -> None:
        self.entries[memory.id] = CacheEntry(
            memory.id, vector, content_hash(embedding_text(memory)), now_iso()
        )

    def prune(self, valid_ids: set[str]) -> list[str]:
        orphans = [k for k in self.entries if k not in valid_ids]
        for k in orphans:
            del self.entries[k]
        return orphans

    def fresh_vectors(self, memories: list[Memory]) -> dict[str, list[float]]:
        """Vectors whose hash still matches; stale ones are left out."""
        return {m.id: self.entries[m.id].vector for m in memories if self.is_fresh(m)}

    def refresh(self, store: MemoryStore, embedder: Embedder) -> dict:
        """Embed every memory whose entry is missing or stale. Raises UnavailableError."""
        generated = []
        memories = list(store.iter_memories())
        if self.model and self.model != embedder.model:
            logger.info("Embedding model changed (%s -> %s), invalidating cache", self.model, embedder.model)
            self.entries.clear()
        try:
            for memory in memories:
                if self.is_fresh(memory):
                    continue
                self.put(memory, embedder.embed(embedding_text(memory)))
                generated.append(memory.id)
        finally:
            if generated:
                self.model = embedder.model
                self.save()
        if generated:
            logger.info("Generated %d embeddings in %s", len(generated), store.root)
        return {"generated": generated, "memories": memories}
