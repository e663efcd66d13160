"""index.json: metadata cache for one scope root.

The index mirrors the memory files' headers so lookups and listings never scan
the directory. When it is missing or unreadable it is rebuilt from the files.
"""

from __future__ import annotations

import logging
from pathlib import Path

from memkeep.errors import CorruptionError, MemkeepError
from memkeep.fsutil import read_json, write_json
from memkeep.memory.fileformat import read_memory_file
from memkeep.models import (
    PERMANENT_DIR,
    TEMPORARY_DIR,
    IndexEntry,
    Scope,
    now_iso,
)

logger = logging.getLogger(__name__)

INDEX_VERSION = "1.0.0"
INDEX_FILENAME = "index.json"


def memory_files(root: Path) -> list[Path]:
    """All memory files under permanent/ and temporary/, sorted by path."""
    files: list[Path] = []
    for sub in (PERMANENT_DIR, TEMPORARY_DIR):
        d = root / sub
        if d.is_dir():
            files.extend(sorted(d.glob("*.md")))
    return files


class MemoryIndex:
    """In-memory id -> IndexEntry map, loaded fresh per operation."""

    def __init__(self, root: Path, scope: Scope, entries: dict[str, IndexEntry] | None = None) -> None:
        self.root = root
        self.scope = scope
        self.entries: dict[str, IndexEntry] = entries or {}
        self.rebuilt = False
        self.skipped: list[tuple[str, str]] = []

    @property
    def path(self) -> Path:
        return self.root / INDEX_FILENAME

    def __contains__(self, memory_id: str) -> bool:
        return memory_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, memory_id: str) -> IndexEntry | None:
        return self.entries.get(memory_id)

    def ids(self) -> set[str]:
        return set(self.entries)

    # ── Load / save ──────────────────────────────────────────

    @classmethod
    def load(cls, root: Path, scope: Scope, autorepair: bool = True) -> MemoryIndex:
        """Load index.json, rebuilding from files when it is missing or corrupt."""
        index = cls(root, scope)
        try:
            data = read_json(index.path)
        except CorruptionError as e:
            logger.warning("Corrupt index in %s, rebuilding: %s", root, e.message)
            data = None
        else:
            if data is not None and not isinstance(data.get("memories"), list):
                logger.warning("Index in %s has no memories list, rebuilding", root)
                data = None

        if data is None:
            index.rebuild()
            if autorepair and index.root.is_dir():
                index.save()
            return index

        for raw in data["memories"]:
            try:
                entry = IndexEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping malformed index entry %r: %s", raw, e)
                continue
            index.entries[entry.id] = entry
        return index

    def save(self) -> None:
        write_json(
            self.path,
            {
                "version": INDEX_VERSION,
                "lastUpdated": now_iso(),
                "memories": [e.to_dict() for e in self.entries.values()],
            },
        )
        logger.debug("Saved index %s (%d memories)", self.path, len(self.entries))

    def rebuild(self) -> MemoryIndex:
        """Rescan every memory file and re-derive its entry from the header."""
        entries: list[IndexEntry] = []
        self.skipped = []
        for path in memory_files(self.root):
            try:
                memory = read_memory_file(path)
            except (MemkeepError, OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable memory file %s: %s", path, e)
                self.skipped.append((path.stem, str(e)))
                continue
            memory.id = path.stem
            rel = path.relative_to(self.root).as_posix()
            entries.append(IndexEntry.from_memory(memory, self.scope, rel))

        entries.sort(key=lambda e: (e.created, e.id))
        self.entries = {e.id: e for e in entries}
        self.rebuilt = True
        logger.info("Rebuilt index for %s (%d memories)", self.root, len(self.entries))
        return self

    # ── Mutation ─────────────────────────────────────────────

    def put(self, entry: IndexEntry) -> None:
        self.entries[entry.id] = entry

    def remove(self, memory_id: str) -> bool:
        return self.entries.pop(memory_id, None) is not None

    def filter(
        self,
        type: str | None = None,
        tag: str | None = None,
        sort_by: str = "updated",
        descending: bool = True,
    ) -> list[IndexEntry]:
        items = self.entries.values()
        if type:
            items = [e for e in items if e.type.value == type]
        if tag:
            items = [e for e in items if tag in e.tags]
        key = {
            "updated": lambda e: e.updated,
            "created": lambda e: e.created,
            "title": lambda e: e.title.lower(),
            "id": lambda e: e.id,
        }.get(sort_by, lambda e: e.updated)
        return sorted(items, key=key, reverse=descending)
