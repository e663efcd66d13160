"""MemoryStore: CRUD for the memories of one scope root.

Markdown files are the source of truth. The index is loaded once per store
instance (one store per operation) and saved after every mutation.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any

from memkeep.errors import ConflictError, MemkeepError, NotFoundError, ValidationError
from memkeep.fsutil import atomic_write_text, create_text
from memkeep.memory.fileformat import TYPED_FIELDS, read_memory_file, render_memory
from memkeep.memory.index import MemoryIndex
from memkeep.memory.slug import generate_unique_id
from memkeep.models import (
    PERMANENT_DIR,
    TEMPORARY_DIR,
    IndexEntry,
    Memory,
    MemoryType,
    Scope,
    Severity,
    now_iso,
)

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"^[^./\\][^/\\]*$")

UPDATABLE_FIELDS = {"title", "content", "tags", "severity", "source", "project", "extra"}

DeleteHook = Callable[[str], dict | None]


def parse_type(value: str | MemoryType) -> MemoryType:
    if isinstance(value, MemoryType):
        return value
    try:
        return MemoryType(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Invalid memory type: {value!r}",
            remediation=f"Use one of: {', '.join(MemoryType.values())}",
            field="type",
        ) from None


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    seen: list[str] = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _check_severity(severity: str | None) -> str | None:
    if severity is None:
        return None
    if severity not in Severity.values():
        raise ValidationError(
            f"Invalid severity: {severity!r}",
            remediation=f"Use one of: {', '.join(Severity.values())}",
            field="severity",
        )
    return severity


def _check_extra(extra: dict[str, Any] | None) -> dict[str, Any]:
    extra = dict(extra or {})
    reserved = sorted(set(extra) & set(TYPED_FIELDS))
    if reserved:
        raise ValidationError(
            f"Extra fields shadow built-in header fields: {', '.join(reserved)}",
            remediation="Pass these as regular arguments, or rename the extra fields",
            field="extra",
        )
    return extra


class MemoryStore:
    """Read/write access to the memories of a single scope."""

    def __init__(self, root: Path, scope: Scope, autorepair: bool = True) -> None:
        self.root = root
        self.scope = scope
        self.autorepair = autorepair
        self._index: MemoryIndex | None = None
        self._delete_hooks: list[DeleteHook] = []

    # ── Index ────────────────────────────────────────────────

    @property
    def index(self) -> MemoryIndex:
        if self._index is None:
            self._index = MemoryIndex.load(self.root, self.scope, autorepair=self.autorepair)
        return self._index

    def rebuild_index(self) -> MemoryIndex:
        self._index = MemoryIndex(self.root, self.scope).rebuild()
        self._index.save()
        return self._index

    def exists(self, memory_id: str) -> bool:
        return memory_id in self.index

    def on_delete(self, hook: DeleteHook) -> None:
        """Register a callback run after a memory is deleted (graph cascade)."""
        self._delete_hooks.append(hook)

    # ── Paths ────────────────────────────────────────────────

    def _subdir(self, memory_type: MemoryType) -> str:
        return TEMPORARY_DIR if memory_type.ephemeral else PERMANENT_DIR

    def path_for(self, memory: Memory) -> Path:
        return self.root / self._subdir(memory.type) / f"{memory.id}.md"

    def check_id(self, memory_id: str) -> str:
        if not isinstance(memory_id, str) or not _ID_PATTERN.match(memory_id):
            raise ValidationError(
                f"Invalid memory id: {memory_id!r}",
                remediation="Ids are file names without path separators, e.g. decision-oauth2",
                field="id",
            )
        return memory_id

    def _locate(self, memory_id: str) -> Path | None:
        """Index first, then both sub-directories."""
        self.check_id(memory_id)
        entry = self.index.get(memory_id)
        if entry is not None:
            path = self.root / entry.relative_path
            if path.exists():
                return path
        for sub in (PERMANENT_DIR, TEMPORARY_DIR):
            path = self.root / sub / f"{memory_id}.md"
            if path.exists():
                if entry is None or entry.relative_path != f"{sub}/{memory_id}.md":
                    logger.warning("Index entry for %s was missing or stale, re-indexing", memory_id)
                    self._reindex_file(path)
                return path
        return None

    def _reindex_file(self, path: Path) -> None:
        memory = read_memory_file(path)
        memory.id = path.stem
        rel = path.relative_to(self.root).as_posix()
        self.index.put(IndexEntry.from_memory(memory, self.scope, rel))
        if self.autorepair:
            self.index.save()

    def _not_found(self, memory_id: str) -> NotFoundError:
        return NotFoundError(
            f"Memory not found: {memory_id} (scope: {self.scope.value})",
            remediation="List memories to check the id, or try another scope",
        )

    # ── Persistence ──────────────────────────────────────────

    def save(self, memory: Memory, new: bool = False) -> Path:
        """Write the file, then its index entry. Does not touch timestamps.

        With new=True the file is published without overwriting: an existing
        file at the target path raises FileExistsError and is left as it was.
        """
        path = self.path_for(memory)
        if new:
            create_text(path, render_memory(memory))
        else:
            atomic_write_text(path, render_memory(memory))
        rel = path.relative_to(self.root).as_posix()
        self.index.put(IndexEntry.from_memory(memory, self.scope, rel))
        self.index.save()
        return path

    # ── CRUD ─────────────────────────────────────────────────

    def create(
        self,
        title: str,
        type: str | MemoryType,
        content: str,
        tags: Iterable[str] | None = None,
        severity: str | None = None,
        source: str | None = None,
        project: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Memory:
        """Create a new memory. The id is derived from type + title."""
        memory_type = parse_type(type)
        if not title or not str(title).strip():
            raise ValidationError(
                "Title is required", remediation="Pass a short descriptive title", field="title"
            )
        if content is None or not str(content).strip():
            raise ValidationError(
                "Content is required", remediation="Pass the body text of the memory", field="content"
            )

        ts = now_iso()
        memory = Memory(
            id="",
            type=memory_type,
            title=str(title).strip(),
            content=str(content).strip(),
            tags=normalize_tags(tags),
            created=ts,
            updated=ts,
            scope=self.scope,
            project=project,
            severity=_check_severity(severity),
            source=source,
            extra=_check_extra(extra),
        )
        taken = self._taken_ids()
        while True:
            memory.id = generate_unique_id(memory_type, memory.title, taken)
            try:
                self.save(memory, new=True)
            except FileExistsError:
                # Another writer published this id after we scanned.
                logger.warning("Id %s was taken concurrently, trying the next suffix", memory.id)
                taken.add(memory.id)
                continue
            break
        logger.info("Created memory: %s (%s, %s)", memory.id, memory.type.value, self.scope.value)
        return memory

    def insert(self, memory: Memory) -> Memory:
        """Store an existing memory under this scope (scope moves).

        Keeps id, created and extras; refreshes updated. Links are dropped
        since edges do not cross scopes.
        """
        conflict = ConflictError(
            f"Memory {memory.id} already exists in scope {self.scope.value}",
            remediation="Delete or update the existing memory in the target scope first",
        )
        if memory.id in self._taken_ids():
            raise conflict
        memory.scope = self.scope
        memory.updated = now_iso()
        memory.links = []
        try:
            self.save(memory, new=True)
        except FileExistsError:
            raise conflict from None
        logger.info("Inserted memory: %s (%s)", memory.id, self.scope.value)
        return memory

    def import_memory(self, memory: Memory, replace: bool = False) -> Memory:
        """Store a memory exported elsewhere, keeping its id and timestamps."""
        self.check_id(memory.id)
        _check_severity(memory.severity)
        _check_extra(memory.extra)
        memory.scope = self.scope
        memory.links = []
        existing = self._locate(memory.id)
        if existing is not None and not replace:
            raise ConflictError(
                f"Memory {memory.id} already exists in scope {self.scope.value}",
                remediation="Import with the replace or merge strategy to overwrite it",
            )
        if existing is not None:
            self.save(memory)
            if existing != self.path_for(memory):
                existing.unlink()
        else:
            try:
                self.save(memory, new=True)
            except FileExistsError:
                raise ConflictError(
                    f"Memory {memory.id} was created in scope {self.scope.value} during the import",
                    remediation="Run the import again",
                ) from None
        logger.info("Imported memory: %s (%s)", memory.id, self.scope.value)
        return memory

    def change_type(self, memory_id: str, type: str | MemoryType) -> tuple[Memory, bool]:
        """Set a new type, moving the file between permanent/ and temporary/ as needed.

        The id is kept. Returns the memory and whether its file moved.
        """
        new_type = parse_type(type)
        old_path = self._locate(memory_id)
        if old_path is None:
            raise self._not_found(memory_id)
        memory = self.read(memory_id)
        memory.type = new_type
        memory.updated = now_iso()
        new_path = self.path_for(memory)
        moved = new_path != old_path
        if moved:
            try:
                self.save(memory, new=True)
            except FileExistsError:
                raise ConflictError(
                    f"{new_path.relative_to(self.root).as_posix()} already exists",
                    remediation="Run repair, then remove the duplicate file by hand",
                ) from None
            old_path.unlink()
        else:
            self.save(memory)
        logger.info("Changed type of %s to %s", memory_id, new_type.value)
        return memory, moved

    def _taken_ids(self) -> set[str]:
        ids = self.index.ids()
        for sub in (PERMANENT_DIR, TEMPORARY_DIR):
            d = self.root / sub
            if d.is_dir():
                ids.update(p.stem for p in d.glob("*.md"))
        return ids

    def read(self, memory_id: str) -> Memory:
        path = self._locate(memory_id)
        if path is None:
            raise self._not_found(memory_id)
        memory = read_memory_file(path)
        memory.id = memory_id
        if memory.scope is None:
            memory.scope = self.scope
        return memory

    def list(
        self,
        type: str | None = None,
        tag: str | None = None,
        sort_by: str = "updated",
        limit: int | None = None,
    ) -> list[IndexEntry]:
        if type:
            type = parse_type(type).value
        entries = self.index.filter(type=type, tag=tag, sort_by=sort_by, descending=sort_by != "title")
        return entries[:limit] if limit else entries

    def iter_memories(self) -> Iterator[Memory]:
        """Yield every indexed memory that parses; unreadable files are logged and skipped."""
        for entry in list(self.index.entries.values()):
            try:
                yield self.read(entry.id)
            except (MemkeepError, OSError) as e:
                logger.warning("Skipping %s: %s", entry.id, e)

    def update(self, memory_id: str, **changes: Any) -> Memory:
        """Merge changes into an existing memory. id, created and type never change."""
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            hint = "Use link/unlink for links, move for scope" if set(unknown) & {
                "links",
                "scope",
            } else "Delete and re-create the memory to change its type or id"
            raise ValidationError(
                f"Cannot update field(s): {', '.join(unknown)}",
                remediation=hint,
                field=unknown[0],
            )

        memory = self.read(memory_id)
        if "title" in changes:
            if not changes["title"] or not str(changes["title"]).strip():
                raise ValidationError("Title cannot be empty", field="title")
            memory.title = str(changes["title"]).strip()
        if "content" in changes:
            if changes["content"] is None or not str(changes["content"]).strip():
                raise ValidationError(
                    "Content cannot be empty",
                    remediation="Pass the new body text, or delete the memory",
                    field="content",
                )
            memory.content = str(changes["content"]).strip()
        if "tags" in changes:
            memory.tags = normalize_tags(changes["tags"])
        if "severity" in changes:
            memory.severity = _check_severity(changes["severity"])
        if "source" in changes:
            memory.source = changes["source"]
        if "project" in changes:
            memory.project = changes["project"]
        if "extra" in changes:
            memory.extra.update(_check_extra(changes["extra"]))

        memory.updated = now_iso()
        self.save(memory)
        logger.info("Updated memory: %s", memory_id)
        return memory

    def delete(self, memory_id: str) -> dict:
        """Remove file and index entry, then run delete hooks. Irreversible."""
        path = self._locate(memory_id)
        if path is None:
            raise self._not_found(memory_id)
        path.unlink()
        self.index.remove(memory_id)
        self.index.save()
        logger.info("Deleted memory: %s (%s)", memory_id, self.scope.value)

        result: dict[str, Any] = {"id": memory_id, "deleted": True}
        for hook in self._delete_hooks:
            info = hook(memory_id)
            if info:
                result.update(info)
        return result
