"""Maintenance operations: tagging, type changes, scope moves, pruning,
pattern-selected bulk edits, and export/import of a scope's memories.

Bulk operations select memories from the index with a Selection, then apply
one action per memory. A failing item is logged and reported under "failed";
the rest of the batch carries on.
"""

from __future__ import annotations

import fnmatch
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

import yaml

from memkeep.errors import MemkeepError, NotFoundError, ValidationError
from memkeep.graph.labels import DEFAULT_LABEL
from memkeep.graph.store import GraphStore
from memkeep.memory.store import MemoryStore, normalize_tags, parse_type
from memkeep.models import TEMPORARY_DIR, Memory, MemoryType, now_iso, parse_timestamp
from memkeep.search.cache import EmbeddingCache

logger = logging.getLogger(__name__)

DEFAULT_PRUNE_TTL_DAYS = 7
EXPORT_VERSION = "1.0.0"
EXPORT_FORMATS = ("json", "yaml")
IMPORT_STRATEGIES = ("skip", "merge", "replace")


# ── Tags ─────────────────────────────────────────────────────


def tag(store: MemoryStore, memory_id: str, tags: Iterable[str]) -> dict:
    memory = store.read(memory_id)
    added = [t for t in normalize_tags(tags) if t not in memory.tags]
    if added:
        store.update(memory_id, tags=memory.tags + added)
    return {"id": memory_id, "added": added, "tags": memory.tags + added}


def untag(store: MemoryStore, memory_id: str, tags: Iterable[str]) -> dict:
    memory = store.read(memory_id)
    doomed = set(normalize_tags(tags))
    removed = [t for t in memory.tags if t in doomed]
    remaining = [t for t in memory.tags if t not in doomed]
    if removed:
        store.update(memory_id, tags=remaining)
    return {"id": memory_id, "removed": removed, "tags": remaining}


# ── Type changes ─────────────────────────────────────────────


def promote(store: MemoryStore, graph: GraphStore, memory_id: str, type: str | MemoryType) -> dict:
    """Change a memory's type, e.g. learning -> gotcha or breadcrumb -> artifact.

    The id stays as it is; only the header, the graph node and (for ephemeral
    types) the permanent/temporary placement change.
    """
    target = parse_type(type)
    current = store.read(memory_id)
    result = {"id": memory_id, "fromType": current.type.value, "toType": target.value}
    if current.type is target:
        return {**result, "changed": False, "fileMoved": False}

    memory, moved = store.change_type(memory_id, target)
    graph.add_node(memory.id, memory.title, memory.type.value)
    graph.save()
    return {**result, "changed": True, "fileMoved": moved, "path": str(store.path_for(memory))}


# ── Scope moves ──────────────────────────────────────────────


def move(
    source: MemoryStore,
    source_graph: GraphStore,
    target: MemoryStore,
    target_graph: GraphStore,
    memory_id: str,
) -> dict:
    """Copy a memory into another scope, then delete it (with cascade) from the source.

    Edges never cross scopes, so the memory arrives unlinked.
    """
    memory = source.read(memory_id)
    dropped_links = source_graph.outbound_targets(memory_id)

    moved = target.insert(memory)
    target_graph.add_node(moved.id, moved.title, moved.type.value)
    target_graph.save()

    transferred = False
    source_cache = EmbeddingCache(source.root)
    entry = source_cache.entries.pop(memory_id, None)
    if entry is not None:
        target_cache = EmbeddingCache(target.root)
        # Vectors from different models are not comparable.
        if target_cache.model in (None, source_cache.model):
            target_cache.entries[moved.id] = entry
            target_cache.model = source_cache.model
            target_cache.save()
            transferred = True
        source_cache.save()

    cascade = source.delete(memory_id)
    logger.info("Moved %s from %s to %s", memory_id, source.scope.value, target.scope.value)
    return {
        "id": moved.id,
        "from": source.scope.value,
        "to": target.scope.value,
        "droppedLinks": dropped_links,
        "edgesRemoved": cascade.get("edgesRemoved", 0),
        "embeddingTransferred": transferred,
    }


# ── Pruning ──────────────────────────────────────────────────


def prune(
    store: MemoryStore,
    ttl_days: int = DEFAULT_PRUNE_TTL_DAYS,
    dry_run: bool = False,
    now: datetime | None = None,
) -> dict:
    """Delete temporary memories not updated for more than ttl_days."""
    if ttl_days < 0:
        raise ValidationError(
            f"TTL must not be negative: {ttl_days}",
            remediation="Pass a number of days >= 0",
            field="ttl_days",
        )
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=ttl_days)
    expired = []
    for entry in store.index.entries.values():
        if not entry.relative_path.startswith(f"{TEMPORARY_DIR}/"):
            continue
        stamp = parse_timestamp(entry.updated or entry.created)
        if stamp is None:
            logger.warning("Not pruning %s: no readable updated/created timestamp", entry.id)
            continue
        if stamp < cutoff:
            expired.append(entry.id)

    result = _apply("prune", expired, store.delete, dry_run)
    return {**result, "ttlDays": ttl_days}


# ── Bulk operations ──────────────────────────────────────────


@dataclass
class Selection:
    """Which memories a bulk operation applies to. Criteria combine with AND.

    pattern is a glob over ids ("decision-*", "gotcha-?ors"); tags must all be
    present on a memory.
    """

    pattern: str | None = None
    ids: list[str] | None = None
    tags: list[str] | None = None
    type: str | None = None

    def is_empty(self) -> bool:
        return not (self.pattern or self.ids or self.tags or self.type)

    def matches(self, memory_id: str, memory_type: str, memory_tags: list[str]) -> bool:
        if self.pattern and not fnmatch.fnmatchcase(memory_id, self.pattern):
            return False
        if self.ids and memory_id not in self.ids:
            return False
        if self.tags and not all(t in memory_tags for t in self.tags):
            return False
        if self.type and memory_type != self.type:
            return False
        return True


def select(store: MemoryStore, selection: Selection | None) -> list[str]:
    """Ids matching selection, in index order. Refuses an empty selection."""
    if selection is None or selection.is_empty():
        raise ValidationError(
            "A bulk operation needs at least one filter",
            remediation="Pass a pattern (e.g. decision-*), ids, tags or a type",
            field="selection",
        )
    if selection.type:
        selection = replace(selection, type=parse_type(selection.type).value)
    return [
        e.id
        for e in store.index.entries.values()
        if selection.matches(e.id, e.type.value, e.tags)
    ]


def _apply(op: str, ids: list[str], action: Callable[[str], Any], dry_run: bool) -> dict:
    result: dict[str, Any] = {
        "matched": len(ids),
        "modified": [],
        "unchanged": [],
        "failed": [],
        "dryRun": dry_run,
    }
    if dry_run:
        logger.info("Dry run: %s would touch %d memories", op, len(ids))
        result["modified"] = list(ids)
        return result

    for memory_id in ids:
        try:
            changed = action(memory_id)
        except (MemkeepError, OSError) as e:
            logger.error("%s failed for %s: %s", op, memory_id, e)
            result["failed"].append({"id": memory_id, "reason": str(e)})
            continue
        result["modified" if changed is not False else "unchanged"].append(memory_id)
    logger.info(
        "%s: %d modified, %d unchanged, %d failed",
        op,
        len(result["modified"]),
        len(result["unchanged"]),
        len(result["failed"]),
    )
    return result


def bulk_tag(
    store: MemoryStore,
    selection: Selection,
    add: Iterable[str] = (),
    remove: Iterable[str] = (),
    dry_run: bool = False,
) -> dict:
    add, remove = normalize_tags(add), normalize_tags(remove)
    if not add and not remove:
        raise ValidationError(
            "Nothing to do: no tags to add or remove",
            remediation="Pass add and/or remove tags",
            field="tags",
        )

    def action(memory_id: str) -> bool:
        added = tag(store, memory_id, add)["added"] if add else []
        removed = untag(store, memory_id, remove)["removed"] if remove else []
        return bool(added or removed)

    return _apply("bulk tag", select(store, selection), action, dry_run)


def bulk_delete(store: MemoryStore, selection: Selection, dry_run: bool = False) -> dict:
    """Delete every selected memory, cascading each one's edges. Irreversible."""
    return _apply("bulk delete", select(store, selection), store.delete, dry_run)


def bulk_promote(
    store: MemoryStore,
    graph: GraphStore,
    selection: Selection,
    type: str | MemoryType,
    dry_run: bool = False,
) -> dict:
    target = parse_type(type)
    return _apply(
        "bulk promote",
        select(store, selection),
        lambda memory_id: promote(store, graph, memory_id, target)["changed"],
        dry_run,
    )


def _require_target(store: MemoryStore, target: str) -> None:
    if not target or not store.exists(target):
        raise NotFoundError(
            f"Link target not found: {target} (scope: {store.scope.value})",
            remediation="Pass the id of an existing memory in the same scope",
        )


def bulk_link(
    store: MemoryStore,
    graph: GraphStore,
    selection: Selection,
    target: str,
    label: str = DEFAULT_LABEL,
    dry_run: bool = False,
) -> dict:
    """Link every selected memory to one target. The target itself is skipped."""
    _require_target(store, target)
    ids = [i for i in select(store, selection) if i != target]
    return _apply(
        "bulk link",
        ids,
        lambda memory_id: not graph.link(memory_id, target, label)["alreadyExists"],
        dry_run,
    )


def bulk_unlink(
    store: MemoryStore,
    graph: GraphStore,
    selection: Selection,
    target: str,
    label: str | None = None,
    dry_run: bool = False,
) -> dict:
    _require_target(store, target)
    ids = [i for i in select(store, selection) if i != target]
    return _apply(
        "bulk unlink",
        ids,
        lambda memory_id: graph.unlink(memory_id, target, label)["removed"] > 0,
        dry_run,
    )


def bulk_move(
    source: MemoryStore,
    source_graph: GraphStore,
    target: MemoryStore,
    target_graph: GraphStore,
    selection: Selection,
    dry_run: bool = False,
) -> dict:
    result = _apply(
        "bulk move",
        select(source, selection),
        lambda memory_id: move(source, source_graph, target, target_graph, memory_id),
        dry_run,
    )
    return {**result, "from": source.scope.value, "to": target.scope.value}


# ── Export / import ──────────────────────────────────────────


def export(
    store: MemoryStore,
    graph: GraphStore,
    selection: Selection | None = None,
    include_graph: bool = True,
) -> dict:
    """Package memories (and the edges among them) for import elsewhere."""
    if selection is None or selection.is_empty():
        ids = list(store.index.entries)
    else:
        ids = select(store, selection)

    memories = []
    for memory_id in ids:
        try:
            memories.append(store.read(memory_id).to_dict())
        except (MemkeepError, OSError) as e:
            logger.warning("Leaving %s out of the export: %s", memory_id, e)

    package: dict[str, Any] = {
        "version": EXPORT_VERSION,
        "exportedAt": now_iso(),
        "sourceScope": store.scope.value,
        "memories": memories,
    }
    if include_graph:
        exported = {m["id"] for m in memories}
        package["graph"] = {
            "nodes": [n.to_dict() for n in graph.nodes.values() if n.id in exported],
            "edges": [
                e.to_dict() for e in graph.edges if e.source in exported and e.target in exported
            ],
        }
    logger.info("Exported %d memories from %s", len(memories), store.scope.value)
    return package


def dump_package(package: dict, format: str = "json") -> str:
    if format == "json":
        return json.dumps(package, indent=2, ensure_ascii=False)
    if format == "yaml":
        return yaml.safe_dump(package, sort_keys=False, allow_unicode=True)
    raise ValidationError(
        f"Unknown export format: {format!r}",
        remediation=f"Use one of: {', '.join(EXPORT_FORMATS)}",
        field="format",
    )


def load_package(text: str) -> dict:
    """Parse an export package written as JSON or YAML."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValidationError(
                f"Import package is neither JSON nor YAML: {e}",
                remediation="Pass the output of export unchanged",
                field="package",
            ) from e
    return data


def _is_newer(candidate: str, current: str) -> bool:
    new, old = parse_timestamp(candidate), parse_timestamp(current)
    if new is None:
        return False
    return old is None or new > old


def import_package(
    store: MemoryStore,
    graph: GraphStore,
    package: dict | str,
    strategy: str = "merge",
    dry_run: bool = False,
) -> dict:
    """Write exported memories into this scope.

    On an id clash, skip keeps the existing memory, merge takes the imported
    one only when its updated timestamp is newer, and replace always takes it.
    Edges in the package are re-created between memories present afterwards.
    """
    if strategy not in IMPORT_STRATEGIES:
        raise ValidationError(
            f"Unknown import strategy: {strategy!r}",
            remediation=f"Use one of: {', '.join(IMPORT_STRATEGIES)}",
            field="strategy",
        )
    if isinstance(package, str):
        package = load_package(package)
    if not isinstance(package, dict) or not isinstance(package.get("memories"), list):
        raise ValidationError(
            "Import package has no memories list",
            remediation="Pass the output of export unchanged",
            field="package",
        )

    result: dict[str, Any] = {
        "imported": [],
        "merged": [],
        "replaced": [],
        "skipped": [],
        "failed": [],
        "edgesCreated": 0,
        "dryRun": dry_run,
    }
    for raw in package["memories"]:
        try:
            memory = Memory.from_dict(raw)
            store.check_id(memory.id)
        except (KeyError, TypeError, ValueError) as e:
            memory_id = raw.get("id") if isinstance(raw, dict) else None
            logger.error("Cannot import %r: %s", memory_id, e)
            result["failed"].append({"id": memory_id, "reason": str(e)})
            continue

        existing = store.index.get(memory.id)
        bucket = "imported"
        if existing is not None:
            stale = strategy == "merge" and not _is_newer(memory.updated, existing.updated)
            if strategy == "skip" or stale:
                result["skipped"].append(memory.id)
                continue
            bucket = "merged" if strategy == "merge" else "replaced"

        if not dry_run:
            memory.created = memory.created or now_iso()
            memory.updated = memory.updated or memory.created
            try:
                store.import_memory(memory, replace=existing is not None)
            except (MemkeepError, OSError) as e:
                logger.error("Cannot import %s: %s", memory.id, e)
                result["failed"].append({"id": memory.id, "reason": str(e)})
                continue
            graph.add_node(memory.id, memory.title, memory.type.value)
        result[bucket].append(memory.id)

    if dry_run:
        return result

    graph.save()
    touched = result["imported"] + result["merged"] + result["replaced"]
    edges = (package.get("graph") or {}).get("edges") or []
    for raw in edges:
        if not isinstance(raw, dict):
            continue
        source, target = raw.get("source"), raw.get("target")
        if not source or not target or source == target:
            continue
        if source not in touched and target not in touched:
            continue
        if not (store.exists(source) and store.exists(target)):
            continue
        if not graph.link(source, target, raw.get("label") or DEFAULT_LABEL)["alreadyExists"]:
            result["edgesCreated"] += 1
    graph.sync_links(touched)
    logger.info(
        "Imported into %s: %d new, %d merged, %d replaced, %d skipped",
        store.scope.value,
        len(result["imported"]),
        len(result["merged"]),
        len(result["replaced"]),
        len(result["skipped"]),
    )
    return result
