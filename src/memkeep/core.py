"""Memkeep service: the single entry point hosts call.

Responsibilities:
1. Scope resolution: default scope, enterprise opt-in, multi-scope reads
2. Fresh per-call state: stores and graphs are built for each operation
3. Graph wiring: new memories become graph nodes, deletes cascade
4. Structured results: every operation returns an OperationResult, never raises
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from memkeep import maintenance
from memkeep.maintenance import Selection
from memkeep.config import MemkeepConfig, load_config
from memkeep.errors import MemkeepError, NotFoundError, OperationResult, ValidationError
from memkeep.graph.labels import DEFAULT_LABEL
from memkeep.graph.mermaid import render_mermaid
from memkeep.graph.store import DEFAULT_TRAVERSE_DEPTH, GraphStore
from memkeep.memory.store import MemoryStore
from memkeep.models import Scope
from memkeep.quality import assess as quality
from memkeep.quality.health import health_report
from memkeep.quality.repair import repair
from memkeep.scope.git import project_name
from memkeep.scope.resolver import ScopeResolver, parse_scope
from memkeep.search.embedding import Embedder, OllamaEmbedder
from memkeep.search.keyword import keyword_search
from memkeep.search.semantic import SUGGEST_THRESHOLD, semantic_search, suggest_links

logger = logging.getLogger(__name__)


class Memkeep:
    """Memory operations across scopes, as structured results."""

    def __init__(
        self,
        config: MemkeepConfig | None = None,
        cwd: Path | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self.config = config or load_config(cwd=cwd)
        self.resolver = ScopeResolver(self.config, cwd)
        self._embedder = embedder

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = OllamaEmbedder(self.config.embedding, self.config.session_id)
        return self._embedder

    # ── Plumbing ─────────────────────────────────────────────

    def _run(self, op: str, fn: Callable[[], Any]) -> OperationResult:
        try:
            data = fn()
        except MemkeepError as e:
            logger.warning("%s failed: %s", op, e)
            return OperationResult.failure(e)
        except OSError as e:
            logger.error("%s failed with I/O error: %s", op, e)
            return OperationResult.failure(e)
        warnings = data.pop("warnings", []) if isinstance(data, dict) else []
        return OperationResult.success(data, warnings)

    def _default_scope(self, scope: str | Scope | None) -> Scope:
        return self.resolver.resolve_default_scope(scope).scope

    def _store(self, scope: Scope, autorepair: bool = True, for_write: bool = False) -> MemoryStore:
        root = self.resolver.resolve_root(scope, for_write=for_write)
        return MemoryStore(root, scope, autorepair=autorepair)

    def _open(self, scope: Scope, for_write: bool = True) -> tuple[MemoryStore, GraphStore]:
        store = self._store(scope, for_write=for_write)
        return store, GraphStore(store)

    def _read_scopes(self, scope: str | Scope | None) -> list[Scope]:
        return [parse_scope(scope)] if scope else self.resolver.accessible_scopes()

    def _scope_of(self, memory_id: str, scope: str | Scope | None) -> Scope:
        """Explicit scope, else the first accessible scope holding memory_id."""
        if scope:
            return parse_scope(scope)
        searched = self.resolver.accessible_scopes()
        for candidate in searched:
            if self._store(candidate).exists(memory_id):
                return candidate
        raise NotFoundError(
            f"Memory not found: {memory_id} (searched {', '.join(s.value for s in searched)})",
            remediation="List memories to check the id, or pass the scope explicitly",
        )

    def _project_for(self, scope: Scope) -> str | None:
        if scope in (Scope.PROJECT, Scope.LOCAL):
            return project_name(self.resolver.project_root)
        return None

    # ── Storage ──────────────────────────────────────────────

    def write(
        self,
        title: str,
        type: str,
        content: str,
        tags: Iterable[str] = (),
        scope: str | Scope | None = None,
        severity: str | None = None,
        source: str | None = None,
        links: Iterable[str] = (),
        extra: dict[str, Any] | None = None,
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store, graph = self._open(target)
            memory = store.create(
                title,
                type,
                content,
                tags=tags,
                severity=severity,
                source=source,
                project=self._project_for(target),
                extra=extra,
            )
            graph.add_node(memory.id, memory.title, memory.type.value)
            graph.save()

            warnings = []
            for link_target in links:
                if store.exists(link_target):
                    graph.link(memory.id, link_target, DEFAULT_LABEL)
                else:
                    warnings.append(f"Link target not found in {target.value}: {link_target}")
            memory = store.read(memory.id)
            return {**memory.to_dict(), "path": str(store.path_for(memory)), "warnings": warnings}

        return self._run("write", op)

    def read(self, memory_id: str, scope: str | Scope | None = None) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            return self._store(found).read(memory_id).to_dict()

        return self._run("read", op)

    def list(
        self,
        type: str | None = None,
        tag: str | None = None,
        scope: str | Scope | None = None,
        sort_by: str = "updated",
        limit: int | None = None,
    ) -> OperationResult:
        def op():
            entries = []
            for s in self._read_scopes(scope):
                entries.extend(self._store(s).list(type=type, tag=tag, sort_by=sort_by))
            reverse = sort_by != "title"
            key = {"title": lambda e: e.title.lower(), "created": lambda e: e.created}.get(
                sort_by, lambda e: e.updated
            )
            entries.sort(key=key, reverse=reverse)
            if limit:
                entries = entries[:limit]
            return {"count": len(entries), "memories": [e.to_dict() for e in entries]}

        return self._run("list", op)

    def update(self, memory_id: str, scope: str | Scope | None = None, **changes: Any) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            store, graph = self._open(found)
            memory = store.update(memory_id, **changes)
            node = graph.nodes.get(memory_id)
            if node is None or node.title != memory.title:
                graph.add_node(memory.id, memory.title, memory.type.value)
                graph.save()
            return memory.to_dict()

        return self._run("update", op)

    def delete(self, memory_id: str, scope: str | Scope | None = None) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            store, _graph = self._open(found)
            result = store.delete(memory_id)
            if result.get("emptyHubs"):
                result["warnings"] = [f"Hub {h} has no remaining links" for h in result["emptyHubs"]]
            return {**result, "scope": found.value}

        return self._run("delete", op)

    def _writable_store(self, memory_id: str, scope: str | Scope | None) -> MemoryStore:
        return self._store(self._scope_of(memory_id, scope), for_write=True)

    def tag(self, memory_id: str, tags: Iterable[str], scope: str | Scope | None = None) -> OperationResult:
        return self._run(
            "tag", lambda: maintenance.tag(self._writable_store(memory_id, scope), memory_id, tags)
        )

    def untag(self, memory_id: str, tags: Iterable[str], scope: str | Scope | None = None) -> OperationResult:
        return self._run(
            "untag", lambda: maintenance.untag(self._writable_store(memory_id, scope), memory_id, tags)
        )

    def promote(self, memory_id: str, type: str, scope: str | Scope | None = None) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            store, graph = self._open(found)
            return {**maintenance.promote(store, graph, memory_id, type), "scope": found.value}

        return self._run("promote", op)

    def move(self, memory_id: str, to_scope: str | Scope, from_scope: str | Scope | None = None) -> OperationResult:
        def op():
            source_scope = self._scope_of(memory_id, from_scope)
            target_scope = parse_scope(to_scope)
            if source_scope is target_scope:
                raise ValidationError(
                    f"{memory_id} is already in scope {target_scope.value}",
                    remediation="Pick a different target scope",
                )
            source, source_graph = self._open(source_scope)
            target, target_graph = self._open(target_scope)
            return maintenance.move(source, source_graph, target, target_graph, memory_id)

        return self._run("move", op)

    def prune(
        self,
        scope: str | Scope | None = None,
        ttl_days: int | None = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Delete expired temporary memories (breadcrumbs) with their edges."""

        def op():
            target = self._default_scope(scope)
            store, _graph = self._open(target)
            ttl = self.config.prune_ttl_days if ttl_days is None else ttl_days
            return {**maintenance.prune(store, ttl_days=ttl, dry_run=dry_run), "scope": target.value}

        return self._run("prune", op)

    # ── Bulk ─────────────────────────────────────────────────

    def bulk_tag(
        self,
        selection: Selection,
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
        scope: str | Scope | None = None,
        dry_run: bool = False,
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store = self._store(target, for_write=True)
            return {**maintenance.bulk_tag(store, selection, add, remove, dry_run), "scope": target.value}

        return self._run("bulk_tag", op)

    def bulk_delete(
        self, selection: Selection, scope: str | Scope | None = None, dry_run: bool = False
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store, _graph = self._open(target)
            return {**maintenance.bulk_delete(store, selection, dry_run), "scope": target.value}

        return self._run("bulk_delete", op)

    def bulk_promote(
        self, selection: Selection, type: str, scope: str | Scope | None = None, dry_run: bool = False
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store, graph = self._open(target)
            return {**maintenance.bulk_promote(store, graph, selection, type, dry_run), "scope": target.value}

        return self._run("bulk_promote", op)

    def bulk_link(
        self,
        selection: Selection,
        target: str,
        label: str = DEFAULT_LABEL,
        scope: str | Scope | None = None,
        dry_run: bool = False,
    ) -> OperationResult:
        def op():
            found = self._scope_of(target, scope)
            store, graph = self._open(found)
            result = maintenance.bulk_link(store, graph, selection, target, label, dry_run)
            return {**result, "scope": found.value}

        return self._run("bulk_link", op)

    def bulk_unlink(
        self,
        selection: Selection,
        target: str,
        label: str | None = None,
        scope: str | Scope | None = None,
        dry_run: bool = False,
    ) -> OperationResult:
        def op():
            found = self._scope_of(target, scope)
            store, graph = self._open(found)
            result = maintenance.bulk_unlink(store, graph, selection, target, label, dry_run)
            return {**result, "scope": found.value}

        return self._run("bulk_unlink", op)

    def bulk_move(
        self,
        selection: Selection,
        to_scope: str | Scope,
        from_scope: str | Scope | None = None,
        dry_run: bool = False,
    ) -> OperationResult:
        def op():
            source_scope = self._default_scope(from_scope)
            target_scope = parse_scope(to_scope)
            if source_scope is target_scope:
                raise ValidationError(
                    f"Source and target scope are both {target_scope.value}",
                    remediation="Pick a different target scope",
                )
            source, source_graph = self._open(source_scope)
            target, target_graph = self._open(target_scope)
            return maintenance.bulk_move(source, source_graph, target, target_graph, selection, dry_run)

        return self._run("bulk_move", op)

    # ── Export / import ──────────────────────────────────────

    def export(
        self,
        scope: str | Scope | None = None,
        selection: Selection | None = None,
        include_graph: bool = True,
        format: str = "json",
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store, graph = self._open(target, for_write=False)
            package = maintenance.export(store, graph, selection, include_graph=include_graph)
            return {
                "scope": target.value,
                "count": len(package["memories"]),
                "format": format,
                "package": package,
                "serialised": maintenance.dump_package(package, format),
            }

        return self._run("export", op)

    def import_memories(
        self,
        package: dict | str,
        scope: str | Scope | None = None,
        strategy: str = "merge",
        dry_run: bool = False,
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store, graph = self._open(target)
            result = maintenance.import_package(store, graph, package, strategy=strategy, dry_run=dry_run)
            return {**result, "scope": target.value}

        return self._run("import", op)

    # ── Graph ────────────────────────────────────────────────

    def link(
        self,
        source: str,
        target: str,
        label: str = DEFAULT_LABEL,
        scope: str | Scope | None = None,
    ) -> OperationResult:
        def op():
            found = self._scope_of(source, scope)
            _store, graph = self._open(found)
            return {**graph.link(source, target, label), "scope": found.value}

        return self._run("link", op)

    def unlink(
        self,
        source: str,
        target: str,
        label: str | None = None,
        scope: str | Scope | None = None,
    ) -> OperationResult:
        def op():
            found = self._scope_of(source, scope)
            _store, graph = self._open(found)
            return {**graph.unlink(source, target, label), "scope": found.value}

        return self._run("unlink", op)

    def edges(self, memory_id: str, scope: str | Scope | None = None) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            _store, graph = self._open(found, for_write=False)
            return {**graph.edges_for(memory_id), "scope": found.value}

        return self._run("edges", op)

    def traverse(
        self,
        memory_id: str,
        max_depth: int = DEFAULT_TRAVERSE_DEPTH,
        scope: str | Scope | None = None,
        mermaid: bool = False,
    ) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            _store, graph = self._open(found, for_write=False)
            result = graph.traverse(memory_id, max_depth=max_depth)
            if mermaid:
                result["mermaid"] = render_mermaid(result)
            return {**result, "scope": found.value}

        return self._run("traverse", op)

    # ── Search ───────────────────────────────────────────────

    def search(
        self,
        query: str,
        scope: str | Scope | None = None,
        type: str | None = None,
        limit: int | None = 20,
    ) -> OperationResult:
        def op():
            results = []
            for s in self._read_scopes(scope):
                results.extend(keyword_search(self._store(s), query, type=type, limit=None))
            results.sort(key=lambda r: -r["score"])
            return {"mode": "keyword", "results": results[:limit] if limit else results}

        return self._run("search", op)

    def semantic_search(
        self,
        query: str,
        scope: str | Scope | None = None,
        threshold: float | None = None,
        for_auto_link: bool = False,
        type: str | None = None,
        limit: int | None = 20,
    ) -> OperationResult:
        def op():
            results, modes, floor, warnings = [], set(), None, []
            for s in self._read_scopes(scope):
                found = semantic_search(
                    self._store(s),
                    self.embedder,
                    query,
                    threshold=threshold,
                    for_auto_link=for_auto_link,
                    limit=limit,
                    type=type,
                )
                results.extend(found["results"])
                modes.add(found["mode"])
                floor = found["threshold"]
                if found.get("fallbackReason"):
                    warnings.append(f"{s.value}: {found['fallbackReason']}")
            results.sort(key=lambda r: -r["score"])
            mode = "semantic" if modes == {"semantic"} else "keyword-fallback"
            return {
                "mode": mode,
                "threshold": floor,
                "results": results[:limit] if limit else results,
                "warnings": sorted(set(warnings)),
            }

        return self._run("semantic_search", op)

    def suggest_links(
        self,
        scope: str | Scope | None = None,
        threshold: float = SUGGEST_THRESHOLD,
        auto_link: bool = False,
    ) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store, graph = self._open(target, for_write=auto_link)
            return {
                **suggest_links(store, graph, self.embedder, threshold=threshold, auto_link=auto_link),
                "scope": target.value,
            }

        return self._run("suggest_links", op)

    # ── Quality ──────────────────────────────────────────────

    def _context(self, scope: Scope, deep: bool) -> quality.ScopeContext:
        store = self._store(scope, autorepair=False)
        graph = GraphStore(store, cascade=False)
        return quality.ScopeContext(store, graph, project_root=self.resolver.project_root, deep=deep)

    def assess(self, memory_id: str, scope: str | Scope | None = None, deep: bool = False) -> OperationResult:
        def op():
            found = self._scope_of(memory_id, scope)
            return quality.assess(self._context(found, deep), memory_id)

        return self._run("assess", op)

    def audit(self, scope: str | Scope | None = None, threshold: int = 100, deep: bool = False) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            return {**quality.audit(self._context(target, deep), threshold=threshold), "scope": target.value}

        return self._run("audit", op)

    def health(self, scope: str | Scope | None = None, deep: bool = False) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            store = self._store(target, autorepair=False)
            return health_report(store, project_root=self.resolver.project_root, deep=deep)

        return self._run("health", op)

    def repair(self, scope: str | Scope | None = None) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            return repair(self._store(target, for_write=True), self.embedder)

        return self._run("repair", op)

    def reindex(self, scope: str | Scope | None = None) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            index = self._store(target, for_write=True).rebuild_index()
            return {"scope": target.value, "memories": len(index), "skipped": [i for i, _ in index.skipped]}

        return self._run("reindex", op)

    def sync_links(self, scope: str | Scope | None = None) -> OperationResult:
        def op():
            target = self._default_scope(scope)
            _store, graph = self._open(target)
            return {"scope": target.value, "updated": graph.sync_links()}

        return self._run("sync_links", op)
