"""Tool callables for host integrations.

These functions are meant to be exposed as tools to an agent or called by the
host's lifecycle hooks. Each returns the plain-dict form of an OperationResult.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memkeep.core import Memkeep


def get_memory_tools(service: Memkeep) -> dict[str, callable]:
    """Return a dict of tool_name -> callable for memory operations."""

    def memory_write(
        title: str,
        type: str,
        content: str,
        tags: list[str] | None = None,
        scope: str | None = None,
        severity: str | None = None,
        links: list[str] | None = None,
    ) -> dict:
        """Save a new memory (decision, learning, artifact, gotcha, breadcrumb or hub)."""
        return service.write(
            title, type, content, tags=tags or [], scope=scope, severity=severity, links=links or []
        ).to_dict()

    def memory_read(id: str, scope: str | None = None) -> dict:
        """Read one memory with its full body."""
        return service.read(id, scope=scope).to_dict()

    def memory_list(type: str | None = None, tag: str | None = None, scope: str | None = None) -> dict:
        return service.list(type=type, tag=tag, scope=scope).to_dict()

    def memory_search(query: str, scope: str | None = None, semantic: bool = False) -> dict:
        """Keyword search, or semantic search (keyword fallback when embeddings are down)."""
        if semantic:
            return service.semantic_search(query, scope=scope).to_dict()
        return service.search(query, scope=scope).to_dict()

    def memory_link(source: str, target: str, label: str = "relates-to", scope: str | None = None) -> dict:
        """Link two memories in the same scope; the inverse edge is added automatically."""
        return service.link(source, target, label, scope=scope).to_dict()

    def memory_delete(id: str, scope: str | None = None) -> dict:
        """Permanently delete a memory and every edge touching it."""
        return service.delete(id, scope=scope).to_dict()

    def memory_health(scope: str | None = None) -> dict:
        return service.health(scope=scope).to_dict()

    return {
        "memory_write": memory_write,
        "memory_read": memory_read,
        "memory_list": memory_list,
        "memory_search": memory_search,
        "memory_link": memory_link,
        "memory_delete": memory_delete,
        "memory_health": memory_health,
    }
