"""Data model: memory types, scopes and the three on-disk record shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class MemoryType(str, Enum):
    DECISION = "decision"
    LEARNING = "learning"
    ARTIFACT = "artifact"
    GOTCHA = "gotcha"
    BREADCRUMB = "breadcrumb"
    HUB = "hub"

    @property
    def ephemeral(self) -> bool:
        """Ephemeral types live under temporary/ instead of permanent/."""
        return self is MemoryType.BREADCRUMB

    @classmethod
    def values(cls) -> list[str]:
        return [m.value for m in cls]


class Scope(str, Enum):
    ENTERPRISE = "enterprise"
    LOCAL = "local"
    PROJECT = "project"
    GLOBAL = "global"

    @classmethod
    def values(cls) -> list[str]:
        return [s.value for s in cls]


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def values(cls) -> list[str]:
        return [s.value for s in cls]


PERMANENT_DIR = "permanent"
TEMPORARY_DIR = "temporary"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO timestamp, assuming UTC when no offset is given."""
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class Memory:
    """A note plus its typed header fields and any unknown extras."""

    id: str
    type: MemoryType
    title: str
    content: str = ""
    tags: list[str] = field(default_factory=list)
    created: str = ""
    updated: str = ""
    scope: Scope | None = None
    project: str | None = None
    severity: str | None = None
    source: str | None = None
    links: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "tags": list(self.tags),
            "created": self.created,
            "updated": self.updated,
            "scope": self.scope.value if self.scope else None,
            "content": self.content,
            "links": list(self.links),
        }
        for key in ("project", "severity", "source"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.extra:
            out["extra"] = dict(self.extra)
        return out

    @classmethod
    def from_dict(cls, data: dict) -> Memory:
        scope = data.get("scope")
        return cls(
            id=data["id"],
            type=MemoryType(data["type"]),
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            tags=[str(t) for t in data.get("tags") or []],
            created=str(data.get("created") or ""),
            updated=str(data.get("updated") or ""),
            scope=Scope(scope) if scope else None,
            project=data.get("project"),
            severity=data.get("severity"),
            source=data.get("source"),
            links=[str(t) for t in data.get("links") or []],
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class IndexEntry:
    id: str
    type: MemoryType
    title: str
    tags: list[str]
    created: str
    updated: str
    scope: Scope
    relative_path: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "tags": list(self.tags),
            "created": self.created,
            "updated": self.updated,
            "scope": self.scope.value,
            "relativePath": self.relative_path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> IndexEntry:
        return cls(
            id=data["id"],
            type=MemoryType(data["type"]),
            title=data.get("title", ""),
            tags=list(data.get("tags") or []),
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            scope=Scope(data["scope"]),
            relative_path=data["relativePath"],
        )

    @classmethod
    def from_memory(cls, memory: Memory, scope: Scope, relative_path: str) -> IndexEntry:
        return cls(
            id=memory.id,
            type=memory.type,
            title=memory.title,
            tags=list(memory.tags),
            created=memory.created,
            updated=memory.updated,
            scope=scope,
            relative_path=relative_path,
        )


@dataclass
class GraphNode:
    id: str
    title: str = ""
    type: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "type": self.type}


@dataclass
class GraphEdge:
    source: str
    target: str
    label: str
    timestamp: str = ""

    def key(self) -> tuple[str, str, str]:
        return (self.source, self.label, self.target)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "label": self.label,
            "timestamp": self.timestamp,
        }
