"""Memory file (de)serialisation: YAML frontmatter header + markdown body."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any

import frontmatter
import yaml
from frontmatter.default_handlers import YAMLHandler

from memkeep.errors import CorruptionError, ValidationError
from memkeep.models import Memory, MemoryType, Scope

# Header order on write; anything else is an extra, written after these.
TYPED_FIELDS = (
    "id",
    "title",
    "type",
    "scope",
    "project",
    "created",
    "updated",
    "tags",
    "severity",
    "links",
    "source",
)

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


def _without_timestamps(resolvers: dict) -> dict:
    return {
        first: [(tag, regexp) for tag, regexp in entries if tag != _TIMESTAMP_TAG]
        for first, entries in resolvers.items()
    }


class _HeaderLoader(yaml.SafeLoader):
    """SafeLoader that keeps dates and timestamps as the text they were written as."""


class _HeaderDumper(yaml.SafeDumper):
    """SafeDumper that writes timestamp-looking strings unquoted, as they were loaded."""


_HeaderLoader.yaml_implicit_resolvers = _without_timestamps(yaml.SafeLoader.yaml_implicit_resolvers)
_HeaderDumper.yaml_implicit_resolvers = _without_timestamps(yaml.SafeDumper.yaml_implicit_resolvers)


class MemoryHeaderHandler(YAMLHandler):
    def load(self, fm: str, **kwargs: object) -> Any:
        kwargs.setdefault("Loader", _HeaderLoader)
        return super().load(fm, **kwargs)

    def export(self, metadata: dict[str, object], **kwargs: object) -> str:
        kwargs.setdefault("Dumper", _HeaderDumper)
        return super().export(metadata, **kwargs)


def _as_text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return "" if value is None else str(value)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    if isinstance(value, dict):
        raise CorruptionError(
            f"Expected a list, got a mapping: {value!r}",
            remediation="Write the field as a YAML list, e.g. [a, b]",
        )
    return [str(value)]


def memory_from_metadata(metadata: dict, content: str, fallback_id: str) -> Memory:
    """Build a Memory from parsed header fields. Unknown keys go to extra."""
    raw_type = metadata.get("type")
    try:
        mem_type = MemoryType(raw_type)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid memory type {raw_type!r} in {fallback_id}",
            remediation=f"Use one of: {', '.join(MemoryType.values())}",
            field="type",
        ) from None

    raw_scope = metadata.get("scope")
    try:
        scope = Scope(raw_scope) if raw_scope else None
    except (TypeError, ValueError):
        scope = None

    try:
        return Memory(
            id=str(metadata.get("id") or fallback_id),
            type=mem_type,
            title=_as_text(metadata.get("title")),
            content=content.strip(),
            tags=_as_list(metadata.get("tags")),
            created=_as_text(metadata.get("created")),
            updated=_as_text(metadata.get("updated")),
            scope=scope,
            project=metadata.get("project"),
            severity=metadata.get("severity"),
            source=metadata.get("source"),
            links=_as_list(metadata.get("links")),
            extra={k: v for k, v in metadata.items() if k not in TYPED_FIELDS},
        )
    except CorruptionError as e:
        raise CorruptionError(
            f"Malformed header in {fallback_id}: {e.message}", remediation=e.remediation
        ) from e
    except (TypeError, ValueError) as e:
        raise CorruptionError(
            f"Malformed header in {fallback_id}: {e}",
            remediation="Fix the header by hand or delete the file and run repair",
        ) from e


def parse_memory(text: str, fallback_id: str) -> Memory:
    try:
        post = frontmatter.loads(text, handler=MemoryHeaderHandler())
    except yaml.YAMLError as e:
        raise CorruptionError(
            f"Frontmatter of {fallback_id} is not valid YAML: {e}",
            remediation="Fix the header by hand or delete the file and run repair",
        ) from e
    except (TypeError, ValueError) as e:
        raise CorruptionError(
            f"Frontmatter of {fallback_id} is not a mapping: {e}",
            remediation="The header must be YAML key: value pairs",
        ) from e
    if not post.metadata:
        raise CorruptionError(
            f"{fallback_id} has no frontmatter header",
            remediation="Add a YAML header with at least type, tags, created and updated",
        )
    return memory_from_metadata(dict(post.metadata), post.content, fallback_id)


def read_memory_file(path: Path) -> Memory:
    return parse_memory(path.read_text(encoding="utf-8"), path.stem)


def memory_metadata(memory: Memory) -> dict:
    meta: dict[str, Any] = {
        "id": memory.id,
        "title": memory.title,
        "type": memory.type.value,
    }
    if memory.scope:
        meta["scope"] = memory.scope.value
    if memory.project:
        meta["project"] = memory.project
    meta["created"] = memory.created
    meta["updated"] = memory.updated
    meta["tags"] = list(memory.tags)
    if memory.severity:
        meta["severity"] = memory.severity
    if memory.links:
        meta["links"] = list(memory.links)
    if memory.source:
        meta["source"] = memory.source
    for key, value in memory.extra.items():
        if key not in TYPED_FIELDS:
            meta[key] = value
    return meta


def render_memory(memory: Memory) -> str:
    post = frontmatter.Post(memory.content)
    post.metadata.update(memory_metadata(memory))
    return frontmatter.dumps(post, handler=MemoryHeaderHandler(), sort_keys=False) + "\n"
