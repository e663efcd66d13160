"""Id generation: "{type}-{slug}" with deterministic collision suffixes."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Collection

from memkeep.models import MemoryType

MAX_SLUG_LENGTH = 80


def slugify(title: str) -> str:
    """Lowercase ASCII, runs of anything else collapsed to one hyphen."""
    text = unicodedata.normalize("NFD", title.strip().lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def _strip_type_tokens(slug: str, type: MemoryType) -> str:
    """Drop the type name when the title already leads or ends with it."""
    tokens = [t for t in slug.split("-") if t]
    while len(tokens) > 1 and tokens[0] == type.value:
        tokens.pop(0)
    while len(tokens) > 1 and tokens[-1] == type.value:
        tokens.pop()
    return "-".join(tokens)


def generate_id(type: MemoryType, title: str) -> str:
    slug = _strip_type_tokens(slugify(title), type)
    if not slug:
        return f"{type.value}-untitled"
    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return f"{type.value}-{slug}"


def resolve_collision(base_id: str, existing: Collection[str]) -> str:
    if base_id not in existing:
        return base_id
    suffix = 1
    while f"{base_id}-{suffix}" in existing:
        suffix += 1
    return f"{base_id}-{suffix}"


def generate_unique_id(type: MemoryType, title: str, existing: Collection[str]) -> str:
    """Pure: same type, title and existing ids always give the same id."""
    return resolve_collision(generate_id(type, title), existing)
