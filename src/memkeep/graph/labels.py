"""Edge labels and their inverses."""

from __future__ import annotations

DEFAULT_LABEL = "relates-to"
AUTO_LINK_LABEL = "auto-linked-by-similarity"

_PAIRS = [
    ("implements", "implemented-by"),
    ("supersedes", "superseded-by"),
    ("blocked-by", "blocks"),
    ("informs", "informed-by"),
    ("exemplifies", "exemplified-by"),
    ("extends", "extended-by"),
    ("documents", "documented-by"),
    ("warns", "warned-by"),
    ("depends-on", "depended-on-by"),
    ("derives-from", "derived-into"),
    ("parent-of", "child-of"),
]

INVERSE_LABELS: dict[str, str] = {}
for _forward, _backward in _PAIRS:
    INVERSE_LABELS[_forward] = _backward
    INVERSE_LABELS[_backward] = _forward

# Symmetric labels, listed for discoverability; anything unknown is symmetric too.
SYMMETRIC_LABELS = {DEFAULT_LABEL, "related-context", "contradicts", AUTO_LINK_LABEL}


def inverse_label(label: str) -> str:
    """Unrecognized labels are their own inverse."""
    return INVERSE_LABELS.get(label, label)


def known_labels() -> list[str]:
    return sorted(set(INVERSE_LABELS) | SYMMETRIC_LABELS)
