"""Render a traversal result as a Mermaid flowchart."""

from __future__ import annotations

import re

NODE_SHAPES = {
    "decision": ("{{", "}}"),
    "artifact": ("[", "]"),
    "learning": ("([", "])"),
    "gotcha": ("[/", "/]"),
    "breadcrumb": (">", "]"),
    "hub": ("((", "))"),
}

LABEL_ABBREVIATIONS = {
    "relates-to": "rel",
    "implements": "impl",
    "implemented-by": "impl-by",
    "supersedes": "sup",
    "depends-on": "dep",
    "documents": "doc",
    "informs": "inf",
    "auto-linked-by-similarity": "sim",
}


def _node_key(node_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_]", "_", node_id)


def _escape(text: str) -> str:
    return text.replace('"', "'")


def render_mermaid(traversal: dict, direction: str = "LR", abbreviate: bool = True) -> str:
    """traversal is the dict returned by GraphStore.traverse()."""
    lines = [f"graph {direction}"]
    for node in traversal["nodes"]:
        open_, close = NODE_SHAPES.get(node.get("type", ""), ("[", "]"))
        label = _escape(node.get("title") or node["id"])
        lines.append(f'    {_node_key(node["id"])}{open_}"{label}"{close}')

    # Each link is stored twice; draw one arrow per unordered pair.
    drawn: set[frozenset[str]] = set()
    for edge in traversal["edges"]:
        pair = frozenset((edge["source"], edge["target"]))
        if pair in drawn:
            continue
        drawn.add(pair)
        label = edge["label"]
        if abbreviate:
            label = LABEL_ABBREVIATIONS.get(label, label)
        lines.append(f"    {_node_key(edge['source'])} -->|{label}| {_node_key(edge['target'])}")

    start = traversal.get("start")
    if start:
        lines.append(f"    style {_node_key(start)} stroke-width:3px")
    return "\n".join(lines) + "\n"
