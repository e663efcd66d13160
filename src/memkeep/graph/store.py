"""GraphStore: the relationship graph of one scope (graph.json).

Every link is stored twice, forward and inverse, with the same timestamp. The
`links` header of each memory is a projection of its outbound edges and is
always written after graph.json, never the other way round.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from memkeep.errors import CorruptionError, MemkeepError, NotFoundError, ValidationError
from memkeep.fsutil import read_json, write_json
from memkeep.graph.labels import DEFAULT_LABEL, inverse_label
from memkeep.memory.store import MemoryStore
from memkeep.models import GraphEdge, GraphNode, MemoryType, now_iso

logger = logging.getLogger(__name__)

GRAPH_FILENAME = "graph.json"
DEFAULT_TRAVERSE_DEPTH = 2
MAX_TRAVERSE_NODES = 50
MAX_TRAVERSE_EDGES = 100


@dataclass
class Adjacency:
    outbound: dict[str, list[GraphEdge]] = field(default_factory=dict)
    inbound: dict[str, list[GraphEdge]] = field(default_factory=dict)

    @classmethod
    def build(cls, edges: list[GraphEdge]) -> Adjacency:
        adj = cls()
        for edge in edges:
            adj.outbound.setdefault(edge.source, []).append(edge)
            adj.inbound.setdefault(edge.target, []).append(edge)
        return adj

    def neighbours(self, node_id: str) -> list[str]:
        seen: dict[str, None] = {}
        for edge in self.outbound.get(node_id, []):
            seen[edge.target] = None
        for edge in self.inbound.get(node_id, []):
            seen[edge.source] = None
        return list(seen)

    def degree(self, node_id: str) -> int:
        return len(self.outbound.get(node_id, [])) + len(self.inbound.get(node_id, []))


class GraphStore:
    """Load graph.json for a scope, mutate it, and keep frontmatter in sync."""

    def __init__(self, store: MemoryStore, cascade: bool = True) -> None:
        self.store = store
        self.nodes: dict[str, GraphNode] = {}
        self.edges: list[GraphEdge] = []
        self.existed = False
        self.rebuilt = False
        self._adj: Adjacency | None = None
        self._load()
        if cascade:
            store.on_delete(self.cascade_delete)

    @property
    def path(self):
        return self.store.root / GRAPH_FILENAME

    # ── Load / save ──────────────────────────────────────────

    def _load(self) -> None:
        try:
            data = read_json(self.path)
        except CorruptionError as e:
            logger.warning("Corrupt graph in %s, rebuilding from frontmatter: %s", self.store.root, e.message)
            self.existed = True
            self.rebuild_from_frontmatter()
            if self.store.autorepair:
                self.save()
            return

        if data is None:
            return
        self.existed = True
        for raw in data.get("nodes") or []:
            if isinstance(raw, dict) and raw.get("id"):
                node = GraphNode(raw["id"], raw.get("title", ""), raw.get("type", ""))
                self.nodes[node.id] = node
        seen: set[tuple[str, str, str]] = set()
        for raw in data.get("edges") or []:
            if not isinstance(raw, dict) or not raw.get("source") or not raw.get("target"):
                continue
            edge = GraphEdge(
                raw["source"], raw["target"], raw.get("label") or DEFAULT_LABEL, raw.get("timestamp", "")
            )
            if edge.key() not in seen:
                seen.add(edge.key())
                self.edges.append(edge)

    def save(self) -> None:
        write_json(
            self.path,
            {
                "version": 1,
                "nodes": [n.to_dict() for n in self.nodes.values()],
                "edges": [e.to_dict() for e in self.edges],
            },
        )
        self.existed = True
        self._adj = None

    def rebuild_from_frontmatter(self) -> None:
        """Nodes from the index, relates-to edge pairs from each memory's links."""
        self.nodes = {}
        self.edges = []
        self._adj = None
        for memory in self.store.iter_memories():
            self.nodes[memory.id] = GraphNode(memory.id, memory.title, memory.type.value)
        ts = now_iso()
        for memory in self.store.iter_memories():
            for target in memory.links:
                if target in self.nodes and target != memory.id:
                    self._add_pair(memory.id, target, DEFAULT_LABEL, ts)
        self.rebuilt = True
        logger.info(
            "Rebuilt graph for %s (%d nodes, %d edges)",
            self.store.root,
            len(self.nodes),
            len(self.edges),
        )

    # ── Queries ──────────────────────────────────────────────

    @property
    def adjacency(self) -> Adjacency:
        if self._adj is None:
            self._adj = Adjacency.build(self.edges)
        return self._adj

    def has_edge(self, source: str, target: str, label: str) -> bool:
        return any(
            e.target == target and e.label == label for e in self.adjacency.outbound.get(source, [])
        )

    def edges_for(self, node_id: str) -> dict:
        """Outbound and inbound edges of node_id, direction explicit."""
        adj = self.adjacency
        return {
            "id": node_id,
            "outbound": [
                {**e.to_dict(), "direction": "outbound"} for e in adj.outbound.get(node_id, [])
            ],
            "inbound": [
                {**e.to_dict(), "direction": "inbound"} for e in adj.inbound.get(node_id, [])
            ],
        }

    def outbound_targets(self, node_id: str) -> list[str]:
        targets: dict[str, None] = {}
        for edge in self.adjacency.outbound.get(node_id, []):
            targets[edge.target] = None
        return list(targets)

    def ghost_nodes(self) -> list[str]:
        ids = self.store.index.ids()
        return [n for n in self.nodes if n not in ids]

    def broken_edges(self) -> list[GraphEdge]:
        ids = self.store.index.ids()
        return [e for e in self.edges if e.source not in ids or e.target not in ids]

    def empty_hubs(self) -> list[str]:
        adj = self.adjacency
        return [
            e.id
            for e in self.store.index.entries.values()
            if e.type is MemoryType.HUB and adj.degree(e.id) == 0
        ]

    # ── Mutation ─────────────────────────────────────────────

    def _add_pair(self, source: str, target: str, label: str, ts: str) -> None:
        inverse = inverse_label(label)
        if not self.has_edge(source, target, label):
            self.edges.append(GraphEdge(source, target, label, ts))
        if not self.has_edge(target, source, inverse):
            self.edges.append(GraphEdge(target, source, inverse, ts))
        self._adj = None

    def add_node(self, node_id: str, title: str, type: str) -> None:
        self.nodes[node_id] = GraphNode(node_id, title, type)

    def _require(self, node_id: str) -> None:
        if not self.store.exists(node_id):
            raise NotFoundError(
                f"Memory not found: {node_id} (scope: {self.store.scope.value})",
                remediation="Both memories must exist in the same scope before linking",
            )
        if node_id not in self.nodes:
            entry = self.store.index.get(node_id)
            self.add_node(node_id, entry.title, entry.type.value)

    def link(self, source: str, target: str, label: str = DEFAULT_LABEL) -> dict:
        """Create source -label-> target plus its inverse. Idempotent."""
        label = (label or DEFAULT_LABEL).strip()
        if source == target:
            raise ValidationError(
                f"Cannot link {source} to itself",
                remediation="Pick two different memories",
                field="target",
            )
        self._require(source)
        self._require(target)

        inverse = inverse_label(label)
        result = {"source": source, "target": target, "label": label, "inverseLabel": inverse}
        if self.has_edge(source, target, label):
            return {**result, "alreadyExists": True}

        self._add_pair(source, target, label, now_iso())
        self.save()
        self.sync_links([source, target])
        logger.info("Linked %s -[%s]-> %s", source, label, target)
        return {**result, "alreadyExists": False}

    def unlink(self, source: str, target: str, label: str | None = None) -> dict:
        """Remove matching forward and inverse edges. Missing edges are a no-op."""
        forward = [
            e for e in self.edges
            if e.source == source and e.target == target and (label is None or e.label == label)
        ]
        inverse_labels = {inverse_label(e.label) for e in forward}
        backward = [
            e for e in self.edges
            if e.source == target and e.target == source and e.label in inverse_labels
        ]
        doomed = {id(e) for e in forward + backward}
        if not doomed:
            return {"source": source, "target": target, "removed": 0}

        self.edges = [e for e in self.edges if id(e) not in doomed]
        self._adj = None
        self.save()
        self.sync_links([source, target])
        logger.info("Unlinked %s -> %s (%d edges)", source, target, len(doomed))
        return {"source": source, "target": target, "removed": len(doomed)}

    def remove_edges(self, edges: list[GraphEdge]) -> int:
        doomed = {e.key() for e in edges}
        before = len(self.edges)
        self.edges = [e for e in self.edges if e.key() not in doomed]
        self._adj = None
        return before - len(self.edges)

    def sync_links(self, node_ids: list[str] | None = None) -> list[str]:
        """Rewrite the links header from outbound edges. Returns ids that changed."""
        changed = []
        for node_id in node_ids if node_ids is not None else list(self.store.index.entries):
            if not self.store.exists(node_id):
                continue
            try:
                memory = self.store.read(node_id)
            except (MemkeepError, OSError) as e:
                logger.warning("Cannot sync links for %s: %s", node_id, e)
                continue
            links = self.outbound_targets(node_id)
            if memory.links != links:
                memory.links = links
                self.store.save(memory)
                changed.append(node_id)
        return changed

    def cascade_delete(self, node_id: str) -> dict:
        """Drop the node and every edge touching it, then fix neighbours' links."""
        neighbours = [n for n in self.adjacency.neighbours(node_id) if n != node_id]
        touching = [e for e in self.edges if node_id in (e.source, e.target)]
        removed = self.remove_edges(touching)
        self.nodes.pop(node_id, None)
        self.save()
        self.sync_links(neighbours)

        adj = self.adjacency
        empty_hubs = []
        for n in neighbours:
            entry = self.store.index.get(n)
            if entry and entry.type is MemoryType.HUB and adj.degree(n) == 0:
                empty_hubs.append(n)
                logger.warning("Hub %s has no remaining links after deleting %s", n, node_id)
        if removed:
            logger.info("Cascade delete %s: removed %d edges", node_id, removed)
        return {"edgesRemoved": removed, "neighboursUpdated": neighbours, "emptyHubs": empty_hubs}

    def sync_nodes(self) -> dict:
        """Add nodes for indexed memories, drop ghosts, refresh titles/types."""
        added, removed, updated = [], [], []
        entries = self.store.index.entries
        for entry in entries.values():
            node = self.nodes.get(entry.id)
            if node is None:
                self.add_node(entry.id, entry.title, entry.type.value)
                added.append(entry.id)
            elif node.title != entry.title or node.type != entry.type.value:
                node.title, node.type = entry.title, entry.type.value
                updated.append(entry.id)
        for node_id in list(self.nodes):
            if node_id not in entries:
                del self.nodes[node_id]
                removed.append(node_id)
        return {"added": added, "removed": removed, "updated": updated}

    # ── Traversal ────────────────────────────────────────────

    def traverse(
        self,
        start: str,
        max_depth: int = DEFAULT_TRAVERSE_DEPTH,
        max_nodes: int = MAX_TRAVERSE_NODES,
        max_edges: int = MAX_TRAVERSE_EDGES,
    ) -> dict:
        """Breadth-first neighbourhood of start, bounded by depth and output size."""
        if start not in self.nodes and not self.store.exists(start):
            raise NotFoundError(
                f"Memory not found: {start} (scope: {self.store.scope.value})",
                remediation="List memories to check the id, or try another scope",
            )
        adj = self.adjacency
        depths: dict[str, int] = {start: 0}
        queue = deque([start])
        truncated = False
        while queue:
            current = queue.popleft()
            if depths[current] >= max_depth:
                continue
            for n in adj.neighbours(current):
                if n in depths:
                    continue
                if len(depths) >= max_nodes:
                    truncated = True
                    break
                depths[n] = depths[current] + 1
                queue.append(n)

        nodes = []
        for node_id, depth in depths.items():
            node = self.nodes.get(node_id) or GraphNode(node_id)
            nodes.append({**node.to_dict(), "depth": depth})

        edges = []
        for node_id in depths:
            for e in adj.outbound.get(node_id, []):
                if e.target in depths:
                    if len(edges) >= max_edges:
                        truncated = True
                        break
                    edges.append(e.to_dict())
        return {"start": start, "maxDepth": max_depth, "nodes": nodes, "edges": edges, "truncated": truncated}

    def shortest_path(self, source: str, target: str) -> list[str] | None:
        if source == target:
            return [source]
        adj = self.adjacency
        parents: dict[str, str | None] = {source: None}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            for n in adj.neighbours(current):
                if n in parents:
                    continue
                parents[n] = current
                if n == target:
                    path = [n]
                    while parents[path[-1]] is not None:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                queue.append(n)
        return None

    def components(self) -> list[list[str]]:
        adj = self.adjacency
        seen: set[str] = set()
        groups = []
        for node_id in self.nodes:
            if node_id in seen:
                continue
            group = []
            queue = deque([node_id])
            seen.add(node_id)
            while queue:
                current = queue.popleft()
                group.append(current)
                for n in adj.neighbours(current):
                    if n not in seen:
                        seen.add(n)
                        queue.append(n)
            groups.append(sorted(group))
        return sorted(groups, key=len, reverse=True)
