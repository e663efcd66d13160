"""Tests for the link graph: bidirectional edges, cascade, traversal, rebuild."""

from __future__ import annotations

import json

import pytest
from pathlib import Path

from memkeep.errors import NotFoundError, ValidationError
from memkeep.graph.labels import inverse_label, known_labels
from memkeep.graph.mermaid import render_mermaid
from memkeep.graph.store import GRAPH_FILENAME, GraphStore
from memkeep.memory.store import MemoryStore
from memkeep.models import Scope


@pytest.fixture
def store(tmp_path: Path) -> MemoryStore:
    s = MemoryStore(tmp_path / "memory", Scope.PROJECT)
    s.create("Auth", "decision", "Use OAuth2.")
    s.create("Token refresh", "artifact", "refresh.py")
    s.create("Clock skew", "gotcha", "Tokens expire early.")
    return s


@pytest.fixture
def graph(store: MemoryStore) -> GraphStore:
    return GraphStore(store)


class TestLabels:
    def test_inverse_pairs(self):
        assert inverse_label("implements") == "implemented-by"
        assert inverse_label("implemented-by") == "implements"
        assert inverse_label("blocks") == "blocked-by"

    def test_unknown_label_is_symmetric(self):
        assert inverse_label("rhymes-with") == "rhymes-with"

    def test_known_labels(self):
        labels = known_labels()
        assert "relates-to" in labels
        assert "superseded-by" in labels


class TestLink:
    def test_link_creates_both_directions(self, graph: GraphStore):
        result = graph.link("artifact-token-refresh", "decision-auth", "implements")
        assert result["alreadyExists"] is False
        assert result["inverseLabel"] == "implemented-by"
        assert graph.has_edge("artifact-token-refresh", "decision-auth", "implements")
        assert graph.has_edge("decision-auth", "artifact-token-refresh", "implemented-by")

    def test_link_persists_and_syncs_headers(self, graph: GraphStore, store: MemoryStore):
        graph.link("artifact-token-refresh", "decision-auth", "implements")
        data = json.loads((store.root / GRAPH_FILENAME).read_text())
        assert len(data["edges"]) == 2
        assert store.read("artifact-token-refresh").links == ["decision-auth"]
        assert store.read("decision-auth").links == ["artifact-token-refresh"]

    def test_link_idempotent(self, graph: GraphStore):
        graph.link("decision-auth", "gotcha-clock-skew")
        again = graph.link("decision-auth", "gotcha-clock-skew")
        assert again["alreadyExists"] is True
        assert len(graph.edges) == 2

    def test_self_link_rejected(self, graph: GraphStore):
        with pytest.raises(ValidationError):
            graph.link("decision-auth", "decision-auth")

    def test_missing_endpoint(self, graph: GraphStore):
        with pytest.raises(NotFoundError):
            graph.link("decision-auth", "learning-ghost")
        assert graph.edges == []

    def test_link_does_not_bump_updated(self, graph: GraphStore, store: MemoryStore):
        before = store.read("decision-auth").updated
        graph.link("decision-auth", "gotcha-clock-skew")
        assert store.read("decision-auth").updated == before

    def test_edges_for_direction(self, graph: GraphStore):
        graph.link("artifact-token-refresh", "decision-auth", "implements")
        edges = graph.edges_for("decision-auth")
        assert [e["label"] for e in edges["outbound"]] == ["implemented-by"]
        assert [e["label"] for e in edges["inbound"]] == ["implements"]
        assert edges["inbound"][0]["direction"] == "inbound"


class TestUnlink:
    def test_unlink_removes_pair(self, graph: GraphStore, store: MemoryStore):
        graph.link("artifact-token-refresh", "decision-auth", "implements")
        result = graph.unlink("artifact-token-refresh", "decision-auth")
        assert result["removed"] == 2
        assert graph.edges == []
        assert store.read("decision-auth").links == []

    def test_unlink_label_filter(self, graph: GraphStore):
        graph.link("decision-auth", "gotcha-clock-skew", "warns")
        graph.link("decision-auth", "gotcha-clock-skew", "relates-to")
        graph.unlink("decision-auth", "gotcha-clock-skew", "warns")
        assert not graph.has_edge("gotcha-clock-skew", "decision-auth", "warned-by")
        assert graph.has_edge("gotcha-clock-skew", "decision-auth", "relates-to")

    def test_unlink_missing_is_noop(self, graph: GraphStore):
        assert graph.unlink("decision-auth", "gotcha-clock-skew")["removed"] == 0


class TestCascadeDelete:
    def test_delete_removes_edges_and_fixes_neighbours(self, graph: GraphStore, store: MemoryStore):
        graph.link("artifact-token-refresh", "decision-auth", "implements")
        graph.link("gotcha-clock-skew", "decision-auth", "warns")
        result = store.delete("decision-auth")
        assert result["edgesRemoved"] == 4
        assert sorted(result["neighboursUpdated"]) == ["artifact-token-refresh", "gotcha-clock-skew"]
        assert graph.edges == []
        assert "decision-auth" not in graph.nodes
        assert store.read("artifact-token-refresh").links == []

    def test_empty_hub_reported(self, graph: GraphStore, store: MemoryStore):
        hub = store.create("Auth", "hub", "Everything auth.")
        graph.link(hub.id, "decision-auth", "parent-of")
        result = store.delete("decision-auth")
        assert result["emptyHubs"] == [hub.id]
        assert graph.empty_hubs() == [hub.id]


class TestTraverse:
    def test_cycle_terminates(self, graph: GraphStore):
        graph.link("decision-auth", "artifact-token-refresh")
        graph.link("artifact-token-refresh", "gotcha-clock-skew")
        graph.link("gotcha-clock-skew", "decision-auth")
        result = graph.traverse("decision-auth", max_depth=5)
        depths = {n["id"]: n["depth"] for n in result["nodes"]}
        assert depths == {"decision-auth": 0, "artifact-token-refresh": 1, "gotcha-clock-skew": 1}
        assert len(result["edges"]) == 6
        assert result["truncated"] is False

    def test_depth_limit(self, graph: GraphStore):
        graph.link("decision-auth", "artifact-token-refresh")
        graph.link("artifact-token-refresh", "gotcha-clock-skew")
        result = graph.traverse("decision-auth", max_depth=1)
        assert {n["id"] for n in result["nodes"]} == {"decision-auth", "artifact-token-refresh"}

    def test_node_cap_truncates(self, graph: GraphStore):
        graph.link("decision-auth", "artifact-token-refresh")
        graph.link("decision-auth", "gotcha-clock-skew")
        result = graph.traverse("decision-auth", max_nodes=2)
        assert len(result["nodes"]) == 2
        assert result["truncated"] is True

    def test_unknown_start(self, graph: GraphStore):
        with pytest.raises(NotFoundError):
            graph.traverse("learning-ghost")

    def test_shortest_path_and_components(self, graph: GraphStore, store: MemoryStore):
        store.create("Lonely", "learning", "no links")
        graph.sync_nodes()
        graph.link("decision-auth", "artifact-token-refresh")
        graph.link("artifact-token-refresh", "gotcha-clock-skew")
        assert graph.shortest_path("decision-auth", "gotcha-clock-skew") == [
            "decision-auth",
            "artifact-token-refresh",
            "gotcha-clock-skew",
        ]
        assert graph.shortest_path("decision-auth", "learning-lonely") is None
        assert graph.components()[-1] == ["learning-lonely"]

    def test_mermaid_one_arrow_per_pair(self, graph: GraphStore):
        graph.link("artifact-token-refresh", "decision-auth", "implements")
        text = render_mermaid(graph.traverse("decision-auth"))
        assert text.startswith("graph LR\n")
        assert text.count("-->") == 1
        assert 'decision_auth{{"Auth"}}' in text


class TestRecovery:
    def test_corrupt_graph_rebuilt_from_links(self, graph: GraphStore, store: MemoryStore):
        graph.link("artifact-token-refresh", "decision-auth", "implements")
        (store.root / GRAPH_FILENAME).write_text("not json")
        fresh = GraphStore(MemoryStore(store.root, Scope.PROJECT))
        assert fresh.rebuilt
        assert fresh.has_edge("artifact-token-refresh", "decision-auth", "relates-to")
        assert fresh.has_edge("decision-auth", "artifact-token-refresh", "relates-to")
        assert len(fresh.edges) == 2
        assert json.loads((store.root / GRAPH_FILENAME).read_text())["version"] == 1

    def test_duplicate_edges_collapsed_on_load(self, graph: GraphStore, store: MemoryStore):
        edge = {"source": "decision-auth", "target": "gotcha-clock-skew", "label": "relates-to"}
        (store.root / GRAPH_FILENAME).write_text(json.dumps({"version": 1, "nodes": [], "edges": [edge, edge]}))
        fresh = GraphStore(MemoryStore(store.root, Scope.PROJECT))
        assert len(fresh.edges) == 1

    def test_sync_nodes_and_broken_edges(self, graph: GraphStore, store: MemoryStore):
        graph.link("decision-auth", "gotcha-clock-skew")
        (store.root / "permanent" / "gotcha-clock-skew.md").unlink()
        fresh_store = MemoryStore(store.root, Scope.PROJECT)
        fresh_store.rebuild_index()
        fresh = GraphStore(fresh_store, cascade=False)
        assert fresh.ghost_nodes() == ["gotcha-clock-skew"]
        assert len(fresh.broken_edges()) == 2
        changes = fresh.sync_nodes()
        assert changes["removed"] == ["gotcha-clock-skew"]
