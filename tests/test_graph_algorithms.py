"""Unit tests for GraphAlgorithms."""

from __future__ import annotations

import math
from unittest.mock import patch

import pytest

from src.models.graph_types import GapType, SelectionCriteria
from src.models.knowledge_graph import KnowledgeGraph
from src.tools.graph_algorithms import GraphAlgorithms
from src.utils.errors import AlgorithmFailureError, NodeNotFoundError


@pytest.fixture
def algorithms() -> GraphAlgorithms:
    return GraphAlgorithms()


def _chain(graph: KnowledgeGraph, names: list[str], weight: float = 0.8) -> None:
    for name in names:
        graph.create_node(name, node_id=name)
    for source, target in zip(names, names[1:]):
        graph.create_edge(source, target, weight=weight)


class TestCentrality:
    """Tests for compute_centrality."""

    def test_empty_graph(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """An empty graph has no ranks."""
        assert algorithms.compute_centrality(graph) == {}

    def test_single_node(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """A lone dangling node keeps all the rank."""
        graph.create_node("solo", node_id="solo")
        assert algorithms.compute_centrality(graph)["solo"] == pytest.approx(1.0)

    def test_sums_to_one_with_dangling(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Dangling nodes redistribute rank so the total stays ~1."""
        _chain(graph, ["a", "b", "c", "d"])
        graph.create_node("island", node_id="island")
        ranks = algorithms.compute_centrality(graph)
        assert set(ranks) == {"a", "b", "c", "d", "island"}
        assert sum(ranks.values()) == pytest.approx(1.0, abs=0.01)
        assert all(math.isfinite(v) and v > 0 for v in ranks.values())

    def test_sink_outranks_source(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Rank flows along edges toward the end of a chain."""
        _chain(graph, ["a", "b", "c"])
        ranks = algorithms.compute_centrality(graph)
        assert ranks["c"] > ranks["b"] > ranks["a"]

    def test_weight_does_not_change_rank(self, algorithms: GraphAlgorithms) -> None:
        """Rank distribution ignores edge weight."""
        light = KnowledgeGraph(tier="development")
        heavy = KnowledgeGraph(tier="development")
        _chain(light, ["a", "b", "c"], weight=0.1)
        _chain(heavy, ["a", "b", "c"], weight=1.0)
        assert algorithms.compute_centrality(light) == pytest.approx(
            algorithms.compute_centrality(heavy)
        )

    def test_symmetric_cycle_is_uniform(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """A directed cycle gives every node equal rank."""
        _chain(graph, ["a", "b", "c"])
        graph.create_edge("c", "a")
        ranks = algorithms.compute_centrality(graph)
        for value in ranks.values():
            assert value == pytest.approx(1 / 3, abs=1e-3)

    def test_bidirectional_edges_conserve_rank(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Bidirectional edges pass rank both ways without leaking it."""
        for name in ("a", "b", "c"):
            graph.create_node(name, node_id=name)
        graph.create_edge("a", "b", bidirectional=True)
        graph.create_edge("b", "c")
        ranks = algorithms.compute_centrality(graph)
        assert sum(ranks.values()) == pytest.approx(1.0, abs=0.01)


class TestConnectedComponents:
    """Tests for detect_connected_components."""

    def test_strong_edges_form_cluster(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Nodes joined by weight > 0.6 cluster; weaker links do not."""
        _chain(graph, ["a", "b", "c"], weight=0.9)
        graph.create_node("d", node_id="d")
        graph.create_edge("c", "d", weight=0.6)
        clusters = algorithms.detect_connected_components(graph)
        assert list(clusters) == ["cluster-0"]
        cluster = clusters["cluster-0"]
        assert cluster.node_ids == {"a", "b", "c"}
        assert cluster.centroid == "a"
        # two internal directed edges out of 3 * 2 possible
        assert cluster.coherence == pytest.approx(2 / 6)

    def test_incoming_edges_followed(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Traversal ignores edge direction."""
        for name in ("hub", "x", "y"):
            graph.create_node(name, node_id=name)
        graph.create_edge("x", "hub", weight=0.9)
        graph.create_edge("y", "hub", weight=0.9)
        clusters = algorithms.detect_connected_components(graph)
        assert clusters["cluster-0"].node_ids == {"hub", "x", "y"}
        assert clusters["cluster-0"].centroid == "hub"

    def test_singletons_dropped(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Isolated nodes produce no cluster."""
        graph.create_node("a")
        graph.create_node("b")
        assert algorithms.detect_connected_components(graph) == {}


class TestFindPath:
    """Tests for find_path."""

    def test_prefers_strong_direct_edge(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """1/0.9 beats 1/0.3 + 1/0.3."""
        for name in ("A", "B", "C"):
            graph.create_node(name, node_id=name)
        graph.create_edge("A", "B", weight=0.9)
        graph.create_edge("A", "C", weight=0.3)
        graph.create_edge("C", "B", weight=0.3)
        assert algorithms.find_path(graph, "A", "B") == ["A", "B"]

    def test_prefers_strong_detour(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Two strong hops beat one very weak edge."""
        for name in ("A", "B", "C"):
            graph.create_node(name, node_id=name)
        graph.create_edge("A", "B", weight=0.1)
        graph.create_edge("A", "C", weight=1.0)
        graph.create_edge("C", "B", weight=1.0)
        assert algorithms.find_path(graph, "A", "B") == ["A", "C", "B"]

    def test_unreachable_returns_empty(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """No connecting edges gives an empty path."""
        graph.create_node("A", node_id="A")
        graph.create_node("B", node_id="B")
        assert algorithms.find_path(graph, "A", "B") == []

    def test_direction_respected(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Plain edges are not walked backwards."""
        _chain(graph, ["A", "B"])
        assert algorithms.find_path(graph, "B", "A") == []

    def test_bidirectional_walked_backwards(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Bidirectional edges are walkable from the target."""
        graph.create_node("A", node_id="A")
        graph.create_node("B", node_id="B")
        graph.create_edge("A", "B", bidirectional=True)
        assert algorithms.find_path(graph, "B", "A") == ["B", "A"]

    def test_same_node(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """A node reaches itself trivially."""
        graph.create_node("A", node_id="A")
        assert algorithms.find_path(graph, "A", "A") == ["A"]

    def test_missing_endpoint(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """Unknown endpoints raise NodeNotFoundError, not AlgorithmFailureError."""
        graph.create_node("A", node_id="A")
        with pytest.raises(NodeNotFoundError):
            algorithms.find_path(graph, "A", "missing")


class TestIdentifyGaps:
    """Tests for identify_gaps."""

    def test_contradiction_gap(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """A contradicts edge yields a gap with the edge's weight as priority."""
        graph.create_node("x", node_id="x")
        graph.create_node("y", node_id="y")
        graph.create_edge("x", "y", type="contradicts", weight=0.7)
        gaps = [g for g in algorithms.identify_gaps(graph) if g.type == GapType.CONTRADICTION]
        assert len(gaps) == 1
        assert set(gaps[0].node_ids) == {"x", "y"}
        assert gaps[0].priority == pytest.approx(0.7)

    def test_missing_link_by_shared_tags(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Unlinked nodes sharing tags score 0.3 per shared tag."""
        graph.create_node("a", node_id="a", tags=["ice", "density"])
        graph.create_node("b", node_id="b", tags=["ice", "density", "water"])
        gaps = algorithms.identify_gaps(graph)
        missing = [g for g in gaps if g.type == GapType.MISSING_LINK]
        assert len(missing) == 1
        assert missing[0].node_ids == ["a", "b"]
        assert missing[0].priority == pytest.approx(0.6)

    def test_missing_link_suppressed_by_edge_either_way(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """An edge in either direction closes the gap."""
        graph.create_node("a", node_id="a", tags=["t"])
        graph.create_node("b", node_id="b", tags=["t"])
        graph.create_edge("b", "a")
        gaps = algorithms.identify_gaps(graph)
        assert not [g for g in gaps if g.type == GapType.MISSING_LINK]

    def test_weak_evidence(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """Confidence below 0.3 is flagged at priority 0.5."""
        graph.create_node("shaky", node_id="shaky", confidence=0.1)
        graph.create_node("solid", node_id="solid", confidence=0.3)
        weak = [g for g in algorithms.identify_gaps(graph) if g.type == GapType.WEAK_EVIDENCE]
        assert [g.node_ids for g in weak] == [["shaky"]]
        assert weak[0].priority == 0.5

    def test_isolated_cluster(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """A cluster with no outgoing edge to the rest of the graph is isolated."""
        _chain(graph, ["a", "b"], weight=0.9)
        graph.create_node("c", node_id="c")
        isolated = [
            g for g in algorithms.identify_gaps(graph) if g.type == GapType.ISOLATED_CLUSTER
        ]
        assert len(isolated) == 1
        assert isolated[0].node_ids == ["a", "b"]
        assert isolated[0].priority == 0.4

    def test_connected_cluster_not_isolated(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """A weak outgoing edge to a non-member breaks isolation."""
        _chain(graph, ["a", "b"], weight=0.9)
        graph.create_node("c", node_id="c")
        graph.create_edge("b", "c", weight=0.2)
        gaps = algorithms.identify_gaps(graph)
        assert not [g for g in gaps if g.type == GapType.ISOLATED_CLUSTER]

    def test_sorted_by_priority(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """Gaps come back highest priority first."""
        graph.create_node("a", node_id="a", tags=["t"], confidence=0.1)
        graph.create_node("b", node_id="b", tags=["t"])
        graph.create_node("c", node_id="c")
        graph.create_edge("a", "c", type="contradicts", weight=0.95)
        priorities = [g.priority for g in algorithms.identify_gaps(graph)]
        assert priorities == sorted(priorities, reverse=True)
        assert priorities[0] == pytest.approx(0.95)

    def test_empty_graph(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """Nothing to report on an empty graph."""
        assert algorithms.identify_gaps(graph) == []


class TestSelectTopNodes:
    """Tests for select_top_nodes."""

    def test_respects_top_k(self, algorithms: GraphAlgorithms, graph: KnowledgeGraph) -> None:
        """Unconnected nodes are picked by rank up to top_k."""
        for i in range(6):
            graph.create_node(str(i), node_id=f"n{i}")
        centrality = {f"n{i}": 0.1 * (6 - i) for i in range(6)}
        chosen = algorithms.select_top_nodes(
            graph, centrality, SelectionCriteria(top_k=3, per_cluster=0)
        )
        assert chosen == ["n0", "n1", "n2"]

    def test_cluster_representatives_first(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Each cluster contributes its best node before the global fill."""
        _chain(graph, ["a", "b"], weight=0.9)
        _chain(graph, ["c", "d"], weight=0.9)
        centrality = {"a": 0.4, "b": 0.3, "c": 0.2, "d": 0.1}
        chosen = algorithms.select_top_nodes(
            graph, centrality, SelectionCriteria(top_k=2, per_cluster=1)
        )
        assert set(chosen) == {"a", "c"}

    def test_diversity_penalty_rejects_crowded_candidate(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """A candidate near two selected nodes scores 0.7 * 0.7 < 0.5 and is skipped."""
        for name in ("hub", "p", "q", "far"):
            graph.create_node(name, node_id=name)
        graph.create_edge("hub", "p", weight=0.5)
        graph.create_edge("hub", "q", weight=0.5)
        centrality = {"p": 0.4, "q": 0.3, "hub": 0.2, "far": 0.1}
        chosen = algorithms.select_top_nodes(
            graph, centrality, SelectionCriteria(top_k=4, per_cluster=0)
        )
        assert chosen == ["p", "q", "far"]

    def test_two_hop_neighbours_are_penalised(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Distance is counted in hops, so two-hop neighbours still crowd a candidate."""
        for name in ("s1", "s2", "c", "m1", "m2"):
            graph.create_node(name, node_id=name)
        graph.create_edge("c", "m1", weight=0.5)
        graph.create_edge("m1", "s1", weight=0.5)
        graph.create_edge("c", "m2", weight=0.5)
        graph.create_edge("m2", "s2", weight=0.5)
        centrality = {"s1": 0.5, "s2": 0.4, "c": 0.3, "m1": 0.02, "m2": 0.01}
        chosen = algorithms.select_top_nodes(
            graph, centrality, SelectionCriteria(top_k=3, per_cluster=0)
        )
        assert chosen == ["s1", "s2", "m1"]

    def test_zero_diversity_weight_admits_all(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """Without a penalty selection is pure ranking."""
        _chain(graph, ["a", "b", "c"], weight=0.5)
        centrality = {"a": 0.5, "b": 0.3, "c": 0.2}
        chosen = algorithms.select_top_nodes(
            graph, centrality, SelectionCriteria(top_k=3, per_cluster=0, diversity_weight=0.0)
        )
        assert chosen == ["a", "b", "c"]

    def test_criteria_validation(self) -> None:
        """Out-of-range criteria are rejected."""
        with pytest.raises(ValueError):
            SelectionCriteria(diversity_weight=1.5)
        with pytest.raises(ValueError):
            SelectionCriteria(top_k=-1)


class TestFailureWrapping:
    """Unexpected errors surface as AlgorithmFailureError."""

    def test_internal_error_wrapped(
        self, algorithms: GraphAlgorithms, graph: KnowledgeGraph
    ) -> None:
        """A crash inside an algorithm is wrapped with the algorithm name."""
        graph.create_node("a")
        with patch.object(KnowledgeGraph, "get_all_nodes", side_effect=RuntimeError("boom")):
            with pytest.raises(AlgorithmFailureError) as exc_info:
                algorithms.compute_centrality(graph)
        assert exc_info.value.algorithm == "compute_centrality"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
