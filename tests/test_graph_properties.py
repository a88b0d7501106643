"""Property-based tests for graph invariants.

Uses hypothesis to build random graphs through the mutation API and checks
that structural and algorithmic invariants hold for every one of them.
"""

from __future__ import annotations

import math

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from src.models.graph_types import EdgeType, GapType, NodeType
from src.models.knowledge_graph import KnowledgeGraph
from src.tools.graph_algorithms import GraphAlgorithms
from src.utils.errors import InvalidWeightError

# =============================================================================
# Strategy Definitions
# =============================================================================

text_strategy = st.text(min_size=0, max_size=40)
weight_strategy = st.floats(min_value=0.01, max_value=1.0, allow_nan=False)
bad_weight_strategy = st.one_of(
    st.floats(max_value=0.0, allow_nan=False, allow_infinity=False),
    st.floats(min_value=1.0, exclude_min=True, allow_nan=False, allow_infinity=False),
)

node_spec = st.fixed_dictionaries(
    {
        "content": text_strategy,
        "type": st.sampled_from(list(NodeType)),
        "tags": st.sets(st.sampled_from(["a", "b", "c", "d"]), max_size=3),
        "confidence": st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
        "parent": st.none() | st.integers(min_value=0, max_value=30),
    }
)

edge_spec = st.tuples(
    st.integers(min_value=0, max_value=30),
    st.integers(min_value=0, max_value=30),
    weight_strategy,
    st.sampled_from(list(EdgeType)),
    st.booleans(),
)

graph_spec = st.tuples(
    st.lists(node_spec, min_size=1, max_size=15),
    st.lists(edge_spec, max_size=30),
)

PROPERTY_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


# =============================================================================
# Helper Functions
# =============================================================================


def build_graph(spec: tuple[list[dict], list[tuple]]) -> KnowledgeGraph:
    """Create a graph from generated node and edge specs."""
    nodes, edges = spec
    graph = KnowledgeGraph(tier="development", graph_id="prop")
    ids: list[str] = []
    for item in nodes:
        parent = None
        if item["parent"] is not None and ids:
            candidate = ids[item["parent"] % len(ids)]
            if graph.get_node(candidate).depth < graph.get_resource_limits().depth:
                parent = candidate
        ids.append(
            graph.create_node(
                item["content"],
                type=item["type"],
                tags=item["tags"],
                confidence=item["confidence"],
                parent_id=parent,
            )
        )
    for source, target, weight, edge_type, bidirectional in edges:
        graph.create_edge(
            ids[source % len(ids)],
            ids[target % len(ids)],
            type=edge_type,
            weight=weight,
            bidirectional=bidirectional,
        )
    return graph


# =============================================================================
# Properties
# =============================================================================


class TestStructuralProperties:
    """Invariants of the store under random mutation."""

    @PROPERTY_SETTINGS
    @given(spec=graph_spec, removals=st.lists(st.integers(min_value=0, max_value=30), max_size=8))
    def test_no_orphan_edges_after_removals(
        self, spec: tuple[list[dict], list[tuple]], removals: list[int]
    ) -> None:
        """After every removal no edge references the removed node."""
        graph = build_graph(spec)
        for index in removals:
            nodes = graph.get_all_nodes()
            if not nodes:
                break
            doomed = nodes[index % len(nodes)].id
            assert graph.remove_node(doomed)
            for edge in graph.get_all_edges():
                assert doomed not in (edge.source_id, edge.target_id)
            for node in graph.get_all_nodes():
                assert node.parent_id != doomed
                assert doomed not in node.children_ids
            graph.validate()

    @PROPERTY_SETTINGS
    @given(spec=graph_spec, weight=bad_weight_strategy)
    def test_invalid_weight_never_added(
        self, spec: tuple[list[dict], list[tuple]], weight: float
    ) -> None:
        """Out-of-domain weights always fail and leave the edge count unchanged."""
        graph = build_graph(spec)
        before = graph.get_edge_count()
        first = graph.get_all_nodes()[0].id
        with pytest.raises(InvalidWeightError):
            graph.create_edge(first, first, weight=weight)
        assert graph.get_edge_count() == before

    @PROPERTY_SETTINGS
    @given(spec=graph_spec)
    def test_round_trip(self, spec: tuple[list[dict], list[tuple]]) -> None:
        """deserialize(serialize(g)) preserves counts and per-node fields."""
        graph = build_graph(spec)
        restored = KnowledgeGraph.deserialize(graph.serialize())
        assert restored.get_node_count() == graph.get_node_count()
        assert restored.get_edge_count() == graph.get_edge_count()
        for node in graph.get_all_nodes():
            copy = restored.get_node(node.id)
            assert copy is not None
            assert copy.content == node.content
            assert copy.type == node.type
            assert copy.depth == node.depth
            assert copy.metadata.selected == node.metadata.selected
            assert copy.outgoing_edges == node.outgoing_edges


class TestAlgorithmProperties:
    """Invariants of the analysis routines on random graphs."""

    @PROPERTY_SETTINGS
    @given(spec=graph_spec)
    def test_centrality_sums_to_one(self, spec: tuple[list[dict], list[tuple]]) -> None:
        """Ranks are finite, positive and sum to ~1, dangling nodes included."""
        graph = build_graph(spec)
        ranks = GraphAlgorithms().compute_centrality(graph)
        assert set(ranks) == {n.id for n in graph.get_all_nodes()}
        assert all(math.isfinite(v) and v > 0 for v in ranks.values())
        assert abs(sum(ranks.values()) - 1.0) <= 0.01

    @PROPERTY_SETTINGS
    @given(spec=graph_spec, weight=weight_strategy)
    def test_contradiction_always_reported(
        self, spec: tuple[list[dict], list[tuple]], weight: float
    ) -> None:
        """Every contradicts edge yields a gap with both ids and its weight."""
        graph = build_graph(spec)
        nodes = graph.get_all_nodes()
        source, target = nodes[0].id, nodes[-1].id
        graph.create_edge(source, target, type=EdgeType.CONTRADICTS, weight=weight)
        gaps = GraphAlgorithms().identify_gaps(graph)
        assert any(
            gap.type == GapType.CONTRADICTION
            and set(gap.node_ids) == {source, target}
            and gap.priority == weight
            for gap in gaps
        )

    @PROPERTY_SETTINGS
    @given(spec=graph_spec)
    def test_paths_follow_edges(self, spec: tuple[list[dict], list[tuple]]) -> None:
        """Every consecutive pair on a found path is joined by a walkable edge."""
        graph = build_graph(spec)
        nodes = graph.get_all_nodes()
        path = GraphAlgorithms().find_path(graph, nodes[0].id, nodes[-1].id)
        if path:
            assert path[0] == nodes[0].id
            assert path[-1] == nodes[-1].id
            for current, following in zip(path, path[1:]):
                assert graph.has_edge_between(current, following)

    @PROPERTY_SETTINGS
    @given(spec=graph_spec)
    def test_clusters_are_disjoint(self, spec: tuple[list[dict], list[tuple]]) -> None:
        """No node belongs to two clusters and coherence is non-negative."""
        graph = build_graph(spec)
        clusters = GraphAlgorithms().detect_connected_components(graph)
        seen: set[str] = set()
        for cluster in clusters.values():
            assert len(cluster.node_ids) > 1
            assert not (seen & cluster.node_ids)
            seen |= cluster.node_ids
            assert cluster.coherence >= 0.0
