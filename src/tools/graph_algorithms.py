"""Read-only analysis over a KnowledgeGraph.

Algorithms:
    - PageRank-style centrality with dangling-node redistribution
    - Connected components over strong edges (weight > 0.6)
    - Dijkstra shortest path with inverse-weight edge length
    - Knowledge-gap detection (missing links, weak evidence,
      contradictions, isolated clusters)
    - Diversity-aware top-K node selection

None of these mutate the graph, so a call can be retried or abandoned
safely. Unexpected internal errors surface as ``AlgorithmFailureError``;
domain errors such as ``NodeNotFoundError`` pass through unchanged.
"""

from __future__ import annotations

import heapq
import math
from collections import deque
from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from loguru import logger

from src.models.graph_types import Cluster, EdgeType, GapType, KnowledgeGap, SelectionCriteria
from src.utils.errors import AlgorithmFailureError, KnowledgeGraphError, NodeNotFoundError

if TYPE_CHECKING:
    from src.models.knowledge_graph import KnowledgeGraph

P = ParamSpec("P")
T = TypeVar("T")

DAMPING = 0.85
MAX_ITERATIONS = 30
TOLERANCE = 1e-4
STRONG_EDGE_THRESHOLD = 0.6
LOW_CONFIDENCE_THRESHOLD = 0.3

MISSING_LINK_PRIORITY_PER_TAG = 0.3
WEAK_EVIDENCE_PRIORITY = 0.5
ISOLATED_CLUSTER_PRIORITY = 0.4

DIVERSITY_HOPS = 3
DIVERSITY_ADMIT_THRESHOLD = 0.5


def _guarded(name: str) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Convert unexpected exceptions into AlgorithmFailureError."""

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except KnowledgeGraphError:
                raise
            except Exception as e:
                logger.error(f"{name} failed: {e}")
                raise AlgorithmFailureError(name, e) from e

        return wrapper

    return decorator


class GraphAlgorithms:
    """Stateless analysis routines for the PDR knowledge graph.

    Example:
        >>> algorithms = GraphAlgorithms()
        >>> ranks = algorithms.compute_centrality(kg)
        >>> clusters = algorithms.detect_connected_components(kg)
        >>> top = algorithms.select_top_nodes(kg, ranks, SelectionCriteria(top_k=5))

    """

    @_guarded("compute_centrality")
    def compute_centrality(self, graph: KnowledgeGraph) -> dict[str, float]:
        """PageRank over the graph's nodes.

        Rank of a dangling node (no outgoing edges) is spread evenly over
        all nodes. Edge weight does not affect rank distribution.

        Returns:
            Mapping of node id to rank; empty for an empty graph. Values sum
            to roughly 1.

        """
        nodes = graph.get_all_nodes()
        n = len(nodes)
        if n == 0:
            return {}

        node_ids = [node.id for node in nodes]
        out_degree = {node_id: len(graph.get_outgoing_edges(node_id)) for node_id in node_ids}
        # one entry per incoming edge whose other end can pass rank along
        inbound: dict[str, list[str]] = {}
        for node_id in node_ids:
            sources = []
            for edge in graph.get_incoming_edges(node_id):
                source_id = edge.other_end(node_id)
                if out_degree.get(source_id, 0) > 0:
                    sources.append(source_id)
            inbound[node_id] = sources

        ranks = dict.fromkeys(node_ids, 1.0 / n)
        base = (1.0 - DAMPING) / n

        for iteration in range(MAX_ITERATIONS):
            dangling = sum(ranks[node_id] for node_id in node_ids if out_degree[node_id] == 0)
            new_ranks: dict[str, float] = {}
            max_diff = 0.0
            for node_id in node_ids:
                rank = base + DAMPING * dangling / n
                for source_id in inbound[node_id]:
                    rank += DAMPING * ranks[source_id] / out_degree[source_id]
                new_ranks[node_id] = rank
                max_diff = max(max_diff, abs(rank - ranks[node_id]))
            ranks = new_ranks
            if max_diff < TOLERANCE:
                logger.debug(f"Centrality converged after {iteration + 1} iterations")
                break

        return ranks

    @_guarded("detect_connected_components")
    def detect_connected_components(self, graph: KnowledgeGraph) -> dict[str, Cluster]:
        """Group nodes reachable through edges heavier than 0.6.

        Edges are walked in both directions. Singleton components are
        dropped. The centroid is the node the search started from, and
        coherence is the directed density of edges inside the component.

        Returns:
            Mapping ``cluster-<n>`` to Cluster, numbered in discovery order.

        """
        clusters: dict[str, Cluster] = {}
        visited: set[str] = set()

        for seed in graph.get_all_nodes():
            if seed.id in visited:
                continue

            members: set[str] = set()
            queue = deque([seed.id])
            while queue:
                current = queue.popleft()
                if current in visited:
                    continue
                visited.add(current)
                members.add(current)
                for edge in graph.get_outgoing_edges(current) + graph.get_incoming_edges(current):
                    neighbor = edge.other_end(current)
                    if (
                        neighbor not in visited
                        and edge.weight > STRONG_EDGE_THRESHOLD
                        and graph.has_node(neighbor)
                    ):
                        queue.append(neighbor)

            if len(members) > 1:
                cluster_id = f"cluster-{len(clusters)}"
                clusters[cluster_id] = Cluster(
                    id=cluster_id,
                    node_ids=members,
                    centroid=seed.id,
                    coherence=self._coherence(graph, members),
                )

        return clusters

    @staticmethod
    def _coherence(graph: KnowledgeGraph, members: set[str]) -> float:
        n = len(members)
        if n <= 1:
            return 1.0
        internal = sum(
            1
            for node_id in members
            for edge in graph.get_outgoing_edges(node_id)
            if edge.other_end(node_id) in members
        )
        return internal / (n * (n - 1))

    @_guarded("find_path")
    def find_path(self, graph: KnowledgeGraph, start_id: str, end_id: str) -> list[str]:
        """Shortest directed path where each edge costs ``1 / weight``.

        Returns:
            Node ids from start to end, ``[start_id]`` when they are equal,
            or an empty list when ``end_id`` is unreachable.

        Raises:
            NodeNotFoundError: If either endpoint is not in the graph.

        """
        for node_id in (start_id, end_id):
            if not graph.has_node(node_id):
                raise NodeNotFoundError(node_id)
        if start_id == end_id:
            return [start_id]

        distances: dict[str, float] = {start_id: 0.0}
        previous: dict[str, str] = {}
        settled: set[str] = set()
        heap: list[tuple[float, str]] = [(0.0, start_id)]

        while heap:
            dist, current = heapq.heappop(heap)
            if current in settled:
                continue
            if current == end_id:
                break
            settled.add(current)

            for edge in graph.get_outgoing_edges(current):
                if edge.weight <= 0:
                    logger.warning(f"Skipping edge {edge.id} with invalid weight {edge.weight}")
                    continue
                neighbor = edge.other_end(current)
                if neighbor in settled or not graph.has_node(neighbor):
                    continue
                candidate = dist + 1.0 / edge.weight
                if candidate < distances.get(neighbor, math.inf):
                    distances[neighbor] = candidate
                    previous[neighbor] = current
                    heapq.heappush(heap, (candidate, neighbor))

        if end_id not in previous:
            return []

        path = [end_id]
        while path[-1] != start_id:
            path.append(previous[path[-1]])
        path.reverse()
        return path

    @_guarded("identify_gaps")
    def identify_gaps(
        self,
        graph: KnowledgeGraph,
        clusters: dict[str, Cluster] | None = None,
    ) -> list[KnowledgeGap]:
        """Collect knowledge gaps, highest priority first.

        Args:
            graph: Graph to inspect.
            clusters: Components to test for isolation; detected fresh when
                omitted.

        Returns:
            Gaps from every category, sorted by priority descending. A pair
            of nodes may appear in more than one category.

        """
        if clusters is None:
            clusters = self.detect_connected_components(graph)

        gaps: list[KnowledgeGap] = []
        gaps.extend(self._missing_links(graph))
        gaps.extend(self._weak_evidence(graph))
        gaps.extend(self._contradictions(graph))
        gaps.extend(self._isolated_clusters(graph, clusters))
        gaps.sort(key=lambda gap: gap.priority, reverse=True)
        return gaps

    @staticmethod
    def _missing_links(graph: KnowledgeGraph) -> list[KnowledgeGap]:
        gaps = []
        tagged = sorted((n for n in graph.get_all_nodes() if n.metadata.tags), key=lambda n: n.id)
        for i, first in enumerate(tagged):
            for second in tagged[i + 1 :]:
                shared = first.metadata.tags & second.metadata.tags
                if not shared:
                    continue
                if graph.has_edge_between(first.id, second.id) or graph.has_edge_between(
                    second.id, first.id
                ):
                    continue
                gaps.append(
                    KnowledgeGap(
                        type=GapType.MISSING_LINK,
                        node_ids=[first.id, second.id],
                        priority=MISSING_LINK_PRIORITY_PER_TAG * len(shared),
                        description=(
                            f"Potential connection between nodes sharing tags: "
                            f"{', '.join(sorted(shared))}"
                        ),
                    )
                )
        return gaps

    @staticmethod
    def _weak_evidence(graph: KnowledgeGraph) -> list[KnowledgeGap]:
        return [
            KnowledgeGap(
                type=GapType.WEAK_EVIDENCE,
                node_ids=[node.id],
                priority=WEAK_EVIDENCE_PRIORITY,
                description=f'Low confidence node: "{node.content[:50]}"',
            )
            for node in graph.get_all_nodes()
            if node.scores.confidence < LOW_CONFIDENCE_THRESHOLD
        ]

    @staticmethod
    def _contradictions(graph: KnowledgeGraph) -> list[KnowledgeGap]:
        return [
            KnowledgeGap(
                type=GapType.CONTRADICTION,
                node_ids=[edge.source_id, edge.target_id],
                priority=edge.weight,
                description="Contradiction between nodes needs resolution",
            )
            for edge in graph.get_edges_by_type(EdgeType.CONTRADICTS)
        ]

    @staticmethod
    def _isolated_clusters(
        graph: KnowledgeGraph, clusters: dict[str, Cluster]
    ) -> list[KnowledgeGap]:
        gaps = []
        for cluster in clusters.values():
            if len(cluster.node_ids) <= 1:
                continue
            external = any(
                edge.other_end(node_id) not in cluster.node_ids
                for node_id in cluster.node_ids
                for edge in graph.get_outgoing_edges(node_id)
            )
            if not external:
                gaps.append(
                    KnowledgeGap(
                        type=GapType.ISOLATED_CLUSTER,
                        node_ids=sorted(cluster.node_ids),
                        priority=ISOLATED_CLUSTER_PRIORITY,
                        description=f"Isolated cluster with {len(cluster.node_ids)} nodes",
                    )
                )
        return gaps

    @_guarded("select_top_nodes")
    def select_top_nodes(
        self,
        graph: KnowledgeGraph,
        centrality: dict[str, float],
        criteria: SelectionCriteria | None = None,
        clusters: dict[str, Cluster] | None = None,
    ) -> list[str]:
        """Pick high-centrality nodes while keeping the selection spread out.

        Each cluster contributes its top ``per_cluster`` nodes first. Remaining
        slots up to ``top_k`` go to the best unselected nodes, each penalised
        by ``(1 - diversity_weight)`` for every selected node fewer than three
        hops away along the shortest path. A candidate is admitted only when
        its penalty product stays above 0.5.

        Known oddity: the distance is the hop count ``len(path) - 1``, so a
        node two hops from a selected one is still penalised. Comparing the
        path's node count with 3 instead would penalise direct neighbours
        only.

        Returns:
            Selected node ids, cluster picks first.

        """
        criteria = criteria or SelectionCriteria()
        if clusters is None:
            clusters = self.detect_connected_components(graph)

        selected: dict[str, None] = {}

        if criteria.per_cluster > 0:
            for cluster in clusters.values():
                ranked = sorted(
                    cluster.node_ids,
                    key=lambda node_id: (-centrality.get(node_id, 0.0), node_id),
                )
                for node_id in ranked[: criteria.per_cluster]:
                    selected[node_id] = None

        if len(selected) < criteria.top_k:
            candidates = sorted(
                (item for item in centrality.items() if item[0] not in selected),
                key=lambda item: (-item[1], item[0]),
            )
            for node_id, _ in candidates:
                if len(selected) >= criteria.top_k:
                    break
                if not graph.has_node(node_id):
                    continue

                diversity = 1.0
                for chosen in selected:
                    path = self.find_path(graph, node_id, chosen)
                    if path and len(path) - 1 < DIVERSITY_HOPS:
                        diversity *= 1.0 - criteria.diversity_weight
                if diversity > DIVERSITY_ADMIT_THRESHOLD:
                    selected[node_id] = None

        return list(selected)
