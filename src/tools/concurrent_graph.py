"""Lock-guarded wrapper around a KnowledgeGraph.

Serialises every read and mutation behind one re-entrant lock, offers
all-or-nothing batches with snapshot rollback, and runs analysis passes
(centrality, clusters, gaps) on a private copy with retry on algorithm
failure.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from loguru import logger

from src.config import get_config
from src.models.graph_types import (
    Cluster,
    Edge,
    KnowledgeGap,
    Node,
    SelectionCriteria,
)
from src.models.knowledge_graph import KnowledgeGraph
from src.models.resource_limits import DeploymentTier, ResourceLimits
from src.tools.graph_algorithms import GraphAlgorithms
from src.utils.errors import KnowledgeGraphError, NodeNotFoundError, PassExecutionError
from src.utils.retry import build_retrying

T = TypeVar("T")


class OperationKind(str, Enum):
    """Mutations accepted by ``ConcurrentGraph.batch``."""

    CREATE_NODE = "create_node"
    UPDATE_NODE = "update_node"
    REMOVE_NODE = "remove_node"
    CREATE_EDGE = "create_edge"
    REMOVE_EDGE = "remove_edge"


@dataclass(slots=True)
class GraphOperation:
    """One step of a batch.

    ``target_id`` names the node or edge for update/remove; ``params`` holds
    keyword arguments for create/update.
    """

    kind: OperationKind
    target_id: str | None = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GraphOperation:
        """Build from ``{"kind": ..., "id": ..., "params": {...}}``."""
        return cls(
            kind=OperationKind(data["kind"]),
            target_id=data.get("id"),
            params=dict(data.get("params") or {}),
        )


@dataclass(slots=True)
class OperationResult:
    """Outcome of one batch step."""

    kind: OperationKind
    id: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "id": self.id}


@dataclass
class AnalysisResult:
    """Output of one analysis pass."""

    graph_id: str
    pass_name: str
    pass_number: int
    centrality: dict[str, float]
    clusters: dict[str, Cluster]
    gaps: list[KnowledgeGap]
    duration_ms: float
    timestamp: float = field(default_factory=time.time)

    def to_dict(self, top_n: int = 10) -> dict[str, Any]:
        """Summarise the pass; only the ``top_n`` most central nodes are listed."""
        ranked = sorted(self.centrality.items(), key=lambda item: (-item[1], item[0]))
        return {
            "graph_id": self.graph_id,
            "pass_name": self.pass_name,
            "pass_number": self.pass_number,
            "timestamp": self.timestamp,
            "duration_ms": round(self.duration_ms, 2),
            "metrics": {
                "nodes_analyzed": len(self.centrality),
                "clusters_found": len(self.clusters),
                "gaps_identified": len(self.gaps),
            },
            "top_nodes": [
                {"id": node_id, "centrality": round(score, 6)} for node_id, score in ranked[:top_n]
            ],
            "clusters": [cluster.to_dict() for cluster in self.clusters.values()],
            "gaps": [gap.to_dict() for gap in self.gaps],
        }


class ConcurrentGraph:
    """Thread-safe facade over one KnowledgeGraph.

    Example:
        >>> graph = ConcurrentGraph(KnowledgeGraph(tier="development", graph_id="g1"))
        >>> results = graph.batch([
        ...     GraphOperation(OperationKind.CREATE_NODE, params={"content": "root"}),
        ... ])
        >>> graph.run_analysis("initial-scan", 1).gaps
        []

    """

    def __init__(
        self,
        graph: KnowledgeGraph,
        algorithms: GraphAlgorithms | None = None,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        settings = get_config().algorithm
        self._graph = graph
        self._algorithms = algorithms or GraphAlgorithms()
        self._lock = threading.RLock()
        # bumped by every mutation; lets analysis tell whether its snapshot is stale
        self._generation = 0
        self._retry_attempts = (
            retry_attempts if retry_attempts is not None else settings.retry_attempts
        )
        self._retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.retry_base_delay
        )

    @classmethod
    def create(
        cls, graph_id: str, tier: DeploymentTier | str = DeploymentTier.STANDARD
    ) -> ConcurrentGraph:
        """Wrap a fresh, empty graph."""
        return cls(KnowledgeGraph(tier=tier, graph_id=graph_id))

    @property
    def graph_id(self) -> str:
        return self._graph.graph_id

    @property
    def tier(self) -> DeploymentTier:
        return self._graph.tier

    def _retry(self, func: Callable[..., T], *args: Any) -> T:
        retrying = build_retrying(
            max_attempts=self._retry_attempts, base_delay=self._retry_base_delay
        )
        return retrying(func, *args)

    # Reads -------------------------------------------------------------

    def read(self, fn: Callable[[KnowledgeGraph], T]) -> T:
        """Run ``fn`` against the underlying graph while holding the lock."""
        with self._lock:
            return fn(self._graph)

    def get_node(self, node_id: str) -> Node | None:
        with self._lock:
            return self._graph.get_node(node_id)

    def get_edge(self, edge_id: str) -> Edge | None:
        with self._lock:
            return self._graph.get_edge(edge_id)

    def get_all_nodes(self) -> list[Node]:
        with self._lock:
            return self._graph.get_all_nodes()

    def get_all_edges(self) -> list[Edge]:
        with self._lock:
            return self._graph.get_all_edges()

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        with self._lock:
            return self._graph.get_outgoing_edges(node_id)

    def get_incoming_edges(self, node_id: str) -> list[Edge]:
        with self._lock:
            return self._graph.get_incoming_edges(node_id)

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            return self._graph.has_node(node_id)

    def has_edge(self, edge_id: str) -> bool:
        with self._lock:
            return self._graph.has_edge(edge_id)

    def has_edge_between(self, source_id: str, target_id: str) -> bool:
        with self._lock:
            return self._graph.has_edge_between(source_id, target_id)

    def get_node_count(self) -> int:
        with self._lock:
            return self._graph.get_node_count()

    def get_edge_count(self) -> int:
        with self._lock:
            return self._graph.get_edge_count()

    def get_resource_limits(self) -> ResourceLimits:
        return self._graph.get_resource_limits()

    def get_selected_nodes(self) -> list[Node]:
        with self._lock:
            return self._graph.get_selected_nodes()

    # Mutations ---------------------------------------------------------

    def create_node(self, content: str = "", **kwargs: Any) -> str:
        with self._lock:
            self._generation += 1
            return self._graph.create_node(content, **kwargs)

    def update_node(self, node_id: str, **updates: Any) -> None:
        with self._lock:
            self._generation += 1
            self._graph.update_node(node_id, **updates)

    def remove_node(self, node_id: str) -> bool:
        with self._lock:
            self._generation += 1
            return self._graph.remove_node(node_id)

    def create_edge(self, source_id: str, target_id: str, **kwargs: Any) -> str:
        with self._lock:
            self._generation += 1
            return self._graph.create_edge(source_id, target_id, **kwargs)

    def remove_edge(self, edge_id: str) -> bool:
        with self._lock:
            self._generation += 1
            return self._graph.remove_edge(edge_id)

    def mark_selected(self, node_ids: Iterable[str], selected: bool = True) -> None:
        with self._lock:
            self._graph.mark_selected(node_ids, selected)

    def compare_and_swap(
        self,
        predicate: Callable[[KnowledgeGraph], bool],
        update: Callable[[KnowledgeGraph], None],
    ) -> bool:
        """Apply ``update`` only if ``predicate`` holds, atomically.

        Returns:
            Whether the update ran.

        """
        with self._lock:
            if not predicate(self._graph):
                return False
            self._generation += 1
            update(self._graph)
            return True

    def _apply(self, operation: GraphOperation) -> OperationResult:
        graph = self._graph
        kind = operation.kind
        if kind == OperationKind.CREATE_NODE:
            return OperationResult(kind, graph.create_node(**operation.params))
        if kind == OperationKind.CREATE_EDGE:
            return OperationResult(kind, graph.create_edge(**operation.params))

        if not operation.target_id:
            raise ValueError(f"{kind.value} requires a target id")
        target_id = operation.target_id
        if kind == OperationKind.UPDATE_NODE:
            graph.update_node(target_id, **operation.params)
        elif kind == OperationKind.REMOVE_NODE:
            if not graph.remove_node(target_id):
                raise NodeNotFoundError(target_id)
        elif kind == OperationKind.REMOVE_EDGE:
            if not graph.remove_edge(target_id):
                raise NodeNotFoundError(target_id, entity_kind="edge")
        return OperationResult(kind, target_id)

    def batch(self, operations: list[GraphOperation]) -> list[OperationResult]:
        """Apply operations in order, all or nothing.

        On any failure the graph is restored from a snapshot taken before
        the first operation and the original error is re-raised.
        """
        with self._lock:
            self._generation += 1
            snapshot = self._graph.serialize()
            clusters = self._graph.get_clusters()
            gaps = self._graph.get_gaps()
            results: list[OperationResult] = []
            try:
                for operation in operations:
                    results.append(self._apply(operation))
            except Exception as e:
                restored = KnowledgeGraph.deserialize(snapshot)
                restored.set_clusters(clusters)
                restored.set_gaps(gaps)
                self._graph = restored
                logger.warning(
                    f"Batch on {self.graph_id} rolled back after {len(results)} of "
                    f"{len(operations)} operations: {e}"
                )
                raise
            logger.debug(f"Batch on {self.graph_id} applied {len(results)} operations")
            return results

    # Algorithms --------------------------------------------------------
    #
    # Algorithms run on a private snapshot so the lock is held only while
    # copying and while writing results back. A call abandoned by a timeout
    # therefore never blocks writers, and retry sleeps happen unlocked.

    def _capture(self) -> tuple[int, KnowledgeGraph]:
        with self._lock:
            generation = self._generation
            data = self._graph.serialize()
            clusters = self._graph.get_clusters()
            gaps = self._graph.get_gaps()
        copy = KnowledgeGraph.deserialize(data)
        copy.set_clusters(clusters)
        copy.set_gaps(gaps)
        return generation, copy

    def compute_centrality(self) -> dict[str, float]:
        _, graph = self._capture()
        return self._retry(self._algorithms.compute_centrality, graph)

    def detect_connected_components(self) -> dict[str, Cluster]:
        _, graph = self._capture()
        return self._retry(self._algorithms.detect_connected_components, graph)

    def find_path(self, start_id: str, end_id: str) -> list[str]:
        _, graph = self._capture()
        return self._retry(self._algorithms.find_path, graph, start_id, end_id)

    def identify_gaps(self) -> list[KnowledgeGap]:
        _, graph = self._capture()
        clusters = graph.get_clusters() or None
        return self._retry(self._algorithms.identify_gaps, graph, clusters)

    def select_top_nodes(
        self,
        criteria: SelectionCriteria | None = None,
        centrality: dict[str, float] | None = None,
        mark: bool = False,
    ) -> list[str]:
        """Diversity-aware top-K selection.

        Args:
            criteria: Selection parameters (defaults when omitted).
            centrality: Precomputed ranks; computed when omitted.
            mark: Also flag the chosen nodes as selected. Nodes removed
                while the selection ran are skipped.

        """
        _, graph = self._capture()
        ranks = (
            centrality
            if centrality is not None
            else self._retry(self._algorithms.compute_centrality, graph)
        )
        clusters = graph.get_clusters() or None
        chosen = self._retry(self._algorithms.select_top_nodes, graph, ranks, criteria, clusters)
        if mark:
            with self._lock:
                self._graph.mark_selected(n for n in chosen if self._graph.has_node(n))
        return chosen

    def run_analysis(self, pass_name: str, pass_number: int) -> AnalysisResult:
        """Centrality, clusters and gaps in one pass over a snapshot.

        Centrality is mirrored onto the node scores of nodes that still
        exist and recorded as this pass's score. Clusters and gaps are
        cached on the graph only when nothing changed while the pass ran.

        Raises:
            PassExecutionError: If any algorithm fails after retries.

        """
        started = time.perf_counter()
        generation, graph = self._capture()
        try:
            centrality = self._retry(self._algorithms.compute_centrality, graph)
            clusters = self._retry(self._algorithms.detect_connected_components, graph)
            gaps = self._retry(self._algorithms.identify_gaps, graph, clusters)
        except KnowledgeGraphError as e:
            logger.error(f"Analysis pass {pass_name} (#{pass_number}) failed: {e}")
            raise PassExecutionError(pass_name, pass_number, str(e)) from e

        with self._lock:
            self._graph.update_centrality(centrality)
            for node_id, score in centrality.items():
                node = self._graph.get_node(node_id)
                if node is not None:
                    node.scores.pass_scores[pass_name] = score
            if generation == self._generation:
                self._graph.set_clusters(clusters)
                self._graph.set_gaps(gaps)
            else:
                logger.debug(f"Graph {self.graph_id} changed during {pass_name}; not caching")

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Pass {pass_name} (#{pass_number}) on {self.graph_id}: {len(centrality)} nodes, "
            f"{len(clusters)} clusters, {len(gaps)} gaps in {duration_ms:.1f}ms"
        )
        return AnalysisResult(
            graph_id=self.graph_id,
            pass_name=pass_name,
            pass_number=pass_number,
            centrality=centrality,
            clusters=clusters,
            gaps=gaps,
            duration_ms=duration_ms,
        )

    def prune(self, threshold: float) -> int:
        """Remove nodes whose centrality is below ``threshold``.

        Ranks come from a snapshot; nodes already gone by the time the
        removal runs are not counted.

        Returns:
            Number of nodes removed.

        """
        centrality = self.compute_centrality()
        doomed = [node_id for node_id, score in centrality.items() if score < threshold]
        with self._lock:
            self._generation += 1
            pruned = sum(1 for node_id in doomed if self._graph.remove_node(node_id))
        if pruned:
            logger.info(f"Pruned {pruned} nodes below centrality {threshold} from {self.graph_id}")
        return pruned

    # Introspection and persistence ----------------------------------------

    def statistics(self) -> dict[str, Any]:
        """Counts, depth, degree and limits in one consistent read."""
        with self._lock:
            graph = self._graph
            nodes = graph.get_all_nodes()
            total_degree = sum(
                len(graph.get_outgoing_edges(n.id)) + len(graph.get_incoming_edges(n.id))
                for n in nodes
            )
            return {
                "graph_id": graph.graph_id,
                "tier": graph.tier.value,
                "nodes": len(nodes),
                "edges": graph.get_edge_count(),
                "max_depth": max((n.depth for n in nodes), default=0),
                "average_degree": round(total_degree / len(nodes), 3) if nodes else 0.0,
                "clusters": len(graph.get_clusters()),
                "gaps": len(graph.get_gaps()),
                "selected": len(graph.get_selected_nodes()),
                "limits": graph.get_resource_limits().to_dict(),
            }

    def snapshot(self) -> KnowledgeGraph:
        """Independent deep copy of the current graph and its cached results."""
        return self._capture()[1]

    def serialize(self) -> str:
        with self._lock:
            return self._graph.serialize()

    def load(self, data: str | bytes | dict[str, Any]) -> None:
        """Replace the wrapped graph with a deserialized snapshot."""
        restored = KnowledgeGraph.deserialize(data)
        with self._lock:
            self._generation += 1
            self._graph = restored

    @classmethod
    def deserialize(cls, data: str | bytes | dict[str, Any]) -> ConcurrentGraph:
        return cls(KnowledgeGraph.deserialize(data))
