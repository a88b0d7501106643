"""Per-session registry of knowledge graphs.

Each session id maps to one ``ConcurrentGraph``, created lazily on first
``open`` and owned by whoever constructed the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from src.config import get_config
from src.models.knowledge_graph import KnowledgeGraph
from src.models.resource_limits import DeploymentTier
from src.tools.concurrent_graph import ConcurrentGraph
from src.utils.session import SessionManager


@dataclass
class GraphSession:
    """Registry entry for one graph."""

    graph_id: str
    graph: ConcurrentGraph
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "tier": self.graph.tier.value,
            "nodes": self.graph.get_node_count(),
            "edges": self.graph.get_edge_count(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class GraphRegistry(SessionManager[GraphSession]):
    """Lazily created graphs keyed by session id.

    Example:
        >>> registry = GraphRegistry()
        >>> graph = registry.open("session-1", tier="development")
        >>> registry.open("session-1") is graph
        True

    """

    def __init__(
        self,
        max_graphs: int | None = None,
        default_tier: DeploymentTier | str | None = None,
    ) -> None:
        settings = get_config().graph
        super().__init__(max_sessions=max_graphs if max_graphs is not None else settings.max_graphs)
        self._default_tier = DeploymentTier.parse(default_tier or settings.default_tier)

    @property
    def default_tier(self) -> DeploymentTier:
        return self._default_tier

    def open(self, graph_id: str, tier: DeploymentTier | str | None = None) -> ConcurrentGraph:
        """Return the graph for ``graph_id``, creating it on first use.

        An existing graph is returned unchanged even if ``tier`` differs.

        Raises:
            CapacityExceededError: If a new graph would exceed ``max_graphs``.
            ValueError: If ``tier`` names no deployment tier.

        """
        resolved = DeploymentTier.parse(tier) if tier is not None else self._default_tier
        with self._lock:
            if graph_id in self._sessions:
                entry = self._sessions[graph_id]
                if tier is not None and entry.graph.tier != resolved:
                    logger.warning(
                        f"Graph {graph_id} already open with tier {entry.graph.tier.value}; "
                        f"ignoring requested tier {resolved.value}"
                    )
                entry.touch()
                return entry.graph

            graph = ConcurrentGraph.create(graph_id, resolved)
            self._register_session(graph_id, GraphSession(graph_id=graph_id, graph=graph))
            logger.info(f"Opened graph {graph_id} (tier={resolved.value})")
            return graph

    def get(self, graph_id: str) -> ConcurrentGraph:
        """Return an open graph.

        Raises:
            SessionNotFoundError: If ``graph_id`` is not open.

        """
        with self.session(graph_id) as entry:
            entry.touch()
            return entry.graph

    def exists(self, graph_id: str) -> bool:
        return self.session_exists(graph_id)

    def replace(self, graph_id: str, graph: KnowledgeGraph | ConcurrentGraph) -> ConcurrentGraph:
        """Install ``graph`` under ``graph_id``, discarding any previous graph."""
        wrapped = graph if isinstance(graph, ConcurrentGraph) else ConcurrentGraph(graph)
        with self._lock:
            previous = self._sessions.get(graph_id)
            entry = GraphSession(graph_id=graph_id, graph=wrapped)
            if previous is not None:
                entry.created_at = previous.created_at
            self._register_session(graph_id, entry)
        logger.debug(f"Replaced graph {graph_id}")
        return wrapped

    def serialize(self, graph_id: str) -> str:
        """Snapshot of an open graph.

        Raises:
            SessionNotFoundError: If ``graph_id`` is not open.

        """
        return self.get(graph_id).serialize()

    def deserialize(
        self, data: str | bytes | dict[str, Any], graph_id: str | None = None
    ) -> ConcurrentGraph:
        """Restore a snapshot and register it.

        Args:
            data: Output of ``serialize``.
            graph_id: Register under this id instead of the snapshot's own.

        Raises:
            IntegrityViolationError: If the snapshot is corrupt.

        """
        graph = KnowledgeGraph.deserialize(data)
        if graph_id is not None and graph_id != graph.graph_id:
            # re-key through a fresh snapshot so the stored id matches the registry key
            payload = graph.to_dict()
            payload["graph_id"] = graph_id
            graph = KnowledgeGraph.deserialize(payload)
        return self.replace(graph.graph_id, graph)

    def close(self, graph_id: str) -> bool:
        """Drop a graph. Returns False if it was not open."""
        removed = self._remove_session(graph_id) is not None
        if removed:
            logger.info(f"Closed graph {graph_id}")
        return removed

    def list_graphs(self) -> list[dict[str, Any]]:
        """Summaries of every open graph in opening order."""
        with self._lock:
            return [entry.to_dict() for entry in self._sessions.values()]
