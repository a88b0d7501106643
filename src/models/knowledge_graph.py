"""Capacity-bounded directed knowledge graph store.

Holds nodes and edges for one Progressive Deep Reasoning session and keeps
their cross references consistent: parent/child links, per-node incoming
and outgoing edge sets, and cascade removal. Every mutation validates first
and writes second, so a failed call leaves the store untouched.

The store is synchronous and single-writer. Wrap it in
``src.tools.concurrent_graph.ConcurrentGraph`` when several callers share it.

Example:
    >>> kg = KnowledgeGraph(tier="development")
    >>> root = kg.create_node("Why does ice float?", type="question")
    >>> leaf = kg.create_node("Ice is less dense than water", parent_id=root)
    >>> kg.create_edge(root, leaf, type="leads-to", weight=0.8)
    >>> kg.get_node(leaf).depth
    1

"""

from __future__ import annotations

import itertools
import json
import time
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from src.models.graph_types import (
    Cluster,
    Edge,
    EdgeMetadata,
    EdgeType,
    GraphMetrics,
    KnowledgeGap,
    Node,
    NodeMetadata,
    NodeScores,
    NodeType,
    ReasoningApproach,
    utc_now_iso,
)
from src.models.resource_limits import DeploymentTier, ResourceLimits, get_resource_limits
from src.utils.errors import (
    CapacityExceededError,
    IntegrityKind,
    IntegrityViolationError,
    InvalidWeightError,
    NodeNotFoundError,
)

SNAPSHOT_VERSION = 1

_NODE_UPDATE_KEYS = frozenset(
    {"content", "type", "scores", "metadata", "artifacts", "depth", "parent_id"}
)

_id_sequence = itertools.count(1)


def _generate_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{next(_id_sequence)}"


def _check_unit_interval(name: str, value: float) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")
    return value


def _as_mapping(name: str, value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"{name} must be a mapping, got {type(value).__name__}")
    return dict(value)


def _check_weight(weight: Any) -> float:
    if isinstance(weight, bool) or not isinstance(weight, int | float):
        raise InvalidWeightError(weight)
    # NaN fails the comparison too
    if not 0.0 < weight <= 1.0:
        raise InvalidWeightError(weight)
    return float(weight)


class KnowledgeGraph:
    """Directed, typed, weighted graph of reasoning nodes.

    Nodes and edges are kept in insertion order. Derived results from the
    last analysis pass (clusters, gaps) are cached here and dropped whenever
    the structure, a tag set or a confidence changes.
    """

    def __init__(
        self,
        tier: DeploymentTier | str = DeploymentTier.STANDARD,
        graph_id: str = "default",
    ) -> None:
        """Create an empty graph bounded by ``tier``'s resource limits.

        Raises:
            ValueError: If ``tier`` names no deployment tier.

        """
        self._tier = DeploymentTier.parse(tier)
        self._limits = get_resource_limits(self._tier)
        self._graph_id = graph_id
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._clusters: dict[str, Cluster] = {}
        self._gaps: list[KnowledgeGap] = []

    @property
    def graph_id(self) -> str:
        return self._graph_id

    @property
    def tier(self) -> DeploymentTier:
        return self._tier

    def get_resource_limits(self) -> ResourceLimits:
        """Ceilings that apply to this graph."""
        return self._limits

    def get_node_count(self) -> int:
        return len(self._nodes)

    def get_edge_count(self) -> int:
        return len(self._edges)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _require_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def _new_id(self, prefix: str, existing: dict[str, Any]) -> str:
        while True:
            candidate = _generate_id(prefix)
            if candidate not in existing:
                return candidate

    def _check_depth(self, depth: int, node_id: str | None) -> int:
        if isinstance(depth, bool) or not isinstance(depth, int):
            raise IntegrityViolationError(
                f"Depth must be an integer, got {depth!r}",
                IntegrityKind.INVALID_DEPTH,
                node_id=node_id,
            )
        if depth < 0 or depth > self._limits.depth:
            raise IntegrityViolationError(
                f"Depth {depth} outside [0, {self._limits.depth}] for tier {self._tier.value}",
                IntegrityKind.INVALID_DEPTH,
                node_id=node_id,
            )
        return depth

    def create_node(
        self,
        content: str = "",
        type: NodeType | str = NodeType.CONCEPT,  # noqa: A002
        *,
        node_id: str | None = None,
        depth: int | None = None,
        parent_id: str | None = None,
        confidence: float = 0.5,
        tags: Iterable[str] | None = None,
        created_in_pass: str = "initial",
        pattern_used: ReasoningApproach | str | None = None,
        artifacts: dict[str, Any] | None = None,
    ) -> str:
        """Insert a node and return its id.

        Args:
            content: Opaque text payload.
            type: Node kind (default ``concept``).
            node_id: Explicit id; generated as ``node-<ms>-<seq>`` when omitted.
            depth: Explicit depth; defaults to ``parent.depth + 1`` or 0.
            parent_id: Optional parent; the new id joins its ``children_ids``.
            confidence: Initial confidence in [0, 1].
            tags: Initial tag set.
            created_in_pass: Name of the reasoning pass creating the node.
            pattern_used: Reasoning approach that produced the node.
            artifacts: Free-form attachments.

        Returns:
            The new node's id.

        Raises:
            CapacityExceededError: If the tier's node ceiling is reached.
            IntegrityViolationError: On a duplicate id, unknown parent or
                out-of-range depth.
            ValueError: On an unknown type or confidence outside [0, 1].

        """
        if len(self._nodes) >= self._limits.nodes:
            raise CapacityExceededError(
                current_size=len(self._nodes),
                max_size=self._limits.nodes,
                operation="create_node",
                suggestion="Prune low-centrality nodes or use a larger deployment tier",
            )

        if node_id is not None and node_id in self._nodes:
            raise IntegrityViolationError(
                f"Node id already exists: {node_id}",
                IntegrityKind.DUPLICATE_ID,
                node_id=node_id,
            )

        parent = None
        if parent_id is not None:
            parent = self._nodes.get(parent_id)
            if parent is None:
                raise IntegrityViolationError(
                    f"Parent node does not exist: {parent_id}",
                    IntegrityKind.DANGLING_REFERENCE,
                    node_id=parent_id,
                )

        if depth is None:
            depth = parent.depth + 1 if parent is not None else 0
        self._check_depth(depth, node_id)

        node_type = NodeType(type)
        approach = ReasoningApproach(pattern_used) if pattern_used is not None else None
        confidence = _check_unit_interval("confidence", confidence)

        new_id = node_id or self._new_id("node", self._nodes)
        node = Node(
            id=new_id,
            content=content,
            type=node_type,
            depth=depth,
            parent_id=parent_id,
            scores=NodeScores(confidence=confidence),
            metadata=NodeMetadata(
                created_in_pass=created_in_pass,
                tags=set(tags or ()),
                pattern_used=approach,
            ),
            artifacts=dict(artifacts or {}),
        )
        self._nodes[new_id] = node
        if parent is not None:
            parent.children_ids.add(new_id)
        self._invalidate_derived()

        logger.debug(f"Created node {new_id} ({node_type.value}, depth={depth})")
        return new_id

    def update_node(self, node_id: str, **updates: Any) -> None:
        """Merge ``updates`` into an existing node.

        Accepted keys: ``content``, ``type``, ``scores`` (merged),
        ``metadata`` (merged), ``artifacts`` (merged), ``depth`` and
        ``parent_id``. A ``parent_id`` change without an explicit ``depth``
        moves the node to ``new_parent.depth + 1`` (0 when detached).

        Raises:
            NodeNotFoundError: If the node does not exist.
            IntegrityViolationError: On a parent cycle, unknown parent or
                out-of-range depth.
            ValueError: On an attempt to change ``id`` or an unknown key.
            TypeError: If ``scores``, ``metadata``, ``artifacts`` or
                ``scores.pass_scores`` is not a mapping, or ``tags`` is not
                iterable.

        """
        node = self._require_node(node_id)

        if "id" in updates:
            raise ValueError("Node id is immutable")
        unknown = set(updates) - _NODE_UPDATE_KEYS
        if unknown:
            raise ValueError(f"Unknown node fields: {', '.join(sorted(unknown))}")

        node_type = NodeType(updates["type"]) if "type" in updates else node.type

        scores = _as_mapping("scores", updates.get("scores"))
        if "confidence" in scores:
            scores["confidence"] = _check_unit_interval("confidence", scores["confidence"])
        if "centrality" in scores:
            scores["centrality"] = float(scores["centrality"])
        if "pass_scores" in scores:
            pass_scores = _as_mapping("pass_scores", scores["pass_scores"])
            scores["pass_scores"] = {str(name): float(value) for name, value in pass_scores.items()}

        metadata = _as_mapping("metadata", updates.get("metadata"))
        if "tags" in metadata:
            metadata["tags"] = set(metadata["tags"])
        if metadata.get("pattern_used") is not None:
            metadata["pattern_used"] = ReasoningApproach(metadata["pattern_used"])
        if "created_in_pass" in metadata:
            metadata["created_in_pass"] = str(metadata["created_in_pass"])
        if "selected" in metadata:
            metadata["selected"] = bool(metadata["selected"])

        artifacts = _as_mapping("artifacts", updates.get("artifacts"))

        reparent = "parent_id" in updates and updates["parent_id"] != node.parent_id
        new_parent: Node | None = None
        if reparent and updates["parent_id"] is not None:
            new_parent_id = updates["parent_id"]
            new_parent = self._nodes.get(new_parent_id)
            if new_parent is None:
                raise IntegrityViolationError(
                    f"Parent node does not exist: {new_parent_id}",
                    IntegrityKind.DANGLING_REFERENCE,
                    node_id=new_parent_id,
                )
            if self._is_ancestor_or_self(node_id, new_parent_id):
                raise IntegrityViolationError(
                    f"Making {new_parent_id} the parent of {node_id} creates a cycle",
                    IntegrityKind.CIRCULAR_PARENT,
                    node_id=node_id,
                )

        if "depth" in updates:
            depth = self._check_depth(updates["depth"], node_id)
        elif reparent:
            depth = self._check_depth(new_parent.depth + 1 if new_parent else 0, node_id)
        else:
            depth = node.depth

        # validated; apply
        if "content" in updates:
            node.content = updates["content"]
        node.type = node_type
        node.depth = depth
        if reparent:
            self._detach_from_parent(node)
            node.parent_id = new_parent.id if new_parent else None
            if new_parent is not None:
                new_parent.children_ids.add(node_id)

        stale = reparent or (
            "confidence" in scores and scores["confidence"] != node.scores.confidence
        )
        if "confidence" in scores:
            node.scores.confidence = scores["confidence"]
        if "centrality" in scores:
            node.scores.centrality = scores["centrality"]
        if "pass_scores" in scores:
            node.scores.pass_scores.update(scores["pass_scores"])

        if "tags" in metadata and metadata["tags"] != node.metadata.tags:
            stale = True
        for key, value in metadata.items():
            if key in ("tags", "created_in_pass", "pattern_used", "selected"):
                setattr(node.metadata, key, value)
        node.metadata.last_modified = utc_now_iso()

        node.artifacts.update(artifacts)

        # gaps and clusters depend on structure, tags and confidence
        if stale:
            self._invalidate_derived()
        logger.debug(f"Updated node {node_id}: {', '.join(sorted(updates))}")

    def _is_ancestor_or_self(self, node_id: str, candidate_id: str) -> bool:
        """True when ``node_id`` appears on ``candidate_id``'s parent chain."""
        seen: set[str] = set()
        current: str | None = candidate_id
        while current is not None and current not in seen:
            if current == node_id:
                return True
            seen.add(current)
            parent = self._nodes.get(current)
            current = parent.parent_id if parent else None
        return False

    def _detach_from_parent(self, node: Node) -> None:
        if node.parent_id is None:
            return
        parent = self._nodes.get(node.parent_id)
        if parent is not None:
            parent.children_ids.discard(node.id)

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every edge that touches it.

        Former children keep existing as roots (``parent_id`` cleared,
        depth reset to 0).

        Returns:
            False when the node does not exist.

        """
        node = self._nodes.get(node_id)
        if node is None:
            return False

        for edge_id in node.incoming_edges | node.outgoing_edges:
            self.remove_edge(edge_id)

        self._detach_from_parent(node)
        for child_id in node.children_ids:
            child = self._nodes.get(child_id)
            if child is not None and child.parent_id == node_id:
                child.parent_id = None
                child.depth = 0

        del self._nodes[node_id]
        self._invalidate_derived()
        logger.debug(f"Removed node {node_id}")
        return True

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_all_nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def get_children(self, node_id: str) -> list[Node]:
        """Existing children of a node in insertion order (empty if unknown)."""
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return [n for n in self._nodes.values() if n.id in node.children_ids]

    def get_nodes_at_depth(self, depth: int) -> list[Node]:
        return [n for n in self._nodes.values() if n.depth == depth]

    @property
    def root_id(self) -> str | None:
        """First parentless node in insertion order."""
        return next((n.id for n in self._nodes.values() if n.parent_id is None), None)

    def mark_selected(self, node_ids: Iterable[str], selected: bool = True) -> None:
        """Flag nodes as selected for the next reasoning pass.

        Raises:
            NodeNotFoundError: If any id is unknown (nothing is changed).

        """
        nodes = [self._require_node(node_id) for node_id in node_ids]
        stamp = utc_now_iso()
        for node in nodes:
            node.metadata.selected = selected
            node.metadata.last_modified = stamp

    def get_selected_nodes(self) -> list[Node]:
        return [n for n in self._nodes.values() if n.metadata.selected]

    def update_centrality(self, scores: dict[str, float]) -> None:
        """Mirror algorithm output onto node scores; unknown ids are ignored."""
        for node_id, value in scores.items():
            node = self._nodes.get(node_id)
            if node is not None:
                node.scores.centrality = value

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def create_edge(
        self,
        source_id: str,
        target_id: str,
        type: EdgeType | str = EdgeType.RELATES_TO,  # noqa: A002
        weight: float = 0.5,
        *,
        edge_id: str | None = None,
        confidence: float = 0.5,
        justification: str | None = None,
        bidirectional: bool = False,
        created_in_pass: str = "initial",
    ) -> str:
        """Insert an edge between two existing nodes and return its id.

        A bidirectional edge is also registered as outgoing on the target
        and incoming on the source.

        Raises:
            CapacityExceededError: If the tier's edge ceiling is reached.
            IntegrityViolationError: On a duplicate id or a missing endpoint.
            InvalidWeightError: If ``weight`` is not in (0, 1].
            ValueError: On an unknown type or confidence outside [0, 1].

        """
        if len(self._edges) >= self._limits.edges:
            raise CapacityExceededError(
                current_size=len(self._edges),
                max_size=self._limits.edges,
                operation="create_edge",
                suggestion="Remove weak edges or use a larger deployment tier",
            )

        if edge_id is not None and edge_id in self._edges:
            raise IntegrityViolationError(
                f"Edge id already exists: {edge_id}",
                IntegrityKind.DUPLICATE_ID,
                edge_id=edge_id,
            )

        source = self._nodes.get(source_id)
        target = self._nodes.get(target_id)
        if source is None or target is None:
            missing = source_id if source is None else target_id
            raise IntegrityViolationError(
                f"Edge endpoint does not exist: {missing}",
                IntegrityKind.ORPHAN_EDGE,
                node_id=missing,
                edge_id=edge_id,
            )

        weight = _check_weight(weight)
        edge_type = EdgeType(type)
        confidence = _check_unit_interval("confidence", confidence)

        new_id = edge_id or self._new_id("edge", self._edges)
        edge = Edge(
            id=new_id,
            source_id=source_id,
            target_id=target_id,
            type=edge_type,
            weight=weight,
            metadata=EdgeMetadata(
                created_in_pass=created_in_pass,
                confidence=confidence,
                justification=justification,
                bidirectional=bidirectional,
            ),
        )
        self._edges[new_id] = edge
        source.outgoing_edges.add(new_id)
        target.incoming_edges.add(new_id)
        if bidirectional:
            target.outgoing_edges.add(new_id)
            source.incoming_edges.add(new_id)
        self._invalidate_derived()

        logger.debug(
            f"Created edge {new_id}: {source_id} -[{edge_type.value} {weight:.2f}]-> {target_id}"
        )
        return new_id

    def remove_edge(self, edge_id: str) -> bool:
        """Remove an edge from the store and both endpoints.

        Returns:
            False when the edge does not exist.

        """
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return False
        for endpoint_id in (edge.source_id, edge.target_id):
            endpoint = self._nodes.get(endpoint_id)
            if endpoint is not None:
                endpoint.outgoing_edges.discard(edge_id)
                endpoint.incoming_edges.discard(edge_id)
        self._invalidate_derived()
        return True

    def get_edge(self, edge_id: str) -> Edge | None:
        return self._edges.get(edge_id)

    def has_edge(self, edge_id: str) -> bool:
        return edge_id in self._edges

    def get_all_edges(self) -> list[Edge]:
        return list(self._edges.values())

    def get_edges_by_type(self, edge_type: EdgeType | str) -> list[Edge]:
        wanted = EdgeType(edge_type)
        return [e for e in self._edges.values() if e.type == wanted]

    def _resolve_edges(self, edge_ids: set[str]) -> list[Edge]:
        # ids that no longer resolve are skipped rather than raised
        return [self._edges[eid] for eid in sorted(edge_ids) if eid in self._edges]

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        """Edges leaving a node, including bidirectional edges it receives."""
        node = self._nodes.get(node_id)
        return self._resolve_edges(node.outgoing_edges) if node else []

    def get_incoming_edges(self, node_id: str) -> list[Edge]:
        """Edges entering a node, including bidirectional edges it sends."""
        node = self._nodes.get(node_id)
        return self._resolve_edges(node.incoming_edges) if node else []

    def has_edge_between(self, source_id: str, target_id: str) -> bool:
        """True when an edge can be walked from ``source_id`` to ``target_id``."""
        return any(
            edge.other_end(source_id) == target_id
            for edge in self.get_outgoing_edges(source_id)
        )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _invalidate_derived(self) -> None:
        self._clusters = {}
        self._gaps = []

    def set_clusters(self, clusters: dict[str, Cluster]) -> None:
        self._clusters = dict(clusters)

    def get_clusters(self) -> dict[str, Cluster]:
        return dict(self._clusters)

    def set_gaps(self, gaps: list[KnowledgeGap]) -> None:
        self._gaps = list(gaps)

    def get_gaps(self) -> list[KnowledgeGap]:
        return list(self._gaps)

    def get_metrics(self) -> GraphMetrics:
        """Summary counts plus the cached analysis results."""
        node_count = len(self._nodes)
        edge_count = len(self._edges)
        return GraphMetrics(
            node_count=node_count,
            edge_count=edge_count,
            avg_degree=(2 * edge_count / node_count) if node_count else 0.0,
            max_depth=max((n.depth for n in self._nodes.values()), default=0),
            cluster_count=len(self._clusters),
            gaps=list(self._gaps),
        )

    # ------------------------------------------------------------------
    # Integrity and persistence
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Scan every cross reference in the graph.

        Raises:
            CapacityExceededError: If the graph is larger than its tier allows.
            IntegrityViolationError: On the first broken invariant found.
            InvalidWeightError: On an edge weight outside (0, 1].

        """
        if len(self._nodes) > self._limits.nodes:
            raise CapacityExceededError(len(self._nodes), self._limits.nodes, "validate")
        if len(self._edges) > self._limits.edges:
            raise CapacityExceededError(len(self._edges), self._limits.edges, "validate")

        for edge in self._edges.values():
            for endpoint_id in (edge.source_id, edge.target_id):
                if endpoint_id not in self._nodes:
                    raise IntegrityViolationError(
                        f"Edge {edge.id} references missing node {endpoint_id}",
                        IntegrityKind.ORPHAN_EDGE,
                        node_id=endpoint_id,
                        edge_id=edge.id,
                    )
            _check_weight(edge.weight)
            self._check_snapshot_confidence(edge.metadata.confidence, edge_id=edge.id)
            expected = [
                (edge.source_id, "outgoing_edges"),
                (edge.target_id, "incoming_edges"),
            ]
            if edge.metadata.bidirectional:
                expected += [(edge.target_id, "outgoing_edges"), (edge.source_id, "incoming_edges")]
            for node_id, attr in expected:
                if edge.id not in getattr(self._nodes[node_id], attr):
                    raise IntegrityViolationError(
                        f"Edge {edge.id} missing from {attr} of {node_id}",
                        IntegrityKind.DANGLING_REFERENCE,
                        node_id=node_id,
                        edge_id=edge.id,
                    )

        for node in self._nodes.values():
            self._check_depth(node.depth, node.id)
            self._check_snapshot_confidence(node.scores.confidence, node_id=node.id)
            for attr in ("incoming_edges", "outgoing_edges"):
                for edge_id in getattr(node, attr):
                    edge = self._edges.get(edge_id)
                    if edge is None or node.id not in (edge.source_id, edge.target_id):
                        raise IntegrityViolationError(
                            f"Node {node.id} lists unrelated or missing edge {edge_id}",
                            IntegrityKind.DANGLING_REFERENCE,
                            node_id=node.id,
                            edge_id=edge_id,
                        )
            if node.parent_id is not None:
                parent = self._nodes.get(node.parent_id)
                if parent is None or node.id not in parent.children_ids:
                    raise IntegrityViolationError(
                        f"Node {node.id} has unresolved parent {node.parent_id}",
                        IntegrityKind.DANGLING_REFERENCE,
                        node_id=node.id,
                    )
                if self._is_ancestor_or_self(node.id, node.parent_id):
                    raise IntegrityViolationError(
                        f"Parent chain of {node.id} loops back to itself",
                        IntegrityKind.CIRCULAR_PARENT,
                        node_id=node.id,
                    )
            for child_id in node.children_ids:
                child = self._nodes.get(child_id)
                if child is None or child.parent_id != node.id:
                    raise IntegrityViolationError(
                        f"Node {node.id} lists {child_id} as a child but it is not",
                        IntegrityKind.DANGLING_REFERENCE,
                        node_id=node.id,
                    )

    def _check_snapshot_confidence(
        self, value: Any, *, node_id: str | None = None, edge_id: str | None = None
    ) -> None:
        try:
            _check_unit_interval("confidence", value)
        except (TypeError, ValueError) as e:
            raise IntegrityViolationError(
                str(e),
                IntegrityKind.MALFORMED_SNAPSHOT,
                node_id=node_id,
                edge_id=edge_id,
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Snapshot as plain data (sets become sorted lists)."""
        return {
            "version": SNAPSHOT_VERSION,
            "graph_id": self._graph_id,
            "tier": self._tier.value,
            "nodes": [node.to_dict() for node in self._nodes.values()],
            "edges": [edge.to_dict() for edge in self._edges.values()],
        }

    def serialize(self) -> str:
        """JSON snapshot of the whole graph. Derived results are not included."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def deserialize(cls, data: str | bytes | dict[str, Any]) -> KnowledgeGraph:
        """Rebuild a graph from ``serialize`` output.

        Corrupt snapshots are rejected, never repaired.

        Raises:
            IntegrityViolationError: On malformed input, duplicate ids or any
                broken cross reference.
            InvalidWeightError: On an edge weight outside (0, 1].
            CapacityExceededError: If the snapshot exceeds its tier's limits.

        """
        try:
            payload = json.loads(data) if isinstance(data, str | bytes) else data
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise IntegrityViolationError(
                f"Snapshot is not valid JSON: {e}", IntegrityKind.MALFORMED_SNAPSHOT
            ) from e
        if not isinstance(payload, dict):
            raise IntegrityViolationError(
                "Snapshot must be a JSON object", IntegrityKind.MALFORMED_SNAPSHOT
            )

        try:
            graph = cls(
                tier=payload.get("tier", DeploymentTier.STANDARD.value),
                graph_id=str(payload.get("graph_id") or "default"),
            )
            nodes = [Node.from_dict(item) for item in payload.get("nodes", [])]
            edges = [Edge.from_dict(item) for item in payload.get("edges", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise IntegrityViolationError(
                f"Snapshot has a malformed field: {e}", IntegrityKind.MALFORMED_SNAPSHOT
            ) from e

        for node in nodes:
            if node.id in graph._nodes:
                raise IntegrityViolationError(
                    f"Duplicate node id in snapshot: {node.id}",
                    IntegrityKind.DUPLICATE_ID,
                    node_id=node.id,
                )
            graph._nodes[node.id] = node
        for edge in edges:
            if edge.id in graph._edges:
                raise IntegrityViolationError(
                    f"Duplicate edge id in snapshot: {edge.id}",
                    IntegrityKind.DUPLICATE_ID,
                    edge_id=edge.id,
                )
            graph._edges[edge.id] = edge

        graph.validate()
        logger.debug(
            f"Deserialized graph {graph.graph_id}: {len(nodes)} nodes, {len(edges)} edges"
        )
        return graph
