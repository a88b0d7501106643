"""Node, edge and derived-result types for the PDR knowledge graph.

Sets (children, edge ids, tags) are materialised as sorted lists by
``to_dict`` so that snapshots are stable; ``from_dict`` restores them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class NodeType(str, Enum):
    """Kinds of knowledge unit."""

    SUBJECT = "subject"
    CONCEPT = "concept"
    EVIDENCE = "evidence"
    QUESTION = "question"
    INSIGHT = "insight"


class EdgeType(str, Enum):
    """Typed relationships between nodes."""

    SUPPORTS = "supports"
    CONTRADICTS = "contradicts"
    REFINES = "refines"
    QUESTIONS = "questions"
    LEADS_TO = "leads-to"
    RELATES_TO = "relates-to"
    DERIVED_FROM = "derived-from"
    CLUSTERS_WITH = "clusters-with"


class ReasoningApproach(str, Enum):
    """Reasoning pattern that produced a node."""

    SEQUENTIAL = "sequential"
    TREE = "tree"
    BEAM = "beam"
    MCTS = "mcts"
    GRAPH = "graph"
    AUTO = "auto"


class GapType(str, Enum):
    """Categories of knowledge gap."""

    MISSING_LINK = "missing-link"
    WEAK_EVIDENCE = "weak-evidence"
    CONTRADICTION = "contradiction"
    ISOLATED_CLUSTER = "isolated-cluster"


@dataclass(slots=True)
class NodeScores:
    """Scores attached to a node.

    ``centrality`` mirrors the last analysis pass only; algorithm output
    is the source of truth.
    """

    confidence: float = 0.5
    centrality: float = 0.0
    pass_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "confidence": self.confidence,
            "centrality": self.centrality,
            "pass_scores": dict(self.pass_scores),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeScores:
        """Rebuild from ``to_dict`` output."""
        return cls(
            confidence=float(data.get("confidence", 0.5)),
            centrality=float(data.get("centrality", 0.0)),
            pass_scores={str(k): float(v) for k, v in data.get("pass_scores", {}).items()},
        )


@dataclass(slots=True)
class NodeMetadata:
    """Bookkeeping for a node."""

    created_in_pass: str = "initial"
    last_modified: str = field(default_factory=utc_now_iso)
    tags: set[str] = field(default_factory=set)
    pattern_used: ReasoningApproach | None = None
    selected: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "created_in_pass": self.created_in_pass,
            "last_modified": self.last_modified,
            "tags": sorted(self.tags),
            "pattern_used": self.pattern_used.value if self.pattern_used else None,
            "selected": self.selected,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeMetadata:
        """Rebuild from ``to_dict`` output."""
        pattern = data.get("pattern_used")
        return cls(
            created_in_pass=str(data.get("created_in_pass", "initial")),
            last_modified=str(data.get("last_modified") or utc_now_iso()),
            tags=set(data.get("tags", [])),
            pattern_used=ReasoningApproach(pattern) if pattern else None,
            selected=bool(data.get("selected", False)),
        )


@dataclass(slots=True, eq=False)
class Node:
    """A unit of content in the knowledge graph."""

    id: str
    content: str = ""
    type: NodeType = NodeType.CONCEPT
    depth: int = 0
    parent_id: str | None = None
    children_ids: set[str] = field(default_factory=set)
    incoming_edges: set[str] = field(default_factory=set)
    outgoing_edges: set[str] = field(default_factory=set)
    scores: NodeScores = field(default_factory=NodeScores)
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    artifacts: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "content": self.content,
            "type": self.type.value,
            "depth": self.depth,
            "parent_id": self.parent_id,
            "children_ids": sorted(self.children_ids),
            "incoming_edges": sorted(self.incoming_edges),
            "outgoing_edges": sorted(self.outgoing_edges),
            "scores": self.scores.to_dict(),
            "metadata": self.metadata.to_dict(),
            "artifacts": dict(self.artifacts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """Rebuild from ``to_dict`` output.

        Raises:
            KeyError: If ``id`` is missing.
            ValueError: If an enum value or number is malformed.

        """
        return cls(
            id=str(data["id"]),
            content=str(data.get("content", "")),
            type=NodeType(data.get("type", NodeType.CONCEPT.value)),
            depth=int(data.get("depth", 0)),
            parent_id=data.get("parent_id"),
            children_ids=set(data.get("children_ids", [])),
            incoming_edges=set(data.get("incoming_edges", [])),
            outgoing_edges=set(data.get("outgoing_edges", [])),
            scores=NodeScores.from_dict(data.get("scores", {})),
            metadata=NodeMetadata.from_dict(data.get("metadata", {})),
            artifacts=dict(data.get("artifacts", {})),
        )


@dataclass(slots=True)
class EdgeMetadata:
    """Bookkeeping for an edge."""

    created_in_pass: str = "initial"
    confidence: float = 0.5
    justification: str | None = None
    bidirectional: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "created_in_pass": self.created_in_pass,
            "confidence": self.confidence,
            "justification": self.justification,
            "bidirectional": self.bidirectional,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EdgeMetadata:
        """Rebuild from ``to_dict`` output."""
        return cls(
            created_in_pass=str(data.get("created_in_pass", "initial")),
            confidence=float(data.get("confidence", 0.5)),
            justification=data.get("justification"),
            bidirectional=bool(data.get("bidirectional", False)),
        )


@dataclass(slots=True, eq=False)
class Edge:
    """A typed, weighted directed relationship."""

    id: str
    source_id: str
    target_id: str
    type: EdgeType = EdgeType.RELATES_TO
    weight: float = 0.5
    metadata: EdgeMetadata = field(default_factory=EdgeMetadata)

    def other_end(self, node_id: str) -> str:
        """Endpoint opposite ``node_id`` (the target when it is the source)."""
        return self.target_id if node_id == self.source_id else self.source_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "type": self.type.value,
            "weight": self.weight,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        """Rebuild from ``to_dict`` output.

        Raises:
            KeyError: If an id or endpoint is missing.
            ValueError: If an enum value or number is malformed.

        """
        return cls(
            id=str(data["id"]),
            source_id=str(data["source_id"]),
            target_id=str(data["target_id"]),
            type=EdgeType(data.get("type", EdgeType.RELATES_TO.value)),
            weight=float(data.get("weight", 0.5)),
            metadata=EdgeMetadata.from_dict(data.get("metadata", {})),
        )


@dataclass(slots=True)
class Cluster:
    """Nodes joined by strong edges (derived, never persisted)."""

    id: str
    node_ids: set[str]
    centroid: str | None = None
    coherence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "node_ids": sorted(self.node_ids),
            "centroid": self.centroid,
            "coherence": round(self.coherence, 4),
        }


@dataclass(slots=True)
class KnowledgeGap:
    """A derived signal that the graph is missing something."""

    type: GapType
    node_ids: list[str]
    priority: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "node_ids": list(self.node_ids),
            "priority": round(self.priority, 4),
            "description": self.description,
        }


@dataclass
class GraphMetrics:
    """Summary kept by the store and refreshed by analysis passes."""

    node_count: int = 0
    edge_count: int = 0
    avg_degree: float = 0.0
    max_depth: int = 0
    cluster_count: int = 0
    gaps: list[KnowledgeGap] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "avg_degree": round(self.avg_degree, 3),
            "max_depth": self.max_depth,
            "cluster_count": self.cluster_count,
            "gap_count": len(self.gaps),
        }


@dataclass
class SelectionCriteria:
    """Parameters for diversity-aware top-K selection."""

    top_k: int = 10
    per_cluster: int = 3
    diversity_weight: float = 0.3

    def __post_init__(self) -> None:
        if self.top_k < 0 or self.per_cluster < 0:
            raise ValueError("top_k and per_cluster must be non-negative")
        if not 0.0 <= self.diversity_weight <= 1.0:
            raise ValueError(f"diversity_weight must be in [0, 1], got {self.diversity_weight}")
