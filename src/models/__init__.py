"""Knowledge graph data model and store."""

from .graph_types import (
    Cluster,
    Edge,
    EdgeMetadata,
    EdgeType,
    GapType,
    GraphMetrics,
    KnowledgeGap,
    Node,
    NodeMetadata,
    NodeScores,
    NodeType,
    ReasoningApproach,
    SelectionCriteria,
)
from .knowledge_graph import KnowledgeGraph
from .resource_limits import TIER_LIMITS, DeploymentTier, ResourceLimits, get_resource_limits

__all__ = [
    # Types
    "Cluster",
    "Edge",
    "EdgeMetadata",
    "EdgeType",
    "GapType",
    "GraphMetrics",
    "KnowledgeGap",
    "Node",
    "NodeMetadata",
    "NodeScores",
    "NodeType",
    "ReasoningApproach",
    "SelectionCriteria",
    # Store
    "KnowledgeGraph",
    # Resource limits
    "DeploymentTier",
    "ResourceLimits",
    "TIER_LIMITS",
    "get_resource_limits",
]
