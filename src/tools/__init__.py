"""Reason Graph tools - algorithms, concurrency wrapper and session registry."""

from .concurrent_graph import (
    AnalysisResult,
    ConcurrentGraph,
    GraphOperation,
    OperationKind,
    OperationResult,
)
from .graph_algorithms import GraphAlgorithms
from .graph_registry import GraphRegistry, GraphSession

__all__ = [
    # Algorithms
    "GraphAlgorithms",
    # Concurrency
    "AnalysisResult",
    "ConcurrentGraph",
    "GraphOperation",
    "OperationKind",
    "OperationResult",
    # Sessions
    "GraphRegistry",
    "GraphSession",
]
