"""pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from src.config import reload_config
from src.models.knowledge_graph import KnowledgeGraph
from src.tools.concurrent_graph import ConcurrentGraph


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pin environment-driven settings so tests do not depend on the host."""
    monkeypatch.setenv("GRAPH_DEFAULT_TIER", "development")
    monkeypatch.setenv("MAX_GRAPHS", "10")
    monkeypatch.setenv("ALGORITHM_RETRY_ATTEMPTS", "3")
    monkeypatch.setenv("ALGORITHM_RETRY_BASE_DELAY", "0.001")
    monkeypatch.setenv("ANALYSIS_TIMEOUT_SECONDS", "10")
    reload_config()


@pytest.fixture
def graph() -> KnowledgeGraph:
    """Empty development-tier graph."""
    return KnowledgeGraph(tier="development", graph_id="test-graph")


@pytest.fixture
def scenario_graph() -> tuple[KnowledgeGraph, dict[str, str]]:
    """Root A with children B and C joined by strong leads-to edges."""
    kg = KnowledgeGraph(tier="development", graph_id="scenario")
    a = kg.create_node("root", node_id="A")
    b = kg.create_node("leaf1", node_id="B", parent_id=a)
    c = kg.create_node("leaf2", node_id="C", parent_id=a)
    kg.create_edge(a, b, type="leads-to", weight=0.8, edge_id="A-B")
    kg.create_edge(a, c, type="leads-to", weight=0.8, edge_id="A-C")
    return kg, {"A": a, "B": b, "C": c}


@pytest.fixture
def concurrent_graph(graph: KnowledgeGraph) -> ConcurrentGraph:
    """Lock-guarded wrapper around the empty test graph."""
    return ConcurrentGraph(graph, retry_attempts=3, retry_base_delay=0.001)
