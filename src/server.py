"""Reason Graph MCP Server.

FastMCP 2.0 server exposing the PDR knowledge graph to a tool-calling client.
The client does all reasoning; these tools store, query and analyse the graph
it builds.

Tools:
1. graph_node - create/update/remove/get nodes, mark selection, batch mutations
2. graph_edge - create/remove/get edges
3. graph_query - read-only lookups (nodes, edges, adjacency, paths, depth)
4. graph_analyze - centrality, clusters, gaps, top-K selection, analysis pass, prune
5. graph_persist - serialize/deserialize/close/list graphs
6. status - server status or one graph's statistics

Run with: uvx reason-graph
Or: python -m src.server
"""

# Note: We intentionally do NOT use `from __future__ import annotations` here
# because it causes issues with Pydantic/FastMCP type resolution at decorator time.

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Literal, TypeVar

import orjson
from dotenv import load_dotenv
from fastmcp import FastMCP
from loguru import logger

from src.config import get_config
from src.models.graph_types import Edge, Node, SelectionCriteria
from src.tools.concurrent_graph import ConcurrentGraph, GraphOperation
from src.tools.graph_registry import GraphRegistry
from src.utils.errors import KnowledgeGraphError, ToolExecutionError
from src.utils.logging import configure_logging, log_context
from src.utils.retry import with_timeout

# Load environment variables from .env file (for local development)
load_dotenv()

T = TypeVar("T")

NodeAction = Literal["create", "update", "remove", "get", "select", "batch"]
EdgeAction = Literal["create", "remove", "get"]
QueryKind = Literal[
    "nodes", "edges", "outgoing", "incoming", "children", "depth", "selected", "path"
]
AnalyzeAction = Literal["pass", "centrality", "clusters", "gaps", "select", "prune"]
PersistAction = Literal["serialize", "deserialize", "close", "list"]


def _json(data: dict[str, Any] | None, *, indent: bool = True) -> str:
    """Serialize data to JSON string with proper typing.

    Type-safe wrapper around orjson.dumps that returns str.
    """
    if data is None:
        data = {}
    opts = orjson.OPT_INDENT_2 if indent else 0
    result: bytes = orjson.dumps(data, option=opts, default=str)
    return result.decode("utf-8")


def _error(tool_name: str, error: Exception, **details: Any) -> str:
    """Render an exception as a ToolExecutionError payload."""
    if isinstance(error, KnowledgeGraphError):
        failure = ToolExecutionError.from_graph_error(tool_name, error)
        failure.details.update(details)
    else:
        failure = ToolExecutionError(tool_name, str(error) or type(error).__name__, details)
    return _json(failure.to_dict(), indent=False)


def _validate_content(content: str | None) -> None:
    """Reject oversized content (CWE-400 mitigation)."""
    limit = get_config().input_limits.max_content_size
    if content is not None and len(content) > limit:
        raise ValueError(f"content exceeds maximum size ({len(content)} > {limit} characters)")


def _require(name: str, value: T | None) -> T:
    if value is None or value == "":
        raise ValueError(f"{name} is required for this action")
    return value


def _node_view(node: Node, *, full: bool = True) -> dict[str, Any]:
    data = node.to_dict()
    if not full:
        data.pop("incoming_edges")
        data.pop("outgoing_edges")
    return data


def _edge_view(edge: Edge) -> dict[str, Any]:
    return edge.to_dict()


# =============================================================================
# Graph Registry
# =============================================================================

_registry: GraphRegistry | None = None


def get_registry() -> GraphRegistry:
    """Get or create the server's graph registry."""
    global _registry
    if _registry is None:
        _registry = GraphRegistry()
    return _registry


def reset_registry() -> GraphRegistry:
    """Replace the registry with an empty one (for testing)."""
    global _registry
    _registry = GraphRegistry()
    return _registry


async def _offload(fn: Callable[..., T], *args: Any) -> T:
    return await asyncio.to_thread(fn, *args)


async def _bounded(fn: Callable[..., T], *args: Any) -> T:
    """Run a blocking graph call in a worker thread under the analysis timeout.

    Algorithms work on a snapshot and take the graph lock only to copy and
    to write results back, so an abandoned call never stalls other tools.
    """
    timeout = get_config().algorithm.analysis_timeout_seconds
    return await with_timeout(timeout)(_offload)(fn, *args)


# =============================================================================
# Automatic Graph Cleanup
# =============================================================================

CLEANUP_INTERVAL_SECONDS = 60

_cleanup_task: asyncio.Task[None] | None = None


async def _cleanup_stale_graphs() -> None:
    """Background task closing graphs idle longer than GRAPH_MAX_AGE_MINUTES."""
    max_age = timedelta(minutes=get_config().graph.max_age_minutes)
    logger.info(
        f"Graph cleanup task started (max_age={max_age}, interval={CLEANUP_INTERVAL_SECONDS}s)"
    )

    while True:
        try:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            removed = get_registry().cleanup_stale(max_age)
            if removed:
                logger.info(f"Closed {len(removed)} stale graphs: {removed}")
        except asyncio.CancelledError:
            logger.info("Graph cleanup task cancelled")
            break
        except Exception as e:
            logger.error(f"Error in cleanup task: {e}")


def _start_cleanup_task() -> None:
    """Start the background cleanup task if not already running."""
    global _cleanup_task
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No event loop available, cleanup task will start with the server lifespan")
        return
    if _cleanup_task is None or _cleanup_task.done():
        _cleanup_task = loop.create_task(_cleanup_stale_graphs())
        logger.debug("Cleanup task scheduled")


def _stop_cleanup_task() -> None:
    """Stop the background cleanup task."""
    global _cleanup_task
    if _cleanup_task is not None and not _cleanup_task.done():
        _cleanup_task.cancel()
        _cleanup_task = None
        logger.debug("Cleanup task stopped")


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Run stale-graph cleanup for as long as the server is serving."""
    _start_cleanup_task()
    try:
        yield
    finally:
        _stop_cleanup_task()


# =============================================================================
# Initialize FastMCP Server
# =============================================================================

mcp = FastMCP(
    name=get_config().server.name,
    lifespan=_lifespan,
    instructions="""Reason Graph MCP Server - knowledge graph for Progressive Deep Reasoning.

ARCHITECTURE: You (the LLM) do ALL reasoning. These tools STORE and ANALYSE the graph you build.

Every tool takes a graph_id. A graph is created on first use with the requested tier
(development | standard | extended | cloud), which bounds node/edge counts and depth.

1. graph_node(action, graph_id, ...) - create | update | remove | get | select | batch
2. graph_edge(action, graph_id, ...) - create | remove | get
   Edge types: supports, contradicts, refines, questions, leads-to, relates-to,
   derived-from, clusters-with. Weight must be in (0, 1].
3. graph_query(graph_id, query, ...) - nodes | edges | outgoing | incoming | children |
   depth | selected | path
4. graph_analyze(graph_id, action, ...) - pass | centrality | clusters | gaps | select | prune
5. graph_persist(action, graph_id?, data?) - serialize | deserialize | close | list
6. status(graph_id?) - server status or graph statistics

WORKFLOW:
1. graph_node("create", "g1", content="Why does ice float?", node_type="question")
2. graph_node("create", "g1", content="Ice is less dense", parent_id=<id>, node_type="evidence")
3. graph_edge("create", "g1", source_id=<q>, target_id=<e>, edge_type="supports", weight=0.8)
4. graph_analyze("g1", "pass", pass_name="initial-scan", pass_number=1)
   -> top nodes, clusters and knowledge gaps to explore next
""",
)


# =============================================================================
# Tools
# =============================================================================


@mcp.tool
async def graph_node(
    action: NodeAction,
    graph_id: str,
    tier: str | None = None,
    node_id: str | None = None,
    content: str | None = None,
    node_type: str | None = None,
    parent_id: str | None = None,
    depth: int | None = None,
    confidence: float | None = None,
    tags: list[str] | None = None,
    pattern_used: str | None = None,
    created_in_pass: str | None = None,
    artifacts: dict[str, Any] | None = None,
    node_ids: list[str] | None = None,
    selected: bool = True,
    operations: list[dict[str, Any]] | None = None,
) -> str:
    """Create, update, remove or inspect knowledge graph nodes.

    Actions:
        create: Add a node (content, node_type, parent_id, depth, confidence, tags, ...)
        update: Merge fields into node_id (content, node_type, parent_id, depth,
            confidence, tags, artifacts)
        remove: Remove node_id and every edge touching it
        get: Return node_id
        select: Mark node_ids as selected (or unselected with selected=False)
        batch: Apply operations atomically; each is
            {"kind": "create_node"|"update_node"|"remove_node"|"create_edge"|"remove_edge",
             "id": target id for update/remove, "params": {...}}

    Args:
        action: The action to perform (required)
        graph_id: Graph to operate on; created on first use (required)
        tier: Deployment tier used when the graph is created
        node_id: Target node for update/remove/get, or explicit id for create
        content: Node text
        node_type: subject | concept | evidence | question | insight
        parent_id: Parent node id
        depth: Explicit depth (defaults to parent depth + 1)
        confidence: Confidence in [0, 1]
        tags: Tags (replace existing on update)
        pattern_used: sequential | tree | beam | mcts | graph | auto
        created_in_pass: Name of the reasoning pass creating the node
        artifacts: Free-form attachments (merged on update)
        node_ids: Nodes for the select action
        selected: Selection flag for the select action
        operations: Operations for the batch action

    Returns:
        JSON with the affected node or ids, or an error payload

    """
    with log_context(graph_id=graph_id, tool_name="graph_node"):
        try:
            _validate_content(content)
            graph = get_registry().open(graph_id, tier)

            if action == "create":
                kwargs: dict[str, Any] = {
                    "node_id": node_id,
                    "parent_id": parent_id,
                    "depth": depth,
                    "tags": tags,
                    "artifacts": artifacts,
                    "pattern_used": pattern_used,
                }
                if node_type is not None:
                    kwargs["type"] = node_type
                if confidence is not None:
                    kwargs["confidence"] = confidence
                if created_in_pass is not None:
                    kwargs["created_in_pass"] = created_in_pass
                new_id = graph.create_node(content or "", **kwargs)
                node = graph.get_node(new_id)
                return _json({"node": _node_view(node) if node else {"id": new_id}})

            if action == "update":
                target = _require("node_id", node_id)
                updates: dict[str, Any] = {}
                if content is not None:
                    updates["content"] = content
                if node_type is not None:
                    updates["type"] = node_type
                if parent_id is not None:
                    updates["parent_id"] = parent_id
                if depth is not None:
                    updates["depth"] = depth
                if confidence is not None:
                    updates["scores"] = {"confidence": confidence}
                metadata: dict[str, Any] = {}
                if tags is not None:
                    metadata["tags"] = tags
                if pattern_used is not None:
                    metadata["pattern_used"] = pattern_used
                if metadata:
                    updates["metadata"] = metadata
                if artifacts is not None:
                    updates["artifacts"] = artifacts
                graph.update_node(target, **updates)
                node = graph.get_node(target)
                return _json({"node": _node_view(node) if node else {"id": target}})

            if action == "remove":
                target = _require("node_id", node_id)
                return _json({"removed": graph.remove_node(target), "node_id": target})

            if action == "get":
                target = _require("node_id", node_id)
                node = graph.get_node(target)
                if node is None:
                    return _json({"error": f"Node not found: {target}"}, indent=False)
                return _json({"node": _node_view(node)})

            if action == "select":
                ids = _require("node_ids", node_ids)
                graph.mark_selected(ids, selected)
                return _json({"selected": selected, "node_ids": ids})

            if action == "batch":
                ops = [GraphOperation.from_dict(op) for op in _require("operations", operations)]
                results = graph.batch(ops)
                return _json({"results": [r.to_dict() for r in results]})

            return _json({"error": f"Unknown action: {action}"}, indent=False)

        except (KnowledgeGraphError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"graph_node '{action}' rejected: {e}")
            return _error("graph_node", e, action=action)


@mcp.tool
async def graph_edge(
    action: EdgeAction,
    graph_id: str,
    tier: str | None = None,
    edge_id: str | None = None,
    source_id: str | None = None,
    target_id: str | None = None,
    edge_type: str = "relates-to",
    weight: float = 0.5,
    confidence: float = 0.5,
    justification: str | None = None,
    bidirectional: bool = False,
    created_in_pass: str = "initial",
) -> str:
    """Create, remove or inspect typed weighted edges.

    Args:
        action: create | remove | get (required)
        graph_id: Graph to operate on; created on first use (required)
        tier: Deployment tier used when the graph is created
        edge_id: Target edge for remove/get, or explicit id for create
        source_id: Source node (create)
        target_id: Target node (create)
        edge_type: supports | contradicts | refines | questions | leads-to |
            relates-to | derived-from | clusters-with
        weight: Strength in (0, 1]
        confidence: Confidence in [0, 1]
        justification: Why the relationship holds
        bidirectional: Walkable from either end
        created_in_pass: Name of the reasoning pass creating the edge

    Returns:
        JSON with the affected edge, or an error payload

    """
    with log_context(graph_id=graph_id, tool_name="graph_edge"):
        try:
            graph = get_registry().open(graph_id, tier)

            if action == "create":
                new_id = graph.create_edge(
                    _require("source_id", source_id),
                    _require("target_id", target_id),
                    type=edge_type,
                    weight=weight,
                    edge_id=edge_id,
                    confidence=confidence,
                    justification=justification,
                    bidirectional=bidirectional,
                    created_in_pass=created_in_pass,
                )
                edge = graph.get_edge(new_id)
                return _json({"edge": _edge_view(edge) if edge else {"id": new_id}})

            if action == "remove":
                target = _require("edge_id", edge_id)
                return _json({"removed": graph.remove_edge(target), "edge_id": target})

            if action == "get":
                target = _require("edge_id", edge_id)
                edge = graph.get_edge(target)
                if edge is None:
                    return _json({"error": f"Edge not found: {target}"}, indent=False)
                return _json({"edge": _edge_view(edge)})

            return _json({"error": f"Unknown action: {action}"}, indent=False)

        except (KnowledgeGraphError, ValueError) as e:
            logger.warning(f"graph_edge '{action}' rejected: {e}")
            return _error("graph_edge", e, action=action)


@mcp.tool
async def graph_query(
    graph_id: str,
    query: QueryKind,
    node_id: str | None = None,
    target_id: str | None = None,
    depth: int | None = None,
    edge_type: str | None = None,
    limit: int = 100,
) -> str:
    """Read-only lookups over an open graph.

    Queries:
        nodes: All nodes (summaries, up to limit)
        edges: All edges, optionally filtered by edge_type
        outgoing / incoming: Edges of node_id
        children: Children of node_id
        depth: Nodes at the given depth
        selected: Nodes marked as selected
        path: Shortest path from node_id to target_id (edge length 1/weight)

    Args:
        graph_id: Graph to query (must be open)
        query: Query kind (required)
        node_id: Subject node for adjacency, children and path queries
        target_id: Destination for the path query
        depth: Depth for the depth query
        edge_type: Edge type filter for the edges query
        limit: Maximum number of entities returned

    Returns:
        JSON with the matching entities, or an error payload

    """
    with log_context(graph_id=graph_id, tool_name="graph_query"):
        try:
            graph = get_registry().get(graph_id)

            if query == "path":
                path = await _bounded(
                    graph.find_path, _require("node_id", node_id), _require("target_id", target_id)
                )
                return _json({"path": path, "hops": max(len(path) - 1, 0), "found": bool(path)})

            nodes: list[Node] | None = None
            edges: list[Edge] | None = None
            if query == "nodes":
                nodes = graph.get_all_nodes()
            elif query == "edges":
                if edge_type is not None:
                    edges = graph.read(lambda kg: kg.get_edges_by_type(edge_type))
                else:
                    edges = graph.get_all_edges()
            elif query == "outgoing":
                edges = graph.get_outgoing_edges(_require("node_id", node_id))
            elif query == "incoming":
                edges = graph.get_incoming_edges(_require("node_id", node_id))
            elif query == "children":
                target = _require("node_id", node_id)
                nodes = graph.read(lambda kg: kg.get_children(target))
            elif query == "depth":
                level = _require("depth", depth)
                nodes = graph.read(lambda kg: kg.get_nodes_at_depth(level))
            elif query == "selected":
                nodes = graph.get_selected_nodes()
            else:
                return _json({"error": f"Unknown query: {query}"}, indent=False)

            if nodes is not None:
                return _json(
                    {
                        "count": len(nodes),
                        "nodes": [_node_view(n, full=False) for n in nodes[:limit]],
                    }
                )
            assert edges is not None
            return _json({"count": len(edges), "edges": [_edge_view(e) for e in edges[:limit]]})

        except (KnowledgeGraphError, ValueError) as e:
            logger.warning(f"graph_query '{query}' rejected: {e}")
            return _error("graph_query", e, query=query)
        except TimeoutError as e:
            logger.error(f"graph_query '{query}' timed out")
            return _error("graph_query", e, query=query, timeout=True)


@mcp.tool
async def graph_analyze(
    graph_id: str,
    action: AnalyzeAction = "pass",
    pass_name: str = "analysis",
    pass_number: int = 1,
    top_k: int = 10,
    per_cluster: int = 3,
    diversity_weight: float = 0.3,
    mark: bool = False,
    threshold: float | None = None,
) -> str:
    """Run graph algorithms over an open graph.

    Actions:
        pass: Centrality, clusters and gaps in one pass; caches results on the graph
        centrality: PageRank-style scores for every node
        clusters: Connected components over strong edges (weight > 0.6)
        gaps: Missing links, weak evidence, contradictions, isolated clusters
        select: Diversity-aware top-K nodes (mark=True flags them as selected)
        prune: Remove nodes with centrality below threshold

    Args:
        graph_id: Graph to analyse (must be open)
        action: Analysis to run (default: pass)
        pass_name: Name recorded for the pass action
        pass_number: Sequence number recorded for the pass action
        top_k: Selection size for the select action
        per_cluster: Nodes taken from each cluster first (select)
        diversity_weight: Penalty factor for nearby selections, in [0, 1] (select)
        mark: Flag selected nodes (select)
        threshold: Centrality cut-off (prune, required)

    Returns:
        JSON with analysis results, or an error payload

    """
    with log_context(graph_id=graph_id, tool_name="graph_analyze"):
        try:
            graph = get_registry().get(graph_id)

            if action == "pass":
                result = await _bounded(graph.run_analysis, pass_name, pass_number)
                return _json(result.to_dict(top_n=top_k))

            if action == "centrality":
                ranks = await _bounded(graph.compute_centrality)
                ordered = sorted(ranks.items(), key=lambda item: (-item[1], item[0]))
                return _json({"centrality": {k: round(v, 6) for k, v in ordered}})

            if action == "clusters":
                clusters = await _bounded(graph.detect_connected_components)
                return _json({"clusters": [c.to_dict() for c in clusters.values()]})

            if action == "gaps":
                gaps = await _bounded(graph.identify_gaps)
                return _json({"gaps": [g.to_dict() for g in gaps]})

            if action == "select":
                criteria = SelectionCriteria(
                    top_k=top_k, per_cluster=per_cluster, diversity_weight=diversity_weight
                )
                chosen = await _bounded(graph.select_top_nodes, criteria, None, mark)
                return _json({"selected": chosen, "marked": mark})

            if action == "prune":
                cutoff = _require("threshold", threshold)
                pruned = await _bounded(graph.prune, cutoff)
                return _json({"pruned": pruned, "remaining": graph.get_node_count()})

            return _json({"error": f"Unknown action: {action}"}, indent=False)

        except (KnowledgeGraphError, ValueError) as e:
            logger.warning(f"graph_analyze '{action}' failed: {e}")
            return _error("graph_analyze", e, action=action)
        except TimeoutError as e:
            logger.error(f"graph_analyze '{action}' timed out")
            return _error("graph_analyze", e, action=action, timeout=True)


@mcp.tool
async def graph_persist(
    action: PersistAction,
    graph_id: str | None = None,
    data: str | None = None,
) -> str:
    """Save, restore, close or list graphs.

    Actions:
        serialize: Return graph_id's JSON snapshot
        deserialize: Restore a snapshot from data (registered under graph_id when given)
        close: Drop graph_id from the server
        list: Summaries of every open graph

    Args:
        action: Persistence action (required)
        graph_id: Target graph
        data: Snapshot JSON for deserialize

    Returns:
        JSON with the snapshot or a confirmation, or an error payload

    """
    with log_context(graph_id=graph_id, tool_name="graph_persist"):
        try:
            registry = get_registry()

            if action == "serialize":
                target = _require("graph_id", graph_id)
                return _json({"graph_id": target, "snapshot": registry.serialize(target)})

            if action == "deserialize":
                graph: ConcurrentGraph = registry.deserialize(_require("data", data), graph_id)
                return _json({"graph_id": graph.graph_id, "statistics": graph.statistics()})

            if action == "close":
                target = _require("graph_id", graph_id)
                return _json({"graph_id": target, "closed": registry.close(target)})

            if action == "list":
                return _json({"graphs": registry.list_graphs()})

            return _json({"error": f"Unknown action: {action}"}, indent=False)

        except (KnowledgeGraphError, ValueError) as e:
            logger.warning(f"graph_persist '{action}' failed: {e}")
            return _error("graph_persist", e, action=action)


@mcp.tool
async def status(graph_id: str | None = None) -> str:
    """Get server status or one graph's statistics.

    Args:
        graph_id: Optional graph to describe

    Returns:
        JSON with server info and open graphs, or the graph's statistics

    """
    try:
        registry = get_registry()
        if graph_id:
            return _json({"graph": registry.get(graph_id).statistics()})

        config = get_config()
        return _json(
            {
                "server": {
                    "name": config.server.name,
                    "transport": config.server.transport,
                    "tools": [
                        "graph_node",
                        "graph_edge",
                        "graph_query",
                        "graph_analyze",
                        "graph_persist",
                        "status",
                    ],
                },
                "graphs": {
                    "open": registry.session_count(),
                    "max": config.graph.max_graphs,
                    "default_tier": registry.default_tier.value,
                },
                "config": config.to_dict(),
            }
        )
    except KnowledgeGraphError as e:
        return _error("status", e, graph_id=graph_id)


def main() -> None:
    """Run the Reason Graph MCP server."""
    configure_logging()
    server = get_config().server
    logger.info(f"Starting {server.name} (transport: {server.transport})")

    get_registry()

    if server.transport == "stdio":
        mcp.run(transport="stdio")
    elif server.transport == "http":
        mcp.run(transport="streamable-http", host=server.host, port=server.port)
    elif server.transport == "sse":
        mcp.run(transport="sse", host=server.host, port=server.port)
    else:
        logger.warning(f"Unknown transport '{server.transport}', falling back to stdio")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
