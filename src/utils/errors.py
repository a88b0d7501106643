"""Custom exceptions for Reason Graph MCP."""

from __future__ import annotations

from enum import Enum
from typing import Any


class KnowledgeGraphError(Exception):
    """Base exception for knowledge graph operations."""

    kind_name = "knowledge_graph_error"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"error_type": self.kind_name, "message": str(self)}


class IntegrityKind(str, Enum):
    """Classes of structural violation."""

    ORPHAN_EDGE = "orphan-edge"
    CIRCULAR_PARENT = "circular-parent"
    INVALID_DEPTH = "invalid-depth"
    DUPLICATE_ID = "duplicate-id"
    DANGLING_REFERENCE = "dangling-reference"
    MALFORMED_SNAPSHOT = "malformed-snapshot"


class CapacityExceededError(KnowledgeGraphError):
    """Raised when a node or edge ceiling has been reached.

    Recoverable by pruning or by moving to a larger deployment tier.
    Nothing is ever truncated silently.
    """

    kind_name = "capacity_exceeded"

    def __init__(
        self,
        current_size: int,
        max_size: int,
        operation: str,
        suggestion: str | None = None,
    ) -> None:
        self.current_size = current_size
        self.max_size = max_size
        self.operation = operation
        self.suggestion = suggestion
        super().__init__(f"{operation}: capacity {max_size} reached (current size {current_size})")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {
            **super().to_dict(),
            "current_size": self.current_size,
            "max_size": self.max_size,
            "operation": self.operation,
            "suggestion": self.suggestion,
        }


class IntegrityViolationError(KnowledgeGraphError):
    """Raised on a malformed mutation attempt or a corrupt snapshot."""

    kind_name = "integrity_violation"

    def __init__(
        self,
        reason: str,
        kind: IntegrityKind,
        *,
        node_id: str | None = None,
        edge_id: str | None = None,
    ) -> None:
        self.reason = reason
        self.kind = kind
        self.node_id = node_id
        self.edge_id = edge_id
        super().__init__(f"[{kind.value}] {reason}")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {
            **super().to_dict(),
            "kind": self.kind.value,
            "reason": self.reason,
            "node_id": self.node_id,
            "edge_id": self.edge_id,
        }


class NodeNotFoundError(KnowledgeGraphError):
    """Raised when an update or lookup references an unknown id."""

    kind_name = "not_found"

    def __init__(self, entity_id: str, entity_kind: str = "node") -> None:
        self.entity_id = entity_id
        self.entity_kind = entity_kind
        super().__init__(f"{entity_kind.capitalize()} not found: {entity_id}")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {**super().to_dict(), "id": self.entity_id, "entity_kind": self.entity_kind}


class InvalidWeightError(KnowledgeGraphError):
    """Raised when an edge weight falls outside (0, 1]."""

    kind_name = "invalid_weight"

    def __init__(self, value: float) -> None:
        self.value = value
        super().__init__(f"Edge weight must be in (0, 1], got {value!r}")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {**super().to_dict(), "value": self.value}


class AlgorithmFailureError(KnowledgeGraphError):
    """Raised when a graph algorithm hits an unexpected internal state."""

    kind_name = "algorithm_failure"

    def __init__(self, algorithm: str, cause: BaseException | str) -> None:
        self.algorithm = algorithm
        self.cause = cause
        super().__init__(f"{algorithm} failed: {cause}")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {**super().to_dict(), "algorithm": self.algorithm, "cause": str(self.cause)}


class PassExecutionError(KnowledgeGraphError):
    """Raised when an analysis pass cannot complete."""

    kind_name = "pass_execution_failed"

    def __init__(self, pass_name: str, pass_number: int, reason: str) -> None:
        self.pass_name = pass_name
        self.pass_number = pass_number
        self.reason = reason
        super().__init__(f"Pass '{pass_name}' (#{pass_number}) failed: {reason}")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {
            **super().to_dict(),
            "pass_name": self.pass_name,
            "pass_number": self.pass_number,
            "reason": self.reason,
        }


class SessionNotFoundError(KnowledgeGraphError):
    """Raised when a session or graph ID is not registered."""

    kind_name = "session_not_found"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {**super().to_dict(), "session_id": self.session_id}


class ToolExecutionError(Exception):
    """Raised when tool execution fails in MCP context.

    Provides structured error information that can be returned
    to the LLM client in a parseable format.
    """

    def __init__(
        self,
        tool_name: str,
        error_message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize tool execution error.

        Args:
            tool_name: Name of the tool that failed.
            error_message: Human-readable error message.
            details: Optional dictionary with additional error details.

        """
        self.tool_name = tool_name
        self.error_message = error_message
        self.details = details or {}
        super().__init__(f"Tool {tool_name} failed: {error_message}")

    @classmethod
    def from_graph_error(cls, tool_name: str, error: KnowledgeGraphError) -> ToolExecutionError:
        """Wrap a typed graph error, keeping its payload as details."""
        return cls(tool_name, str(error), error.to_dict())

    def to_mcp_error(self) -> str:
        """Convert to MCP-compatible error format.

        Returns:
            Formatted error string for MCP response.

        """
        return f"[{self.tool_name}] {self.error_message}. Details: {self.details}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the error.

        """
        return {
            "error": True,
            "tool": self.tool_name,
            "message": self.error_message,
            "details": self.details,
        }
