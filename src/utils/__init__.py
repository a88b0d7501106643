"""Utility modules for Reason Graph MCP."""

from .errors import (
    AlgorithmFailureError,
    CapacityExceededError,
    IntegrityKind,
    IntegrityViolationError,
    InvalidWeightError,
    KnowledgeGraphError,
    NodeNotFoundError,
    PassExecutionError,
    SessionNotFoundError,
    ToolExecutionError,
)
from .logging import configure_logging, log_context
from .retry import build_retrying, with_timeout
from .session import SessionManager

__all__ = [
    # Errors
    "AlgorithmFailureError",
    "CapacityExceededError",
    "IntegrityKind",
    "IntegrityViolationError",
    "InvalidWeightError",
    "KnowledgeGraphError",
    "NodeNotFoundError",
    "PassExecutionError",
    "SessionNotFoundError",
    "ToolExecutionError",
    # Logging
    "configure_logging",
    "log_context",
    # Retry
    "build_retrying",
    "with_timeout",
    # Session
    "SessionManager",
]
