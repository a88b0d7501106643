"""Reason Graph MCP Configuration.

Centralized configuration management with environment variable support
and Docker secrets integration.

Usage:
    from src.config import get_config
    print(get_config().graph.default_tier)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from src.models.resource_limits import DeploymentTier


def _get_env(key: str, default: str = "") -> str:
    """Get environment variable, treating empty string as unset.

    Also checks the Docker secrets path.
    """
    secrets_path = Path(f"/run/secrets/{key.lower()}")
    if secrets_path.is_file():
        try:
            value = secrets_path.read_text().strip()
            if value:
                return value
        except OSError as e:
            logger.warning(f"Failed to read Docker secret {secrets_path}: {e}")

    value = os.getenv(key, default)
    return value if value else default


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value:
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid integer for {key}: {value}, using default {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value:
        try:
            return float(value)
        except ValueError:
            logger.warning(f"Invalid float for {key}: {value}, using default {default}")
    return default


def _get_env_tier(key: str, default: DeploymentTier) -> DeploymentTier:
    value = _get_env(key)
    if value:
        try:
            return DeploymentTier.parse(value)
        except ValueError as e:
            logger.warning(f"{e}, using default {default.value}")
    return default


@dataclass(frozen=True)
class ServerConfig:
    """Server runtime configuration."""

    name: str = field(default_factory=lambda: _get_env("SERVER_NAME", "Reason-Graph-MCP"))
    transport: str = field(default_factory=lambda: _get_env("SERVER_TRANSPORT", "stdio"))
    host: str = field(default_factory=lambda: _get_env("SERVER_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _get_env_int("SERVER_PORT", 8000))


@dataclass(frozen=True)
class GraphConfig:
    """Knowledge graph sizing and lifetime."""

    default_tier: DeploymentTier = field(
        default_factory=lambda: _get_env_tier("GRAPH_DEFAULT_TIER", DeploymentTier.STANDARD)
    )
    max_graphs: int = field(default_factory=lambda: _get_env_int("MAX_GRAPHS", 100))
    max_age_minutes: int = field(
        default_factory=lambda: _get_env_int("GRAPH_MAX_AGE_MINUTES", 60)
    )


@dataclass(frozen=True)
class AlgorithmConfig:
    """Retry and timeout policy for graph analysis."""

    retry_attempts: int = field(
        default_factory=lambda: _get_env_int("ALGORITHM_RETRY_ATTEMPTS", 3)
    )
    retry_base_delay: float = field(
        default_factory=lambda: _get_env_float("ALGORITHM_RETRY_BASE_DELAY", 0.1)
    )
    analysis_timeout_seconds: float = field(
        default_factory=lambda: _get_env_float("ANALYSIS_TIMEOUT_SECONDS", 30.0)
    )


@dataclass(frozen=True)
class InputLimitsConfig:
    """Input size limits (CWE-400 mitigation)."""

    max_content_size: int = field(default_factory=lambda: _get_env_int("MAX_CONTENT_SIZE", 50000))


@dataclass(frozen=True)
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    algorithm: AlgorithmConfig = field(default_factory=AlgorithmConfig)
    input_limits: InputLimitsConfig = field(default_factory=InputLimitsConfig)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary (for logging/debugging)."""
        return {
            "server": {
                "name": self.server.name,
                "transport": self.server.transport,
                "host": self.server.host,
                "port": self.server.port,
            },
            "graph": {
                "default_tier": self.graph.default_tier.value,
                "max_graphs": self.graph.max_graphs,
                "max_age_minutes": self.graph.max_age_minutes,
            },
            "algorithm": {
                "retry_attempts": self.algorithm.retry_attempts,
                "retry_base_delay": self.algorithm.retry_base_delay,
                "analysis_timeout_seconds": self.algorithm.analysis_timeout_seconds,
            },
            "input_limits": {
                "max_content_size": self.input_limits.max_content_size,
            },
        }


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration (for testing)."""
    global _config
    _config = Config()
    return _config
