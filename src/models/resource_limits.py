"""Deployment tiers and their graph size ceilings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class DeploymentTier(str, Enum):
    """Named resource-limit profiles."""

    DEVELOPMENT = "development"
    STANDARD = "standard"
    EXTENDED = "extended"
    CLOUD = "cloud"

    @classmethod
    def parse(cls, value: DeploymentTier | str) -> DeploymentTier:
        """Accept an enum member or its string value.

        Raises:
            ValueError: If the value names no tier.

        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(
                f"Unknown deployment tier '{value}' (expected one of: {valid})"
            ) from None


@dataclass(frozen=True, slots=True)
class ResourceLimits:
    """Ceilings for one tier.

    Attributes:
        nodes: Maximum node count.
        edges: Maximum edge count.
        depth: Maximum node depth.
        target_memory_mb: Approximate memory budget at full capacity.

    """

    nodes: int
    edges: int
    depth: int
    target_memory_mb: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "nodes": self.nodes,
            "edges": self.edges,
            "depth": self.depth,
            "target_memory_mb": self.target_memory_mb,
        }


TIER_LIMITS: dict[DeploymentTier, ResourceLimits] = {
    DeploymentTier.DEVELOPMENT: ResourceLimits(nodes=500, edges=2500, depth=8, target_memory_mb=10),
    DeploymentTier.STANDARD: ResourceLimits(nodes=5000, edges=25000, depth=10, target_memory_mb=50),
    DeploymentTier.EXTENDED: ResourceLimits(
        nodes=20000, edges=100000, depth=12, target_memory_mb=200
    ),
    DeploymentTier.CLOUD: ResourceLimits(
        nodes=50000, edges=250000, depth=15, target_memory_mb=500
    ),
}


def get_resource_limits(tier: DeploymentTier | str) -> ResourceLimits:
    """Look up the ceilings for a tier."""
    return TIER_LIMITS[DeploymentTier.parse(tier)]
