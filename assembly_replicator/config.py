"""
config.py

Run parameters for a replication pass. All tolerances are in model units
unless the name says degrees.
"""

import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CopyStrategy(Enum):
    """How the Batch Replicator submits copies to the host."""
    BATCHED = "batched"         # one bulk copy per distinct transform
    PER_MEMBER = "per_member"   # one host copy per payload and transform


@dataclass(frozen=True)
class ReplicationConfig:
    # Signatures and keys
    signature_decimals: int = 6
    matrix_key_decimals: int = 6

    # Transform solving / composition
    mirror_tolerance: float = 0.1
    antiparallel_dot: float = -0.9
    direction_epsilon: float = 1e-9
    rotation_zero_deg: float = 0.01
    half_turn_tolerance_deg: float = 1.0

    # Spatial narrowing
    grid_size: float = 50.0
    region_containment_tolerance: float = 0.1
    containment_tolerance: float = 0.001
    containment_fallback_tolerance: float = 0.01
    containment_proximity: float = 10.0
    elevation_filter_tolerance: float = 10.0
    instance_z_band: float = 1.0
    max_anchor_elevation_delta: float = 200.0
    default_region_height: float = 10.0

    # Duplicate suppression
    allow_duplicates: bool = False
    duplicate_search_half_width: float = 0.01
    endpoint_tolerance: float = 0.01

    # Copying
    copy_strategy: CopyStrategy = CopyStrategy.BATCHED

    # Reporting
    max_reported_failures: int = 5
    max_skipped_details: int = 10
    verbose: bool = False

    def __post_init__(self):
        if self.grid_size <= 0:
            raise ValueError(f"grid_size must be positive, got {self.grid_size}")
        for name in ("mirror_tolerance", "duplicate_search_half_width", "endpoint_tolerance"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if not -1.0 <= self.antiparallel_dot <= 0.0:
            raise ValueError(f"antiparallel_dot must lie in [-1, 0], got {self.antiparallel_dot}")
        if not isinstance(self.copy_strategy, CopyStrategy):
            raise ValueError(f"copy_strategy must be a CopyStrategy, got {self.copy_strategy!r}")

    @classmethod
    def from_overrides(cls, **overrides: Any) -> "ReplicationConfig":
        """Builds a config from keyword overrides, accepting strategy names as strings."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown configuration field(s): {', '.join(unknown)}")
        if isinstance(overrides.get("copy_strategy"), str):
            overrides["copy_strategy"] = CopyStrategy(overrides["copy_strategy"])
        config = cls(**overrides)
        logger.debug(f"Configuration: {config}")
        return config

    def with_changes(self, **changes: Any) -> "ReplicationConfig":
        return replace(self, **changes)
