"""
Clustered map session: configuration, readiness gating and the orchestrator that keeps
the visible cluster set in sync with item snapshots and the map region.
"""

from .config import ClusterConfig, EdgePadding, build_config
from .presets import list_presets, load_config
from .readiness import ReadinessGate
from .session import ClusterSession, MapWidget, clusters_changed

__all__ = [
    "ClusterConfig",
    "ClusterSession",
    "EdgePadding",
    "MapWidget",
    "ReadinessGate",
    "build_config",
    "clusters_changed",
    "list_presets",
    "load_config",
]
