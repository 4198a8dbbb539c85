from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypeAlias, Union


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class GeoPoint:
    """
    Normalized spatial index input: one per item, rebuilt on every load.
    """

    lon: float
    lat: float
    props: dict[str, Any]

    @property
    def item(self) -> Any:
        return self.props.get("item")


@dataclass(frozen=True)
class ClusterNode:
    cluster_id: int
    lon: float
    lat: float
    point_count: int
    props: dict[str, Any] = field(default_factory=dict)
    # Index load the id belongs to (0 = unknown).
    generation: int = 0

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.lat, longitude=self.lon)


@dataclass(frozen=True)
class MarkerNode:
    item: Any
    lon: float
    lat: float

    # Markers never aggregate anything.
    point_count: int = 0

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.lat, longitude=self.lon)


VisibleNode: TypeAlias = Union[ClusterNode, MarkerNode]


def abbreviate_count(count: int) -> str:
    if count >= 10_000:
        return f"{int(count / 1000 + 0.5)}k"
    if count >= 1000:
        return f"{int(count / 100 + 0.5) / 10:g}k"
    return str(count)
