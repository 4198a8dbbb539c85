from .convert import (
    CoordinateAccessor,
    FieldAccessor,
    FunctionAccessor,
    resolve_accessor,
    to_point,
    to_points,
)
from .errors import ConfigurationError, DataError, StateError
from .index import ClusterIndex, IndexOptions, build_index
from .types import ClusterNode, Coordinate, GeoPoint, MarkerNode, VisibleNode

__all__ = [
    "ClusterIndex",
    "ClusterNode",
    "ConfigurationError",
    "Coordinate",
    "CoordinateAccessor",
    "DataError",
    "FieldAccessor",
    "FunctionAccessor",
    "GeoPoint",
    "IndexOptions",
    "MarkerNode",
    "StateError",
    "VisibleNode",
    "build_index",
    "resolve_accessor",
    "to_point",
    "to_points",
]
