from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, TypeAlias, Union

from clustering.errors import ConfigurationError, DataError
from clustering.types import Coordinate, GeoPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldAccessor:
    """Reads the coordinate from `item[name]` (mappings) or `item.name` (objects)."""

    name: str

    def __call__(self, item: Any) -> Any:
        if isinstance(item, Mapping):
            if self.name not in item:
                raise DataError(f"item has no `{self.name}` field")
            return item[self.name]
        if not hasattr(item, self.name):
            raise DataError(f"item has no `{self.name}` attribute")
        return getattr(item, self.name)


@dataclass(frozen=True)
class FunctionAccessor:
    """Derives the coordinate with a host-supplied function."""

    fn: Callable[[Any], Any]

    def __call__(self, item: Any) -> Any:
        try:
            return self.fn(item)
        except (KeyError, AttributeError, TypeError, IndexError) as e:
            raise DataError(f"coordinate accessor failed: {e}") from e


CoordinateAccessor: TypeAlias = Union[FieldAccessor, FunctionAccessor]


def resolve_accessor(
    accessor: str | Callable[[Any], Any] | CoordinateAccessor,
) -> CoordinateAccessor:
    """
    Resolve the host's `accessor` option (field name or function) once, up front.
    """
    if isinstance(accessor, (FieldAccessor, FunctionAccessor)):
        return accessor
    if isinstance(accessor, str):
        name = accessor.strip()
        if not name:
            raise ConfigurationError("accessor field name must not be empty")
        return FieldAccessor(name=name)
    if callable(accessor):
        return FunctionAccessor(fn=accessor)
    raise ConfigurationError(
        f"accessor must be a field name or a function, got {type(accessor).__name__}"
    )


def resolve_coordinate(item: Any, accessor: CoordinateAccessor) -> Coordinate:
    raw = accessor(item)
    if raw is None:
        raise DataError("item has no coordinate")
    if isinstance(raw, Coordinate):
        lat, lon = raw.latitude, raw.longitude
    elif isinstance(raw, Mapping):
        lat, lon = raw.get("latitude"), raw.get("longitude")
    else:
        lat, lon = getattr(raw, "latitude", None), getattr(raw, "longitude", None)

    lat = _as_degrees(lat, "latitude", limit=90.0)
    lon = _as_degrees(lon, "longitude", limit=180.0)
    return Coordinate(latitude=lat, longitude=lon)


def to_point(item: Any, accessor: CoordinateAccessor) -> GeoPoint:
    c = resolve_coordinate(item, accessor)
    return GeoPoint(lon=c.longitude, lat=c.latitude, props={"item": item})


@dataclass(frozen=True)
class Conversion:
    points: list[GeoPoint]
    skipped: int


def to_points(items: Iterable[Any], accessor: CoordinateAccessor) -> Conversion:
    """
    Convert a whole snapshot; items with unusable coordinates are skipped, not fatal.
    """
    out: list[GeoPoint] = []
    skipped = 0
    for i, item in enumerate(items):
        try:
            out.append(to_point(item, accessor))
        except DataError as e:
            skipped += 1
            logger.warning("skipping item #%d: %s", i, e)
    return Conversion(points=out, skipped=skipped)


def _as_degrees(v: Any, name: str, *, limit: float) -> float:
    if v is None:
        raise DataError(f"coordinate has no {name}")
    if isinstance(v, bool) or not isinstance(v, numbers.Real):
        raise DataError(f"{name} is not numeric: {v!r}")
    f = float(v)
    if not math.isfinite(f) or abs(f) > limit:
        raise DataError(f"{name} out of range: {v!r}")
    return f
