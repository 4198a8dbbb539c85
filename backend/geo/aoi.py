from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon (west), minLat (south), maxLon (east), maxLat (north)
    - west > east means the box wraps across the antimeridian
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def wraps(self) -> bool:
        return self.min_lon > self.max_lon

    def contains(self, lon: float, lat: float) -> bool:
        if not (self.min_lat <= lat <= self.max_lat):
            return False
        if not self.wraps:
            return self.min_lon <= lon <= self.max_lon
        return lon >= self.min_lon or lon <= self.max_lon

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

