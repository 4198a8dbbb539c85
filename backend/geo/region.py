from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class Region:
    """
    Visible map extent as reported by the map widget: center plus lat/lon span (degrees).
    """

    latitude: float
    longitude: float
    latitude_delta: float
    longitude_delta: float

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude", "latitude_delta", "longitude_delta"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
                raise ValueError(f"Region.{name} must be a finite number, got {v!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Region":
        """
        Accepts both the widget's camelCase keys (`latitudeDelta`) and snake_case.
        """

        def pick(camel: str, snake: str) -> Any:
            if camel in data:
                return data[camel]
            if snake in data:
                return data[snake]
            raise KeyError(f"Region is missing `{camel}`")

        return cls(
            latitude=float(pick("latitude", "latitude")),
            longitude=float(pick("longitude", "longitude")),
            latitude_delta=float(pick("latitudeDelta", "latitude_delta")),
            longitude_delta=float(pick("longitudeDelta", "longitude_delta")),
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "latitudeDelta": self.latitude_delta,
            "longitudeDelta": self.longitude_delta,
        }
