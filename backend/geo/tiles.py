from __future__ import annotations

import math
from functools import lru_cache

import numpy as np
from pyproj import Transformer


_MAX_MERCATOR_LAT = 85.05112878
# Web Mercator (EPSG:3857) spans one earth circumference in both axes.
_WORLD_SIZE_M = 2.0 * math.pi * 6378137.0

TILE_SIZE_PX = 256


@lru_cache(maxsize=1)
def transformer_4326_to_3857() -> Transformer:
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@lru_cache(maxsize=1)
def transformer_3857_to_4326() -> Transformer:
    return Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)


def lonlat_to_world(lons, lats) -> tuple[np.ndarray, np.ndarray]:
    """
    Project lon/lat (EPSG:4326) to normalized Web Mercator world coordinates.

    x grows east, y grows south; both lie in [0, 1]. Latitudes beyond the Mercator
    limit are clamped first, so poles map onto the world edge instead of infinity.
    """
    lon = np.atleast_1d(np.asarray(lons, dtype=float))
    lat = np.clip(np.atleast_1d(np.asarray(lats, dtype=float)), -_MAX_MERCATOR_LAT, _MAX_MERCATOR_LAT)
    mx, my = transformer_4326_to_3857().transform(lon, lat)
    x = np.clip(np.asarray(mx, dtype=float) / _WORLD_SIZE_M + 0.5, 0.0, 1.0)
    y = np.clip(0.5 - np.asarray(my, dtype=float) / _WORLD_SIZE_M, 0.0, 1.0)
    return x, y


def world_to_lonlat(xs, ys) -> tuple[np.ndarray, np.ndarray]:
    x = np.atleast_1d(np.asarray(xs, dtype=float))
    y = np.atleast_1d(np.asarray(ys, dtype=float))
    lon, lat = transformer_3857_to_4326().transform(
        (x - 0.5) * _WORLD_SIZE_M, (0.5 - y) * _WORLD_SIZE_M
    )
    return np.asarray(lon, dtype=float), np.asarray(lat, dtype=float)


def lonlat_to_pixel(
    lon: float, lat: float, zoom: float, *, tile_size: int = TILE_SIZE_PX
) -> tuple[float, float]:
    """
    Global pixel position of lon/lat at `zoom` for a slippy-map pyramid of `tile_size` tiles.
    """
    x, y = lonlat_to_world([lon], [lat])
    scale = float(tile_size) * (2.0 ** float(zoom))
    return float(x[0]) * scale, float(y[0]) * scale
