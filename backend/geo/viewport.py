from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

from geo.aoi import BBox
from geo.region import Region
from geo.tiles import TILE_SIZE_PX, lonlat_to_pixel, lonlat_to_world, world_to_lonlat

logger = logging.getLogger(__name__)

# At (or above) this longitude span the map shows most of the world; tile-based zoom
# fitting is unstable there, so we pin the zoom to the configured minimum.
WORLD_VIEW_LONGITUDE_DELTA = 40.0

# Upper bound for fit-to-coordinates zoom (a single coordinate has an empty bbox).
MAX_FIT_ZOOM = 20.0


@dataclass(frozen=True)
class Viewport:
    bbox: BBox
    zoom: int


def longitude_span(region: Region) -> float:
    """
    Longitude span of `region` in degrees, within [0, 360].

    Some widgets report a negative delta when the view straddles the antimeridian.
    """
    lon_delta = float(region.longitude_delta)
    if lon_delta < 0:
        lon_delta += 360.0
    return min(360.0, max(0.0, lon_delta))


def region_to_bbox(region: Region) -> BBox:
    """
    Derive a lon/lat bbox by spanning half of each delta around the region center.

    Latitudes are clamped to the poles. Longitudes wrap: a view across the antimeridian
    yields a bbox with west > east.
    """
    span = longitude_span(region)
    half_lat = abs(float(region.latitude_delta)) / 2.0
    min_lat = max(-90.0, region.latitude - half_lat)
    max_lat = min(90.0, region.latitude + half_lat)
    if span >= 360.0:
        return BBox(min_lon=-180.0, min_lat=min_lat, max_lon=180.0, max_lat=max_lat)

    half_lon = span / 2.0
    return BBox(
        min_lon=_wrap_lon(region.longitude - half_lon),
        min_lat=min_lat,
        max_lon=_wrap_lon(region.longitude + half_lon),
        max_lat=max_lat,
    )


def bbox_to_zoom(
    bbox: BBox,
    dimensions: tuple[int, int],
    *,
    tile_size: int = TILE_SIZE_PX,
) -> float:
    """
    Fractional slippy-map zoom at which `bbox` just fits into `dimensions` (width, height px).
    """
    width, height = dimensions
    x0, y0 = lonlat_to_pixel(bbox.min_lon, bbox.min_lat, 0, tile_size=tile_size)
    x1, y1 = lonlat_to_pixel(bbox.max_lon, bbox.max_lat, 0, tile_size=tile_size)

    span_x = x1 - x0
    if bbox.wraps:
        # Across the antimeridian: the view continues onto the next world copy.
        span_x += float(tile_size)

    # avoid division by zero
    span_x = max(abs(span_x), 1e-9)
    span_y = max(abs(y0 - y1), 1e-9)

    zoom_x = math.log2(float(width) / span_x)
    zoom_y = math.log2(float(height) / span_y)
    return float(min(zoom_x, zoom_y))


def compute_viewport(
    region: Region,
    dimensions: tuple[int, int],
    *,
    min_zoom: int,
    max_zoom: int,
    tile_size: int = TILE_SIZE_PX,
) -> Viewport:
    bbox = region_to_bbox(region)
    if longitude_span(region) >= WORLD_VIEW_LONGITUDE_DELTA:
        return Viewport(bbox=bbox, zoom=int(min_zoom))

    z = int(math.floor(bbox_to_zoom(bbox, dimensions, tile_size=tile_size)))
    zoom = max(int(min_zoom), min(int(max_zoom), z))
    logger.debug("viewport bbox=%s zoom=%d (raw %d)", bbox.as_tuple(), zoom, z)
    return Viewport(bbox=bbox, zoom=zoom)


def fit_region(
    coordinates: Iterable[tuple[float, float]],
    dimensions: tuple[int, int],
    *,
    top: float = 0.0,
    right: float = 0.0,
    bottom: float = 0.0,
    left: float = 0.0,
    tile_size: int = TILE_SIZE_PX,
    max_zoom: float = MAX_FIT_ZOOM,
) -> tuple[Region, float]:
    """
    Region (and fractional zoom) a map of `dimensions` shows after fitting `coordinates`.

    Coordinates are (lon, lat) pairs. Padding is in pixels and shrinks the area the
    coordinates must fit into; asymmetric padding shifts the resulting center.
    """
    pts = list(coordinates)
    if not pts:
        raise ValueError("fit_region needs at least one coordinate")

    lons = [float(lon) for lon, _lat in pts]
    lats = [float(lat) for _lon, lat in pts]
    bbox = BBox(min_lon=min(lons), min_lat=min(lats), max_lon=max(lons), max_lat=max(lats))

    width, height = dimensions
    inner = (max(1.0, width - left - right), max(1.0, height - top - bottom))
    zoom = min(float(max_zoom), bbox_to_zoom(bbox, inner, tile_size=tile_size))

    wx, wy = lonlat_to_world([bbox.min_lon, bbox.max_lon], [bbox.max_lat, bbox.min_lat])
    scale = float(tile_size) * (2.0**zoom)
    cx = (wx[0] + wx[1]) / 2.0 + (right - left) / 2.0 / scale
    cy = (wy[0] + wy[1]) / 2.0 + (bottom - top) / 2.0 / scale
    half_w = width / 2.0 / scale
    half_h = height / 2.0 / scale

    lon_c, lat_c = world_to_lonlat([cx], [cy])
    _lons, edge_lats = world_to_lonlat(
        [cx, cx], [max(0.0, cy - half_h), min(1.0, cy + half_h)]
    )
    region = Region(
        latitude=float(lat_c[0]),
        longitude=float(lon_c[0]),
        latitude_delta=float(edge_lats[0] - edge_lats[1]),
        longitude_delta=min(360.0, 2.0 * half_w * 360.0),
    )
    return region, zoom


def _wrap_lon(lon: float) -> float:
    if -180.0 <= lon <= 180.0:
        return lon
    return (lon + 180.0) % 360.0 - 180.0
