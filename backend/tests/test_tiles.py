from __future__ import annotations

import pytest

from geo.tiles import lonlat_to_pixel, lonlat_to_world, world_to_lonlat


def test_world_coordinates_are_normalized_and_roundtrip():
    # Pick a stable Prague-ish coordinate.
    lon = 14.4378
    lat = 50.0755

    x, y = lonlat_to_world([lon], [lat])
    assert 0.5 < x[0] < 1.0  # east of Greenwich
    assert 0.0 < y[0] < 0.5  # north of the equator

    lons, lats = world_to_lonlat(x, y)
    assert lons[0] == pytest.approx(lon, abs=1e-7)
    assert lats[0] == pytest.approx(lat, abs=1e-7)


def test_poles_are_clamped_onto_world_edge():
    x, y = lonlat_to_world([-180.0, 180.0], [90.0, -90.0])
    assert x[0] == pytest.approx(0.0, abs=1e-9)
    assert x[1] == pytest.approx(1.0)
    assert y[0] == pytest.approx(0.0, abs=1e-7)
    assert y[1] == pytest.approx(1.0, abs=1e-7)


def test_pixel_position_doubles_per_zoom_level():
    x0, y0 = lonlat_to_pixel(14.4378, 50.0755, 10)
    x1, y1 = lonlat_to_pixel(14.4378, 50.0755, 11)
    assert x1 == pytest.approx(2 * x0)
    assert y1 == pytest.approx(2 * y0)

    # Null island sits at the center of the single zoom-0 tile.
    cx, cy = lonlat_to_pixel(0.0, 0.0, 0)
    assert cx == pytest.approx(128.0)
    assert cy == pytest.approx(128.0)
