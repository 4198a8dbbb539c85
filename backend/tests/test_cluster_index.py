from __future__ import annotations

import time

import pytest

from clustering.errors import StateError
from clustering.index import ClusterIndex, IndexOptions, build_index
from clustering.types import ClusterNode, GeoPoint, MarkerNode
from geo.aoi import BBox


def _grid(lon0: float, lat0: float, n_lon: int, n_lat: int, step: float, tag: str) -> list[GeoPoint]:
    out: list[GeoPoint] = []
    for i in range(n_lon):
        for j in range(n_lat):
            lon = lon0 + i * step
            lat = lat0 + j * step
            item = {"id": f"{tag}-{i}-{j}", "location": {"latitude": lat, "longitude": lon}}
            out.append(GeoPoint(lon=lon, lat=lat, props={"item": item}))
    return out


def _pile(n: int, lon: float = 14.42, lat: float = 50.08) -> list[GeoPoint]:
    # n points within a few meters of each other.
    return [
        GeoPoint(lon=lon + i * 1e-6, lat=lat, props={"item": {"id": i}})
        for i in range(n)
    ]


WORLD = BBox(min_lon=-180.0, min_lat=-90.0, max_lon=180.0, max_lat=90.0)


def test_query_before_load_raises_state_error():
    index = ClusterIndex()
    with pytest.raises(StateError):
        index.query(WORLD, 3)
    with pytest.raises(StateError):
        index.get_leaves(123)


def test_query_returns_only_nodes_inside_bbox():
    index = build_index(_grid(0.0, 40.0, 21, 21, 1.0, "g"))
    bbox = BBox(min_lon=5.5, min_lat=45.5, max_lon=12.5, max_lat=52.5)
    eps = 1e-6
    for zoom in range(0, 18):
        for node in index.query(bbox, zoom):
            assert bbox.min_lon - eps <= node.lon <= bbox.max_lon + eps
            assert bbox.min_lat - eps <= node.lat <= bbox.max_lat + eps


def test_query_is_idempotent():
    index = build_index(_grid(0.0, 40.0, 21, 21, 1.0, "g"))
    bbox = BBox(min_lon=-10.0, min_lat=35.0, max_lon=30.0, max_lat=65.0)
    first = index.query(bbox, 4)
    second = index.query(bbox, 4)
    assert first == second


def test_markers_never_decrease_as_zoom_increases():
    index = build_index(_grid(0.0, 40.0, 21, 21, 0.37, "g"))
    bbox = BBox(min_lon=0.0, min_lat=40.0, max_lon=8.0, max_lat=48.0)
    previous = -1
    for zoom in range(0, 18):
        markers = sum(1 for n in index.query(bbox, zoom) if isinstance(n, MarkerNode))
        assert markers >= previous
        previous = markers
    # Past max_zoom everything is a raw marker.
    assert previous == 21 * 21


def test_cluster_counts_add_up_to_all_points():
    points = _grid(0.0, 40.0, 10, 10, 0.5, "g")
    index = build_index(points)
    for zoom in (0, 3, 6, 9):
        nodes = index.query(WORLD, zoom)
        assert sum(max(1, n.point_count) for n in nodes) == len(points)


def test_pile_forms_single_cluster_with_abbreviated_count():
    index = build_index(_pile(1500))
    nodes = index.query(WORLD, 10)
    assert len(nodes) == 1
    cluster = nodes[0]
    assert isinstance(cluster, ClusterNode)
    assert cluster.point_count == 1500
    assert cluster.props["cluster"] is True
    assert cluster.props["cluster_id"] == cluster.cluster_id
    assert cluster.props["point_count_abbreviated"] == "1.5k"


def test_get_leaves_respects_limit_and_offset():
    index = build_index(_pile(150))
    (cluster,) = index.query(WORLD, 5)
    assert isinstance(cluster, ClusterNode)

    first = index.get_leaves(cluster.cluster_id, 100)
    rest = index.get_leaves(cluster.cluster_id, 100, offset=100)
    everything = index.get_leaves(cluster.cluster_id, None)

    assert len(first) == 100
    assert len(rest) == 50
    assert len(everything) == 150
    assert {i["id"] for i in first} | {i["id"] for i in rest} == set(range(150))
    assert index.get_leaves(cluster.cluster_id, 0) == []


def test_children_and_expansion_zoom():
    # Two piles ~2km apart: one cluster at low zoom that splits further in.
    points = _pile(5, lon=14.40) + _pile(7, lon=14.43)
    index = build_index(points)
    (cluster,) = index.query(WORLD, 3)
    assert isinstance(cluster, ClusterNode)
    assert cluster.point_count == 12

    children = index.get_children(cluster.cluster_id)
    assert sum(max(1, c.point_count) for c in children) == 12

    zoom = index.get_cluster_expansion_zoom(cluster.cluster_id)
    assert 3 < zoom <= 17
    assert len(index.query(WORLD, zoom)) > 1


def test_unknown_cluster_id_raises_key_error():
    index = build_index(_pile(10))
    with pytest.raises(KeyError):
        index.get_children(0)  # a raw point index, not a cluster id
    with pytest.raises(KeyError):
        index.get_leaves(10_000_000)


def test_reload_replaces_previous_snapshot():
    a = _grid(14.0, 50.0, 5, 5, 0.01, "a")
    b = _grid(16.5, 49.1, 5, 5, 0.01, "b")
    index = ClusterIndex().load(a)
    index.load(b)
    assert len(index) == 25

    bbox = BBox(min_lon=12.0, min_lat=48.0, max_lon=19.0, max_lat=51.5)
    for zoom in (5, 9, 17):
        for node in index.query(bbox, zoom):
            if isinstance(node, MarkerNode):
                assert node.item["id"].startswith("b-")
            else:
                leaves = index.get_leaves(node.cluster_id, None)
                assert all(i["id"].startswith("b-") for i in leaves)


def test_bbox_across_antimeridian_returns_both_sides():
    points = [
        GeoPoint(lon=179.5, lat=0.0, props={"item": "east"}),
        GeoPoint(lon=-179.5, lat=0.0, props={"item": "west"}),
        GeoPoint(lon=0.0, lat=0.0, props={"item": "greenwich"}),
    ]
    index = build_index(points, IndexOptions(min_zoom=0, max_zoom=16))
    nodes = index.query(BBox(min_lon=179.0, min_lat=-1.0, max_lon=-179.0, max_lat=1.0), 17)
    assert sorted(n.item for n in nodes) == ["east", "west"]


def test_empty_snapshot_queries_to_nothing():
    index = build_index([])
    assert index.is_loaded
    assert index.query(WORLD, 0) == []


def test_invalid_options_are_rejected():
    with pytest.raises(ValueError):
        IndexOptions(min_zoom=5, max_zoom=2)
    with pytest.raises(ValueError):
        IndexOptions(radius=0)


def test_many_items_at_one_coordinate_build_quickly():
    # Shared addresses and geocoder fallbacks put thousands of items on one spot.
    n = 20_000
    points = [GeoPoint(lon=14.42, lat=50.08, props={"item": i}) for i in range(n)]
    t0 = time.perf_counter()
    index = build_index(points)
    assert time.perf_counter() - t0 < 10.0

    for zoom in (0, 8, 16):
        (cluster,) = index.query(WORLD, zoom)
        assert isinstance(cluster, ClusterNode)
        assert cluster.point_count == n
    assert len(index.query(WORLD, 17)) == n


def test_dense_pile_next_to_spread_points():
    points = _pile(5000) + _grid(14.0, 50.0, 10, 10, 0.05, "g")
    index = build_index(points)
    for zoom in (4, 10, 14):
        nodes = index.query(WORLD, zoom)
        assert sum(max(1, n.point_count) for n in nodes) == len(points)
    # Far enough from the grid that the whole pile is one cluster.
    assert max(n.point_count for n in index.query(WORLD, 10)) == 5000


def test_each_load_gets_a_new_generation():
    index = ClusterIndex()
    assert index.generation == 0
    index.load(_pile(10))
    first = index.generation
    (cluster,) = index.query(WORLD, 5)
    assert cluster.generation == first

    index.load(_pile(10))
    assert index.generation != first
    (again,) = index.query(WORLD, 5)
    assert again.cluster_id == cluster.cluster_id
    assert again.generation == index.generation
