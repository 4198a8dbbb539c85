from __future__ import annotations

import pytest

from clustering.types import ClusterNode, MarkerNode
from geo.aoi import BBox
from geo.region import Region
from mapview.build_map import build_cluster_plot
from mapview.traces import TraceStyle, trace_viewport_bbox
from mapview.widget import HeadlessMapWidget
from session.session import ClusterSession


def _grid(n_lon: int = 5, n_lat: int = 4, step: float = 0.01) -> list[dict]:
    return [
        {
            "id": f"s{i}{j}",
            "name": f"Stop {i}/{j}",
            "location": {"latitude": 50.05 + j * step, "longitude": 14.40 + i * step},
        }
        for i in range(n_lon)
        for j in range(n_lat)
    ]


COUNTRY = Region(latitude=49.8, longitude=15.5, latitude_delta=3.0, longitude_delta=6.0)


def _bound(region: Region = COUNTRY) -> tuple[ClusterSession, HeadlessMapWidget]:
    session = ClusterSession(
        {"render_marker": lambda item: item["id"], "render_cluster": lambda node: node.point_count}
    )
    widget = HeadlessMapWidget(region=region, label=lambda item: item["name"]).bind(session)
    return session, widget


def test_plot_is_empty_until_widget_is_mounted():
    session, widget = _bound()
    session.on_init(_grid(), widget.region)
    assert session.visible_nodes

    before = widget.plot()
    assert [len(t["lon"]) for t in before["data"]] == [0, 0]

    widget.mount()
    after = widget.plot()
    assert sum(len(t["lon"]) for t in after["data"]) == len(session.visible_nodes)


def test_plot_payload_layout():
    session, widget = _bound()
    session.on_init(_grid(), widget.region)
    widget.mount()
    fig = widget.plot()

    assert [t["type"] for t in fig["data"]] == ["scattermapbox", "scattermapbox"]
    mapbox = fig["layout"]["mapbox"]
    assert mapbox["center"] == {"lat": 49.8, "lon": 15.5}
    assert 6.0 < mapbox["zoom"] < 8.0
    assert (fig["layout"]["width"], fig["layout"]["height"]) == (900, 600)


def test_cluster_trace_carries_ids_and_abbreviated_counts():
    nodes = [
        ClusterNode(
            cluster_id=101,
            lon=14.4,
            lat=50.0,
            point_count=2300,
            props={"point_count_abbreviated": "2.3k"},
        ),
        MarkerNode(item={"name": "solo"}, lon=15.0, lat=49.0),
    ]
    fig = build_cluster_plot(
        nodes,
        region=COUNTRY,
        dimensions=(900, 600),
        label=lambda item: item["name"],
        show_bbox=True,
    )
    bbox_trace, markers, clusters = fig["data"]
    assert bbox_trace["mode"] == "lines"
    assert markers["text"] == ["solo"]
    assert clusters["customdata"] == [101]
    assert clusters["text"] == ["2.3k"]


def test_tapping_a_cluster_zooms_in_until_items_split():
    session, widget = _bound()
    session.on_init(_grid(), widget.region)
    widget.mount()

    (cluster,) = session.visible_nodes
    assert isinstance(cluster, ClusterNode)
    assert cluster.point_count == 20

    items = session.on_cluster_tapped(cluster)
    assert len(items) == 20
    (fit,) = widget.fits
    assert fit.edge_padding == session.config.edge_padding
    # The fit is pending until the widget settles.
    assert widget.region == COUNTRY

    assert widget.settle()
    assert not widget.settle()
    assert widget.region == fit.region
    assert session.region == fit.region
    assert fit.zoom > 10

    nodes = session.visible_nodes
    assert len(nodes) > 1
    assert sum(max(1, n.point_count) for n in nodes) == 20

    fig = widget.plot()
    lat, lon = fig["layout"]["mapbox"]["center"]["lat"], fig["layout"]["mapbox"]["center"]["lon"]
    assert lat == pytest.approx(50.065, abs=1e-3)
    assert lon == pytest.approx(14.42, abs=1e-3)


def test_move_to_requeries_through_session():
    session, widget = _bound()
    session.on_init(_grid(), widget.region)
    widget.mount()

    widget.move_to(Region(latitude=50.065, longitude=14.42, latitude_delta=0.06, longitude_delta=0.08))
    assert all(isinstance(n, MarkerNode) for n in session.visible_nodes)
    assert len(session.visible_nodes) == 20


def test_unbound_widget_cannot_mount():
    widget = HeadlessMapWidget(region=COUNTRY)
    with pytest.raises(RuntimeError):
        widget.mount()


def test_trace_style_controls_colors_and_bubble_sizes():
    style = TraceStyle(marker_color="red", cluster_color="blue", cluster_min_size=10, cluster_max_size=20)
    nodes = [
        ClusterNode(cluster_id=1, lon=14.4, lat=50.0, point_count=10),
        ClusterNode(cluster_id=2, lon=14.5, lat=50.0, point_count=1_000_000),
        MarkerNode(item={"name": "solo"}, lon=15.0, lat=49.0),
    ]
    markers, clusters = build_cluster_plot(
        nodes, region=COUNTRY, dimensions=(900, 600), style=style
    )["data"]
    assert markers["marker"]["color"] == "red"
    assert clusters["marker"]["color"] == "blue"
    assert clusters["marker"]["size"] == [16, 20]
    # Falls back to the raw count without an abbreviation.
    assert clusters["text"] == ["10", "1000000"]


def test_wrapping_bbox_outline_stays_closed():
    trace = trace_viewport_bbox(BBox(min_lon=178.5, min_lat=-18.0, max_lon=-178.5, max_lat=-16.0))
    assert trace["lon"] == [178.5, 181.5, 181.5, 178.5, 178.5]
    assert trace["lat"][0] == trace["lat"][-1] == -18.0
