from __future__ import annotations

from typing import Any, Callable, Sequence

from clustering.types import VisibleNode
from geo.region import Region
from geo.viewport import bbox_to_zoom, region_to_bbox
from mapview.traces import (
    DEFAULT_STYLE,
    TraceStyle,
    trace_clusters,
    trace_markers,
    trace_viewport_bbox,
)


def build_cluster_plot(
    nodes: Sequence[VisibleNode],
    *,
    region: Region,
    dimensions: tuple[int, int],
    title: str = "Items",
    label: Callable[[Any], str] | None = None,
    style: TraceStyle = DEFAULT_STYLE,
    show_bbox: bool = False,
) -> dict[str, Any]:
    """
    Plotly `scattermapbox` payload for a visible node set.

    Clusters and single-item markers become two traces; the map view is centered on the
    region with the (fractional) zoom that fits its bbox into `dimensions`.
    """
    bbox = region_to_bbox(region)
    traces: list[dict[str, Any]] = []
    if show_bbox:
        traces.append(trace_viewport_bbox(bbox, style))
    # Markers below clusters.
    traces.append(trace_markers(nodes, title=title, label=label, style=style))
    traces.append(trace_clusters(nodes, title=title, style=style))

    zoom = max(0.0, bbox_to_zoom(bbox, dimensions))
    return {
        "data": traces,
        "layout": {
            "mapbox": {
                "center": {"lat": region.latitude, "lon": region.longitude},
                "zoom": zoom,
                "style": "carto-positron",
            },
            "margin": {"l": 0, "r": 0, "t": 0, "b": 0},
            "width": int(dimensions[0]),
            "height": int(dimensions[1]),
        },
    }
