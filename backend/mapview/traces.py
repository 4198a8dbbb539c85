from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from clustering.types import ClusterNode, MarkerNode, VisibleNode
from geo.aoi import BBox


@dataclass(frozen=True)
class TraceStyle:
    """
    Colors and sizes of the clustered map traces.

    Cluster bubbles grow with the log of their count, from `cluster_min_size` up to
    `cluster_max_size`.
    """

    marker_color: str = "rgba(25, 118, 210, 0.8)"
    marker_size: int = 7
    cluster_color: str = "rgba(25, 118, 210, 0.45)"
    cluster_min_size: int = 14
    cluster_max_size: int = 40
    bbox_color: str = "rgba(55, 71, 79, 0.7)"

    def cluster_size(self, point_count: int) -> int:
        grown = self.cluster_min_size + 6.0 * math.log10(max(1, point_count))
        return int(min(self.cluster_max_size, round(grown)))


DEFAULT_STYLE = TraceStyle()


def trace_viewport_bbox(bbox: BBox, style: TraceStyle = DEFAULT_STYLE) -> dict[str, Any]:
    # A wrapping bbox is drawn on the eastern world copy so the outline stays closed.
    west = bbox.min_lon
    east = bbox.max_lon + 360.0 if bbox.wraps else bbox.max_lon
    return {
        "type": "scattermapbox",
        "name": "Viewport",
        "lon": [west, east, east, west, west],
        "lat": [bbox.min_lat, bbox.min_lat, bbox.max_lat, bbox.max_lat, bbox.min_lat],
        "mode": "lines",
        "line": {"color": style.bbox_color, "width": 1},
        "hoverinfo": "skip",
        "showlegend": False,
    }


def trace_markers(
    nodes: Sequence[VisibleNode],
    *,
    title: str = "Items",
    label: Callable[[Any], str] | None = None,
    style: TraceStyle = DEFAULT_STYLE,
) -> dict[str, Any]:
    markers = [n for n in nodes if isinstance(n, MarkerNode)]
    return {
        "type": "scattermapbox",
        "name": title,
        "lon": [m.lon for m in markers],
        "lat": [m.lat for m in markers],
        "mode": "markers",
        "text": [label(m.item) if label is not None else "" for m in markers],
        "marker": {"size": style.marker_size, "color": style.marker_color},
        "hovertemplate": "%{text}<extra></extra>",
    }


def trace_clusters(
    nodes: Sequence[VisibleNode],
    *,
    title: str = "Items",
    style: TraceStyle = DEFAULT_STYLE,
) -> dict[str, Any]:
    """
    Cluster bubbles labelled with their abbreviated count.

    `customdata` carries the cluster ids so a click handler can hand them back to the
    session as taps.
    """
    clusters = [n for n in nodes if isinstance(n, ClusterNode)]
    return {
        "type": "scattermapbox",
        "name": f"{title} (clusters)",
        "lon": [c.lon for c in clusters],
        "lat": [c.lat for c in clusters],
        "mode": "markers+text",
        "text": [str(c.props.get("point_count_abbreviated") or c.point_count) for c in clusters],
        "customdata": [c.cluster_id for c in clusters],
        "textposition": "middle center",
        "marker": {
            "size": [style.cluster_size(c.point_count) for c in clusters],
            "color": style.cluster_color,
        },
        "hovertemplate": "%{text} items<extra></extra>",
    }
