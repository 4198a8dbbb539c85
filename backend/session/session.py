from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol, Sequence

from clustering.convert import resolve_accessor, resolve_coordinate, to_points
from clustering.errors import StateError
from clustering.index import ClusterIndex, build_index
from clustering.types import ClusterNode, Coordinate, MarkerNode, VisibleNode
from geo.region import Region
from geo.viewport import compute_viewport
from session.config import ClusterConfig, EdgePadding, build_config
from session.readiness import ReadinessGate

logger = logging.getLogger(__name__)


class MapWidget(Protocol):
    """
    The part of the map widget the session drives imperatively.
    """

    def fit_to_coordinates(
        self, coordinates: list[Coordinate], edge_padding: EdgePadding
    ) -> None: ...


def clusters_changed(previous: Sequence[VisibleNode], new: Sequence[VisibleNode]) -> bool:
    """
    Whether a node-set replacement changes the number of rendered nodes.

    Hosts use this to decide whether a transition animation should play.
    """
    return len(previous) != len(new)


class ClusterSession:
    """
    Orchestrates clustering for one map view.

    Two independent triggers drive it:
    - a new item snapshot (`on_init` / `on_items_changed`) rebuilds the index and re-queries
      the current region; this is the only path that builds an index
    - a settled region (`on_region_settled`) only re-queries

    The session owns exactly one index at a time. A rebuild constructs a complete new
    index before swapping it in, so a query never sees a partially loaded one.
    """

    def __init__(
        self,
        config: ClusterConfig | Mapping[str, Any],
        *,
        widget: MapWidget | None = None,
    ):
        self.config = build_config(config)
        self._accessor = resolve_accessor(self.config.accessor)
        self._widget = widget
        self._index: ClusterIndex | None = None
        self._items: list[Any] = []
        self._region: Region | None = None
        self._nodes: list[VisibleNode] = []
        self._changed = False
        self._gate = ReadinessGate(timeout_s=self.config.readiness_timeout_s)
        self._torn_down = False

    @property
    def region(self) -> Region | None:
        return self._region

    @property
    def items(self) -> list[Any]:
        return list(self._items)

    @property
    def visible_nodes(self) -> list[VisibleNode]:
        return list(self._nodes)

    @property
    def node_count_changed(self) -> bool:
        """Result of `clusters_changed` for the most recent node-set replacement."""
        return self._changed

    @property
    def is_ready(self) -> bool:
        return self._gate.is_ready

    @property
    def readiness(self) -> ReadinessGate:
        return self._gate

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def attach_widget(self, widget: MapWidget | None) -> None:
        self._widget = widget

    def get_clustering_engine(self) -> ClusterIndex | None:
        return self._index

    # Lifecycle

    def on_init(self, items: Iterable[Any], region: Region | Mapping[str, Any] | None = None) -> None:
        if self._is_torn_down("init"):
            return
        if region is not None:
            self._region = _as_region(region)
        self._gate.start()
        self.on_items_changed(items)

    def on_items_changed(self, items: Iterable[Any]) -> None:
        if self._is_torn_down("items change"):
            return
        snapshot = list(items)
        conversion = to_points(snapshot, self._accessor)
        self._items = snapshot

        if not self.config.clustering_enabled:
            self._index = None
            self._replace_nodes(
                [MarkerNode(item=p.item, lon=p.lon, lat=p.lat) for p in conversion.points]
            )
            return

        # Swap in a fully built index; the previous one is dropped.
        self._index = build_index(conversion.points, self.config.index_options())
        logger.info(
            "rebuilt cluster index: items=%d indexed=%d skipped=%d",
            len(snapshot),
            len(conversion.points),
            conversion.skipped,
        )
        if self._region is not None:
            self._replace_nodes(self._query(self._region))

    def on_teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self._gate.close()
        self._index = None
        self._nodes = []
        self._widget = None
        logger.debug("cluster session torn down")

    # Map widget events

    def on_region_settled(self, region: Region | Mapping[str, Any]) -> list[VisibleNode]:
        if self._is_torn_down("region change"):
            return []
        r = _as_region(region)
        if self.config.clustering_enabled:
            self._replace_nodes(self._query(r))
        self._region = r

        nodes = self.visible_nodes
        if self.config.on_region_change_complete is not None:
            self.config.on_region_change_complete(r, nodes)
        return nodes

    def on_layout_complete(self) -> None:
        if self._is_torn_down("layout"):
            return
        if self._gate.mark_layout_done():
            logger.debug("map ready for rendering (layout completed last)")
        if self.config.on_layout is not None:
            self.config.on_layout()

    def on_engine_ready(self) -> None:
        if self._is_torn_down("map ready"):
            return
        if self._gate.mark_engine_ready():
            logger.debug("map ready for rendering (engine ready last)")
        if self.config.on_map_ready is not None:
            self.config.on_map_ready()

    def on_cluster_tapped(self, cluster: ClusterNode | int) -> list[Any]:
        """
        Resolve a cluster tap.

        Delegate mode forwards the cluster id only. Auto-expand mode fits the map to the
        cluster's leaves (up to `cluster_press_max_children`) and forwards the id together
        with those items. Returns the resolved items (empty in delegate mode).

        A `ClusterNode` from an earlier item snapshot raises StateError; a bare id is
        always read against the current index.
        """
        if self._is_torn_down("cluster tap"):
            return []
        if isinstance(cluster, ClusterNode):
            self._require_current(cluster)
            cluster_id = cluster.cluster_id
        else:
            cluster_id = int(cluster)
        callback = self.config.on_cluster_press

        if not self.config.preserve_cluster_press_behavior:
            if callback is not None:
                callback(cluster_id)
            return []

        if self._widget is None:
            raise StateError("cluster auto-expand needs a map widget; call attach_widget() first")
        index = self._require_index()
        items = index.get_leaves(cluster_id, self.config.cluster_press_max_children)
        coordinates = [resolve_coordinate(item, self._accessor) for item in items]
        self._widget.fit_to_coordinates(coordinates, self.config.edge_padding)
        if callback is not None:
            callback(cluster_id, items)
        return items

    # Rendering

    def render(self) -> list[Any]:
        """
        Rendered markers/clusters, or nothing until the map widget is fully ready.
        """
        if self._torn_down or not self._gate.is_ready:
            return []
        out: list[Any] = []
        for node in self._nodes:
            if isinstance(node, ClusterNode):
                out.append(self.config.render_cluster(node))
            else:
                out.append(self.config.render_marker(node.item))
        return out

    def _query(self, region: Region) -> list[VisibleNode]:
        index = self._require_index()
        vp = compute_viewport(
            region,
            self.config.dimensions,
            min_zoom=self.config.min_zoom,
            max_zoom=self.config.max_zoom,
        )
        return index.query(vp.bbox, vp.zoom)

    def _replace_nodes(self, nodes: list[VisibleNode]) -> None:
        previous = self._nodes
        self._nodes = list(nodes)
        self._changed = clusters_changed(previous, self._nodes)
        if (
            self._changed
            and self.config.animate_clusters
            and self.config.on_transition is not None
        ):
            self.config.on_transition(len(previous), len(self._nodes))

    def _require_index(self) -> ClusterIndex:
        if self._index is None:
            raise StateError("no cluster index; on_init() must load items before querying")
        return self._index

    def _require_current(self, cluster: ClusterNode) -> None:
        current = 0 if self._index is None else self._index.generation
        if cluster.generation != current:
            raise StateError(
                f"cluster {cluster.cluster_id} belongs to index generation {cluster.generation}, "
                f"current is {current}; re-query before handling the tap"
            )

    def _is_torn_down(self, event: str) -> bool:
        if self._torn_down:
            logger.debug("ignoring %s after teardown", event)
        return self._torn_down


def _as_region(region: Region | Mapping[str, Any]) -> Region:
    if isinstance(region, Region):
        return region
    return Region.from_dict(region)
