from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import shapely
from shapely.strtree import STRtree

from clustering.errors import StateError
from clustering.types import ClusterNode, GeoPoint, MarkerNode, VisibleNode, abbreviate_count
from geo.aoi import BBox
from geo.tiles import lonlat_to_world, world_to_lonlat

logger = logging.getLogger(__name__)

# Cluster ids pack (origin index, origin zoom); zoom must fit in the low 5 bits.
_ZOOM_BITS = 5
MAX_SUPPORTED_ZOOM = (1 << _ZOOM_BITS) - 2

# Upper bound on candidate pairs a single bulk neighbor query may produce.
_PAIR_BUDGET = 1 << 16

# Every load gets a distinct generation; nodes carry it so stale ids can be told apart.
_generations = itertools.count(1)


@dataclass(frozen=True)
class IndexOptions:
    min_zoom: int = 0
    max_zoom: int = 16
    # Minimum number of points that form a cluster.
    min_points: int = 2
    # Cluster radius in pixels, relative to `extent`.
    radius: float = 40.0
    # Tile extent the radius is measured against.
    extent: int = 512

    def __post_init__(self) -> None:
        if not (0 <= self.min_zoom <= self.max_zoom <= MAX_SUPPORTED_ZOOM):
            raise ValueError(
                f"zoom range must satisfy 0 <= min_zoom <= max_zoom <= {MAX_SUPPORTED_ZOOM}"
            )
        if self.radius <= 0 or self.extent <= 0:
            raise ValueError("radius and extent must be positive")
        if self.min_points < 2:
            raise ValueError("min_points must be >= 2")


class _Level:
    """
    Entries of a single zoom level in normalized Web Mercator coordinates.

    An entry is either a raw point (count == 1, id = index into the loaded points) or a
    cluster (count > 1, id = cluster id). `parents` links entries to the cluster that
    absorbed them one zoom level lower.
    """

    def __init__(
        self,
        xs: Sequence[float],
        ys: Sequence[float],
        ids: list[int],
        counts: list[int],
    ):
        self.xs = np.asarray(xs, dtype=float)
        self.ys = np.asarray(ys, dtype=float)
        self.ids = ids
        self.counts = counts
        self.parents = [-1] * len(ids)
        self.tree = STRtree(shapely.points(self.xs, self.ys)) if ids else None

    def __len__(self) -> int:
        return len(self.ids)

    def range(self, min_x: float, min_y: float, max_x: float, max_y: float) -> list[int]:
        if self.tree is None:
            return []
        idxs = self.tree.query(shapely.box(min_x, min_y, max_x, max_y))
        # STRtree order depends on tree packing; sort for a stable node order.
        return sorted(int(i) for i in idxs)

    def within(self, x: float, y: float, r: float) -> list[int]:
        out: list[int] = []
        for k in self.range(x - r, y - r, x + r, y + r):
            dx = self.xs[k] - x
            dy = self.ys[k] - y
            if dx * dx + dy * dy <= r * r:
                out.append(k)
        return out

    def cell_density(self, r: float) -> list[int]:
        """
        Per entry, how many entries share its grid cell (of size `r`) or one of the 8
        surrounding cells. Every entry within `r` lies in that block, so this bounds
        the size of the entry's `r` neighborhood from above.
        """
        if not self.ids:
            return []
        cx = np.floor(self.xs / r).astype(np.int64)
        cy = np.floor(self.ys / r).astype(np.int64)
        cells, inverse, counts = np.unique(
            np.stack([cx, cy], axis=1), axis=0, return_inverse=True, return_counts=True
        )
        per_cell = dict(zip(map(tuple, cells.tolist()), counts.tolist()))
        block = [
            sum(per_cell.get((a + da, b + db), 0) for da in (-1, 0, 1) for db in (-1, 0, 1))
            for a, b in cells.tolist()
        ]
        return np.asarray(block)[inverse.ravel()].tolist()

    def neighbors(self, idxs: Sequence[int], r: float) -> dict[int, list[int]]:
        """
        For each entry in `idxs`, the (sorted) entries within distance `r`, itself included.
        """
        if not idxs or self.tree is None:
            return {}
        at = np.asarray(idxs, dtype=np.intp)
        xs = self.xs[at]
        ys = self.ys[at]
        src, dst = self.tree.query(shapely.box(xs - r, ys - r, xs + r, ys + r))
        dx = xs[src] - self.xs[dst]
        dy = ys[src] - self.ys[dst]
        keep = dx * dx + dy * dy <= r * r
        src, dst = src[keep], dst[keep]
        order = np.lexsort((dst, src))
        src, dst = src[order], dst[order]
        bounds = np.searchsorted(src, np.arange(len(at) + 1))
        return {int(at[j]): dst[bounds[j] : bounds[j + 1]].tolist() for j in range(len(at))}


@dataclass(frozen=True)
class _IndexState:
    points: list[GeoPoint]
    levels: dict[int, _Level]
    generation: int


class ClusterIndex:
    """
    Hierarchical point clustering index (one greedy clustering pass per zoom level).

    Notes:
    - Input points are EPSG:4326; clustering runs in normalized Web Mercator space.
    - Level `max_zoom + 1` holds the raw points; every lower level clusters the one above
      it, so clusters only ever split as zoom increases.
    - `load` assembles all levels privately and publishes them in a single assignment;
      queries never observe a half-built index.
    """

    def __init__(self, options: IndexOptions | None = None):
        self.options = options or IndexOptions()
        self._state: _IndexState | None = None

    @property
    def is_loaded(self) -> bool:
        return self._state is not None

    def __len__(self) -> int:
        return 0 if self._state is None else len(self._state.points)

    @property
    def generation(self) -> int:
        """Identifies the loaded snapshot; 0 before the first load."""
        return 0 if self._state is None else self._state.generation

    def load(self, points: Sequence[GeoPoint]) -> "ClusterIndex":
        t0 = time.perf_counter()
        opts = self.options
        pts = list(points)
        n = len(pts)

        if n:
            xs, ys = lonlat_to_world([p.lon for p in pts], [p.lat for p in pts])
        else:
            xs, ys = np.empty(0), np.empty(0)

        level = _Level(xs, ys, ids=list(range(n)), counts=[1] * n)
        levels: dict[int, _Level] = {opts.max_zoom + 1: level}
        for z in range(opts.max_zoom, opts.min_zoom - 1, -1):
            level = self._cluster(level, z, n)
            levels[z] = level

        self._state = _IndexState(points=pts, levels=levels, generation=next(_generations))
        logger.debug(
            "cluster index loaded: points=%d zooms=%d..%d top_level=%d took_ms=%.1f",
            n,
            opts.min_zoom,
            opts.max_zoom,
            len(levels[opts.min_zoom]),
            (time.perf_counter() - t0) * 1000.0,
        )
        return self

    def query(self, bbox: BBox, zoom: float) -> list[VisibleNode]:
        """
        Clusters and single-item markers inside `bbox` at `zoom`.

        A bbox with west > east is treated as wrapping across the antimeridian.
        """
        state = self._require_state()

        min_lon = (bbox.min_lon + 180.0) % 360.0 - 180.0
        max_lon = 180.0 if bbox.max_lon == 180.0 else (bbox.max_lon + 180.0) % 360.0 - 180.0
        min_lat = max(-90.0, min(90.0, bbox.min_lat))
        max_lat = max(-90.0, min(90.0, bbox.max_lat))

        if bbox.max_lon - bbox.min_lon >= 360.0:
            min_lon, max_lon = -180.0, 180.0
        elif min_lon > max_lon:
            eastern = self.query(BBox(min_lon, min_lat, 180.0, max_lat), zoom)
            western = self.query(BBox(-180.0, min_lat, max_lon, max_lat), zoom)
            return eastern + western

        level = state.levels[self._limit_zoom(zoom)]
        wx, wy = lonlat_to_world([min_lon, max_lon], [max_lat, min_lat])
        idxs = level.range(float(wx[0]), float(wy[0]), float(wx[1]), float(wy[1]))
        return self._to_nodes(state, level, idxs)

    def get_children(self, cluster_id: int) -> list[VisibleNode]:
        """
        Nodes that merged into `cluster_id` one zoom level below its own.
        """
        state = self._require_state()
        origin_idx, origin_zoom = self._decode(state, cluster_id)
        level = state.levels.get(origin_zoom)
        if level is None or origin_idx >= len(level):
            raise KeyError(f"No cluster with id {cluster_id}")

        r = self.options.radius / (self.options.extent * 2.0 ** (origin_zoom - 1))
        x = float(level.xs[origin_idx])
        y = float(level.ys[origin_idx])
        children = [k for k in level.within(x, y, r) if level.parents[k] == cluster_id]
        if not children:
            raise KeyError(f"No cluster with id {cluster_id}")
        return self._to_nodes(state, level, children)

    def get_leaves(
        self, cluster_id: int, limit: int | None = 10, offset: int = 0
    ) -> list[Any]:
        """
        Up to `limit` items (after skipping `offset`) aggregated by `cluster_id`.

        `limit=None` returns all of them.
        """
        items: list[Any] = []
        if limit is not None and limit <= 0:
            self._require_state()
            return items
        self._append_leaves(items, cluster_id, limit, offset, 0)
        return items

    def get_cluster_expansion_zoom(self, cluster_id: int) -> int:
        """
        Lowest zoom at which `cluster_id` breaks up into more than one node.
        """
        state = self._require_state()
        _idx, zoom = self._decode(state, cluster_id)
        expansion = zoom - 1
        while expansion <= self.options.max_zoom:
            children = self.get_children(cluster_id)
            expansion += 1
            if len(children) != 1 or not isinstance(children[0], ClusterNode):
                break
            cluster_id = children[0].cluster_id
        return expansion

    def _cluster(self, level: _Level, zoom: int, n_points: int) -> _Level:
        opts = self.options
        r = opts.radius / (opts.extent * 2.0**zoom)
        density = level.cell_density(r)
        done = [False] * len(level)
        candidates: dict[int, list[int]] = {}

        xs: list[float] = []
        ys: list[float] = []
        ids: list[int] = []
        counts: list[int] = []

        for i in range(len(level)):
            if done[i]:
                continue
            if i not in candidates:
                # Neighborhoods are fetched lazily, only for entries still open.
                candidates = level.neighbors(_next_batch(i, done, density), r)
            done[i] = True

            x = float(level.xs[i])
            y = float(level.ys[i])
            origin_count = level.counts[i]
            open_neighbors = [k for k in candidates.pop(i) if not done[k]]
            total = origin_count + sum(level.counts[k] for k in open_neighbors)

            if total > origin_count and total >= opts.min_points:
                wx = x * origin_count
                wy = y * origin_count
                cluster_id = (i << _ZOOM_BITS) + (zoom + 1) + n_points
                for k in open_neighbors:
                    done[k] = True
                    c = level.counts[k]
                    wx += float(level.xs[k]) * c
                    wy += float(level.ys[k]) * c
                    level.parents[k] = cluster_id
                level.parents[i] = cluster_id
                xs.append(wx / total)
                ys.append(wy / total)
                ids.append(cluster_id)
                counts.append(total)
            else:
                xs.append(x)
                ys.append(y)
                ids.append(level.ids[i])
                counts.append(origin_count)
                # Too few to cluster: neighbors stay as they are at this zoom.
                if total > 1:
                    for k in open_neighbors:
                        done[k] = True
                        xs.append(float(level.xs[k]))
                        ys.append(float(level.ys[k]))
                        ids.append(level.ids[k])
                        counts.append(level.counts[k])

        return _Level(xs, ys, ids=ids, counts=counts)

    def _append_leaves(
        self,
        items: list[Any],
        cluster_id: int,
        limit: int | None,
        offset: int,
        skipped: int,
    ) -> int:
        for child in self.get_children(cluster_id):
            if isinstance(child, ClusterNode):
                if skipped + child.point_count <= offset:
                    skipped += child.point_count
                else:
                    skipped = self._append_leaves(
                        items, child.cluster_id, limit, offset, skipped
                    )
            elif skipped < offset:
                skipped += 1
            else:
                items.append(child.item)
            if limit is not None and len(items) >= limit:
                break
        return skipped

    def _to_nodes(
        self, state: _IndexState, level: _Level, idxs: list[int]
    ) -> list[VisibleNode]:
        cluster_idxs = [k for k in idxs if level.counts[k] > 1]
        coords: dict[int, tuple[float, float]] = {}
        if cluster_idxs:
            lons, lats = world_to_lonlat(level.xs[cluster_idxs], level.ys[cluster_idxs])
            coords = {
                k: (float(lon), float(lat))
                for k, lon, lat in zip(cluster_idxs, lons, lats)
            }

        out: list[VisibleNode] = []
        for k in idxs:
            if level.counts[k] > 1:
                lon, lat = coords[k]
                cid = level.ids[k]
                count = level.counts[k]
                out.append(
                    ClusterNode(
                        cluster_id=cid,
                        lon=lon,
                        lat=lat,
                        point_count=count,
                        generation=state.generation,
                        props={
                            "cluster": True,
                            "cluster_id": cid,
                            "point_count": count,
                            "point_count_abbreviated": abbreviate_count(count),
                        },
                    )
                )
            else:
                p = state.points[level.ids[k]]
                out.append(MarkerNode(item=p.item, lon=p.lon, lat=p.lat))
        return out

    def _limit_zoom(self, zoom: float) -> int:
        return max(self.options.min_zoom, min(int(zoom // 1), self.options.max_zoom + 1))

    def _decode(self, state: _IndexState, cluster_id: int) -> tuple[int, int]:
        offset = int(cluster_id) - len(state.points)
        if offset < 0:
            raise KeyError(f"No cluster with id {cluster_id}")
        return offset >> _ZOOM_BITS, offset % (1 << _ZOOM_BITS)

    def _require_state(self) -> _IndexState:
        if self._state is None:
            raise StateError("cluster index used before load(); call load() first")
        return self._state


def build_index(points: Sequence[GeoPoint], options: IndexOptions | None = None) -> ClusterIndex:
    return ClusterIndex(options).load(points)


def _next_batch(start: int, done: list[bool], density: list[int]) -> list[int]:
    """
    Open entries from `start` on whose neighborhoods fit into one bulk tree query.

    Always holds at least `start`, so a single dense pile is fetched on its own.
    """
    batch: list[int] = []
    pairs = 0
    for j in range(start, len(done)):
        if done[j]:
            continue
        if batch and pairs + density[j] > _PAIR_BUDGET:
            break
        batch.append(j)
        pairs += density[j]
    return batch
