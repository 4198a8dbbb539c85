from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from clustering.types import Coordinate
from geo.region import Region
from geo.viewport import fit_region
from mapview.build_map import build_cluster_plot
from mapview.traces import DEFAULT_STYLE, TraceStyle
from session.config import EdgePadding
from session.session import ClusterSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitRequest:
    coordinates: list[Coordinate]
    edge_padding: EdgePadding
    region: Region
    zoom: float


@dataclass
class HeadlessMapWidget:
    """
    In-process stand-in for a map widget: holds a region, applies fit requests and
    reports lifecycle events to a bound ClusterSession.

    `fit_to_coordinates` is fire-and-forget like a real widget: the new region only
    settles (and reaches the session) on `settle()`.
    """

    region: Region
    dimensions: tuple[int, int] = (900, 600)
    label: Callable[[Any], str] | None = None
    style: TraceStyle = DEFAULT_STYLE
    fits: list[FitRequest] = field(default_factory=list)
    _session: ClusterSession | None = field(default=None, repr=False)
    _pending: Region | None = field(default=None, repr=False)

    def bind(self, session: ClusterSession) -> "HeadlessMapWidget":
        self._session = session
        session.attach_widget(self)
        return self

    def mount(self) -> None:
        """Report both readiness signals, as a real widget does after its first layout."""
        s = self._require_session()
        s.on_layout_complete()
        s.on_engine_ready()

    def move_to(self, region: Region) -> None:
        """A settled user pan/zoom gesture."""
        self.region = region
        self._pending = None
        if self._session is not None:
            self._session.on_region_settled(region)

    def fit_to_coordinates(
        self, coordinates: list[Coordinate], edge_padding: EdgePadding
    ) -> None:
        if not coordinates:
            logger.debug("fit_to_coordinates called without coordinates; ignored")
            return
        region, zoom = fit_region(
            [(c.longitude, c.latitude) for c in coordinates],
            self.dimensions,
            top=edge_padding.top,
            right=edge_padding.right,
            bottom=edge_padding.bottom,
            left=edge_padding.left,
        )
        self.fits.append(
            FitRequest(
                coordinates=list(coordinates),
                edge_padding=edge_padding,
                region=region,
                zoom=zoom,
            )
        )
        self._pending = region

    def settle(self) -> bool:
        """Finish a pending fit animation; returns False if nothing was pending."""
        if self._pending is None:
            return False
        self.move_to(self._pending)
        return True

    def plot(self) -> dict[str, Any]:
        s = self._require_session()
        # Nothing clustering-related is drawn until the widget is ready.
        return build_cluster_plot(
            s.visible_nodes if s.is_ready else [],
            region=self.region,
            dimensions=self.dimensions,
            label=self.label,
            style=self.style,
        )

    def _require_session(self) -> ClusterSession:
        if self._session is None:
            raise RuntimeError("widget is not bound to a ClusterSession")
        return self._session
