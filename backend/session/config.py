from __future__ import annotations

from typing import Any, Callable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from clustering.convert import resolve_accessor
from clustering.errors import ConfigurationError
from clustering.index import MAX_SUPPORTED_ZOOM, IndexOptions

# Default cluster radius as a share of the viewport width.
RADIUS_WIDTH_RATIO = 0.045


class EdgePadding(BaseModel):
    model_config = ConfigDict(frozen=True)

    top: float = Field(default=10.0, ge=0.0)
    right: float = Field(default=10.0, ge=0.0)
    bottom: float = Field(default=10.0, ge=0.0)
    left: float = Field(default=10.0, ge=0.0)


class ClusterConfig(BaseModel):
    """
    Every host option of the clustered map, defaulted and validated once at construction.

    Field names are snake_case; camelCase aliases (`minZoom`, `clusterPressMaxChildren`,
    ...) are accepted too so YAML presets can use the map widget's option names.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    # Index
    min_zoom: int = Field(default=1, ge=0, le=MAX_SUPPORTED_ZOOM)
    max_zoom: int = Field(default=16, ge=0, le=MAX_SUPPORTED_ZOOM)
    extent: int = Field(default=512, gt=0)
    # None = RADIUS_WIDTH_RATIO of the viewport width.
    radius: float | None = Field(default=None, gt=0.0)
    min_points: int = Field(default=2, ge=2)

    # Viewport in pixels.
    width: int = Field(default=900, gt=0)
    height: int = Field(default=600, gt=0)

    accessor: str | Callable[[Any], Any] = "location"

    # Interaction
    cluster_press_max_children: int = Field(default=100, ge=1)
    preserve_cluster_press_behavior: bool = True
    edge_padding: EdgePadding = Field(default_factory=EdgePadding)

    clustering_enabled: bool = True
    animate_clusters: bool = True

    # Optional fallback: force readiness if the widget never reports it.
    readiness_timeout_s: float | None = Field(default=None, gt=0.0)

    # Rendering strategy (required).
    render_marker: Callable[[Any], Any]
    render_cluster: Callable[[Any], Any]

    # Host callbacks
    on_cluster_press: Callable[..., Any] | None = None
    on_region_change_complete: Callable[..., Any] | None = None
    on_layout: Callable[[], Any] | None = None
    on_map_ready: Callable[[], Any] | None = None
    on_transition: Callable[[int, int], Any] | None = None

    @field_validator("accessor")
    @classmethod
    def _check_accessor(cls, v):
        # Raises ConfigurationError (a ValueError) which pydantic reports as a field error.
        resolve_accessor(v)
        return v

    @model_validator(mode="after")
    def _check_zoom_range(self) -> "ClusterConfig":
        if self.max_zoom < self.min_zoom:
            raise ValueError(f"maxZoom ({self.max_zoom}) is below minZoom ({self.min_zoom})")
        return self

    @property
    def dimensions(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def resolved_radius(self) -> float:
        if self.radius is not None:
            return float(self.radius)
        return float(self.width) * RADIUS_WIDTH_RATIO

    def index_options(self) -> IndexOptions:
        return IndexOptions(
            min_zoom=self.min_zoom,
            max_zoom=self.max_zoom,
            min_points=self.min_points,
            radius=self.resolved_radius,
            extent=self.extent,
        )


def build_config(options: ClusterConfig | Mapping[str, Any] | None = None, **overrides: Any) -> ClusterConfig:
    """
    Validate host options into a ClusterConfig; any problem is a ConfigurationError.
    """
    if isinstance(options, ClusterConfig) and not overrides:
        return options
    if isinstance(options, ClusterConfig):
        # Dump by field name; callables pass through unchanged.
        raw: dict[str, Any] = {name: getattr(options, name) for name in ClusterConfig.model_fields}
    else:
        raw = _by_field_name(options or {})
    raw.update(_by_field_name(overrides))
    try:
        return ClusterConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"invalid cluster map configuration: {e}") from e


def _by_field_name(options: Mapping[str, Any]) -> dict[str, Any]:
    # Map camelCase aliases to field names so later sources override earlier ones.
    names = {(f.alias or name): name for name, f in ClusterConfig.model_fields.items()}
    return {names.get(k, k): v for k, v in options.items()}
