from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from .cost_model import RoutingConstraint
from .router import RouteOptions

Mobility = Literal["wheelchair", "walking"]


class LatLng(BaseModel):
    # Left untyped: the router rejects missing, non-numeric and out-of-range values as invalid_coordinate.
    lat: Any = None
    lon: Any = None
    label: str | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_lng_alias(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        if "lon" not in data and "lng" in data:
            data["lon"] = data["lng"]
        return data

    def as_point(self) -> dict[str, Any]:
        return {"lat": self.lat, "lon": self.lon}


class TierModel(BaseModel):
    label: str = Field(..., min_length=1, max_length=32)
    allow_limited_segments: bool = False
    limited_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    allow_non_accessible: bool = False

    def to_constraint(self) -> RoutingConstraint:
        return RoutingConstraint(
            label=self.label,
            allow_limited_segments=self.allow_limited_segments,
            limited_threshold=self.limited_threshold,
            allow_non_accessible=self.allow_non_accessible,
        )


class WalkingRouteOptions(BaseModel):
    tiers: Annotated[list[TierModel], Field(min_length=1, max_length=8)] | None = None
    penalty_weight: float | None = Field(default=None, ge=0.0, le=100.0)
    max_snap_distance_m: float | None = Field(default=None, gt=0.0, le=5_000.0)
    mobility: Mobility = "wheelchair"
    allow_external_fallback: bool = True

    def to_route_options(self) -> RouteOptions:
        return RouteOptions(
            tiers=None if self.tiers is None else tuple(tier.to_constraint() for tier in self.tiers),
            penalty_weight=self.penalty_weight,
            max_snap_distance_m=self.max_snap_distance_m,
        )


class WalkingRouteRequest(BaseModel):
    start: LatLng
    end: LatLng
    options: WalkingRouteOptions = Field(default_factory=WalkingRouteOptions)


class WalkingRouteResponse(BaseModel):
    route: dict[str, Any]
    routing_mode: str
    cached: bool = False


class GraphStatusResponse(BaseModel):
    loaded: bool
    generation: int
    version: str | None = None
    source: str | None = None
    segment_count: int = 0
    node_count: int = 0
    component_count: int = 0
    largest_component_nodes: int = 0
    duplicate_segments: int = 0
    grid_buckets: int = 0
