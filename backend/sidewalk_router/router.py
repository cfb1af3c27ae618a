from __future__ import annotations

import math
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .assembler import RouteResult, assemble_route
from .cost_model import DEFAULT_TIERS, RoutingConstraint, validate_tier_order
from .errors import InvalidCoordinate, NoNetworkNearby, PathNotFound, RoutingError, normalize_reason_code
from .geo import LatLon
from .logging_utils import log_event
from .path_search import find_path
from .segments import GraphStore, SegmentGraph
from .settings import settings
from .spatial_index import SnapResult


@dataclass(frozen=True)
class RouteOptions:
    tiers: tuple[RoutingConstraint, ...] | None = None
    penalty_weight: float | None = None
    max_snap_distance_m: float | None = None


@dataclass(frozen=True)
class TierAttempt:
    tier: str
    success: bool
    cost: float | None = None
    explored_states: int = 0
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier,
            "success": self.success,
            "cost": self.cost,
            "explored_states": int(self.explored_states),
            "details": self.details,
        }


@dataclass(frozen=True)
class RouteFailure:
    reason: str
    message: str
    attempts: tuple[TierAttempt, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)
    success: bool = False

    @property
    def attempted_tiers(self) -> tuple[str, ...]:
        return tuple(attempt.tier for attempt in self.attempts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "reason": self.reason,
            "message": self.message,
            "attempted_tiers": list(self.attempted_tiers),
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "details": dict(self.details),
        }


def normalize_coordinate(point: object, *, name: str = "coordinate") -> LatLon:
    """Accept {lat, lon}, {lat, lng} or a (lat, lon) pair; raise InvalidCoordinate otherwise."""
    if isinstance(point, Mapping):
        lat_raw = point.get("lat")
        lon_raw = point.get("lon", point.get("lng"))
    elif isinstance(point, Sequence) and not isinstance(point, (str, bytes)) and len(point) == 2:
        lat_raw, lon_raw = point[0], point[1]
    else:
        raise InvalidCoordinate(message=f"{name} must be a {{lat, lon}} mapping or (lat, lon) pair")
    values: list[float] = []
    for axis, raw in (("lat", lat_raw), ("lon", lon_raw)):
        if isinstance(raw, bool) or not isinstance(raw, (int, float, Decimal)):
            raise InvalidCoordinate(message=f"{name}.{axis} must be a number", details={"field": f"{name}.{axis}"})
        value = float(raw)
        if not math.isfinite(value):
            raise InvalidCoordinate(message=f"{name}.{axis} must be finite", details={"field": f"{name}.{axis}"})
        values.append(value)
    lat, lon = values
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise InvalidCoordinate(message=f"{name} is out of range", details={"lat": lat, "lon": lon})
    return lat, lon


class AccessibleRouter:
    """Tiered accessibility-aware walking router over a shared graph snapshot."""

    def __init__(
        self,
        store: GraphStore,
        *,
        tiers: Sequence[RoutingConstraint] = DEFAULT_TIERS,
        penalty_weight: float | None = None,
        max_snap_distance_m: float | None = None,
        strict_min_score: float | None = None,
    ) -> None:
        self.store = store
        self.strict_min_score = float(
            settings.strict_min_score if strict_min_score is None else strict_min_score
        )
        self.tiers = validate_tier_order(tiers, strict_min_score=self.strict_min_score)
        self.penalty_weight = float(
            settings.accessibility_penalty_weight if penalty_weight is None else penalty_weight
        )
        self.max_snap_distance_m = float(
            settings.snap_max_distance_m if max_snap_distance_m is None else max_snap_distance_m
        )

    def route(
        self,
        start: object,
        end: object,
        options: RouteOptions | None = None,
    ) -> RouteResult | RouteFailure:
        started = time.perf_counter()
        try:
            result = self._route(start, end, options)
        except RoutingError as exc:
            result = RouteFailure(
                reason=normalize_reason_code(exc.reason_code),
                message=str(exc),
                details=dict(exc.details or {}),
            )
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
        if isinstance(result, RouteFailure):
            log_event(
                "route_failed",
                reason=result.reason,
                attempted_tiers=list(result.attempted_tiers),
                elapsed_ms=elapsed_ms,
            )
        else:
            log_event(
                "route_completed",
                tier=result.tier,
                segment_count=result.metrics.segment_count,
                total_distance_m=round(result.metrics.total_distance_m, 3),
                elapsed_ms=elapsed_ms,
            )
        return result

    def _route(self, start: object, end: object, options: RouteOptions | None) -> RouteResult | RouteFailure:
        opts = options or RouteOptions()
        tiers = (
            self.tiers
            if opts.tiers is None
            else validate_tier_order(opts.tiers, strict_min_score=self.strict_min_score)
        )
        penalty_weight = self.penalty_weight if opts.penalty_weight is None else float(opts.penalty_weight)
        max_snap_m = self.max_snap_distance_m if opts.max_snap_distance_m is None else float(opts.max_snap_distance_m)

        start_lat, start_lon = normalize_coordinate(start, name="start")
        end_lat, end_lon = normalize_coordinate(end, name="end")
        # One snapshot per call; a concurrent reload never changes it mid-search.
        graph = self.store.current()
        start_snap = self._snap(graph, start_lat, start_lon, max_snap_m=max_snap_m, which="start")
        end_snap = self._snap(graph, end_lat, end_lon, max_snap_m=max_snap_m, which="end")

        attempts: list[TierAttempt] = []
        last_details: dict[str, Any] = {}
        for tier in tiers:
            try:
                path = find_path(
                    graph,
                    start_snap,
                    end_snap,
                    tier,
                    penalty_weight=penalty_weight,
                    strict_min_score=self.strict_min_score,
                )
            except PathNotFound as exc:
                last_details = dict(exc.details or {})
                attempts.append(
                    TierAttempt(
                        tier=tier.label,
                        success=False,
                        explored_states=int(last_details.get("explored_states", 0)),
                        details=last_details,
                    )
                )
                log_event(
                    "route_tier_failed",
                    tier=tier.label,
                    disconnected_components=bool(last_details.get("disconnected_components")),
                    explored_states=int(last_details.get("explored_states", 0)),
                )
                continue
            attempts.append(
                TierAttempt(tier=tier.label, success=True, cost=float(path.cost), explored_states=path.explored_states)
            )
            return assemble_route(
                graph,
                path,
                start=start_snap,
                end=end_snap,
                tier=tier.label,
                attempted_tiers=tuple(attempt.tier for attempt in attempts),
            )
        return RouteFailure(
            reason="no_accessible_route",
            message="No accessible path found between the requested points",
            attempts=tuple(attempts),
            details={
                **last_details,
                "start": start_snap.to_dict(),
                "end": end_snap.to_dict(),
                "graph_version": graph.version,
            },
        )

    def _snap(self, graph: SegmentGraph, lat: float, lon: float, *, max_snap_m: float, which: str) -> SnapResult:
        try:
            return graph.spatial_index.snap(lat, lon, max_distance_m=max_snap_m)
        except NoNetworkNearby as exc:
            raise NoNetworkNearby(
                message=f"No sidewalk segment within {max_snap_m:.0f} m of the {which} coordinate.",
                details={"endpoint": which, **(exc.details or {})},
            ) from exc
