from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .geo import LatLon, polyline_length_m, slice_polyline
from .path_search import PathResult, Traversal
from .segments import SegmentGraph
from .spatial_index import SnapResult


@dataclass(frozen=True)
class RouteSegment:
    segment_id: str
    geometry: tuple[LatLon, ...]
    length_m: float
    segment_length_m: float
    accessible: bool
    score: float
    confidence: str
    issues: tuple[str, ...]
    tags: dict[str, str] = field(hash=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.segment_id,
            "accessible": self.accessible,
            "score": float(self.score),
            "confidence": self.confidence,
            "length_m": float(self.length_m),
            "segment_length_m": float(self.segment_length_m),
            "issues": list(self.issues),
            "tags": dict(self.tags),
            "path": [[float(lat), float(lon)] for lat, lon in self.geometry],
            "geometry": {
                "type": "LineString",
                "coordinates": [[float(lon), float(lat)] for lat, lon in self.geometry],
            },
        }


@dataclass(frozen=True)
class RouteMetrics:
    total_distance_m: float
    segment_distance_m: float
    average_accessibility_score: float
    accessible_segment_ratio: float
    segment_count: int
    accessible_segment_count: int
    route_cost: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_distance_m": float(self.total_distance_m),
            "segment_distance_m": float(self.segment_distance_m),
            "average_accessibility_score": float(self.average_accessibility_score),
            "accessible_segment_ratio": float(self.accessible_segment_ratio),
            "segment_count": int(self.segment_count),
            "accessible_segment_count": int(self.accessible_segment_count),
            "route_cost": float(self.route_cost),
        }


@dataclass(frozen=True)
class RouteResult:
    tier: str
    segments: tuple[RouteSegment, ...]
    polyline: tuple[LatLon, ...]
    start: SnapResult
    end: SnapResult
    metrics: RouteMetrics
    attempted_tiers: tuple[str, ...]
    graph_version: str
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "tier": self.tier,
            "attempted_tiers": list(self.attempted_tiers),
            "graph_version": self.graph_version,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "segments": [segment.to_dict() for segment in self.segments],
            "polyline": [[float(lat), float(lon)] for lat, lon in self.polyline],
            "geometry": {
                "type": "LineString",
                "coordinates": [[float(lon), float(lat)] for lat, lon in self.polyline],
            },
            "metrics": self.metrics.to_dict(),
        }


def _traversal_geometry(graph: SegmentGraph, traversal: Traversal) -> tuple[LatLon, ...]:
    points = graph.segment(traversal.segment_id).geometry
    geometric_m = polyline_length_m(points)
    if traversal.start_fraction == 0.0 and traversal.end_fraction == 1.0:
        return tuple(points)
    if traversal.start_fraction == 1.0 and traversal.end_fraction == 0.0:
        return tuple(reversed(points))
    return tuple(
        slice_polyline(
            points,
            traversal.start_fraction * geometric_m,
            traversal.end_fraction * geometric_m,
        )
    )


def _concat(pieces: list[tuple[LatLon, ...]]) -> tuple[LatLon, ...]:
    out: list[LatLon] = []
    for piece in pieces:
        for point in piece:
            if out and out[-1] == point:
                continue
            out.append(point)
    return tuple(out)


def assemble_route(
    graph: SegmentGraph,
    path: PathResult,
    *,
    start: SnapResult,
    end: SnapResult,
    tier: str,
    attempted_tiers: tuple[str, ...],
) -> RouteResult:
    # Zero-length pieces appear when a snap lands on a segment endpoint.
    traversals = [t for t in path.traversals if t.start_fraction != t.end_fraction] or list(path.traversals[:1])
    route_segments: list[RouteSegment] = []
    for traversal in traversals:
        segment = graph.segment(traversal.segment_id)
        route_segments.append(
            RouteSegment(
                segment_id=segment.id,
                geometry=_traversal_geometry(graph, traversal),
                length_m=float(traversal.length_m),
                segment_length_m=float(segment.length_m),
                accessible=bool(segment.attributes.wheelchair_passable),
                score=float(traversal.score),
                confidence=segment.attributes.confidence,
                issues=tuple(sorted(segment.issues)),
                tags=dict(segment.tags),
            )
        )
    count = len(route_segments)
    segment_distance_m = sum(segment.length_m for segment in route_segments)
    accessible_count = sum(1 for segment in route_segments if segment.accessible)
    metrics = RouteMetrics(
        total_distance_m=segment_distance_m + float(start.offset_m) + float(end.offset_m),
        segment_distance_m=segment_distance_m,
        average_accessibility_score=(
            sum(segment.score for segment in route_segments) / count if count else 0.0
        ),
        accessible_segment_ratio=(accessible_count / count) if count else 0.0,
        segment_count=count,
        accessible_segment_count=accessible_count,
        route_cost=float(path.cost),
    )
    return RouteResult(
        tier=tier,
        segments=tuple(route_segments),
        polyline=_concat([segment.geometry for segment in route_segments]),
        start=start,
        end=end,
        metrics=metrics,
        attempted_tiers=attempted_tiers,
        graph_version=graph.version,
    )
