from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0

LatLon = tuple[float, float]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def polyline_length_m(points: Sequence[LatLon]) -> float:
    total = 0.0
    for idx in range(1, len(points)):
        lat1, lon1 = points[idx - 1]
        lat2, lon2 = points[idx]
        total += haversine_m(lat1, lon1, lat2, lon2)
    return total


def meters_per_degree(lat: float) -> tuple[float, float]:
    """Local (north, east) meters per degree at ``lat``; good to well under 1% inside a city."""
    m_per_deg_lat = math.pi * EARTH_RADIUS_M / 180.0
    m_per_deg_lon = m_per_deg_lat * max(1e-9, math.cos(math.radians(lat)))
    return m_per_deg_lat, m_per_deg_lon


@dataclass(frozen=True)
class PolylineProjection:
    point: LatLon
    distance_m: float
    along_m: float
    vertex_index: int
    fraction: float


def project_onto_polyline(lat: float, lon: float, points: Sequence[LatLon]) -> PolylineProjection:
    """Closest point on ``points`` to (lat, lon).

    ``along_m`` is the haversine distance from the first vertex to the
    projected point, measured along the polyline. ``vertex_index`` is the index
    of the vertex opening the piece the point landed on.
    """
    if len(points) < 2:
        raise ValueError("polyline needs at least two vertices")
    m_lat, m_lon = meters_per_degree(lat)
    candidates: list[PolylineProjection] = []
    walked_m = 0.0
    for idx in range(1, len(points)):
        a_lat, a_lon = points[idx - 1]
        b_lat, b_lon = points[idx]
        ax = (a_lon - lon) * m_lon
        ay = (a_lat - lat) * m_lat
        bx = (b_lon - lon) * m_lon
        by = (b_lat - lat) * m_lat
        dx = bx - ax
        dy = by - ay
        seg_sq = dx * dx + dy * dy
        t = 0.0 if seg_sq <= 0.0 else max(0.0, min(1.0, -(ax * dx + ay * dy) / seg_sq))
        p_lat = a_lat + (b_lat - a_lat) * t
        p_lon = a_lon + (b_lon - a_lon) * t
        dist = haversine_m(lat, lon, p_lat, p_lon)
        piece_m = haversine_m(a_lat, a_lon, b_lat, b_lon)
        candidates.append(
            PolylineProjection(
                point=(p_lat, p_lon),
                distance_m=dist,
                along_m=walked_m + piece_m * t,
                vertex_index=idx - 1,
                fraction=t,
            )
        )
        walked_m += piece_m
    # min keeps the earliest piece on ties.
    return min(candidates, key=lambda projection: projection.distance_m)


def slice_polyline(points: Sequence[LatLon], start_m: float, end_m: float) -> list[LatLon]:
    """Sub-polyline between two along-distances; reversed when ``start_m > end_m``."""
    if start_m > end_m:
        return list(reversed(slice_polyline(points, end_m, start_m)))
    total = polyline_length_m(points)
    start_m = max(0.0, min(total, start_m))
    end_m = max(0.0, min(total, end_m))
    out: list[LatLon] = [_point_at(points, start_m)]
    walked_m = 0.0
    for idx in range(1, len(points)):
        walked_m += haversine_m(points[idx - 1][0], points[idx - 1][1], points[idx][0], points[idx][1])
        if start_m < walked_m < end_m:
            out.append((float(points[idx][0]), float(points[idx][1])))
    out.append(_point_at(points, end_m))
    return out


def _point_at(points: Sequence[LatLon], along_m: float) -> LatLon:
    walked_m = 0.0
    for idx in range(1, len(points)):
        a_lat, a_lon = points[idx - 1]
        b_lat, b_lon = points[idx]
        piece_m = haversine_m(a_lat, a_lon, b_lat, b_lon)
        if walked_m + piece_m >= along_m:
            t = 0.0 if piece_m <= 0.0 else (along_m - walked_m) / piece_m
            t = max(0.0, min(1.0, t))
            return (a_lat + (b_lat - a_lat) * t, a_lon + (b_lon - a_lon) * t)
        walked_m += piece_m
    last = points[-1]
    return (float(last[0]), float(last[1]))
