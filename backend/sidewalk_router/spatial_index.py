from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .errors import NoNetworkNearby
from .geo import LatLon, meters_per_degree, project_onto_polyline


def segment_sort_key(segment_id: str) -> tuple[int, int, str]:
    """Numeric ids order numerically, everything else lexically after them."""
    text = str(segment_id)
    if text.isdigit():
        return (0, int(text), text)
    return (1, 0, text)


def _grid_key(lat: float, lon: float, bucket_deg: float) -> tuple[int, int]:
    return (int(math.floor(lat / bucket_deg)), int(math.floor(lon / bucket_deg)))


def _ring_offsets(radius: int) -> tuple[tuple[int, int], ...]:
    if radius <= 0:
        return ((0, 0),)
    offsets: list[tuple[int, int]] = []
    for dx in range(-radius, radius + 1):
        offsets.append((dx, -radius))
        offsets.append((dx, radius))
    for dy in range(-radius + 1, radius):
        offsets.append((-radius, dy))
        offsets.append((radius, dy))
    return tuple(offsets)


@dataclass(frozen=True)
class SnapResult:
    segment_id: str
    point: LatLon
    offset_m: float
    along_m: float

    def to_dict(self) -> dict[str, object]:
        return {
            "segment_id": self.segment_id,
            "offset_m": float(self.offset_m),
            "along_m": float(self.along_m),
            "point": [float(self.point[0]), float(self.point[1])],
        }


class SpatialIndex:
    """Uniform lat/lon grid over segment bounding boxes for nearest-segment snapping."""

    def __init__(self, geometries: Mapping[str, Sequence[LatLon]], *, bucket_deg: float) -> None:
        self.bucket_deg = max(1e-6, float(bucket_deg))
        self._geometries = geometries
        grid_mut: dict[tuple[int, int], list[str]] = {}
        for segment_id, points in geometries.items():
            lats = [p[0] for p in points]
            lons = [p[1] for p in points]
            lo = _grid_key(min(lats), min(lons), self.bucket_deg)
            hi = _grid_key(max(lats), max(lons), self.bucket_deg)
            for gy in range(lo[0], hi[0] + 1):
                for gx in range(lo[1], hi[1] + 1):
                    grid_mut.setdefault((gy, gx), []).append(segment_id)
        self._grid: dict[tuple[int, int], tuple[str, ...]] = {
            key: tuple(sorted(values, key=segment_sort_key)) for key, values in grid_mut.items()
        }
        if self._grid:
            self._min_row = min(key[0] for key in self._grid)
            self._max_row = max(key[0] for key in self._grid)
            self._min_col = min(key[1] for key in self._grid)
            self._max_col = max(key[1] for key in self._grid)
        else:
            self._min_row = self._max_row = self._min_col = self._max_col = 0

    @property
    def bucket_count(self) -> int:
        return len(self._grid)

    def _ring_limit(self, lat: float, max_distance_m: float) -> int:
        m_lat, m_lon = meters_per_degree(lat)
        bucket_m = self.bucket_deg * min(m_lat, m_lon)
        return int(math.ceil(max_distance_m / max(1e-6, bucket_m))) + 1

    def _ring_clearance_m(self, lat: float, lon: float, radius: int) -> float:
        """Lower bound on the distance to any bucket outside rings 0..radius."""
        m_lat, m_lon = meters_per_degree(lat)
        row, col = _grid_key(lat, lon, self.bucket_deg)
        north = ((row + radius + 1) * self.bucket_deg - lat) * m_lat
        south = (lat - (row - radius) * self.bucket_deg) * m_lat
        east = ((col + radius + 1) * self.bucket_deg - lon) * m_lon
        west = (lon - (col - radius) * self.bucket_deg) * m_lon
        return max(0.0, min(north, south, east, west))

    def snap(self, lat: float, lon: float, *, max_distance_m: float) -> SnapResult:
        center = _grid_key(lat, lon, self.bucket_deg)
        ring_limit = self._ring_limit(lat, max_distance_m)
        # Never scan past the populated grid extent.
        extent_limit = max(
            abs(center[0] - self._min_row),
            abs(center[0] - self._max_row),
            abs(center[1] - self._min_col),
            abs(center[1] - self._max_col),
        )
        ring_limit = min(ring_limit, extent_limit)
        best: tuple[float, tuple[int, int, str], SnapResult] | None = None
        tested: set[str] = set()
        for radius in range(0, ring_limit + 1):
            for dx, dy in _ring_offsets(radius):
                for segment_id in self._grid.get((center[0] + dy, center[1] + dx), ()):
                    if segment_id in tested:
                        continue
                    tested.add(segment_id)
                    projection = project_onto_polyline(lat, lon, self._geometries[segment_id])
                    if projection.distance_m > max_distance_m:
                        continue
                    rank = (projection.distance_m, segment_sort_key(segment_id))
                    if best is None or rank < (best[0], best[1]):
                        best = (
                            projection.distance_m,
                            segment_sort_key(segment_id),
                            SnapResult(
                                segment_id=segment_id,
                                point=projection.point,
                                offset_m=max(0.0, projection.distance_m),
                                along_m=max(0.0, projection.along_m),
                            ),
                        )
            if best is not None and self._ring_clearance_m(lat, lon, radius) > best[0]:
                break
        if best is None:
            raise NoNetworkNearby(
                details={
                    "lat": float(lat),
                    "lon": float(lon),
                    "max_snap_distance_m": float(max_distance_m),
                    "candidates_tested": len(tested),
                }
            )
        return best[2]
