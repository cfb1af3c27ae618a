from __future__ import annotations

import hashlib
import math
import threading
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import ijson

from .errors import EmptyDatasetError, GraphUnavailableError
from .geo import LatLon, polyline_length_m
from .logging_utils import log_event
from .settings import settings
from .spatial_index import SpatialIndex, segment_sort_key

CONFIDENCE_LEVELS = ("low", "medium", "high")
UNPAVED_SURFACES = frozenset({"dirt", "grass", "sand", "ground", "unpaved", "mud", "earth", "woodchips"})
PAVED_SURFACES = frozenset({"asphalt", "paved", "concrete", "paving_stones"})
STEEP_GRADE = 0.08
MODERATE_GRADE = 0.05
NARROW_WIDTH_M = 0.9


@dataclass(frozen=True)
class SegmentAttributes:
    curb_cut: bool = False
    surface: str = "unknown"
    slope_grade: float | None = None
    wheelchair_passable: bool = False
    confidence: str = "low"
    width_m: float | None = None
    sources: frozenset[str] = frozenset()


def derive_issues(attributes: SegmentAttributes) -> frozenset[str]:
    issues: set[str] = set()
    if not attributes.curb_cut:
        issues.add("kerb_high")
    surface = attributes.surface
    if surface == "gravel":
        issues.add("surface_gravel")
    elif surface in {"cobblestone", "sett", "unhewn_cobblestone"}:
        issues.add("surface_cobblestone")
    elif surface in UNPAVED_SURFACES:
        issues.add(f"surface_{surface}")
    if attributes.slope_grade is not None:
        grade = abs(float(attributes.slope_grade))
        if grade > STEEP_GRADE:
            issues.add("steep_incline")
        elif grade > MODERATE_GRADE:
            issues.add("moderate_incline")
    if attributes.width_m is not None and attributes.width_m < NARROW_WIDTH_M:
        issues.add("narrow_width")
    if not attributes.wheelchair_passable:
        issues.add("wheelchair_tag_no")
    return frozenset(issues)


@dataclass(frozen=True)
class Segment:
    id: str
    geometry: tuple[LatLon, ...]
    length_m: float
    attributes: SegmentAttributes
    issues: frozenset[str]
    tags: dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    start_node_id: str | None = None
    end_node_id: str | None = None


def make_segment(
    segment_id: str | int,
    geometry: Iterable[tuple[float, float]],
    *,
    attributes: SegmentAttributes | None = None,
    length_m: float | None = None,
    tags: dict[str, str] | None = None,
    start_node_id: str | None = None,
    end_node_id: str | None = None,
) -> Segment:
    points = tuple((float(lat), float(lon)) for lat, lon in geometry)
    if len(points) < 2:
        raise ValueError("segment geometry needs at least two vertices")
    attrs = attributes or SegmentAttributes()
    length = float(length_m) if length_m is not None else polyline_length_m(points)
    if not (math.isfinite(length) and length > 0.0):
        raise ValueError(f"segment {segment_id} has non-positive length")
    return Segment(
        id=str(segment_id),
        geometry=points,
        length_m=length,
        attributes=attrs,
        issues=derive_issues(attrs),
        tags=dict(tags or {}),
        start_node_id=start_node_id,
        end_node_id=end_node_id,
    )


def _as_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"yes", "true", "1", "limited"}
    return bool(value)


def _parse_geometry(raw: object) -> tuple[LatLon, ...] | None:
    # GeoJSON LineString carries [lon, lat]; bare vertex lists carry [lat, lon].
    swap = False
    if isinstance(raw, dict):
        if str(raw.get("type", "LineString")) != "LineString":
            return None
        raw = raw.get("coordinates")
        swap = True
    if not isinstance(raw, (list, tuple)):
        return None
    points: list[LatLon] = []
    for vertex in raw:
        if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
            return None
        a = _as_float(vertex[0])
        b = _as_float(vertex[1])
        if a is None or b is None:
            return None
        lat, lon = (b, a) if swap else (a, b)
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            return None
        points.append((lat, lon))
    return tuple(points) if len(points) >= 2 else None


def _parse_attributes(raw: object) -> SegmentAttributes:
    attrs = raw if isinstance(raw, dict) else {}
    passable_raw = attrs.get("wheelchair_passable", attrs.get("is_wheelchair_passable", False))
    confidence = str(attrs.get("confidence", "low") or "low").strip().lower()
    if confidence not in CONFIDENCE_LEVELS:
        confidence = "low"
    sources_raw = attrs.get("sources", ())
    sources = (
        frozenset(str(s) for s in sources_raw)
        if isinstance(sources_raw, (list, tuple, set, frozenset))
        else frozenset()
    )
    return SegmentAttributes(
        curb_cut=_as_bool(attrs.get("curb_cut", False)),
        surface=str(attrs.get("surface", "unknown") or "unknown").strip().lower() or "unknown",
        slope_grade=_as_float(attrs.get("slope_grade")),
        wheelchair_passable=_as_bool(passable_raw),
        confidence=confidence,
        width_m=_as_float(attrs.get("width_m")),
        sources=sources,
    )


def parse_segment(raw: object) -> Segment | None:
    """Normalize one feed record; returns None for records that cannot be routed on."""
    if not isinstance(raw, dict):
        return None
    segment_id = raw.get("id", raw.get("segment_id"))
    if segment_id is None or str(segment_id).strip() == "":
        return None
    geometry = _parse_geometry(raw.get("geometry", raw.get("path")))
    if geometry is None:
        return None
    attributes = _parse_attributes(raw.get("attributes"))
    length_m = _as_float(raw.get("length_m", raw.get("length")))
    if length_m is not None and length_m <= 0.0:
        length_m = None
    tags_raw = raw.get("tags")
    tags = {str(k): str(v) for k, v in tags_raw.items()} if isinstance(tags_raw, dict) else {}
    tags.setdefault("surface", attributes.surface)
    start_node = raw.get("start_node_id", raw.get("u"))
    end_node = raw.get("end_node_id", raw.get("v"))
    try:
        return make_segment(
            str(segment_id).strip(),
            geometry,
            attributes=attributes,
            length_m=length_m,
            tags=tags,
            start_node_id=None if start_node is None else str(start_node),
            end_node_id=None if end_node is None else str(end_node),
        )
    except ValueError:
        return None


def _feed_prefix(path: Path) -> str:
    with path.open("rb") as fh:
        head = fh.read(4096).lstrip()
    if head.startswith(b"["):
        return "item"
    return "segments.item"


def iter_segment_feed(path: Path) -> Iterator[object]:
    prefix = _feed_prefix(path)
    with path.open("rb") as fh:
        yield from ijson.items(fh, prefix)


def load_segment_feed(path: str | Path) -> list[Segment]:
    feed_path = Path(path)
    if not feed_path.exists():
        raise FileNotFoundError(str(feed_path))
    seen = 0
    segments: list[Segment] = []
    for raw in iter_segment_feed(feed_path):
        seen += 1
        parsed = parse_segment(raw)
        if parsed is not None:
            segments.append(parsed)
    log_event(
        "segment_feed_loaded",
        path=str(feed_path),
        records_seen=seen,
        records_kept=len(segments),
        records_dropped=seen - len(segments),
    )
    return segments


@dataclass(frozen=True)
class SegmentRef:
    segment_id: str
    from_node: str
    to_node: str


@dataclass(frozen=True)
class SegmentGraph:
    version: str
    source: str
    segments: dict[str, Segment]
    nodes: dict[str, LatLon]
    adjacency: dict[str, tuple[SegmentRef, ...]]
    endpoints: dict[str, tuple[str, str]]
    component_by_node: dict[str, int]
    component_sizes: dict[int, int]
    component_count: int
    largest_component_nodes: int
    spatial_index: SpatialIndex
    duplicate_segments: int = 0

    def neighbors(self, node_id: str) -> tuple[SegmentRef, ...]:
        return self.adjacency.get(node_id, ())

    def segment(self, segment_id: str) -> Segment:
        return self.segments[str(segment_id)]

    def component_of_segment(self, segment_id: str) -> int | None:
        start, _end = self.endpoints[str(segment_id)]
        return self.component_by_node.get(start)

    def summary(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "source": self.source,
            "segment_count": len(self.segments),
            "node_count": len(self.nodes),
            "component_count": int(self.component_count),
            "largest_component_nodes": int(self.largest_component_nodes),
            "duplicate_segments": int(self.duplicate_segments),
            "grid_buckets": int(self.spatial_index.bucket_count),
        }


def _quantized_node_id(point: LatLon, epsilon_deg: float) -> str:
    lat, lon = point
    return f"q:{int(round(lat / epsilon_deg))}:{int(round(lon / epsilon_deg))}"


def _compute_component_index(
    nodes: dict[str, LatLon],
    adjacency_mut: dict[str, list[SegmentRef]],
) -> tuple[dict[str, int], dict[int, int], int, int]:
    component_by_node: dict[str, int] = {}
    component_sizes: dict[int, int] = {}
    component_idx = 0
    for node_id in sorted(nodes):
        if node_id in component_by_node:
            continue
        component_idx += 1
        q: deque[str] = deque([node_id])
        size = 0
        while q:
            current = q.popleft()
            if current in component_by_node:
                continue
            component_by_node[current] = component_idx
            size += 1
            for ref in adjacency_mut.get(current, ()):
                if ref.to_node not in component_by_node:
                    q.append(ref.to_node)
        component_sizes[component_idx] = size
    largest_component_nodes = max(component_sizes.values(), default=0)
    return component_by_node, component_sizes, int(component_idx), int(largest_component_nodes)


def _fingerprint(segments: list[Segment]) -> str:
    digest = hashlib.sha256()
    for segment in segments:
        attrs = segment.attributes
        key = (
            segment.id,
            segment.geometry,
            round(segment.length_m, 6),
            attrs.curb_cut,
            attrs.surface,
            attrs.slope_grade,
            attrs.wheelchair_passable,
            attrs.confidence,
            attrs.width_m,
            sorted(attrs.sources),
        )
        digest.update(repr(key).encode("utf-8"))
    return digest.hexdigest()[:16]


def build_segment_graph(
    segments: Iterable[Segment],
    *,
    version: str | None = None,
    source: str = "memory",
    node_epsilon_deg: float | None = None,
    grid_bucket_deg: float | None = None,
) -> SegmentGraph:
    epsilon = float(node_epsilon_deg if node_epsilon_deg is not None else settings.node_snap_epsilon_deg)
    bucket = float(grid_bucket_deg if grid_bucket_deg is not None else settings.snap_grid_bucket_deg)
    by_id: dict[str, Segment] = {}
    duplicates = 0
    for segment in segments:
        if segment.id in by_id:
            duplicates += 1
            continue
        by_id[segment.id] = segment
    if not by_id:
        raise EmptyDatasetError(details={"source": source})
    ordered = sorted(by_id.values(), key=lambda s: segment_sort_key(s.id))

    nodes: dict[str, LatLon] = {}
    adjacency_mut: dict[str, list[SegmentRef]] = {}
    endpoints: dict[str, tuple[str, str]] = {}
    for segment in ordered:
        start_point = segment.geometry[0]
        end_point = segment.geometry[-1]
        u = segment.start_node_id or _quantized_node_id(start_point, epsilon)
        v = segment.end_node_id or _quantized_node_id(end_point, epsilon)
        nodes.setdefault(u, start_point)
        nodes.setdefault(v, end_point)
        endpoints[segment.id] = (u, v)
        adjacency_mut.setdefault(u, []).append(SegmentRef(segment_id=segment.id, from_node=u, to_node=v))
        if v != u:
            adjacency_mut.setdefault(v, []).append(SegmentRef(segment_id=segment.id, from_node=v, to_node=u))

    component_by_node, component_sizes, component_count, largest_component_nodes = _compute_component_index(
        nodes,
        adjacency_mut,
    )
    graph = SegmentGraph(
        version=version or _fingerprint(ordered),
        source=source,
        segments={segment.id: segment for segment in ordered},
        nodes=nodes,
        adjacency={node: tuple(refs) for node, refs in adjacency_mut.items()},
        endpoints=endpoints,
        component_by_node=component_by_node,
        component_sizes=component_sizes,
        component_count=component_count,
        largest_component_nodes=largest_component_nodes,
        spatial_index=SpatialIndex({segment.id: segment.geometry for segment in ordered}, bucket_deg=bucket),
        duplicate_segments=duplicates,
    )
    log_event("segment_graph_built", **graph.summary())
    return graph


class GraphStore:
    """Holds the current graph snapshot; reloads swap the whole reference at once."""

    def __init__(self, graph: SegmentGraph | None = None) -> None:
        self._lock = threading.Lock()
        self._graph = graph
        self._generation = 0 if graph is None else 1

    def current(self) -> SegmentGraph:
        graph = self._graph
        if graph is None:
            raise GraphUnavailableError()
        return graph

    def is_loaded(self) -> bool:
        return self._graph is not None

    def install(self, graph: SegmentGraph) -> int:
        with self._lock:
            self._graph = graph
            self._generation += 1
            generation = self._generation
        log_event("segment_graph_installed", generation=generation, version=graph.version, source=graph.source)
        return generation

    def reload_from_segments(self, segments: Iterable[Segment], *, source: str = "memory") -> SegmentGraph:
        graph = build_segment_graph(segments, source=source)
        self.install(graph)
        return graph

    def reload_from_feed(self, path: str | Path) -> SegmentGraph:
        segments = load_segment_feed(path)
        return self.reload_from_segments(segments, source=str(path))

    def status(self) -> dict[str, Any]:
        with self._lock:
            graph = self._graph
            generation = self._generation
        if graph is None:
            return {"loaded": False, "generation": generation}
        return {"loaded": True, "generation": generation, **graph.summary()}
