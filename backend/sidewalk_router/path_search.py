from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass
from typing import Any

from .cost_model import (
    DEFAULT_PENALTY_WEIGHT,
    DEFAULT_STRICT_MIN_SCORE,
    Cost,
    Excluded,
    RoutingConstraint,
    evaluate_segment,
    segment_score,
)
from .errors import PathNotFound
from .geo import haversine_m, polyline_length_m
from .segments import SegmentGraph
from .spatial_index import SnapResult, segment_sort_key

START_NODE = "__query_start__"
END_NODE = "__query_end__"
_NODE_SNAP_TOLERANCE_M = 1e-3


@dataclass(frozen=True)
class Traversal:
    """One piece of a path: a segment (or part of it) walked between two fractions of its length."""

    segment_id: str
    start_fraction: float
    end_fraction: float
    length_m: float
    cost: float
    score: float

    @property
    def reversed(self) -> bool:
        return self.end_fraction < self.start_fraction


@dataclass(frozen=True)
class PathResult:
    traversals: tuple[Traversal, ...]
    nodes: tuple[str, ...]
    cost: float
    explored_states: int


_Label = tuple[float, int, tuple[tuple[int, int, str], ...]]


def _snap_fraction(graph: SegmentGraph, snap: SnapResult) -> float:
    geometric_m = polyline_length_m(graph.segment(snap.segment_id).geometry)
    if geometric_m <= 0.0:
        return 0.0
    return max(0.0, min(1.0, float(snap.along_m) / geometric_m))


class _SearchContext:
    def __init__(
        self,
        graph: SegmentGraph,
        constraint: RoutingConstraint,
        *,
        penalty_weight: float,
        strict_min_score: float,
    ) -> None:
        self.graph = graph
        self.constraint = constraint
        self.penalty_weight = penalty_weight
        self.strict_min_score = strict_min_score
        self._costs: dict[str, Cost | Excluded] = {}

    def cost(self, segment_id: str) -> Cost | Excluded:
        cached = self._costs.get(segment_id)
        if cached is None:
            cached = evaluate_segment(
                self.graph.segment(segment_id),
                self.constraint,
                penalty_weight=self.penalty_weight,
                strict_min_score=self.strict_min_score,
            )
            self._costs[segment_id] = cached
        return cached

    def traversal(self, segment_id: str, start_fraction: float, end_fraction: float) -> Traversal | None:
        evaluated = self.cost(segment_id)
        if isinstance(evaluated, Excluded):
            return None
        share = abs(end_fraction - start_fraction)
        segment = self.graph.segment(segment_id)
        return Traversal(
            segment_id=segment_id,
            start_fraction=start_fraction,
            end_fraction=end_fraction,
            length_m=segment.length_m * share,
            cost=evaluated.total * share,
            score=evaluated.score,
        )


def _snap_node(graph: SegmentGraph, snap: SnapResult) -> tuple[str, float] | None:
    """Graph node the snapped point sits on, with its fraction, or None mid-segment."""
    geometric_m = polyline_length_m(graph.segment(snap.segment_id).geometry)
    u, v = graph.endpoints[snap.segment_id]
    if float(snap.along_m) <= _NODE_SNAP_TOLERANCE_M:
        return u, 0.0
    if geometric_m - float(snap.along_m) <= _NODE_SNAP_TOLERANCE_M:
        return v, 1.0
    return None


def _query_edges(
    ctx: _SearchContext,
    start: SnapResult,
    end: SnapResult,
) -> dict[str, list[tuple[str, Traversal]]]:
    graph = ctx.graph
    extra: dict[str, list[tuple[str, Traversal]]] = {}
    f_start = _snap_fraction(graph, start)
    f_end = _snap_fraction(graph, end)

    def _add(src: str, dst: str, traversal: Traversal | None) -> None:
        if traversal is not None:
            extra.setdefault(src, []).append((dst, traversal))

    def _node_link(snap: SnapResult, fraction: float) -> Traversal:
        # Zero-length hop onto the node; none of the snapped segment is walked.
        return Traversal(
            segment_id=snap.segment_id,
            start_fraction=fraction,
            end_fraction=fraction,
            length_m=0.0,
            cost=0.0,
            score=segment_score(graph.segment(snap.segment_id)),
        )

    if start.segment_id == end.segment_id:
        _add(START_NODE, END_NODE, ctx.traversal(start.segment_id, f_start, f_end))

    start_node = _snap_node(graph, start)
    if start_node is not None:
        node_id, fraction = start_node
        _add(START_NODE, node_id, _node_link(start, fraction))
    else:
        s_u, s_v = graph.endpoints[start.segment_id]
        _add(START_NODE, s_u, ctx.traversal(start.segment_id, f_start, 0.0))
        _add(START_NODE, s_v, ctx.traversal(start.segment_id, f_start, 1.0))

    end_node = _snap_node(graph, end)
    if end_node is not None:
        node_id, fraction = end_node
        _add(node_id, END_NODE, _node_link(end, fraction))
    else:
        e_u, e_v = graph.endpoints[end.segment_id]
        _add(e_u, END_NODE, ctx.traversal(end.segment_id, 0.0, f_end))
        _add(e_v, END_NODE, ctx.traversal(end.segment_id, 1.0, f_end))
    return extra


def _graph_edges(ctx: _SearchContext, node: str) -> list[tuple[str, Traversal]]:
    out: list[tuple[str, Traversal]] = []
    for ref in ctx.graph.neighbors(node):
        forward = ref.from_node == ctx.graph.endpoints[ref.segment_id][0]
        traversal = ctx.traversal(ref.segment_id, 0.0 if forward else 1.0, 1.0 if forward else 0.0)
        if traversal is not None:
            out.append((ref.to_node, traversal))
    return out


def _no_path_details(
    ctx: _SearchContext,
    start: SnapResult,
    end: SnapResult,
    *,
    explored: int,
    nearest: tuple[float, str] | None,
) -> dict[str, Any]:
    graph = ctx.graph
    start_component = graph.component_of_segment(start.segment_id)
    end_component = graph.component_of_segment(end.segment_id)
    start_cost = ctx.cost(start.segment_id)
    end_cost = ctx.cost(end.segment_id)
    details: dict[str, Any] = {
        "tier": ctx.constraint.label,
        "explored_states": int(explored),
        "start_segment_id": start.segment_id,
        "end_segment_id": end.segment_id,
        "start_component": start_component,
        "end_component": end_component,
        "disconnected_components": start_component != end_component,
        "start_segment_excluded": start_cost.reason if isinstance(start_cost, Excluded) else None,
        "end_segment_excluded": end_cost.reason if isinstance(end_cost, Excluded) else None,
        "nearest_reachable": None,
    }
    if nearest is not None:
        distance_m, node_id = nearest
        if node_id == START_NODE:
            lat, lon = start.point
        else:
            lat, lon = graph.nodes[node_id]
        details["nearest_reachable"] = {
            "node_id": node_id,
            "lat": float(lat),
            "lon": float(lon),
            "distance_to_end_m": float(distance_m),
        }
    return details


def find_path(
    graph: SegmentGraph,
    start: SnapResult,
    end: SnapResult,
    constraint: RoutingConstraint,
    *,
    penalty_weight: float = DEFAULT_PENALTY_WEIGHT,
    strict_min_score: float = DEFAULT_STRICT_MIN_SCORE,
) -> PathResult:
    """Minimum-cost path between two snapped points under one constraint.

    Labels are compared as (cost, segment count, segment id sequence), so equal
    cost paths resolve to the one with fewer segments and then to the lowest id
    sequence. Raises PathNotFound when the end is unreachable.
    """
    ctx = _SearchContext(
        graph,
        constraint,
        penalty_weight=penalty_weight,
        strict_min_score=strict_min_score,
    )
    extra = _query_edges(ctx, start, end)
    end_lat, end_lon = end.point
    counter = itertools.count()
    start_label: _Label = (0.0, 0, ())
    heap: list[tuple[float, int, tuple[tuple[int, int, str], ...], int, str, tuple[Traversal, ...], tuple[str, ...]]] = [
        (0.0, 0, (), next(counter), START_NODE, (), (START_NODE,))
    ]
    best: dict[str, _Label] = {START_NODE: start_label}
    settled: set[str] = set()
    explored = 0
    nearest: tuple[float, str] | None = None
    while heap:
        cost, hops, seq, _tick, node, traversals, nodes = heapq.heappop(heap)
        if node in settled:
            continue
        settled.add(node)
        explored += 1
        if node == END_NODE:
            return PathResult(traversals=traversals, nodes=nodes, cost=cost, explored_states=explored)
        if node == START_NODE:
            node_lat, node_lon = start.point
        else:
            node_lat, node_lon = graph.nodes[node]
        to_end_m = haversine_m(node_lat, node_lon, end_lat, end_lon)
        if nearest is None or (to_end_m, node) < nearest:
            nearest = (to_end_m, node)
        edges = extra.get(node, []) + ([] if node == START_NODE else _graph_edges(ctx, node))
        for nxt, traversal in edges:
            if nxt in settled:
                continue
            label: _Label = (
                cost + max(0.0, traversal.cost),
                hops + 1,
                (*seq, segment_sort_key(traversal.segment_id)),
            )
            prior = best.get(nxt)
            if prior is not None and label >= prior:
                continue
            best[nxt] = label
            heapq.heappush(
                heap,
                (label[0], label[1], label[2], next(counter), nxt, (*traversals, traversal), (*nodes, nxt)),
            )
    raise PathNotFound(
        message=f"no path under tier {constraint.label}",
        details=_no_path_details(ctx, start, end, explored=explored, nearest=nearest),
    )
