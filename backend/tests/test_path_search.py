from __future__ import annotations

import pytest

from sidewalk_router.cost_model import FALLBACK, LIMITED, STRICT
from sidewalk_router.errors import PathNotFound
from sidewalk_router.path_search import find_path
from sidewalk_router.segments import SegmentAttributes, build_segment_graph, make_segment

OK = SegmentAttributes(curb_cut=True, surface="asphalt", wheelchair_passable=True, confidence="high")
BLOCKED = SegmentAttributes(curb_cut=True, surface="asphalt", wheelchair_passable=False)


def _snap(graph, lat: float, lon: float):
    return graph.spatial_index.snap(lat, lon, max_distance_m=300.0)


def _square_graph(*, east_attrs: SegmentAttributes = OK):
    # A(52.0,13.0) --1-- B(52.0,13.001) --2-- C(52.0,13.002)
    #  \--------------------3 (north loop)----------------/
    return build_segment_graph(
        [
            make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=OK, length_m=70.0),
            make_segment("2", [(52.0, 13.001), (52.0, 13.002)], attributes=east_attrs, length_m=70.0),
            make_segment(
                "3",
                [(52.0, 13.0), (52.001, 13.0), (52.001, 13.002), (52.0, 13.002)],
                attributes=OK,
                length_m=360.0,
            ),
        ]
    )


def test_shortest_path_follows_cheapest_segments() -> None:
    graph = _square_graph()
    path = find_path(graph, _snap(graph, 52.0, 13.0), _snap(graph, 52.0, 13.002), STRICT)
    walked = [t.segment_id for t in path.traversals if t.start_fraction != t.end_fraction]
    assert walked == ["1", "2"]
    assert path.cost == pytest.approx(140.0)
    assert path.explored_states > 0


def test_excluded_segment_forces_detour_under_strict() -> None:
    graph = _square_graph(east_attrs=BLOCKED)
    # Just north of C so the end snaps onto the loop rather than the blocked segment.
    end = _snap(graph, 52.0001, 13.002)
    assert end.segment_id == "3"
    path = find_path(graph, _snap(graph, 52.0, 13.0), end, STRICT)
    walked = [t.segment_id for t in path.traversals if t.start_fraction != t.end_fraction]
    assert walked == ["3"]
    assert 340.0 < path.cost < 360.0


def test_partial_segments_at_both_ends_scale_cost() -> None:
    graph = build_segment_graph(
        [make_segment("1", [(52.0, 13.0), (52.0, 13.004)], attributes=OK, length_m=400.0)]
    )
    start = _snap(graph, 52.0, 13.001)
    end = _snap(graph, 52.0, 13.003)
    path = find_path(graph, start, end, STRICT)
    assert len(path.traversals) == 1
    only = path.traversals[0]
    assert only.segment_id == "1"
    assert only.start_fraction == pytest.approx(0.25, abs=1e-6)
    assert only.end_fraction == pytest.approx(0.75, abs=1e-6)
    assert only.length_m == pytest.approx(200.0, rel=1e-6)
    assert path.cost == pytest.approx(200.0, rel=1e-6)


def test_same_segment_backwards_is_marked_reversed() -> None:
    graph = build_segment_graph(
        [make_segment("1", [(52.0, 13.0), (52.0, 13.004)], attributes=OK, length_m=400.0)]
    )
    path = find_path(graph, _snap(graph, 52.0, 13.003), _snap(graph, 52.0, 13.001), STRICT)
    assert path.traversals[0].reversed is True


def test_equal_cost_alternatives_pick_lowest_segment_ids() -> None:
    graph = build_segment_graph(
        [
            make_segment("1", [(52.0, 12.999), (52.0, 13.0)], attributes=OK, length_m=50.0),
            make_segment("5", [(52.0, 13.0), (52.0005, 13.001), (52.0, 13.002)], attributes=OK, length_m=100.0),
            make_segment("4", [(52.0, 13.0), (51.9995, 13.001), (52.0, 13.002)], attributes=OK, length_m=100.0),
            make_segment("9", [(52.0, 13.002), (52.0, 13.003)], attributes=OK, length_m=50.0),
        ]
    )
    start = _snap(graph, 52.0, 12.999)
    end = _snap(graph, 52.0, 13.003)
    first = find_path(graph, start, end, STRICT)
    second = find_path(graph, start, end, STRICT)
    walked = [t.segment_id for t in first.traversals if t.start_fraction != t.end_fraction]
    assert walked == ["1", "4", "9"]
    assert first.cost == pytest.approx(200.0)
    assert first == second


def test_no_path_reports_disconnected_components() -> None:
    graph = build_segment_graph(
        [
            make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=OK),
            make_segment("2", [(52.0, 13.002), (52.0, 13.003)], attributes=OK),
        ]
    )
    with pytest.raises(PathNotFound) as exc:
        find_path(graph, _snap(graph, 52.0, 13.0), _snap(graph, 52.0, 13.003), FALLBACK)
    details = exc.value.details
    assert details is not None
    assert details["tier"] == "fallback"
    assert details["disconnected_components"] is True
    assert details["start_segment_excluded"] is None
    nearest = details["nearest_reachable"]
    assert nearest is not None
    assert nearest["lon"] == pytest.approx(13.001)


def test_no_path_reports_excluded_endpoint_segment() -> None:
    graph = build_segment_graph(
        [
            make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=OK),
            make_segment("2", [(52.0, 13.001), (52.0, 13.002)], attributes=BLOCKED),
        ]
    )
    with pytest.raises(PathNotFound) as exc:
        find_path(graph, _snap(graph, 52.0, 13.0005), _snap(graph, 52.0, 13.0015), LIMITED)
    details = exc.value.details
    assert details is not None
    assert details["disconnected_components"] is False
    assert details["end_segment_excluded"] == "not_wheelchair_passable"


def test_start_on_shared_node_leaves_through_open_segment() -> None:
    # B is shared by blocked "1" and open "2"; snapping at B ties to the lower id.
    shut = SegmentAttributes(curb_cut=False, surface="asphalt", wheelchair_passable=False)
    graph = build_segment_graph(
        [
            make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=shut, length_m=70.0),
            make_segment("2", [(52.0, 13.001), (52.0, 13.002)], attributes=OK, length_m=70.0),
        ]
    )
    start = _snap(graph, 52.0, 13.001)
    assert start.segment_id == "1"
    path = find_path(graph, start, _snap(graph, 52.0, 13.002), STRICT)
    walked = [t.segment_id for t in path.traversals if t.start_fraction != t.end_fraction]
    assert walked == ["2"]
    assert path.cost == pytest.approx(70.0)


def test_end_on_shared_node_arrives_through_open_segment() -> None:
    graph = build_segment_graph(
        [
            make_segment("1", [(52.0, 13.001), (52.0, 13.002)], attributes=BLOCKED, length_m=70.0),
            make_segment("2", [(52.0, 13.0), (52.0, 13.001)], attributes=OK, length_m=70.0),
        ]
    )
    end = _snap(graph, 52.0, 13.001)
    assert end.segment_id == "1"
    path = find_path(graph, _snap(graph, 52.0, 13.0), end, STRICT)
    walked = [t.segment_id for t in path.traversals if t.start_fraction != t.end_fraction]
    assert walked == ["2"]
    assert path.cost == pytest.approx(70.0)
