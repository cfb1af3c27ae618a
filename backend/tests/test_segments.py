from __future__ import annotations

import json
import threading
from decimal import Decimal
from pathlib import Path

import pytest

from sidewalk_router.errors import EmptyDatasetError, GraphUnavailableError
from sidewalk_router.segments import (
    GraphStore,
    SegmentAttributes,
    build_segment_graph,
    derive_issues,
    load_segment_feed,
    make_segment,
    parse_segment,
)


def _accessible() -> SegmentAttributes:
    return SegmentAttributes(curb_cut=True, surface="asphalt", wheelchair_passable=True, confidence="high")


def _record(segment_id: str, coords: list[list[float]], **attrs: object) -> dict[str, object]:
    base: dict[str, object] = {"curb_cut": True, "surface": "asphalt", "wheelchair_passable": True}
    base.update(attrs)
    return {
        "id": segment_id,
        "geometry": {"type": "LineString", "coordinates": coords},
        "attributes": base,
    }


def test_derive_issues_covers_curb_surface_slope_width_and_tag() -> None:
    attrs = SegmentAttributes(
        curb_cut=False,
        surface="gravel",
        slope_grade=-0.09,
        wheelchair_passable=False,
        width_m=0.7,
    )
    assert derive_issues(attrs) == frozenset(
        {"kerb_high", "surface_gravel", "steep_incline", "narrow_width", "wheelchair_tag_no"}
    )
    assert derive_issues(_accessible()) == frozenset()
    assert derive_issues(SegmentAttributes(curb_cut=True, surface="sett", wheelchair_passable=True)) == {
        "surface_cobblestone"
    }
    assert derive_issues(
        SegmentAttributes(curb_cut=True, surface="dirt", slope_grade=0.06, wheelchair_passable=True)
    ) == {"surface_dirt", "moderate_incline"}


def test_parse_segment_geojson_swaps_to_lat_lon() -> None:
    seg = parse_segment(_record("7", [[13.0, 52.0], [13.001, 52.0]]))
    assert seg is not None
    assert seg.id == "7"
    assert seg.geometry == ((52.0, 13.0), (52.0, 13.001))
    assert seg.length_m == pytest.approx(68.5, abs=1.0)
    assert seg.tags["surface"] == "asphalt"
    assert seg.issues == frozenset()


def test_parse_segment_accepts_aggregator_shape_and_decimals() -> None:
    raw = {
        "segment_id": 42,
        "path": [[Decimal("52.0"), Decimal("13.0")], [Decimal("52.001"), Decimal("13.0")]],
        "length": Decimal("111.2"),
        "attributes": {
            "curb_cut": "yes",
            "surface": "Concrete",
            "is_wheelchair_passable": True,
            "confidence": "medium",
            "sources": ["osm", "survey"],
        },
        "u": "n1",
        "v": "n2",
    }
    seg = parse_segment(raw)
    assert seg is not None
    assert seg.id == "42"
    assert seg.geometry == ((52.0, 13.0), (52.001, 13.0))
    assert seg.length_m == pytest.approx(111.2)
    assert seg.attributes.surface == "concrete"
    assert seg.attributes.wheelchair_passable is True
    assert seg.attributes.confidence == "medium"
    assert seg.attributes.sources == frozenset({"osm", "survey"})
    assert (seg.start_node_id, seg.end_node_id) == ("n1", "n2")


def test_parse_segment_missing_passable_defaults_to_not_passable() -> None:
    seg = parse_segment({"id": "a", "path": [[52.0, 13.0], [52.0, 13.001]], "attributes": {"curb_cut": True}})
    assert seg is not None
    assert seg.attributes.wheelchair_passable is False
    assert "wheelchair_tag_no" in seg.issues


@pytest.mark.parametrize(
    "raw",
    [
        None,
        {"id": "x"},
        {"id": "x", "path": [[52.0, 13.0]]},
        {"id": "x", "path": [[52.0, 13.0], [52.0, "east"]]},
        {"id": "x", "path": [[95.0, 13.0], [52.0, 13.0]]},
        {"id": "", "path": [[52.0, 13.0], [52.0, 13.001]]},
        {"id": "x", "path": [[52.0, 13.0], [52.0, 13.0]]},
    ],
)
def test_parse_segment_rejects_unroutable_records(raw: object) -> None:
    assert parse_segment(raw) is None


def test_make_segment_requires_two_vertices() -> None:
    with pytest.raises(ValueError):
        make_segment("1", [(52.0, 13.0)])


def test_build_graph_merges_shared_endpoints_and_counts_components() -> None:
    segments = [
        make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=_accessible()),
        make_segment("2", [(52.0, 13.001), (52.0, 13.002)], attributes=_accessible()),
        make_segment("3", [(52.01, 13.0), (52.01, 13.001)], attributes=_accessible()),
    ]
    graph = build_segment_graph(segments, source="test")
    assert graph.summary()["segment_count"] == 3
    assert len(graph.nodes) == 5
    assert graph.component_count == 2
    assert graph.largest_component_nodes == 3
    assert graph.component_of_segment("1") == graph.component_of_segment("2")
    assert graph.component_of_segment("1") != graph.component_of_segment("3")
    shared = graph.endpoints["1"][1]
    assert shared == graph.endpoints["2"][0]
    assert {ref.segment_id for ref in graph.neighbors(shared)} == {"1", "2"}


def test_build_graph_counts_duplicates_and_version_is_stable() -> None:
    first = make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=_accessible())
    dup = make_segment("1", [(52.0, 13.0), (52.0, 13.005)], attributes=_accessible())
    graph_a = build_segment_graph([first, dup])
    graph_b = build_segment_graph([first])
    assert graph_a.duplicate_segments == 1
    assert graph_a.version == graph_b.version
    other = build_segment_graph([make_segment("1", [(52.0, 13.0), (52.0, 13.002)], attributes=_accessible())])
    assert other.version != graph_b.version


def test_build_graph_rejects_empty_dataset() -> None:
    with pytest.raises(EmptyDatasetError) as exc:
        build_segment_graph([], source="empty.json")
    assert exc.value.reason_code == "empty_dataset"
    assert exc.value.details == {"source": "empty.json"}


def test_load_segment_feed_accepts_list_and_wrapped_documents(tmp_path: Path) -> None:
    records = [
        _record("1", [[13.0, 52.0], [13.001, 52.0]]),
        _record("2", [[13.001, 52.0], [13.002, 52.0]]),
        {"id": "bad"},
    ]
    listed = tmp_path / "list.json"
    listed.write_text(json.dumps(records), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"generated_at": "2024-01-01", "segments": records}), encoding="utf-8")

    assert [seg.id for seg in load_segment_feed(listed)] == ["1", "2"]
    assert [seg.id for seg in load_segment_feed(wrapped)] == ["1", "2"]


def test_load_segment_feed_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_segment_feed(tmp_path / "absent.json")


def test_graph_store_requires_a_loaded_graph() -> None:
    store = GraphStore()
    assert store.is_loaded() is False
    assert store.status() == {"loaded": False, "generation": 0}
    with pytest.raises(GraphUnavailableError):
        store.current()


def test_graph_store_reload_swaps_snapshot_and_bumps_generation(tmp_path: Path) -> None:
    store = GraphStore()
    first = store.reload_from_segments(
        [make_segment("1", [(52.0, 13.0), (52.0, 13.001)], attributes=_accessible())]
    )
    held = store.current()
    assert held is first

    feed = tmp_path / "feed.json"
    feed.write_text(
        json.dumps([_record("9", [[13.0, 52.0], [13.001, 52.0]]), _record("10", [[13.001, 52.0], [13.002, 52.0]])]),
        encoding="utf-8",
    )
    second = store.reload_from_feed(feed)
    status = store.status()
    assert status["loaded"] is True
    assert status["generation"] == 2
    assert status["segment_count"] == 2
    assert status["source"] == str(feed)
    assert store.current() is second
    # A reader holding the old snapshot still sees a complete graph.
    assert set(held.segments) == {"1"}


def test_graph_store_concurrent_installs_keep_a_consistent_snapshot() -> None:
    graphs = [
        build_segment_graph(
            [make_segment(str(i), [(52.0, 13.0), (52.0, 13.001 + i * 0.001)], attributes=_accessible())]
        )
        for i in range(4)
    ]
    store = GraphStore()
    threads = [threading.Thread(target=store.install, args=(graph,)) for graph in graphs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert store.status()["generation"] == 4
    assert store.current() in graphs
