from __future__ import annotations

from river_router.graph_builder import build_graph
from river_router.river_network import VIRTUAL_END, VIRTUAL_START, Edge, SnapResult


def _edge(reach_id: int, from_node: str, to_node: str, length_m: float, *, max_elev: float, min_elev: float) -> Edge:
    return Edge(
        reach_id=reach_id,
        from_node=from_node,
        to_node=to_node,
        length_m=length_m,
        name=f"Reach {reach_id}",
        stream_order=3,
        baseline_velocity_mps=0.3048,
        min_elev_m=min_elev,
        max_elev_m=max_elev,
    )


def _snap(reach_id: int, fraction: float) -> SnapResult:
    return SnapResult(reach_id=reach_id, fraction=fraction, snapped_point=(0.0, 0.0), distance_m=0.0)


def _chain() -> list[Edge]:
    return [
        _edge(1, "A", "B", 1000.0, max_elev=110.0, min_elev=100.0),
        _edge(2, "B", "C", 2000.0, max_elev=100.0, min_elev=90.0),
        _edge(3, "C", "D", 500.0, max_elev=90.0, min_elev=88.0),
    ]


def test_downstream_only_graph_has_no_reverse_arcs() -> None:
    graph = build_graph(_chain(), _snap(1, 0.5), _snap(3, 0.5), allow_upstream=False)

    assert all(not arc.upstream for arcs in graph.values() for arc in arcs)
    assert [arc.to for arc in graph["B"]] == ["C"]
    assert [arc.to for arc in graph[VIRTUAL_START]] == ["B"]
    assert [arc.to for arc in graph["C"]] == [VIRTUAL_END, "D"]


def test_upstream_graph_tags_reverse_arcs() -> None:
    graph = build_graph(_chain(), _snap(1, 0.5), _snap(3, 0.5), allow_upstream=True)

    reverse = [arc for arc in graph["C"] if arc.to == "B"]
    assert len(reverse) == 1
    assert reverse[0].upstream is True
    assert reverse[0].edge.reach_id == 2
    # Forward and upstream splits of the start reach.
    start_targets = {(arc.to, arc.upstream) for arc in graph[VIRTUAL_START]}
    assert start_targets == {("B", False), ("A", True)}


def test_start_split_keeps_original_reach_and_interpolates_elevation() -> None:
    graph = build_graph(_chain(), _snap(1, 0.25), _snap(3, 0.5), allow_upstream=True)

    (downstream,) = [arc for arc in graph[VIRTUAL_START] if not arc.upstream]
    assert downstream.edge.is_virtual
    assert downstream.edge.original_id == 1
    assert downstream.edge.fraction_start == 0.25
    assert downstream.edge.fraction_end == 1.0
    assert downstream.edge.length_m == 750.0
    assert downstream.edge.max_elev_m == 107.5
    assert downstream.edge.min_elev_m == 100.0

    (upstream,) = [arc for arc in graph[VIRTUAL_START] if arc.upstream]
    assert upstream.edge.length_m == 250.0
    assert upstream.entry_elev_m == 107.5
    assert upstream.exit_elev_m == 110.0

    originals = [arc for arc in graph["A"] if arc.to == "B" and not arc.edge.is_virtual]
    assert len(originals) == 1


def test_end_split_adds_arrival_arcs() -> None:
    graph = build_graph(_chain(), _snap(1, 0.5), _snap(3, 0.4), allow_upstream=True)

    arrival = [arc for arc in graph["C"] if arc.to == VIRTUAL_END]
    assert len(arrival) == 1
    assert arrival[0].edge.length_m == 200.0
    assert arrival[0].upstream is False

    upstream_arrival = [arc for arc in graph["D"] if arc.to == VIRTUAL_END]
    assert len(upstream_arrival) == 1
    assert upstream_arrival[0].upstream is True
    assert upstream_arrival[0].edge.length_m == 300.0


def test_same_reach_downstream_builds_single_virtual_arc() -> None:
    graph = build_graph(_chain(), _snap(2, 0.25), _snap(2, 0.75), allow_upstream=True)

    (arc,) = graph[VIRTUAL_START]
    assert arc.to == VIRTUAL_END
    assert arc.upstream is False
    assert arc.edge.length_m == 1000.0
    assert arc.edge.max_elev_m == 97.5
    assert arc.edge.min_elev_m == 92.5
    assert arc.entry_elev_m == 97.5


def test_same_reach_upstream_respects_allow_upstream() -> None:
    allowed = build_graph(_chain(), _snap(2, 0.75), _snap(2, 0.25), allow_upstream=True)
    (arc,) = allowed[VIRTUAL_START]
    assert arc.upstream is True
    assert arc.edge.fraction_start == 0.25
    assert arc.edge.fraction_end == 0.75
    assert arc.entry_elev_m == 92.5
    assert arc.exit_elev_m == 97.5

    blocked = build_graph(_chain(), _snap(2, 0.75), _snap(2, 0.25), allow_upstream=False)
    assert blocked[VIRTUAL_START] == []
    assert VIRTUAL_END in blocked


def test_zero_length_boundary_slices_are_kept() -> None:
    graph = build_graph(_chain(), _snap(1, 1.0), _snap(3, 0.0), allow_upstream=False)

    (start_arc,) = graph[VIRTUAL_START]
    assert start_arc.to == "B"
    assert start_arc.cost == 0.0
    (end_arc,) = [arc for arc in graph["C"] if arc.to == VIRTUAL_END]
    assert end_arc.cost == 0.0


def test_out_of_range_fractions_are_clamped() -> None:
    graph = build_graph(_chain(), _snap(1, -0.2), _snap(3, 1.4), allow_upstream=False)

    (start_arc,) = graph[VIRTUAL_START]
    assert start_arc.edge.fraction_start == 0.0
    assert start_arc.edge.length_m == 1000.0
    (end_arc,) = [arc for arc in graph["C"] if arc.to == VIRTUAL_END]
    assert end_arc.edge.fraction_end == 1.0


def test_misoriented_reach_does_not_break_builder() -> None:
    edges = [_edge(7, "X", "Y", 100.0, max_elev=10.0, min_elev=20.0)]
    graph = build_graph(edges, _snap(7, 0.25), _snap(7, 0.75), allow_upstream=True)

    (arc,) = graph[VIRTUAL_START]
    assert arc.edge.length_m == 50.0
    assert arc.edge.max_elev_m < arc.edge.min_elev_m
