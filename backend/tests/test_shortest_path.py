from __future__ import annotations

import pytest

from river_router.river_network import Edge, Graph, GraphArc
from river_router.shortest_path import PathNotFoundError, PathResult, shortest_path


def _arc(to: str, length_m: float, reach_id: int, *, upstream: bool = False) -> GraphArc:
    edge = Edge(
        reach_id=reach_id,
        from_node="?",
        to_node=to,
        length_m=length_m,
        name=None,
        stream_order=1,
        baseline_velocity_mps=0.3,
        min_elev_m=0.0,
        max_elev_m=0.0,
    )
    return GraphArc(to=to, edge=edge, upstream=upstream)


def _graph() -> Graph:
    return {
        "A": [_arc("B", 1.0, 1), _arc("C", 1.0, 2)],
        "B": [_arc("D", 1.0, 3), _arc("C", 1.0, 4)],
        "C": [_arc("D", 1.0, 5)],
        "D": [],
    }


def test_shortest_path_returns_nodes_arcs_and_cost() -> None:
    result = shortest_path(_graph(), "A", "D")

    assert isinstance(result, PathResult)
    assert result.nodes == ("A", "B", "D")
    assert [arc.edge.reach_id for arc in result.arcs] == [1, 3]
    assert result.cost == 2.0


def test_equal_cost_ties_are_stable_across_runs() -> None:
    runs = {tuple(arc.edge.reach_id for arc in shortest_path(_graph(), "A", "D").arcs) for _ in range(20)}
    assert runs == {(1, 3)}


def test_parallel_arcs_keep_the_cheaper_one() -> None:
    graph: Graph = {
        "A": [_arc("B", 5.0, 10), _arc("B", 2.0, 11)],
        "B": [],
    }
    result = shortest_path(graph, "A", "B")
    assert [arc.edge.reach_id for arc in result.arcs] == [11]
    assert result.cost == 2.0


def test_zero_cost_arcs_are_traversable() -> None:
    graph: Graph = {
        "S": [_arc("X", 0.0, 1)],
        "X": [_arc("T", 3.0, 2)],
        "T": [],
    }
    result = shortest_path(graph, "S", "T")
    assert result.nodes == ("S", "X", "T")
    assert result.cost == 3.0


def test_start_equal_goal_is_an_empty_path() -> None:
    result = shortest_path(_graph(), "A", "A")
    assert result.nodes == ("A",)
    assert result.arcs == ()
    assert result.cost == 0.0


def test_unreachable_goal_raises() -> None:
    disconnected: Graph = {"A": [_arc("B", 1.0, 1)], "B": [], "D": []}
    with pytest.raises(PathNotFoundError):
        shortest_path(disconnected, "A", "D")


def test_missing_start_raises() -> None:
    with pytest.raises(PathNotFoundError):
        shortest_path(_graph(), "Z", "D")
