from __future__ import annotations

import math
import random

import pytest

from river_router.gradient import classify_gradient
from river_router.river_network import VIRTUAL_END, VIRTUAL_START, Edge, FlowCondition, Graph, GraphArc, SnapResult
from river_router.route_engine import find_route
from river_router.route_stats import compute_stats, water_velocity_mps
from river_router.routing_errors import NoRouteFound, UpstreamOnlySuggestSwap
from river_router.shortest_path import PathNotFoundError, shortest_path


def _chain(rng: random.Random, n: int) -> list[Edge]:
    edges: list[Edge] = []
    elev = 500.0
    for idx in range(n):
        drop = round(rng.uniform(0.0, 8.0), 3)
        edges.append(
            Edge(
                reach_id=1000 + idx,
                from_node=f"N{idx}",
                to_node=f"N{idx + 1}",
                length_m=float(rng.randint(50, 5000)),
                name=rng.choice(["Alder Creek", "Bear River", None]),
                stream_order=rng.randint(1, 6),
                baseline_velocity_mps=round(rng.uniform(0.05, 1.5), 4),
                min_elev_m=elev - drop,
                max_elev_m=elev,
                live_velocity_mps=rng.choice([None, None, round(rng.uniform(0.0, 2.0), 3)]),
            )
        )
        elev -= drop
    return edges


def _snap(edge: Edge, fraction: float) -> SnapResult:
    return SnapResult(
        reach_id=edge.reach_id,
        fraction=fraction,
        snapped_point=(0.0, 0.0),
        distance_m=0.0,
        from_node=edge.from_node,
        to_node=edge.to_node,
    )


def test_chain_distance_equals_sum_of_lengths_randomized() -> None:
    rng = random.Random(20260501)

    for _ in range(40):
        edges = _chain(rng, rng.randint(2, 12))
        i = rng.randrange(0, len(edges) - 1)
        j = rng.randrange(i + 1, len(edges))
        allow_upstream = rng.random() < 0.5

        path = find_route(edges, _snap(edges[i], 0.0), _snap(edges[j], 1.0), allow_upstream=allow_upstream)
        stats = compute_stats(path.arcs, flow_condition=FlowCondition.NORMAL, paddle_speed_mps=1.0)

        assert stats.distance_m == sum(e.length_m for e in edges[i : j + 1])
        assert stats.distance_m == path.cost
        assert stats.direction.upstream_segments == 0
        assert stats.elev_start_m == edges[i].max_elev_m
        assert stats.elev_end_m == pytest.approx(edges[j].min_elev_m)


def test_partial_snaps_cover_the_expected_fraction_randomized() -> None:
    rng = random.Random(7)

    for _ in range(40):
        edges = _chain(rng, rng.randint(2, 8))
        i = rng.randrange(0, len(edges) - 1)
        j = rng.randrange(i + 1, len(edges))
        fs = rng.random()
        fe = rng.random()

        path = find_route(edges, _snap(edges[i], fs), _snap(edges[j], fe), allow_upstream=False)
        expected = (
            edges[i].length_m * (1.0 - fs)
            + sum(e.length_m for e in edges[i + 1 : j])
            + edges[j].length_m * fe
        )
        assert path.cost == pytest.approx(expected)
        assert path.nodes[0] == VIRTUAL_START
        assert path.nodes[-1] == VIRTUAL_END


def test_reverse_request_suggests_swap_only_when_downstream_only() -> None:
    rng = random.Random(99)

    for _ in range(20):
        edges = _chain(rng, rng.randint(2, 8))
        i = rng.randrange(0, len(edges) - 1)
        j = rng.randrange(i + 1, len(edges))
        start, end = _snap(edges[j], rng.random()), _snap(edges[i], rng.random())

        with pytest.raises(UpstreamOnlySuggestSwap):
            find_route(edges, start, end, allow_upstream=False)
        path = find_route(edges, start, end, allow_upstream=True)
        assert all(arc.upstream for arc in path.arcs if arc.edge.length_m > 0)


def test_split_network_is_no_route_found_both_ways() -> None:
    rng = random.Random(3)
    left = _chain(rng, 3)
    right = [
        Edge(
            reach_id=2000 + e.reach_id,
            from_node=f"R{e.from_node}",
            to_node=f"R{e.to_node}",
            length_m=e.length_m,
            name=e.name,
            stream_order=e.stream_order,
            baseline_velocity_mps=e.baseline_velocity_mps,
            min_elev_m=e.min_elev_m,
            max_elev_m=e.max_elev_m,
        )
        for e in _chain(rng, 3)
    ]
    for allow_upstream in (True, False):
        with pytest.raises(NoRouteFound):
            find_route(left + right, _snap(left[0], 0.3), _snap(right[2], 0.6), allow_upstream=allow_upstream)


def _brute_force_cost(graph: Graph, start: str, goal: str) -> float:
    best = {node: math.inf for node in graph}
    best[start] = 0.0
    for _ in range(len(graph)):
        for node, arcs in graph.items():
            if best[node] == math.inf:
                continue
            for arc in arcs:
                best[arc.to] = min(best[arc.to], best[node] + arc.cost)
    return best[goal]


def test_dijkstra_matches_relaxation_randomized() -> None:
    rng = random.Random(1234)

    for _ in range(30):
        nodes = [f"v{i}" for i in range(rng.randint(3, 12))]
        graph: Graph = {node: [] for node in nodes}
        for idx in range(rng.randint(len(nodes), len(nodes) * 3)):
            a, b = rng.sample(nodes, 2)
            edge = Edge(
                reach_id=idx,
                from_node=a,
                to_node=b,
                length_m=float(rng.randint(0, 20)),
                name=None,
                stream_order=1,
                baseline_velocity_mps=0.3,
                min_elev_m=0.0,
                max_elev_m=0.0,
            )
            graph[a].append(GraphArc(to=b, edge=edge))

        start, goal = rng.sample(nodes, 2)
        expected = _brute_force_cost(graph, start, goal)
        if expected == math.inf:
            with pytest.raises(PathNotFoundError):
                shortest_path(graph, start, goal)
            continue

        first = shortest_path(graph, start, goal)
        again = shortest_path(graph, start, goal)
        assert first.cost == expected
        assert sum(arc.cost for arc in first.arcs) == expected
        assert first == again


def test_paddle_speed_monotonicity_randomized() -> None:
    rng = random.Random(555)

    for _ in range(30):
        edges = _chain(rng, rng.randint(1, 6))
        arcs = [GraphArc(to=e.to_node, edge=e, upstream=rng.random() < 0.4) for e in edges]
        flow = rng.choice(list(FlowCondition))
        speeds = sorted(rng.uniform(0.0, 3.0) for _ in range(4))

        runs = [compute_stats(arcs, flow_condition=flow, paddle_speed_mps=s) for s in speeds]
        impossible = [r.direction.impossible_segments for r in runs]
        assert impossible == sorted(impossible, reverse=True)

        downstream_only = [GraphArc(to=a.to, edge=a.edge) for a in arcs]
        times = [compute_stats(downstream_only, flow_condition=flow, paddle_speed_mps=s).time_s for s in speeds]
        for slower, faster in zip(times, times[1:]):
            assert faster <= slower


def test_flow_condition_orders_baseline_velocity_randomized() -> None:
    rng = random.Random(8)
    for edge in _chain(rng, 50):
        if edge.live_velocity_mps is not None and edge.live_velocity_mps > 0.01:
            continue
        low, _ = water_velocity_mps(edge, FlowCondition.LOW)
        normal, _ = water_velocity_mps(edge, FlowCondition.NORMAL)
        high, _ = water_velocity_mps(edge, FlowCondition.HIGH)
        assert low <= normal <= high


def test_gradient_classes_are_monotone() -> None:
    order = {"pool": 0, "riffle": 1, "rapid_mild": 2, "rapid_steep": 3}
    values = [i * 0.25 for i in range(200)]
    ranks = [order[classify_gradient(v)] for v in values]
    assert ranks == sorted(ranks)
