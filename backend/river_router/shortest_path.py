from __future__ import annotations

import heapq
from dataclasses import dataclass
from itertools import count

from .river_network import Graph, GraphArc


@dataclass(frozen=True)
class PathResult:
    nodes: tuple[str, ...]
    arcs: tuple[GraphArc, ...]
    cost: float


class PathNotFoundError(ValueError):
    pass


def shortest_path(graph: Graph, start: str, goal: str) -> PathResult:
    """Dijkstra over arc length in meters.

    The predecessor map stores the arc itself, since a node pair can be joined
    by parallel arcs (a reach and a virtual slice of it). Heap entries carry a
    push sequence number and relaxation is strict, so among equal-cost options
    the first one discovered wins and repeated runs give identical paths.
    """
    if start not in graph:
        raise PathNotFoundError(f"start node {start!r} not in graph")
    if start == goal:
        return PathResult(nodes=(start,), arcs=(), cost=0.0)

    seq = count()
    dist: dict[str, float] = {start: 0.0}
    prev: dict[str, tuple[str, GraphArc]] = {}
    visited: set[str] = set()
    heap: list[tuple[float, int, str]] = [(0.0, next(seq), start)]

    while heap:
        cost, _, node = heapq.heappop(heap)
        if node in visited:
            continue
        visited.add(node)
        if node == goal:
            break
        for arc in graph.get(node, ()):
            if arc.to in visited:
                continue
            new_cost = cost + max(0.0, float(arc.cost))
            best = dist.get(arc.to)
            if best is not None and new_cost >= best:
                continue
            dist[arc.to] = new_cost
            prev[arc.to] = (node, arc)
            heapq.heappush(heap, (new_cost, next(seq), arc.to))

    if goal not in visited:
        raise PathNotFoundError("no path")

    nodes: list[str] = [goal]
    arcs: list[GraphArc] = []
    current = goal
    while current != start:
        parent, arc = prev[current]
        arcs.append(arc)
        nodes.append(parent)
        current = parent
    nodes.reverse()
    arcs.reverse()
    return PathResult(nodes=tuple(nodes), arcs=tuple(arcs), cost=dist[goal])
