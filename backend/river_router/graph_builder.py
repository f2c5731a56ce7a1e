from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from .river_network import VIRTUAL_END, VIRTUAL_START, Edge, Graph, GraphArc, SnapResult


def _add_arc(graph: Graph, node: str, arc: GraphArc) -> None:
    graph.setdefault(node, []).append(arc)
    graph.setdefault(arc.to, [])


def _add_reach(graph: Graph, edge: Edge, *, allow_upstream: bool) -> None:
    _add_arc(graph, edge.from_node, GraphArc(to=edge.to_node, edge=edge))
    if allow_upstream:
        _add_arc(graph, edge.to_node, GraphArc(to=edge.from_node, edge=edge, upstream=True))


def _virtual_edge(
    edge: Edge,
    *,
    from_node: str,
    to_node: str,
    fraction_start: float,
    fraction_end: float,
) -> Edge:
    """Slice ``edge`` to ``[fraction_start, fraction_end]``.

    Elevations are interpolated so that ``max_elev_m`` stays the upstream end
    of the slice and ``min_elev_m`` the downstream end, whatever the direction
    of travel.
    """
    return replace(
        edge,
        from_node=from_node,
        to_node=to_node,
        length_m=edge.length_m * (fraction_end - fraction_start),
        max_elev_m=edge.elevation_at(fraction_start),
        min_elev_m=edge.elevation_at(fraction_end),
        original_id=edge.reach_id,
        fraction_start=fraction_start,
        fraction_end=fraction_end,
    )


def _clamp_fraction(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def build_graph(
    edges: Iterable[Edge],
    start_snap: SnapResult,
    end_snap: SnapResult,
    *,
    allow_upstream: bool = True,
) -> Graph:
    """Build a routable graph with ``virtual_start``/``virtual_end`` split nodes.

    Forward arcs follow the flow direction. With ``allow_upstream`` every reach
    also gets a reverse arc tagged upstream. The reaches holding the snapped
    points are split at the snap fraction; the untouched reach is kept as well
    so other paths through it remain available. Zero-length slices (a snap at
    exactly 0 or 1) are kept with cost 0.

    The graph may be disconnected; reachability is the path finder's concern.
    """
    graph: Graph = {}
    start_reach = start_snap.reach_id
    end_reach = end_snap.reach_id
    start_frac = _clamp_fraction(start_snap.fraction)
    end_frac = _clamp_fraction(end_snap.fraction)

    for edge in edges:
        graph.setdefault(edge.from_node, [])
        graph.setdefault(edge.to_node, [])

        if edge.reach_id == start_reach and edge.reach_id == end_reach:
            graph.setdefault(VIRTUAL_START, [])
            graph.setdefault(VIRTUAL_END, [])
            upstream = end_frac < start_frac
            if upstream and not allow_upstream:
                continue
            lo, hi = (end_frac, start_frac) if upstream else (start_frac, end_frac)
            virtual = _virtual_edge(
                edge,
                from_node=VIRTUAL_START,
                to_node=VIRTUAL_END,
                fraction_start=lo,
                fraction_end=hi,
            )
            _add_arc(graph, VIRTUAL_START, GraphArc(to=VIRTUAL_END, edge=virtual, upstream=upstream))
            continue

        if edge.reach_id == start_reach:
            downstream = _virtual_edge(
                edge,
                from_node=VIRTUAL_START,
                to_node=edge.to_node,
                fraction_start=start_frac,
                fraction_end=1.0,
            )
            _add_arc(graph, VIRTUAL_START, GraphArc(to=edge.to_node, edge=downstream))
            if allow_upstream:
                upstream_part = _virtual_edge(
                    edge,
                    from_node=VIRTUAL_START,
                    to_node=edge.from_node,
                    fraction_start=0.0,
                    fraction_end=start_frac,
                )
                _add_arc(graph, VIRTUAL_START, GraphArc(to=edge.from_node, edge=upstream_part, upstream=True))

        elif edge.reach_id == end_reach:
            graph.setdefault(VIRTUAL_END, [])
            arrival = _virtual_edge(
                edge,
                from_node=edge.from_node,
                to_node=VIRTUAL_END,
                fraction_start=0.0,
                fraction_end=end_frac,
            )
            _add_arc(graph, edge.from_node, GraphArc(to=VIRTUAL_END, edge=arrival))
            if allow_upstream:
                upstream_arrival = _virtual_edge(
                    edge,
                    from_node=edge.to_node,
                    to_node=VIRTUAL_END,
                    fraction_start=end_frac,
                    fraction_end=1.0,
                )
                _add_arc(graph, edge.to_node, GraphArc(to=VIRTUAL_END, edge=upstream_arrival, upstream=True))

        _add_reach(graph, edge, allow_upstream=allow_upstream)

    return graph
