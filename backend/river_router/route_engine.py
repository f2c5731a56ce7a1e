from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from .edge_repository import EdgeRepository
from .graph_builder import build_graph
from .live_conditions import EMPTY_SNAPSHOT, LiveConditionsFeed, ReachFlow
from .river_network import VIRTUAL_END, VIRTUAL_START, Edge, FlowCondition, LngLat, SnapResult
from .route_assembler import RouteResult, assemble_route
from .route_stats import compute_stats
from .routing_errors import InputError, NoEdgesInArea, NoRouteFound, UpstreamOnlySuggestSwap
from .shortest_path import PathNotFoundError, PathResult, shortest_path
from .snapping import DEFAULT_MAX_SNAP_DISTANCE_M, Snapper


@dataclass(frozen=True)
class CoordinateBounds:
    min_lng: float = -130.0
    max_lng: float = -60.0
    min_lat: float = 20.0
    max_lat: float = 55.0


CONUS_BOUNDS = CoordinateBounds()


def validate_point(which: str, point: LngLat, bounds: CoordinateBounds = CONUS_BOUNDS) -> LngLat:
    lng, lat = point
    if not (isinstance(lng, (int, float)) and isinstance(lat, (int, float))):
        raise InputError(f"{which}_lng/{which}_lat", "invalid coordinate values", value=[lng, lat])
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise InputError(f"{which}_lng/{which}_lat", "invalid coordinate values", value=[lng, lat])
    if lng < bounds.min_lng or lng > bounds.max_lng:
        raise InputError(
            f"{which}_lng",
            f"longitude must be between {bounds.min_lng} and {bounds.max_lng}",
            value=lng,
        )
    if lat < bounds.min_lat or lat > bounds.max_lat:
        raise InputError(
            f"{which}_lat",
            f"latitude must be between {bounds.min_lat} and {bounds.max_lat}",
            value=lat,
        )
    return float(lng), float(lat)


def parse_flow_condition(value: FlowCondition | str) -> FlowCondition:
    if isinstance(value, FlowCondition):
        return value
    try:
        return FlowCondition(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(c.value for c in FlowCondition)
        raise InputError("flow", f"must be one of {allowed}", value=value) from e


def validate_paddle_speed(paddle_speed_mps: float) -> float:
    try:
        speed = float(paddle_speed_mps)
    except (TypeError, ValueError) as e:
        raise InputError("paddle_speed", "must be a number", value=paddle_speed_mps) from e
    if not math.isfinite(speed) or speed < 0:
        raise InputError("paddle_speed", "must be a finite number >= 0", value=paddle_speed_mps)
    return speed


MAX_FLOW_REACHES = 100


def validate_reach_ids(reach_ids: Sequence[int]) -> list[int]:
    ids: list[int] = []
    for value in reach_ids:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InputError("comids", "must be positive integers", value=value)
        if value not in ids:
            ids.append(value)
    if not ids:
        raise InputError("comids", "at least one comid is required", value=[])
    if len(ids) > MAX_FLOW_REACHES:
        raise InputError("comids", f"at most {MAX_FLOW_REACHES} comids per request", value=len(ids))
    return ids


def best_reach_flow(flows: Sequence[ReachFlow]) -> ReachFlow | None:
    best: ReachFlow | None = None
    for flow in flows:
        if flow.source == "none":
            continue
        if best is None or flow.confidence > best.confidence:
            best = flow
    return best


def find_route(
    edges: Sequence[Edge],
    start_snap: SnapResult,
    end_snap: SnapResult,
    *,
    allow_upstream: bool,
) -> PathResult:
    """Search ``virtual_start -> virtual_end``; diagnose direction on failure.

    When no route exists, the search is repeated with the snap roles swapped.
    Success there means the points are connected only against the permitted
    direction, which is reported as :class:`UpstreamOnlySuggestSwap`.
    """
    graph = build_graph(edges, start_snap, end_snap, allow_upstream=allow_upstream)
    try:
        return shortest_path(graph, VIRTUAL_START, VIRTUAL_END)
    except PathNotFoundError as e:
        swapped = build_graph(edges, end_snap, start_snap, allow_upstream=allow_upstream)
        try:
            shortest_path(swapped, VIRTUAL_START, VIRTUAL_END)
        except PathNotFoundError:
            raise NoRouteFound(allow_upstream=allow_upstream) from e
        raise UpstreamOnlySuggestSwap() from e


class RouteEngine:
    """Put-in to take-out routing over the river network.

    Every call snaps, fetches and builds its own graph; the engine holds no
    per-request state.
    """

    def __init__(
        self,
        repository: EdgeRepository,
        *,
        live_feed: LiveConditionsFeed | None = None,
        snap_max_distance_m: float = DEFAULT_MAX_SNAP_DISTANCE_M,
        bbox_buffer_deg: float = 0.5,
        bounds: CoordinateBounds = CONUS_BOUNDS,
    ) -> None:
        self.repository = repository
        self.live_feed = live_feed
        self.snapper = Snapper(repository, max_distance_m=snap_max_distance_m)
        self.bbox_buffer_deg = float(bbox_buffer_deg)
        self.bounds = bounds

    def bounding_box(self, start: LngLat, end: LngLat) -> tuple[float, float, float, float]:
        buffer = self.bbox_buffer_deg
        return (
            min(start[0], end[0]) - buffer,
            min(start[1], end[1]) - buffer,
            max(start[0], end[0]) + buffer,
            max(start[1], end[1]) + buffer,
        )

    async def snap(self, point: LngLat, *, which: str = "point") -> SnapResult:
        return await self.snapper.nearest(validate_point(which, point, self.bounds), which=which)

    async def reach_flows(self, reach_ids: Sequence[int]) -> list[ReachFlow]:
        """Current flow per reach, in request order.

        Values stored with the network win; the live feed fills reaches the
        store has nothing for, and anything left reports ``source="none"``.
        """
        ids = validate_reach_ids(reach_ids)
        stored = await self.repository.reach_flows(ids)
        live = await self.live_feed.snapshot() if self.live_feed is not None else EMPTY_SNAPSHOT
        return [stored.get(comid) or ReachFlow.from_snapshot(comid, live) for comid in ids]

    async def compute_route(
        self,
        start: LngLat,
        end: LngLat,
        *,
        flow_condition: FlowCondition | str = FlowCondition.NORMAL,
        paddle_speed_mps: float = 0.0,
        allow_upstream: bool = True,
    ) -> RouteResult:
        start = validate_point("start", start, self.bounds)
        end = validate_point("end", end, self.bounds)
        flow = parse_flow_condition(flow_condition)
        paddle = validate_paddle_speed(paddle_speed_mps)

        start_snap = await self.snapper.nearest(start, which="start")
        end_snap = await self.snapper.nearest(end, which="end")

        bbox = self.bounding_box(start, end)
        edges = await self.repository.query_bounding_box(*bbox)
        if not edges:
            raise NoEdgesInArea(bbox)

        live = await self.live_feed.snapshot() if self.live_feed is not None else EMPTY_SNAPSHOT
        edges = LiveConditionsFeed.apply(edges, live)

        path = find_route(edges, start_snap, end_snap, allow_upstream=allow_upstream)
        stats = compute_stats(
            path.arcs,
            flow_condition=flow,
            paddle_speed_mps=paddle,
            data_timestamp=live.as_of,
        )
        return await assemble_route(
            self.repository,
            path.arcs,
            stats,
            start_snap=start_snap,
            end_snap=end_snap,
        )
