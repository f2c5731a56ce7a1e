from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Any

from .edge_repository import EdgeRepository
from .logging_utils import log_event
from .river_network import GraphArc, LngLat, Polyline, SnapResult
from .route_stats import RouteStats
from .routing_errors import EdgeDataError


@dataclass(frozen=True)
class RouteFeature:
    reach_id: int
    coordinates: tuple[LngLat, ...]
    name: str | None
    stream_order: int
    length_m: float
    is_virtual: bool
    is_upstream: bool
    fraction_start: float
    fraction_end: float


@dataclass(frozen=True)
class RouteResult:
    arcs: tuple[GraphArc, ...]
    features: tuple[RouteFeature, ...]
    polyline: tuple[LngLat, ...]
    stats: RouteStats
    start_snap: SnapResult
    end_snap: SnapResult
    warnings: tuple[str, ...]


_GeomKey = tuple[int, float, float]


def _geometry_key(arc: GraphArc) -> _GeomKey:
    edge = arc.edge
    if edge.is_virtual:
        return (edge.source_reach_id, edge.fraction_start, edge.fraction_end)
    return (edge.reach_id, 0.0, 1.0)


async def _fetch_geometry(repository: EdgeRepository, key: _GeomKey) -> Polyline:
    reach_id, frac_start, frac_end = key
    if frac_start == 0.0 and frac_end == 1.0:
        return await repository.geometry(reach_id)
    try:
        return await repository.clipped_geometry(reach_id, frac_start, frac_end)
    except EdgeDataError as e:
        log_event(
            "geometry_clip_failed",
            level=logging.WARNING,
            reach_id=reach_id,
            fraction_start=frac_start,
            fraction_end=frac_end,
            error=str(e),
        )
        return await repository.geometry(reach_id)


def join_polyline(parts: Sequence[Sequence[LngLat]]) -> tuple[LngLat, ...]:
    out: list[LngLat] = []
    for part in parts:
        for pt in part:
            if out and out[-1] == pt:
                continue
            out.append(pt)
    return tuple(out)


async def assemble_route(
    repository: EdgeRepository,
    arcs: Sequence[GraphArc],
    stats: RouteStats,
    *,
    start_snap: SnapResult,
    end_snap: SnapResult,
) -> RouteResult:
    """Attach geometry to the traversed arcs, in path order.

    Distinct geometries are fetched concurrently; upstream arcs are reversed so
    every feature runs in the direction of travel.
    """
    keys: list[_GeomKey] = []
    for arc in arcs:
        key = _geometry_key(arc)
        if key not in keys:
            keys.append(key)

    tasks: list[Awaitable[Polyline]] = [_fetch_geometry(repository, key) for key in keys]
    fetched = await asyncio.gather(*tasks)
    by_key: dict[_GeomKey, Polyline] = dict(zip(keys, fetched, strict=True))

    features: list[RouteFeature] = []
    for arc in arcs:
        edge = arc.edge
        coords = list(by_key[_geometry_key(arc)])
        if arc.upstream:
            coords.reverse()
        features.append(
            RouteFeature(
                reach_id=edge.source_reach_id,
                coordinates=tuple(coords),
                name=edge.name,
                stream_order=edge.stream_order,
                length_m=edge.length_m,
                is_virtual=edge.is_virtual,
                is_upstream=arc.upstream,
                fraction_start=edge.fraction_start,
                fraction_end=edge.fraction_end,
            )
        )

    return RouteResult(
        arcs=tuple(arcs),
        features=tuple(features),
        polyline=join_polyline([f.coordinates for f in features]),
        stats=stats,
        start_snap=start_snap,
        end_snap=end_snap,
        warnings=stats.warnings,
    )


def feature_collection(result: RouteResult) -> dict[str, Any]:
    """GeoJSON FeatureCollection of the traversed reaches."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "LineString", "coordinates": [list(pt) for pt in f.coordinates]},
                "properties": {
                    "comid": f.reach_id,
                    "gnis_name": f.name,
                    "stream_order": f.stream_order,
                    "length_m": f.length_m,
                    "is_virtual": f.is_virtual,
                    "is_upstream": f.is_upstream,
                    "fraction_start": f.fraction_start,
                    "fraction_end": f.fraction_end,
                },
            }
            for f in result.features
        ],
    }
