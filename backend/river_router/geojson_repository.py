from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from shapely.geometry import LineString, MultiLineString, Point, box, shape
from shapely.ops import linemerge, substring
from shapely.strtree import STRtree

from .live_conditions import ReachFlow
from .river_network import Edge, LngLat, Polyline, SnapResult, edge_from_row
from .routing_errors import EdgeDataError

EARTH_RADIUS_M = 6_371_000.0


def _haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def _as_line(reach_id: int, geometry: Any) -> LineString:
    if not isinstance(geometry, Mapping):
        raise EdgeDataError(reach_id, "geometry", "is missing")
    try:
        geom = shape(geometry)
    except (AttributeError, TypeError, ValueError) as e:
        raise EdgeDataError(reach_id, "geometry", f"is invalid ({e})") from e
    if isinstance(geom, MultiLineString):
        geom = linemerge(geom)
    if not isinstance(geom, LineString) or geom.is_empty or len(geom.coords) < 2:
        raise EdgeDataError(reach_id, "geometry", f"is not a LineString ({geom.geom_type})")
    return geom


def _coords(geom: Any) -> Polyline:
    return [(float(x), float(y)) for x, y, *_ in geom.coords]


class GeoJSONEdgeRepository:
    """In-memory river network backed by a shapely STRtree.

    Each feature is one reach: a LineString digitised upstream to downstream with
    the ``river_edges`` columns (``comid``, ``from_node``, ``to_node``,
    ``lengthkm``, ...) as properties. Distances for ranking use planar degrees
    like the PostGIS ``<->`` operator; reported snap distances are haversine meters.
    """

    def __init__(self, edges: list[Edge], lines: list[LineString]) -> None:
        if len(edges) != len(lines):
            raise ValueError("edges and lines must align")
        self._edges = edges
        self._lines = lines
        self._by_id: dict[int, int] = {}
        for idx, edge in enumerate(edges):
            self._by_id.setdefault(edge.reach_id, idx)
        self._tree = STRtree(lines)

    @classmethod
    def from_geojson(cls, payload: Mapping[str, Any]) -> GeoJSONEdgeRepository:
        features = payload.get("features")
        if not isinstance(features, list):
            raise ValueError("GeoJSON payload must be a FeatureCollection")
        edges: list[Edge] = []
        lines: list[LineString] = []
        for feature in features:
            if not isinstance(feature, Mapping):
                continue
            props = feature.get("properties") or {}
            edge = edge_from_row(props)
            edges.append(edge)
            lines.append(_as_line(edge.reach_id, feature.get("geometry")))
        return cls(edges, lines)

    @classmethod
    def from_path(cls, path: str | Path) -> GeoJSONEdgeRepository:
        with open(path, encoding="utf-8") as fh:
            return cls.from_geojson(json.load(fh))

    def __len__(self) -> int:
        return len(self._edges)

    def _line(self, reach_id: int) -> LineString:
        idx = self._by_id.get(int(reach_id))
        if idx is None:
            raise EdgeDataError(reach_id, "geometry", "is missing")
        return self._lines[idx]

    async def query_bounding_box(
        self, min_lng: float, min_lat: float, max_lng: float, max_lat: float
    ) -> list[Edge]:
        hits = self._tree.query(box(min_lng, min_lat, max_lng, max_lat))
        return [self._edges[int(i)] for i in sorted(int(h) for h in hits)]

    async def nearest_edge(self, point: LngLat, max_distance_m: float) -> SnapResult | None:
        if not self._edges:
            return None
        pt = Point(point[0], point[1])
        idx = int(self._tree.nearest(pt))
        edge = self._edges[idx]
        line = self._lines[idx]
        fraction = float(line.project(pt, normalized=True))
        snapped = line.interpolate(fraction, normalized=True)
        distance_m = _haversine_m(point[1], point[0], snapped.y, snapped.x)
        return SnapResult(
            reach_id=edge.reach_id,
            fraction=min(1.0, max(0.0, fraction)),
            snapped_point=(float(snapped.x), float(snapped.y)),
            distance_m=distance_m,
            name=edge.name,
            stream_order=edge.stream_order,
            from_node=edge.from_node,
            to_node=edge.to_node,
        )

    async def geometry(self, reach_id: int) -> Polyline:
        return _coords(self._line(reach_id))

    async def clipped_geometry(self, reach_id: int, frac_start: float, frac_end: float) -> Polyline:
        line = self._line(reach_id)
        return _coords(substring(line, frac_start, frac_end, normalized=True))

    async def reach_flows(self, reach_ids: Sequence[int]) -> dict[int, ReachFlow]:
        out: dict[int, ReachFlow] = {}
        for reach_id in reach_ids:
            idx = self._by_id.get(int(reach_id))
            if idx is None:
                continue
            edge = self._edges[idx]
            if edge.live_velocity_mps is None and edge.live_streamflow_m3s is None:
                continue
            out[edge.reach_id] = ReachFlow(
                comid=edge.reach_id,
                source="nwm",
                velocity_mps=edge.live_velocity_mps,
                streamflow_m3s=edge.live_streamflow_m3s,
            )
        return out

