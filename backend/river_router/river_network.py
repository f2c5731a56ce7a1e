from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .routing_errors import EdgeDataError

FT_PER_M = 3.28084
M_PER_FT = 0.3048
M_PER_MI = 1609.344
MPS_TO_MPH = 2.23694
MPH_TO_MPS = 0.44704
CMS_TO_CFS = 35.3147

# Baseline velocity used when the store has none for a reach (ft/s).
DEFAULT_VELOCITY_FPS = 1.0

VIRTUAL_START = "virtual_start"
VIRTUAL_END = "virtual_end"

LngLat = tuple[float, float]
Polyline = list[LngLat]


class FlowCondition(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


FLOW_MULTIPLIERS: dict[FlowCondition, float] = {
    FlowCondition.LOW: 1.0,
    FlowCondition.NORMAL: 1.5,
    FlowCondition.HIGH: 2.0,
}


@dataclass(frozen=True)
class Edge:
    """A directed river reach; ``from_node`` is upstream of ``to_node``.

    Virtual edges are produced by the graph builder when a route starts or ends
    part-way along a reach. They keep the reach id, carry ``original_id`` and the
    ``[fraction_start, fraction_end]`` sub-range they cover, and their elevations
    are interpolated over that sub-range.
    """

    reach_id: int
    from_node: str
    to_node: str
    length_m: float
    name: str | None
    stream_order: int
    baseline_velocity_mps: float
    min_elev_m: float
    max_elev_m: float
    live_velocity_mps: float | None = None
    live_streamflow_m3s: float | None = None
    original_id: int | None = None
    fraction_start: float = 0.0
    fraction_end: float = 1.0

    @property
    def is_virtual(self) -> bool:
        return self.original_id is not None

    @property
    def source_reach_id(self) -> int:
        return self.original_id if self.original_id is not None else self.reach_id

    def elevation_at(self, fraction: float) -> float:
        return self.max_elev_m - (self.max_elev_m - self.min_elev_m) * fraction


@dataclass(frozen=True)
class SnapResult:
    reach_id: int
    fraction: float
    snapped_point: LngLat
    distance_m: float
    name: str | None = None
    stream_order: int | None = None
    from_node: str | None = None
    to_node: str | None = None

    @property
    def nearest_node(self) -> str | None:
        return self.from_node if self.fraction < 0.5 else self.to_node


@dataclass(frozen=True)
class GraphArc:
    """One traversable arc of the routing graph."""

    to: str
    edge: Edge
    upstream: bool = False

    @property
    def cost(self) -> float:
        return self.edge.length_m

    @property
    def entry_elev_m(self) -> float:
        return self.edge.min_elev_m if self.upstream else self.edge.max_elev_m

    @property
    def exit_elev_m(self) -> float:
        return self.edge.max_elev_m if self.upstream else self.edge.min_elev_m


Graph = dict[str, list[GraphArc]]


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(out):
        return None
    return out


def _required_float(row: Mapping[str, Any], key: str, reach_id: Any) -> float:
    value = _optional_float(row.get(key))
    if value is None:
        raise EdgeDataError(reach_id, key, "is missing or not a finite number")
    return value


def _required_node(row: Mapping[str, Any], key: str, reach_id: Any) -> str:
    value = row.get(key)
    if value is None or str(value).strip() == "":
        raise EdgeDataError(reach_id, key, "is missing")
    return str(value)


def edge_from_row(row: Mapping[str, Any]) -> Edge:
    """Validate one store row into an :class:`Edge`.

    Accepts the column names of the ``river_edges`` table (``comid``,
    ``lengthkm``, ``gnis_name``, ``velocity_fps``, ``nwm_velocity_ms`` ...)
    as well as the field names of :class:`Edge` itself.
    """
    raw_id = row.get("reach_id", row.get("comid"))
    if raw_id is None:
        raise EdgeDataError(None, "reach_id", "is missing")
    try:
        reach_id = int(raw_id)
    except (TypeError, ValueError) as e:
        raise EdgeDataError(raw_id, "reach_id", "is not an integer") from e

    from_node = _required_node(row, "from_node", reach_id)
    to_node = _required_node(row, "to_node", reach_id)

    if "length_m" in row:
        length_m = _required_float(row, "length_m", reach_id)
    else:
        length_m = _required_float(row, "lengthkm", reach_id) * 1000.0
    if length_m <= 0.0:
        raise EdgeDataError(reach_id, "length_m", "must be positive")

    min_elev_m = _required_float(row, "min_elev_m", reach_id)
    max_elev_m = _required_float(row, "max_elev_m", reach_id)

    if "baseline_velocity_mps" in row:
        baseline = _optional_float(row.get("baseline_velocity_mps"))
    else:
        fps = _optional_float(row.get("velocity_fps"))
        baseline = fps * M_PER_FT if fps is not None else None
    if not baseline:
        baseline = DEFAULT_VELOCITY_FPS * M_PER_FT
    baseline = abs(baseline)

    live_velocity = _optional_float(row.get("live_velocity_mps", row.get("nwm_velocity_ms")))
    live_streamflow = _optional_float(row.get("live_streamflow_m3s", row.get("nwm_streamflow_cms")))

    name = row.get("name", row.get("gnis_name"))
    stream_order = _optional_float(row.get("stream_order"))

    return Edge(
        reach_id=reach_id,
        from_node=from_node,
        to_node=to_node,
        length_m=length_m,
        name=str(name) if name else None,
        stream_order=int(stream_order) if stream_order is not None else 0,
        baseline_velocity_mps=baseline,
        min_elev_m=min_elev_m,
        max_elev_m=max_elev_m,
        live_velocity_mps=live_velocity,
        live_streamflow_m3s=live_streamflow,
    )


def polyline_from_geojson(reach_id: Any, geometry: Any) -> Polyline:
    """Coordinates of a GeoJSON LineString (or MultiLineString, concatenated)."""
    if not isinstance(geometry, Mapping):
        raise EdgeDataError(reach_id, "geometry", "is missing")
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")
    if geom_type == "MultiLineString" and isinstance(coords, list):
        parts = [part for part in coords if isinstance(part, list)]
        coords = [pt for part in parts for pt in part]
    elif geom_type == "Point" and isinstance(coords, (list, tuple)):
        coords = [coords]
    elif geom_type != "LineString":
        raise EdgeDataError(reach_id, "geometry", f"has unsupported type {geom_type!r}")
    if not isinstance(coords, list):
        raise EdgeDataError(reach_id, "geometry", "has no coordinates")

    out: Polyline = []
    for pt in coords:
        if (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and isinstance(pt[0], (int, float))
            and isinstance(pt[1], (int, float))
        ):
            out.append((float(pt[0]), float(pt[1])))
    if not out:
        raise EdgeDataError(reach_id, "geometry", "has no valid coordinates")
    return out
