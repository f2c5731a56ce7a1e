from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from .live_conditions import LiveSnapshot, ReachFlow
from .river_network import Edge, LngLat, Polyline, SnapResult, edge_from_row, polyline_from_geojson
from .routing_errors import EdgeDataError, EdgeSourceUnavailable

_BBOX_SQL = """
    SELECT
      r.comid,
      r.from_node::text AS from_node,
      r.to_node::text AS to_node,
      r.lengthkm,
      r.gnis_name,
      r.stream_order,
      r.velocity_fps,
      r.min_elev_m,
      r.max_elev_m,
      n.velocity_ms AS nwm_velocity_ms,
      n.streamflow_cms AS nwm_streamflow_cms
    FROM river_edges r
    LEFT JOIN nwm_velocity n ON r.comid = n.comid
    WHERE r.geom && ST_MakeEnvelope(%s, %s, %s, %s, 4326)
      AND r.from_node IS NOT NULL
      AND r.to_node IS NOT NULL
    ORDER BY r.comid
"""

_NEAREST_SQL = """
    WITH click_point AS (
      SELECT ST_SetSRID(ST_MakePoint(%s, %s), 4326) AS pt
    )
    SELECT
      e.comid,
      e.from_node::text AS from_node,
      e.to_node::text AS to_node,
      e.gnis_name,
      e.stream_order,
      ST_LineLocatePoint(e.geom, cp.pt) AS fraction,
      ST_X(ST_ClosestPoint(e.geom, cp.pt)) AS snap_lng,
      ST_Y(ST_ClosestPoint(e.geom, cp.pt)) AS snap_lat,
      ST_Distance(e.geom::geography, cp.pt::geography) AS dist_m
    FROM river_edges e, click_point cp
    WHERE e.from_node IS NOT NULL AND e.to_node IS NOT NULL
      AND ST_DWithin(e.geom::geography, cp.pt::geography, %s)
    ORDER BY e.geom <-> cp.pt
    LIMIT 1
"""

_GEOMETRY_SQL = "SELECT ST_AsGeoJSON(geom) AS geometry FROM river_edges WHERE comid = %s"

_CLIPPED_SQL = """
    SELECT ST_AsGeoJSON(ST_LineSubstring(geom, %s, %s)) AS geometry
    FROM river_edges
    WHERE comid = %s
"""

_LIVE_SQL = "SELECT max(updated_at) AS updated_at FROM nwm_velocity"

_REACH_FLOW_SQL = """
    SELECT comid, velocity_ms, streamflow_cms, updated_at
    FROM nwm_velocity
    WHERE comid = ANY(%s)
"""


def _iso_utc(value: Any) -> str | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
    return str(value) if value is not None else None


def _optional(value: Any) -> float | None:
    return float(value) if value is not None else None


def snap_from_row(row: dict[str, Any]) -> SnapResult:
    reach_id = row.get("comid")
    try:
        fraction = float(row["fraction"])
        snapped = (float(row["snap_lng"]), float(row["snap_lat"]))
        distance_m = float(row["dist_m"])
    except (KeyError, TypeError, ValueError) as e:
        raise EdgeDataError(reach_id, "geometry", "could not be projected") from e
    order = row.get("stream_order")
    return SnapResult(
        reach_id=int(reach_id),
        fraction=min(1.0, max(0.0, fraction)),
        snapped_point=snapped,
        distance_m=distance_m,
        name=row.get("gnis_name"),
        stream_order=int(order) if order is not None else None,
        from_node=row.get("from_node"),
        to_node=row.get("to_node"),
    )


def _geometry_from_row(reach_id: int, row: dict[str, Any] | None) -> Polyline:
    if row is None or row.get("geometry") is None:
        raise EdgeDataError(reach_id, "geometry", "is missing")
    raw = row["geometry"]
    payload = json.loads(raw) if isinstance(raw, str) else raw
    return polyline_from_geojson(reach_id, payload)


class PostgisEdgeRepository:
    """``river_edges`` / ``nwm_velocity`` tables through a psycopg2 connection pool.

    psycopg2 is blocking, so every query runs in a worker thread; concurrent
    geometry lookups each take their own pooled connection.
    """

    def __init__(self, dsn: str, *, max_connections: int = 10) -> None:
        if not dsn:
            raise EdgeSourceUnavailable("DATABASE_URL environment variable is not set", operation="connect")
        try:
            self._pool = ThreadedConnectionPool(1, max(1, int(max_connections)), dsn=dsn)
        except psycopg2.Error as e:
            raise EdgeSourceUnavailable(f"could not connect to edge store: {e}", operation="connect") from e

    def close(self) -> None:
        self._pool.closeall()

    def _fetch(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, tuple(params))
                rows = [dict(r) for r in cur.fetchall()]
            conn.commit()
            return rows
        except psycopg2.Error:
            # A dropped connection cannot roll back; the pool discards it below.
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    async def _query(self, sql: str, params: Sequence[Any], *, operation: str) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._fetch, sql, params)
        except psycopg2.Error as e:
            raise EdgeSourceUnavailable(f"edge store query failed: {e}", operation=operation) from e

    async def query_bounding_box(
        self, min_lng: float, min_lat: float, max_lng: float, max_lat: float
    ) -> list[Edge]:
        rows = await self._query(
            _BBOX_SQL, (min_lng, min_lat, max_lng, max_lat), operation="query_bounding_box"
        )
        return [edge_from_row(row) for row in rows]

    async def nearest_edge(self, point: LngLat, max_distance_m: float) -> SnapResult | None:
        lng, lat = point
        # Search a little past the limit so callers can report how far off the point was.
        rows = await self._query(
            _NEAREST_SQL, (lng, lat, float(max_distance_m) * 2.0), operation="nearest_edge"
        )
        if not rows:
            return None
        return snap_from_row(rows[0])

    async def geometry(self, reach_id: int) -> Polyline:
        rows = await self._query(_GEOMETRY_SQL, (reach_id,), operation="geometry")
        return _geometry_from_row(reach_id, rows[0] if rows else None)

    async def clipped_geometry(self, reach_id: int, frac_start: float, frac_end: float) -> Polyline:
        rows = await self._query(_CLIPPED_SQL, (frac_start, frac_end, reach_id), operation="clipped_geometry")
        return _geometry_from_row(reach_id, rows[0] if rows else None)

    async def live_snapshot(self) -> LiveSnapshot:
        """Freshness of the joined ``nwm_velocity`` table.

        Velocities themselves arrive with each bounding-box query, so the
        snapshot only carries the timestamp.
        """
        rows = await self._query(_LIVE_SQL, (), operation="live_snapshot")
        return LiveSnapshot(as_of=_iso_utc(rows[0].get("updated_at")) if rows else None)

    async def reach_flows(self, reach_ids: Sequence[int]) -> dict[int, ReachFlow]:
        rows = await self._query(_REACH_FLOW_SQL, (list(reach_ids),), operation="reach_flows")
        out: dict[int, ReachFlow] = {}
        for row in rows:
            comid = int(row["comid"])
            out[comid] = ReachFlow(
                comid=comid,
                source="nwm",
                velocity_mps=_optional(row.get("velocity_ms")),
                streamflow_m3s=_optional(row.get("streamflow_cms")),
                updated_at=_iso_utc(row.get("updated_at")),
            )
        return out
