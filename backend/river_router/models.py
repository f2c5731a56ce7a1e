from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .live_conditions import ReachFlow
from .river_network import CMS_TO_CFS, FT_PER_M, MPS_TO_MPH, SnapResult
from .route_assembler import RouteResult, feature_collection
from .route_stats import RouteStats


class LngLat(BaseModel):
    lng: float
    lat: float

    @field_validator("lng", "lat")
    @classmethod
    def finite(cls, v: float) -> float:
        if v != v or v in (float("inf"), float("-inf")):
            raise ValueError("coordinate must be finite")
        return v


class RouteRequest(BaseModel):
    start: LngLat
    end: LngLat
    flow: str = "normal"
    # None means the configured default paddle speed.
    paddle_speed_mph: float | None = Field(default=None, ge=0.0, le=10.0)
    allow_upstream: bool = True


class GeoJSONLineString(BaseModel):
    type: Literal["LineString"]
    coordinates: list[tuple[float, float]]  # [lng, lat]


class SteepSectionOut(BaseModel):
    start_m: float
    end_m: float
    gradient_ft_mi: float
    classification: str


class ProfilePointOut(BaseModel):
    dist_m: float
    elev_m: float
    gradient_ft_mi: float
    classification: str


class DirectionOut(BaseModel):
    is_upstream: bool
    upstream_segments: int
    downstream_segments: int
    impossible_segments: int
    paddle_speed_mph: float


class LiveConditionsOut(BaseModel):
    live_segments: int
    baseline_segments: int
    coverage_percent: int
    velocity_mph: float
    baseline_velocity_mph: float
    baseline_time_s: int
    baseline_time_h: float
    time_diff_s: int
    time_diff_percent: int
    avg_streamflow_cfs: float | None = None
    flow_status: Literal["low", "normal", "high"]
    data_timestamp: str | None = None


class RouteStatsOut(BaseModel):
    distance_m: int
    distance_mi: float
    time_s: int
    time_h: float
    time_is_lower_bound: bool
    elev_start_m: float | None = None
    elev_end_m: float | None = None
    elev_drop_ft: int
    elev_gain_ft: int
    gradient_ft_mi: float
    steep_sections: list[SteepSectionOut]
    elevation_profile: list[ProfilePointOut]
    segment_count: int
    waterways: list[str]
    flow_condition: str
    direction: DirectionOut
    live_conditions: LiveConditionsOut

    @classmethod
    def from_stats(cls, stats: RouteStats) -> RouteStatsOut:
        live = stats.live_conditions
        return cls(
            distance_m=round(stats.distance_m),
            distance_mi=round(stats.distance_mi, 1),
            time_s=round(stats.time_s),
            time_h=round(stats.time_h, 1),
            time_is_lower_bound=stats.time_is_lower_bound,
            elev_start_m=stats.elev_start_m,
            elev_end_m=stats.elev_end_m,
            elev_drop_ft=round(stats.elev_drop_ft),
            elev_gain_ft=round(stats.elev_gain_ft),
            gradient_ft_mi=round(stats.gradient_ft_mi, 1),
            steep_sections=[
                SteepSectionOut(
                    start_m=round(s.start_m, 1),
                    end_m=round(s.end_m, 1),
                    gradient_ft_mi=round(s.gradient_ft_mi, 1),
                    classification=s.classification,
                )
                for s in stats.steep_sections
            ],
            elevation_profile=[
                ProfilePointOut(
                    dist_m=round(p.dist_m, 1),
                    elev_m=round(p.elev_m, 2),
                    gradient_ft_mi=round(p.gradient_ft_mi, 1),
                    classification=p.classification,
                )
                for p in stats.elevation_profile
            ],
            segment_count=stats.segment_count,
            waterways=list(stats.waterways),
            flow_condition=stats.flow_condition.value,
            direction=DirectionOut(
                is_upstream=stats.direction.is_upstream,
                upstream_segments=stats.direction.upstream_segments,
                downstream_segments=stats.direction.downstream_segments,
                impossible_segments=stats.direction.impossible_segments,
                paddle_speed_mph=round(stats.direction.paddle_speed_mps * MPS_TO_MPH, 2),
            ),
            live_conditions=LiveConditionsOut(
                live_segments=live.live_segments,
                baseline_segments=live.baseline_segments,
                coverage_percent=live.coverage_percent,
                velocity_mph=round(live.velocity_mph, 1),
                baseline_velocity_mph=round(live.baseline_velocity_mph, 1),
                baseline_time_s=round(live.baseline_time_s),
                baseline_time_h=round(live.baseline_time_s / 3600.0, 1),
                time_diff_s=round(live.time_diff_s),
                time_diff_percent=round(live.time_diff_percent),
                avg_streamflow_cfs=(
                    round(live.avg_streamflow_cfs, 1) if live.avg_streamflow_cfs is not None else None
                ),
                flow_status=live.flow_status,
                data_timestamp=live.data_timestamp,
            ),
        )


class SnapOut(BaseModel):
    reach_id: int
    fraction: float
    snapped_point: LngLat
    distance_m: int
    name: str | None = None
    stream_order: int | None = None
    node_id: str | None = None

    @classmethod
    def from_snap(cls, snap: SnapResult) -> SnapOut:
        return cls(
            reach_id=snap.reach_id,
            fraction=snap.fraction,
            snapped_point=LngLat(lng=snap.snapped_point[0], lat=snap.snapped_point[1]),
            distance_m=round(snap.distance_m),
            name=snap.name,
            stream_order=snap.stream_order,
            node_id=snap.nearest_node,
        )


class RouteSnaps(BaseModel):
    start: SnapOut
    end: SnapOut


class RouteResponse(BaseModel):
    route: dict[str, Any]  # GeoJSON FeatureCollection, one feature per traversed reach
    geometry: GeoJSONLineString
    stats: RouteStatsOut
    snap: RouteSnaps
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: RouteResult) -> RouteResponse:
        return cls(
            route=feature_collection(result),
            geometry=GeoJSONLineString(type="LineString", coordinates=list(result.polyline)),
            stats=RouteStatsOut.from_stats(result.stats),
            snap=RouteSnaps(
                start=SnapOut.from_snap(result.start_snap),
                end=SnapOut.from_snap(result.end_snap),
            ),
            warnings=list(result.warnings),
        )


class ReachFlowOut(BaseModel):
    comid: int
    source: Literal["nwm", "none"]
    confidence: float
    velocity_ms: float | None = None
    velocity_fps: float | None = None
    flow_cms: float | None = None
    flow_cfs: float | None = None
    updated_at: str | None = None

    @classmethod
    def from_flow(cls, flow: ReachFlow) -> ReachFlowOut:
        velocity = flow.velocity_mps
        streamflow = flow.streamflow_m3s
        return cls(
            comid=flow.comid,
            source="nwm" if flow.source == "nwm" else "none",
            confidence=flow.confidence,
            velocity_ms=velocity,
            velocity_fps=round(velocity * FT_PER_M, 3) if velocity is not None else None,
            flow_cms=streamflow,
            flow_cfs=round(streamflow * CMS_TO_CFS, 1) if streamflow is not None else None,
            updated_at=flow.updated_at,
        )


class FlowResponse(BaseModel):
    reaches: list[ReachFlowOut]
    best: ReachFlowOut | None = None


class ErrorResponse(BaseModel):
    error: str
    reason_code: str
    details: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    status: str
    engine_ready: bool
    edge_source: str
    live_conditions: dict[str, Any] | None = None
