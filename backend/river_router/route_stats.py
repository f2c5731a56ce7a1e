from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from .gradient import SEVERITY, GradientClass, classify_gradient, gradient_ft_per_mi
from .river_network import (
    CMS_TO_CFS,
    FLOW_MULTIPLIERS,
    FT_PER_M,
    M_PER_MI,
    MPS_TO_MPH,
    Edge,
    FlowCondition,
    GraphArc,
)

FlowStatus = Literal["low", "normal", "high"]

# Live velocities at or below this are treated as missing.
MIN_LIVE_VELOCITY_MPS = 0.01


@dataclass(frozen=True)
class SteepSection:
    start_m: float
    end_m: float
    gradient_ft_mi: float
    classification: GradientClass


@dataclass(frozen=True)
class ProfilePoint:
    dist_m: float
    elev_m: float
    gradient_ft_mi: float
    classification: GradientClass


@dataclass(frozen=True)
class DirectionSummary:
    is_upstream: bool
    upstream_segments: int
    downstream_segments: int
    impossible_segments: int
    paddle_speed_mps: float


@dataclass(frozen=True)
class LiveConditionsSummary:
    live_segments: int
    baseline_segments: int
    coverage_percent: int
    velocity_mph: float
    baseline_velocity_mph: float
    water_time_s: float
    baseline_time_s: float
    time_diff_s: float
    time_diff_percent: float
    avg_streamflow_cfs: float | None
    flow_status: FlowStatus
    data_timestamp: str | None


@dataclass(frozen=True)
class RouteStats:
    distance_m: float
    distance_mi: float
    time_s: float
    time_h: float
    time_is_lower_bound: bool
    elev_start_m: float | None
    elev_end_m: float | None
    elev_drop_ft: float
    elev_gain_ft: float
    gradient_ft_mi: float
    steep_sections: tuple[SteepSection, ...]
    elevation_profile: tuple[ProfilePoint, ...]
    segment_count: int
    waterways: tuple[str, ...]
    flow_condition: FlowCondition
    direction: DirectionSummary
    live_conditions: LiveConditionsSummary
    warnings: tuple[str, ...]


def water_velocity_mps(edge: Edge, flow_condition: FlowCondition) -> tuple[float, bool]:
    """Velocity used for ``edge`` and whether it came from live data.

    Live model velocity already reflects current conditions and is used as is;
    otherwise the mean-annual baseline is scaled by the flow-condition multiplier.
    """
    live = edge.live_velocity_mps
    if live is not None and live > MIN_LIVE_VELOCITY_MPS:
        return live, True
    return edge.baseline_velocity_mps * FLOW_MULTIPLIERS[flow_condition], False


def segment_time_s(length_m: float, water_mps: float, paddle_mps: float, *, upstream: bool) -> float | None:
    """Transit time for one segment, or None when paddling cannot beat the current."""
    if length_m <= 0:
        return 0.0
    if upstream:
        effective = paddle_mps - water_mps
        if effective <= 0:
            return None
    else:
        effective = paddle_mps + water_mps
    return length_m / effective


def flow_status_for(water_time_s: float, baseline_time_s: float) -> FlowStatus:
    if baseline_time_s <= 0:
        return "normal"
    if water_time_s < baseline_time_s * 0.85:
        return "high"
    if water_time_s > baseline_time_s * 1.15:
        return "low"
    return "normal"


class _SteepSpan:
    def __init__(self, start_m: float) -> None:
        self.start_m = start_m
        self.end_m = start_m
        self.drop_m = 0.0
        self.length_m = 0.0
        self.classification: GradientClass = "pool"

    def extend(self, length_m: float, drop_m: float, classification: GradientClass) -> None:
        self.end_m += length_m
        self.length_m += length_m
        self.drop_m += abs(drop_m)
        if SEVERITY[classification] > SEVERITY[self.classification]:
            self.classification = classification

    def close(self) -> SteepSection:
        return SteepSection(
            start_m=self.start_m,
            end_m=self.end_m,
            gradient_ft_mi=gradient_ft_per_mi(self.drop_m, self.length_m),
            classification=self.classification,
        )


def compute_stats(
    arcs: Sequence[GraphArc],
    *,
    flow_condition: FlowCondition,
    paddle_speed_mps: float,
    data_timestamp: str | None = None,
) -> RouteStats:
    total_distance = 0.0
    total_time = 0.0
    water_time = 0.0
    baseline_time = 0.0
    elev_start: float | None = None
    elev_end: float | None = None
    waterways: dict[str, None] = {}
    profile: list[ProfilePoint] = []
    steep: list[SteepSection] = []
    span: _SteepSpan | None = None
    upstream_count = 0
    impossible_count = 0
    live_count = 0
    streamflow_sum = 0.0
    streamflow_count = 0

    for arc in arcs:
        edge = arc.edge
        length = edge.length_m
        drop_m = edge.max_elev_m - edge.min_elev_m
        seg_gradient = gradient_ft_per_mi(drop_m, length)
        classification = classify_gradient(seg_gradient)

        if length > 0:
            if classification == "pool":
                if span is not None:
                    steep.append(span.close())
                    span = None
            else:
                if span is None:
                    span = _SteepSpan(total_distance)
                span.extend(length, drop_m, classification)

        entry = arc.entry_elev_m
        exit_ = arc.exit_elev_m
        if elev_start is None:
            elev_start = entry
        profile.append(ProfilePoint(total_distance, entry, seg_gradient, classification))
        total_distance += length
        profile.append(ProfilePoint(total_distance, exit_, seg_gradient, classification))
        elev_end = exit_

        velocity, is_live = water_velocity_mps(edge, flow_condition)
        if is_live:
            live_count += 1
        baseline_velocity = edge.baseline_velocity_mps * FLOW_MULTIPLIERS[flow_condition]
        if length > 0:
            water_time += length / velocity
            baseline_time += length / baseline_velocity

        if edge.live_streamflow_m3s is not None and edge.live_streamflow_m3s > 0:
            streamflow_sum += edge.live_streamflow_m3s
            streamflow_count += 1

        if arc.upstream:
            upstream_count += 1
        seg_time = segment_time_s(length, velocity, paddle_speed_mps, upstream=arc.upstream)
        if seg_time is None:
            impossible_count += 1
        else:
            total_time += seg_time

        if edge.name:
            waterways.setdefault(edge.name, None)

    if span is not None:
        steep.append(span.close())

    segment_count = len(arcs)
    distance_mi = total_distance / M_PER_MI
    elev_drop_ft = (elev_start - elev_end) * FT_PER_M if elev_start is not None and elev_end is not None else 0.0
    elev_gain_ft = -elev_drop_ft if elev_drop_ft < 0 else 0.0
    is_upstream = upstream_count > segment_count / 2

    warnings: list[str] = []
    if is_upstream:
        warnings.append(
            f"Route is predominantly upstream ({upstream_count} of {segment_count} segments) "
            f"and gains {round(elev_gain_ft)} ft in elevation."
        )
    if impossible_count > 0:
        warnings.append(
            f"{impossible_count} segments impossible at this paddle speed "
            f"({paddle_speed_mps * MPS_TO_MPH:.1f} mph): the current is faster than you can paddle, "
            "so the reported time is a lower bound."
        )

    baseline_segments = segment_count - live_count
    live = LiveConditionsSummary(
        live_segments=live_count,
        baseline_segments=baseline_segments,
        coverage_percent=round(live_count / (segment_count or 1) * 100),
        velocity_mph=(total_distance / water_time) * MPS_TO_MPH if water_time > 0 else 0.0,
        baseline_velocity_mph=(total_distance / baseline_time) * MPS_TO_MPH if baseline_time > 0 else 0.0,
        water_time_s=water_time,
        baseline_time_s=baseline_time,
        time_diff_s=baseline_time - water_time,
        time_diff_percent=((baseline_time - water_time) / baseline_time) * 100 if baseline_time > 0 else 0.0,
        avg_streamflow_cfs=(streamflow_sum / streamflow_count) * CMS_TO_CFS if streamflow_count else None,
        flow_status=flow_status_for(water_time, baseline_time),
        data_timestamp=data_timestamp,
    )

    return RouteStats(
        distance_m=total_distance,
        distance_mi=distance_mi,
        time_s=total_time,
        time_h=total_time / 3600.0,
        time_is_lower_bound=impossible_count > 0,
        elev_start_m=elev_start,
        elev_end_m=elev_end,
        elev_drop_ft=elev_drop_ft,
        elev_gain_ft=elev_gain_ft,
        gradient_ft_mi=abs(elev_drop_ft) / distance_mi if distance_mi > 0 else 0.0,
        steep_sections=tuple(steep),
        elevation_profile=tuple(profile),
        segment_count=segment_count,
        waterways=tuple(waterways),
        flow_condition=flow_condition,
        direction=DirectionSummary(
            is_upstream=is_upstream,
            upstream_segments=upstream_count,
            downstream_segments=segment_count - upstream_count,
            impossible_segments=impossible_count,
            paddle_speed_mps=paddle_speed_mps,
        ),
        live_conditions=live,
        warnings=tuple(warnings),
    )
