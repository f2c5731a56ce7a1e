from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "invalid_input",
        "point_too_far_from_network",
        "no_edges_in_area",
        "no_route_found",
        "upstream_only_suggest_swap",
        "edge_data_invalid",
        "edge_source_unavailable",
    }
)


@dataclass
class RoutingError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    status_code: ClassVar[int] = 400

    def __str__(self) -> str:
        return self.message


class InputError(RoutingError):
    """A request parameter is out of range; raised before any graph work."""

    def __init__(self, field: str, message: str, *, value: Any = None) -> None:
        super().__init__(
            reason_code="invalid_input",
            message=f"{field}: {message}",
            details={"field": field, "value": value},
        )
        self.field = field


class PointTooFarFromNetwork(RoutingError):
    def __init__(self, which: str, *, distance_m: float | None, max_distance_m: float) -> None:
        super().__init__(
            reason_code="point_too_far_from_network",
            message=f"{which.capitalize()} point too far from river network",
            details={
                "which": which,
                "distance_m": round(distance_m) if distance_m is not None else None,
                "max_distance_m": max_distance_m,
            },
        )
        self.which = which


class NoEdgesInArea(RoutingError):
    status_code: ClassVar[int] = 404

    def __init__(self, bbox: tuple[float, float, float, float]) -> None:
        super().__init__(
            reason_code="no_edges_in_area",
            message="No rivers found in area",
            details={"bbox": list(bbox)},
        )


class NoRouteFound(RoutingError):
    status_code: ClassVar[int] = 404

    def __init__(self, *, allow_upstream: bool) -> None:
        super().__init__(
            reason_code="no_route_found",
            message="No route found between these points. They may not be connected.",
            details={"allow_upstream": allow_upstream},
        )


class UpstreamOnlySuggestSwap(RoutingError):
    status_code: ClassVar[int] = 404

    def __init__(self) -> None:
        super().__init__(
            reason_code="upstream_only_suggest_swap",
            message=(
                "No downstream route found. These points are connected in the other "
                "direction; swap the put-in and take-out or allow upstream travel."
            ),
            details={"suggest_swap": True},
        )


class EdgeSourceUnavailable(RoutingError):
    """The edge store refused a connection or failed part-way through a query."""

    status_code: ClassVar[int] = 503

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(
            reason_code="edge_source_unavailable",
            message=message,
            details={"operation": operation} if operation else None,
        )
        self.operation = operation


class EdgeDataError(RoutingError):
    """A row from the edge store is unusable (missing nodes, elevations or geometry)."""

    status_code: ClassVar[int] = 502

    def __init__(self, reach_id: Any, field: str, message: str) -> None:
        super().__init__(
            reason_code="edge_data_invalid",
            message=f"reach {reach_id}: {field} {message}",
            details={"reach_id": reach_id, "field": field},
        )
        self.reach_id = reach_id
        self.field = field


def normalize_reason_code(reason_code: str, *, default: str = "no_route_found") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
