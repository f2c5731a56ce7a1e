from __future__ import annotations

from .edge_repository import EdgeRepository
from .river_network import LngLat, SnapResult
from .routing_errors import PointTooFarFromNetwork

DEFAULT_MAX_SNAP_DISTANCE_M = 5000.0


class Snapper:
    """Projects put-in/take-out points onto the nearest river reach."""

    def __init__(self, repository: EdgeRepository, *, max_distance_m: float = DEFAULT_MAX_SNAP_DISTANCE_M) -> None:
        self._repository = repository
        self.max_distance_m = float(max_distance_m)

    async def nearest(self, point: LngLat, *, which: str = "point") -> SnapResult:
        snap = await self._repository.nearest_edge(point, self.max_distance_m)
        if snap is None:
            raise PointTooFarFromNetwork(which, distance_m=None, max_distance_m=self.max_distance_m)
        if snap.distance_m > self.max_distance_m:
            raise PointTooFarFromNetwork(which, distance_m=snap.distance_m, max_distance_m=self.max_distance_m)
        return snap
