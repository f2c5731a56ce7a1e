from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .live_conditions import ReachFlow
from .river_network import Edge, LngLat, Polyline, SnapResult


class EdgeRepository(Protocol):
    """Read access to the river network store.

    Implementations validate rows into :class:`Edge` at this boundary; the
    routing core never sees raw store records.
    """

    async def query_bounding_box(
        self, min_lng: float, min_lat: float, max_lng: float, max_lat: float
    ) -> list[Edge]: ...

    async def nearest_edge(self, point: LngLat, max_distance_m: float) -> SnapResult | None: ...

    async def geometry(self, reach_id: int) -> Polyline: ...

    async def clipped_geometry(self, reach_id: int, frac_start: float, frac_end: float) -> Polyline: ...

    async def reach_flows(self, reach_ids: Sequence[int]) -> dict[int, ReachFlow]:
        """Stored live values for the given reaches; reaches without any are omitted."""
        ...
