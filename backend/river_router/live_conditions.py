from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from .logging_utils import log_event
from .river_network import Edge


@dataclass(frozen=True)
class LiveSnapshot:
    """One refresh of the live hydrologic model feed."""

    as_of: str | None
    velocities_mps: Mapping[int, float] = field(default_factory=dict)
    streamflows_m3s: Mapping[int, float] = field(default_factory=dict)


EMPTY_SNAPSHOT = LiveSnapshot(as_of=None)


@dataclass(frozen=True)
class ReachFlow:
    """Current modelled flow on one reach; ``source`` is ``"nwm"`` or ``"none"``."""

    comid: int
    source: str = "none"
    velocity_mps: float | None = None
    streamflow_m3s: float | None = None
    updated_at: str | None = None

    @property
    def confidence(self) -> float:
        return 0.5 if self.source == "nwm" else 0.0

    @classmethod
    def from_snapshot(cls, comid: int, snapshot: LiveSnapshot) -> ReachFlow:
        velocity = snapshot.velocities_mps.get(comid)
        streamflow = snapshot.streamflows_m3s.get(comid)
        if velocity is None and streamflow is None:
            return cls(comid=comid)
        return cls(
            comid=comid,
            source="nwm",
            velocity_mps=velocity,
            streamflow_m3s=streamflow,
            updated_at=snapshot.as_of,
        )


Clock = Callable[[], float]
SnapshotLoader = Callable[[], Awaitable[LiveSnapshot]]


class LiveConditionsFeed:
    """Owned, injectable cache of the live conditions feed.

    The snapshot is reloaded through ``loader`` once it is older than ``ttl_s``
    on ``clock``. A failed reload keeps serving the previous snapshot (marked
    stale) until the next TTL window.
    """

    def __init__(self, *, loader: SnapshotLoader | None, ttl_s: float, clock: Clock = time.monotonic) -> None:
        self._loader = loader
        self._ttl_s = max(1.0, float(ttl_s))
        self._clock = clock
        self._lock = asyncio.Lock()
        self._snapshot: LiveSnapshot | None = None
        self._loaded_at: float | None = None
        self._last_refresh_failed = False

    def _expired(self, now: float) -> bool:
        return self._loaded_at is None or (now - self._loaded_at) >= self._ttl_s

    async def snapshot(self) -> LiveSnapshot:
        async with self._lock:
            now = self._clock()
            if not self._expired(now):
                return self._snapshot or EMPTY_SNAPSHOT
            await self._refresh(now)
            return self._snapshot or EMPTY_SNAPSHOT

    async def _refresh(self, now: float) -> None:
        if self._loader is None:
            self._snapshot = EMPTY_SNAPSHOT
            self._loaded_at = now
            return
        try:
            fresh = await self._loader()
        except Exception as e:  # the feed is optional; routing falls back to baseline velocities
            self._last_refresh_failed = True
            self._loaded_at = now
            log_event(
                "live_conditions_refresh_failed",
                error_type=type(e).__name__,
                error=str(e),
                serving_previous=self._snapshot is not None,
            )
            return
        self._snapshot = fresh
        self._loaded_at = now
        self._last_refresh_failed = False
        log_event(
            "live_conditions_refreshed",
            as_of=fresh.as_of,
            reach_count=len(fresh.velocities_mps),
        )

    async def timestamp(self) -> str | None:
        return (await self.snapshot()).as_of

    def is_stale(self) -> bool:
        if self._snapshot is None or self._last_refresh_failed:
            return True
        return self._expired(self._clock())

    def status(self) -> dict[str, Any]:
        age_s = None if self._loaded_at is None else round(max(0.0, self._clock() - self._loaded_at), 3)
        return {
            "as_of": self._snapshot.as_of if self._snapshot is not None else None,
            "age_s": age_s,
            "ttl_s": self._ttl_s,
            "stale": self.is_stale(),
            "last_refresh_failed": self._last_refresh_failed,
        }

    @staticmethod
    def apply(edges: Iterable[Edge], snapshot: LiveSnapshot) -> list[Edge]:
        """Fill live velocity/streamflow on edges the store left without them."""
        if not snapshot.velocities_mps and not snapshot.streamflows_m3s:
            return list(edges)
        out: list[Edge] = []
        for edge in edges:
            velocity = edge.live_velocity_mps
            streamflow = edge.live_streamflow_m3s
            if velocity is None:
                velocity = snapshot.velocities_mps.get(edge.reach_id)
            if streamflow is None:
                streamflow = snapshot.streamflows_m3s.get(edge.reach_id)
            if velocity is edge.live_velocity_mps and streamflow is edge.live_streamflow_m3s:
                out.append(edge)
            else:
                out.append(replace(edge, live_velocity_mps=velocity, live_streamflow_m3s=streamflow))
        return out


def _as_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_live_payload(payload: Any) -> LiveSnapshot:
    """Parse ``{"updated_at": ..., "reaches": {comid: {"velocity_ms", "streamflow_cms"}}}``.

    ``reaches`` may also be a list of objects carrying their own ``comid``.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("live conditions payload must be a JSON object")
    raw = payload.get("reaches") or {}
    if isinstance(raw, Mapping):
        items = [(key, value) for key, value in raw.items()]
    elif isinstance(raw, list):
        items = [(item.get("comid"), item) for item in raw if isinstance(item, Mapping)]
    else:
        raise ValueError("live conditions 'reaches' must be an object or a list")

    velocities: dict[int, float] = {}
    streamflows: dict[int, float] = {}
    for key, value in items:
        if not isinstance(value, Mapping):
            continue
        try:
            comid = int(key)
        except (TypeError, ValueError):
            continue
        velocity = _as_float(value.get("velocity_ms"))
        streamflow = _as_float(value.get("streamflow_cms"))
        if velocity is not None:
            velocities[comid] = velocity
        if streamflow is not None:
            streamflows[comid] = streamflow
    as_of = payload.get("updated_at") or payload.get("as_of")
    return LiveSnapshot(
        as_of=str(as_of) if as_of is not None else None,
        velocities_mps=velocities,
        streamflows_m3s=streamflows,
    )


class HttpLiveConditionsLoader:
    """Fetch the live feed document over HTTP."""

    def __init__(self, *, url: str, timeout_s: float = 20.0) -> None:
        self.url = url
        # IMPORTANT: trust_env=False keeps proxy env vars from hijacking internal feed hosts.
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            trust_env=False,
            headers={"accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __call__(self) -> LiveSnapshot:
        resp = await self._client.get(self.url)
        resp.raise_for_status()
        return parse_live_payload(resp.json())
