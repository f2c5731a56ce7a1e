from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .geojson_repository import GeoJSONEdgeRepository
from .live_conditions import HttpLiveConditionsLoader, LiveConditionsFeed, SnapshotLoader
from .logging_utils import log_event
from .models import (
    ErrorResponse,
    FlowResponse,
    HealthResponse,
    ReachFlowOut,
    RouteRequest,
    RouteResponse,
    SnapOut,
)
from .river_network import MPH_TO_MPS
from .route_engine import CoordinateBounds, RouteEngine, best_reach_flow
from .routing_errors import InputError, RoutingError, normalize_reason_code
from .settings import settings


def build_engine() -> tuple[RouteEngine, list]:
    """Wire repository, live feed and engine from settings.

    Returns the engine and the resources to close on shutdown.
    """
    closers: list = []
    if settings.edge_source == "geojson":
        repository = GeoJSONEdgeRepository.from_path(settings.edges_geojson_path)
        loader: SnapshotLoader | None = None
    else:
        from .postgis_repository import PostgisEdgeRepository

        repository = PostgisEdgeRepository(settings.database_url, max_connections=settings.db_pool_max)
        closers.append(repository.close)
        loader = repository.live_snapshot

    if settings.live_conditions_url:
        http_loader = HttpLiveConditionsLoader(
            url=settings.live_conditions_url,
            timeout_s=settings.live_data_request_timeout_s,
        )
        closers.append(http_loader.aclose)
        loader = http_loader

    feed = LiveConditionsFeed(loader=loader, ttl_s=settings.live_data_cache_ttl_s)
    engine = RouteEngine(
        repository,
        live_feed=feed,
        snap_max_distance_m=settings.snap_max_distance_m,
        bbox_buffer_deg=settings.bbox_buffer_deg,
        bounds=CoordinateBounds(
            min_lng=settings.min_lng,
            max_lng=settings.max_lng,
            min_lat=settings.min_lat,
            max_lat=settings.max_lat,
        ),
    )
    return engine, closers


@asynccontextmanager
async def lifespan(app: FastAPI):
    closers: list = []
    try:
        app.state.engine, closers = build_engine()
    except (ValueError, OSError) as e:
        # Keep serving /health so the failure is visible; routing endpoints return 503.
        app.state.engine = None
        log_event(
            "edge_source_unavailable",
            level=logging.ERROR,
            edge_source=settings.edge_source,
            error=str(e),
        )
    yield
    for close in reversed(closers):
        result = close()
        if hasattr(result, "__await__"):
            await result


app = FastAPI(title="River Router", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoutingError)
async def routing_error_handler(_request: Request, exc: RoutingError) -> JSONResponse:
    body = ErrorResponse(
        error=exc.message,
        reason_code=normalize_reason_code(exc.reason_code),
        details=exc.details,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def route_engine(request: Request) -> RouteEngine:
    engine: RouteEngine | None = getattr(request.app.state, "engine", None)  # type: ignore[attr-defined]
    if engine is None:
        raise HTTPException(status_code=503, detail="River network not available")
    return engine


ERROR_RESPONSES: dict[int | str, dict] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

EngineDep = Annotated[RouteEngine, Depends(route_engine)]


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "River router is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    engine: RouteEngine | None = getattr(request.app.state, "engine", None)
    feed = engine.live_feed if engine is not None else None
    return HealthResponse(
        status="ok",
        engine_ready=engine is not None,
        edge_source=settings.edge_source,
        live_conditions=feed.status() if feed is not None else None,
    )


@app.get("/snap", response_model=SnapOut, responses=ERROR_RESPONSES)
async def snap_point(
    engine: EngineDep,
    lng: Annotated[float, Query()],
    lat: Annotated[float, Query()],
) -> SnapOut:
    t0 = time.perf_counter()
    snap = await engine.snap((lng, lat))
    log_event(
        "snap_request",
        point=[lng, lat],
        reach_id=snap.reach_id,
        fraction=round(snap.fraction, 4),
        distance_m=round(snap.distance_m, 1),
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return SnapOut.from_snap(snap)


def _parse_comids(raw: str) -> list[int]:
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise InputError("comids", "must be comma-separated integers", value=raw) from e


@app.get("/flow", response_model=FlowResponse, responses=ERROR_RESPONSES)
async def reach_flow(
    engine: EngineDep,
    comid: Annotated[int | None, Query()] = None,
    comids: Annotated[str | None, Query()] = None,
) -> FlowResponse:
    if comid is None and not comids:
        raise InputError("comid", "comid or comids is required")
    t0 = time.perf_counter()
    flows = await engine.reach_flows([comid] if comid is not None else _parse_comids(comids or ""))
    best = best_reach_flow(flows)
    log_event(
        "flow_request",
        reach_count=len(flows),
        sourced_count=sum(1 for f in flows if f.source != "none"),
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return FlowResponse(
        reaches=[ReachFlowOut.from_flow(f) for f in flows],
        best=ReachFlowOut.from_flow(best) if best is not None else None,
    )


async def _route(engine: RouteEngine, req: RouteRequest) -> RouteResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    paddle_mph = settings.default_paddle_speed_mph if req.paddle_speed_mph is None else req.paddle_speed_mph
    try:
        result = await engine.compute_route(
            (req.start.lng, req.start.lat),
            (req.end.lng, req.end.lat),
            flow_condition=req.flow,
            paddle_speed_mps=paddle_mph * MPH_TO_MPS,
            allow_upstream=req.allow_upstream,
        )
    except RoutingError as e:
        log_event(
            "route_failed",
            level=logging.WARNING,
            request_id=request_id,
            reason_code=e.reason_code,
            start=req.start.model_dump(),
            end=req.end.model_dump(),
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )
        raise

    stats = result.stats
    log_event(
        "route_request",
        request_id=request_id,
        start=req.start.model_dump(),
        end=req.end.model_dump(),
        flow=stats.flow_condition.value,
        paddle_speed_mph=paddle_mph,
        allow_upstream=req.allow_upstream,
        start_fraction=round(result.start_snap.fraction, 4),
        end_fraction=round(result.end_snap.fraction, 4),
        segment_count=stats.segment_count,
        distance_m=round(stats.distance_m, 1),
        impossible_segments=stats.direction.impossible_segments,
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return RouteResponse.from_result(result)


@app.get("/route", response_model=RouteResponse, responses=ERROR_RESPONSES)
async def route_get(
    engine: EngineDep,
    start_lng: Annotated[float, Query()],
    start_lat: Annotated[float, Query()],
    end_lng: Annotated[float, Query()],
    end_lat: Annotated[float, Query()],
    flow: Annotated[str, Query()] = "normal",
    paddle_speed: Annotated[float | None, Query(ge=0.0, le=10.0)] = None,
    allow_upstream: Annotated[bool, Query()] = True,
) -> RouteResponse:
    try:
        req = RouteRequest(
            start={"lng": start_lng, "lat": start_lat},
            end={"lng": end_lng, "lat": end_lat},
            flow=flow,
            paddle_speed_mph=paddle_speed,
            allow_upstream=allow_upstream,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_context=False)) from e
    return await _route(engine, req)


@app.post("/route", response_model=RouteResponse, responses=ERROR_RESPONSES)
async def route_post(req: RouteRequest, engine: EngineDep) -> RouteResponse:
    return await _route(engine, req)
