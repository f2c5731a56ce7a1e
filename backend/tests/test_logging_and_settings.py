from __future__ import annotations

import io
import json
import logging
from pathlib import Path

from pythonjsonlogger import jsonlogger

from river_router.logging_utils import _parse_level, get_logger, log_event
from river_router.settings import Settings, settings


def test_logging_helpers_parse_levels_and_emit_event(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(settings, "out_dir", str(tmp_path))

    assert _parse_level("debug") == logging.DEBUG
    assert _parse_level("not_a_level") == logging.INFO

    logger1 = get_logger()
    handlers_before = len(logger1.handlers)
    logger2 = get_logger()
    assert logger1 is logger2
    assert len(logger2.handlers) == handlers_before

    stream = io.StringIO()
    capture = logging.StreamHandler(stream)
    capture.setFormatter(jsonlogger.JsonFormatter())
    logger1.addHandler(capture)
    try:
        log_event("route_request", request_id="abc", distance_m=3750.0, segment_count=2)
    finally:
        logger1.removeHandler(capture)

    record = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert record["message"] == "route_request"
    assert record["event"] == "route_request"
    assert record["request_id"] == "abc"
    assert record["segment_count"] == 2


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("EDGE_SOURCE", "GeoJSON")
    monkeypatch.setenv("SNAP_MAX_DISTANCE_M", "2500")
    monkeypatch.setenv("LIVE_DATA_CACHE_TTL_S", "600")
    monkeypatch.setenv("MIN_LAT", "50")
    monkeypatch.setenv("MAX_LAT", "25")

    cfg = Settings()

    assert cfg.edge_source == "geojson"
    assert cfg.snap_max_distance_m == 2500.0
    assert cfg.live_data_cache_ttl_s == 600
    assert (cfg.min_lat, cfg.max_lat) == (25.0, 50.0)


def test_unknown_edge_source_falls_back_to_postgis(monkeypatch) -> None:
    monkeypatch.setenv("EDGE_SOURCE", "shapefile")
    assert Settings().edge_source == "postgis"


def test_defaults() -> None:
    cfg = Settings(_env_file=None)
    assert cfg.bbox_buffer_deg >= 0.0
    assert cfg.default_paddle_speed_mph == 3.0
    assert cfg.edges_geojson_path.endswith("river_edges.geojson")


def test_out_dir_default_follows_container_marker(monkeypatch) -> None:
    monkeypatch.delenv("OUT_DIR", raising=False)
    monkeypatch.setenv("RUNNING_IN_DOCKER", "1")
    assert Settings(_env_file=None).out_dir == "/app/out"
