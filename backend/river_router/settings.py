from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _in_container() -> bool:
    # Only the OUT_DIR default depends on this.
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_out_dir() -> str:
    if _in_container():
        return "/app/out"
    return str(Path(__file__).resolve().parents[1] / "out")


def _default_edges_geojson_path() -> str:
    return str(Path(__file__).resolve().parents[1] / "data" / "river_edges.geojson")


class Settings(BaseSettings):
    """River router configuration read from the environment or a `.env` file.

    Field aliases are the environment variable names. Coordinate bounds are
    reordered when given inverted and an unknown ``EDGE_SOURCE`` means PostGIS.
    """

    model_config = SettingsConfigDict(
        # Run from backend/ or the repo root.
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Where river edges come from: "postgis" (river_edges table) or "geojson" (local file).
    edge_source: str = Field(default="postgis", alias="EDGE_SOURCE")
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_pool_max: int = Field(default=10, ge=1, le=100, alias="DB_POOL_MAX")
    edges_geojson_path: str = Field(default_factory=_default_edges_geojson_path, alias="EDGES_GEOJSON_PATH")

    snap_max_distance_m: float = Field(default=5000.0, gt=0.0, alias="SNAP_MAX_DISTANCE_M")
    bbox_buffer_deg: float = Field(default=0.5, ge=0.0, le=5.0, alias="BBOX_BUFFER_DEG")
    default_paddle_speed_mph: float = Field(default=3.0, ge=0.0, le=10.0, alias="DEFAULT_PADDLE_SPEED_MPH")

    # Accepted coordinate envelope (CONUS plus a buffer).
    min_lng: float = Field(default=-130.0, alias="MIN_LNG")
    max_lng: float = Field(default=-60.0, alias="MAX_LNG")
    min_lat: float = Field(default=20.0, alias="MIN_LAT")
    max_lat: float = Field(default=55.0, alias="MAX_LAT")

    # Live hydrologic feed (NWM velocities). Empty URL means the PostGIS table is the feed.
    live_conditions_url: str = Field(default="", alias="LIVE_CONDITIONS_URL")
    live_data_cache_ttl_s: int = Field(default=300, ge=10, alias="LIVE_DATA_CACHE_TTL_S")
    live_data_request_timeout_s: float = Field(default=20.0, ge=1.0, le=120.0, alias="LIVE_DATA_REQUEST_TIMEOUT_S")

    @model_validator(mode="after")
    def _normalise(self) -> "Settings":
        source = str(self.edge_source or "postgis").strip().lower()
        if source not in {"postgis", "geojson"}:
            source = "postgis"
        self.edge_source = source
        if self.min_lng > self.max_lng:
            self.min_lng, self.max_lng = self.max_lng, self.min_lng
        if self.min_lat > self.max_lat:
            self.min_lat, self.max_lat = self.max_lat, self.min_lat
        return self


settings = Settings()
