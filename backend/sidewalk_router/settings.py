from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_segments_path() -> str:
    # Normalized sidewalk feed produced by the external ETL.
    return str(Path(__file__).resolve().parents[1] / "data" / "processed" / "accessible_segments.json")


def _default_out_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping config out of code for easy extension."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    segments_path: str = Field(default_factory=_default_segments_path, alias="SEGMENTS_PATH")
    load_segments_on_startup: bool = Field(default=True, alias="LOAD_SEGMENTS_ON_STARTUP")

    # Snapping
    snap_max_distance_m: float = Field(default=300.0, gt=0.0, le=5_000.0, alias="SNAP_MAX_DISTANCE_M")
    snap_grid_bucket_deg: float = Field(default=0.002, gt=0.0, le=1.0, alias="SNAP_GRID_BUCKET_DEG")
    node_snap_epsilon_deg: float = Field(default=1e-6, gt=0.0, le=1e-3, alias="NODE_SNAP_EPSILON_DEG")

    # Cost model
    accessibility_penalty_weight: float = Field(
        default=2.0,
        ge=0.0,
        le=100.0,
        alias="ACCESSIBILITY_PENALTY_WEIGHT",
    )
    strict_min_score: float = Field(default=0.8, ge=0.0, le=1.0, alias="STRICT_MIN_SCORE")

    # External fallback (invoked by the HTTP layer only)
    osrm_fallback_enabled: bool = Field(default=True, alias="OSRM_FALLBACK_ENABLED")
    osrm_base_url: str = Field(default="https://router.project-osrm.org", alias="OSRM_BASE_URL")
    osrm_profile: str = Field(default="foot", alias="OSRM_PROFILE")
    osrm_timeout_s: float = Field(default=10.0, ge=1.0, le=120.0, alias="OSRM_TIMEOUT_S")
    osrm_max_retries: int = Field(default=3, ge=1, le=10, alias="OSRM_MAX_RETRIES")

    route_cache_ttl_s: int = Field(default=600, alias="ROUTE_CACHE_TTL_S")
    route_cache_max_entries: int = Field(default=1024, alias="ROUTE_CACHE_MAX_ENTRIES")

    wheelchair_speed_kmh: float = Field(default=3.5, gt=0.0, le=20.0, alias="WHEELCHAIR_SPEED_KMH")
    walking_speed_kmh: float = Field(default=5.0, gt=0.0, le=20.0, alias="WALKING_SPEED_KMH")

    @model_validator(mode="after")
    def _normalize(self) -> "Settings":
        self.osrm_base_url = self.osrm_base_url.strip().rstrip("/")
        self.osrm_profile = (self.osrm_profile or "foot").strip().lower() or "foot"
        self.log_level = (self.log_level or "INFO").strip().upper() or "INFO"
        return self


settings = Settings()
