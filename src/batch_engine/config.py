"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Delivery Batch Engine API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root logging level.")
    zip_centroids_file: Optional[Path] = Field(
        default=None,
        description="Optional CSV (zip_code,latitude,longitude) extending the built-in ZIP centroid table.",
    )

    # Routing service
    osrm_base_url: str = Field(
        default="https://router.project-osrm.org",
        description="Base URL for the OSRM routing service.",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(default="driving")
    osrm_timeout_seconds: float = Field(default=15.0, gt=0)
    osrm_max_retries: int = Field(default=1, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)

    # Geocoding provider
    mapbox_token: Optional[str] = Field(default=None, description="Mapbox access token for forward geocoding.")
    mapbox_base_url: str = Field(default="https://api.mapbox.com")
    geocode_timeout_seconds: float = Field(default=10.0, gt=0)
    geocode_concurrency: int = Field(default=5, ge=1)
    geocode_cache_ttl_seconds: int = Field(default=3600, ge=1)

    # AI clustering gateway
    ai_api_key: Optional[str] = Field(default=None, description="Bearer key for the chat-completions gateway.")
    ai_gateway_url: str = Field(default="https://ai.gateway.lovable.dev/v1/chat/completions")
    ai_model: str = Field(default="google/gemini-2.5-flash")
    ai_timeout_seconds: float = Field(default=45.0, gt=0)
    ai_order_sample_size: int = Field(default=100, ge=1)

    # Batch sizing (per-market overrides come from market_configs)
    target_batch_size: int = Field(default=37, ge=1)
    min_batch_size: int = Field(default=30, ge=1)
    max_batch_size: int = Field(default=45, ge=1)
    max_route_hours: float = Field(default=7.5, gt=0)

    # Route sequencing and timing
    matrix_cache_ttl_seconds: int = Field(default=1800, ge=1)
    two_opt_max_passes: int = Field(default=500, ge=1)
    dwell_minutes: float = Field(default=10.0, ge=0)
    average_speed_kmh: float = Field(default=40.0, gt=0)
    route_start_hour: int = Field(default=9, ge=0, le=23)
    visible_stop_count: int = Field(default=3, ge=0)
    default_commission_rate: float = Field(default=5.0, ge=0)

    # Run orchestration
    max_parallel_runs: int = Field(default=4, ge=1)
    run_deadline_seconds: float = Field(default=300.0, gt=0)
    notifications_enabled: bool = True

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=("http://localhost:5173", "http://127.0.0.1:5173"),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("zip_centroids_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Optional[Path]:
        if value is None or value == "":
            return None
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
