"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. All keys use the
``FIREALERT_`` prefix, e.g. ``FIREALERT_API_BASE_URL``.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the FireAlert client core.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="FIREALERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── Alerts API ─────────────────────────────────────────────────────
    api_base_url: str = "https://bombeiro.visionmoz.online/api"
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Connectivity ───────────────────────────────────────────────────
    connectivity_poll_seconds: float = Field(default=15.0, gt=0)
    connectivity_probe_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Geolocation ────────────────────────────────────────────────────
    location_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Panic mode ─────────────────────────────────────────────────────
    shake_detection: bool = True
    motion_threshold_g: float = Field(default=2.5, gt=0)
    panic_auto_send_seconds: float = Field(default=3.0, ge=0)
    panic_warning_seconds: int = Field(default=10, ge=0)
    panic_call_delay_seconds: float = Field(default=2.0, ge=0)
    emergency_numbers: list[str] = Field(default_factory=lambda: ["193", "112"])

    # ── Local storage ──────────────────────────────────────────────────
    profile_path: str | None = None  # None keeps the profile in memory
    queue_path: str | None = None  # None disables queue persistence

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
