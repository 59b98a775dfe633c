"""Central configuration for the concurrence limiter."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"

MIN_INTERVAL_SECONDS = 5.0


# ============================================================
# Per-player session options
# ============================================================

class SessionConfig(BaseModel):
    """Options resolved once when a player asks to start a session.

    Field aliases keep the option names used by player integrations
    (``accessurl``, ``playerID``, ``requestTimeoutInMillis``...).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    interval: float = Field(10.0, ge=MIN_INTERVAL_SECONDS, description="Heartbeat cadence (seconds)")
    access_url: str = Field(..., alias="accessurl", min_length=1, description="Validate endpoint")
    update_url: str = Field(..., alias="updateurl", min_length=1, description="Heartbeat endpoint")
    dispose_url: str = Field(..., alias="disposeurl", min_length=1, description="Release endpoint")
    player_id: Optional[str] = Field(None, alias="playerID", description="Caller-supplied identity")
    start_position: float = Field(0.0, alias="startPosition", ge=0, description="Starting offset (seconds)")
    max_update_fails: int = Field(1, alias="maxUpdateFails", ge=0, description="Tolerated consecutive failures")
    request_timeout_ms: int = Field(
        15_000, alias="requestTimeoutInMillis", gt=0, description="Per-request timeout (milliseconds)"
    )

    @field_validator("player_id", mode="before")
    @classmethod
    def _blank_player_id(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000


def resolve_session_config(
    options: Optional[Mapping[str, Any]] = None,
    *,
    defaults: Optional[Mapping[str, Any]] = None,
) -> SessionConfig:
    """Merge player options over defaults and validate them.

    ``None`` values never override a default. Raises ConfigError when a URL
    is missing or the interval is below the minimum.
    """
    merged: Dict[str, Any] = {}
    for source in (defaults or {}, options or {}):
        merged.update({key: value for key, value in source.items() if value is not None})

    try:
        return SessionConfig.model_validate(merged)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigError("invalid session options", log_message=f"invalid session options ({details})") from exc


# ============================================================
# Process-wide settings
# ============================================================

class Settings(BaseSettings):
    """Environment-driven settings for the limiter service."""

    # Observer HTTP server
    observer_host: str = Field("127.0.0.1", description="Host interface for the observer API")
    observer_port: int = Field(5050, description="Port for the observer API")
    observer_queue_size: int = Field(16, description="Max buffered events per observer")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Identity cache
    identity_store_path: Optional[Path] = Field(None, description="JSON file caching the player identity")

    # Default session options (per-player options win)
    access_url: Optional[str] = Field(None, description="Default validate endpoint")
    update_url: Optional[str] = Field(None, description="Default heartbeat endpoint")
    dispose_url: Optional[str] = Field(None, description="Default release endpoint")
    heartbeat_interval: Optional[float] = Field(None, description="Default heartbeat cadence (seconds)")
    max_update_fails: Optional[int] = Field(None, description="Default tolerated consecutive failures")
    request_timeout_ms: Optional[int] = Field(None, description="Default request timeout (milliseconds)")
    start_position: Optional[float] = Field(None, description="Default starting offset (seconds)")

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def session_defaults(self) -> Dict[str, Any]:
        """Default session options keyed by their player-facing names."""
        return {
            "interval": self.heartbeat_interval,
            "accessurl": self.access_url,
            "updateurl": self.update_url,
            "disposeurl": self.dispose_url,
            "startPosition": self.start_position,
            "maxUpdateFails": self.max_update_fails,
            "requestTimeoutInMillis": self.request_timeout_ms,
        }


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()


__all__ = [
    "MIN_INTERVAL_SECONDS",
    "SessionConfig",
    "Settings",
    "get_settings",
    "resolve_session_config",
]
