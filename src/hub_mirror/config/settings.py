"""Application settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agent-hub-mirror"
    api_base_url: str = "http://127.0.0.1:3001/api"
    state_path: str = "/state"
    events_path: str = "/events"
    detail_path: str = "/agents/{agent_id}/detail"
    push_url: str = "ws://127.0.0.1:18789"
    request_timeout_s: float = Field(default=10.0, gt=0.0)
    heartbeat_timeout_s: float = Field(default=65.0, ge=0.0)
    primary_attempts: int = Field(default=2, ge=1)
    poll_interval_s: float = Field(default=5.0, gt=0.0)
    backoff_base_s: float = Field(default=2.0, gt=0.0)
    backoff_factor: float = Field(default=1.5, ge=1.0)
    backoff_max_s: float = Field(default=30.0, gt=0.0)
    layout_min_radius: float = Field(default=320.0, ge=0.0)
    layout_spacing_factor: float = Field(default=80.0, ge=0.0)
    layout_padding_x: float = Field(default=20.0, ge=0.0)
    layout_padding_y: float = Field(default=10.0, ge=0.0)
    layout_passes: int = Field(default=3, ge=1)
    layout_store_path: Path | None = None
    expansion_column_gap: float = Field(default=380.0, ge=0.0)
    expansion_min_column_gap: float = Field(default=60.0, ge=0.0)
    expansion_stack_gap: float = Field(default=16.0, ge=0.0)
    detail_timeout_s: float = Field(default=15.0, gt=0.0)
    context_window_tokens: int = Field(default=200_000, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="HUB_MIRROR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def api_url(self, path: str) -> str:
        return f"{self.api_base_url.rstrip('/')}/{path.lstrip('/')}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
