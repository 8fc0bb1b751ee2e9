"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_model: str = Field(default="gpt-4o-mini", alias="LLM_MODEL")
    llm_base_url: str = Field(default="https://openrouter.ai/api/v1", alias="LLM_BASE_URL")
    llm_temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    # Comma-separated Telegram user ids allowed to talk to the agent (empty allows everyone).
    telegram_allowed_user_ids: str = Field(default="", alias="TELEGRAM_ALLOWED_USER_IDS")
    workspace: Path = Field(
        default=Path.home() / ".littleclaw" / "workspace",
        alias="LITTLECLAW_WORKSPACE",
    )
    max_iterations: int = Field(default=10, alias="MAX_ITERATIONS", ge=1)
    heartbeat_interval_seconds: float = Field(default=1800.0, alias="HEARTBEAT_INTERVAL_SECONDS", gt=0)
    request_timeout_seconds: float = Field(default=60.0, alias="REQUEST_TIMEOUT_SECONDS")
    exec_timeout_seconds: float = Field(default=120.0, alias="EXEC_TIMEOUT_SECONDS")
    history_rotate_bytes: int = Field(default=1024 * 1024, alias="HISTORY_ROTATE_BYTES", gt=0)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _require_api_key_for_remote_endpoints(self) -> Settings:
        if not self.llm_api_key and not _is_local_url(self.llm_base_url):
            raise ValueError("LLM_API_KEY is required unless LLM_BASE_URL points at a local server")
        return self


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def allowed_user_ids(settings: Settings) -> frozenset[str]:
    """Return the set of Telegram user ids permitted to send messages.

    An empty set means the adapter accepts every sender.
    """
    return frozenset(u.strip() for u in settings.telegram_allowed_user_ids.split(",") if u.strip())


def _is_local_url(url: str) -> bool:
    return any(host in url for host in ("://localhost", "://127.0.0.1", "://0.0.0.0"))
