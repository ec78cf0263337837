"""Application settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "delegation-api"
    log_level: str = "INFO"
    database_url: str = ""

    # "deterministic" uses the local keyword extractor; "llm" calls the endpoint below.
    interpretation_mode: str = "deterministic"
    interpretation_endpoint: str = "https://api.openai.com/v1"
    interpretation_api_key: str = ""
    interpretation_model: str = "gpt-4o-mini"
    interpretation_timeout_s: float = Field(default=8.0, ge=0.5)
    interpretation_max_retries: int = Field(default=1, ge=0)
    interpretation_backoff_s: float = Field(default=0.2, ge=0.0)

    # Resend credentials; when unset, emails are simulated and notifications only logged.
    email_endpoint: str = "https://api.resend.com"
    email_api_key: str = ""
    email_sender: str = "Task Delegation <noreply@resend.dev>"
    email_timeout_s: float = Field(default=5.0, ge=0.1)

    notifier_enabled: bool = True
    notifier_max_workers: int = Field(default=2, ge=1)

    # JSON object in the environment, e.g. {"shopping": 4.0}.
    executor_timeouts: dict[str, float] = Field(
        default_factory=lambda: {"message": 5.0, "shopping": 5.0, "entertainment": 5.0}
    )
    default_executor_timeout_s: float = Field(default=5.0, ge=0.01)

    model_config = SettingsConfigDict(
        env_prefix="DELEGATION_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
