from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Airbitrage"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Providers
    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("airbitrage_anthropic_key", "anthropic_api_key"),
    )
    openai_api_key: str | None = None
    tavily_api_key: str | None = None

    # Snipe/LLM
    llm_provider: str = "anthropic"
    snipe_model: str = "claude-haiku-4-5-20251001"
    snipe_max_tokens: int = 4096
    snipe_max_tool_iterations: int = 5
    tool_result_max_chars: int = 3000

    # Storage
    data_dir: str = ".airbitrage"

    # Budget defaults (overridden by <data_dir>/budget-config.json)
    daily_token_limit: int = 500_000
    per_run_token_limit: int = 50_000
    per_run_tool_call_limit: int = 25

    # Runtime
    max_concurrent_runs: int = 2
    run_timeout_seconds: float = 180.0
    source_timeout_seconds: float = 8.0
    exchange_timeout_seconds: float = 5.0
    user_agent: str = "Airbitrage/1.0 (arbitrage research tool)"

    # Security
    site_password: str | None = None
    cors_origins: list[str] = []  # Empty by default for security

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "airbitrage"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    model_config = ConfigDict(env_file=".env", case_sensitive=False, populate_by_name=True)


settings = Settings()
