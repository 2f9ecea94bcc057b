"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agent-dashboard"
    app_env: str = "dev"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = ""
    planner_mode: str = "deterministic"
    executor_mode: str = "deterministic"
    planner_max_agents: int = Field(default=5, ge=1)
    # Runner loop.
    poll_interval_s: float = Field(default=2.0, gt=0.0)
    runner_autostart: bool = True
    orphan_policy: Literal["skip", "fail"] = "skip"
    context_max_messages: int = Field(default=50, ge=1)
    context_max_chars: int = Field(default=8000, ge=1)
    # LLM transport.
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=30.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    llm_max_output_tokens: int = Field(default=600, ge=1)
    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_DASHBOARD_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def uses_llm(self) -> bool:
        return "llm" in {self.planner_mode.lower().strip(), self.executor_mode.lower().strip()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
