"""Application settings loaded from environment variables."""

import json
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


# Daily limits per plan. None means unlimited for that feature.
DEFAULT_PLAN_LIMITS: dict[str, dict[str, int | None]] = {
    "free": {"chat_turns": 30, "image_generation": 1},
    "plus": {"chat_turns": 300, "image_generation": 3},
    "pro": {"chat_turns": None, "image_generation": 10},
}


class Settings(BaseSettings):
    """Turn engine configuration. All values come from environment variables."""

    # Anthropic (chat model)
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="claude-sonnet-4-5-20250929")
    summary_model: str = Field(default="claude-haiku-4-5-20251001")
    chat_max_tokens: int = Field(default=2048)
    chat_temperature: float = Field(default=0.7)
    model_timeout_seconds: float = Field(default=30.0)

    # OpenAI (images + speech)
    openai_api_key: str = Field(default="")
    image_model: str = Field(default="gpt-image-1")
    image_size: str = Field(default="1024x1024")
    image_quality: str = Field(default="medium")
    speech_model: str = Field(default="gpt-4o-mini-tts")
    speech_default_voice: str = Field(default="alloy")

    # Storage
    database_path: Path = Field(default=Path("data/turnengine.db"))
    artifact_dir: Path = Field(default=Path("data/artifacts"))

    # Context
    history_limit: int = Field(default=8)
    base_rules_path: Path | None = Field(default=None)

    # Memory ranking
    memory_fetch_limit: int = Field(default=20)
    memory_top_k: int = Field(default=10)
    memory_cache_ttl_seconds: float = Field(default=120.0)

    # Summaries
    summary_interval: int = Field(default=12)

    # Context cache
    context_cache_ttl_seconds: int = Field(default=59 * 60)
    paid_plans: str = Field(default="plus,pro")

    # Quotas
    plan_limits: str = Field(default="")

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_paid_plans(self) -> set[str]:
        """Parse PAID_PLANS into a set of plan names."""
        if not self.paid_plans.strip():
            return set()
        return {p.strip().lower() for p in self.paid_plans.split(",") if p.strip()}

    def get_plan_limits(self) -> dict[str, dict[str, int | None]]:
        """Parse PLAN_LIMITS (JSON) merged over the built-in defaults.

        Example: ``{"free": {"chat_turns": 50}}`` raises the free chat limit
        and leaves every other entry untouched.
        """
        limits = {plan: dict(features) for plan, features in DEFAULT_PLAN_LIMITS.items()}
        if not self.plan_limits.strip():
            return limits
        overrides = json.loads(self.plan_limits)
        for plan, features in overrides.items():
            limits.setdefault(plan, {}).update(features)
        return limits


settings = Settings()
