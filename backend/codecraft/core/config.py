from datetime import datetime, timezone
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings

LlmProvider = Literal["openai", "anthropic", "gemini", "ollama"]

MAX_JUDGE_TIMEOUT_MS = 30_000


class Settings(BaseSettings):
    # Application
    app_name: str = "Codecraft"
    debug: bool = False

    # Supabase (empty -> in-memory stores)
    supabase_url: str = ""
    supabase_service_key: str = ""

    # LLM ("" = pick the first provider that has credentials)
    llm_provider: str = ""
    llm_model: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_model: str = ""

    # Sandbox
    docker_path: str = "docker"
    judge_timeout_ms: int = 15_000

    # Generation
    generation_concurrency: int = 2
    generation_backoff_seconds: float = 0.5
    progress_buffer_size: int = 500
    heartbeat_interval_seconds: float = 10.0

    # CORS
    frontend_url: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def judge_timeout_seconds(self) -> float:
        ms = self.judge_timeout_ms if self.judge_timeout_ms > 0 else 15_000
        return min(ms, MAX_JUDGE_TIMEOUT_MS) / 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()


# ── Runtime LLM configuration ────────────────────────────────────────────────
# Switchable without a restart. The holder is passed to the completion gateway;
# nothing reads it from module state.

class LlmRuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: LlmProvider | None = None
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    updated_at: datetime | None = None


_KEEP = object()


class LlmConfigHolder:
    def __init__(self, initial: LlmRuntimeConfig | None = None):
        self._config = initial or LlmRuntimeConfig()

    def current(self) -> LlmRuntimeConfig:
        return self._config

    def reconfigure(
        self,
        *,
        provider=_KEEP,
        api_key=_KEEP,
        base_url=_KEEP,
        model=_KEEP,
    ) -> LlmRuntimeConfig:
        """Replace selected fields. Passing None clears a field; omitting keeps it."""
        changes = {
            name: value
            for name, value in (
                ("provider", provider),
                ("api_key", api_key),
                ("base_url", base_url),
                ("model", model),
            )
            if value is not _KEEP
        }
        changes["updated_at"] = datetime.now(timezone.utc)
        self._config = LlmRuntimeConfig.model_validate(
            {**self._config.model_dump(), **changes}
        )
        return self._config
