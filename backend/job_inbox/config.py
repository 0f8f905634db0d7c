"""Application configuration with Pydantic Settings validation."""

from __future__ import annotations

from typing import Optional

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """All application settings, loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite:///job_inbox.db"

    # ── Gmail ─────────────────────────────────────────────
    gmail_api_base: str = "https://www.googleapis.com/gmail/v1/users/me"
    gmail_timeout_sec: int = 30
    scan_message_limit: int = 200
    scan_batch_size: int = 20

    # ── Webhook ───────────────────────────────────────────
    webhook_secret: SecretStr = SecretStr("")

    # ── LLM ───────────────────────────────────────────────
    llm_enabled: bool = True
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: SecretStr = SecretStr("")
    openai_api_key: SecretStr = SecretStr("")  # backward compat
    llm_timeout_sec: int = 45
    llm_input_char_limit: int = 8000
    thread_context_char_limit: int = 2000
    thread_context_top_k: int = 10

    # ── Vector index ──────────────────────────────────────
    vector_index_enabled: bool = False
    pinecone_api_key: SecretStr = SecretStr("")
    pinecone_index: str = "jobhunt"
    embed_model: str = "llama-text-embed-v2"
    vector_timeout_sec: int = 20

    # ── Deadlines ─────────────────────────────────────────
    request_deadline_sec: float = 60.0
    scan_deadline_sec: float = 120.0

    # ── Server ────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # ── Logging ───────────────────────────────────────────
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # ── Validators ────────────────────────────────────────
    @field_validator("llm_enabled", "vector_index_enabled", mode="before")
    @classmethod
    def parse_bool(cls, v: object) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in {"1", "true", "yes", "on"}
        return bool(v)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def ensure_string(cls, v: object) -> str:
        return str(v).strip()

    @field_validator("scan_batch_size", "scan_message_limit")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def _resolve_api_key(self) -> "AppConfig":
        """Fall back to OPENAI_API_KEY if LLM_API_KEY is empty."""
        if not self.llm_api_key.get_secret_value() and self.openai_api_key.get_secret_value():
            self.llm_api_key = self.openai_api_key
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def get_config() -> AppConfig:
    """Load and return validated application config."""
    return AppConfig()
