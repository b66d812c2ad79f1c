"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Spur chat configuration. All values come from environment variables."""

    # Anthropic (chat, titles, classification)
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="claude-sonnet-4-5-20250929")
    utility_model: str = Field(default="claude-haiku-4-5-20251001")
    max_response_tokens: int = Field(default=500)
    stream_timeout_seconds: float = Field(default=30.0)

    # OpenAI (embeddings only)
    openai_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")

    # Database
    database_path: Path = Field(default=Path("data/spurchat.db"))

    # Redis history cache: empty URL disables caching
    redis_url: str = Field(default="")
    history_cache_ttl_seconds: int = Field(default=3600)

    # Chroma vector store: chroma_host switches from local files to a server
    chroma_path: Path = Field(default=Path("data/chroma"))
    chroma_host: str = Field(default="")
    chroma_port: int = Field(default=8000)
    chroma_collection: str = Field(default="cards")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    allowed_origins: str = Field(default="*")
    max_message_length: int = Field(default=1000)

    # Keep-alive self ping
    render_external_url: str = Field(default="")
    self_ping_url: str = Field(default="")
    keepalive_interval_seconds: float = Field(default=90.0)

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

    def get_allowed_origins(self) -> list[str]:
        """Parse ALLOWED_ORIGINS into a list. ``["*"]`` allows any origin."""
        if not self.allowed_origins.strip():
            return ["*"]
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are unset."""
        required = {"ANTHROPIC_API_KEY": self.anthropic_api_key}
        return [name for name, value in required.items() if not value]


settings = Settings()
