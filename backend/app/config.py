"""Configuration settings for the mindnote backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from mindnote.config import ProcessingConfig


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Storage
    database_path: str = "~/.mindnote/mindnote.db"

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # AI provider
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    def processing_config(self) -> ProcessingConfig:
        """Processing thresholds and limits from MINDNOTE_* variables."""
        return ProcessingConfig.from_env()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
