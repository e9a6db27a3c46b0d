"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with MARKMIND_ prefix.
Example: MARKMIND_LOG_LEVEL=DEBUG
"""

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """MarkMind configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="MARKMIND_",
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # Storage
    storage_path: Optional[str] = None  # Defaults to ~/.markmind/storage
    db_name: str = "markmind.db"

    # Logging
    log_level: str = "INFO"
    log_structured: bool = False  # JSON log lines instead of plain text

    # Index freshness
    index_refresh_seconds: float = Field(default=300.0, gt=0)  # 5 minutes

    # Related-fragment lookup defaults
    max_results: int = Field(default=5, ge=1)
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)

    # Batch linking
    batch_size: int = Field(default=10, ge=1)
    batch_min_similarity: float = Field(default=0.4, ge=0.0, le=1.0)
    min_content_length: int = Field(default=50, ge=0)
    batch_pause_seconds: float = Field(default=0.1, ge=0.0)

    # AI provider (none, local, openai, anthropic, gemini)
    ai_provider: str = "none"
    ai_api_key: Optional[str] = None
    ai_timeout_seconds: float = Field(default=10.0, gt=0)

    # Result cache
    cache_ttl_seconds: Optional[float] = None  # None = entries never expire
    cache_maxsize: int = Field(default=256, ge=1)

    def get_storage_path(self) -> str:
        """
        Determine the storage directory.

        Priority:
        1. storage_path setting (explicit override via MARKMIND_STORAGE_PATH)
        2. ~/.markmind/storage
        """
        if self.storage_path:
            storage = Path(self.storage_path)
        else:
            storage = Path.home() / ".markmind" / "storage"

        storage.mkdir(parents=True, exist_ok=True)
        return str(storage)


# Singleton instance
settings = Settings()
