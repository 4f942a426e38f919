"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from statementcalc import __version__


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    debug: bool = False
    log_level: str = "INFO"
    app_version: str = __version__

    # AWS Textract
    aws_region: str = "ap-southeast-2"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Language model
    llm_provider: str = "anthropic"  # anthropic or openai
    llm_model: str = "claude-3-5-sonnet-20240620"
    llm_max_tokens: int = 4096
    llm_temperature: float = 0.0
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None

    # Uploads
    max_upload_size_mb: int = 50

    # HTTP
    cors_origins: str = ""
    process_rate_limit: str = "20/hour"

    @property
    def max_upload_size_bytes(self) -> int:
        """Get maximum upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def cors_origin_list(self) -> List[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
