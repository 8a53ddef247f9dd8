"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from plan_importer.domain.imports import ImportMode

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    api_token: str
    ai_provider: str = "openai"
    openai_api_key: str
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "medium"
    openai_store: bool = False
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    extraction_timeout_seconds: float = 120.0
    import_max_files: int = 10
    import_max_file_size_mb: float = 10.0
    import_max_concurrency: int = 3
    import_match_threshold: float = 0.7
    import_default_mode: ImportMode = ImportMode.AUTO
    import_rate_limit: int = 10
    import_rate_window_seconds: int = 3600
    credit_cost_per_file: int = 1
    credit_cost_per_mb: int = 0
    review_ttl_seconds: int = 3600
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def import_max_file_size_bytes(self) -> int:
        """Maximum accepted size of a single import file in bytes."""
        return int(self.import_max_file_size_mb * 1024 * 1024)
