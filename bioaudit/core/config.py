from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str

    # AI provider: mock | openai
    ai_provider: str = "mock"
    openai_api_key: str | None = None
    llm_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 45.0

    # Organic operator registry (Agence Bio open data)
    registry_base_url: str = "https://opendata.agencebio.org/api/gouv/operateurs"
    registry_fiche_url: str = "https://annuaire.agencebio.org/fiche"
    registry_timeout_seconds: float = 10.0

    max_upload_bytes: int = 10 * 1024 * 1024
    certificate_warning_days: int = 30


settings = Settings()
