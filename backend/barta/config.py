"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Barta AI"
    environment: str = "development"
    log_level: str = "info"

    # Google AI (an empty key keeps the client in local-only mode)
    google_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    image_model: str = "imagen-3.0-generate-002"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    request_timeout: float = 60.0

    # Durable local storage
    storage_path: Path = Path.home() / ".barta" / "storage.json"

    # Per-user document store (empty URI selects the in-memory store)
    mongodb_uri: str = ""
    mongodb_database: str = "barta"
    user_data_collection: str = "userData"

    # Quota and uploads
    daily_image_generation_limit: int = 5
    max_upload_bytes: int = 4 * 1024 * 1024

    # Local identity (empty user id means signed out)
    local_user_id: str = ""
    local_user_name: str = ""
    local_user_photo_url: str = ""

    # CORS
    frontend_url: str = "http://localhost:3000"

    @property
    def has_credential(self) -> bool:
        return bool(self.google_api_key.strip())


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency for injecting settings."""
    return settings
