from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_TITLE = "Questa"
ADMIN_TITLE = "Questa Admin"

class Settings(BaseSettings):
    database_url: str = "sqlite:///./questa.db"

    storage_url: str = ""
    storage_api_key: str | None = None
    storage_bucket: str = "task-images"
    max_upload_bytes: int = 5 * 1024 * 1024

    notification_webhook_url: str | None = None
    notification_hmac_secret: str = "dev-secret"
    notify_max_retries: int = 4
    notify_backoff_seconds: float = 1.0

    request_timeout_seconds: float = 30.0
    cache_ttl_seconds: float = 30.0

    admin_api_key: str | None = None

    log_level: str = "INFO"
    log_dir: str = ".local/questa"

    countdown_refresh_seconds: int = 30

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

settings = Settings()
