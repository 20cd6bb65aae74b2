"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "postgresql://localhost:5432/geko_catalog"

    # GEKO catalog feed
    geko_api_url: str = "https://api.geko.com/products"
    geko_sync_interval_minutes: int = 30
    geko_fetch_timeout: float = 30.0  # seconds
    geko_sync_autostart: bool = False  # start the recurring sync on app startup
    geko_sync_beat_enabled: bool = False  # schedule the sync with Celery beat instead

    # Persistence
    sync_batch_size: int = 500
    sync_max_retries: int = 3
    sync_retry_base_delay: float = 1.0  # seconds, doubled per attempt

    # Background imports of uploaded catalogs
    import_upload_dir: str = "/tmp/geko_imports"  # must be shared with the Celery workers

    # Sync health alerting
    environment: str = "development"
    sync_alerts_enabled: bool = False
    alert_email_to: str = ""
    alert_email_from: str = "noreply@catalog.local"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_use_tls: bool = True
    smtp_user: str = ""
    smtp_password: str = ""

    # Redis (for Celery)
    redis_url: str = "redis://localhost:6379/0"

    # Application
    debug: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @property
    def alerts_active(self) -> bool:
        """Alerts always fire in production, elsewhere only when enabled."""
        return self.environment.lower() == "production" or self.sync_alerts_enabled


settings = Settings()
