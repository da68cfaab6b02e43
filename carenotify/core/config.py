"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./carenotify.db"

    # Practice identity (ORG_NAME template variable)
    ORGANIZATION_NAME: str = "Practice"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Dispatcher
    DISPATCH_MAX_WORKERS: int = 4  # Pure per-trigger work (conditions, rendering)
    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BASE_DELAY: float = 0.2  # Seconds, doubled per attempt
    STORE_RETRY_MAX_DELAY: float = 2.0

    # External delivery (comma-separated: "log", "webhook")
    DELIVERY_CHANNELS: str = "log"
    DELIVERY_WEBHOOK_URL: str = ""
    DELIVERY_WEBHOOK_SECRET: str = ""
    DELIVERY_MAX_ATTEMPTS: int = 5

    # Worker
    WORKER_POLL_INTERVAL: int = 10
    WORKER_BATCH_SIZE: int = 10
    JOB_STALE_AFTER: int = 900  # Seconds a job may stay running before it is presumed orphaned
    JOB_RETRY_BASE_DELAY: int = 30  # Seconds before a failed job is retried, doubled per attempt

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def delivery_channels_list(self) -> list[str]:
        """Parse DELIVERY_CHANNELS into a lowercase list."""
        return [c.strip().lower() for c in self.DELIVERY_CHANNELS.split(",") if c.strip()]


settings = Settings()
