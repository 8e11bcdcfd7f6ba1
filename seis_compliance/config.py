from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "SEIS/EIS Compliance Core"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_auto_create_schema: bool = False

    # Trigger secrets
    cron_secret: str | None = None
    admin_secret: str | None = None

    # Reminder sweep
    sweep_lease_ttl_seconds: int = 300
    reminder_expiring_window_days: int = 7
    dashboard_url: str = "https://founderspitch.com/dashboard/seis-eis"

    # Notifications
    email_smtp_url: str | None = None
    email_from: str | None = None
    email_reply_to: str | None = None
    email_disable_tls: bool = False

    # Security
    cors_origins: list[str] = []  # Empty by default for security

    # Sentry
    sentry_dsn: str | None = None

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "compliance"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    @property
    def smtp_configured(self) -> bool:
        """Return True when outbound email has enough configuration to send."""
        return bool(self.email_smtp_url and self.email_from)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
