"""
CareWatch Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = Field(default="CareWatch", alias="APP_NAME")
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_prefix: str = "/api/v1"
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    # ── Storage ──────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./carewatch.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, alias="DB_MAX_OVERFLOW")
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")
    storage_backend: str = Field(default="sql", alias="STORAGE_BACKEND")

    # ── Redis ─────────────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # ── Rules ─────────────────────────────────────────────────────────────
    inactivity_threshold_ms: int = Field(default=180_000, alias="INACTIVITY_THRESHOLD_MS")
    fall_critical_confidence: float = Field(default=0.9, alias="FALL_CRITICAL_CONFIDENCE")
    fall_high_confidence: float = Field(default=0.7, alias="FALL_HIGH_CONFIDENCE")
    inactivity_high_multiplier: float = Field(
        default=2.0, alias="INACTIVITY_HIGH_MULTIPLIER",
        description="Multiple of the inactivity threshold at which severity becomes high",
    )

    # ── Cooldown ──────────────────────────────────────────────────────────
    alert_cooldown_ms: int = Field(default=120_000, alias="ALERT_COOLDOWN_MS")
    cooldown_max_entries: int = Field(default=10_000, alias="COOLDOWN_MAX_ENTRIES")
    cooldown_backend: str = Field(default="memory", alias="COOLDOWN_BACKEND")

    # ── Alert lifecycle ───────────────────────────────────────────────────
    auto_resolve_enabled: bool = Field(default=False, alias="AUTO_RESOLVE_ENABLED")
    auto_resolve_after_minutes: int = Field(default=30, alias="AUTO_RESOLVE_AFTER_MINUTES")

    # ── Escalation ────────────────────────────────────────────────────────
    escalation_response_window_minutes: int = Field(
        default=10, alias="ESCALATION_RESPONSE_WINDOW_MINUTES",
        description="Minutes an active alert may go unanswered before escalating",
    )
    escalation_ack_window_minutes: int = Field(
        default=60, alias="ESCALATION_ACK_WINDOW_MINUTES",
        description="Minutes an acknowledged alert may stay unresolved before escalating",
    )
    escalation_emergency_on_critical: bool = Field(
        default=False, alias="ESCALATION_EMERGENCY_ON_CRITICAL",
    )
    sweep_enabled: bool = Field(default=True, alias="SWEEP_ENABLED")
    sweep_interval_seconds: int = Field(default=60, alias="SWEEP_INTERVAL_SECONDS")

    # ── Dispatch ──────────────────────────────────────────────────────────
    channel_timeout_seconds: float = Field(default=10.0, alias="CHANNEL_TIMEOUT_SECONDS")
    channel_max_attempts: int = Field(default=3, alias="CHANNEL_MAX_ATTEMPTS")
    channel_retry_base_delay_seconds: float = Field(
        default=2.0, alias="CHANNEL_RETRY_BASE_DELAY_SECONDS",
    )
    notifications_dry_run: bool = Field(default=False, alias="NOTIFICATIONS_DRY_RUN")

    # ── Email ─────────────────────────────────────────────────────────────
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_start_tls: bool = Field(default=True, alias="SMTP_START_TLS")
    alert_from_email: str = Field(default="alerts@carewatch.local", alias="ALERT_FROM_EMAIL")

    # ── SMS (Twilio) ──────────────────────────────────────────────────────
    twilio_account_sid: str = Field(default="", alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str = Field(default="", alias="TWILIO_FROM_NUMBER")
    sms_default_country_code: str = Field(default="+91", alias="SMS_DEFAULT_COUNTRY_CODE")

    # ── Push (Pushover) ───────────────────────────────────────────────────
    pushover_app_token: str = Field(default="", alias="PUSHOVER_APP_TOKEN")
    pushover_user_key: str = Field(default="", alias="PUSHOVER_USER_KEY")

    # ── Emergency services ────────────────────────────────────────────────
    emergency_phone_number: str = Field(default="", alias="EMERGENCY_PHONE_NUMBER")
    emergency_voice_enabled: bool = Field(default=False, alias="EMERGENCY_VOICE_ENABLED")

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")
    health_check_timeout_seconds: int = Field(default=5, alias="HEALTH_CHECK_TIMEOUT_SECONDS")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


settings = Settings()
