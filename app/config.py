"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="MedCore Scheduling API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3007, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # JWT (tokens are issued by the users service)
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Sibling services
    user_service_url: str = Field(default="http://localhost:3003", alias="USER_SERVICE_URL")
    medical_record_service_url: str = Field(
        default="http://localhost:3005/api/v1",
        alias="MEDICAL_RECORD_SERVICE_URL",
    )
    user_service_timeout: float = Field(default=6.0, alias="USER_SERVICE_TIMEOUT")
    directory_cache_ttl: int = Field(default=300, alias="DIRECTORY_CACHE_TTL")

    # Email (SMTP)
    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=465, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASS")
    email_from_address: str = Field(default="no-reply@medcore.local", alias="EMAIL_FROM_ADDRESS")
    notification_max_attempts: int = Field(default=3, alias="NOTIFICATION_MAX_ATTEMPTS")
    notification_retry_delay: float = Field(default=2.0, alias="NOTIFICATION_RETRY_DELAY")

    # Background worker (arq)
    worker_max_jobs: int = Field(default=20, alias="ARQ_MAX_JOBS")
    worker_job_timeout: int = Field(default=120, alias="ARQ_JOB_TIMEOUT")
    reminder_cron_hour: int = Field(default=7, alias="REMINDER_CRON_HOUR")

    # Scheduling rules
    patient_active_appointment_limit: int = Field(
        default=3,
        alias="PATIENT_ACTIVE_APPOINTMENT_LIMIT",
    )
    rescheduler_horizon_days: int = Field(default=30, alias="RESCHEDULER_HORIZON_DAYS")
    rescheduler_search_days: int = Field(default=14, alias="RESCHEDULER_SEARCH_DAYS")
    reminder_hours_before: int = Field(default=24, alias="REMINDER_HOURS_BEFORE")

    # Queue
    queue_history_window: int = Field(default=50, alias="QUEUE_HISTORY_WINDOW")
    queue_default_service_minutes: int = Field(default=15, alias="QUEUE_DEFAULT_SERVICE_MINUTES")
    queue_min_service_minutes: int = Field(default=5, alias="QUEUE_MIN_SERVICE_MINUTES")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def smtp_configured(self) -> bool:
        """Check if SMTP credentials are present."""
        return bool(self.smtp_user and self.smtp_password)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
