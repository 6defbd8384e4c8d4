"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "HR Workflow Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker + result backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Workflow engine
    WORKFLOW_MAX_ATTEMPTS: int = 3
    WORKFLOW_RETRY_DELAYS: list[float] = [1.0, 5.0, 15.0]  # seconds, indexed by failed attempt
    WORKFLOW_MAX_NODES_PER_ADVANCE: int = 50
    WAIT_UNTIL_FIELD_RECHECK_SECONDS: int = 3600
    WORKFLOW_RECORD_TABLES: list[str] = ["tasks", "notifications", "profiles", "contracts"]

    # Scheduler / worker
    SCHEDULER_INTERVAL_SECONDS: int = 60
    EXECUTION_STALE_AFTER_SECONDS: int = 900  # never below WORKER_TASK_TIME_LIMIT, see workflow.scheduler
    WORKER_TASK_SOFT_TIME_LIMIT: int = 300
    WORKER_TASK_TIME_LIMIT: int = 600
    WORKER_BATCH_SIZE: int = 25
    CONTRACT_EXPIRY_NOTICE_DAYS: int = 30
    DISPATCH_ON_TRIGGER: bool = False  # enqueue advance_execution right after ingestion

    # Email
    MAIL_ENABLED: bool = False
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    MAIL_FROM: str = "workflows@localhost"
    PORTAL_URL: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
