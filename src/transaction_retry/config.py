"""
Configuration settings for the database transaction retry toolkit.

All settings are loaded from environment variables prefixed with
``DB_TRANSACTION_RETRY_`` (for example ``DB_TRANSACTION_RETRY_MAX_RETRIES``).
Use a .env file for local development.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DB_TRANSACTION_RETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Application ===
    APP_NAME: str = "DB Transaction Retry"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False  # also echoes SQL through the sqlalchemy.engine logger
    LOG_LEVEL: str = "INFO"

    # === Database ===
    DATABASE_URL: str = "sqlite:///./app.db"
    CONNECTION_NAME: str = "default"
    LOG_DATABASE_URL: Optional[str] = None  # Falls back to DATABASE_URL

    # === Retry ===
    ENABLED: bool = True
    STATE_PATH: str = ".transaction-retry/runtime"  # Holds the disable marker
    MAX_RETRIES: int = 3
    RETRY_DELAY: int = 2  # seconds, base for exponential backoff
    MAX_RETRY_DELAY: int = 60  # seconds, cap for a single wait
    LOCK_WAIT_TIMEOUT_SECONDS: Optional[int] = 50  # Only applied when 1205 is retryable
    RETRYABLE_SQL_STATES: list[str] = ["40001"]  # Serialization failure
    RETRYABLE_DRIVER_CODES: list[int] = [1213]  # MySQL deadlock
    RETRYABLE_EXCEPTION_CLASSES: list[str] = []
    TRACE_DEPTH: int = 15

    # === Retry event logging ===
    LOG_TABLE: str = "transaction_retry_events"
    LOG_LEVEL_SUCCESS: str = "warning"
    LOG_LEVEL_FAILURE: str = "error"

    # === Slow transactions ===
    SLOW_TRANSACTIONS_ENABLED: bool = True
    TRANSACTION_THRESHOLD_MS: int = 100  # 0 logs every transaction
    SLOW_QUERY_THRESHOLD_MS: int = 50  # 0 treats every query as slow
    TRANSACTION_LOG_TABLE: str = "db_transaction_logs"
    TRANSACTION_QUERY_TABLE: str = "db_transaction_queries"
    SLOW_TRANSACTION_LOG_ENABLED: bool = True

    # === Exception logging ===
    EXCEPTION_LOGGING_ENABLED: bool = True
    EXCEPTION_TABLE: str = "db_exceptions"

    # === API & Monitoring ===
    API_ENABLED: bool = True
    API_PREFIX: str = "/api/transaction-retry"
    PROMETHEUS_ENABLED: bool = True

    @property
    def log_database_url(self) -> str:
        """Database URL used for observability rows."""
        return self.LOG_DATABASE_URL or self.DATABASE_URL


# Global settings instance
settings = Settings()
