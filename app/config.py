from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "postgresql://localhost:5432/swaps"
    REDIS_URL: str = "redis://localhost:6379/0"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour
    DB_STATEMENT_TIMEOUT_SECONDS: float = 60.0
    DB_LOCK_TIMEOUT_SECONDS: float = 10.0
    DB_HEALTH_MAX_LATENCY_MS: float = 100.0

    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 10.0

    # =================================================================
    # EXTERNAL COLLABORATORS
    # =================================================================
    NOTARIZATION_API_URL: str = "http://localhost:8100"
    NOTARIZATION_API_KEY: str | None = None
    NOTARIZATION_TIMEOUT_SECONDS: float = 10.0
    NOTARIZATION_MAX_ATTEMPTS: int = 3
    NOTARIZATION_BACKOFF_BASE_SECONDS: float = 1.0

    OWNERSHIP_TRANSFER_API_URL: str = "http://localhost:8200"
    OWNERSHIP_TRANSFER_TIMEOUT_SECONDS: float = 15.0

    # Notifications are logged only when no dispatcher URL is configured
    NOTIFICATION_API_URL: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # =================================================================
    # PROPOSAL ENGINE
    # =================================================================
    COMPATIBILITY_WARNING_THRESHOLD: int = 60
    PROPOSAL_RATE_LIMIT_PER_MINUTE: int = 5
    PROPOSAL_RATE_LIMIT_PER_HOUR: int = 20
    PROPOSAL_RATE_LIMIT_PER_DAY: int = 50
    RATE_LIMIT_FAIL_OPEN: bool = True

    SWAP_EXPIRATION_ENABLED: bool = True
    SWAP_EXPIRATION_CHECK_INTERVAL_MINUTES: float = 5.0
    SWAP_EXPIRATION_BATCH_SIZE: int = 100
    SWAP_EXPIRATION_SHUTDOWN_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": min(self.DB_POOL_MIN_SIZE, 2),
                    "max_size": min(self.DB_POOL_MAX_SIZE, 8),
                    "timeout": 15.0,
                }
            )

        return config

    def get_proposal_rate_limits(self) -> list[tuple[str, int, int]]:
        """Return (window_name, limit, window_seconds) tuples for proposal creation."""
        return [
            ("minute", self.PROPOSAL_RATE_LIMIT_PER_MINUTE, 60),
            ("hour", self.PROPOSAL_RATE_LIMIT_PER_HOUR, 3600),
            ("day", self.PROPOSAL_RATE_LIMIT_PER_DAY, 86400),
        ]

    def expiration_interval_seconds(self) -> float:
        return self.SWAP_EXPIRATION_CHECK_INTERVAL_MINUTES * 60


settings = Settings()
