"""
Pipeline settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with defaults suitable for local development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./pipeline.db"
    database_echo: bool = False

    # Environment
    environment: str = "development"
    debug: bool = True

    # Redis transport for distributed events
    redis_url: str = "redis://localhost:6379"
    redis_sync_pool_max_connections: int = 20
    redis_socket_timeout: int = 5  # Seconds, used for connect and read/write
    redis_publish_max_retries: int = 3
    redis_publish_retry_delay: float = 0.1  # Base delay between retries in seconds

    # Domain events
    event_channel: str = "domain-events"
    max_event_size: int = 64 * 1024  # 64 KB
    emit_deletion_events: bool = True

    # Column sizes
    concurrency_stamp_max_length: int = 256
    actor_id_max_length: int = 256

    def validate_production_settings(self) -> list[str]:
        """
        Validate settings that must differ from the development defaults.
        Returns a list of problems. Empty list means all checks pass.
        """
        errors = []

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.database_url.startswith("sqlite"):
                errors.append("DATABASE_URL must point to a server database in production")

            if self.redis_publish_max_retries < 1:
                errors.append("REDIS_PUBLISH_MAX_RETRIES must be at least 1")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

# Direct access to commonly used settings
DATABASE_URL = settings.database_url
REDIS_URL = settings.redis_url
