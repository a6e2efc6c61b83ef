from pydantic_settings import BaseSettings
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from registrar.models import RetryConfig


class Settings(BaseSettings):
    database_path: str = "./data/registrar.db"
    environment: str = "development"

    # Retry engine defaults for site adapter calls (seconds)
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0
    retry_jitter: bool = True

    # Per-event cooldown after a failed sequence, and history retention
    cooldown_seconds: float = 300.0  # 5 minutes
    retry_history_retention_hours: float = 24.0
    retry_history_sweep_interval: float = 3600.0

    # A single adapter call may not run longer than this
    adapter_timeout: float = 60.0

    # Bulk "process all approved events" sweep
    max_parallel_registrations: int = 3

    # Family fallbacks when no family members are stored
    parent1_name: str = "Unknown"
    parent1_email: str | None = None
    parent2_name: str = "Unknown"
    parent2_email: str | None = None
    emergency_contact: str = "Unknown"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "REGISTRAR_"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def get_retry_config(self) -> "RetryConfig":
        """Create a RetryConfig instance from current settings.

        Returns:
            RetryConfig: Options for the retry engine
        """
        from registrar.models import RetryConfig
        return RetryConfig(
            max_retries=self.retry_max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
            jitter=self.retry_jitter,
        )


settings = Settings()
