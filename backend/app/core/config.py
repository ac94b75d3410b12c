"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Dict, List, Optional, Union
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Generation Task Tracker"
    app_version: str = "1.0.0"
    debug: bool = False

    # API
    api_prefix: str = "/api/v1"
    cors_origins: Union[List[str], str] = ["http://localhost:3000"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Database
    database_url: str = "sqlite:///./data/generation-tracker.db"

    # Redis (lease locks, rate counters, queue depth)
    redis_url: str = "redis://localhost:6379/0"
    # In-memory locks are per process; only allowed in debug or when set explicitly
    lock_memory_fallback: bool = False

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # Vendor (TopMediai)
    vendor_base_url: str = "https://api.topmediai.com"
    vendor_api_key: Optional[str] = None
    vendor_timeout: float = 30.0
    vendor_generate_endpoint: str = "/v3/music/generate"
    vendor_status_endpoint: str = "/v3/music/tasks"
    vendor_calls_per_minute: int = 20

    # Status poller
    poll_max_attempts: int = 15
    poll_initial_delay: int = 120  # seconds before the first poll
    poll_backoff: Dict[int, int] = {
        0: 120,
        1: 90,
        3: 120,
        6: 180,
        10: 300,
        15: 600,
    }

    # Bulk sweeper
    sweep_interval_minutes: int = 10
    sweep_max_age_minutes: int = 180  # 3 hours
    sweep_batch_size: int = 20
    sweep_batch_delay: int = 2  # seconds between batches
    sweep_lock_ttl_minutes: int = 15
    sweep_min_interval_minutes: int = 5

    # Stale-task failer
    stale_timeout_minutes: int = 15
    stale_interval_minutes: int = 5

    # Retry tooling
    retry_max_count: int = 3

    # Cleanup
    cleanup_failed_jobs_days: int = 7
    cleanup_completed_content_days: int = 30
    cleanup_content_idle_days: int = 7
    cleanup_generations_days: int = 90

    # Monitoring
    health_max_failed_jobs: int = 10
    health_min_success_rate: float = 90.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def get_celery_broker_url(self) -> str:
        """Broker URL used by the Celery app."""
        return self.celery_broker_url

    def get_celery_result_backend(self) -> str:
        """Result backend URL used by the Celery app."""
        return self.celery_result_backend


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
