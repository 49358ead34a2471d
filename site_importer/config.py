"""Application configuration."""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = "development"
    database_url: str = "sqlite:///./site_importer.db"

    # Redis (Celery broker, progress pub/sub, optional scratch store)
    redis_url: str = "redis://localhost:6379/0"

    # Upload pipeline
    chunk_size: int = 250
    scratch_backend: str = "database"  # database | redis
    scratch_ttl_seconds: int = 7 * 24 * 3600
    publish_progress: bool = True
    stale_job_seconds: int = 300
    write_max_attempts: int = 3
    max_upload_bytes: int = 100 * 1024 * 1024

    celery_task_always_eager: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
