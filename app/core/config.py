from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    app_name: str = "Interview Audio Processing API"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False

    database_url: str = "sqlite:///./app.db"
    auto_create_tables: bool = True

    redis_url: str = ""
    cache_ttl_seconds: int = 30

    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = ""
    celery_task_always_eager: bool = False

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_transcription_model: str = "whisper-1"
    external_timeout_seconds: float = 240.0
    external_max_retries: int = 3
    external_retry_delay_ms: int = 2000

    encryption_key: str = "aLxM0wHk0w0oVx3G9iYfn7lr5J2v3xH5cM8D6lQ1t2Q="

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])
    upload_dir: str = "data/uploads/audio"
    max_upload_size_mb: int = 500
    rate_limit_per_minute: int = 120

    job_heartbeat_interval_ms: int = 30_000
    job_heartbeat_timeout_minutes: int = 5
    job_max_duration_minutes: int = 30
    job_max_attempts: int = 3
    job_reaper_interval_seconds: int = 60
    job_retention_days: int = 7

    chunk_concurrency: int = 10
    min_chunk_success_rate: float = 0.80
    max_chunk_duration: float = 180.0
    max_chunk_duration_hard: float = 210.0
    silence_threshold_db: int = -40
    silence_duration: float = 0.5

    def get_celery_broker_url(self) -> str:
        return self.celery_broker_url

    def get_celery_result_backend(self) -> str:
        return self.celery_result_backend or self.celery_broker_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
