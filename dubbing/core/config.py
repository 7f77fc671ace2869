from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "dubbing-api"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./dubbing.db"

    # Redis (translation cache)
    REDIS_URL: str = "redis://localhost:6379"

    # Google Cloud
    GOOGLE_CLOUD_PROJECT_ID: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""
    GOOGLE_CLOUD_STORAGE_BUCKET: str = "dubbing-artifacts"
    GOOGLE_STORAGE_BASE_URL: str = "https://storage.googleapis.com"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    ALLOWED_HOSTS: List[str] = ["*"]

    # Celery settings
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"
    CELERY_TASK_TIME_LIMIT: int = 3600  # 1 hour
    CELERY_TASK_SOFT_TIME_LIMIT: int = 3300  # 55 minutes
    CELERY_WORKER_CONCURRENCY: int = 2
    CELERY_WORKER_MAX_TASKS_PER_CHILD: int = 100
    CELERY_WORKER_PREFETCH_MULTIPLIER: int = 1
    CELERY_TASK_ACKS_LATE: bool = True
    CELERY_TASK_REJECT_ON_WORKER_LOST: bool = True

    # Dubbing pipeline
    DUBBING_TEMP_DIR: str = "/tmp/dubbing"
    DUBBING_MAX_RETRIES: int = 3
    DUBBING_RETRY_BACKOFF_SECONDS: int = 5
    DUBBING_ESTIMATED_SECONDS: int = 300  # 5 minutes, not stage-weighted
    DUBBING_DUCKING_DB: float = -6.0
    DUBBING_THUMBNAIL_AT: float = 1.0
    DUBBING_HLS_SEGMENT_SECONDS: int = 10
    DUBBING_SOURCE_LANG: str = "zh"
    DUBBING_TARGET_LANG: str = "vi"
    DUBBING_DEFAULT_VOICE: str = "vi-female-1"
    DUBBING_DEFAULT_QUALITY: str = "720p"
    DUBBING_SEPARATOR: str = "passthrough"  # or "demucs"
    DUBBING_JOB_RETENTION_DAYS: int = 30
    DUBBING_TEMP_MAX_AGE_HOURS: int = 6

    # External tools
    PIPER_MODEL_DIR: str = "/opt/piper/models"
    DEMUCS_BINARY: str = "demucs"
    SPEECH_RECOGNITION_TIMEOUT: int = 900

    # Translation cache
    TRANSLATION_CACHE_TTL: int = 60 * 60 * 24 * 30  # 30 days

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
