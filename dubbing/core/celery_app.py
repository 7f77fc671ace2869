from celery import Celery
from celery.schedules import crontab

from dubbing.core.config import settings

# Create Celery instance
celery_app = Celery(
    "dubbing",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "dubbing.tasks.video",
        "dubbing.tasks.cleanup",
        "dubbing.tasks.metrics",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    task_acks_late=settings.CELERY_TASK_ACKS_LATE,
    task_reject_on_worker_lost=settings.CELERY_TASK_REJECT_ON_WORKER_LOST,
    worker_concurrency=settings.CELERY_WORKER_CONCURRENCY,
    worker_max_tasks_per_child=settings.CELERY_WORKER_MAX_TASKS_PER_CHILD,
    worker_prefetch_multiplier=settings.CELERY_WORKER_PREFETCH_MULTIPLIER,
)

# Configure task queues
celery_app.conf.task_routes = {
    "dubbing.tasks.video.*": {"queue": "video_processing"},
    "dubbing.tasks.cleanup.*": {"queue": "maintenance"},
    "dubbing.tasks.metrics.*": {"queue": "maintenance"},
}

# Configure beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "cleanup-expired-jobs": {
        "task": "dubbing.tasks.cleanup.cleanup_expired_jobs_task",
        "schedule": crontab(hour=0, minute=0),  # Daily at midnight
        "args": (settings.DUBBING_JOB_RETENTION_DAYS,)
    },
    "cleanup-stale-temp-files": {
        "task": "dubbing.tasks.cleanup.cleanup_stale_temp_files_task",
        "schedule": crontab(minute=0),  # Hourly
        "args": (settings.DUBBING_TEMP_MAX_AGE_HOURS,)
    },
    "update-pipeline-metrics": {
        "task": "dubbing.tasks.metrics.update_pipeline_metrics",
        "schedule": crontab(minute="*/15"),  # Every 15 minutes
    },
}
