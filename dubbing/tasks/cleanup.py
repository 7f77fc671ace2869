import logging

from celery import Task

from dubbing.core.celery_app import celery_app
from dubbing.core.config import settings
from dubbing.core.database import SessionLocal
from dubbing.crud.job import cleanup_expired_jobs
from dubbing.services.workspace import sweep_stale_files

logger = logging.getLogger(__name__)


class CleanupTask(Task):
    """Base task class for cleanup operations."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(f"Cleanup task {task_id} failed: {exc}", exc_info=einfo)


@celery_app.task(base=CleanupTask, bind=True)
def cleanup_expired_jobs_task(self, days: int = 30) -> int:
    """
    Clean up expired jobs from the database.

    Args:
        days: Number of days after which to delete finished jobs; a source's latest job is kept

    Returns:
        Number of jobs deleted
    """
    try:
        db = SessionLocal()
        try:
            deleted_count = cleanup_expired_jobs(db, days=days)
            logger.info(f"Cleaned up {deleted_count} expired jobs")
            return deleted_count
        finally:
            db.close()
    except Exception:
        logger.exception("Failed to clean up expired jobs")
        raise


@celery_app.task(base=CleanupTask, bind=True)
def cleanup_stale_temp_files_task(self, max_age_hours: int = 6) -> int:
    """Remove pipeline temp files left behind by crashed workers."""
    removed = sweep_stale_files(settings.DUBBING_TEMP_DIR, max_age_hours * 3600)
    logger.info(f"Removed {removed} stale temp files from {settings.DUBBING_TEMP_DIR}")
    return removed
