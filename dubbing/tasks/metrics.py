import logging
from datetime import datetime, timezone
from typing import Dict

from celery import Task

from dubbing.core.celery_app import celery_app
from dubbing.core.database import SessionLocal
from dubbing.core.metrics import JOBS_BY_STATUS
from dubbing.crud.job import count_jobs_by_status
from dubbing.models.job import JobStatus

logger = logging.getLogger(__name__)


class MetricsTask(Task):
    """Base task class for metrics operations."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(f"Metrics task {task_id} failed: {exc}", exc_info=einfo)


def collect_pipeline_metrics(db) -> Dict:
    counts = count_jobs_by_status(db)
    for status in JobStatus:
        JOBS_BY_STATUS.labels(status=status.value).set(counts.get(status.value, 0))

    completed = counts.get(JobStatus.COMPLETED.value, 0)
    failed = counts.get(JobStatus.FAILED.value, 0)
    finished = completed + failed
    return {
        "total_jobs": sum(counts.values()),
        "by_status": counts,
        "success_rate": (completed / finished * 100) if finished > 0 else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@celery_app.task(base=MetricsTask, bind=True)
def update_pipeline_metrics(self) -> Dict:
    """
    Update dubbing pipeline metrics.

    Returns:
        Dict containing job counts by status and the success rate
    """
    try:
        db = SessionLocal()
        try:
            metrics = collect_pipeline_metrics(db)
            logger.info(
                f"Pipeline metrics: {metrics['total_jobs']} jobs, "
                f"{metrics['success_rate']:.1f}% success rate"
            )
            return metrics
        finally:
            db.close()
    except Exception:
        logger.exception("Failed to update pipeline metrics")
        raise
