import logging
from typing import Dict

from celery import Task

from dubbing.core.celery_app import celery_app
from dubbing.core.database import SessionLocal
from dubbing.engines.registry import get_engines
from dubbing.services.pipeline import AttemptOutcome, DubbingPipeline
from dubbing.services.queue import retry_delay

logger = logging.getLogger(__name__)


class DubbingTask(Task):
    """Base task class with error handling and logging."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(f"Task {task_id} for job {kwargs.get('job_id')} crashed: {exc}", exc_info=einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        """Handle task retry."""
        logger.warning(f"Task {task_id} for job {kwargs.get('job_id')} will be redelivered: {exc}")

    def on_success(self, retval, task_id, args, kwargs):
        """Handle task success."""
        logger.info(f"Task {task_id} finished with outcome {retval.get('outcome')}")


@celery_app.task(base=DubbingTask, bind=True, name="dubbing.tasks.video.process_dubbing_job")
def process_dubbing_job(self, job_id: str, max_attempts: int = 3) -> Dict:
    """
    Run one delivery of a dubbing job.

    Args:
        job_id: Dubbing job identifier
        max_attempts: Total deliveries allowed for this work item, 1 for a manual retry

    Returns:
        Dict with the attempt outcome and, on success, the published URLs
    """
    can_redeliver = self.request.retries + 1 < max_attempts
    db = SessionLocal()
    try:
        result = DubbingPipeline(db, get_engines()).run(job_id, can_redeliver=can_redeliver)
    finally:
        db.close()

    if result.outcome == AttemptOutcome.RETRY:
        raise self.retry(
            exc=result.error,
            countdown=retry_delay(self.request.retries),
            max_retries=max_attempts - 1,
        )

    return {
        "job_id": result.job_id,
        "outcome": result.outcome.value,
        "retry_count": result.retry_count,
        **result.urls,
    }
