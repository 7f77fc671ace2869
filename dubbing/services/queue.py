import logging
from abc import ABC, abstractmethod
from typing import Optional

from dubbing.core.celery_app import celery_app
from dubbing.core.config import settings

logger = logging.getLogger(__name__)

PROCESS_TASK_NAME = "dubbing.tasks.video.process_dubbing_job"
PROCESS_QUEUE = "video_processing"


def retry_delay(retries: int, base: Optional[int] = None) -> int:
    """Seconds to wait before redelivery number ``retries + 1`` (5s, 10s, 20s, ...)."""
    base = settings.DUBBING_RETRY_BACKOFF_SECONDS if base is None else base
    return base * (2 ** retries)


class JobQueue(ABC):
    """Delivers dubbing jobs to the worker pool."""

    @abstractmethod
    def enqueue(self, job_id, *, max_attempts: int) -> str:
        """Queue one work item for a job and return its task id.

        ``max_attempts`` counts the first delivery, so 1 means no automatic retry.
        """

    @abstractmethod
    def remove(self, task_id: str) -> None:
        """Best-effort removal of a work item that no worker has claimed yet."""


class CeleryJobQueue(JobQueue):
    def __init__(self, app=None):
        self.app = app or celery_app

    def enqueue(self, job_id, *, max_attempts: int) -> str:
        result = self.app.send_task(
            PROCESS_TASK_NAME,
            kwargs={"job_id": str(job_id), "max_attempts": max_attempts},
            queue=PROCESS_QUEUE,
        )
        logger.info(f"Queued job {job_id} as task {result.id} (max attempts {max_attempts})")
        return result.id

    def remove(self, task_id: str) -> None:
        self.app.control.revoke(task_id)
        logger.info(f"Revoked task {task_id}")
