import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from dubbing.core.config import settings
from dubbing.core.exceptions import (
    ConflictException,
    ErrorCode,
    ExternalServiceException,
    ResourceException,
    ValidationException,
)
from dubbing.core.metrics import JOBS_SUBMITTED
from dubbing.crud import job as crud_job
from dubbing.crud import source as crud_source
from dubbing.engines.base import ObjectStore
from dubbing.models.job import DubbingJob, JobStatus
from dubbing.models.source import VideoStatus
from dubbing.schemas.dubbing import (
    DubbingOptions,
    JobListResponse,
    ProcessVideoResponse,
    VideoStatusResponse,
)
from dubbing.services import storage
from dubbing.services.queue import JobQueue

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"
MAX_PAGE_SIZE = 100


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DubbingService:
    """Admission, query, cancellation and retry of dubbing jobs."""

    def __init__(self, db: Session, queue: JobQueue, object_store: ObjectStore):
        self.db = db
        self.queue = queue
        self.object_store = object_store

    def queue_video_processing(
        self,
        source_id: UUID,
        options: Optional[DubbingOptions] = None,
        trigger: str = "submit",
    ) -> ProcessVideoResponse:
        """
        Create a job for a source video and hand it to the worker pool.

        Args:
            source_id: Source video to dub
            options: Processing options, defaults when omitted
            trigger: Label for the submission metric

        Returns:
            ProcessVideoResponse: The queued job

        Raises:
            ResourceException: Unknown source
            ValidationException: The source has no video to dub
            ConflictException: The source already has an active job
            ExternalServiceException: The job could not be queued
        """
        source = crud_source.get_source(self.db, source_id)
        if not source:
            raise ResourceException(
                error_code=ErrorCode.SOURCE_NOT_FOUND,
                message="Source video not found",
                details={"source_id": str(source_id)},
            )
        if not source.original_video_url:
            raise ValidationException(
                error_code=ErrorCode.MISSING_SOURCE_VIDEO,
                message="Source has no video to dub",
                details={"source_id": str(source_id)},
            )

        options = options or DubbingOptions()
        if not crud_source.claim_source(self.db, source_id):
            self.db.rollback()
            raise ConflictException(
                error_code=ErrorCode.JOB_ALREADY_ACTIVE,
                message="Video is already being processed",
                details={"source_id": str(source_id)},
            )

        # Commits the claim and the job row together
        job = crud_job.create_job(
            self.db,
            source_id=source_id,
            original_video_url=source.original_video_url,
            source_lang=options.source_lang,
            target_lang=options.target_lang,
            options=options.model_dump(mode="json"),
            max_retries=settings.DUBBING_MAX_RETRIES,
        )
        self._dispatch(job, max_attempts=settings.DUBBING_MAX_RETRIES)
        JOBS_SUBMITTED.labels(trigger=trigger).inc()
        logger.info(f"Queued dubbing job {job.id} for source {source_id}")

        return ProcessVideoResponse(
            job_id=job.id,
            status=JobStatus.QUEUED.value,
            estimated_time=settings.DUBBING_ESTIMATED_SECONDS,
            message="Video queued for dubbing",
        )

    def get_video_status(self, source_id: UUID) -> VideoStatusResponse:
        if not crud_source.get_source(self.db, source_id):
            raise ResourceException(
                error_code=ErrorCode.SOURCE_NOT_FOUND,
                message="Source video not found",
                details={"source_id": str(source_id)},
            )
        job = crud_job.get_latest_job_for_source(self.db, source_id)
        if not job:
            raise ResourceException(
                error_code=ErrorCode.JOB_NOT_FOUND,
                message="No dubbing job found for this video",
                details={"source_id": str(source_id)},
            )
        return self.to_status_response(job)

    def get_job_details(self, job_id: UUID) -> VideoStatusResponse:
        job = crud_job.get_job(self.db, job_id)
        if not job:
            raise ResourceException(
                error_code=ErrorCode.JOB_NOT_FOUND,
                message="Job not found",
                details={"job_id": str(job_id)},
            )
        return self.to_status_response(job)

    def list_jobs(self, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> JobListResponse:
        status_filter = None
        if status:
            try:
                status_filter = JobStatus(status.upper())
            except ValueError:
                raise ValidationException(
                    error_code=ErrorCode.INVALID_INPUT,
                    message=f"Unknown job status: {status}",
                    details={"allowed": [s.value for s in JobStatus]},
                )

        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        offset = max(offset, 0)
        total, jobs = crud_job.list_jobs(self.db, skip=offset, limit=limit, status=status_filter)
        return JobListResponse(total=total, jobs=[self.to_status_response(job) for job in jobs])

    def delete_video(self, source_id: UUID) -> None:
        """
        Cancel the active job of a source and remove its published artifacts.

        Artifact deletions are independent; a failed one is logged and the
        rest still run.
        """
        if not crud_source.get_source(self.db, source_id):
            raise ResourceException(
                error_code=ErrorCode.SOURCE_NOT_FOUND,
                message="Source video not found",
                details={"source_id": str(source_id)},
            )

        job = crud_job.get_latest_job_for_source(self.db, source_id)
        if job and not job.status.is_terminal:
            crud_job.mark_job_failed(self.db, job, CANCELLED_MESSAGE)
            logger.info(f"Cancelled job {job.id} of source {source_id}")
            if job.task_id:
                try:
                    self.queue.remove(job.task_id)
                except Exception as e:
                    logger.warning(f"Failed to revoke task {job.task_id}: {e}")

        for key in (
            storage.dubbed_video_key(source_id),
            storage.thumbnail_key(source_id),
            storage.subtitles_key(source_id),
        ):
            try:
                self.object_store.delete(key)
            except Exception as e:
                logger.warning(f"Failed to delete {key}: {e}")
        try:
            self.object_store.delete_prefix(storage.hls_prefix(source_id))
        except Exception as e:
            logger.warning(f"Failed to delete HLS files of {source_id}: {e}")

        crud_source.clear_source_results(self.db, source_id)

    def regenerate_video(self, source_id: UUID, options: Optional[DubbingOptions] = None) -> ProcessVideoResponse:
        try:
            self.delete_video(source_id)
        except ResourceException:
            logger.info(f"Nothing to cancel for source {source_id}")
        return self.queue_video_processing(source_id, options, trigger="regenerate")

    def retry_job(self, job_id: UUID) -> ProcessVideoResponse:
        """Re-arm a FAILED job for a single attempt without automatic retries."""
        job = crud_job.get_job(self.db, job_id)
        if not job:
            raise ResourceException(
                error_code=ErrorCode.JOB_NOT_FOUND,
                message="Job not found",
                details={"job_id": str(job_id)},
            )
        if job.status != JobStatus.FAILED:
            raise ConflictException(
                error_code=ErrorCode.JOB_NOT_FAILED,
                message="Only failed jobs can be retried",
                details={"job_id": str(job_id), "status": job.status.value},
            )
        if not crud_source.claim_source(self.db, job.source_id):
            self.db.rollback()
            raise ConflictException(
                error_code=ErrorCode.JOB_ALREADY_ACTIVE,
                message="Video is already being processed",
                details={"source_id": str(job.source_id)},
            )

        crud_job.reset_job_for_retry(self.db, job)
        self._dispatch(job, max_attempts=1)
        JOBS_SUBMITTED.labels(trigger="retry").inc()
        logger.info(f"Re-queued job {job.id} (retry {job.retry_count})")

        return ProcessVideoResponse(
            job_id=job.id,
            status=JobStatus.QUEUED.value,
            estimated_time=settings.DUBBING_ESTIMATED_SECONDS,
            message="Job queued for retry",
        )

    def _dispatch(self, job: DubbingJob, *, max_attempts: int) -> None:
        try:
            task_id = self.queue.enqueue(job.id, max_attempts=max_attempts)
        except Exception as e:
            logger.exception(f"Failed to enqueue job {job.id}")
            crud_job.mark_job_failed(self.db, job, f"Failed to enqueue job: {e}", commit=False)
            crud_source.set_source_status(self.db, job.source_id, VideoStatus.FAILED, commit=False)
            self.db.commit()
            raise ExternalServiceException(
                error_code=ErrorCode.QUEUE_ERROR,
                message="Failed to queue dubbing job",
                details={"job_id": str(job.id)},
            )
        crud_job.set_job_task_id(self.db, job, task_id)

    @staticmethod
    def to_status_response(job: DubbingJob) -> VideoStatusResponse:
        completed = job.status == JobStatus.COMPLETED
        started_at = as_utc(job.started_at)

        estimated_completion = None
        if started_at and not job.status.is_terminal:
            now = datetime.now(timezone.utc)
            elapsed = (now - started_at).total_seconds()
            remaining = max(0.0, settings.DUBBING_ESTIMATED_SECONDS - elapsed)
            estimated_completion = now + timedelta(seconds=remaining)

        return VideoStatusResponse(
            job_id=job.id,
            source_id=job.source_id,
            status=job.status.value,
            progress=job.progress,
            current_step=job.current_step or job.status.value,
            retry_count=job.retry_count,
            started_at=started_at,
            estimated_completion=estimated_completion,
            dubbed_video_url=job.dubbed_video_url if completed else None,
            hls_playlist_url=job.hls_playlist_url if completed else None,
            subtitles_url=job.subtitles_url if completed else None,
            thumbnail_url=job.thumbnail_url if completed else None,
            error_message=job.error_message if job.status == JobStatus.FAILED else None,
        )
