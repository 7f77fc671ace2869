from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import exists, func
from sqlalchemy.orm import Session, aliased

from dubbing.models.job import STAGE_PROGRESS, TERMINAL_STATUSES, DubbingJob, JobStatus, utcnow


def create_job(
    db: Session,
    *,
    source_id: UUID,
    original_video_url: str,
    source_lang: str,
    target_lang: str,
    options: Dict[str, Any],
    max_retries: int,
) -> DubbingJob:
    """Create a new dubbing job in QUEUED state and commit it."""
    job = DubbingJob(
        source_id=source_id,
        original_video_url=original_video_url,
        source_lang=source_lang,
        target_lang=target_lang,
        options=options,
        status=JobStatus.QUEUED,
        progress=0,
        max_retries=max_retries,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: UUID) -> Optional[DubbingJob]:
    """Get a job by ID."""
    return db.query(DubbingJob).filter(DubbingJob.id == job_id).first()


def get_latest_job_for_source(db: Session, source_id: UUID) -> Optional[DubbingJob]:
    """Get the most recently queued job of a source."""
    return (
        db.query(DubbingJob)
        .filter(DubbingJob.source_id == source_id)
        .order_by(DubbingJob.queued_at.desc())
        .first()
    )


def list_jobs(
    db: Session,
    *,
    skip: int = 0,
    limit: int = 20,
    status: Optional[JobStatus] = None,
) -> Tuple[int, List[DubbingJob]]:
    """Return the total count and one page of jobs, newest first."""
    query = db.query(DubbingJob)
    if status:
        query = query.filter(DubbingJob.status == status)
    total = query.count()
    jobs = query.order_by(DubbingJob.queued_at.desc()).offset(skip).limit(limit).all()
    return total, jobs


def set_job_task_id(db: Session, job: DubbingJob, task_id: str) -> DubbingJob:
    job.task_id = task_id
    db.commit()
    db.refresh(job)
    return job


def advance_job(
    db: Session,
    job: DubbingJob,
    status: JobStatus,
    **fields: Any,
) -> DubbingJob:
    """Move a running job to a pipeline stage.

    Progress never moves backwards: a redelivered attempt re-enters early
    stages while the record still holds the checkpoint of the failed attempt.
    """
    job.status = status
    job.current_step = status.value
    job.progress = max(job.progress or 0, STAGE_PROGRESS[status])
    for name, value in fields.items():
        setattr(job, name, value)
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(
    db: Session,
    job: DubbingJob,
    *,
    dubbed_video_url: str,
    hls_playlist_url: Optional[str],
    subtitles_url: Optional[str],
    thumbnail_url: Optional[str],
    video_meta: Dict[str, Any],
    audio_meta: Dict[str, Any],
    processing_time: int,
    commit: bool = True,
) -> DubbingJob:
    job.status = JobStatus.COMPLETED
    job.progress = STAGE_PROGRESS[JobStatus.COMPLETED]
    job.current_step = JobStatus.COMPLETED.value
    job.completed_at = utcnow()
    job.dubbed_video_url = dubbed_video_url
    job.hls_playlist_url = hls_playlist_url
    job.subtitles_url = subtitles_url
    job.thumbnail_url = thumbnail_url
    job.video_meta = video_meta
    job.audio_meta = audio_meta
    job.processing_time = processing_time
    job.error_message = None
    job.error_stack = None
    if commit:
        db.commit()
        db.refresh(job)
    return job


def mark_job_failed(
    db: Session,
    job: DubbingJob,
    error_message: str,
    error_stack: Optional[str] = None,
    *,
    commit: bool = True,
) -> DubbingJob:
    job.status = JobStatus.FAILED
    job.failed_at = utcnow()
    job.error_message = error_message
    if error_stack is not None:
        job.error_stack = error_stack
    if commit:
        db.commit()
        db.refresh(job)
    return job


def record_job_retry(
    db: Session,
    job: DubbingJob,
    error_message: str,
    *,
    commit: bool = True,
) -> DubbingJob:
    """Count a failed attempt and store its error.

    The counter stops at max_retries; a manually retried job is already past it.
    """
    if job.retry_count < job.max_retries:
        job.retry_count = job.retry_count + 1
    job.error_message = error_message
    if commit:
        db.commit()
        db.refresh(job)
    return job


def reset_job_for_retry(db: Session, job: DubbingJob, *, commit: bool = True) -> DubbingJob:
    """Re-arm a failed job for one more attempt."""
    job.status = JobStatus.QUEUED
    job.progress = 0
    job.current_step = None
    job.started_at = None
    job.failed_at = None
    job.error_message = None
    job.error_stack = None
    job.retry_count = job.retry_count + 1
    job.queued_at = utcnow()
    if commit:
        db.commit()
        db.refresh(job)
    return job


def count_jobs_by_status(db: Session) -> Dict[str, int]:
    rows = db.query(DubbingJob.status, func.count(DubbingJob.id)).group_by(DubbingJob.status).all()
    return {status.value: count for status, count in rows}


def cleanup_expired_jobs(db: Session, days: int = 30) -> int:
    """Delete terminal jobs older than specified days, keeping each source's latest job."""
    cutoff_date = datetime.now(timezone.utc) - timedelta(days=days)
    newer = aliased(DubbingJob)
    has_newer_job = exists().where(
        newer.source_id == DubbingJob.source_id,
        newer.queued_at > DubbingJob.queued_at,
    )
    result = (
        db.query(DubbingJob)
        .filter(
            DubbingJob.queued_at < cutoff_date,
            DubbingJob.status.in_(list(TERMINAL_STATUSES)),
            has_newer_job,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return result
