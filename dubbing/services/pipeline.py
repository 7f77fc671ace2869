"""Stage executor for dubbing jobs.

One ``DubbingPipeline.run`` call is one delivery of a queued job. It walks the
job through the stages in fixed order, checkpointing status and progress after
each transition, and decides what the queue should do when a stage fails:

* ``RETRY``: the attempt failed and the job has retries left; the caller asks
  the queue to redeliver with backoff.
* ``FAILED``: retries are exhausted, the delivery was the last one, or the
  error is permanent. The job and its source are marked FAILED.
* ``CANCELLED``: the job was force-failed by a cancel while running, or was
  re-armed by a retry for a newer attempt. Nothing more is written. After a
  cancel, files this attempt uploaded are removed; after a re-arm they are left
  for the newer attempt, which publishes under the same keys.

Temp files of the attempt are removed on every path.
"""
import logging
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from dubbing.core.config import settings
from dubbing.core.exceptions import JobCancelled, PermanentStageError
from dubbing.core.metrics import JOBS_FINISHED, STAGE_DURATION
from dubbing.crud import job as crud_job
from dubbing.crud import source as crud_source
from dubbing.engines.base import Segment
from dubbing.engines.registry import EngineSet
from dubbing.models.job import DubbingJob, JobStatus, utcnow
from dubbing.models.source import VideoStatus
from dubbing.services import storage
from dubbing.services.subtitles import build_vtt
from dubbing.services.workspace import TempFileTracker, temp_path

logger = logging.getLogger(__name__)


class AttemptOutcome(str, Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass
class AttemptResult:
    outcome: AttemptOutcome
    job_id: str
    error: Optional[BaseException] = None
    retry_count: int = 0
    urls: Dict[str, Optional[str]] = field(default_factory=dict)


class DubbingPipeline:
    def __init__(self, db: Session, engines: EngineSet):
        self.db = db
        self.engines = engines
        self.tracker = TempFileTracker()
        self.uploaded_keys: List[str] = []
        self.timings: Dict[str, float] = {}
        self.attempt_token: Optional[datetime] = None

    def run(self, job_id, can_redeliver: bool = True) -> AttemptResult:
        """Execute one attempt of a job.

        Args:
            job_id: Job to run
            can_redeliver: Whether the queue still has a delivery left for this work item
        """
        job = crud_job.get_job(self.db, UUID(str(job_id)))
        if job is None:
            logger.warning(f"Job {job_id} not found, dropping work item")
            return AttemptResult(AttemptOutcome.SKIPPED, str(job_id))
        if job.status.is_terminal:
            logger.info(f"Job {job_id} is already {job.status.value}, skipping")
            return AttemptResult(AttemptOutcome.SKIPPED, str(job_id), retry_count=job.retry_count)

        # queued_at identifies this attempt; Retry moves it
        self.attempt_token = job.queued_at

        try:
            urls = self._execute(job)
            JOBS_FINISHED.labels(outcome=AttemptOutcome.COMPLETED.value).inc()
            return AttemptResult(AttemptOutcome.COMPLETED, str(job_id), retry_count=job.retry_count, urls=urls)
        except JobCancelled as e:
            if e.superseded:
                logger.info(f"Job {job_id} was re-armed for a newer attempt, leaving uploads to it")
            else:
                logger.info(f"Job {job_id} was cancelled, stopping at stage boundary")
                self._discard_uploads()
            JOBS_FINISHED.labels(outcome=AttemptOutcome.CANCELLED.value).inc()
            return AttemptResult(AttemptOutcome.CANCELLED, str(job_id), error=e)
        except Exception as e:
            result = self._handle_failure(job, e, can_redeliver)
            JOBS_FINISHED.labels(outcome=result.outcome.value).inc()
            return result
        finally:
            self.tracker.cleanup()

    def _superseded(self, job: DubbingJob) -> bool:
        return job.queued_at != self.attempt_token

    def _ensure_active(self, job: DubbingJob) -> None:
        """Re-read the job and stop if a cancel or a newer attempt has taken it over."""
        self.db.refresh(job)
        if self._superseded(job):
            raise JobCancelled(job.id, superseded=True)
        if job.status.is_terminal:
            raise JobCancelled(job.id)

    @contextmanager
    def _stage(self, job: DubbingJob, status: JobStatus, **fields: Any):
        self._ensure_active(job)
        crud_job.advance_job(self.db, job, status, **fields)
        logger.info(f"Job {job.id}: {status.value} ({job.progress}%)")
        start = time.monotonic()
        yield
        elapsed = time.monotonic() - start
        STAGE_DURATION.labels(stage=status.value).observe(elapsed)
        self.timings[status.value] = round(elapsed, 3)

    def _execute(self, job: DubbingJob) -> Dict[str, Optional[str]]:
        engines = self.engines
        options = job.options or {}
        name = str(job.id)
        source_id = job.source_id
        started = time.monotonic()

        with self._stage(job, JobStatus.DOWNLOADING, started_at=job.started_at or utcnow()):
            crud_source.set_source_status(self.db, source_id, VideoStatus.PROCESSING)
            download = engines.downloader.download(job.original_video_url, name)
            self.tracker.add(download.file_path)

        with self._stage(job, JobStatus.EXTRACTING_AUDIO):
            extraction = engines.audio_extractor.extract(download.file_path, name)
            self.tracker.add(extraction.audio_path)

        voice_path, music_path = extraction.audio_path, None
        if options.get("keep_bgm"):
            with self._stage(job, JobStatus.SEPARATING_AUDIO):
                separation = engines.separator.separate(extraction.audio_path, name)
                self.tracker.add(separation.voice_path, separation.music_path)
                voice_path, music_path = separation.voice_path, separation.music_path

        with self._stage(job, JobStatus.TRANSCRIBING):
            transcription = engines.transcriber.transcribe(voice_path, job.source_lang)

        subtitles_path = None
        with self._stage(job, JobStatus.TRANSLATING):
            translated_text = engines.translator.translate(
                transcription.text, job.source_lang, job.target_lang
            )
            if options.get("generate_subtitles"):
                subtitles_path = self._write_subtitles(job, transcription.segments)

        with self._stage(job, JobStatus.GENERATING_VOICE):
            voice = options.get("tts_voice") or settings.DUBBING_DEFAULT_VOICE
            synthesis = engines.synthesizer.synthesize(translated_text, voice, transcription.segments)
            self.tracker.add(synthesis.audio_path)

        with self._stage(job, JobStatus.MIXING_AUDIO):
            final_audio = engines.mixer.mix(synthesis.audio_path, music_path, settings.DUBBING_DUCKING_DB)
            self.tracker.add(final_audio)

        with self._stage(job, JobStatus.ENCODING_VIDEO):
            quality = options.get("quality") or settings.DUBBING_DEFAULT_QUALITY
            encoding = engines.encoder.encode(download.file_path, final_audio, quality)
            self.tracker.add(encoding.video_path)

        package = None
        if options.get("generate_hls"):
            with self._stage(job, JobStatus.GENERATING_HLS):
                package = engines.packager.package(encoding.video_path)
                self.tracker.add(package.work_dir)

        self._ensure_active(job)
        thumbnail_path = engines.thumbnailer.extract(encoding.video_path, settings.DUBBING_THUMBNAIL_AT)
        self.tracker.add(thumbnail_path)

        with self._stage(job, JobStatus.UPLOADING):
            dubbed_video_url = self._upload(
                storage.dubbed_video_key(source_id), encoding.video_path, "video/mp4", storage.ONE_YEAR_CACHE
            )
            thumbnail_url = self._upload(
                storage.thumbnail_key(source_id), thumbnail_path, "image/jpeg", storage.ONE_DAY_CACHE
            )
            hls_playlist_url = None
            if package is not None:
                for segment_path in package.segment_paths:
                    self._upload(
                        storage.hls_key(source_id, segment_path.rsplit("/", 1)[-1]),
                        segment_path,
                        "video/mp2t",
                        storage.ONE_YEAR_CACHE,
                    )
                hls_playlist_url = self._upload(
                    storage.hls_key(source_id, "playlist.m3u8"),
                    package.playlist_path,
                    "application/vnd.apple.mpegurl",
                    storage.NO_CACHE,
                )
            subtitles_url = None
            if subtitles_path is not None:
                subtitles_url = self._upload(
                    storage.subtitles_key(source_id), subtitles_path, "text/vtt", storage.ONE_DAY_CACHE
                )

        self._ensure_active(job)
        video_meta = {
            "duration": encoding.duration,
            "resolution": encoding.resolution,
            "size": encoding.size,
            "format": encoding.format,
        }
        audio_meta = {
            "transcription": transcription.text,
            "translation": translated_text,
            "tts_config": {"voice": synthesis.voice, "speed": synthesis.speed, "pitch": synthesis.pitch},
            "segments": [segment.to_dict() for segment in transcription.segments],
            "timings": self.timings,
        }
        crud_job.mark_job_completed(
            self.db,
            job,
            dubbed_video_url=dubbed_video_url,
            hls_playlist_url=hls_playlist_url,
            subtitles_url=subtitles_url,
            thumbnail_url=thumbnail_url,
            video_meta=video_meta,
            audio_meta=audio_meta,
            processing_time=int(round(time.monotonic() - started)),
            commit=False,
        )
        crud_source.mirror_completed_job(
            self.db,
            source_id,
            dubbed_video_url=dubbed_video_url,
            hls_playlist_url=hls_playlist_url,
            subtitles_url=subtitles_url,
            thumbnail_url=thumbnail_url,
            video_meta=video_meta,
            commit=False,
        )
        self.db.commit()
        logger.info(f"Job {job.id} completed in {job.processing_time}s: {dubbed_video_url}")
        return {
            "dubbed_video_url": dubbed_video_url,
            "hls_playlist_url": hls_playlist_url,
            "subtitles_url": subtitles_url,
            "thumbnail_url": thumbnail_url,
        }

    def _write_subtitles(self, job: DubbingJob, segments: List[Segment]) -> str:
        cues = [
            (segment, self.engines.translator.translate(segment.text, job.source_lang, job.target_lang))
            for segment in segments
        ]
        path = temp_path("subtitles", f"{job.id}.vtt")
        with open(path, "w", encoding="utf-8") as f:
            f.write(build_vtt(cues))
        self.tracker.add(path)
        return path

    def _upload(self, key: str, path: str, content_type: str, cache_control: str) -> str:
        with open(path, "rb") as f:
            url = self.engines.object_store.put(key, f.read(), content_type, cache_control)
        self.uploaded_keys.append(key)
        return url

    def _discard_uploads(self) -> None:
        for key in self.uploaded_keys:
            try:
                self.engines.object_store.delete(key)
            except Exception as e:
                logger.warning(f"Failed to delete {key} after cancellation: {e}")
        self.uploaded_keys = []

    def _handle_failure(self, job: DubbingJob, exc: Exception, can_redeliver: bool) -> AttemptResult:
        error_message = str(exc) or exc.__class__.__name__
        error_stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.db.rollback()
        self.db.refresh(job)
        if self._superseded(job):
            logger.info(f"Job {job.id} attempt failed after a newer attempt took over: {error_message}")
            return AttemptResult(AttemptOutcome.CANCELLED, str(job.id), error=exc)
        if job.status.is_terminal:
            # Cancelled while the failing stage ran; the cancel's record stands
            self._discard_uploads()
            return AttemptResult(AttemptOutcome.CANCELLED, str(job.id), error=exc)

        permanent = isinstance(exc, PermanentStageError)
        if not permanent:
            crud_job.record_job_retry(self.db, job, error_message, commit=False)

        if permanent or job.retry_count >= job.max_retries or not can_redeliver:
            crud_job.mark_job_failed(self.db, job, error_message, error_stack, commit=False)
            crud_source.set_source_status(self.db, job.source_id, VideoStatus.FAILED, commit=False)
            self.db.commit()
            logger.error(
                f"Job {job.id} failed at {job.current_step} after {job.retry_count} retries: {error_message}"
            )
            return AttemptResult(AttemptOutcome.FAILED, str(job.id), error=exc, retry_count=job.retry_count)

        self.db.commit()
        logger.warning(
            f"Job {job.id} attempt failed at {job.current_step} "
            f"(retry {job.retry_count}/{job.max_retries}): {error_message}"
        )
        return AttemptResult(AttemptOutcome.RETRY, str(job.id), error=exc, retry_count=job.retry_count)
