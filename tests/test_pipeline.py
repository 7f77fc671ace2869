import os

import pytest
from celery.exceptions import SoftTimeLimitExceeded

from dubbing.core.exceptions import PermanentStageError, TransientStageError
from dubbing.crud import job as crud_job
from dubbing.models.job import DubbingJob, JobStatus
from dubbing.models.source import VideoStatus
from dubbing.schemas.dubbing import DubbingOptions
from dubbing.services.dubbing import DubbingService
from dubbing.services.pipeline import AttemptOutcome
from dubbing.services.queue import retry_delay


@pytest.fixture
def stage_log(monkeypatch):
    """Record every (status, progress) checkpoint the pipeline writes."""
    log = []
    original = crud_job.advance_job

    def recording_advance(db, job, status, **fields):
        result = original(db, job, status, **fields)
        log.append((status, result.progress))
        return result

    monkeypatch.setattr(crud_job, "advance_job", recording_advance)
    return log


def submit(service, source, **options):
    return service.queue_video_processing(source.id, DubbingOptions(**options))


def reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


def assert_temp_files_gone(box):
    leftovers = [path for path in box.created if os.path.exists(path)]
    assert leftovers == []


def test_basic_job_runs_every_required_stage_in_order(db, service, source, run_attempt, stage_log, object_store, box):
    response = submit(service, source)

    result = run_attempt(response.job_id)

    assert result.outcome == AttemptOutcome.COMPLETED
    assert [status for status, _ in stage_log] == [
        JobStatus.DOWNLOADING,
        JobStatus.EXTRACTING_AUDIO,
        JobStatus.TRANSCRIBING,
        JobStatus.TRANSLATING,
        JobStatus.GENERATING_VOICE,
        JobStatus.MIXING_AUDIO,
        JobStatus.ENCODING_VIDEO,
        JobStatus.UPLOADING,
    ]
    assert [progress for _, progress in stage_log] == [10, 20, 30, 50, 60, 70, 80, 90]

    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.dubbed_video_url == f"https://cdn.test/videos/dubbed/{source.id}.mp4"
    assert job.thumbnail_url == f"https://cdn.test/videos/thumbnails/{source.id}.jpg"
    assert job.hls_playlist_url is None
    assert job.subtitles_url is None
    assert job.completed_at is not None
    assert job.processing_time is not None
    assert job.video_meta == {"duration": 12.0, "resolution": "1280x720", "size": 12, "format": "mp4"}
    assert job.audio_meta["translation"] == "[vi] 你好 世界"
    assert job.audio_meta["tts_config"] == {"voice": "vi-female-1", "speed": 1.0, "pitch": 1.0}
    assert len(job.audio_meta["segments"]) == 2

    db.refresh(source)
    assert source.video_status == VideoStatus.COMPLETED
    assert source.dubbed_video_url == job.dubbed_video_url
    assert source.video_processed_at is not None

    video = object_store.objects[f"videos/dubbed/{source.id}.mp4"]
    assert video["content_type"] == "video/mp4"
    assert video["cache_control"] == "public, max-age=31536000"
    thumbnail = object_store.objects[f"videos/thumbnails/{source.id}.jpg"]
    assert thumbnail["content_type"] == "image/jpeg"
    assert thumbnail["cache_control"] == "public, max-age=86400"

    assert "separate" not in box.calls
    assert "package" not in box.calls
    assert_temp_files_gone(box)


def test_optional_stages_run_when_enabled(db, service, source, run_attempt, stage_log, object_store, engines):
    response = submit(
        service, source, keep_bgm=True, generate_hls=True, generate_subtitles=True, quality="1080p"
    )

    result = run_attempt(response.job_id)

    assert result.outcome == AttemptOutcome.COMPLETED
    statuses = [status for status, _ in stage_log]
    assert statuses.index(JobStatus.SEPARATING_AUDIO) == statuses.index(JobStatus.EXTRACTING_AUDIO) + 1
    assert statuses.index(JobStatus.GENERATING_HLS) == statuses.index(JobStatus.ENCODING_VIDEO) + 1
    assert engines.encoder.qualities == ["1080p"]
    assert engines.mixer.music_paths[0] is not None

    playlist = object_store.objects[f"videos/hls/{source.id}/playlist.m3u8"]
    assert playlist["content_type"] == "application/vnd.apple.mpegurl"
    assert playlist["cache_control"] == "no-cache"
    segment = object_store.objects[f"videos/hls/{source.id}/segment_000.ts"]
    assert segment["content_type"] == "video/mp2t"
    assert f"videos/hls/{source.id}/segment_001.ts" in object_store.objects

    subtitles = object_store.objects[f"videos/subtitles/{source.id}.vtt"]
    assert subtitles["content_type"] == "text/vtt"
    vtt = subtitles["data"].decode("utf-8")
    assert vtt.startswith("WEBVTT")
    assert "00:00:01.500 --> 00:00:03.250" in vtt
    assert "[vi] 世界" in vtt

    job = reload(db, DubbingJob, response.job_id)
    assert job.hls_playlist_url == f"https://cdn.test/videos/hls/{source.id}/playlist.m3u8"
    assert job.subtitles_url == f"https://cdn.test/videos/subtitles/{source.id}.vtt"


def test_transient_failures_are_retried_until_exhausted(db, service, source, run_attempt, box):
    response = submit(service, source)
    box.errors["transcribe"] = TransientStageError("speech service unavailable")

    first = run_attempt(response.job_id, can_redeliver=True)
    assert first.outcome == AttemptOutcome.RETRY
    job = reload(db, DubbingJob, response.job_id)
    assert job.retry_count == 1
    assert job.status == JobStatus.TRANSCRIBING
    assert job.error_message == "speech service unavailable"
    db.refresh(source)
    assert source.video_status == VideoStatus.PROCESSING

    second = run_attempt(response.job_id, can_redeliver=True)
    assert second.outcome == AttemptOutcome.RETRY
    assert reload(db, DubbingJob, response.job_id).retry_count == 2

    third = run_attempt(response.job_id, can_redeliver=False)
    assert third.outcome == AttemptOutcome.FAILED
    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 3
    assert job.failed_at is not None
    assert job.error_message == "speech service unavailable"
    assert "TransientStageError" in job.error_stack
    db.refresh(source)
    assert source.video_status == VideoStatus.FAILED

    assert box.calls.count("download") == 3
    assert_temp_files_gone(box)


def test_redelivery_backoff_doubles():
    assert [retry_delay(n) for n in range(3)] == [5, 10, 20]
    assert retry_delay(3, base=1) == 8


def test_failure_without_deliveries_left_fails_at_once(db, service, source, run_attempt, box):
    response = submit(service, source)
    box.errors["encode"] = TransientStageError("encoder crashed")

    result = run_attempt(response.job_id, can_redeliver=False)

    assert result.outcome == AttemptOutcome.FAILED
    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 1


def test_permanent_error_skips_retries(db, service, source, run_attempt, box):
    response = submit(service, source)
    box.errors["transcribe"] = PermanentStageError("No speech detected in video")

    result = run_attempt(response.job_id, can_redeliver=True)

    assert result.outcome == AttemptOutcome.FAILED
    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.FAILED
    assert job.retry_count == 0
    assert job.error_message == "No speech detected in video"
    assert_temp_files_gone(box)


def test_soft_time_limit_is_retried(db, service, source, run_attempt, box):
    response = submit(service, source)
    box.errors["mix"] = [SoftTimeLimitExceeded()]

    result = run_attempt(response.job_id, can_redeliver=True)

    assert result.outcome == AttemptOutcome.RETRY
    assert reload(db, DubbingJob, response.job_id).error_message.startswith("SoftTimeLimitExceeded")


def test_progress_never_moves_backwards_across_redelivery(db, service, source, run_attempt, stage_log, box):
    response = submit(service, source)
    box.errors["encode"] = [TransientStageError("out of disk")]

    assert run_attempt(response.job_id).outcome == AttemptOutcome.RETRY
    assert run_attempt(response.job_id).outcome == AttemptOutcome.COMPLETED

    progress = [value for _, value in stage_log]
    assert progress == sorted(progress)
    redelivered_download = [p for status, p in stage_log if status == JobStatus.DOWNLOADING][1]
    assert redelivered_download == 80
    assert reload(db, DubbingJob, response.job_id).progress == 100


def test_cancel_during_encoding_stops_at_next_stage(
    db, service, source, run_attempt, box, object_store, cancel_from_api
):
    object_store.objects[f"videos/dubbed/{source.id}.mp4"] = {"data": b"old", "content_type": "video/mp4"}
    object_store.objects[f"videos/hls/{source.id}/playlist.m3u8"] = {"data": b"old", "content_type": "x"}
    response = submit(service, source, generate_hls=True)
    box.hooks["encode"] = lambda: cancel_from_api(source.id)

    result = run_attempt(response.job_id)

    assert result.outcome == AttemptOutcome.CANCELLED
    assert "package" not in box.calls
    assert "thumbnail" not in box.calls

    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "Job cancelled by user"
    assert job.progress == 80

    db.refresh(source)
    assert source.video_status == VideoStatus.CANCELLED
    assert source.dubbed_video_url is None
    assert object_store.objects == {}
    assert_temp_files_gone(box)


def test_cancel_during_upload_discards_uploaded_files(
    db, service, source, run_attempt, box, object_store, cancel_from_api
):
    response = submit(service, source)
    object_store.put_hooks[f"videos/thumbnails/{source.id}.jpg"] = lambda: cancel_from_api(source.id)

    result = run_attempt(response.job_id)

    assert result.outcome == AttemptOutcome.CANCELLED
    assert object_store.objects == {}
    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.FAILED
    assert job.dubbed_video_url is None
    db.refresh(source)
    assert source.video_status == VideoStatus.CANCELLED


def test_terminal_job_is_not_run_again(db, service, source, run_attempt, box):
    response = submit(service, source)
    job = db.get(DubbingJob, response.job_id)
    crud_job.mark_job_failed(db, job, "Job cancelled by user")

    result = run_attempt(response.job_id)

    assert result.outcome == AttemptOutcome.SKIPPED
    assert box.calls == []


def test_unknown_job_is_skipped(run_attempt):
    result = run_attempt("6f1c0c52-3d4e-4b8e-9a55-8f1f2b7f0c11")
    assert result.outcome == AttemptOutcome.SKIPPED


def test_worker_overtaken_by_cancel_and_retry_leaves_newer_attempt_alone(
    db, service, source, run_attempt, object_store, cancel_from_api, session_factory, job_queue
):
    response = submit(service, source)
    newer = []

    def cancel_retry_and_rerun():
        object_store.put_hooks.clear()
        cancel_from_api(source.id)
        session = session_factory()
        try:
            DubbingService(session, job_queue, object_store).retry_job(response.job_id)
        finally:
            session.close()
        newer.append(run_attempt(response.job_id))

    object_store.put_hooks[f"videos/thumbnails/{source.id}.jpg"] = cancel_retry_and_rerun

    older = run_attempt(response.job_id)

    assert newer[0].outcome == AttemptOutcome.COMPLETED
    assert older.outcome == AttemptOutcome.CANCELLED
    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 1
    assert job.dubbed_video_url == f"https://cdn.test/videos/dubbed/{source.id}.mp4"
    assert f"videos/dubbed/{source.id}.mp4" in object_store.objects
    assert f"videos/thumbnails/{source.id}.jpg" in object_store.objects
    db.refresh(source)
    assert source.video_status == VideoStatus.COMPLETED


def test_worker_failing_after_retry_rearmed_the_job_writes_nothing(
    db, service, source, run_attempt, box, cancel_from_api, session_factory, job_queue, object_store
):
    response = submit(service, source)

    def cancel_and_retry():
        cancel_from_api(source.id)
        session = session_factory()
        try:
            DubbingService(session, job_queue, object_store).retry_job(response.job_id)
        finally:
            session.close()

    box.hooks["encode"] = cancel_and_retry
    box.errors["encode"] = [TransientStageError("encoder crashed")]

    result = run_attempt(response.job_id, can_redeliver=False)

    assert result.outcome == AttemptOutcome.CANCELLED
    job = reload(db, DubbingJob, response.job_id)
    assert job.status == JobStatus.QUEUED
    assert job.error_message is None
    assert job.retry_count == 1
