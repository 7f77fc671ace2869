import os
import time
from datetime import timedelta

from dubbing.crud.job import cleanup_expired_jobs
from dubbing.engines.base import Segment
from dubbing.models.job import DubbingJob, JobStatus, utcnow
from dubbing.services.subtitles import build_vtt, format_timestamp
from dubbing.services.workspace import TempFileTracker, sweep_stale_files
from dubbing.tasks.metrics import collect_pipeline_metrics


def add_job(db, source, status, days_ago):
    job = DubbingJob(
        source_id=source.id,
        original_video_url=source.original_video_url,
        source_lang="zh",
        target_lang="vi",
        options={},
        status=status,
        queued_at=utcnow() - timedelta(days=days_ago),
    )
    db.add(job)
    db.commit()
    return job.id


def test_cleanup_expired_jobs_keeps_latest_job_per_source(db, source):
    old_failed = add_job(db, source, JobStatus.FAILED, 60)
    old_completed = add_job(db, source, JobStatus.COMPLETED, 45)
    recent = add_job(db, source, JobStatus.COMPLETED, 2)

    deleted = cleanup_expired_jobs(db, days=30)

    assert deleted == 2
    remaining = {job.id for job in db.query(DubbingJob).all()}
    assert remaining == {recent}
    assert old_failed not in remaining and old_completed not in remaining


def test_cleanup_never_deletes_the_only_job(db, source):
    only = add_job(db, source, JobStatus.COMPLETED, 90)

    assert cleanup_expired_jobs(db, days=30) == 0
    assert db.get(DubbingJob, only) is not None


def test_sweep_removes_only_stale_files(tmp_path):
    stale_dir = tmp_path / "downloads"
    stale_dir.mkdir()
    stale = stale_dir / "old.mp4"
    stale.write_bytes(b"x")
    fresh = tmp_path / "fresh.wav"
    fresh.write_bytes(b"x")
    two_days_ago = time.time() - 2 * 86400
    os.utime(stale, (two_days_ago, two_days_ago))

    removed = sweep_stale_files(str(tmp_path), max_age_seconds=3600)

    assert removed == 1
    assert not stale.exists()
    assert fresh.exists()


def test_sweep_of_missing_directory(tmp_path):
    assert sweep_stale_files(str(tmp_path / "missing"), 60) == 0


def test_tracker_removes_files_and_directories(tmp_path):
    file_path = tmp_path / "audio.wav"
    file_path.write_bytes(b"x")
    work_dir = tmp_path / "hls"
    work_dir.mkdir()
    (work_dir / "segment_000.ts").write_bytes(b"x")

    tracker = TempFileTracker()
    tracker.add(str(file_path), str(work_dir), str(tmp_path / "never-created"), None)

    assert tracker.cleanup() == 0
    assert not file_path.exists()
    assert not work_dir.exists()
    assert tracker.paths == []


def test_vtt_output():
    assert format_timestamp(3661.5) == "01:01:01.500"

    vtt = build_vtt([(Segment(0, 0.0, 1.25, "你好"), "Xin chào"), (Segment(1, 1.25, 2.0, "嗯"), "  ")])

    assert vtt == "WEBVTT\n\n00:00:00.000 --> 00:00:01.250\nXin chào\n"


def test_pipeline_metrics(db, source):
    add_job(db, source, JobStatus.COMPLETED, 3)
    add_job(db, source, JobStatus.COMPLETED, 2)
    add_job(db, source, JobStatus.FAILED, 1)
    add_job(db, source, JobStatus.TRANSCRIBING, 0)

    metrics = collect_pipeline_metrics(db)

    assert metrics["total_jobs"] == 4
    assert metrics["by_status"]["COMPLETED"] == 2
    assert round(metrics["success_rate"], 1) == 66.7
