from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, String, Text, Uuid

from dubbing.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Status of a dubbing job; the in-progress values are the pipeline stages."""
    QUEUED = "QUEUED"
    DOWNLOADING = "DOWNLOADING"
    EXTRACTING_AUDIO = "EXTRACTING_AUDIO"
    SEPARATING_AUDIO = "SEPARATING_AUDIO"
    TRANSCRIBING = "TRANSCRIBING"
    TRANSLATING = "TRANSLATING"
    GENERATING_VOICE = "GENERATING_VOICE"
    MIXING_AUDIO = "MIXING_AUDIO"
    ENCODING_VIDEO = "ENCODING_VIDEO"
    GENERATING_HLS = "GENERATING_HLS"
    UPLOADING = "UPLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Fixed progress checkpoint for each status
STAGE_PROGRESS = {
    JobStatus.QUEUED: 0,
    JobStatus.DOWNLOADING: 10,
    JobStatus.EXTRACTING_AUDIO: 20,
    JobStatus.SEPARATING_AUDIO: 25,
    JobStatus.TRANSCRIBING: 30,
    JobStatus.TRANSLATING: 50,
    JobStatus.GENERATING_VOICE: 60,
    JobStatus.MIXING_AUDIO: 70,
    JobStatus.ENCODING_VIDEO: 80,
    JobStatus.GENERATING_HLS: 85,
    JobStatus.UPLOADING: 90,
    JobStatus.COMPLETED: 100,
}


class DubbingJob(Base):
    """One attempt record for localizing a source video."""

    __tablename__ = "dubbing_jobs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    source_id = Column(Uuid, ForeignKey("source_videos.id"), nullable=False, index=True)

    # Configuration, fixed at creation
    original_video_url = Column(String(1000), nullable=False)
    source_lang = Column(String(10), nullable=False)
    target_lang = Column(String(10), nullable=False)
    options = Column(JSON, nullable=False, default=dict)

    # Execution state
    status = Column(SQLEnum(JobStatus), nullable=False, default=JobStatus.QUEUED)
    progress = Column(Integer, nullable=False, default=0)
    current_step = Column(String(50))
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    task_id = Column(String(255))

    queued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))

    # Results
    dubbed_video_url = Column(String(1000))
    hls_playlist_url = Column(String(1000))
    subtitles_url = Column(String(1000))
    thumbnail_url = Column(String(1000))
    video_meta = Column(JSON)
    audio_meta = Column(JSON)
    processing_time = Column(Integer)  # seconds

    # Failure info
    error_message = Column(Text)
    error_stack = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_dubbing_job_source_queued", "source_id", "queued_at"),
        Index("idx_dubbing_job_status", "status"),
    )

    def __repr__(self):
        return f"<DubbingJob {self.id} ({self.status})>"
