import enum
import uuid

from sqlalchemy import JSON, Column, DateTime, Enum, Index, String, Uuid

from dubbing.core.database import Base
from dubbing.models.job import utcnow


class VideoStatus(enum.Enum):
    NONE = "none"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_VIDEO_STATUSES = (VideoStatus.QUEUED, VideoStatus.PROCESSING)


class SourceVideo(Base):
    """Catalog entry that owns an original video and mirrors its latest dubbing outcome.

    Rows are created by the catalog; the dubbing core only updates the mirrored fields.
    """

    __tablename__ = "source_videos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(500))
    original_video_url = Column(String(1000))

    # Mirrored from the latest job
    video_status = Column(Enum(VideoStatus), nullable=False, default=VideoStatus.NONE)
    dubbed_video_url = Column(String(1000))
    hls_playlist_url = Column(String(1000))
    subtitles_url = Column(String(1000))
    thumbnail_url = Column(String(1000))
    video_meta = Column(JSON)
    video_processed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_source_video_status", "video_status"),
    )
