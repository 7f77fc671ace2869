from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from dubbing.models.job import utcnow
from dubbing.models.source import ACTIVE_VIDEO_STATUSES, SourceVideo, VideoStatus


def get_source(db: Session, source_id: UUID) -> Optional[SourceVideo]:
    """Get a source video by ID."""
    return db.query(SourceVideo).filter(SourceVideo.id == source_id).first()


def claim_source(db: Session, source_id: UUID) -> bool:
    """Atomically flip an idle source to QUEUED.

    A single conditional UPDATE, so two concurrent submissions cannot both
    succeed. Returns False when the source already has an active job. The
    caller owns the transaction and must commit or roll back.
    """
    updated = (
        db.query(SourceVideo)
        .filter(
            SourceVideo.id == source_id,
            or_(
                SourceVideo.video_status.is_(None),
                SourceVideo.video_status.notin_(ACTIVE_VIDEO_STATUSES),
            ),
        )
        .update(
            {SourceVideo.video_status: VideoStatus.QUEUED, SourceVideo.updated_at: utcnow()}
        )
    )
    return updated == 1


def set_source_status(
    db: Session,
    source_id: UUID,
    video_status: VideoStatus,
    *,
    commit: bool = True,
) -> None:
    db.query(SourceVideo).filter(SourceVideo.id == source_id).update(
        {SourceVideo.video_status: video_status, SourceVideo.updated_at: utcnow()}
    )
    if commit:
        db.commit()


def mirror_completed_job(
    db: Session,
    source_id: UUID,
    *,
    dubbed_video_url: str,
    hls_playlist_url: Optional[str],
    subtitles_url: Optional[str],
    thumbnail_url: Optional[str],
    video_meta: Dict[str, Any],
    commit: bool = True,
) -> None:
    """Copy the results of a completed job onto its source."""
    db.query(SourceVideo).filter(SourceVideo.id == source_id).update(
        {
            SourceVideo.video_status: VideoStatus.COMPLETED,
            SourceVideo.dubbed_video_url: dubbed_video_url,
            SourceVideo.hls_playlist_url: hls_playlist_url,
            SourceVideo.subtitles_url: subtitles_url,
            SourceVideo.thumbnail_url: thumbnail_url,
            SourceVideo.video_meta: video_meta,
            SourceVideo.video_processed_at: utcnow(),
            SourceVideo.updated_at: utcnow(),
        }
    )
    if commit:
        db.commit()


def clear_source_results(db: Session, source_id: UUID, *, commit: bool = True) -> None:
    """Empty the mirrored result fields and mark the source CANCELLED."""
    db.query(SourceVideo).filter(SourceVideo.id == source_id).update(
        {
            SourceVideo.video_status: VideoStatus.CANCELLED,
            SourceVideo.dubbed_video_url: None,
            SourceVideo.hls_playlist_url: None,
            SourceVideo.subtitles_url: None,
            SourceVideo.thumbnail_url: None,
            SourceVideo.video_meta: None,
            SourceVideo.updated_at: utcnow(),
        }
    )
    if commit:
        db.commit()
