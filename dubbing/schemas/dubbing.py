from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from dubbing.core.config import settings


class VideoQuality(str, Enum):
    LOW = "480p"
    MEDIUM = "720p"
    HIGH = "1080p"


class TTSVoice(str, Enum):
    VI_FEMALE_1 = "vi-female-1"
    VI_FEMALE_2 = "vi-female-2"
    VI_MALE_1 = "vi-male-1"
    VI_MALE_2 = "vi-male-2"


class DubbingOptions(BaseModel):
    """Per-job processing options, frozen once the job is created."""

    keep_bgm: bool = Field(False, description="Keep background music by separating it from the voice track")
    tts_voice: TTSVoice = Field(TTSVoice(settings.DUBBING_DEFAULT_VOICE), description="Synthesized voice")
    quality: VideoQuality = Field(VideoQuality(settings.DUBBING_DEFAULT_QUALITY), description="Output quality tier")
    generate_subtitles: bool = Field(False, description="Upload WebVTT subtitles of the translation")
    generate_hls: bool = Field(False, description="Package the dubbed video as an HLS playlist")
    source_lang: str = Field(settings.DUBBING_SOURCE_LANG, description="Language spoken in the source video")
    target_lang: str = Field(settings.DUBBING_TARGET_LANG, description="Language of the dubbed video")

    @field_validator("source_lang", "target_lang")
    @classmethod
    def validate_language_code(cls, v: str) -> str:
        if len(v) != 2 or not v.isalpha():
            raise ValueError("Language code must be 2 letters")
        return v.lower()


class ProcessVideoRequest(BaseModel):
    """Schema for submit and regenerate requests."""

    options: Optional[DubbingOptions] = None


class ProcessVideoResponse(BaseModel):
    """Returned when a job has been queued."""

    job_id: UUID = Field(..., description="Dubbing job identifier")
    status: str = Field(..., description="Job status")
    estimated_time: int = Field(..., description="Rough processing time estimate in seconds")
    message: str


class VideoStatusResponse(BaseModel):
    """Projection of a dubbing job."""

    job_id: UUID
    source_id: UUID
    status: str
    progress: int = Field(..., description="Progress percentage (0-100)")
    current_step: str
    retry_count: int = 0
    started_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    dubbed_video_url: Optional[str] = Field(None, description="Only set when COMPLETED")
    hls_playlist_url: Optional[str] = Field(None, description="Only set when COMPLETED")
    subtitles_url: Optional[str] = Field(None, description="Only set when COMPLETED")
    thumbnail_url: Optional[str] = Field(None, description="Only set when COMPLETED")
    error_message: Optional[str] = Field(None, description="Only set when FAILED")


class JobListResponse(BaseModel):
    total: int
    jobs: List[VideoStatusResponse]
