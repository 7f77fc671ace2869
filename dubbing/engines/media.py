import logging
import os
import uuid
from typing import Dict, Optional, Tuple

import ffmpeg

from dubbing.core.config import settings
from dubbing.core.exceptions import ErrorCode, PermanentStageError, TransientStageError
from dubbing.engines.base import (
    AudioExtractionResult,
    AudioExtractor,
    AudioMixer,
    EncodingResult,
    StreamPackage,
    StreamPackager,
    ThumbnailExtractor,
    VideoEncoder,
)
from dubbing.services.workspace import temp_path

logger = logging.getLogger(__name__)

# Target frame size and video bitrate per quality tier
QUALITY_PRESETS: Dict[str, Tuple[int, int, str]] = {
    "480p": (854, 480, "1000k"),
    "720p": (1280, 720, "2500k"),
    "1080p": (1920, 1080, "5000k"),
}


def run_ffmpeg(stream, what: str) -> None:
    """Run an ffmpeg graph, turning ffmpeg failures into transient stage errors."""
    try:
        ffmpeg.run(stream, overwrite_output=True, capture_stdout=True, capture_stderr=True)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="ignore") if e.stderr else str(e)
        raise TransientStageError(
            f"Failed to {what}: {stderr[-500:]}",
            error_code=ErrorCode.VIDEO_PROCESSING_FAILED,
        )


def probe(path: str) -> dict:
    """Return duration, resolution, size and format of a media file."""
    try:
        info = ffmpeg.probe(path)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="ignore") if e.stderr else str(e)
        raise PermanentStageError(
            f"Unreadable media file {path}: {stderr[-500:]}",
            error_code=ErrorCode.VIDEO_PROCESSING_FAILED,
        )
    fmt = info.get("format", {})
    video = next((s for s in info.get("streams", []) if s.get("codec_type") == "video"), None)
    resolution = f"{video['width']}x{video['height']}" if video else "unknown"
    return {
        "duration": float(fmt.get("duration") or 0),
        "resolution": resolution,
        "size": int(fmt.get("size") or os.path.getsize(path)),
        "format": (fmt.get("format_name") or "").split(",")[0],
    }


class FFmpegAudioExtractor(AudioExtractor):
    def extract(self, video_path: str, output_name: str) -> AudioExtractionResult:
        """Extract audio from video file."""
        audio_path = temp_path("audio", f"{output_name}.wav")
        stream = ffmpeg.input(video_path)
        stream = ffmpeg.output(stream, audio_path, vn=None, acodec="pcm_s16le", ac=1, ar="16k")
        run_ffmpeg(stream, "extract audio")
        duration = probe(audio_path)["duration"]
        logger.info(f"Audio extracted: {audio_path} ({duration:.1f}s)")
        return AudioExtractionResult(audio_path=audio_path, duration=duration)


class FFmpegAudioMixer(AudioMixer):
    def mix(self, voice_path: str, music_path: Optional[str], ducking_db: float) -> str:
        """Lay the voiceover over the background track, lowered by ``ducking_db``."""
        output_path = temp_path("audio", f"mixed_{uuid.uuid4().hex}.wav")
        voice = ffmpeg.input(voice_path).audio
        if music_path:
            music = ffmpeg.input(music_path).audio.filter("volume", f"{ducking_db}dB")
            mixed = ffmpeg.filter([voice, music], "amix", inputs=2, duration="first", dropout_transition=2)
            stream = ffmpeg.output(mixed, output_path)
        else:
            stream = ffmpeg.output(voice, output_path, acodec="pcm_s16le")
        run_ffmpeg(stream, "mix audio")
        return output_path


class FFmpegVideoEncoder(VideoEncoder):
    def encode(self, video_path: str, audio_path: str, quality: str) -> EncodingResult:
        """Swap in the dubbed audio and scale/pad the picture to the quality tier."""
        width, height, bitrate = QUALITY_PRESETS.get(quality, QUALITY_PRESETS["720p"])
        output_path = temp_path("encoded", f"dubbed_{uuid.uuid4().hex}.mp4")

        video = (
            ffmpeg.input(video_path).video
            .filter("scale", width, height, force_original_aspect_ratio="decrease")
            .filter("pad", width, height, "(ow-iw)/2", "(oh-ih)/2")
        )
        audio = ffmpeg.input(audio_path).audio
        stream = ffmpeg.output(
            video,
            audio,
            output_path,
            vcodec="libx264",
            preset="medium",
            crf=23,
            acodec="aac",
            shortest=None,
            **{"b:v": bitrate, "b:a": "192k"},
        )
        run_ffmpeg(stream, "encode video")

        meta = probe(output_path)
        logger.info(f"Video encoded: {output_path} ({meta['size'] / 1024 / 1024:.2f} MB)")
        return EncodingResult(
            video_path=output_path,
            format="mp4",
            resolution=meta["resolution"] if meta["resolution"] != "unknown" else quality,
            duration=meta["duration"],
            size=meta["size"],
        )


class FFmpegStreamPackager(StreamPackager):
    def package(self, video_path: str) -> StreamPackage:
        """Generate an HLS playlist with fixed-length segments."""
        work_dir = temp_path("hls", uuid.uuid4().hex)
        os.makedirs(work_dir, exist_ok=True)
        playlist_path = os.path.join(work_dir, "playlist.m3u8")

        stream = ffmpeg.output(
            ffmpeg.input(video_path),
            playlist_path,
            vcodec="libx264",
            acodec="aac",
            hls_time=settings.DUBBING_HLS_SEGMENT_SECONDS,
            hls_list_size=0,
            hls_segment_filename=os.path.join(work_dir, "segment_%03d.ts"),
            f="hls",
        )
        run_ffmpeg(stream, "generate HLS")

        segment_paths = sorted(
            os.path.join(work_dir, name) for name in os.listdir(work_dir) if name.endswith(".ts")
        )
        total_size = sum(os.path.getsize(p) for p in segment_paths)
        logger.info(f"HLS generated: {len(segment_paths)} segments, {total_size / 1024 / 1024:.2f} MB")
        return StreamPackage(
            playlist_path=playlist_path,
            segment_paths=segment_paths,
            work_dir=work_dir,
            duration=probe(video_path)["duration"],
            total_size=total_size,
        )


class FFmpegThumbnailExtractor(ThumbnailExtractor):
    def extract(self, video_path: str, timestamp: float) -> str:
        output_path = temp_path("encoded", f"thumb_{uuid.uuid4().hex}.jpg")
        stream = ffmpeg.input(video_path, ss=timestamp).output(output_path, vframes=1, **{"q:v": 2})
        run_ffmpeg(stream, "generate thumbnail")
        return output_path
