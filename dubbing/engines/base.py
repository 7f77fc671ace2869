"""Contracts for the external engines the dubbing pipeline drives.

Every engine is a single blocking request/response capability. Retries and
timeouts inside an engine are its own concern; the pipeline only sees a
result or an exception. Engines signal a failure that a retry cannot fix by
raising ``PermanentStageError``; anything else is treated as transient.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Segment:
    """A time-aligned piece of transcript, in seconds."""
    id: int
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        return {"id": self.id, "start": self.start, "end": self.end, "text": self.text}


@dataclass
class DownloadResult:
    file_path: str
    format: str
    resolution: str
    duration: float
    size: int


@dataclass
class AudioExtractionResult:
    audio_path: str
    duration: float
    sample_rate: int = 16000
    channels: int = 1


@dataclass
class SeparationResult:
    voice_path: str
    music_path: Optional[str]  # None when the separator passes audio through
    duration: float = 0.0


@dataclass
class Transcription:
    text: str
    language: str
    duration: float
    segments: List[Segment] = field(default_factory=list)


@dataclass
class SynthesisResult:
    audio_path: str
    duration: float
    sample_rate: int
    voice: str
    speed: float = 1.0
    pitch: float = 1.0


@dataclass
class EncodingResult:
    video_path: str
    format: str
    resolution: str
    duration: float
    size: int


@dataclass
class StreamPackage:
    playlist_path: str
    segment_paths: List[str]
    work_dir: str
    duration: float
    total_size: int


class Downloader(ABC):
    @abstractmethod
    def download(self, url: str, output_name: str) -> DownloadResult:
        """Fetch the source video to a local file."""


class AudioExtractor(ABC):
    @abstractmethod
    def extract(self, video_path: str, output_name: str) -> AudioExtractionResult:
        """Extract a mono 16kHz track suited for speech recognition."""


class SourceSeparator(ABC):
    @abstractmethod
    def separate(self, audio_path: str, output_name: str) -> SeparationResult:
        """Split audio into a voice track and a background track."""


class Transcriber(ABC):
    @abstractmethod
    def transcribe(self, audio_path: str, language: str) -> Transcription:
        """Recognize speech and return text with time-aligned segments."""


class Translator(ABC):
    @abstractmethod
    def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        """Translate text. Caching, if any, is invisible to the caller."""


class VoiceSynthesizer(ABC):
    @abstractmethod
    def synthesize(self, text: str, voice: str, segments: List[Segment]) -> SynthesisResult:
        """Render text as speech with the given voice."""


class AudioMixer(ABC):
    @abstractmethod
    def mix(self, voice_path: str, music_path: Optional[str], ducking_db: float) -> str:
        """Mix the voice over the (ducked) background and return the output path."""


class VideoEncoder(ABC):
    @abstractmethod
    def encode(self, video_path: str, audio_path: str, quality: str) -> EncodingResult:
        """Replace the audio track of a video, re-encoding to the quality tier."""


class StreamPackager(ABC):
    @abstractmethod
    def package(self, video_path: str) -> StreamPackage:
        """Cut a video into an HLS playlist and segments."""


class ThumbnailExtractor(ABC):
    @abstractmethod
    def extract(self, video_path: str, timestamp: float) -> str:
        """Grab one frame as a JPEG and return its path."""


class ObjectStore(ABC):
    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str, cache_control: Optional[str] = None) -> str:
        """Store bytes under a key and return the public URL."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a single object. Missing objects are not an error."""

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Remove every object under a prefix and return how many were removed."""
