from dataclasses import dataclass
from typing import Optional

from dubbing.core.config import settings
from dubbing.engines.base import (
    AudioExtractor,
    AudioMixer,
    Downloader,
    ObjectStore,
    SourceSeparator,
    StreamPackager,
    ThumbnailExtractor,
    Transcriber,
    Translator,
    VideoEncoder,
    VoiceSynthesizer,
)


@dataclass
class EngineSet:
    """The collaborators one pipeline run talks to."""
    downloader: Downloader
    audio_extractor: AudioExtractor
    separator: SourceSeparator
    transcriber: Transcriber
    translator: Translator
    synthesizer: VoiceSynthesizer
    mixer: AudioMixer
    encoder: VideoEncoder
    packager: StreamPackager
    thumbnailer: ThumbnailExtractor
    object_store: ObjectStore


_engines: Optional[EngineSet] = None


def build_engines() -> EngineSet:
    """Wire the production backends."""
    from dubbing.engines.downloader import YtDlpDownloader
    from dubbing.engines.media import (
        FFmpegAudioExtractor,
        FFmpegAudioMixer,
        FFmpegStreamPackager,
        FFmpegThumbnailExtractor,
        FFmpegVideoEncoder,
    )
    from dubbing.engines.separator import DemucsSeparator, PassThroughSeparator
    from dubbing.engines.transcriber import GoogleSpeechTranscriber
    from dubbing.engines.tts import PiperSynthesizer
    from dubbing.services.storage import get_object_store
    from dubbing.services.translation import GoogleTranslator

    separator = DemucsSeparator() if settings.DUBBING_SEPARATOR == "demucs" else PassThroughSeparator()
    return EngineSet(
        downloader=YtDlpDownloader(),
        audio_extractor=FFmpegAudioExtractor(),
        separator=separator,
        transcriber=GoogleSpeechTranscriber(),
        translator=GoogleTranslator(),
        synthesizer=PiperSynthesizer(),
        mixer=FFmpegAudioMixer(),
        encoder=FFmpegVideoEncoder(),
        packager=FFmpegStreamPackager(),
        thumbnailer=FFmpegThumbnailExtractor(),
        object_store=get_object_store(),
    )


def get_engines() -> EngineSet:
    global _engines
    if _engines is None:
        _engines = build_engines()
    return _engines
