import logging
from typing import List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import speech

from dubbing.core.config import settings
from dubbing.core.exceptions import ErrorCode, PermanentStageError, TransientStageError
from dubbing.engines.base import Segment, Transcriber, Transcription

logger = logging.getLogger(__name__)

# Short codes used by jobs mapped to Speech-to-Text BCP-47 codes
LANGUAGE_CODES = {
    "zh": "cmn-Hans-CN",
    "vi": "vi-VN",
    "en": "en-US",
    "ja": "ja-JP",
    "ko": "ko-KR",
}


class GoogleSpeechTranscriber(Transcriber):
    """Speech recognition with Google Cloud Speech-to-Text."""

    def __init__(self, client: Optional[speech.SpeechClient] = None, timeout: int = None):
        self._client = client
        self.timeout = timeout or settings.SPEECH_RECOGNITION_TIMEOUT

    @property
    def client(self) -> speech.SpeechClient:
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def transcribe(self, audio_path: str, language: str) -> Transcription:
        """Transcribe a mono 16kHz LINEAR16 file.

        Each recognition result becomes one segment, timed by its first and
        last word. Raises PermanentStageError when no speech is found.
        """
        with open(audio_path, "rb") as audio_file:
            content = audio_file.read()

        audio = speech.RecognitionAudio(content=content)
        config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=16000,
            language_code=LANGUAGE_CODES.get(language, language),
            enable_automatic_punctuation=True,
            enable_word_time_offsets=True,
        )

        try:
            operation = self.client.long_running_recognize(config=config, audio=audio)
            response = operation.result(timeout=self.timeout)
        except google_exceptions.InvalidArgument as e:
            raise PermanentStageError(
                f"Speech recognition rejected the audio: {e}", error_code=ErrorCode.TRANSCRIPTION_FAILED
            )
        except Exception as e:
            raise TransientStageError(
                f"Speech recognition failed: {e}", error_code=ErrorCode.TRANSCRIPTION_FAILED
            )

        segments: List[Segment] = []
        for result in response.results:
            if not result.alternatives:
                continue
            alternative = result.alternatives[0]
            text = alternative.transcript.strip()
            if not text:
                continue
            words = alternative.words
            start = words[0].start_time.total_seconds() if words else 0.0
            end = words[-1].end_time.total_seconds() if words else start
            segments.append(Segment(id=len(segments), start=start, end=end, text=text))

        if not segments:
            raise PermanentStageError("No speech detected in video", error_code=ErrorCode.TRANSCRIPTION_FAILED)

        text = " ".join(segment.text for segment in segments)
        logger.info(f"Transcribed {len(segments)} segments ({len(text)} chars)")
        return Transcription(
            text=text,
            language=language,
            duration=segments[-1].end,
            segments=segments,
        )
