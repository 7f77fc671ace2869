import logging
import os
import uuid
import wave
from typing import Dict, List, Optional

from piper.config import SynthesisConfig
from piper.voice import PiperVoice

from dubbing.core.config import settings
from dubbing.core.exceptions import ErrorCode, PermanentStageError, TransientStageError
from dubbing.engines.base import Segment, SynthesisResult, VoiceSynthesizer
from dubbing.services.workspace import temp_path

logger = logging.getLogger(__name__)

# Piper voice models for Vietnamese
VOICE_MODELS: Dict[str, str] = {
    "vi-female-1": "vi_VN-vais1000-medium",
    "vi-female-2": "vi_VN-vais1000-low",
    "vi-male-1": "vi_VN-vivos-medium",
    "vi-male-2": "vi_VN-vivos-low",
}


class PiperSynthesizer(VoiceSynthesizer):
    """Text-to-speech with Piper voice models, loaded once per model."""

    def __init__(self, model_dir: Optional[str] = None):
        self.model_dir = model_dir or settings.PIPER_MODEL_DIR
        self._voices: Dict[str, PiperVoice] = {}

    def _load_voice(self, model: str) -> PiperVoice:
        if model in self._voices:
            return self._voices[model]

        model_path = os.path.join(self.model_dir, f"{model}.onnx")
        if not os.path.exists(model_path):
            raise PermanentStageError(
                f"Piper voice model not found: {model_path}", error_code=ErrorCode.PROCESSING_FAILED
            )
        config_path = f"{model_path}.json"
        try:
            voice = PiperVoice.load(model_path, config_path if os.path.exists(config_path) else None)
        except Exception as e:
            raise TransientStageError(
                f"Failed to load Piper voice {model}: {e}", error_code=ErrorCode.PROCESSING_FAILED
            )

        self._voices[model] = voice
        logger.info(f"Loaded Piper voice model: {model}")
        return voice

    def synthesize(self, text: str, voice: str, segments: List[Segment]) -> SynthesisResult:
        """Render the whole translated text as one continuous take.

        Segment timings are not used for alignment. The voiceover starts with the
        video and the encoder cuts the output at the shorter of picture and audio.
        """
        if not text.strip():
            raise PermanentStageError("Nothing to synthesize", error_code=ErrorCode.PROCESSING_FAILED)
        model = VOICE_MODELS.get(voice)
        if model is None:
            raise PermanentStageError(f"Unknown voice: {voice}", error_code=ErrorCode.PROCESSING_FAILED)

        piper_voice = self._load_voice(model)
        output_path = temp_path("tts", f"tts_{uuid.uuid4().hex}.wav")
        logger.info(f"Generating speech with {voice} ({len(text)} chars)")
        try:
            chunks = [
                chunk.audio_int16_bytes
                for chunk in piper_voice.synthesize(text, syn_config=SynthesisConfig(length_scale=1.0))
            ]
        except Exception as e:
            raise TransientStageError(f"TTS generation failed: {e}", error_code=ErrorCode.PROCESSING_FAILED)
        if not chunks:
            raise TransientStageError("TTS generation returned no audio", error_code=ErrorCode.PROCESSING_FAILED)

        audio = b"".join(chunks)
        sample_rate = piper_voice.config.sample_rate
        with wave.open(output_path, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(sample_rate)
            wav.writeframes(audio)

        duration = len(audio) / 2 / float(sample_rate)
        return SynthesisResult(audio_path=output_path, duration=duration, sample_rate=sample_rate, voice=voice)
