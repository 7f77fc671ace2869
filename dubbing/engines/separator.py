import logging
import os
import subprocess

from dubbing.core.config import settings
from dubbing.core.exceptions import CleanupError, ErrorCode, TransientStageError
from dubbing.engines.base import AudioExtractor, SeparationResult, SourceSeparator
from dubbing.engines.media import FFmpegAudioExtractor
from dubbing.services.workspace import remove_path

logger = logging.getLogger(__name__)


class PassThroughSeparator(SourceSeparator):
    """Uses the full mix as the voice track and reports no background."""

    def separate(self, audio_path: str, output_name: str) -> SeparationResult:
        logger.info(f"Source separation disabled, passing {audio_path} through")
        return SeparationResult(voice_path=audio_path, music_path=None)


class DemucsSeparator(SourceSeparator):
    """Two-stem separation (vocals / accompaniment) with the demucs CLI."""

    def __init__(
        self,
        binary: str = None,
        model: str = "htdemucs",
        timeout: int = 1800,
        resampler: AudioExtractor = None,
    ):
        self.binary = binary or settings.DEMUCS_BINARY
        self.model = model
        self.timeout = timeout
        self.resampler = resampler or FFmpegAudioExtractor()

    def separate(self, audio_path: str, output_name: str) -> SeparationResult:
        out_dir = os.path.join(settings.DUBBING_TEMP_DIR, "separated")
        os.makedirs(out_dir, exist_ok=True)
        command = [
            self.binary,
            "--two-stems", "vocals",
            "-n", self.model,
            "-o", out_dir,
            "--filename", f"{output_name}_{{stem}}.{{ext}}",
            audio_path,
        ]
        try:
            subprocess.run(command, capture_output=True, text=True, check=True, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise TransientStageError(
                f"Audio separation failed: {(e.stderr or '').strip()[-500:]}",
                error_code=ErrorCode.PROCESSING_FAILED,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TransientStageError(f"Audio separation failed: {e}", error_code=ErrorCode.PROCESSING_FAILED)

        stem_dir = os.path.join(out_dir, self.model)
        voice_path = os.path.join(stem_dir, f"{output_name}_vocals.wav")
        music_path = os.path.join(stem_dir, f"{output_name}_no_vocals.wav")
        if not os.path.exists(voice_path):
            raise TransientStageError(f"Separated vocals not found: {voice_path}")

        # Stems come out 44.1 kHz stereo; speech recognition takes mono 16 kHz
        vocals = self.resampler.extract(voice_path, f"{output_name}_vocals")
        try:
            remove_path(voice_path)
        except CleanupError as e:
            logger.warning(f"Could not remove raw vocals stem: {e}")

        return SeparationResult(
            voice_path=vocals.audio_path,
            music_path=music_path if os.path.exists(music_path) else None,
            duration=vocals.duration,
        )
