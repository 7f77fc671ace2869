from typing import List, Tuple

from dubbing.engines.base import Segment


def format_timestamp(seconds: float) -> str:
    """Format a WebVTT timestamp (HH:MM:SS.mmm)."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    seconds = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:06.3f}"


def build_vtt(cues: List[Tuple[Segment, str]]) -> str:
    """Create WebVTT subtitles from segments paired with their translated text."""
    vtt_content = ["WEBVTT", ""]
    for segment, text in cues:
        if not text.strip():
            continue
        vtt_content.extend([
            f"{format_timestamp(segment.start)} --> {format_timestamp(segment.end)}",
            text.strip(),
            "",
        ])
    return "\n".join(vtt_content)
