import logging
import os
from typing import Any, Dict, Optional

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError, ExtractorError

from dubbing.core.exceptions import ErrorCode, TransientStageError
from dubbing.engines.base import Downloader, DownloadResult
from dubbing.services.workspace import temp_path

logger = logging.getLogger(__name__)


class YtDlpDownloader(Downloader):
    """Downloads the source video with yt-dlp."""

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        self.options = options or {}

    def download(self, url: str, output_name: str) -> DownloadResult:
        output_path = temp_path("downloads", f"{output_name}.mp4")
        options = {
            "outtmpl": output_path,
            "format": "best[ext=mp4]/best",
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            **self.options,
        }
        logger.info(f"Downloading video: {url}")
        try:
            with YoutubeDL(options) as ydl:
                info = ydl.extract_info(url, download=True) or {}
                for entry in info.get("requested_downloads") or []:
                    if entry.get("filepath"):
                        output_path = entry["filepath"]
                        break
        except (DownloadError, ExtractorError) as e:
            raise TransientStageError(f"Video download failed: {e}", error_code=ErrorCode.DOWNLOAD_FAILED)

        if not os.path.exists(output_path):
            raise TransientStageError(
                f"Downloaded file not found: {output_path}", error_code=ErrorCode.DOWNLOAD_FAILED
            )

        width, height = info.get("width"), info.get("height")
        result = DownloadResult(
            file_path=output_path,
            format=info.get("ext") or "mp4",
            resolution=f"{width}x{height}" if width and height else "unknown",
            duration=float(info.get("duration") or 0),
            size=os.path.getsize(output_path),
        )
        logger.info(f"Video downloaded: {output_path} ({result.size / 1024 / 1024:.2f} MB)")
        return result
