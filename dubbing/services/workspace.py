import logging
import os
import shutil
import time
from typing import List

from dubbing.core.config import settings
from dubbing.core.exceptions import CleanupError

logger = logging.getLogger(__name__)


def temp_path(subdir: str, filename: str) -> str:
    """Path for a temp artifact under the pipeline work directory, creating the folder."""
    directory = os.path.join(settings.DUBBING_TEMP_DIR, subdir)
    os.makedirs(directory, exist_ok=True)
    return os.path.join(directory, filename)


def remove_path(path: str) -> None:
    """Delete a file or directory tree. A missing path is not an error."""
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        elif os.path.exists(path):
            os.remove(path)
    except OSError as e:
        raise CleanupError(path, str(e))


class TempFileTracker:
    """Collects the temporary paths an attempt creates so they can all be removed at the end."""

    def __init__(self):
        self.paths: List[str] = []

    def add(self, *paths: str) -> None:
        for path in paths:
            if path and path not in self.paths:
                self.paths.append(path)

    def cleanup(self) -> int:
        """Remove every tracked path, logging failures. Returns how many could not be removed."""
        failures = 0
        for path in reversed(self.paths):
            try:
                remove_path(path)
            except CleanupError as e:
                failures += 1
                logger.warning(str(e))
        if self.paths:
            logger.info(f"Cleaned up {len(self.paths) - failures}/{len(self.paths)} temp paths")
        self.paths = []
        return failures


def sweep_stale_files(root: str, max_age_seconds: float) -> int:
    """Delete files under ``root`` not modified within ``max_age_seconds``, then empty directories."""
    if not os.path.isdir(root):
        return 0

    cutoff = time.time() - max_age_seconds
    removed = 0
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames:
            path = os.path.join(dirpath, name)
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove stale file {path}: {e}")
        if dirpath != root and not os.listdir(dirpath) and os.path.getmtime(dirpath) < cutoff:
            try:
                os.rmdir(dirpath)
            except OSError as e:
                logger.warning(f"Failed to remove empty directory {dirpath}: {e}")
    return removed
