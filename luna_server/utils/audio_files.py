# luna_server/utils/audio_files.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — reply audio files
-----------------------------------------
Synthesized replies are written to `settings.audio_dir` under random names
and served by the app under `/audio/<name>`. Clients receive the URL, not
the bytes, in chat responses and call `result` events.

Old files are pruned by age (startup hook in main.py).
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from .file_io import write_bytes_atomic

logger = logging.getLogger(__name__)


class ReplyAudioStore:
    """
    Directory of synthesized reply audio.

    Parameters
    ----------
    directory:
        Where files are written (created on demand).
    url_prefix:
        Public path the directory is mounted under.
    max_age_s:
        Files older than this are removed by prune(). <= 0 disables pruning.
    """

    def __init__(
        self,
        directory: Path,
        url_prefix: str = "/audio",
        max_age_s: int = 3600,
    ) -> None:
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_age_s = max_age_s

    def save(self, audio: bytes, suffix: str = ".mp3") -> str:
        """Write `audio` to a new file and return its public URL."""
        name = f"{uuid.uuid4().hex}{suffix}"
        write_bytes_atomic(self.directory / name, audio)
        logger.debug("[ReplyAudioStore] saved %d bytes as %s", len(audio), name)
        return f"{self.url_prefix}/{name}"

    def path_for(self, url: str) -> Optional[Path]:
        """Map a URL returned by save() back to its file, or None."""
        prefix = self.url_prefix + "/"
        if not url.startswith(prefix):
            return None
        name = url[len(prefix):]
        if not name or "/" in name or name.startswith("."):
            return None
        return self.directory / name

    def prune(self, now: Optional[float] = None) -> int:
        """Delete files older than max_age_s. Returns how many were removed."""
        if self.max_age_s <= 0 or not self.directory.is_dir():
            return 0

        cutoff = (now if now is not None else time.time()) - self.max_age_s
        removed = 0
        for path in self.directory.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as exc:
                logger.warning("[ReplyAudioStore] failed to prune %s: %s", path, exc)

        if removed:
            logger.info("[ReplyAudioStore] pruned %d old reply audio files", removed)
        return removed
