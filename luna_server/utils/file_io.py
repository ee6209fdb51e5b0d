# luna_server/utils/file_io.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — file_io utilities
-----------------------------------------
Safe helpers for reading/writing small JSON files and short-lived audio.

Goals:
- Avoid duplicated ad-hoc JSON handling everywhere.
- Use atomic writes (temp file + fsync + rename) to prevent half-written files.
- Be tolerant: on read errors, log and return a default instead of crashing.
- Never leak temporary audio files or their handles, even on error paths.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def read_json_safely(
    path: Path,
    default: Optional[T] = None,
    *,
    log_missing: bool = False,
) -> Optional[T]:
    """
    Read JSON from a file and return the parsed object.

    Behaviour:
    - If the file does not exist:
        - returns `default`
        - optionally logs at INFO level when log_missing=True
    - If reading or parsing fails:
        - logs at WARNING level
        - returns `default`
    """
    if not path.is_file():
        if log_missing:
            logger.info("read_json_safely: file not found: %s", path)
        return default

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("read_json_safely: failed to read %s: %s", path, exc)
        return default

    try:
        return json.loads(text)  # type: ignore[return-value]
    except json.JSONDecodeError as exc:
        logger.warning("read_json_safely: invalid JSON in %s: %s", path, exc)
        return default


def write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    """
    Write JSON to disk atomically:

    - ensures parent directory exists
    - writes to a temporary file next to the target and fsyncs it
    - renames the temp file over the final path

    A crash at any point leaves either the old or the new document on
    disk, never a truncated one. If anything fails, an exception is raised
    so the caller can decide how to respond.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("write_json_atomic: failed to create dir %s: %s", path.parent, exc)
        raise

    tmp_path = path.with_suffix(path.suffix + ".tmp")

    try:
        json_text = json.dumps(data, ensure_ascii=False, indent=2)
        with open(tmp_path, "w", encoding="utf-8") as fh:
            fh.write(json_text)
            fh.flush()
            os.fsync(fh.fileno())
        tmp_path.replace(path)
    except OSError as exc:
        logger.error("write_json_atomic: failed to write %s: %s", path, exc)
        tmp_path.unlink(missing_ok=True)
        raise


def write_bytes_atomic(path: Path, content: bytes) -> None:
    """Write a binary file using the same atomic strategy as write_json_atomic."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp_path.write_bytes(content)
        tmp_path.replace(path)
    except OSError as exc:
        logger.error("write_bytes_atomic: failed to write %s: %s", path, exc)
        tmp_path.unlink(missing_ok=True)
        raise


@contextmanager
def temp_audio_file(
    audio: bytes,
    *,
    suffix: str = ".webm",
    directory: Optional[Path] = None,
) -> Iterator[Path]:
    """
    Spool `audio` into a temporary file and yield its path.

    The file is closed before the path is yielded and removed when the
    block exits, whether it exits normally or with an exception.

        with temp_audio_file(chunk, directory=settings.tmp_dir) as path:
            with path.open("rb") as fh:
                upload(fh)
    """
    if directory is not None:
        directory.mkdir(parents=True, exist_ok=True)

    fd, name = tempfile.mkstemp(
        prefix="luna-seg-",
        suffix=suffix,
        dir=str(directory) if directory is not None else None,
    )
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(audio)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("temp_audio_file: failed to remove %s: %s", path, exc)
