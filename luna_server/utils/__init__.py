# luna_server/utils/__init__.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Utility toolbox
---------------------------------------
Shared helper functions that are used across the server:

- file_io     : safe JSON read/write helpers, temporary audio spooling
- audio_files : synthesized reply audio kept on disk and served as URLs
- logging     : central logging configuration
- timers      : small timing/profiling helpers

Import from here when it makes sense, for a clean public API, e.g.:

    from luna_server.utils import setup_logging, read_json_safely
"""

from __future__ import annotations

from .file_io import (  # noqa: F401
    read_json_safely,
    write_json_atomic,
    write_bytes_atomic,
    temp_audio_file,
)

from .audio_files import ReplyAudioStore  # noqa: F401

from .logging import (  # noqa: F401
    setup_logging,
    get_logger,
)

from .timers import (  # noqa: F401
    Stopwatch,
    log_duration,
)
