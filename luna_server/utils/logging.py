# luna_server/utils/logging.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — logging utilities
-----------------------------------------
One place that decides how the companion server logs:

- a single "time [LEVEL] logger: message" line format for every module,
- DEBUG in development (settings.debug), INFO otherwise,
- LUNA_LOG_LEVEL overrides both (e.g. LUNA_LOG_LEVEL=WARNING in a demo),
- chatty third-party loggers (uvicorn access log, urllib3 connection pool,
  httpx used by the test client) held at LUNA_NOISY_LOG_LEVEL (WARNING).

Components log through `logging.getLogger(__name__)` and tag their lines
with a bracketed component name, e.g. "[ConversationStore] ...".
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "urllib3")


def _resolve_level(debug: bool, level: Optional[Union[int, str]]) -> Union[int, str]:
    env_level = os.getenv("LUNA_LOG_LEVEL")
    if env_level:
        return env_level.upper()
    if level is not None:
        return level
    return logging.DEBUG if debug else logging.INFO


def setup_logging(
    *,
    debug: bool = False,
    level: Optional[Union[int, str]] = None,
    noisy: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure the root logger. Safe to call more than once.

    Parameters
    ----------
    debug:
        Usually settings.debug. DEBUG when True, INFO otherwise.
    level:
        Explicit level that wins over `debug` (but not over LUNA_LOG_LEVEL).
    noisy:
        Logger names to hold at LUNA_NOISY_LOG_LEVEL.
    """
    base_level = _resolve_level(debug, level)

    root = logging.getLogger()
    if root.handlers:
        # Already configured (uvicorn --reload, pytest): only retune levels.
        root.setLevel(base_level)
        for handler in root.handlers:
            handler.setLevel(base_level)
    else:
        logging.basicConfig(level=base_level, format=LOG_FORMAT, datefmt=DATE_FORMAT)

    noisy_level = os.getenv("LUNA_NOISY_LOG_LEVEL", "WARNING").upper()
    for name in noisy:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Shorthand for logging.getLogger(name), re-exported by luna_server.utils."""
    return logging.getLogger(name)
