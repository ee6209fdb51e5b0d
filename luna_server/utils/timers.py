# luna_server/utils/timers.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — timing utilities
----------------------------------------
Latency is what a companion feels like, so every upstream hop is timed:

- Stopwatch     : `with` block timing (chat model call, segment finalize).
- log_duration  : decorator for provider methods (TTS, STT).

Both log "<label> took <seconds> s" at the level they are given (DEBUG for
the per-request hops).
"""

from __future__ import annotations

import functools
import logging
import time
from contextlib import ContextDecorator
from typing import Any, Callable, Optional, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


class Stopwatch(ContextDecorator):
    """
    Time a block and log it on exit, also when the block raises.

        with Stopwatch("chat model call", logger, logging.DEBUG) as sw:
            reply = model.complete(...)
        sw.elapsed  # seconds
    """

    def __init__(
        self,
        label: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.INFO,
    ) -> None:
        self.label = label
        self.logger = logger or logging.getLogger(__name__)
        self.level = level
        self.elapsed: float = 0.0
        self._started_at: float = 0.0

    def __enter__(self) -> "Stopwatch":
        self._started_at = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:  # type: ignore[override]
        self.elapsed = time.perf_counter() - self._started_at
        outcome = "" if exc_type is None else f" (failed: {exc_type.__name__})"
        self.logger.log(self.level, "%s took %.3f s%s", self.label, self.elapsed, outcome)


def log_duration(
    label: str,
    logger: Optional[logging.Logger] = None,
    level: int = logging.INFO,
) -> Callable[[F], F]:
    """Decorator form of Stopwatch for functions and methods."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with Stopwatch(label, logger, level):
                return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
