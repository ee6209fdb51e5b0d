# luna_server/core/safety.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Text guards
-----------------------------------
Pure helpers applied at the edges of a reply cycle:

- sanitize_user_text() : what the user typed (or what the transcriber heard)
                         before it is stored or sent to the model.
- clamp_reply_text()   : what the model answered before it is stored,
                         spoken and returned.

No network, no I/O.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from luna_server.core.config import settings

logger = logging.getLogger(__name__)

# C0 controls except \t \n \r (collapsed as whitespace below), DEL, and the
# zero-width characters chat clients like to paste in.
_INVISIBLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\u200b-\u200d\u2060\ufeff]")

ELLIPSIS = "..."


@dataclass
class SanitizedTextResult:
    original: str
    sanitized: str
    truncated: bool
    too_short: bool


def sanitize_user_text(
    raw_text: Optional[str],
    max_chars: Optional[int] = None,
) -> SanitizedTextResult:
    """
    Normalize user input.

    NFC-normalizes, drops invisible characters, collapses every run of
    whitespace to one space and cuts the result at `max_chars`
    (settings.max_user_chars by default; <= 0 means no limit).
    `too_short` is set when nothing printable is left; callers reject that
    input instead of storing it.
    """
    limit = settings.max_user_chars if max_chars is None else max_chars
    original = raw_text if isinstance(raw_text, str) else ""

    text = unicodedata.normalize("NFC", original)
    text = " ".join(_INVISIBLE_RE.sub("", text).split())

    truncated = 0 < limit < len(text)
    if truncated:
        logger.debug("sanitize_user_text: cutting %d chars to %d", len(text), limit)
        text = text[:limit].rstrip()

    return SanitizedTextResult(
        original=original,
        sanitized=text,
        truncated=truncated,
        too_short=not text,
    )


def clamp_reply_text(reply_text: str, limit: Optional[int] = None) -> str:
    """
    Keep a reply short enough to speak and display.

    Replies within `limit` (settings.max_reply_chars by default) are
    returned unchanged. Longer ones are cut at the last word boundary that
    leaves room for "...". Limits too small for the ellipsis get a hard cut;
    a limit <= 0 yields "".
    """
    text = reply_text if isinstance(reply_text, str) else str(reply_text or "")
    if limit is None:
        limit = settings.max_reply_chars

    if limit <= 0:
        logger.warning("clamp_reply_text: limit %d leaves no room for a reply", limit)
        return ""
    if len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return text[:limit]

    head = text[: limit - len(ELLIPSIS)]
    # Prefer not to split a word when a boundary is reasonably close.
    boundary = head.rfind(" ")
    if boundary >= len(head) // 2:
        head = head[:boundary]
    clamped = head.rstrip() + ELLIPSIS

    logger.debug("clamp_reply_text: %d -> %d chars", len(text), len(clamped))
    return clamped
