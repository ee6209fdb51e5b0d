# luna_server/core/speech.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Speech helpers
--------------------------------------
Async wrappers around the speech capabilities.

- transcribe()          : authoritative; raises UpstreamError (also on timeout).
- transcribe_advisory() : best effort, for partial transcripts; returns None
                          on any TranscriptionAdvisoryFailure.
- synthesize_advisory() : best effort TTS; stores the audio and returns its
                          URL, or None when synthesis is off or failed.

Provider calls are blocking (requests), so they run in worker threads and
are bounded with asyncio.wait_for.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from luna_server.core.errors import TranscriptionAdvisoryFailure, UpstreamError
from luna_server.core.types import Synthesizer, Transcriber
from luna_server.utils import ReplyAudioStore

logger = logging.getLogger(__name__)


async def transcribe(transcriber: Transcriber, audio: bytes, timeout_s: float) -> str:
    """Transcribe `audio`; empty input gives "" without calling the provider."""
    if not audio:
        return ""
    try:
        text = await asyncio.wait_for(
            asyncio.to_thread(transcriber.transcribe, audio),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError as exc:
        raise UpstreamError(f"Transcription timed out after {timeout_s:.1f}s") from exc
    return (text or "").strip()


async def _transcribe_partial(transcriber: Transcriber, audio: bytes, timeout_s: float) -> str:
    try:
        return await transcribe(transcriber, audio, timeout_s)
    except UpstreamError as exc:
        raise TranscriptionAdvisoryFailure(str(exc)) from exc


async def transcribe_advisory(
    transcriber: Transcriber,
    audio: bytes,
    timeout_s: float,
) -> Optional[str]:
    """Partial transcription: the text, or None if it failed for any reason."""
    try:
        return await _transcribe_partial(transcriber, audio, timeout_s)
    except TranscriptionAdvisoryFailure as exc:
        logger.debug("Partial transcription skipped: %s", exc)
        return None


async def synthesize_advisory(
    synthesizer: Optional[Synthesizer],
    audio_store: ReplyAudioStore,
    text: str,
    *,
    voice: Optional[str] = None,
    timeout_s: float = 20.0,
) -> Optional[str]:
    """Speak `text` and return the URL of the stored audio, or None."""
    if synthesizer is None or not text:
        return None
    try:
        audio = await asyncio.wait_for(
            asyncio.to_thread(synthesizer.synthesize, text, voice),
            timeout=timeout_s,
        )
        return await asyncio.to_thread(audio_store.save, audio)
    except (UpstreamError, asyncio.TimeoutError, OSError) as exc:
        logger.warning("Speech synthesis skipped: %s", exc or type(exc).__name__)
        return None
