# luna_server/core/streaming.py
# -*- coding: utf-8 -*-
"""
Luna — Live call session
------------------------
One CallSession per /ws/call connection. It owns the audio buffer of the
segment being spoken and turns each finalized segment into a reply:

    binary frames -> buffer -(segment_end)-> transcribe -> orchestrator
                  -> synthesize -> "result" event

States
~~~~~~
- OPEN          : connection accepted, nothing received yet.
- ACCUMULATING  : frames are appended to the buffer. Every
                  `partial_interval_s` a best-effort transcript of the
                  buffer so far is emitted as a "partial" event. Partial
                  failures are swallowed.
- FINALIZING    : a segment is being transcribed / answered. Its audio was
                  detached from the buffer when segment_end arrived, so new
                  frames already belong to the next segment.
- CLOSED        : connection gone. The unfinalized buffer is discarded,
                  queued segments are dropped and in-flight work is
                  cancelled; no further events are sent.

Guarantees
~~~~~~~~~~
- Segments are finalized one at a time by a single worker task reading a
  FIFO queue: a second segment_end waits behind the first, and "result"
  events leave in segment order.
- feed_audio() never suspends; the only awaits are transcription, the
  orchestrated model call and speech synthesis.
- Transcription / model errors become a "result" carrying `error`; the
  connection stays open. Malformed control frames are logged and ignored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from luna_server.core import speech
from luna_server.core.config import settings
from luna_server.core.errors import InvalidInput, UpstreamError
from luna_server.core.orchestrator import ReplyOrchestrator
from luna_server.core.types import Synthesizer, Transcriber
from luna_server.models.call_events import CallError, PartialEvent, ResultEvent
from luna_server.utils import ReplyAudioStore, Stopwatch

logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], Awaitable[None]]

SEGMENT_END_TYPES = frozenset({"segment_end", "end", "finalize"})


class CallState(str, Enum):
    OPEN = "open"
    ACCUMULATING = "accumulating"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass
class _SegmentJob:
    index: int
    audio: bytes


class CallSession:
    """
    State machine for one live voice connection.

    Use as an async context manager (starts the worker, closes on exit):

        async with CallSession(session_id, orchestrator, transcriber, emit) as call:
            call.feed_audio(frame)
            await call.handle_control('{"type": "segment_end"}')

    Parameters
    ----------
    session_id:
        Conversation the segments are answered in (see session_key()).
    orchestrator:
        ReplyOrchestrator used for every finalized segment.
    transcriber / synthesizer:
        Speech capabilities. Without a synthesizer (or audio_store) results
        carry no audio_url.
    emit:
        Coroutine that delivers one JSON-able event to the client.
    clock:
        Monotonic clock used for partial throttling.
    """

    def __init__(
        self,
        session_id: str,
        orchestrator: ReplyOrchestrator,
        transcriber: Transcriber,
        emit: Emit,
        *,
        synthesizer: Optional[Synthesizer] = None,
        audio_store: Optional[ReplyAudioStore] = None,
        voice: Optional[str] = None,
        partial_interval_s: Optional[float] = None,
        partial_min_bytes: Optional[int] = None,
        max_segment_bytes: Optional[int] = None,
        empty_transcript_policy: Optional[str] = None,
        empty_transcript_placeholder: Optional[str] = None,
        empty_transcript_reply: Optional[str] = None,
        timeout_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.orchestrator = orchestrator
        self.transcriber = transcriber
        self.synthesizer = synthesizer
        self.audio_store = audio_store
        self.voice = voice
        self._emit = emit
        self._clock = clock

        def pick(value, default):
            return default if value is None else value

        self.partial_interval_s = pick(partial_interval_s, settings.partial_interval_s)
        self.partial_min_bytes = pick(partial_min_bytes, settings.partial_min_bytes)
        self.max_segment_bytes = pick(max_segment_bytes, settings.max_segment_bytes)
        self.empty_transcript_policy = pick(
            empty_transcript_policy, settings.empty_transcript_policy
        )
        self.empty_transcript_placeholder = pick(
            empty_transcript_placeholder, settings.empty_transcript_placeholder
        )
        self.empty_transcript_reply = pick(
            empty_transcript_reply, settings.empty_transcript_reply
        )
        self.timeout_s = pick(timeout_s, settings.upstream_timeout_s)

        self.state = CallState.OPEN
        self._buffer = bytearray()
        self._segment_index = 1
        self._last_partial_at = clock()
        self._partial_task: Optional[asyncio.Task] = None
        self._queue: "asyncio.Queue[Optional[_SegmentJob]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "CallSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run_worker())
            logger.info("[CallSession] opened session=%s", self.session_id)

    async def close(self) -> None:
        """Discard the open segment, drop queued ones, cancel in-flight work."""
        if self.state is CallState.CLOSED:
            return
        self.state = CallState.CLOSED

        discarded = len(self._buffer)
        self._buffer = bytearray()

        dropped = 0
        while not self._queue.empty():
            if self._queue.get_nowait() is not None:
                dropped += 1

        tasks = [
            task
            for task in (self._partial_task, self._worker)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(
            "[CallSession] closed session=%s discarded_bytes=%d dropped_segments=%d",
            self.session_id,
            discarded,
            dropped,
        )

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    @property
    def segment_index(self) -> int:
        """Number of the segment currently being accumulated (1-based)."""
        return self._segment_index

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def feed_audio(self, frame: bytes) -> None:
        """Append one binary frame to the current segment. Never suspends."""
        if self.state is CallState.CLOSED or not frame:
            return

        if len(self._buffer) + len(frame) > self.max_segment_bytes:
            logger.warning(
                "[CallSession] session=%s segment %d exceeds %d bytes; dropping frame",
                self.session_id,
                self._segment_index,
                self.max_segment_bytes,
            )
            return

        self._buffer.extend(frame)
        if self.state is CallState.OPEN:
            self.state = CallState.ACCUMULATING
        self._maybe_start_partial()

    def end_segment(self) -> Optional[int]:
        """
        Detach the current buffer as a finished segment and queue it.

        Returns the segment number, or None if the call is closed.
        """
        if self.state is CallState.CLOSED:
            return None

        job = _SegmentJob(index=self._segment_index, audio=bytes(self._buffer))
        self._buffer = bytearray()
        self._segment_index += 1
        self._last_partial_at = self._clock()
        self._queue.put_nowait(job)

        logger.info(
            "[CallSession] session=%s segment %d queued (%d bytes)",
            self.session_id,
            job.index,
            len(job.audio),
        )
        return job.index

    async def handle_control(self, raw: str) -> None:
        """Dispatch one text frame. Bad frames are logged and ignored."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("[CallSession] ignoring malformed control frame: %r", raw[:200])
            return

        if not isinstance(data, dict):
            logger.warning("[CallSession] ignoring non-object control frame: %r", raw[:200])
            return

        msg_type = str(data.get("type") or "").strip().lower()

        if msg_type in SEGMENT_END_TYPES:
            self.end_segment()
        elif msg_type == "ping":
            await self._send({"type": "pong"})
        else:
            logger.warning("[CallSession] ignoring unknown control type: %r", msg_type)

    # ------------------------------------------------------------------
    # Partials
    # ------------------------------------------------------------------

    def _maybe_start_partial(self) -> None:
        now = self._clock()
        if now - self._last_partial_at < self.partial_interval_s:
            return
        if len(self._buffer) < self.partial_min_bytes:
            return
        if self._partial_task is not None and not self._partial_task.done():
            return

        self._last_partial_at = now
        self._partial_task = asyncio.create_task(
            self._emit_partial(self._segment_index, bytes(self._buffer))
        )

    async def _emit_partial(self, segment: int, audio: bytes) -> None:
        text = await speech.transcribe_advisory(self.transcriber, audio, self.timeout_s)
        if not text:
            return
        # The segment was finalized meanwhile; its result is authoritative.
        if self.state is CallState.CLOSED or segment != self._segment_index:
            return
        await self._send(PartialEvent(segment=segment, text=text).model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def _run_worker(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                return

            self.state = CallState.FINALIZING
            try:
                with Stopwatch(f"finalize segment {job.index}", logger, logging.DEBUG):
                    event = await self._finalize(job)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "[CallSession] session=%s segment %d failed unexpectedly",
                    self.session_id,
                    job.index,
                )
                event = ResultEvent(
                    segment=job.index,
                    error=CallError(
                        code="internal_error",
                        message="Sorry, something went wrong on my side.",
                    ),
                )
            finally:
                if self.state is not CallState.CLOSED:
                    self.state = CallState.ACCUMULATING

            await self._send(event.model_dump(mode="json"))

    async def _finalize(self, job: _SegmentJob) -> ResultEvent:
        try:
            transcript = await speech.transcribe(self.transcriber, job.audio, self.timeout_s)
        except UpstreamError as exc:
            logger.warning(
                "[CallSession] session=%s segment %d transcription failed: %s",
                self.session_id,
                job.index,
                exc,
            )
            return ResultEvent(segment=job.index, error=CallError.from_exc(exc))

        model_input = transcript
        if not transcript and self.empty_transcript_policy == "placeholder":
            model_input = self.empty_transcript_placeholder

        try:
            result = await self.orchestrator.reply(self.session_id, model_input)
        except InvalidInput as exc:
            # Empty transcript under the "reject" policy: answer with the apology.
            audio_url = await self._speak(self.empty_transcript_reply)
            return ResultEvent(
                segment=job.index,
                transcript=transcript,
                reply=self.empty_transcript_reply,
                audio_url=audio_url,
                error=CallError.from_exc(exc),
            )
        except UpstreamError as exc:
            logger.warning(
                "[CallSession] session=%s segment %d reply failed: %s",
                self.session_id,
                job.index,
                exc,
            )
            return ResultEvent(
                segment=job.index,
                transcript=transcript,
                reply=exc.user_message,
                error=CallError.from_exc(exc),
            )

        audio_url = await self._speak(result.reply_text)
        return ResultEvent(
            segment=job.index,
            transcript=transcript,
            reply=result.reply_text,
            audio_url=audio_url,
            mood=result.mood,
        )

    async def _speak(self, text: str) -> Optional[str]:
        if self.audio_store is None:
            return None
        return await speech.synthesize_advisory(
            self.synthesizer,
            self.audio_store,
            text,
            voice=self.voice,
            timeout_s=self.timeout_s,
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, payload: Dict[str, Any]) -> bool:
        if self.state is CallState.CLOSED:
            return False
        async with self._send_lock:
            try:
                await self._emit(payload)
                return True
            except Exception:  # noqa: BLE001
                # Client is gone; close() will follow from the receive loop.
                logger.debug("[CallSession] failed to send event", exc_info=True)
                return False
