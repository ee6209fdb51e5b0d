# luna_server/models/call_events.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Live call events
----------------------------------------
JSON frames exchanged over /ws/call.

Client -> server:
- binary frames            : raw audio for the current segment
- {"type": "segment_end"}  : finalize the current segment
                             (aliases: "end", "finalize")
- {"type": "ping"}         : connectivity check

Server -> client:
- ReadyEvent    : sent once after the connection is accepted
- PartialEvent  : advisory transcript of the segment so far
- ResultEvent   : authoritative outcome of one finalized segment
- {"type": "pong"}
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from luna_server.core.errors import LunaError
from luna_server.core.types import MoodLabel


class CallError(BaseModel):
    """Machine-readable error code + user-facing text. No internals."""

    code: str
    message: str

    @classmethod
    def from_exc(cls, exc: LunaError) -> "CallError":
        return cls(code=exc.code, message=exc.user_message)


class ReadyEvent(BaseModel):
    type: Literal["ready"] = "ready"
    session_id: str


class PartialEvent(BaseModel):
    type: Literal["partial"] = "partial"
    segment: int = Field(..., description="1-based segment number on this connection.")
    text: str


class ResultEvent(BaseModel):
    """
    Outcome of one finalized segment.

    Fields
    ------
    transcript:
        Full transcript of the segment ("" for silence / no audio), or None
        when transcription itself failed.
    reply:
        Luna's reply text, or an apology when `error` is set.
    audio_url:
        Where the synthesized reply can be fetched, if synthesis worked.
    mood:
        Mood read from the transcript (only on successful replies).
    error:
        Set when the segment could not be answered normally.
    """

    type: Literal["result"] = "result"
    segment: int
    transcript: Optional[str] = None
    reply: Optional[str] = None
    audio_url: Optional[str] = None
    mood: Optional[MoodLabel] = None
    error: Optional[CallError] = None
