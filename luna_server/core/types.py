# luna_server/core/types.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Shared type helpers
-------------------------------------------
Central place for small shared type definitions used across the core:

- Role         : "user" | "assistant" | "system"
- MoodLabel    : "happy" | "sad" | "neutral"
- ChatModel    : the chat model capability (complete(system_prompt, turns))
- Transcriber  : the speech transcription capability
- Synthesizer  : the speech synthesis capability
- ReplyResult  : outcome of one orchestrated reply
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Protocol

Role = Literal["user", "assistant", "system"]

MoodLabel = Literal["happy", "sad", "neutral"]


# ---------------------------------------------------------------------------
# External capabilities
# ---------------------------------------------------------------------------


class ChatModel(Protocol):
    """Anything that can turn a system prompt + messages into reply text."""

    def complete(
        self,
        system_prompt: str,
        context_turns: List[Dict[str, str]],
    ) -> str:
        """Return the assistant text or raise UpstreamError."""
        ...


class Transcriber(Protocol):
    def transcribe(self, audio: bytes) -> str:
        """Return the transcript (may be empty) or raise UpstreamError."""
        ...


class Synthesizer(Protocol):
    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        """Return encoded audio bytes or raise UpstreamError."""
        ...


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class ReplyResult:
    """
    Result of ReplyOrchestrator.reply().

    Attributes
    ----------
    session_id:
        Namespaced session key the turns were committed to.
    user_text:
        Sanitized user text, exactly as stored in the history.
    reply_text:
        Assistant reply, clamped to max_reply_chars.
    mood:
        Mood read from the user text ("happy" / "sad" / "neutral").
    """
    session_id: str
    user_text: str
    reply_text: str
    mood: MoodLabel
