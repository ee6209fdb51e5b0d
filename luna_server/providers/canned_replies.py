# luna_server/providers/canned_replies.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Canned offline replies
----------------------------------------------
This module provides a *fully offline*, deterministic chat backend.

Design goals:
- NEVER depends on network or heavy models.
- ALWAYS returns a short line that fits the user's mood.
- Lets the whole server (store, summarization, calls) run in local dev
  without an API key: set LLM_BACKEND=canned.

The lines are the ones the first Luna web UI answered with before a real
model was wired in.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from luna_server.core.config import settings
from luna_server.core.mood import classify_mood
from luna_server.core.types import MoodLabel
from luna_server.runtime_state import SessionTurn

logger = logging.getLogger(__name__)

CANNED_REPLIES: Dict[MoodLabel, str] = {
    "happy": "Love that energy! 😊",
    "sad": "I’m here with you. 💜",
    "neutral": "Got it.",
}

# Words kept per folded turn, and the cap on a whole summary (newest kept).
SUMMARY_SNIPPET_WORDS = 8
SUMMARY_MAX_CHARS = 600


class CannedChatModel:
    """
    Chat model capability that answers from CANNED_REPLIES.

    The mood is read from the last user message in `context_turns`.
    Summaries come from summarize(), which lists the folded turns instead of
    answering with a mood line.
    """

    def complete(
        self,
        system_prompt: str,
        context_turns: List[Dict[str, str]],
    ) -> str:
        last_user = ""
        for turn in reversed(context_turns):
            if turn.get("role") == "user":
                last_user = turn.get("content") or ""
                break

        mood = classify_mood(last_user)
        logger.debug("CannedChatModel: mood=%s for %r", mood, last_user[:60])
        return CANNED_REPLIES[mood]

    def summarize(self, turns: List[SessionTurn]) -> str:
        """
        Deterministic condensation: one short "Speaker: first words" entry
        per folded turn, in order. A folded summary turn contributes its
        text without the marker, so earlier history carries forward.
        """
        parts: List[str] = []
        for turn in turns:
            text = turn.content.strip()
            if turn.role == "system":
                if text.startswith(settings.summary_prefix):
                    text = text[len(settings.summary_prefix):].strip()
                if text:
                    parts.append(text)
                continue

            words = text.split()
            snippet = " ".join(words[:SUMMARY_SNIPPET_WORDS])
            if len(words) > SUMMARY_SNIPPET_WORDS:
                snippet += "..."
            speaker = "User" if turn.role == "user" else "Luna"
            parts.append(f"{speaker}: {snippet}")

        summary = " | ".join(parts)
        if len(summary) > SUMMARY_MAX_CHARS:
            summary = "..." + summary[-(SUMMARY_MAX_CHARS - 3):]
        return summary
