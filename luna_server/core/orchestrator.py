# luna_server/core/orchestrator.py
# -*- coding: utf-8 -*-
"""
Luna — Reply Orchestrator
-------------------------
High-level pipeline for turning one piece of user input into one reply:

    input text -> sanitize -> (preamble + bounded history) -> chat model
               -> clamp -> ConversationStore.append_exchange -> ReplyResult

This version:
- Rejects empty / whitespace-only input with InvalidInput.
- Serializes replies per session (FIFO asyncio.Lock held for the whole
  cycle), so turns land in the order the requests were accepted.
- Calls the chat model exactly once per reply, in a worker thread, bounded
  by a timeout. There is NO automatic retry: a retry against a paid API
  could double-bill and duplicate turns, so the caller decides.
- Commits the user turn and the assistant turn together, only after the
  model succeeded. A failed or timed-out call leaves the history untouched.
- The store runs its bounding check (summarization) as part of the commit.

It also provides `Summarizer`, the model-calling capability the store uses
to condense old history.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Dict, List, Optional

from luna_server.core import safety
from luna_server.core.config import settings
from luna_server.core.context import (
    build_persona_preamble,
    build_summary_instructions,
    format_transcript,
    turns_to_messages,
)
from luna_server.core.errors import InvalidInput, UpstreamError
from luna_server.core.mood import classify_mood
from luna_server.core.types import ChatModel, ReplyResult
from luna_server.runtime_state import ConversationStore, SessionTurn
from luna_server.utils import Stopwatch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Summarization capability (used by the store)
# ---------------------------------------------------------------------------


class Summarizer:
    """
    Condense a slice of turns with the chat model.

    Called synchronously by ConversationStore, with no store lock held.
    Raises UpstreamError on failure; the store treats that as "skip for now".

    A model that offers its own `summarize(turns)` (the offline canned
    backend) condenses the turns itself instead of answering a prompt.
    """

    def __init__(self, model: ChatModel, instructions: Optional[str] = None) -> None:
        self.model = model
        self.instructions = instructions or build_summary_instructions()

    def __call__(self, turns: List[SessionTurn]) -> str:
        condense = getattr(self.model, "summarize", None)
        with Stopwatch(f"summarize {len(turns)} turns", logger, logging.DEBUG):
            if callable(condense):
                return condense(turns)
            transcript = format_transcript(turns)
            return self.model.complete(
                self.instructions,
                [{"role": "user", "content": transcript}],
            )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ReplyOrchestrator:
    """
    One user input -> one assistant reply, with bounded context.

    Parameters
    ----------
    store:
        ConversationStore that owns every session.
    model:
        Chat model capability (complete(system_prompt, context_turns)).
    preamble:
        Persona/style system prompt. Loaded from the prompt files when omitted.
    timeout_s:
        Upper bound for the model call (settings.upstream_timeout_s).
    """

    def __init__(
        self,
        store: ConversationStore,
        model: ChatModel,
        *,
        preamble: Optional[str] = None,
        timeout_s: Optional[float] = None,
        max_user_chars: Optional[int] = None,
        max_reply_chars: Optional[int] = None,
    ) -> None:
        self.store = store
        self.model = model
        self.preamble = preamble or build_persona_preamble()
        self.timeout_s = settings.upstream_timeout_s if timeout_s is None else timeout_s
        self.max_user_chars = max_user_chars
        self.max_reply_chars = max_reply_chars

        # Entries disappear once no reply holds or waits on the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        # Single event loop: no await between lookup and insert.
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def build_messages(self, session_id: str, user_text: str) -> List[Dict[str, str]]:
        """Bounded history window + the new user message."""
        window = self.store.context_window(session_id)
        messages = turns_to_messages(window)
        messages.append({"role": "user", "content": user_text})
        return messages

    async def reply(self, session_id: str, input_text: str) -> ReplyResult:
        """
        Produce and record one reply.

        Raises
        ------
        InvalidInput
            `input_text` is empty after sanitizing. Nothing is recorded.
        UpstreamError
            The model failed, timed out or returned nothing. Nothing is
            recorded; retrying is safe.
        """
        res = safety.sanitize_user_text(input_text, self.max_user_chars)
        if res.too_short:
            raise InvalidInput("Message is empty.")
        user_text = res.sanitized

        async with self._session_lock(session_id):
            messages = await asyncio.to_thread(self.build_messages, session_id, user_text)

            logger.info(
                "[Orchestrator] session=%s context_turns=%d text=%r",
                session_id,
                len(messages) - 1,
                user_text[:80],
            )

            try:
                with Stopwatch("chat model call", logger, logging.DEBUG):
                    raw_reply = await asyncio.wait_for(
                        asyncio.to_thread(self.model.complete, self.preamble, messages),
                        timeout=self.timeout_s,
                    )
            except asyncio.TimeoutError as exc:
                raise UpstreamError(
                    f"Chat model timed out after {self.timeout_s:.1f}s"
                ) from exc

            reply_text = safety.clamp_reply_text(
                (raw_reply or "").strip(),
                self.max_reply_chars,
            )
            if not reply_text:
                raise UpstreamError("Chat model returned an empty reply.")

            await asyncio.to_thread(
                self.store.append_exchange,
                session_id,
                user_text,
                reply_text,
            )

        return ReplyResult(
            session_id=session_id,
            user_text=user_text,
            reply_text=reply_text,
            mood=classify_mood(user_text),
        )
