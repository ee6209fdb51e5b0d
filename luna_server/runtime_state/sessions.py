# luna_server/runtime_state/sessions.py
# -*- coding: utf-8 -*-
"""
Luna — Conversation Store
-------------------------

This module implements the per-user conversation store for the companion
server.

Purpose
~~~~~~~
- Track per-session conversation history so Luna can hold multi-turn
  conversations without mixing different users (web vs bot ids are
  namespaced, see models.session_key()).
- Keep every history bounded: once a session holds more than `max_turns`
  turns, the oldest ones are condensed into a single summary turn.
- Persist state through a SessionRepository so a restart does not lose
  context.

Design notes
~~~~~~~~~~~~
- The store is the only component that mutates `turns` / `summary`.
  Readers get deep copies (turns themselves are frozen).
- Mutations of one session id are serialized by a per-id RLock; different
  ids proceed in parallel.
- The summarizer (a model call) runs with no store lock held: the oldest
  slice is copied under the session lock, condensed, and applied only if
  that slice is still the head of the history. At most one summarization
  per session is in flight. Ordering of replies within a session comes
  from the orchestrator's per-session lock.
- Persistence happens after the session lock is released. The snapshot
  is taken under a persist lock at write time, so an older snapshot can
  never overwrite a newer one.
- Summarizer failures are logged and skipped: the turns stay in place and
  the next append retries.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from luna_server.core.config import settings
from luna_server.core.errors import InvalidInput, PersistenceError
from luna_server.core.types import Role

from .models import RuntimeState, SessionData, SessionTurn
from .persistence import SessionRepository

logger = logging.getLogger(__name__)

# Condenses a slice of turns into plain text (may raise; failures are skipped).
SummarizerFn = Callable[[List[SessionTurn]], str]


class ConversationStore:
    """
    Thread-safe, optionally persisted store of conversation sessions.

    Parameters
    ----------
    repository:
        Where snapshots are loaded from / written to. None keeps everything
        in memory (tests, throwaway sessions).
    summarizer:
        Callable that condenses a list of turns. Can be attached later with
        set_summarizer(); without one, histories grow past max_turns until
        it is set.
    max_turns:
        N. The bound enforced after every append.
    keep_turns:
        How many of the newest turns survive a summarization untouched.
        Must satisfy 1 <= keep_turns < max_turns.
    summary_prefix:
        Marker that starts the content of summary turns.
    auto_persist:
        If True, writes a snapshot after every mutating operation.
    """

    def __init__(
        self,
        repository: Optional[SessionRepository] = None,
        *,
        summarizer: Optional[SummarizerFn] = None,
        max_turns: Optional[int] = None,
        keep_turns: Optional[int] = None,
        summary_prefix: Optional[str] = None,
        auto_persist: bool = True,
    ) -> None:
        self.max_turns = settings.max_turns if max_turns is None else max_turns
        self.keep_turns = settings.keep_turns if keep_turns is None else keep_turns
        if not 1 <= self.keep_turns < self.max_turns:
            raise ValueError(
                f"keep_turns must be >= 1 and < max_turns "
                f"(got keep_turns={self.keep_turns}, max_turns={self.max_turns})"
            )
        self.summary_prefix = (
            settings.summary_prefix if summary_prefix is None else summary_prefix
        )
        self.auto_persist = auto_persist

        self._repository = repository
        self._summarizer = summarizer

        self._registry_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._summarizing: Set[str] = set()

        loaded = repository.load() if repository is not None else RuntimeState()
        self._sessions: Dict[str, SessionData] = dict(loaded.sessions)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_summarizer(self, summarizer: Optional[SummarizerFn]) -> None:
        self._summarizer = summarizer

    # ------------------------------------------------------------------
    # Locking helpers
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[session_id] = lock
            return lock

    def _get_or_create_locked(self, session_id: str) -> SessionData:
        """Caller must hold the session's lock."""
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.info("[ConversationStore] Creating new session %s", session_id)
                session = SessionData(session_id=session_id)
                self._sessions[session_id] = session
            return session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_or_create(self, session_id: str) -> SessionData:
        """Return (a copy of) the session, creating an empty one if needed."""
        with self._lock_for(session_id):
            session = self._get_or_create_locked(session_id)
            session.last_seen = datetime.now(timezone.utc)
            return session.model_copy(deep=True)

    def get(self, session_id: str) -> Optional[SessionData]:
        """Return a copy of the session, or None if it does not exist."""
        if session_id not in self._sessions:
            return None
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session is not None else None

    def session_ids(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._sessions)

    def context_window(self, session_id: str) -> List[SessionTurn]:
        """
        Return the turns to send upstream, newest last, at most max_turns.

        A leading summary turn is always kept at the head of the window,
        so the condensed history is never cut off by truncation.
        """
        if session_id not in self._sessions:
            return []
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                return []
            turns = list(session.turns)

        if len(turns) <= self.max_turns:
            return turns

        if self.is_summary_turn(turns[0]):
            return [turns[0]] + turns[-(self.max_turns - 1):]
        return turns[-self.max_turns:]

    def is_summary_turn(self, turn: SessionTurn) -> bool:
        return turn.role == "system" and turn.content.startswith(self.summary_prefix)

    def snapshot(self) -> RuntimeState:
        """Deep copy of every session, each one consistent under its lock."""
        with self._registry_lock:
            session_ids = list(self._sessions)

        sessions: Dict[str, SessionData] = {}
        for sid in session_ids:
            with self._lock_for(sid):
                session = self._sessions.get(sid)
                if session is not None:
                    sessions[sid] = session.model_copy(deep=True)
        return RuntimeState(sessions=sessions)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append_user_turn(self, session_id: str, text: str) -> SessionData:
        return self._append(session_id, [("user", text)])

    def append_assistant_turn(self, session_id: str, text: str) -> SessionData:
        return self._append(session_id, [("assistant", text)])

    def append_exchange(
        self,
        session_id: str,
        user_text: str,
        assistant_text: str,
    ) -> SessionData:
        """
        Append a user turn and its assistant reply as one transaction.

        Both halves are validated before anything is appended, and both are
        appended under the same lock, so no snapshot ever holds one without
        the other.
        """
        return self._append(
            session_id,
            [("user", user_text), ("assistant", assistant_text)],
        )

    def _append(
        self,
        session_id: str,
        items: Sequence[Tuple[Role, str]],
    ) -> SessionData:
        new_turns = [
            SessionTurn(role=role, content=self._require_text(role, text))
            for role, text in items
        ]

        with self._lock_for(session_id):
            session = self._get_or_create_locked(session_id)
            session.turns.extend(new_turns)
            session.last_seen = datetime.now(timezone.utc)
            result = session.model_copy(deep=True)

        if self._summarize_if_needed(session_id):
            result = self.get(session_id) or result

        self._sync()
        return result

    @staticmethod
    def _require_text(role: Role, text: str) -> str:
        cleaned = text.strip() if isinstance(text, str) else ""
        if not cleaned:
            raise InvalidInput(f"Refusing to append an empty {role} turn.")
        return cleaned

    def maybe_summarize(self, session_id: str) -> bool:
        """
        Condense the oldest turns of `session_id` if it exceeds max_turns.

        Returns True if a summarization happened. Never raises: summarizer
        failures leave the history untouched for the next attempt.
        """
        changed = self._summarize_if_needed(session_id)
        if changed:
            self._sync()
        return changed

    def _summarize_if_needed(self, session_id: str) -> bool:
        """
        Run one summarization round for `session_id`.

        The oldest slice is copied under the session lock, condensed with the
        lock released, and applied only if that slice is still the head of
        the history. Otherwise the round is dropped and the next append
        retries.
        """
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None or len(session.turns) <= self.max_turns:
                return False

            if self._summarizer is None:
                logger.warning(
                    "[ConversationStore] Session %s has %d turns (> %d) but no "
                    "summarizer is attached; skipping.",
                    session_id,
                    len(session.turns),
                    self.max_turns,
                )
                return False

            with self._registry_lock:
                if session_id in self._summarizing:
                    return False
                self._summarizing.add(session_id)

            cut = len(session.turns) - self.keep_turns
            head = list(session.turns[:cut])

        try:
            condensed = self._condense(session_id, head)
            if condensed is None:
                return False
            return self._apply_summary(session_id, head, condensed)
        finally:
            with self._registry_lock:
                self._summarizing.discard(session_id)

    def _condense(self, session_id: str, head: List[SessionTurn]) -> Optional[str]:
        """Summarizer call, made without any store lock held."""
        try:
            condensed = self._summarizer(head)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[ConversationStore] Summarization failed for %s (%d turns): %s; "
                "will retry on next append.",
                session_id,
                len(head),
                exc,
            )
            return None

        condensed = condensed.strip() if isinstance(condensed, str) else ""
        if not condensed:
            logger.warning(
                "[ConversationStore] Summarizer returned empty text for %s; "
                "will retry on next append.",
                session_id,
            )
            return None
        return condensed

    def _apply_summary(
        self,
        session_id: str,
        head: List[SessionTurn],
        condensed: str,
    ) -> bool:
        cut = len(head)
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            current = session.turns[:cut] if session is not None else []
            if len(current) != cut or any(a is not b for a, b in zip(current, head)):
                logger.info(
                    "[ConversationStore] History of %s changed while summarizing; "
                    "will retry on next append.",
                    session_id,
                )
                return False

            folded = sum(1 for turn in head if not self.is_summary_turn(turn))
            summary_turn = SessionTurn(
                role="system",
                content=f"{self.summary_prefix} {condensed}",
            )
            session.turns = [summary_turn] + session.turns[cut:]
            session.summary = condensed
            session.summarized_turns += folded

            logger.info(
                "[ConversationStore] Summarized %d turns of %s (%d turns left)",
                cut,
                session_id,
                len(session.turns),
            )
        return True


    def prune_stale_sessions(self, max_age_seconds: int) -> int:
        """
        Remove sessions that have not been seen for more than `max_age_seconds`.

        Returns
        -------
        int
            Number of deleted sessions.
        """
        if max_age_seconds <= 0:
            return 0

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        deleted = 0
        for sid in self.session_ids():
            with self._lock_for(sid):
                session = self._sessions.get(sid)
                if session is None or session.last_seen >= cutoff:
                    continue
                logger.info(
                    "[ConversationStore] Pruning stale session %s (last_seen=%s)",
                    sid,
                    session.last_seen,
                )
                with self._registry_lock:
                    del self._sessions[sid]
                    self._locks.pop(sid, None)
                deleted += 1

        if deleted:
            self._sync()
        return deleted

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _sync(self) -> None:
        if self.auto_persist:
            self.flush()

    def flush(self) -> bool:
        """
        Write the current snapshot through the repository.

        Returns False (after logging) when there is no repository or the
        write failed; in-memory state stays authoritative either way.
        """
        if self._repository is None:
            return False

        with self._persist_lock:
            state = self.snapshot()
            try:
                self._repository.save(state)
            except PersistenceError as exc:
                logger.error("[ConversationStore] Failed to persist sessions: %s", exc)
                return False
        return True
