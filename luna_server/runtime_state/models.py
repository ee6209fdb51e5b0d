# luna_server/runtime_state/models.py
# -*- coding: utf-8 -*-
"""
Luna — Runtime Session Models
-----------------------------
Pydantic models for the conversation state that the ConversationStore owns
and the persistence adapter writes to disk.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from luna_server.core.types import Role

Surface = Literal["web", "bot"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_key(surface: Surface, raw_id: Optional[str]) -> str:
    """
    Build the namespaced session id for one originating surface.

    Web session ids and bot chat ids live in separate namespaces, so
    "web:42" and "bot:42" never share a history. A missing id maps to
    the surface's anonymous session.

        >>> session_key("bot", "12345")
        'bot:12345'
        >>> session_key("web", None)
        'web:anonymous'
    """
    cleaned = (raw_id or "").strip()
    return f"{surface}:{cleaned or 'anonymous'}"


class SessionTurn(BaseModel):
    """One message in the conversation history. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    ts: datetime = Field(default_factory=_utcnow)


class SessionData(BaseModel):
    """
    Per-session state.

    Attributes
    ----------
    session_id:
        Namespaced key (see session_key()).
    created_at:
        When this session was first created.
    last_seen:
        Last time we updated this session (used for pruning stale sessions).
    turns:
        Conversation history in conversational order. A leading system turn
        starting with the summary prefix carries the condensed older history.
    summary:
        Latest condensation text (same text the summary turn carries).
    summarized_turns:
        How many ordinary turns have been folded into summaries so far.
    """

    session_id: str
    created_at: datetime = Field(default_factory=_utcnow)
    last_seen: datetime = Field(default_factory=_utcnow)
    turns: List[SessionTurn] = Field(default_factory=list)
    summary: Optional[str] = None
    summarized_turns: int = 0


class RuntimeState(BaseModel):
    """Top-level container for all sessions (what gets persisted)."""

    sessions: Dict[str, SessionData] = Field(default_factory=dict)
