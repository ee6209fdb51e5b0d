"""
Runtime state package for the Luna companion server.

This package owns per-session conversation state, so Luna can hold
multi-turn conversations without mixing users, and keeps it on disk.

Typical wiring (see core/container.py):

    from luna_server.runtime_state import ConversationStore, JsonFileRepository

    store = ConversationStore(JsonFileRepository(settings.sessions_path))
    store.set_summarizer(Summarizer(chat_model))

    store.append_exchange(session_id, user_text, reply_text)
    window = store.context_window(session_id)
"""

from .models import (
    RuntimeState,
    SessionData,
    SessionTurn,
    Surface,
    session_key,
)
from .persistence import JsonFileRepository, SessionRepository
from .sessions import ConversationStore, SummarizerFn

__all__ = [
    "RuntimeState",
    "SessionData",
    "SessionTurn",
    "Surface",
    "session_key",
    "JsonFileRepository",
    "SessionRepository",
    "ConversationStore",
    "SummarizerFn",
]
