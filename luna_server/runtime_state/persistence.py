# luna_server/runtime_state/persistence.py
# -*- coding: utf-8 -*-
"""
Luna — Session persistence
--------------------------

Durable snapshots of the ConversationStore.

The store only talks to the `SessionRepository` protocol, so the JSON file
below can later be replaced (e.g. by an embedded key-value store) without
touching the store logic.

File layout
~~~~~~~~~~~
One human-readable JSON document mapping session id -> session snapshot:

    {
      "web:abc": {"session_id": "web:abc", "turns": [...], "summary": null, ...},
      "bot:42":  {...}
    }

The document is rewritten wholesale on every save, atomically.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Union

from pydantic import ValidationError

from luna_server.core.errors import PersistenceError
from luna_server.utils import read_json_safely, write_json_atomic

from .models import RuntimeState

logger = logging.getLogger(__name__)


class SessionRepository(Protocol):
    """Storage backend for RuntimeState snapshots."""

    def load(self) -> RuntimeState:
        """Return the last saved state, or an empty one. Never raises."""
        ...

    def save(self, state: RuntimeState) -> None:
        """Persist `state` completely. Raises PersistenceError on failure."""
        ...


class JsonFileRepository:
    """
    SessionRepository backed by a single JSON file.

    - save(): temp file + fsync + rename, so a crash mid-write never leaves a
      truncated document behind.
    - load(): missing, unreadable or invalid files degrade to an empty state
      (logged, not fatal).
    """

    def __init__(self, path: Union[Path, str]) -> None:
        self.path = Path(path)

    def load(self) -> RuntimeState:
        if not self.path.exists():
            logger.info(
                "[JsonFileRepository] No sessions file at %s, starting empty.",
                self.path,
            )
            return RuntimeState()

        raw = read_json_safely(self.path, default=None)
        if not isinstance(raw, dict):
            logger.warning(
                "[JsonFileRepository] Unreadable or corrupt sessions file %s; "
                "starting with empty state.",
                self.path,
            )
            return RuntimeState()

        try:
            state = RuntimeState.model_validate({"sessions": raw})
        except ValidationError as exc:
            logger.warning(
                "[JsonFileRepository] Failed to validate sessions from %s: %s; "
                "starting with empty state.",
                self.path,
                exc,
            )
            return RuntimeState()

        logger.info(
            "[JsonFileRepository] Loaded %d sessions from %s",
            len(state.sessions),
            self.path,
        )
        return state

    def save(self, state: RuntimeState) -> None:
        payload = {
            sid: session.model_dump(mode="json")
            for sid, session in state.sessions.items()
        }
        try:
            write_json_atomic(self.path, payload)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Failed to write {self.path}: {exc}") from exc
