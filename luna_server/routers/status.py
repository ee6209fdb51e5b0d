# luna_server/routers/status.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — /status router
--------------------------------------
Read-only views of the conversation store, for debugging and a simple
operator dashboard:

- GET /status/sessions                 -> one summary row per session
- GET /status/sessions/{session_id}    -> full session (turns + summary)

Session ids are namespaced ("web:<id>", "bot:<id>"), hence the path
converter on the detail route. Store reads run in a worker thread, off the
event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from luna_server.core.container import Services
from luna_server.runtime_state import SessionData

from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/status", tags=["status"])


def _session_row(session: SessionData) -> Dict[str, Any]:
    return {
        "session_id": session.session_id,
        "turns": len(session.turns),
        "summarized_turns": session.summarized_turns,
        "has_summary": bool(session.summary),
        "created_at": session.created_at.isoformat(),
        "last_seen": session.last_seen.isoformat(),
    }


@router.get("/sessions", summary="All conversation sessions")
async def list_sessions(services: Services = Depends(get_services)) -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = []
    state = await asyncio.to_thread(services.store.snapshot)
    for session in state.sessions.values():
        rows.append(_session_row(session))
    rows.sort(key=lambda row: row["last_seen"], reverse=True)

    return {
        "server": {
            "app_name": services.settings.app_name,
            "environment": services.settings.environment,
            "llm_backend": services.settings.llm_backend,
            "max_turns": services.store.max_turns,
            "keep_turns": services.store.keep_turns,
        },
        "count": len(rows),
        "sessions": rows,
    }


@router.get("/sessions/{session_id:path}", summary="One conversation session")
async def get_session(
    session_id: str,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    session = await asyncio.to_thread(services.store.get, session_id)
    if session is None:
        logger.info("[/status] unknown session %s", session_id)
        raise HTTPException(status_code=404, detail="Unknown session.")
    return session.model_dump(mode="json")
