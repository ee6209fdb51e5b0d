# luna_server/routers/ws.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — WebSocket router
----------------------------------------
WebSocket endpoint for live voice calls:

- /ws/call?session_id=<id>
    Binary frames carry microphone audio; text frames carry JSON control
    messages ({"type": "segment_end"}, {"type": "ping"}). The server sends
    "ready" on connect, then "partial" and "result" events (see
    luna_server.models.call_events).

Design goals
------------
- One CallSession per connection; this router only moves frames in and
  events out.
- Calls share the web namespace, so a call continues the same conversation
  as the browser's text chat.
- Be robust against malformed messages (never crash the server on bad input).
- Whatever way the connection ends, the CallSession is closed and its
  in-flight work cancelled.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from luna_server.core.container import Services
from luna_server.core.streaming import CallSession
from luna_server.models.call_events import ReadyEvent
from luna_server.runtime_state import session_key

from .deps import get_ws_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


def build_call_session(
    services: Services,
    session_id: str,
    websocket: WebSocket,
    voice: Optional[str] = None,
) -> CallSession:
    cfg = services.settings
    return CallSession(
        session_id,
        services.orchestrator,
        services.transcriber,
        websocket.send_json,
        synthesizer=services.synthesizer,
        audio_store=services.audio_store,
        voice=voice,
        partial_interval_s=cfg.partial_interval_s,
        partial_min_bytes=cfg.partial_min_bytes,
        max_segment_bytes=cfg.max_segment_bytes,
        empty_transcript_policy=cfg.empty_transcript_policy,
        empty_transcript_placeholder=cfg.empty_transcript_placeholder,
        empty_transcript_reply=cfg.empty_transcript_reply,
        timeout_s=cfg.upstream_timeout_s,
    )


@router.websocket("/ws/call")
async def websocket_call(
    websocket: WebSocket,
    session_id: Optional[str] = None,
    voice: Optional[str] = None,
    services: Services = Depends(get_ws_services),
) -> None:
    """
    Live call with Luna.

    Query parameters
    ----------------
    session_id:
        Browser session id; the call shares its conversation history.
    voice:
        Optional TTS voice for spoken replies.
    """
    await websocket.accept()
    sid = session_key("web", session_id)
    logger.info("WebSocket /ws/call connected (session_id=%s)", sid)

    call = build_call_session(services, sid, websocket, voice=voice)
    try:
        async with call:
            await websocket.send_json(ReadyEvent(session_id=sid).model_dump())

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                frame = message.get("bytes")
                if frame is not None:
                    call.feed_audio(frame)
                    continue

                text = message.get("text")
                if text is not None:
                    await call.handle_control(text)

    except WebSocketDisconnect:
        pass
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error in WS /ws/call: %s", exc)
        try:
            await websocket.close(code=1011)
        except Exception:  # noqa: BLE001
            pass

    logger.info("WebSocket /ws/call disconnected (session_id=%s)", sid)
