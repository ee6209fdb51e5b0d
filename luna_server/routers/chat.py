# luna_server/routers/chat.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — /chat router
------------------------------------
Main HTTP endpoint, used by the web UI and by the messaging bot.

Flow:
  HTTP POST /chat  (ChatRequest JSON)
    -> session_key(source, session_id)     web / bot ids never collide
    -> ReplyOrchestrator.reply()
       - sanitizes the message (empty -> 400)
       - builds persona preamble + bounded history
       - calls the chat model once (failure / timeout -> 502)
       - records the user turn and the reply together
    -> optional speech synthesis (voice=true), best effort
    -> ChatResponse JSON (reply, session_id, mood, audio_url)

Errors are answered with an apology line and a machine-readable code,
never with internal details.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from luna_server.core.container import Services
from luna_server.core.errors import LunaError
from luna_server.core.speech import synthesize_advisory
from luna_server.models.chat_request import ChatRequest
from luna_server.models.chat_response import ChatResponse, ErrorResponse
from luna_server.runtime_state import session_key

from .deps import get_services

# `tags` is just for docs (Swagger / ReDoc), makes it grouped nicely.
router = APIRouter(tags=["chat"])
logger = logging.getLogger(__name__)


@router.post(
    "/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def chat_endpoint(
    request: ChatRequest,
    services: Services = Depends(get_services),
):
    """
    Reply to one user message.

    - 200: ChatResponse
    - 400: empty message (ErrorResponse, error="invalid_input")
    - 502: chat model failed or timed out (ErrorResponse, error="upstream_error")
    """
    session_id = session_key(request.source.value, request.session_id)

    logger.info(
        "[/chat] source=%s session_id=%s text=%r",
        request.source.value,
        session_id,
        request.message[:80],
    )

    try:
        result = await services.orchestrator.reply(session_id, request.message)
    except LunaError as exc:
        logger.warning("[/chat] %s for session_id=%s: %s", exc.code, session_id, exc)
        body = ErrorResponse(reply=exc.user_message, error=exc.code, session_id=session_id)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())
    except Exception as exc:
        # Debug mode surfaces the traceback.
        logger.exception("Unhandled exception in /chat endpoint")
        if services.settings.debug:
            raise

        # Otherwise keep internals out of the response.
        raise HTTPException(
            status_code=500,
            detail="Internal server error in /chat.",
        ) from exc

    audio_url = None
    if request.voice:
        audio_url = await synthesize_advisory(
            services.synthesizer,
            services.audio_store,
            result.reply_text,
            voice=request.tts_voice,
            timeout_s=services.settings.upstream_timeout_s,
        )

    logger.info(
        "[/chat] mood=%s audio=%s session_id=%s reply=%r",
        result.mood,
        bool(audio_url),
        session_id,
        result.reply_text[:80],
    )
    return ChatResponse(
        reply=result.reply_text,
        session_id=session_id,
        mood=result.mood,
        audio_url=audio_url,
    )
