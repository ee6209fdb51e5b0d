# luna_server/routers/voice.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — /voice router
-------------------------------------
POST /voice {"text": "...", "voice": "alloy"} -> audio/mpeg bytes

Used by the web UI to speak lines that did not come from /chat (greetings,
replayed messages). Nothing is recorded in any conversation.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from luna_server.core.container import Services
from luna_server.core.errors import UpstreamError
from luna_server.models.voice_request import VoiceRequest

from .deps import get_services

router = APIRouter(tags=["voice"])
logger = logging.getLogger(__name__)


@router.post(
    "/voice",
    response_class=Response,
    responses={200: {"content": {"audio/mpeg": {}}}},
)
async def voice_endpoint(
    request: VoiceRequest,
    services: Services = Depends(get_services),
) -> Response:
    text = request.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Text is required.")

    if services.synthesizer is None:
        raise HTTPException(status_code=503, detail="Speech synthesis is disabled.")

    timeout_s = services.settings.upstream_timeout_s
    try:
        audio = await asyncio.wait_for(
            asyncio.to_thread(services.synthesizer.synthesize, text, request.voice),
            timeout=timeout_s,
        )
    except (UpstreamError, asyncio.TimeoutError) as exc:
        logger.warning("[/voice] synthesis failed: %s", exc or type(exc).__name__)
        raise HTTPException(status_code=502, detail="Speech synthesis failed.") from exc

    logger.info("[/voice] %d chars -> %d bytes", len(text), len(audio))
    return Response(content=audio, media_type="audio/mpeg")
