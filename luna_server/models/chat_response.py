# luna_server/models/chat_response.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — ChatResponse model
------------------------------------------
Response bodies for /chat.

- ChatResponse  : 200, Luna's reply (+ mood, + audio_url when voice=true)
- ErrorResponse : 400 / 502, an apology line plus a machine-readable code
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from luna_server.core.types import MoodLabel


class ChatResponse(BaseModel):
    reply: str = Field(..., description="Luna's reply text.")
    session_id: str = Field(..., description="Namespaced session id the turn was recorded in.")
    mood: MoodLabel = Field(..., description="Mood read from the user's message.")
    audio_url: Optional[str] = Field(
        default=None,
        description="Where the spoken reply can be fetched (voice requests only).",
    )


class ErrorResponse(BaseModel):
    reply: str = Field(..., description="Apology shown to the user in place of a reply.")
    error: str = Field(..., description="Error code: invalid_input, upstream_error, ...")
    session_id: Optional[str] = None
