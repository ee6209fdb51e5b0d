# luna_server/models/voice_request.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — VoiceRequest model
------------------------------------------
Body of POST /voice: speak an arbitrary line in Luna's voice.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class VoiceRequest(BaseModel):
    text: str = Field(default="", description="Text to speak.", examples=["Hi, I'm Luna!"])
    voice: Optional[str] = Field(
        default=None,
        description="Voice name (defaults to settings.tts_voice).",
        examples=["alloy"],
    )
