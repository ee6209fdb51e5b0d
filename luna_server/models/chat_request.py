# luna_server/models/chat_request.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — ChatRequest model
-----------------------------------------
Canonical request payload for the /chat endpoint.

It carries:
- the raw user text
- which surface it came from (web UI or messaging bot)
- the caller's own session / chat id (namespaced by the server)
- whether the reply should also be spoken
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InputSource(str, Enum):
    """Where the text originally came from."""

    WEB = "web"  # Browser UI
    BOT = "bot"  # Messaging bot (chat id as session id)


class ChatRequest(BaseModel):
    """
    Canonical request body for /chat.

    Fields
    ------
    message:
        User text. Empty / whitespace-only text is answered with 400
        (checked by the orchestrator, not by validation, so the client
        still gets Luna's apology instead of a schema error).
    session_id:
        Caller's identifier for the conversation (browser session id or
        bot chat id). If omitted, the surface's anonymous session is used.
    source:
        Surface the message came from; web and bot ids never collide.
    voice:
        If true, the reply is also synthesized and `audio_url` is returned.
    tts_voice:
        Optional voice override for the synthesized reply.

    History is never accepted from the client; the server owns it.
    """

    message: str = Field(
        default="",
        description="User message in plain text.",
        examples=["hey luna, I had a great day"],
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Caller's conversation id (browser session / bot chat id).",
        examples=["b8e6c0d2"],
    )
    source: InputSource = Field(
        default=InputSource.WEB,
        description="Surface the message came from (web, bot).",
    )
    voice: bool = Field(
        default=False,
        description="Also synthesize the reply and return its audio_url.",
    )
    tts_voice: Optional[str] = Field(
        default=None,
        description="Voice name for synthesis (defaults to settings.tts_voice).",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"message": "hey luna, I had a great day", "session_id": "b8e6c0d2"},
                {"message": "I feel kind of lonely", "session_id": "123456789", "source": "bot"},
            ]
        }
    }


if __name__ == "__main__":
    # Minimal self-test so you can quickly verify the model works.
    print("Luna — ChatRequest self-test")

    sample = ChatRequest(message="hello luna", session_id="demo-001", source=InputSource.BOT)
    print(sample.model_dump_json(indent=2))
