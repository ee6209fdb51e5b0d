# luna_server/providers/ollama_chat.py
# -*- coding: utf-8 -*-
"""

Luna Companion Server — Local chat provider (Ollama)

"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from luna_server.core.config import Settings, settings
from luna_server.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class OllamaChatModel:
    """
    Chat model capability backed by a local Ollama server.

    Expected config (from core/config.Settings):
        settings.ollama_url   e.g. "http://localhost:11434/api/chat"
        settings.ollama_model e.g. "llama3.2:latest"
    """

    def __init__(
        self,
        url: Optional[str],
        model: Optional[str],
        *,
        timeout_s: float = 60.0,
        temperature: Optional[float] = None,
    ) -> None:
        self.url = url
        self.model = model
        self.timeout_s = timeout_s
        self.temperature = temperature

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "OllamaChatModel":
        return cls(
            cfg.ollama_url,
            cfg.ollama_model,
            timeout_s=cfg.upstream_timeout_s,
            temperature=cfg.chat_temperature,
        )

    def complete(
        self,
        system_prompt: str,
        context_turns: List[Dict[str, str]],
    ) -> str:
        if not self.url or not self.model:
            raise UpstreamError(
                "Ollama is not configured. "
                "Set OLLAMA_URL and OLLAMA_MODEL in your .env "
                "or choose another LLM_BACKEND."
            )

        # Ollama /api/chat expects OpenAI-style messages and usually streams;
        # we force stream=false so we get a single JSON object.
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *context_turns],
            "stream": False,
        }
        if self.temperature is not None:
            payload["options"] = {"temperature": self.temperature}

        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise UpstreamError(f"Ollama HTTP error: {exc}") from exc

        if resp.status_code != 200:
            text_preview = resp.text[:200].replace("\n", " ")
            raise UpstreamError(f"Ollama HTTP {resp.status_code}: {text_preview}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("Ollama returned non-JSON response.") from exc

        # Typical /api/chat (stream=false) format:
        # {
        #   "model": "...",
        #   "message": {"role": "assistant", "content": "..."},
        #   "done": true,
        #   ...
        # }
        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None

        if not isinstance(content, str) or not content.strip():
            raise UpstreamError("Ollama returned empty content.")

        return content.strip()
