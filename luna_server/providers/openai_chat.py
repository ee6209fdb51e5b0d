# luna_server/providers/openai_chat.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — OpenAI-compatible chat provider
-------------------------------------------------------
This module is the ONLY place that knows how to talk to an
OpenAI-style /chat/completions endpoint (OpenAI itself, OpenRouter,
or any compatible gateway via `openai_base_url`).

Responsibilities:
- Build the HTTP request (URL, headers, JSON payload).
- Parse the response and return assistant text.
- Map every failure (missing key, network, HTTP status, bad JSON, empty
  content) to UpstreamError.

It never retries; see core/orchestrator.py for why.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from luna_server.core.config import Settings, settings
from luna_server.core.errors import UpstreamError

logger = logging.getLogger(__name__)


def _build_chat_payload(
    system_prompt: str,
    context_turns: List[Dict[str, str]],
    model_name: str,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Build the JSON payload for /chat/completions.

    The system prompt always goes first, followed by the context turns
    ({"role": "system"|"user"|"assistant", "content": "..."}) in order.
    """
    messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    messages.extend(context_turns)

    payload: Dict[str, Any] = {
        "model": model_name,
        "messages": messages,
    }
    if temperature is not None:
        payload["temperature"] = temperature
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    return payload


def _auth_headers(api_key: Optional[str]) -> Dict[str, str]:
    if not api_key:
        raise UpstreamError("OpenAI API key is missing (set OPENAI_API_KEY).")
    return {"Authorization": f"Bearer {api_key}"}


class OpenAIChatModel:
    """Chat model capability backed by an OpenAI-compatible HTTP API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout_s: float = 20.0,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/chat/completions"
        self.model = model
        self.timeout_s = timeout_s
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "OpenAIChatModel":
        return cls(
            cfg.openai_api_key,
            base_url=cfg.openai_base_url,
            model=cfg.chat_model,
            timeout_s=cfg.upstream_timeout_s,
            temperature=cfg.chat_temperature,
            max_tokens=cfg.chat_max_tokens,
        )

    def complete(
        self,
        system_prompt: str,
        context_turns: List[Dict[str, str]],
    ) -> str:
        """
        Call the chat endpoint and return the assistant's text (stripped).

        Raises
        ------
        UpstreamError
            If the key is missing or the HTTP/JSON exchange fails.
        """
        headers = _auth_headers(self.api_key)
        headers["Content-Type"] = "application/json"

        payload = _build_chat_payload(
            system_prompt,
            context_turns,
            self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        try:
            resp = requests.post(
                self.url,
                headers=headers,
                json=payload,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Chat HTTP error: {exc}") from exc

        if resp.status_code != 200:
            text_preview = resp.text[:200].replace("\n", " ")
            raise UpstreamError(f"Chat HTTP {resp.status_code}: {text_preview}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("Chat endpoint returned non-JSON response.") from exc

        try:
            # OpenAI-style: choices[0].message.content
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamError(
                "Chat response JSON missing choices[0].message.content"
            ) from exc

        if not isinstance(content, str) or not content.strip():
            raise UpstreamError("Chat endpoint returned empty content.")

        return content.strip()
