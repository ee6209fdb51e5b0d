# luna_server/providers/openai_speech.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Speech providers (OpenAI-compatible)
------------------------------------------------------------
Speech synthesis and transcription over the OpenAI audio endpoints:

- OpenAISpeechSynthesizer : POST /audio/speech          -> mp3 bytes
- OpenAITranscriber       : POST /audio/transcriptions  -> text

The transcriber spools each upload into a temporary file under
`settings.tmp_dir` and streams it through a file handle. The handle is
closed and the file removed when the request finishes, including when it
fails or times out.

Every failure is mapped to UpstreamError. An empty transcript (silence,
noise) is a valid result, not an error.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from luna_server.core.config import Settings, settings
from luna_server.core.errors import UpstreamError
from luna_server.utils import log_duration, temp_audio_file

from .openai_chat import _auth_headers

logger = logging.getLogger(__name__)


class OpenAISpeechSynthesizer:
    """Text -> speech via /audio/speech."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini-tts",
        default_voice: str = "alloy",
        response_format: str = "mp3",
        timeout_s: float = 20.0,
    ) -> None:
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/audio/speech"
        self.model = model
        self.default_voice = default_voice
        self.response_format = response_format
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "OpenAISpeechSynthesizer":
        return cls(
            cfg.openai_api_key,
            base_url=cfg.openai_base_url,
            model=cfg.tts_model,
            default_voice=cfg.tts_voice,
            timeout_s=cfg.upstream_timeout_s,
        )

    @log_duration("speech synthesis", logger, logging.DEBUG)
    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        if not text or not text.strip():
            raise UpstreamError("Nothing to synthesize.")

        headers = _auth_headers(self.api_key)
        payload: Dict[str, Any] = {
            "model": self.model,
            "voice": voice or self.default_voice,
            "input": text,
            "response_format": self.response_format,
        }

        try:
            resp = requests.post(
                self.url,
                headers=headers,
                json=payload,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"TTS HTTP error: {exc}") from exc

        if resp.status_code != 200:
            text_preview = resp.text[:200].replace("\n", " ")
            raise UpstreamError(f"TTS HTTP {resp.status_code}: {text_preview}")

        if not resp.content:
            raise UpstreamError("TTS returned no audio.")
        return resp.content


class OpenAITranscriber:
    """Speech -> text via /audio/transcriptions (Whisper)."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        language: Optional[str] = None,
        tmp_dir: Optional[Path] = None,
        suffix: str = ".webm",
        timeout_s: float = 20.0,
    ) -> None:
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/audio/transcriptions"
        self.model = model
        self.language = language
        self.tmp_dir = tmp_dir
        self.suffix = suffix
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "OpenAITranscriber":
        return cls(
            cfg.openai_api_key,
            base_url=cfg.openai_base_url,
            model=cfg.stt_model,
            language=cfg.stt_language,
            tmp_dir=cfg.tmp_dir,
            timeout_s=cfg.upstream_timeout_s,
        )

    @log_duration("speech transcription", logger, logging.DEBUG)
    def transcribe(self, audio: bytes) -> str:
        if not audio:
            return ""

        headers = _auth_headers(self.api_key)
        data: Dict[str, str] = {"model": self.model, "response_format": "json"}
        if self.language:
            data["language"] = self.language

        try:
            with temp_audio_file(audio, suffix=self.suffix, directory=self.tmp_dir) as path:
                with path.open("rb") as fh:
                    resp = requests.post(
                        self.url,
                        headers=headers,
                        data=data,
                        files={"file": (path.name, fh, "application/octet-stream")},
                        timeout=self.timeout_s,
                    )
        except requests.RequestException as exc:
            raise UpstreamError(f"STT HTTP error: {exc}") from exc
        except OSError as exc:
            raise UpstreamError(f"STT spool error: {exc}") from exc

        if resp.status_code != 200:
            text_preview = resp.text[:200].replace("\n", " ")
            raise UpstreamError(f"STT HTTP {resp.status_code}: {text_preview}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise UpstreamError("STT returned non-JSON response.") from exc

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise UpstreamError("STT response JSON missing 'text'.")
        return text.strip()
