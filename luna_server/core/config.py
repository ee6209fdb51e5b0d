# luna_server/core/config.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Configuration
-------------------------------------
Central configuration for the companion server, including:

- app metadata
- API host/port
- filesystem paths (prompts, session snapshot, reply audio, temp spool)
- chat model backend (OpenAI-compatible HTTP, Ollama HTTP, canned offline),
- speech synthesis / transcription,
- history bounds, streaming call knobs and basic safety limits.

"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

# This file is: <repo>/luna_server/core/config.py
APP_DIR: Path = Path(__file__).resolve().parents[1]   # .../luna_server
ROOT_DIR: Path = APP_DIR.parent                       # repo root

PROMPTS_DIR: Path = APP_DIR / "prompts"
DATA_DIR: Path = ROOT_DIR / "data"


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """
    Global configuration for the companion server.

    This class is instantiated once at import time as `settings`
    and used as the default source of every tunable in the codebase.
    Components still take explicit constructor arguments so tests can
    build them with their own values.
    """

    # Tell pydantic-settings where to read .env, and how to behave with extras.
    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App / server basics -----------------------------------------------
    app_name: str = "Luna Companion Server"
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # --- Filesystem paths ---------------------------------------------------
    prompts_dir: Path = PROMPTS_DIR
    data_dir: Path = DATA_DIR

    # Snapshot of every conversation (one JSON document, rewritten wholesale)
    sessions_path: Path = DATA_DIR / "sessions.json"
    # Synthesized reply audio served under /audio
    audio_dir: Path = DATA_DIR / "audio"
    # Spool directory for audio uploaded to the transcription API
    tmp_dir: Path = DATA_DIR / "tmp"

    # --- Chat model ---------------------------------------------------------
    # Exactly one backend is used per process; there is no fallback chain.
    llm_backend: Literal["openai", "ollama", "canned"] = "openai"

    # ENV: OPENAI_API_KEY=sk-...
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI-compatible provider (env: OPENAI_API_KEY).",
    )
    openai_base_url: str = "https://api.openai.com/v1"

    chat_model: str = "gpt-4o-mini"
    chat_temperature: float = 0.8
    chat_max_tokens: int = 400

    # Ollama /api/chat, e.g. http://localhost:11434/api/chat
    ollama_url: str | None = Field(
        default=None,
        description="Ollama chat endpoint (env: OLLAMA_URL).",
    )
    ollama_model: str | None = Field(
        default=None,
        description="Ollama model name (env: OLLAMA_MODEL), e.g. llama3.2:latest.",
    )

    # --- Speech -------------------------------------------------------------
    tts_enabled: bool = True
    tts_model: str = "gpt-4o-mini-tts"
    tts_voice: str = "alloy"
    stt_model: str = "whisper-1"
    stt_language: str | None = None

    # Timeout (seconds) for every model / TTS / STT call
    upstream_timeout_s: float = 20.0

    # --- History bounds -----------------------------------------------------
    max_turns: int = 30       # N: turns kept per session before summarizing
    keep_turns: int = 15      # turns left untouched by a summarization
    summary_prefix: str = "[Earlier conversation summary]"

    # 0 disables pruning of idle sessions at startup
    session_max_age_s: int = 0
    # Synthesized reply audio older than this is deleted at startup
    audio_max_age_s: int = 3600

    # --- Safety / limits ----------------------------------------------------
    max_user_chars: int = 2000
    max_reply_chars: int = 1200

    # --- Streaming call -----------------------------------------------------
    partial_interval_s: float = 1.4
    # Skip partial transcription until the segment holds this many bytes
    partial_min_bytes: int = 8000
    # Hard cap on one segment's audio (the transcription API rejects >25 MB)
    max_segment_bytes: int = 24 * 1024 * 1024

    # "reject": empty transcripts are refused with InvalidInput and answered
    #           with `empty_transcript_reply`.
    # "placeholder": the model is asked to reply to
    #           `empty_transcript_placeholder` instead.
    empty_transcript_policy: Literal["reject", "placeholder"] = "reject"
    empty_transcript_placeholder: str = "(the user spoke, but the audio was inaudible)"
    empty_transcript_reply: str = "Sorry, I couldn't hear you. Could you say that again?"

    # --- Mood ---------------------------------------------------------------
    mood_happy_threshold: int = 2
    mood_sad_threshold: int = -2

    @model_validator(mode="after")
    def _check_history_bounds(self) -> "Settings":
        if not 1 <= self.keep_turns < self.max_turns:
            raise ValueError(
                f"keep_turns must be >= 1 and < max_turns "
                f"(got keep_turns={self.keep_turns}, max_turns={self.max_turns})"
            )
        return self


# Single global settings instance used by the rest of the app.
settings = Settings()


if __name__ == "__main__":
    # Minimal self-test so you can quickly verify config loading.
    print("Luna — Settings self-test")
    print(f"ROOT_DIR        : {ROOT_DIR}")
    print(f"PROMPTS_DIR     : {settings.prompts_dir}")
    print(f"Sessions path   : {settings.sessions_path}")
    print(f"Audio dir       : {settings.audio_dir}")
    print(f"Environment     : {settings.environment}")
    print(f"LLM backend     : {settings.llm_backend}, API key set: {bool(settings.openai_api_key)}")
    print(f"Chat model      : {settings.chat_model}")
    print(f"History bounds  : max_turns={settings.max_turns} keep_turns={settings.keep_turns}")
    print(f"Empty transcript: {settings.empty_transcript_policy}")
