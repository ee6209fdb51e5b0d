# luna_server/core/container.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Service wiring
--------------------------------------
Builds the long-lived objects one server process shares:

    repository -> ConversationStore (+ Summarizer) -> ReplyOrchestrator
    transcriber / synthesizer / ReplyAudioStore   (live calls + /voice)

Every capability can be injected, which is how tests run the whole HTTP
surface against fakes. Anything not injected is built from `settings`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from luna_server.core.config import Settings, settings
from luna_server.core.orchestrator import ReplyOrchestrator, Summarizer
from luna_server.core.types import ChatModel, Synthesizer, Transcriber
from luna_server.providers.canned_replies import CannedChatModel
from luna_server.providers.ollama_chat import OllamaChatModel
from luna_server.providers.openai_chat import OpenAIChatModel
from luna_server.providers.openai_speech import OpenAISpeechSynthesizer, OpenAITranscriber
from luna_server.runtime_state import ConversationStore, JsonFileRepository, SessionRepository
from luna_server.utils import ReplyAudioStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: SessionRepository
    store: ConversationStore
    chat_model: ChatModel
    orchestrator: ReplyOrchestrator
    transcriber: Transcriber
    synthesizer: Optional[Synthesizer]
    audio_store: ReplyAudioStore


def build_chat_model(cfg: Settings = settings) -> ChatModel:
    """Pick the single chat backend configured by LLM_BACKEND."""
    if cfg.llm_backend == "ollama":
        return OllamaChatModel.from_settings(cfg)
    if cfg.llm_backend == "canned":
        return CannedChatModel()
    return OpenAIChatModel.from_settings(cfg)


def build_services(
    cfg: Settings = settings,
    *,
    chat_model: Optional[ChatModel] = None,
    transcriber: Optional[Transcriber] = None,
    synthesizer: Optional[Synthesizer] = None,
    repository: Optional[SessionRepository] = None,
) -> Services:
    repository = repository or JsonFileRepository(cfg.sessions_path)
    model = chat_model or build_chat_model(cfg)

    store = ConversationStore(
        repository,
        summarizer=Summarizer(model),
        max_turns=cfg.max_turns,
        keep_turns=cfg.keep_turns,
        summary_prefix=cfg.summary_prefix,
    )
    orchestrator = ReplyOrchestrator(
        store,
        model,
        timeout_s=cfg.upstream_timeout_s,
        max_user_chars=cfg.max_user_chars,
        max_reply_chars=cfg.max_reply_chars,
    )

    if synthesizer is None and cfg.tts_enabled:
        synthesizer = OpenAISpeechSynthesizer.from_settings(cfg)

    services = Services(
        settings=cfg,
        repository=repository,
        store=store,
        chat_model=model,
        orchestrator=orchestrator,
        transcriber=transcriber or OpenAITranscriber.from_settings(cfg),
        synthesizer=synthesizer,
        audio_store=ReplyAudioStore(cfg.audio_dir, max_age_s=cfg.audio_max_age_s),
    )

    logger.info(
        "Services ready: backend=%s model=%s sessions=%d tts=%s",
        cfg.llm_backend,
        type(model).__name__,
        len(store.session_ids()),
        services.synthesizer is not None,
    )
    return services
