# luna_server/core/context.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Prompt & context building
-------------------------------------------------
This module builds what the chat model actually sees:

- the persona preamble (system_prompt.txt + style_guidelines.txt),
  loaded once and never changed at runtime;
- the instructions used when condensing old history (summary_prompt.txt);
- OpenAI-style message lists from stored turns;
- a plain transcript of turns for the summarizer.

It does NOT call any model; see core/orchestrator.py for that.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from luna_server.core.config import settings
from luna_server.runtime_state import SessionTurn

logger = logging.getLogger(__name__)

DEFAULT_PERSONA = (
    "You are Luna, a warm and playful companion. "
    "Answer in short, natural sentences, as if speaking out loud."
)

DEFAULT_SUMMARY_INSTRUCTIONS = (
    "Condense the conversation below into a few sentences. Keep names, "
    "facts the user shared about themselves, promises and open questions. "
    "Write in third person and do not add anything new."
)

# ---------------------------------------------------------------------------
# Prompt loading helpers
# ---------------------------------------------------------------------------

_PROMPT_CACHE: Dict[Path, str] = {}


def _read_prompt_file(filename: str, prompts_dir: Optional[Path] = None) -> str:
    """
    Read a prompt file from `prompts_dir` (settings.prompts_dir by default)
    with simple caching.

    If the file does not exist, returns an empty string and logs a warning.
    """
    path = (prompts_dir or settings.prompts_dir) / filename
    if path in _PROMPT_CACHE:
        return _PROMPT_CACHE[path]

    if not path.is_file():
        logger.warning("Prompt file not found: %s", path)
        _PROMPT_CACHE[path] = ""
        return ""

    text = path.read_text(encoding="utf-8").strip()
    _PROMPT_CACHE[path] = text
    return text


def build_persona_preamble(prompts_dir: Optional[Path] = None) -> str:
    """
    Build the persona preamble by combining:
    - system_prompt.txt
    - style_guidelines.txt
    """
    base = _read_prompt_file("system_prompt.txt", prompts_dir)
    style = _read_prompt_file("style_guidelines.txt", prompts_dir)

    parts = [p for p in (base, style) if p]
    if not parts:
        return DEFAULT_PERSONA
    return "\n\n".join(parts)


def build_summary_instructions(prompts_dir: Optional[Path] = None) -> str:
    return _read_prompt_file("summary_prompt.txt", prompts_dir) or DEFAULT_SUMMARY_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Turn formatting
# ---------------------------------------------------------------------------


def turns_to_messages(turns: Sequence[SessionTurn]) -> List[Dict[str, str]]:
    """
    Convert stored turns into chat-completion messages:

        [
          {"role": "system", "content": "[Earlier conversation summary] ..."},
          {"role": "user", "content": "..."},
          {"role": "assistant", "content": "..."},
        ]
    """
    return [{"role": turn.role, "content": turn.content} for turn in turns]


_SPEAKERS = {"user": "User", "assistant": "Luna", "system": "Note"}


def format_transcript(turns: Sequence[SessionTurn]) -> str:
    """Render turns as 'Speaker: text' lines for the summarizer."""
    return "\n".join(f"{_SPEAKERS[turn.role]}: {turn.content}" for turn in turns)
