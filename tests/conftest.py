"""
Shared pytest configuration.

- Puts the project root on sys.path so `import luna_server` works without
  installing the package.
- Points every data path at a throwaway directory and selects the offline
  backend before luna_server.core.config builds its `settings`.
- Provides in-process fakes for the chat model, speech providers and the
  session repository.
"""

import os
import sys
import tempfile
import threading
import time
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

_DATA_DIR = Path(tempfile.mkdtemp(prefix="luna-tests-"))
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("LLM_BACKEND", "canned")
os.environ.setdefault("TTS_ENABLED", "false")
os.environ.setdefault("SESSIONS_PATH", str(_DATA_DIR / "sessions.json"))
os.environ.setdefault("AUDIO_DIR", str(_DATA_DIR / "audio"))
os.environ.setdefault("TMP_DIR", str(_DATA_DIR / "tmp"))

from luna_server.core.errors import PersistenceError  # noqa: E402
from luna_server.runtime_state import RuntimeState  # noqa: E402


class FakeChatModel:
    """Echoes the last message unless scripted replies or an error are given."""

    def __init__(self, replies=None, error=None, delay=0.0):
        self.replies = list(replies or [])
        self.error = error
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def complete(self, system_prompt, context_turns):
        with self._lock:
            self.calls.append((system_prompt, [dict(turn) for turn in context_turns]))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        with self._lock:
            if self.replies:
                return self.replies.pop(0)
        last = context_turns[-1]["content"] if context_turns else ""
        return f"reply to: {last}"


class FakeTranscriber:
    """Returns `text` (or `by_audio[audio]`) after an optional per-audio delay."""

    def __init__(self, text="hello luna", error=None, by_audio=None, delays=None):
        self.text = text
        self.error = error
        self.by_audio = by_audio or {}
        self.delays = delays or {}
        self.calls = []

    def transcribe(self, audio):
        self.calls.append(audio)
        delay = self.delays.get(audio, self.delays.get("*", 0.0))
        if delay:
            time.sleep(delay)
        if self.error is not None:
            raise self.error
        return self.by_audio.get(audio, self.text)


class FakeSynthesizer:
    def __init__(self, audio=b"ID3-fake-mp3", error=None):
        self.audio = audio
        self.error = error
        self.calls = []

    def synthesize(self, text, voice=None):
        self.calls.append((text, voice))
        if self.error is not None:
            raise self.error
        return self.audio


class MemoryRepository:
    """SessionRepository that keeps the last saved snapshot in memory."""

    def __init__(self, state=None, fail=False):
        self.state = state or RuntimeState()
        self.fail = fail
        self.saves = 0

    def load(self):
        return self.state.model_copy(deep=True)

    def save(self, state):
        if self.fail:
            raise PersistenceError("disk full")
        self.state = state.model_copy(deep=True)
        self.saves += 1


@pytest.fixture
def fake_model():
    return FakeChatModel()


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def fake_synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def memory_repository():
    return MemoryRepository()
