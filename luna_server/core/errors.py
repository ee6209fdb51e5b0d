# luna_server/core/errors.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Error taxonomy
--------------------------------------
Typed errors shared by the store, the orchestrator, the providers and the
streaming call handler.

Each error carries:
- `code`         : machine-readable code sent to clients
- `status_code`  : HTTP status used by the routers
- `user_message` : apologetic text shown instead of internal details

Callers can tell "retry is safe" (UpstreamError) apart from
"input must change" (InvalidInput).
"""

from __future__ import annotations


class LunaError(Exception):
    """Base class for all errors raised inside the companion core."""

    code: str = "internal_error"
    status_code: int = 500
    user_message: str = "Sorry, something went wrong on my side."


class InvalidInput(LunaError):
    """Empty or malformed user-facing input. Nothing was recorded."""

    code = "invalid_input"
    status_code = 400
    user_message = "I didn't catch anything there. Could you say that again?"


class UpstreamError(LunaError):
    """Chat model / speech synthesis / transcription failed or timed out."""

    code = "upstream_error"
    status_code = 502
    user_message = "I'm having trouble thinking right now. Please try again in a moment."


class PersistenceError(LunaError):
    """Session snapshot could not be written or read."""

    code = "persistence_error"
    status_code = 500


class TranscriptionAdvisoryFailure(LunaError):
    """A partial (advisory) transcription attempt failed. Never surfaced."""

    code = "partial_transcription_failed"
