"""
Responder protocol and Foundation Model factories.

A responder turns a prompt into a reply two ways: ``respond`` returns the
finished text, ``stream`` yields growing snapshots of it (each item is the
whole reply so far, never a delta).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

from .exceptions import require_apple_fm

SYSTEM_INSTRUCTIONS = (
    "You are a helpful assistant running entirely on-device. "
    "Be accurate, concise, and explicit about uncertainty."
)


@runtime_checkable
class Responder(Protocol):
    """Common protocol for real and mock responders."""

    async def respond(self, prompt: str) -> str: ...

    def stream(self, prompt: str) -> AsyncIterator[str]: ...


def create_model() -> Any:
    """Create the system Foundation Model handle."""
    fm = require_apple_fm()
    return fm.SystemLanguageModel()


def create_session(instructions: str | None = SYSTEM_INSTRUCTIONS, model: Any = None) -> Any:
    """Create a ``LanguageModelSession`` bound to *model* (system model by default)."""
    fm = require_apple_fm()
    if model is None:
        model = fm.SystemLanguageModel()
    if instructions is None:
        return fm.LanguageModelSession(model=model)
    return fm.LanguageModelSession(model=model, instructions=instructions)
