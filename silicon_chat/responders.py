"""
Responder implementations: the on-device Foundation Model and a mock typist.

Both satisfy :class:`silicon_chat.protocols.Responder`. Which one a process
uses is decided once at startup by :func:`select_responder`, based on
:func:`foundation_models_available`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from .exceptions import AppleFMSetupError, ensure_model_available
from .protocols import SYSTEM_INSTRUCTIONS, Responder, create_model, create_session

logger = logging.getLogger("silicon_chat")

AI_ERROR_PREFIX = "(AI error) "
MOCK_PREFIX = "Mock: "
MOCK_FIRST_DELAY_SECONDS = 0.2
MOCK_STEP_DELAY_SECONDS = 0.025


def format_ai_error(exc: BaseException) -> str:
    """Render a responder failure as reply text."""
    return f"{AI_ERROR_PREFIX}{exc}"


class FoundationModelResponder:
    """Delegates to one ``apple_fm_sdk.LanguageModelSession``.

    The session keeps its own transcript, so consecutive prompts sent through
    one responder share context.
    """

    def __init__(
        self,
        session: Any = None,
        instructions: str | None = SYSTEM_INSTRUCTIONS,
        debug_timing: bool = False,
    ) -> None:
        self.session = session if session is not None else create_session(instructions)
        self.debug_timing = debug_timing

    async def respond(self, prompt: str) -> str:
        """Return the complete reply; failures come back as ``(AI error) ...`` text."""
        try:
            start_time = time.perf_counter()
            response = await self.session.respond(prompt)
            if self.debug_timing:
                logger.info(
                    "[SiliconChat Responder] Reply generated in %.3fs.",
                    time.perf_counter() - start_time,
                )
            return str(response)
        except Exception as exc:
            logger.error("[SiliconChat Responder] Failed to generate reply. Error: %s", exc)
            return format_ai_error(exc)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Forward each SDK snapshot verbatim; SDK errors propagate to the consumer."""
        snapshots = self.session.stream_response(prompt)
        try:
            async for snapshot in snapshots:
                yield str(snapshot)
        finally:
            aclose = getattr(snapshots, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    def __repr__(self) -> str:
        return f"FoundationModelResponder(session={self.session!r})"


class MockResponder:
    """Types out ``"Mock: " + prompt`` one character at a time.

    Needs nothing outside the standard library, so it is always available.
    The pause before the first character is longer than the pauses between
    the rest, to mimic time-to-first-token.
    """

    def __init__(
        self,
        first_delay: float = MOCK_FIRST_DELAY_SECONDS,
        step_delay: float = MOCK_STEP_DELAY_SECONDS,
    ) -> None:
        if first_delay < 0 or step_delay < 0:
            raise ValueError("delays must be >= 0")
        self.first_delay = first_delay
        self.step_delay = step_delay

    @staticmethod
    def reply_for(prompt: str) -> str:
        return f"{MOCK_PREFIX}{prompt}"

    async def respond(self, prompt: str) -> str:
        reply = ""
        async for snapshot in self.stream(prompt):
            reply = snapshot
        return reply

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        text = self.reply_for(prompt)
        for index in range(1, len(text) + 1):
            await asyncio.sleep(self.first_delay if index == 1 else self.step_delay)
            yield text[:index]

    def __repr__(self) -> str:
        return f"MockResponder(first_delay={self.first_delay}, step_delay={self.step_delay})"


def foundation_models_available() -> tuple[bool, str]:
    """Detect whether the on-device Foundation Model can serve requests."""
    try:
        model = create_model()
        ensure_model_available(model, context="responder")
    except AppleFMSetupError as exc:
        return False, str(exc)
    return True, "available"


def select_responder(prefer_mock: bool = False, debug_timing: bool = False) -> Responder:
    """Pick the real responder when the platform supports it, else the mock typist."""
    if prefer_mock:
        return MockResponder()
    available, reason = foundation_models_available()
    if not available:
        logger.info("[SiliconChat Responder] Using mock responder: %s", reason)
        return MockResponder()
    try:
        return FoundationModelResponder(debug_timing=debug_timing)
    except Exception as exc:
        logger.warning(
            "[SiliconChat Responder] Could not open a Foundation Model session (%s). "
            "Falling back to mock responder.",
            exc,
        )
        return MockResponder()
