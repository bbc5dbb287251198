"""Shared fakes for SiliconChat tests.

Nothing here imports ``apple_fm_sdk``: the real responder is exercised
against fake SDK sessions so the suite runs on any platform.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from silicon_chat.persistence import ConversationFile
from silicon_chat.responders import MockResponder
from silicon_chat.store import ConversationStore


def make_mock_model(available: bool = True, reason: str = "ok") -> MagicMock:
    model = MagicMock()
    model.is_available.return_value = (available, reason if not available else "")
    return model


class FakeSnapshotStream:
    """Async iterator standing in for ``LanguageModelSession.stream_response``."""

    def __init__(self, snapshots: list[str], error: Exception | None = None) -> None:
        self.snapshots = list(snapshots)
        self.error = error
        self.closed = False

    def __aiter__(self) -> FakeSnapshotStream:
        return self

    async def __anext__(self) -> str:
        await asyncio.sleep(0)
        if self.snapshots:
            return self.snapshots.pop(0)
        if self.error is not None:
            raise self.error
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


def make_fake_session(
    reply: str = "Hello there",
    snapshots: list[str] | None = None,
    stream_error: Exception | None = None,
) -> MagicMock:
    session = MagicMock()
    session.respond = AsyncMock(return_value=reply)
    stream = FakeSnapshotStream(snapshots if snapshots is not None else [], stream_error)
    session.stream_response = MagicMock(return_value=stream)
    session.fake_stream = stream
    return session


class ScriptedResponder:
    """Responder that replays fixed snapshots, optionally failing afterwards."""

    def __init__(
        self,
        snapshots: list[str],
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.snapshots = snapshots
        self.error = error
        self.gate = gate
        self.prompts: list[str] = []
        self.closed = 0

    async def respond(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.snapshots[-1] if self.snapshots else ""

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        try:
            for index, snapshot in enumerate(self.snapshots):
                if index == 1 and self.gate is not None:
                    await self.gate.wait()
                await asyncio.sleep(0)
                yield snapshot
            if self.error is not None:
                raise self.error
        finally:
            self.closed += 1


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def fast_mock() -> MockResponder:
    return MockResponder(first_delay=0, step_delay=0)


@pytest.fixture
def data_file(tmp_path) -> ConversationFile:
    return ConversationFile(tmp_path / "conversations.json")
