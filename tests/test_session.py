"""
Tests for silicon_chat.session (ChatSession).

Covers:
  - whitespace submissions are dropped without calling the responder
  - user message + assistant placeholder creation
  - snapshot patching by id, monotonic growth, final text
  - title derivation on the first submission only
  - stream failure rendered as inline error text
  - deletion while a reply is in flight
  - fallback one-shot mock reply when no responder is configured
  - cancellation and concurrent submissions
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from silicon_chat.models import Message, Role
from silicon_chat.session import ChatSession, SessionState
from silicon_chat.store import EventKind

from .conftest import ScriptedResponder


@pytest.fixture
def conversation(store):
    return store.create()


# ========================================================================
# Input validation
# ========================================================================


class TestSubmitValidation:
    @pytest.mark.parametrize("raw", ["", " ", "   \n\t  ", "\n"])
    async def test_blank_input_creates_nothing(self, store, conversation, raw):
        responder = ScriptedResponder(["x"])
        session = ChatSession(store, conversation.id, responder)
        assert session.submit(raw) is None
        assert conversation.messages == []
        assert responder.prompts == []
        assert session.state is SessionState.IDLE

    async def test_input_is_trimmed(self, store, conversation, fast_mock):
        session = ChatSession(store, conversation.id, fast_mock)
        await session.submit("   hello  \n")
        assert conversation.messages[0].text == "hello"
        assert conversation.messages[1].text == "Mock: hello"

    async def test_missing_conversation_drops_submission(self, store, fast_mock):
        session = ChatSession(store, "missing", fast_mock)
        assert session.submit("hello") is None


# ========================================================================
# Streaming replies
# ========================================================================


class TestStreaming:
    async def test_appends_user_then_assistant(self, store, conversation, fast_mock):
        session = ChatSession(store, conversation.id, fast_mock)
        task = session.submit("hello")
        assert [m.role for m in conversation.messages] == [Role.USER, Role.ASSISTANT]
        assert conversation.messages[1].text == ""
        assert session.state is SessionState.ASSISTANT_PENDING
        await task
        assert len(conversation.messages) == 2
        assert conversation.messages[1].text == "Mock: hello"
        assert session.state is SessionState.IDLE

    async def test_applied_texts_grow_monotonically(self, store, conversation, fast_mock):
        applied = []

        def record(event):
            if event.kind is EventKind.MESSAGE_PATCHED:
                applied.append(conversation.find_message(event.message_id).text)

        store.subscribe(record)
        session = ChatSession(store, conversation.id, fast_mock)
        await session.submit("hello")
        assert applied[0] == "M"
        assert applied[-1] == "Mock: hello"
        for previous, current in zip(applied, applied[1:]):
            assert current.startswith(previous)

    async def test_patches_in_place(self, store, conversation):
        responder = ScriptedResponder(["He", "Hello"])
        session = ChatSession(store, conversation.id, responder)
        task = session.submit("hi")
        placeholder = conversation.messages[1]
        await task
        assert conversation.messages[1] is placeholder
        assert placeholder.text == "Hello"

    async def test_responder_receives_trimmed_prompt(self, store, conversation):
        responder = ScriptedResponder(["ok"])
        session = ChatSession(store, conversation.id, responder)
        await session.submit("  question?  ")
        assert responder.prompts == ["question?"]

    async def test_stream_failure_becomes_error_text(self, store, conversation):
        responder = ScriptedResponder(["Par", "Partial"], error=RuntimeError("context overflow"))
        session = ChatSession(store, conversation.id, responder)
        await session.submit("hi")
        assert conversation.messages[1].text == "(AI error) context overflow"
        assert len(conversation.messages) == 2
        assert session.state is SessionState.IDLE

    async def test_failure_does_not_retry(self, store, conversation):
        responder = ScriptedResponder([], error=RuntimeError("boom"))
        session = ChatSession(store, conversation.id, responder)
        await session.submit("hi")
        assert responder.prompts == ["hi"]

    async def test_empty_stream_leaves_empty_reply(self, store, conversation):
        session = ChatSession(store, conversation.id, ScriptedResponder([]))
        await session.submit("hi")
        assert conversation.messages[1].text == ""


# ========================================================================
# Title derivation
# ========================================================================


class TestTitle:
    async def test_first_submission_derives_title_once(self, store, conversation, fast_mock):
        session = ChatSession(store, conversation.id, fast_mock)
        assert conversation.title == "New Chat"
        await session.submit("Explain quicksort in one line")
        assert conversation.title == "Explain quicksort in one line"[:40]
        await session.submit("And mergesort?")
        assert conversation.title == "Explain quicksort in one line"

    async def test_long_first_message_truncated(self, store, conversation, fast_mock):
        session = ChatSession(store, conversation.id, fast_mock)
        text = "Please explain the difference between quicksort and mergesort"
        await session.submit(text)
        assert conversation.title == text[:40]

    async def test_custom_callback_called_only_for_first_message(
        self, store, conversation, fast_mock
    ):
        callback = MagicMock()
        session = ChatSession(store, conversation.id, fast_mock, on_first_user_message=callback)
        await session.submit("one")
        await session.submit("two")
        callback.assert_called_once_with("one")
        assert conversation.title == "New Chat"

    async def test_blank_submission_does_not_count_as_first(self, store, conversation, fast_mock):
        callback = MagicMock()
        session = ChatSession(store, conversation.id, fast_mock, on_first_user_message=callback)
        session.submit("   ")
        await session.submit("real")
        callback.assert_called_once_with("real")


# ========================================================================
# Deletion and abandonment
# ========================================================================


class TestDeletionDuringStream:
    async def test_deleted_conversation_is_not_resurrected(self, store, conversation):
        gate = asyncio.Event()
        responder = ScriptedResponder(["a", "ab", "abc"], gate=gate)
        session = ChatSession(store, conversation.id, responder)
        task = session.submit("hi")
        await asyncio.sleep(0.01)
        store.delete(conversation.id)
        gate.set()
        await task
        assert store.get(conversation.id) is None
        assert len(store) == 0
        assert responder.closed == 1

    async def test_deleted_placeholder_is_skipped(self, store, conversation):
        gate = asyncio.Event()
        responder = ScriptedResponder(["a", "ab", "abc"], gate=gate)
        session = ChatSession(store, conversation.id, responder)
        task = session.submit("hi")
        await asyncio.sleep(0.01)
        conversation.messages.pop()
        gate.set()
        await task
        assert [m.text for m in conversation.messages] == ["hi"]

    async def test_aclose_cancels_and_releases_stream(self, store, conversation):
        gate = asyncio.Event()
        responder = ScriptedResponder(["a", "ab"], gate=gate)
        session = ChatSession(store, conversation.id, responder)
        task = session.submit("hi")
        await asyncio.sleep(0.01)
        await session.aclose()
        assert task.cancelled()
        assert responder.closed == 1
        assert session.state is SessionState.IDLE
        assert conversation.messages[1].text == "a"


# ========================================================================
# Concurrency
# ========================================================================


class TestConcurrentSubmissions:
    async def test_each_request_patches_its_own_placeholder(self, store, conversation):
        responder = ScriptedResponder(["x", "xy"])
        session = ChatSession(store, conversation.id, responder)
        session.submit("first")
        session.submit("second")
        await session.wait_idle()
        roles = [m.role for m in conversation.messages]
        assert roles == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        assert conversation.messages[1].text == "xy"
        assert conversation.messages[3].text == "xy"

    async def test_other_messages_are_untouched(self, store, conversation, fast_mock):
        earlier = Message(role=Role.ASSISTANT, text="earlier reply")
        store.append_message(conversation.id, earlier)
        session = ChatSession(store, conversation.id, fast_mock)
        await session.submit("hello")
        assert earlier.text == "earlier reply"


# ========================================================================
# Fallback without a responder
# ========================================================================


class TestFallbackWithoutResponder:
    async def test_appends_single_mock_reply_after_delay(self, store, conversation):
        session = ChatSession(store, conversation.id, responder=None, mock_reply_delay=0.01)
        task = session.submit("hello")
        assert [m.role for m in conversation.messages] == [Role.USER]
        await task
        assert [m.role for m in conversation.messages] == [Role.USER, Role.ASSISTANT]
        assert conversation.messages[1].text == "Mock: hello"

    async def test_fallback_reply_is_appended_not_patched(self, store, conversation):
        events = []
        store.subscribe(events.append)
        session = ChatSession(store, conversation.id, mock_reply_delay=0)
        await session.submit("hello")
        kinds = [e.kind for e in events]
        assert EventKind.MESSAGE_PATCHED not in kinds
        assert kinds.count(EventKind.MESSAGE_APPENDED) == 2

    async def test_fallback_after_delete_is_dropped(self, store, conversation):
        session = ChatSession(store, conversation.id, mock_reply_delay=0.01)
        task = session.submit("hello")
        store.delete(conversation.id)
        await task
        assert len(store) == 0

    async def test_fallback_still_derives_title(self, store, conversation):
        session = ChatSession(store, conversation.id, mock_reply_delay=0)
        await session.submit("Explain quicksort in one line")
        assert conversation.title == "Explain quicksort in one line"
