"""Session controller: turns a user submission into a streamed assistant reply.

A submission appends the user's message, inserts an empty assistant
placeholder and starts one asyncio task that reads the responder's snapshot
stream. Each snapshot replaces the placeholder's text, located by message id,
so deletions elsewhere in the conversation never redirect a patch. Everything
runs on the event loop thread, which is the only thread allowed to touch the
store.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Callable
from enum import Enum

from .models import Message, Role
from .protocols import Responder
from .responders import MOCK_PREFIX, format_ai_error
from .store import ConversationStore

logger = logging.getLogger("silicon_chat")

MOCK_REPLY_DELAY_SECONDS = 0.6


class SessionState(str, Enum):
    IDLE = "idle"
    ASSISTANT_PENDING = "assistant-pending"


class ChatSession:
    """Drives one open conversation of a :class:`ConversationStore`."""

    def __init__(
        self,
        store: ConversationStore,
        conversation_id: str,
        responder: Responder | None = None,
        on_first_user_message: Callable[[str], object] | None = None,
        mock_reply_delay: float = MOCK_REPLY_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.conversation_id = conversation_id
        self.responder = responder
        self.mock_reply_delay = mock_reply_delay
        self.on_first_user_message = on_first_user_message or functools.partial(
            store.apply_first_user_message, conversation_id
        )
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> SessionState:
        return SessionState.ASSISTANT_PENDING if self._pending else SessionState.IDLE

    @property
    def pending(self) -> set[asyncio.Task[None]]:
        return set(self._pending)

    def submit(self, raw_text: str) -> asyncio.Task[None] | None:
        """Send *raw_text*; returns the reply task, or ``None`` if nothing was sent.

        Must be called from a running event loop.
        """
        text = raw_text.strip()
        if not text:
            return None

        conversation = self.store.get(self.conversation_id)
        if conversation is None:
            logger.warning(
                "[SiliconChat Session] Conversation %s no longer exists; dropping submission.",
                self.conversation_id,
            )
            return None
        first = not conversation.has_user_message

        self.store.append_message(self.conversation_id, Message(role=Role.USER, text=text))

        if self.responder is None:
            coro = self._mock_reply(text)
        else:
            placeholder = Message(role=Role.ASSISTANT, text="")
            self.store.append_message(self.conversation_id, placeholder)
            coro = self._consume_stream(self.responder, text, placeholder.id)

        if first:
            self.on_first_user_message(text)

        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _consume_stream(self, responder: Responder, prompt: str, message_id: str) -> None:
        snapshots = None
        try:
            snapshots = responder.stream(prompt)
            async for snapshot in snapshots:
                if not self.store.patch_message_text(self.conversation_id, message_id, snapshot):
                    logger.debug(
                        "[SiliconChat Session] Message %s is gone; abandoning its stream.",
                        message_id,
                    )
                    return
        except Exception as exc:
            logger.warning("[SiliconChat Session] Responder stream failed: %s", exc)
            self.store.patch_message_text(self.conversation_id, message_id, format_ai_error(exc))
        finally:
            aclose = getattr(snapshots, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    async def _mock_reply(self, text: str) -> None:
        await asyncio.sleep(self.mock_reply_delay)
        self.store.append_message(
            self.conversation_id, Message(role=Role.ASSISTANT, text=f"{MOCK_PREFIX}{text}")
        )

    async def wait_idle(self) -> None:
        """Wait until every in-flight reply has settled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Abandon in-flight replies and release their streams."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def __repr__(self) -> str:
        return (
            f"ChatSession(conversation_id={self.conversation_id!r}, "
            f"responder={self.responder!r}, state={self.state.value!r})"
        )
