"""Single-owner conversation store with an explicit mutation API.

Every mutation goes through a method on :class:`ConversationStore` and is
announced to subscribers as a :class:`StoreEvent` once it has been applied.
Persistence (``silicon_chat.persistence.AutoSaver``) and any redraw logic hang
off that subscription instead of watching shared state.

All methods are expected to run on the event loop thread; the store does no
locking of its own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from .models import Conversation, Message

logger = logging.getLogger("silicon_chat")


class EventKind(str, Enum):
    CREATED = "created"
    DELETED = "deleted"
    SELECTED = "selected"
    TITLE_CHANGED = "title_changed"
    MESSAGE_APPENDED = "message_appended"
    MESSAGE_PATCHED = "message_patched"
    REPLACED = "replaced"


@dataclass(frozen=True)
class StoreEvent:
    kind: EventKind
    conversation_id: str | None = None
    message_id: str | None = None

    @property
    def mutates_conversations(self) -> bool:
        """Selection changes are not part of the persisted list."""
        return self.kind is not EventKind.SELECTED


Observer = Callable[[StoreEvent], None]


class ConversationStore:
    """Ordered conversations (newest first) plus the current selection."""

    def __init__(self, conversations: Iterable[Conversation] | None = None) -> None:
        self._conversations: list[Conversation] = list(conversations or [])
        self._selection: str | None = self._conversations[0].id if self._conversations else None
        self._observers: list[Observer] = []

    # -- observation --------------------------------------------------------

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register *observer*; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _emit(
        self,
        kind: EventKind,
        conversation_id: str | None = None,
        message_id: str | None = None,
    ) -> None:
        event = StoreEvent(kind, conversation_id, message_id)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.warning(
                    "[SiliconChat Store] Observer %r failed on %s.",
                    observer,
                    kind.value,
                    exc_info=True,
                )

    # -- queries ------------------------------------------------------------

    @property
    def conversations(self) -> list[Conversation]:
        """Snapshot of the ordered list; mutate through the store API."""
        return list(self._conversations)

    @property
    def selection(self) -> str | None:
        return self._selection

    @property
    def selected(self) -> Conversation | None:
        if self._selection is None:
            return None
        return self.get(self._selection)

    def __len__(self) -> int:
        return len(self._conversations)

    def __iter__(self) -> Iterator[Conversation]:
        return iter(list(self._conversations))

    def __contains__(self, conversation_id: object) -> bool:
        return self.index_of(conversation_id) is not None  # type: ignore[arg-type]

    def index_of(self, conversation_id: str) -> int | None:
        for index, conversation in enumerate(self._conversations):
            if conversation.id == conversation_id:
                return index
        return None

    def get(self, conversation_id: str) -> Conversation | None:
        index = self.index_of(conversation_id)
        return None if index is None else self._conversations[index]

    def search(self, query: str) -> list[Conversation]:
        """Conversations whose title or any message contains *query* (case-insensitive)."""
        needle = query.strip().casefold()
        if not needle:
            return self.conversations
        return [
            conversation
            for conversation in self._conversations
            if needle in conversation.title.casefold()
            or any(needle in message.text.casefold() for message in conversation.messages)
        ]

    # -- mutations ----------------------------------------------------------

    def replace_all(self, conversations: Iterable[Conversation]) -> None:
        """Install a freshly loaded list; the first conversation becomes selected."""
        self._conversations = list(conversations)
        self._selection = self._conversations[0].id if self._conversations else None
        self._emit(EventKind.REPLACED)

    def create(self) -> Conversation:
        conversation = Conversation()
        self._conversations.insert(0, conversation)
        self._selection = conversation.id
        self._emit(EventKind.CREATED, conversation.id)
        return conversation

    def select(self, conversation_id: str | None) -> None:
        if conversation_id is not None and conversation_id not in self:
            raise KeyError(conversation_id)
        if conversation_id == self._selection:
            return
        self._selection = conversation_id
        self._emit(EventKind.SELECTED, conversation_id)

    def delete(self, conversation_id: str) -> bool:
        index = self.index_of(conversation_id)
        if index is None:
            return False
        del self._conversations[index]
        if self._selection == conversation_id:
            self._selection = self._first_id()
        self._emit(EventKind.DELETED, conversation_id)
        return True

    def delete_at_offsets(self, offsets: Iterable[int]) -> list[str]:
        """Remove conversations by position; returns the removed ids.

        If the selected conversation is among them, selection jumps to the
        new first conversation (or ``None`` when nothing is left).
        """
        size = len(self._conversations)
        positions = sorted({offset for offset in offsets if 0 <= offset < size}, reverse=True)
        removed = [self._conversations[offset].id for offset in positions]
        for offset in positions:
            del self._conversations[offset]
        if self._selection is not None and self._selection not in self:
            self._selection = self._first_id()
        for conversation_id in reversed(removed):
            self._emit(EventKind.DELETED, conversation_id)
        return list(reversed(removed))

    def append_message(self, conversation_id: str, message: Message) -> bool:
        conversation = self.get(conversation_id)
        if conversation is None:
            logger.debug(
                "[SiliconChat Store] Dropping message for missing conversation %s.",
                conversation_id,
            )
            return False
        conversation.messages.append(message)
        self._emit(EventKind.MESSAGE_APPENDED, conversation_id, message.id)
        return True

    def patch_message_text(self, conversation_id: str, message_id: str, text: str) -> bool:
        """Replace one message's text in place; inert if the message is gone."""
        conversation = self.get(conversation_id)
        if conversation is None:
            return False
        message = conversation.find_message(message_id)
        if message is None:
            return False
        if message.text == text:
            return True
        message.text = text
        self._emit(EventKind.MESSAGE_PATCHED, conversation_id, message_id)
        return True

    def apply_first_user_message(self, conversation_id: str, text: str) -> bool:
        conversation = self.get(conversation_id)
        if conversation is None or not conversation.apply_first_user_message(text):
            return False
        self._emit(EventKind.TITLE_CHANGED, conversation_id)
        return True

    def _first_id(self) -> str | None:
        return self._conversations[0].id if self._conversations else None
