"""Conversation and message records plus the rules binding them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .exceptions import ConversationFormatError

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 40


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def utc_now_iso() -> str:
    """Return a UTC timestamp string that sorts and round-trips stably."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def derive_title(text: str) -> str:
    """Title for a conversation opened with *text*."""
    return text.strip()[:TITLE_MAX_CHARS]


def _require(data: dict[str, Any], key: str, kind: str) -> Any:
    if key not in data:
        raise ConversationFormatError(f"{kind} record is missing '{key}'")
    return data[key]


@dataclass
class Message:
    """One turn of a conversation.

    ``role`` and ``date`` are fixed at construction; only ``text`` changes,
    and only while an assistant reply is streaming into it.
    """

    role: Role
    text: str = ""
    id: str = field(default_factory=new_id)
    date: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("id", "role", "date") and name in self.__dict__:
            raise AttributeError(f"Message.{name} is immutable")
        super().__setattr__(name, value)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "role": self.role.value, "text": self.text, "date": self.date}

    @classmethod
    def from_dict(cls, data: Any) -> Message:
        if not isinstance(data, dict):
            raise ConversationFormatError(
                f"Message record must be an object, got {type(data).__name__}"
            )
        raw_role = _require(data, "role", "Message")
        try:
            role = Role(raw_role)
        except ValueError as exc:
            raise ConversationFormatError(f"Unknown message role {raw_role!r}") from exc
        return cls(
            role=role,
            text=str(_require(data, "text", "Message")),
            id=str(_require(data, "id", "Message")),
            date=str(_require(data, "date", "Message")),
        )


@dataclass
class Conversation:
    """A titled, ordered thread of messages."""

    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("id", "created_at") and name in self.__dict__:
            raise AttributeError(f"Conversation.{name} is immutable")
        super().__setattr__(name, value)

    @property
    def has_user_message(self) -> bool:
        return any(message.role is Role.USER for message in self.messages)

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def apply_first_user_message(self, text: str) -> bool:
        """Derive the title from *text* unless it was already derived."""
        if self.title != DEFAULT_TITLE:
            return False
        title = derive_title(text)
        if not title:
            return False
        self.title = title
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message.to_dict() for message in self.messages],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Conversation:
        if not isinstance(data, dict):
            raise ConversationFormatError(
                f"Conversation record must be an object, got {type(data).__name__}"
            )
        raw_messages = _require(data, "messages", "Conversation")
        if not isinstance(raw_messages, list):
            raise ConversationFormatError("Conversation 'messages' must be an array")
        return cls(
            title=str(_require(data, "title", "Conversation")),
            messages=[Message.from_dict(item) for item in raw_messages],
            id=str(_require(data, "id", "Conversation")),
            created_at=str(_require(data, "createdAt", "Conversation")),
        )
