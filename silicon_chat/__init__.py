"""
SiliconChat: a local-first conversation core for on-device language models.

Conversations live in a single-owner store, are snapshotted to one JSON file
after every change, and receive assistant replies streamed from the Apple
Foundation Models SDK (python-apple-fm-sdk) or, where that is unavailable, from
a deterministic mock typist.
"""

from .exceptions import AppleFMSetupError, ConversationFormatError, SiliconChatError
from .models import DEFAULT_TITLE, Conversation, Message, Role
from .persistence import AutoSaver, ConversationFile, default_data_path
from .protocols import Responder
from .responders import (
    FoundationModelResponder,
    MockResponder,
    foundation_models_available,
    select_responder,
)
from .session import ChatSession, SessionState
from .store import ConversationStore, EventKind, StoreEvent

# Note: the apple_fm_sdk import is deferred until a real responder is requested.

__all__ = [
    "DEFAULT_TITLE",
    "AppleFMSetupError",
    "AutoSaver",
    "ChatSession",
    "Conversation",
    "ConversationFile",
    "ConversationFormatError",
    "ConversationStore",
    "EventKind",
    "FoundationModelResponder",
    "Message",
    "MockResponder",
    "Responder",
    "Role",
    "SessionState",
    "SiliconChatError",
    "StoreEvent",
    "default_data_path",
    "foundation_models_available",
    "select_responder",
]
