"""Error types and setup guards for SiliconChat."""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Any

INSTALL_HINT = (
    "The Apple Foundation Models SDK must be installed manually on Apple Silicon macOS "
    "(pip install 'silicon-chat[fm]')."
)


class SiliconChatError(Exception):
    """Base class for SiliconChat errors."""


class AppleFMSetupError(SiliconChatError):
    """Raised when the on-device Foundation Model cannot be used."""


class ConversationFormatError(SiliconChatError, ValueError):
    """Raised when a persisted conversation record is malformed."""


def require_apple_fm() -> ModuleType:
    """Import ``apple_fm_sdk`` or raise :class:`AppleFMSetupError`."""
    try:
        return importlib.import_module("apple_fm_sdk")
    except ImportError as exc:
        raise AppleFMSetupError(f"'apple-fm-sdk' is not installed. {INSTALL_HINT}") from exc


def ensure_model_available(model: Any, context: str = "silicon_chat") -> None:
    """Raise :class:`AppleFMSetupError` if *model* reports itself unavailable."""
    try:
        is_available, reason = model.is_available()
    except Exception as exc:
        raise AppleFMSetupError(
            f"[{context}] Could not query Foundation Model availability: {exc}"
        ) from exc
    if not is_available:
        raise AppleFMSetupError(f"[{context}] Foundation Model is not available: {reason}")
