"""Flat-file persistence for the conversation list.

The whole list is written as one pretty-printed JSON array. Reads and writes
are best-effort: failures are logged and the in-memory store stays the source
of truth for the running process.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path

import click

from .models import Conversation, Role, utc_now_iso
from .store import ConversationStore, StoreEvent

logger = logging.getLogger("silicon_chat.persistence")

APP_NAME = "silicon-chat"
DATA_FILENAME = "conversations.json"


def default_data_path() -> Path:
    """Resolve the per-user conversations file."""
    return Path(click.get_app_dir(APP_NAME)) / DATA_FILENAME


class ConversationFile:
    """Loads and atomically rewrites the conversations file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else default_data_path()

    def load(self) -> list[Conversation]:
        """Return persisted conversations, or an empty list when none can be read."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
            return [Conversation.from_dict(item) for item in raw]
        except FileNotFoundError:
            return []
        except (OSError, ValueError, RecursionError) as exc:
            logger.warning(
                "[SiliconChat Persistence] Ignoring unreadable conversations file '%s': %s",
                self.path,
                exc,
            )
            return []

    def save(self, conversations: Iterable[Conversation]) -> bool:
        """Write *conversations* all-or-nothing; returns whether the commit happened."""
        tmp_name: str | None = None
        try:
            payload = json.dumps(
                [conversation.to_dict() for conversation in conversations],
                indent=2,
                ensure_ascii=False,
            )
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            return True
        except (OSError, TypeError, ValueError):
            logger.warning(
                "[SiliconChat Persistence] Could not save conversations to '%s'.",
                self.path,
                exc_info=True,
            )
            return False
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)

    def __repr__(self) -> str:
        return f"ConversationFile(path={self.path!r})"


class AutoSaver:
    """Write-through cache policy: persist the store after every mutation.

    With ``debounce > 0`` and a running event loop, bursts of mutations (for
    example streamed snapshots) are coalesced into one write that reflects the
    final state. ``close()`` flushes anything pending.
    """

    def __init__(
        self,
        store: ConversationStore,
        gateway: ConversationFile,
        debounce: float = 0.0,
    ) -> None:
        if debounce < 0:
            raise ValueError("debounce must be >= 0")
        self.store = store
        self.gateway = gateway
        self.debounce = debounce
        self.saves = 0
        self._handle: asyncio.TimerHandle | None = None
        self._unsubscribe: Callable[[], None] | None = store.subscribe(self._on_event)

    @property
    def dirty(self) -> bool:
        return self._handle is not None

    def _on_event(self, event: StoreEvent) -> None:
        if not event.mutates_conversations:
            return
        if self.debounce <= 0:
            self._save()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save()
            return
        if self._handle is None:
            self._handle = loop.call_later(self.debounce, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._save()

    def _save(self) -> None:
        if self.gateway.save(self.store.conversations):
            self.saves += 1

    def flush(self) -> None:
        """Persist immediately if a debounced write is pending."""
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        self._save()

    def close(self) -> None:
        self.flush()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


def export_markdown(conversation: Conversation, target: str | Path) -> Path:
    """Export one conversation as a Markdown transcript."""
    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [f"# {conversation.title}", "", f"Exported: {utc_now_iso()}", ""]
    for message in conversation.messages:
        role = "User" if message.role is Role.USER else "Assistant"
        lines.append(f"## {role} ({message.date})")
        lines.append("")
        lines.append(message.text)
        lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def export_jsonl(conversation: Conversation, target: str | Path) -> Path:
    """Export one conversation as JSON Lines: a metadata row, then one row per message."""
    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        handle.write(
            json.dumps(
                {
                    "type": "chat_metadata",
                    "chat_id": conversation.id,
                    "title": conversation.title,
                    "created_at": conversation.created_at,
                    "exported_at": utc_now_iso(),
                },
                ensure_ascii=False,
            )
            + "\n"
        )
        for message in conversation.messages:
            record = {"type": "message", **message.to_dict()}
            handle.write(json.dumps(record, ensure_ascii=False) + "\n")
    return path
