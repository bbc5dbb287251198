"""
SiliconChat CLI — a terminal shell over the conversation core.

Registered as `silicon-chat` console script via pyproject.toml.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from .models import Conversation, Role
from .persistence import AutoSaver, ConversationFile, export_jsonl, export_markdown
from .protocols import Responder
from .responders import (
    FoundationModelResponder,
    MockResponder,
    foundation_models_available,
    select_responder,
)
from .session import ChatSession
from .store import ConversationStore, EventKind, StoreEvent

RESPONDER_CHOICES = ["auto", "fm", "mock", "none"]
AUTOSAVE_DEBOUNCE_SECONDS = 0.25
CHAT_HELP = "Commands: /new starts a new conversation, /quit leaves. Ctrl-D also quits."


def _open_store(gateway: ConversationFile) -> ConversationStore:
    store = ConversationStore()
    store.replace_all(gateway.load())
    return store


def _resolve_conversation(store: ConversationStore, conversation_id: str | None) -> Conversation:
    """Find a conversation by id (or unique id prefix); default to the selection."""
    if conversation_id is None:
        conversation = store.selected
        if conversation is None:
            raise click.ClickException("No conversations yet. Try `silicon-chat new`.")
        return conversation

    exact = store.get(conversation_id)
    if exact is not None:
        return exact
    matches = [c for c in store if c.id.startswith(conversation_id)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise click.ClickException(f"No conversation matches '{conversation_id}'.")
    raise click.ClickException(f"'{conversation_id}' is ambiguous ({len(matches)} matches).")


def _build_responder(kind: str) -> Responder | None:
    if kind == "none":
        return None
    if kind == "mock":
        return MockResponder()
    if kind == "fm":
        available, reason = foundation_models_available()
        if not available:
            raise click.ClickException(reason)
        try:
            return FoundationModelResponder()
        except Exception as exc:
            message = f"Could not open a Foundation Model session: {exc}"
            raise click.ClickException(message) from exc
    return select_responder()


def _print_conversation_table(store: ConversationStore, conversations: list[Conversation]) -> None:
    if not conversations:
        click.secho("No conversations yet.", fg="yellow", err=True)
        return
    for conversation in conversations:
        marker = "*" if conversation.id == store.selection else " "
        click.echo(
            f"{marker} {conversation.id[:8]}  {conversation.title:<40}  "
            f"{len(conversation.messages):>3} msgs  {conversation.created_at}"
        )


def _print_transcript(conversation: Conversation) -> None:
    click.secho(conversation.title, fg="cyan", bold=True)
    click.echo()
    if not conversation.messages:
        click.echo("No messages yet in this chat.")
        return
    for message in conversation.messages:
        label = "You" if message.role is Role.USER else "Assistant"
        color = "cyan" if message.role is Role.USER else "green"
        click.secho(f"{label} | {message.date}", fg=color)
        click.echo(message.text)
        click.echo()


class StreamPrinter:
    """Echo assistant text to the terminal as the store reports changes."""

    def __init__(self, store: ConversationStore) -> None:
        self.store = store
        self._printed: dict[str, str] = {}

    def __call__(self, event: StoreEvent) -> None:
        if event.kind not in (EventKind.MESSAGE_APPENDED, EventKind.MESSAGE_PATCHED):
            return
        if event.conversation_id is None or event.message_id is None:
            return
        conversation = self.store.get(event.conversation_id)
        message = conversation.find_message(event.message_id) if conversation else None
        if message is None or message.role is not Role.ASSISTANT:
            return

        previous = self._printed.get(message.id)
        if previous is None:
            click.secho("assistant> ", fg="green", nl=False)
            previous = ""
        if message.text.startswith(previous):
            click.echo(message.text[len(previous) :], nl=False)
        else:
            click.echo()
            click.echo(message.text, nl=False)
        self._printed[message.id] = message.text


def _read_line(prompt: str) -> str | None:
    click.echo(prompt, nl=False)
    line = sys.stdin.readline()
    if not line:
        return None
    return line.rstrip("\n").rstrip("\r")


async def _chat_loop(
    store: ConversationStore,
    conversation: Conversation,
    responder: Responder | None,
    saver: AutoSaver,
) -> None:
    loop = asyncio.get_running_loop()
    unsubscribe = store.subscribe(StreamPrinter(store))
    session = ChatSession(store, conversation.id, responder)
    click.secho(f"Chatting in '{conversation.title}' ({conversation.id[:8]}).", fg="cyan")
    click.echo(CHAT_HELP)
    try:
        while True:
            line = await loop.run_in_executor(None, _read_line, "you> ")
            if line is None:
                click.echo()
                break
            command = line.strip()
            if command == "/quit":
                break
            if command == "/new":
                await session.wait_idle()
                conversation = store.create()
                session = ChatSession(store, conversation.id, responder)
                click.secho(f"New chat {conversation.id[:8]}.", fg="cyan")
                continue
            if session.submit(line) is None:
                continue
            await session.wait_idle()
            click.echo()
    finally:
        await session.aclose()
        unsubscribe()
        saver.close()


# ── Main group ────────────────────────────────────────────────────────────────


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="silicon-chat")
@click.option(
    "--data-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="SILICON_CHAT_DATA_FILE",
    default=None,
    help="Conversations file (defaults to the per-user app directory).",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug).")
@click.pass_context
def cli(ctx: click.Context, data_file: Path | None, verbose: int) -> None:
    """SiliconChat — local conversations with on-device language models."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = ConversationFile(data_file)


# ── Conversations ─────────────────────────────────────────────────────────────


@cli.command(name="list")
@click.pass_obj
def list_cmd(gateway: ConversationFile) -> None:
    """List conversations, newest first."""
    store = _open_store(gateway)
    _print_conversation_table(store, store.conversations)


@cli.command()
@click.pass_obj
def new(gateway: ConversationFile) -> None:
    """Create an empty conversation."""
    store = _open_store(gateway)
    saver = AutoSaver(store, gateway)
    conversation = store.create()
    saver.close()
    click.echo(conversation.id)


@cli.command()
@click.argument("conversation_id", required=False)
@click.pass_obj
def show(gateway: ConversationFile, conversation_id: str | None) -> None:
    """Print a conversation transcript (defaults to the newest)."""
    store = _open_store(gateway)
    _print_transcript(_resolve_conversation(store, conversation_id))


@cli.command()
@click.argument("conversation_ids", nargs=-1, required=True)
@click.pass_obj
def delete(gateway: ConversationFile, conversation_ids: tuple[str, ...]) -> None:
    """Delete one or more conversations."""
    store = _open_store(gateway)
    targets = [_resolve_conversation(store, cid) for cid in conversation_ids]
    offsets = [store.index_of(conversation.id) for conversation in targets]
    saver = AutoSaver(store, gateway)
    removed = store.delete_at_offsets(offset for offset in offsets if offset is not None)
    saver.close()
    click.secho(f"Deleted {len(removed)} conversation(s).", fg="green")


@cli.command()
@click.argument("query")
@click.pass_obj
def search(gateway: ConversationFile, query: str) -> None:
    """Find conversations whose title or messages contain QUERY."""
    store = _open_store(gateway)
    _print_conversation_table(store, store.search(query))


@cli.command(name="export")
@click.argument("conversation_id")
@click.argument("target", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def export_cmd(gateway: ConversationFile, conversation_id: str, target: Path) -> None:
    """Export a conversation to Markdown (.md) or JSON Lines (anything else)."""
    store = _open_store(gateway)
    conversation = _resolve_conversation(store, conversation_id)
    if target.suffix.lower() == ".md":
        path = export_markdown(conversation, target)
    else:
        if target.suffix.lower() != ".jsonl":
            target = target.with_suffix(".jsonl")
        path = export_jsonl(conversation, target)
    click.secho(f"Exported chat to {path}", fg="green")


# ── Inference ─────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("conversation_id", required=False)
@click.option(
    "--responder",
    "responder_kind",
    type=click.Choice(RESPONDER_CHOICES),
    default="auto",
    show_default=True,
    help="auto picks the Foundation Model when available; none uses a delayed one-shot mock.",
)
@click.option("--new", "start_new", is_flag=True, help="Start in a fresh conversation.")
@click.pass_obj
def chat(
    gateway: ConversationFile,
    conversation_id: str | None,
    responder_kind: str,
    start_new: bool,
) -> None:
    """Chat interactively, streaming replies as they are generated."""
    store = _open_store(gateway)
    saver = AutoSaver(store, gateway, debounce=AUTOSAVE_DEBOUNCE_SECONDS)
    if start_new or (conversation_id is None and store.selected is None):
        conversation = store.create()
    else:
        conversation = _resolve_conversation(store, conversation_id)
        store.select(conversation.id)
    try:
        responder = _build_responder(responder_kind)
    except click.ClickException:
        saver.close()
        raise
    asyncio.run(_chat_loop(store, conversation, responder, saver))


@cli.command()
@click.argument("prompt")
@click.option(
    "--responder",
    "responder_kind",
    type=click.Choice(["auto", "fm", "mock"]),
    default="auto",
    show_default=True,
)
def ask(prompt: str, responder_kind: str) -> None:
    """One-shot reply to PROMPT without saving a conversation."""
    responder = _build_responder(responder_kind) or MockResponder()
    click.echo(asyncio.run(responder.respond(prompt)))


@cli.command()
def doctor() -> None:
    """Report whether the on-device Foundation Model can be used."""
    available, reason = foundation_models_available()
    if available:
        click.secho("Foundation Model: available", fg="green")
    else:
        click.secho("Foundation Model: unavailable (mock responder will be used)", fg="yellow")
        click.echo(f"  {reason}")


def cli_entry() -> None:
    cli()


if __name__ == "__main__":
    cli_entry()
