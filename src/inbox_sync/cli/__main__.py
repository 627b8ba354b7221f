"""CLI entry point for the inbox.

Lists channels and dialogs, reads and replies to threads, and records
corrections of assistant replies from the command line.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

import click

from inbox_sync.client import DashboardClient
from inbox_sync.config import Config, load_config
from inbox_sync.errors import InboxSyncError
from inbox_sync.logging import setup_logging
from inbox_sync.models import GENERIC_CHANNEL_TYPE, Dialog, Message
from inbox_sync.sync.corrections import HttpCorrectionStore, MirroredCorrectionStore, SqliteCorrectionStore
from inbox_sync.sync.engine import InboxEngine
from inbox_sync.sync.presenter import TAB_ALL, TABS, badge_label

T = TypeVar("T")


def format_timestamp(ts: int) -> str:
    """Format timestamp for display."""
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def parse_channel(value: str) -> int | None:
    """Channel argument: a registry id, or 'generic' for internal conversations."""
    if value.lower() == GENERIC_CHANNEL_TYPE:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise click.BadParameter(f"expected a channel id or '{GENERIC_CHANNEL_TYPE}', got {value!r}") from e


def print_dialog(dialog: Dialog) -> None:
    """Print one dialog row."""
    badge = badge_label(dialog.unread_count) or ("*" if dialog.unread else "")
    click.echo(
        f"\033[1m{badge:>3}\033[0m \033[36m{dialog.display_date:>11}\033[0m "
        f"\033[32m{dialog.counterpart_label}\033[0m ({dialog.dialog_id})"
    )
    if dialog.last_message_preview:
        click.echo(f"    {dialog.last_message_preview}")


def print_message(message: Message) -> None:
    """Print one thread message."""
    flag = " [failed]" if message.failed else " [pending]" if message.pending else ""
    click.echo(f"\033[36m[{format_timestamp(message.ts)}]\033[0m \033[32m{message.role}\033[0m #{message.id}{flag}")
    click.echo(f"{message.content}\n")


def run_with_engine(config: Config, action: Callable[[InboxEngine], Awaitable[T]], local_store: SqliteCorrectionStore | None = None) -> T:
    """Run an async action against a fresh engine, exiting 1 on inbox errors."""

    async def runner() -> T:
        async with DashboardClient(config.api) as client:
            store = HttpCorrectionStore(client)
            engine = InboxEngine.from_config(
                config,
                client,
                store=MirroredCorrectionStore(store, local_store) if local_store is not None else store,
            )
            try:
                return await action(engine)
            finally:
                await engine.close()

    try:
        return asyncio.run(runner())
    except InboxSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def open_thread(engine: InboxEngine, channel_id: int | None, dialog_id: str) -> list[Message]:
    """Select a dialog (or generic conversation), load its thread and mark it read."""
    await engine.load_channels()
    if channel_id is None:
        engine.select_conversation(dialog_id)
    else:
        channel = engine.channel(channel_id)
        engine.select_channel(channel_id)
        engine.select_dialog(dialog_id, channel.type)

    messages = await engine.refresh_thread()
    if messages is None:
        notice = engine.notice_for(channel_id)
        if notice is not None:
            raise click.ClickException(f"channel unavailable: {notice.message}")
        return []

    await engine.mark_read()
    return messages


@click.group()
def cli() -> None:
    """Unified inbox over connected messaging channels."""
    setup_logging("cli", log_dir=load_config().state.log_dir)


@cli.command()
def channels() -> None:
    """List connected channels."""
    config = load_config()

    async def action(engine: InboxEngine) -> None:
        for channel in await engine.load_channels():
            click.echo(f"{channel.id:>5}  \033[32m{channel.type:<8}\033[0m {channel.display_name} ({channel.connection_status})")

    run_with_engine(config, action)


@cli.command()
@click.argument("channel_id", type=int)
@click.option("--search", "-s", default="", help="Filter by counterpart or preview text")
@click.option("--tab", type=click.Choice(TABS), default=TAB_ALL, help="Show all or only unread dialogs")
def dialogs(channel_id: int, search: str, tab: str) -> None:
    """List dialogs of a provider channel."""
    config = load_config()

    async def action(engine: InboxEngine) -> None:
        await engine.load_channels()
        engine.channel(channel_id)
        if await engine.refresh_dialogs(channel_id) is None:
            notice = engine.notice_for(channel_id)
            raise click.ClickException(f"channel unavailable: {notice.message if notice else 'no data'}")

        snapshot = engine.snapshot(channel_id)
        shown = engine.dialogs_view(channel_id, search, tab)
        click.echo(
            f"{len(shown)} dialog(s) shown, {snapshot.unread_dialog_count} unread "
            f"({snapshot.total_unread_count} messages):\n"
        )
        for dialog in shown:
            print_dialog(dialog)

    run_with_engine(config, action)


@cli.command()
@click.argument("channel")
def unread(channel: str) -> None:
    """Show unread counters per dialog. CHANNEL is a channel id or 'generic'."""
    config = load_config()
    channel_id = parse_channel(channel)

    async def action(engine: InboxEngine) -> None:
        if channel_id is not None:
            await engine.load_channels()
            engine.channel(channel_id)
        counts = await engine.fetch_unread(channel_id)
        if counts is None:
            notice = engine.notice_for(channel_id)
            raise click.ClickException(f"channel unavailable: {notice.message if notice else 'no data'}")

        click.echo(f"{len(counts)} unread dialog(s), {sum(counts.values())} message(s)")
        for dialog_id, count in sorted(counts.items(), key=lambda item: -item[1]):
            click.echo(f"\033[1m{badge_label(count):>3}\033[0m {dialog_id}")

    run_with_engine(config, action)


@cli.command()
@click.option("--search", "-s", default="", help="Filter by counterpart or preview text")
@click.option("--tab", type=click.Choice(TABS), default=TAB_ALL, help="Show all or only unread dialogs")
@click.option("--all-channels", is_flag=True, help="Merge every provider channel into the list")
def conversations(search: str, tab: str, all_channels: bool) -> None:
    """List generic conversations, optionally merged with every channel."""
    config = load_config()

    async def action(engine: InboxEngine) -> None:
        await engine.refresh_dialogs(None)
        if all_channels:
            for channel in await engine.load_channels():
                await engine.refresh_dialogs(channel.id)

        for notice in engine.notices():
            click.echo(f"Channel {notice.channel_id} unavailable: {notice.message}", err=True)

        total, unread_dialogs = engine.unread_totals()
        shown = engine.unified_view(search, tab)
        click.echo(f"{len(shown)} conversation(s) shown, {unread_dialogs} unread ({total} messages):\n")
        for dialog in shown:
            print_dialog(dialog)

    run_with_engine(config, action)


@cli.command()
@click.argument("channel")
@click.argument("dialog_id")
def thread(channel: str, dialog_id: str) -> None:
    """Show a thread. CHANNEL is a channel id or 'generic'."""
    config = load_config()
    channel_id = parse_channel(channel)

    async def action(engine: InboxEngine) -> None:
        messages = await open_thread(engine, channel_id, dialog_id)
        if not messages:
            click.echo("No messages.")
        for message in messages:
            print_message(message)

    run_with_engine(config, action)


@cli.command()
@click.argument("channel")
@click.argument("dialog_id")
@click.argument("text")
def send(channel: str, dialog_id: str, text: str) -> None:
    """Send a reply as the operator. CHANNEL is a channel id or 'generic'."""
    config = load_config()
    channel_id = parse_channel(channel)

    async def action(engine: InboxEngine) -> None:
        await open_thread(engine, channel_id, dialog_id)
        message, _ = await engine.send_message(text)
        click.echo(f"Sent message #{message.id}")

    run_with_engine(config, action)


@cli.command()
@click.argument("channel")
@click.argument("dialog_id")
@click.argument("message_id")
@click.argument("text", required=False, default="")
@click.option("--good", is_flag=True, help="Mark the reply as good instead of correcting it")
def correct(channel: str, dialog_id: str, message_id: str, text: str, good: bool) -> None:
    """Correct an assistant reply (or mark it good) as a training example."""
    config = load_config()
    channel_id = parse_channel(channel)
    if not good and not text.strip():
        raise click.UsageError("TEXT is required unless --good is given")

    async def action(engine: InboxEngine) -> None:
        await open_thread(engine, channel_id, dialog_id)
        draft = await engine.propose_correction(message_id)
        click.echo(f"Paired with user message #{draft.paired_message.id}: {draft.paired_message.content}")
        if good:
            await engine.mark_good_response(draft)
            click.echo("Marked as a good response.")
        else:
            await engine.submit_correction(draft, text)
            click.echo("Correction saved.")

    with SqliteCorrectionStore(config.state.corrections_db) as local_store:
        run_with_engine(config, action, local_store=local_store)


@cli.command()
@click.option("--channel", "channel", default=None, help="Channel id or 'generic' (requires --dialog)")
@click.option("--dialog", "dialog_id", default=None, help="Dialog or conversation id")
@click.option("--limit", "-n", default=20, help="Number of results")
def corrections(channel: str | None, dialog_id: str | None, limit: int) -> None:
    """List corrections recorded locally, newest first."""
    config = load_config()
    channel_id = parse_channel(channel) if channel is not None else None

    with SqliteCorrectionStore(config.state.corrections_db) as store:
        rows = store.list_corrections(channel_id, dialog_id, limit=limit)

    click.echo(f"{len(rows)} correction(s):\n")
    for row in rows:
        kind = "good" if row.is_good_response else "corrected"
        click.echo(
            f"\033[36m[{format_timestamp(row.created_at)}]\033[0m \033[32m{kind}\033[0m "
            f"channel={row.channel_id} dialog={row.dialog_id} message=#{row.assistant_message_id}"
        )
        click.echo(f"Q: {row.user_query}")
        if not row.is_good_response:
            click.echo(f"Was: {row.original_text}")
        click.echo(f"Now: {row.corrected_text}")
        click.echo("-" * 40)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
