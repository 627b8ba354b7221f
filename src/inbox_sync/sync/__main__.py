"""Entry point for the watch daemon.

Runs as ``inbox-sync-watch`` or ``python -m inbox_sync.sync``. SIGINT and
SIGTERM let in-flight refreshes finish before the loop exits.
"""

import signal
from pathlib import Path
from types import FrameType

import click

from inbox_sync.config import load_config
from inbox_sync.errors import InboxSyncError
from inbox_sync.logging import get_logger
from inbox_sync.sync.daemon import request_shutdown, run_watch

logger = get_logger("watch")

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def on_shutdown_signal(signum: int, frame: FrameType | None) -> None:
    logger.info("Received %s, finishing in-flight refreshes", signal.Signals(signum).name)
    request_shutdown()


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: standard search paths)",
)
@click.option("--channel", "-c", "channel_ids", type=int, multiple=True, help="Watch only this channel id (repeatable)")
@click.option("--no-generic", is_flag=True, help="Do not watch internal conversations")
def main(config_path: Path | None, channel_ids: tuple[int, ...], no_generic: bool) -> None:
    """Poll dialog lists and log unread changes until stopped."""
    for signum in SHUTDOWN_SIGNALS:
        signal.signal(signum, on_shutdown_signal)

    config = load_config(config_path)
    try:
        run_watch(config, channel_ids=list(channel_ids) or None, include_generic=not no_generic)
    except InboxSyncError as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    main()
