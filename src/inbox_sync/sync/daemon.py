"""Watch daemon: keeps every dialog list polled and logs unread totals."""

import asyncio

import httpx

from inbox_sync.client import DashboardClient
from inbox_sync.config import Config
from inbox_sync.errors import ProviderUnavailable
from inbox_sync.logging import get_logger, setup_logging
from inbox_sync.sync.engine import InboxEngine

logger = get_logger("watch")

REPORT_KEY = ("report",)

# Global flag for graceful shutdown
_shutdown_requested = False


def request_shutdown() -> None:
    """Request graceful shutdown of the watch daemon."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


class UnreadReporter:
    """Logs aggregate unread totals whenever they change."""

    def __init__(self, engine: InboxEngine) -> None:
        self._engine = engine
        self._last: tuple[int, int] | None = None

    async def __call__(self) -> None:
        totals = self._engine.unread_totals()
        if totals == self._last:
            logger.debug("Cycle complete: no unread changes")
            return
        self._last = totals
        total, dialogs = totals
        logger.info("Unread changed: total_unread=%d unread_dialogs=%d", total, dialogs)
        for notice in self._engine.notices():
            logger.info("Channel degraded: channel=%s reason=%s", notice.channel_id, notice.message)


async def watch(
    config: Config,
    transport: httpx.AsyncBaseTransport | None = None,
    channel_ids: list[int] | None = None,
    include_generic: bool = True,
) -> InboxEngine:
    """Poll dialog lists until shutdown is requested.

    Args:
        config: Application configuration
        transport: Optional httpx transport (used by tests)
        channel_ids: Registry channels to watch (default: all of them)
        include_generic: Whether to watch internal conversations too

    Returns:
        The engine, stopped, holding the last applied snapshots
    """
    async with DashboardClient(config.api, transport=transport) as client:
        engine = InboxEngine.from_config(config, client)

        try:
            channels = await engine.load_channels()
        except ProviderUnavailable as e:
            logger.warning("Channel registry unavailable, watching generic conversations only: %s", e.reason)
            channels = []
            channel_ids = []

        logger.info("Watching %d channel(s): %s", len(channels), ", ".join(f"{c.id}:{c.type}" for c in channels))
        engine.watch(channel_ids, include_generic=include_generic)
        engine.scheduler.subscribe(REPORT_KEY, UnreadReporter(engine), config.polling.dialogs_interval_seconds)

        await engine.scheduler.run(is_shutdown_requested)
        await engine.close()
        return engine


def run_watch(config: Config, channel_ids: list[int] | None = None, include_generic: bool = True) -> None:
    """Run the watch daemon main loop.

    Loads the channel registry, polls every dialog list on the configured
    interval and repeats until shutdown is requested.

    Args:
        config: Application configuration
        channel_ids: Registry channels to watch (default: all of them)
        include_generic: Whether to watch internal conversations too
    """
    reset_shutdown()

    setup_logging("watch", log_dir=config.state.log_dir)

    logger.info(
        "Starting watch daemon: base_url=%s dialogs_interval=%.1fs timeout=%.1fs",
        config.api.base_url,
        config.polling.dialogs_interval_seconds,
        config.api.request_timeout_seconds,
    )

    asyncio.run(watch(config, channel_ids=channel_ids, include_generic=include_generic))

    logger.info("Watch daemon stopped")
