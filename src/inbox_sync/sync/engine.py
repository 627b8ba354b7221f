"""Inbox engine: aggregation, polling and selection wired together.

Data flows adapters -> reconciler -> presenter for dialog lists, and
selection -> scheduler -> adapter for the open thread. Every fetch carries
the state it was issued under and its result is dropped when that state has
moved on, so a slow response can never paint over a newer selection.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import TypeVar

from inbox_sync.adapters import AdapterRegistry, ProviderAdapter
from inbox_sync.client import DashboardClient
from inbox_sync.config import Config
from inbox_sync.errors import NoChannelSelected, ProviderUnavailable, UnknownChannel, UnsupportedChannelType
from inbox_sync.logging import get_logger
from inbox_sync.models import (
    GENERIC_CHANNEL_TYPE,
    ROLE_OPERATOR,
    Channel,
    Correction,
    Dialog,
    Message,
    Notice,
    Selection,
    StoredCorrection,
    sort_thread,
)
from inbox_sync.sync.cache import CacheKey, Invalidation, ThreadCache, thread_key
from inbox_sync.sync.corrections import CorrectionStore, HttpCorrectionStore
from inbox_sync.sync.feedback import (
    STATUS_NONE,
    CorrectionDraft,
    FeedbackPipeline,
    correction_status,
    find_message_index,
    find_previous_user_message,
)
from inbox_sync.sync.presenter import TAB_ALL, present, unified
from inbox_sync.sync.reconciler import EMPTY_SNAPSHOT, ReconciledSnapshot, UnreadReconciler
from inbox_sync.sync.scheduler import DEFAULT_INTERVAL_SECONDS, POLLING, PollingScheduler
from inbox_sync.sync.selection import SelectionKey, SelectionStateMachine

logger = get_logger("engine")

T = TypeVar("T")

THREAD_KEY = ("thread",)

ChannelSource = Callable[[], Awaitable[list[Channel]]]


def dialogs_key(channel_id: int | None) -> tuple[str, int | None]:
    """Scheduler key for a channel's dialog list (None is the generic list)."""
    return ("dialogs", channel_id)


class InboxEngine:
    """Unified inbox state for one operator session.

    Owns the selection state machine, one unread reconciler per dialog list,
    the thread cache, the polling scheduler and per-channel notices. Provider
    failures become notices for their channel and never affect other
    channels.
    """

    def __init__(
        self,
        adapters: dict[str, ProviderAdapter],
        feedback: FeedbackPipeline,
        channel_source: ChannelSource | None = None,
        scheduler: PollingScheduler | None = None,
        request_timeout: float = 10.0,
        dialogs_interval: float = DEFAULT_INTERVAL_SECONDS,
        thread_interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._adapters = adapters
        self.feedback = feedback
        self._channel_source = channel_source
        self.scheduler = scheduler or PollingScheduler()
        self._request_timeout = request_timeout
        self._dialogs_interval = dialogs_interval
        self._thread_interval = thread_interval
        self._clock = clock

        self.selection = SelectionStateMachine()
        self.selection.add_listener(self._on_selection_change)
        self.cache = ThreadCache()

        self._channels: dict[int, Channel] = {}
        self._reconcilers: dict[int | None, UnreadReconciler] = {}
        self._list_epoch: dict[int | None, int] = {}
        self._list_issued: dict[int | None, int] = {}
        self._list_applied: dict[int | None, int] = {}
        self._notices: dict[int | None, Notice] = {}
        self._thread: list[Message] = []

    @classmethod
    def from_config(
        cls,
        config: Config,
        client: DashboardClient,
        store: CorrectionStore | None = None,
        scheduler: PollingScheduler | None = None,
    ) -> "InboxEngine":
        """Build an engine talking to the dashboard through `client`."""
        return cls(
            adapters=AdapterRegistry.build(client, config.polling),
            feedback=FeedbackPipeline(store or HttpCorrectionStore(client)),
            channel_source=client.list_channels,
            scheduler=scheduler,
            request_timeout=config.api.request_timeout_seconds,
            dialogs_interval=config.polling.dialogs_interval_seconds,
            thread_interval=config.polling.thread_interval_seconds,
        )

    # Channel registry

    async def load_channels(self) -> list[Channel]:
        """Read the channel registry and replace the known channel set."""
        if self._channel_source is None:
            return self.channels()
        channels = await self._bounded(None, self._channel_source())
        self.set_channels(channels)
        return channels

    def set_channels(self, channels: list[Channel]) -> None:
        """Replace the known channels; state of channels that disappeared is dropped."""
        incoming = {channel.id: channel for channel in channels}
        for channel_id in set(self._channels) - set(incoming):
            self._forget_channel(channel_id)
        self._channels = incoming

    def channels(self) -> list[Channel]:
        return list(self._channels.values())

    def channel(self, channel_id: int) -> Channel:
        """Look up a known channel.

        Raises:
            UnknownChannel: If the channel is not in the registry
        """
        channel = self._channels.get(channel_id)
        if channel is None:
            raise UnknownChannel(channel_id)
        return channel

    def active_channel(self) -> Channel | None:
        """The selected channel, if any."""
        channel_id = self.selection.selection.channel_id
        return self._channels.get(channel_id) if channel_id is not None else None

    def _forget_channel(self, channel_id: int) -> None:
        self.scheduler.cancel(dialogs_key(channel_id))
        self._bump_epoch(channel_id)
        self._reconcilers.pop(channel_id, None)
        self._notices.pop(channel_id, None)
        self.cache.drop_channel(channel_id)
        if self.selection.selection.channel_id == channel_id:
            self.selection.reset()

    def _adapter_for(self, channel_type: str) -> ProviderAdapter:
        return AdapterRegistry.require(self._adapters, channel_type)

    def _list_adapter(self, channel_id: int | None) -> ProviderAdapter:
        if channel_id is None:
            return self._adapter_for(GENERIC_CHANNEL_TYPE)
        return self._adapter_for(self.channel(channel_id).type)

    # Notices

    def notices(self) -> list[Notice]:
        """Current per-channel notices."""
        return list(self._notices.values())

    def notice_for(self, channel_id: int | None) -> Notice | None:
        return self._notices.get(channel_id)

    def _record_failure(self, channel_id: int | None, error: ProviderUnavailable) -> None:
        logger.warning("Provider unavailable: channel=%s reason=%s", channel_id, error.reason)
        self._notices[channel_id] = Notice(channel_id=channel_id, message=error.reason, raised_at=int(self._clock()))

    def _supported_list_adapter(self, channel_id: int | None) -> ProviderAdapter | None:
        """Adapter for a dialog list, or None (with a notice) when the channel type has none."""
        try:
            return self._list_adapter(channel_id)
        except UnsupportedChannelType as e:
            if channel_id not in self._notices:
                logger.warning("Channel not supported: channel=%s type=%s", channel_id, e.channel_type)
            self._notices[channel_id] = Notice(channel_id=channel_id, message=str(e), raised_at=int(self._clock()))
            return None

    def _clear_notice(self, channel_id: int | None) -> None:
        if self._notices.pop(channel_id, None) is not None:
            logger.info("Provider recovered: channel=%s", channel_id)

    async def _bounded(self, channel_id: int | None, call: Awaitable[T]) -> T:
        """Await a provider call under the request timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(channel_id, f"no response within {self._request_timeout:g}s") from e

    # Dialog lists

    def _reconciler(self, channel_id: int | None) -> UnreadReconciler:
        reconciler = self._reconcilers.get(channel_id)
        if reconciler is None:
            reconciler = self._reconcilers[channel_id] = UnreadReconciler()
        return reconciler

    def _bump_epoch(self, channel_id: int | None) -> None:
        self._list_epoch[channel_id] = self._list_epoch.get(channel_id, 0) + 1

    async def refresh_dialogs(self, channel_id: int | None) -> ReconciledSnapshot | None:
        """Fetch one dialog-list snapshot and apply it.

        Args:
            channel_id: Registry channel, or None for generic conversations

        Returns:
            The new snapshot, or None when the fetch failed or its result
            was stale (the channel was released or a newer fetch already
            applied)
        """
        adapter = self._supported_list_adapter(channel_id)
        if adapter is None:
            return None
        epoch = self._list_epoch.get(channel_id, 0)
        ticket = self._list_issued[channel_id] = self._list_issued.get(channel_id, 0) + 1

        try:
            dialogs = await self._bounded(channel_id, adapter.list_dialogs(channel_id))
        except ProviderUnavailable as e:
            self._record_failure(channel_id, e)
            return None

        if self._list_epoch.get(channel_id, 0) != epoch or ticket < self._list_applied.get(channel_id, 0):
            logger.debug("Discarded stale dialog list: channel=%s ticket=%d", channel_id, ticket)
            return None

        self._list_applied[channel_id] = ticket
        self._clear_notice(channel_id)
        reconciler = self._reconciler(channel_id)
        previous, snapshot = reconciler.apply(dialogs)
        grown = reconciler.delta(previous)
        if grown:
            logger.debug("New unread: channel=%s dialogs=%s", channel_id, grown)

        selected = self._selected_dialog_id(channel_id)
        if selected is not None and str(selected) in grown:
            logger.debug("Unread grew on open dialog, refreshing thread: channel=%s dialog=%s", channel_id, selected)
            self.scheduler.request_immediate(THREAD_KEY)

        return snapshot

    async def fetch_unread(self, channel_id: int | None) -> dict[str, int] | None:
        """Unread counters by dialog id straight from the provider.

        Nothing is applied to the reconciled snapshot. Returns None when the
        channel is unsupported or the provider failed (a notice is recorded).
        """
        adapter = self._supported_list_adapter(channel_id)
        if adapter is None:
            return None
        try:
            counts = await self._bounded(channel_id, adapter.fetch_unread(channel_id))
        except ProviderUnavailable as e:
            self._record_failure(channel_id, e)
            return None
        self._clear_notice(channel_id)
        return counts

    def _selected_dialog_id(self, channel_id: int | None) -> str | int | None:
        selection = self.selection.selection
        if channel_id is None:
            return selection.conversation_id
        if selection.channel_id == channel_id:
            return selection.dialog_id
        return None

    def snapshot(self, channel_id: int | None) -> ReconciledSnapshot:
        """Display snapshot of a dialog list (read hints applied)."""
        reconciler = self._reconcilers.get(channel_id)
        return reconciler.view() if reconciler is not None else EMPTY_SNAPSHOT

    def dialogs_view(self, channel_id: int | None, search_query: str = "", tab: str = TAB_ALL) -> list[Dialog]:
        """Search/filter one dialog list."""
        return present(self.snapshot(channel_id).dialogs, search_query, tab)

    def unified_view(self, search_query: str = "", tab: str = TAB_ALL) -> list[Dialog]:
        """Search/filter generic conversations and every loaded provider list together."""
        provider_snapshots = [self.snapshot(channel.id).dialogs for channel in self._channels.values()]
        return present(unified(self.snapshot(None).dialogs, provider_snapshots), search_query, tab)

    def unread_totals(self) -> tuple[int, int]:
        """Aggregate (total unread messages, unread dialogs) over all loaded lists."""
        snapshots = [self.snapshot(key) for key in self._reconcilers]
        return (
            sum(s.total_unread_count for s in snapshots),
            sum(s.unread_dialog_count for s in snapshots),
        )

    # Selection

    def select_channel(self, channel_id: int) -> None:
        """Select a channel and start polling its dialog list.

        The previous dialog is cleared (and its thread dropped) before the
        new channel's first fetch is scheduled.
        """
        self.channel(channel_id)
        self.selection.select_channel(channel_id)
        self.scheduler.subscribe(
            dialogs_key(channel_id),
            lambda: self._refresh_dialogs_quietly(channel_id),
            self._dialogs_interval,
        )

    def select_dialog(self, dialog_id: str | int, dialog_type: str) -> None:
        """Open a provider dialog in the selected channel.

        Selecting a dialog flagged unread also forces one immediate refresh
        of the channel's dialog list.

        Raises:
            NoChannelSelected: If no channel is selected
        """
        self.selection.select_dialog(dialog_id, dialog_type)
        self._arm_thread()

        channel_id = self.selection.selection.channel_id
        dialog = self.snapshot(channel_id).find(dialog_id)
        if dialog is not None and dialog.unread:
            self.scheduler.request_immediate(dialogs_key(channel_id))

    def select_conversation(self, conversation_id: str | int) -> None:
        """Open a generic conversation; any provider selection is dropped."""
        self.selection.select_conversation(conversation_id)
        self._arm_thread()

        dialog = self.snapshot(None).find(conversation_id)
        if dialog is not None and dialog.unread:
            self.scheduler.request_immediate(dialogs_key(None))

    def _arm_thread(self) -> None:
        """Show the cached thread for the new target, if still valid, and poll it."""
        target = self._thread_target(self.selection.selection)
        if target is not None and not self._thread:
            key = thread_key(target[1], target[2])
            if not self.cache.is_stale(key):
                self._thread = self.cache.get(key)
        self.scheduler.subscribe(THREAD_KEY, self._refresh_thread_quietly, self._thread_interval)

    def _on_selection_change(self, previous: Selection, current: Selection) -> None:
        if previous.channel_id is not None and previous.channel_id != current.channel_id:
            # In-flight list fetches for the old channel are ignored on completion
            self.scheduler.pause(dialogs_key(previous.channel_id))
            self._bump_epoch(previous.channel_id)

        if self._thread_target(previous) != self._thread_target(current):
            self.scheduler.cancel(THREAD_KEY)
            self._thread = []

    def is_dialog_active(self) -> bool:
        """Whether the selected thread may render (else show the placeholder)."""
        selection = self.selection.selection
        if selection.conversation_id is not None:
            return True
        return self.selection.is_dialog_active_for(self.active_channel())

    # Threads

    def _thread_target(self, selection: Selection) -> tuple[str, int | None, str | int] | None:
        """(channel type, channel id, dialog id) the selection's thread comes from."""
        if selection.conversation_id is not None:
            return (GENERIC_CHANNEL_TYPE, None, selection.conversation_id)
        if selection.channel_id is None or selection.dialog_id is None:
            return None
        channel = self._channels.get(selection.channel_id)
        if channel is None or channel.type != selection.dialog_type:
            return None
        return (channel.type, channel.id, selection.dialog_id)

    def _require_target(self) -> tuple[SelectionKey, str, int | None, str | int]:
        key = self.selection.key()
        target = self._thread_target(key.selection)
        if target is None:
            raise NoChannelSelected("no dialog or conversation is open")
        return (key, *target)

    async def refresh_thread(self) -> list[Message] | None:
        """Fetch the open thread and apply it if the selection has not moved.

        Returns:
            The displayed thread, or None when nothing is open, the fetch
            failed, or the response was stale
        """
        key = self.selection.key()
        target = self._thread_target(key.selection)
        if target is None:
            return None
        _, channel_id, dialog_id = target
        adapter = self._supported_list_adapter(channel_id)
        if adapter is None:
            return None

        try:
            messages = await self._bounded(channel_id, adapter.fetch_thread(channel_id, dialog_id))
        except ProviderUnavailable as e:
            self._record_failure(channel_id, e)
            return None

        if not self.selection.is_current(key):
            logger.debug("Discarded stale thread: dialog=%s generation=%d", dialog_id, key.generation)
            return None

        messages = sort_thread(messages)
        self.cache.put(thread_key(channel_id, dialog_id), messages)
        confirmed_ids = {m.id for m in messages}
        local = [m for m in self._thread if (m.pending or m.failed) and m.id not in confirmed_ids]
        self._thread = messages + local
        return self.current_thread()

    def current_thread(self) -> list[Message]:
        """The displayed thread, timestamp ascending, provisional messages last."""
        return list(self._thread)

    async def _refresh_dialogs_quietly(self, channel_id: int | None) -> None:
        await self.refresh_dialogs(channel_id)

    async def _refresh_thread_quietly(self) -> None:
        await self.refresh_thread()

    # Mutations

    async def send_message(self, content: str) -> tuple[Message, Invalidation]:
        """Send to the open thread with a provisional local append.

        The provisional message is shown as pending right away, replaced by
        the server's message on success, and flagged failed on error.

        Raises:
            NoChannelSelected: If nothing is open
            ProviderUnavailable: If the send failed (also recorded as a notice)
        """
        _, channel_type, channel_id, dialog_id = self._require_target()
        target = (channel_type, channel_id, dialog_id)
        adapter = self._adapter_for(channel_type)

        provisional = Message(
            id=f"pending-{uuid.uuid4().hex[:12]}",
            dialog_id=str(dialog_id),
            role=ROLE_OPERATOR,
            content=content,
            ts=int(self._clock()),
            pending=True,
        )
        self._thread.append(provisional)

        try:
            confirmed = await self._bounded(channel_id, adapter.send(channel_id, dialog_id, content))
        except ProviderUnavailable as e:
            self._record_failure(channel_id, e)
            if self._is_open(target):
                self._replace_provisional(provisional, replace(provisional, pending=False, failed=True))
            raise

        if self._is_open(target):
            self._replace_provisional(provisional, confirmed)

        invalidation = Invalidation(threads=(thread_key(channel_id, dialog_id),), dialog_lists=(channel_id,))
        self.cache.invalidate(invalidation)
        if self.scheduler.state_of(dialogs_key(channel_id)) == POLLING:
            self.scheduler.request_immediate(dialogs_key(channel_id))
        return confirmed, invalidation

    def _is_open(self, target: tuple[str, int | None, str | int]) -> bool:
        """Whether `target` is still the displayed thread (re-selecting it does not count as leaving)."""
        return self._thread_target(self.selection.selection) == target

    def _replace_provisional(self, provisional: Message, replacement: Message) -> None:
        thread = [m for m in self._thread if m.id != provisional.id]
        if not any(m.id == replacement.id for m in thread):
            thread.append(replacement)
        pending = [m for m in thread if m.pending or m.failed]
        self._thread = sort_thread([m for m in thread if not (m.pending or m.failed)]) + pending

    def discard_failed(self) -> None:
        """Drop failed provisional messages from the displayed thread."""
        self._thread = [m for m in self._thread if not m.failed]

    async def mark_read(self, dialog_id: str | int | None = None) -> Invalidation:
        """Mark a dialog of the selected channel (default: the open one) as read.

        The dialog shows zero unread immediately; the next server snapshot
        decides. A provider failure rolls the hint back and records a notice.
        """
        selection = self.selection.selection
        if selection.conversation_id is not None and dialog_id is None:
            channel_id, dialog_id = None, selection.conversation_id
        else:
            channel_id = selection.channel_id
            dialog_id = dialog_id if dialog_id is not None else selection.dialog_id
        if dialog_id is None:
            raise NoChannelSelected("no dialog to mark read")

        adapter = self._supported_list_adapter(channel_id)
        if adapter is None:
            return Invalidation()

        reconciler = self._reconciler(channel_id)
        reconciler.mark_read(dialog_id)
        try:
            await self._bounded(channel_id, adapter.mark_read(channel_id, dialog_id))
        except ProviderUnavailable as e:
            reconciler.drop_read_hint(dialog_id)
            self._record_failure(channel_id, e)
            return Invalidation()

        return Invalidation(dialog_lists=(channel_id,))

    # Feedback

    async def load_corrections(self) -> list[StoredCorrection]:
        """Stored corrections for the open thread; unavailable store yields []."""
        _, _, channel_id, dialog_id = self._require_target()
        try:
            return await self._bounded(channel_id, self.feedback.corrections_for(channel_id, dialog_id))
        except ProviderUnavailable as e:
            self._record_failure(channel_id, e)
            return []

    async def propose_correction(self, assistant_message_id: str | int) -> CorrectionDraft:
        """Open a correction for an assistant message in the displayed thread.

        Raises:
            MessageNotFound, InvalidRole, NoPriorCounterpartMessage
        """
        _, _, channel_id, dialog_id = self._require_target()
        existing = await self.load_corrections()
        confirmed = [m for m in self._thread if not (m.pending or m.failed)]
        return self.feedback.propose_correction(
            confirmed,
            assistant_message_id,
            existing=existing,
            channel_id=channel_id,
            dialog_id=dialog_id,
        )

    async def submit_correction(self, draft: CorrectionDraft, corrected_text: str) -> tuple[Correction, Invalidation]:
        """Persist a corrected reply; returns the correction and what it invalidated."""
        correction = await self.feedback.submit(draft, corrected_text)
        return correction, self._correction_invalidation(draft)

    async def mark_good_response(self, draft: CorrectionDraft) -> tuple[Correction, Invalidation]:
        """Persist a reply unchanged as a good example."""
        correction = await self.feedback.mark_good(draft)
        return correction, self._correction_invalidation(draft)

    def _correction_invalidation(self, draft: CorrectionDraft) -> Invalidation:
        key: CacheKey = thread_key(draft.channel_id, draft.dialog_id or draft.assistant_message.dialog_id)
        return Invalidation(corrections=(key,))

    def message_status(self, message_id: str | int, corrections: list[StoredCorrection]) -> str:
        """Correction status (none/good/corrected) of a displayed message."""
        thread = [m for m in self._thread if not (m.pending or m.failed)]
        index = find_message_index(thread, message_id)
        if index is None:
            return STATUS_NONE
        return correction_status(thread[index], find_previous_user_message(thread, index), corrections)

    # Lifecycle

    def watch(self, channel_ids: list[int] | None = None, include_generic: bool = True) -> None:
        """Poll dialog lists without selecting anything (daemon mode)."""
        if include_generic and GENERIC_CHANNEL_TYPE in self._adapters:
            self.scheduler.subscribe(dialogs_key(None), lambda: self._refresh_dialogs_quietly(None), self._dialogs_interval)
        for channel_id in channel_ids if channel_ids is not None else list(self._channels):
            channel = self.channel(channel_id)
            if channel.type not in self._adapters:
                logger.info("Not watching channel %s: no adapter for type %r", channel_id, channel.type)
                continue
            self.scheduler.subscribe(
                dialogs_key(channel_id),
                lambda channel_id=channel_id: self._refresh_dialogs_quietly(channel_id),
                self._dialogs_interval,
            )

    async def close(self) -> None:
        """Stop every timer and wait for in-flight refreshes to settle."""
        self.scheduler.cancel_all()
        await self.scheduler.drain()
