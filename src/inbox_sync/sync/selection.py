"""Selection state machine for the channel -> dialog -> thread cascade."""

from collections.abc import Callable
from dataclasses import dataclass, replace

from inbox_sync.errors import NoChannelSelected
from inbox_sync.logging import get_logger
from inbox_sync.models import Channel, Selection

logger = get_logger("selection")

NO_CHANNEL = "no_channel"
CHANNEL_SELECTED = "channel_selected"
DIALOG_SELECTED = "dialog_selected"
CONVERSATION_SELECTED = "conversation_selected"

SelectionListener = Callable[[Selection, Selection], None]


@dataclass(frozen=True)
class SelectionKey:
    """Identifies the selection an async fetch was issued under."""

    generation: int
    selection: Selection


class SelectionStateMachine:
    """Owns the selection triple and enforces the cascade.

    Changing a level resets every level below it. Each committed change
    bumps `generation`, so a fetch carrying an older SelectionKey is stale
    even if the selection later returns to the same values.

    Listeners are called synchronously with (previous, current) on every
    commit. `select_channel` commits the cleared lower levels first, so
    listeners observe the dialog being dropped before the new channel is set.
    """

    def __init__(self) -> None:
        self._selection = Selection()
        self._generation = 0
        self._listeners: list[SelectionListener] = []

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> str:
        """Current state name."""
        if self._selection.conversation_id is not None:
            return CONVERSATION_SELECTED
        if self._selection.channel_id is None:
            return NO_CHANNEL
        if self._selection.dialog_id is None:
            return CHANNEL_SELECTED
        return DIALOG_SELECTED

    def add_listener(self, listener: SelectionListener) -> None:
        """Register a callback run after every committed change."""
        self._listeners.append(listener)

    def key(self) -> SelectionKey:
        """Key to attach to a fetch issued now."""
        return SelectionKey(generation=self._generation, selection=self._selection)

    def is_current(self, key: SelectionKey) -> bool:
        """Whether a fetch issued under `key` may still be applied."""
        return key.generation == self._generation

    def _commit(self, selection: Selection) -> None:
        previous = self._selection
        self._selection = selection
        self._generation += 1
        logger.debug("Selection changed: generation=%d %s -> %s", self._generation, previous, selection)
        for listener in self._listeners:
            listener(previous, selection)

    def select_channel(self, channel_id: int) -> None:
        """Select a channel, clearing dialog and conversation first."""
        current = self._selection
        if current.dialog_id is not None or current.dialog_type is not None or current.conversation_id is not None:
            self._commit(replace(current, dialog_id=None, dialog_type=None, conversation_id=None))
        self._commit(Selection(channel_id=channel_id))

    def select_dialog(self, dialog_id: str | int, dialog_type: str) -> None:
        """Select a provider dialog within the selected channel.

        Raises:
            NoChannelSelected: If no channel is selected
        """
        if self._selection.channel_id is None:
            raise NoChannelSelected(f"cannot select dialog {dialog_id!r} without a channel")
        self._commit(
            Selection(
                channel_id=self._selection.channel_id,
                dialog_id=dialog_id,
                dialog_type=dialog_type,
            )
        )

    def select_conversation(self, conversation_id: str | int) -> None:
        """Select a generic conversation; provider selection is dropped."""
        self._commit(Selection(conversation_id=conversation_id))

    def clear_dialog(self) -> None:
        """Go back from a dialog to its channel."""
        if self._selection.dialog_id is None and self._selection.dialog_type is None:
            return
        self._commit(replace(self._selection, dialog_id=None, dialog_type=None))

    def reset(self) -> None:
        """Clear everything."""
        if self._selection != Selection():
            self._commit(Selection())

    def is_dialog_active_for(self, channel: Channel | None) -> bool:
        """Whether the selected dialog may render under `channel`.

        The dialog must belong to that channel and its type must equal the
        channel's type; anything else is stale and renders as a placeholder.
        """
        selection = self._selection
        if channel is None or selection.dialog_id is None:
            return False
        return selection.channel_id == channel.id and selection.dialog_type == channel.type
