"""Canonical data models."""

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_OPERATOR = "operator"
ROLES = (ROLE_USER, ROLE_ASSISTANT, ROLE_OPERATOR)

# Generic conversations are not bound to a registry channel
GENERIC_CHANNEL_TYPE = "generic"


@dataclass(frozen=True)
class Channel:
    """A connected provider channel from the channel registry."""

    id: int
    type: str  # vk, avito, web, generic
    display_name: str
    connection_status: str = "active"

    @classmethod
    def from_registry(cls, data: dict) -> "Channel":
        """Build a Channel from a registry entry ({id, type, name, status})."""
        return cls(
            id=int(data["id"]),
            type=str(data["type"]),
            display_name=data.get("name") or data.get("displayName") or f"Channel {data['id']}",
            connection_status=data.get("status") or "active",
        )


@dataclass(frozen=True)
class Dialog:
    """A provider-agnostic dialog summary.

    Snapshots are replaced whole on every poll tick; a Dialog is never
    patched in place.
    """

    dialog_id: str | int
    channel_id: int | None
    channel_type: str
    counterpart_label: str
    last_message_preview: str
    last_message_ts: int  # Unix timestamp (seconds)
    display_date: str = ""
    unread: bool = False
    unread_count: int = 0

    @property
    def key(self) -> tuple[int | None, str]:
        """Cache/lookup key for this dialog."""
        return (self.channel_id, str(self.dialog_id))


@dataclass(frozen=True)
class Message:
    """A canonical thread message."""

    id: str
    dialog_id: str
    role: str  # user, assistant, operator
    content: str
    ts: int  # Unix timestamp (seconds)
    pending: bool = False
    failed: bool = False


@dataclass(frozen=True)
class Selection:
    """The operator's current inbox selection.

    Either the provider pair (dialog_id, dialog_type) under channel_id, or a
    generic conversation_id, is set; never both.
    """

    channel_id: int | None = None
    dialog_id: str | int | None = None
    dialog_type: str | None = None
    conversation_id: str | int | None = None


@dataclass(frozen=True)
class Correction:
    """An operator correction of an assistant reply, used as a training example."""

    assistant_message_id: str
    paired_message_id: str
    corrected_text: str
    created_at: int  # Unix timestamp (seconds)
    user_query: str = ""
    original_text: str = ""
    channel_id: int | None = None
    dialog_id: str | None = None
    is_good_response: bool = False


@dataclass(frozen=True)
class StoredCorrection:
    """A correction as listed back by a correction store."""

    user_query: str
    original_response: str
    corrected_response: str
    created_at: str = ""


@dataclass
class Notice:
    """A non-blocking, channel-scoped notice shown inline for one channel."""

    channel_id: int | None
    message: str
    raised_at: int


def sort_thread(messages: list[Message]) -> list[Message]:
    """Return messages in display order (timestamp ascending, stable)."""
    return sorted(messages, key=lambda m: m.ts)
