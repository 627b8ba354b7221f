"""Base provider adapter interface, registry and shared mapping helpers."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, tzinfo

from inbox_sync.client import DashboardClient
from inbox_sync.config import PollingConfig
from inbox_sync.errors import ProviderUnavailable, UnsupportedChannelType
from inbox_sync.models import ROLE_ASSISTANT, ROLE_OPERATOR, ROLE_USER, Dialog, Message

__all__ = [
    "AdapterRegistry",
    "build_sent_message",
    "ensure_list",
    "Dialog",
    "Message",
    "ProviderAdapter",
    "format_display_date",
    "map_sender_role",
    "parse_timestamp",
    "to_unread_count",
]

MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# Timestamps above this are treated as milliseconds
_MILLIS_THRESHOLD = 10**11


def format_display_date(
    ts: int,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> str:
    """Format a dialog/message timestamp for the list view.

    Same calendar day renders the time only ("14:05"), same calendar year
    renders day and short month ("3 Mar"), anything else adds the year
    ("3 Mar 2024").

    Args:
        ts: Unix timestamp (seconds)
        now: Reference time (defaults to the current time)
        tz: Timezone to compare calendar days in (defaults to now's timezone,
            or local time when both are unset)

    Returns:
        Display string
    """
    if now is None:
        now = datetime.now(tz)
    if tz is None:
        tz = now.tzinfo
    elif now.tzinfo is not None:
        now = now.astimezone(tz)

    moment = datetime.fromtimestamp(ts, tz)

    if moment.date() == now.date():
        return moment.strftime("%H:%M")

    month = MONTH_ABBR[moment.month - 1]
    if moment.year == now.year:
        return f"{moment.day} {month}"
    return f"{moment.day} {month} {moment.year}"


def parse_timestamp(value: int | float | str | None) -> int:
    """Parse a provider timestamp to Unix seconds.

    Accepts Unix seconds, Unix milliseconds, or ISO 8601 strings (with an
    optional trailing Z). Unparseable values map to 0.
    """
    if value is None or isinstance(value, bool):
        return 0

    if isinstance(value, (int, float)):
        if value > _MILLIS_THRESHOLD:
            return int(value / 1000)
        return int(value)

    text = str(value).strip()
    if not text:
        return 0
    if text.isdigit():
        return parse_timestamp(int(text))

    try:
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return int(datetime.fromisoformat(text).timestamp())
    except ValueError:
        return 0


def map_sender_role(sender_type: str | None) -> str:
    """Map a provider sender type onto a canonical role."""
    normalized = (sender_type or "").strip().lower()
    if normalized == ROLE_USER:
        return ROLE_USER
    if normalized in (ROLE_ASSISTANT, "bot"):
        return ROLE_ASSISTANT
    return ROLE_OPERATOR


def to_unread_count(value: int | float | str | None) -> int:
    """Coerce a provider unread counter to int; garbage becomes 0.

    Negative values pass through untouched; clamping is the reconciler's job.
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class ProviderAdapter(ABC):
    """Base class for provider adapters.

    Subclasses set the `channel_type` class attribute and translate the
    dashboard's provider-specific payloads into canonical Dialog and Message
    records. All network calls go through the shared DashboardClient and may
    raise ProviderUnavailable.
    """

    channel_type: str

    def __init__(
        self,
        client: DashboardClient,
        polling: PollingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.polling = polling or PollingConfig()
        self._clock = clock or datetime.now

    def now(self) -> datetime:
        """Reference time used for display dates."""
        return self._clock()

    @abstractmethod
    async def list_dialogs(self, channel_id: int | None) -> list[Dialog]:
        """Fetch the full dialog snapshot for a channel, most recent first."""

    @abstractmethod
    async def fetch_thread(self, channel_id: int | None, dialog_id: str | int) -> list[Message]:
        """Fetch a dialog's messages in display order (timestamp ascending)."""

    @abstractmethod
    async def send(self, channel_id: int | None, dialog_id: str | int, content: str) -> Message:
        """Send an operator message and return the persisted message."""

    async def fetch_unread(self, channel_id: int | None) -> dict[str, int]:
        """Unread counters by dialog id, for dialogs flagged unread.

        The dashboard has no dedicated unread endpoint, so the default reads
        the whole dialog list.
        """
        dialogs = await self.list_dialogs(channel_id)
        return {str(d.dialog_id): max(d.unread_count, 0) for d in dialogs if d.unread}

    async def mark_read(self, channel_id: int | None, dialog_id: str | int) -> None:
        """Mark a dialog read on the provider side.

        Providers without a read endpoint treat this as a no-op.
        """
        return None


class AdapterRegistry:
    """Registry of adapter classes by channel type."""

    _adapters: dict[str, type[ProviderAdapter]] = {}

    @classmethod
    def register(cls, adapter_cls: type[ProviderAdapter]) -> None:
        """Register an adapter class."""
        cls._adapters[adapter_cls.channel_type] = adapter_cls

    @classmethod
    def get(cls, channel_type: str) -> type[ProviderAdapter] | None:
        """Get adapter class by channel type."""
        return cls._adapters.get(channel_type)

    @classmethod
    def all_types(cls) -> list[str]:
        """List all registered channel types."""
        return list(cls._adapters.keys())

    @classmethod
    def build(
        cls,
        client: DashboardClient,
        polling: PollingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> dict[str, ProviderAdapter]:
        """Instantiate one adapter per registered channel type."""
        return {
            channel_type: adapter_cls(client, polling, clock)
            for channel_type, adapter_cls in cls._adapters.items()
        }

    @classmethod
    def require(cls, adapters: dict[str, ProviderAdapter], channel_type: str) -> ProviderAdapter:
        """Look up a built adapter, raising UnsupportedChannelType when missing."""
        adapter = adapters.get(channel_type)
        if adapter is None:
            raise UnsupportedChannelType(channel_type)
        return adapter


def build_sent_message(response: object, dialog_id: str | int, content: str, fallback_ts: int) -> Message:
    """Build the canonical message for a successful send.

    The dashboard echoes the stored message for some providers and only an id
    for others; missing fields fall back to what was sent.
    """
    data = response if isinstance(response, dict) else {}
    message_id = data.get("id") or data.get("messageId") or data.get("message_id") or f"sent-{fallback_ts}"
    ts = parse_timestamp(data.get("timestamp") or data.get("date") or data.get("createdAt")) or fallback_ts
    return Message(
        id=str(message_id),
        dialog_id=str(dialog_id),
        role=ROLE_OPERATOR,
        content=data.get("content") or data.get("text") or content,
        ts=ts,
    )


def ensure_list(payload: object, channel_id: int | None, what: str) -> list:
    """Return payload as a list of dict entries or raise ProviderUnavailable.

    Accepts a bare list or an envelope with an ``items`` list.
    """
    if isinstance(payload, dict) and isinstance(payload.get("items"), list):
        payload = payload["items"]
    if not isinstance(payload, list):
        raise ProviderUnavailable(channel_id, f"{what} payload is not a list")
    return [entry for entry in payload if isinstance(entry, dict)]
