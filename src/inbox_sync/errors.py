"""Exception hierarchy for the inbox synchronization engine."""


class InboxSyncError(Exception):
    """Base exception for inbox-sync errors."""


class ProviderUnavailable(InboxSyncError):
    """Raised when a provider call fails: network error, timeout, non-2xx or bad payload.

    The failure is scoped to one channel. Callers record it as a notice for
    that channel and keep polling; the next successful refresh clears it.
    """

    def __init__(self, channel_id: int | None, reason: str) -> None:
        self.channel_id = channel_id
        self.reason = reason
        super().__init__(f"provider unavailable (channel={channel_id}): {reason}")


class UnknownChannel(InboxSyncError):
    """Raised when a channel id is not present in the channel registry."""

    def __init__(self, channel_id: int) -> None:
        self.channel_id = channel_id
        super().__init__(f"unknown channel: {channel_id}")


class UnsupportedChannelType(InboxSyncError):
    """Raised when no adapter is registered for a channel type."""

    def __init__(self, channel_type: str) -> None:
        self.channel_type = channel_type
        super().__init__(f"no adapter registered for channel type {channel_type!r}")


class SelectionError(InboxSyncError):
    """Base class for invalid selection transitions."""


class NoChannelSelected(SelectionError):
    """Raised when a dialog is selected before any channel."""


class FeedbackError(InboxSyncError):
    """Base class for correction precondition failures.

    These are terminal for the attempt: the operator has to pick another message.
    """


class MessageNotFound(FeedbackError):
    """Raised when the message is not in the loaded thread."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"message {message_id!r} is not in the current thread")


class InvalidRole(FeedbackError):
    """Raised when a non-assistant message is submitted for correction."""

    def __init__(self, message_id: str, role: str) -> None:
        self.message_id = message_id
        self.role = role
        super().__init__(f"message {message_id!r} has role {role!r}; only assistant messages can be corrected")


class NoPriorCounterpartMessage(FeedbackError):
    """Raised when no user message precedes the assistant message."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"no user message precedes assistant message {message_id!r}")


class EmptyCorrection(FeedbackError):
    """Raised when a correction is submitted with blank text."""

