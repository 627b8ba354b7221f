"""Explicit thread cache keyed by (channel_id, dialog_id | conversation_id).

Mutating operations return the keys they invalidate instead of relying on
string-prefix conventions.
"""

from dataclasses import dataclass, field

from inbox_sync.models import Message

CacheKey = tuple[int | None, str]


def thread_key(channel_id: int | None, dialog_id: str | int) -> CacheKey:
    """Build the cache key for a thread. Generic conversations use channel_id=None."""
    return (channel_id, str(dialog_id))


@dataclass(frozen=True)
class Invalidation:
    """Keys a mutation made stale."""

    threads: tuple[CacheKey, ...] = ()
    dialog_lists: tuple[int | None, ...] = ()
    corrections: tuple[CacheKey, ...] = ()


@dataclass
class ThreadCache:
    """Loaded threads, one entry per dialog or conversation."""

    _entries: dict[CacheKey, list[Message]] = field(default_factory=dict)
    _stale: set[CacheKey] = field(default_factory=set)

    def get(self, key: CacheKey) -> list[Message] | None:
        """Cached thread or None."""
        messages = self._entries.get(key)
        return list(messages) if messages is not None else None

    def put(self, key: CacheKey, messages: list[Message]) -> None:
        """Store a fetched thread, replacing any previous one."""
        self._entries[key] = list(messages)
        self._stale.discard(key)

    def is_stale(self, key: CacheKey) -> bool:
        """Whether the entry is missing or was invalidated since the last put."""
        return key not in self._entries or key in self._stale

    def invalidate(self, invalidation: Invalidation) -> None:
        """Mark every thread named by an invalidation stale."""
        self._stale.update(invalidation.threads)

    def drop_channel(self, channel_id: int | None) -> None:
        """Forget every thread of a channel."""
        for key in [key for key in self._entries if key[0] == channel_id]:
            del self._entries[key]
            self._stale.discard(key)
