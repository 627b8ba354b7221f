"""Tests for shared adapter helpers and the adapter registry."""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import NOW

from inbox_sync.adapters import AdapterRegistry, AvitoAdapter, GenericAdapter, VkAdapter, WebWidgetAdapter
from inbox_sync.adapters.base import (
    build_sent_message,
    ensure_list,
    format_display_date,
    map_sender_role,
    parse_timestamp,
    to_unread_count,
)
from inbox_sync.errors import ProviderUnavailable, UnsupportedChannelType
from inbox_sync.models import ROLE_ASSISTANT, ROLE_OPERATOR, ROLE_USER


def ts(*args: int, tz: timezone = timezone.utc) -> int:
    return int(datetime(*args, tzinfo=tz).timestamp())


class TestFormatDisplayDate:
    """Tests for the list-view display date policy."""

    def test_same_day_shows_time(self) -> None:
        """A timestamp from today renders as HH:MM."""
        assert format_display_date(ts(2024, 3, 15, 14, 5), NOW) == "14:05"

    def test_same_day_pads_hours(self) -> None:
        """Early morning times keep the leading zero."""
        assert format_display_date(ts(2024, 3, 15, 7, 3), NOW) == "07:03"

    def test_same_year_shows_day_and_month(self) -> None:
        """Earlier this year renders as day and short month."""
        assert format_display_date(ts(2024, 3, 3, 9, 0), NOW) == "3 Mar"

    def test_yesterday_is_not_today(self) -> None:
        """Yesterday late evening is already a day+month date."""
        assert format_display_date(ts(2024, 3, 14, 23, 59), NOW) == "14 Mar"

    def test_previous_year_includes_year(self) -> None:
        """Fourteen months ago includes the year."""
        assert format_display_date(ts(2023, 1, 15, 10, 0), NOW) == "15 Jan 2023"

    def test_compares_calendar_days_in_given_timezone(self) -> None:
        """Calendar days are compared in the requested timezone."""
        plus_three = timezone(timedelta(hours=3))
        # 22:30 UTC on the 15th is 01:30 on the 16th at UTC+3
        assert format_display_date(ts(2024, 3, 15, 22, 30), NOW, tz=plus_three) == "16 Mar"
        assert format_display_date(ts(2024, 3, 15, 22, 30), NOW) == "22:30"


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_unix_seconds(self) -> None:
        """Plain seconds pass through."""
        assert parse_timestamp(1710504000) == 1710504000

    def test_unix_milliseconds(self) -> None:
        """Millisecond values are scaled down."""
        assert parse_timestamp(1710504000123) == 1710504000

    def test_digit_string(self) -> None:
        """Numeric strings are parsed as numbers."""
        assert parse_timestamp("1710504000") == 1710504000

    def test_iso_with_z(self) -> None:
        """ISO 8601 strings with a Z suffix are UTC."""
        assert parse_timestamp("2024-03-15T12:00:00Z") == 1710504000

    def test_iso_with_offset(self) -> None:
        """ISO 8601 strings with an explicit offset are honoured."""
        assert parse_timestamp("2024-03-15T15:00:00+03:00") == 1710504000

    @pytest.mark.parametrize("value", [None, "", "yesterday", True])
    def test_garbage_maps_to_zero(self, value: object) -> None:
        """Unparseable values map to 0."""
        assert parse_timestamp(value) == 0


class TestRoleAndCounters:
    """Tests for sender role mapping and unread counter coercion."""

    def test_user_role(self) -> None:
        """User senders map to the user role, case-insensitively."""
        assert map_sender_role("User") == ROLE_USER

    def test_bot_is_assistant(self) -> None:
        """Bot and assistant senders are the assistant."""
        assert map_sender_role("bot") == ROLE_ASSISTANT
        assert map_sender_role("assistant") == ROLE_ASSISTANT

    def test_everything_else_is_operator(self) -> None:
        """Human staff and unknown senders are operators."""
        assert map_sender_role("operator") == ROLE_OPERATOR
        assert map_sender_role("manager") == ROLE_OPERATOR
        assert map_sender_role(None) == ROLE_OPERATOR

    def test_unread_count_coercion(self) -> None:
        """Counters are coerced to int; garbage becomes 0, negatives pass through."""
        assert to_unread_count("3") == 3
        assert to_unread_count(None) == 0
        assert to_unread_count("many") == 0
        assert to_unread_count(-2) == -2


class TestEnsureList:
    """Tests for payload shape validation."""

    def test_bare_list_keeps_dicts(self) -> None:
        """Non-dict entries are dropped."""
        assert ensure_list([{"id": 1}, "junk", None], 1, "x") == [{"id": 1}]

    def test_items_envelope(self) -> None:
        """An {items: [...]} envelope is unwrapped."""
        assert ensure_list({"items": [{"id": 2}]}, 1, "x") == [{"id": 2}]

    def test_object_without_items_raises(self) -> None:
        """Any other shape is a provider failure for that channel."""
        with pytest.raises(ProviderUnavailable) as exc_info:
            ensure_list({"error": "boom"}, 7, "vk dialogs")
        assert exc_info.value.channel_id == 7


class TestBuildSentMessage:
    """Tests for canonical messages built from send responses."""

    def test_uses_echoed_fields(self) -> None:
        """Fields echoed by the dashboard win."""
        message = build_sent_message({"id": 42, "timestamp": 1710504000, "content": "Hi!"}, 5, "Hi", 1)
        assert message.id == "42"
        assert message.ts == 1710504000
        assert message.content == "Hi!"
        assert message.role == ROLE_OPERATOR
        assert message.dialog_id == "5"

    def test_falls_back_to_sent_content(self) -> None:
        """An empty response falls back to what was sent."""
        message = build_sent_message(None, "abc", "Hello", 1710504000)
        assert message.id == "sent-1710504000"
        assert message.content == "Hello"
        assert message.ts == 1710504000


class TestAdapterRegistry:
    """Tests for the adapter registry."""

    def test_all_provider_types_registered(self) -> None:
        """Every provider adapter registers on import."""
        assert set(AdapterRegistry.all_types()) >= {"vk", "avito", "web", "generic"}
        assert AdapterRegistry.get("vk") is VkAdapter
        assert AdapterRegistry.get("avito") is AvitoAdapter
        assert AdapterRegistry.get("web") is WebWidgetAdapter
        assert AdapterRegistry.get("generic") is GenericAdapter

    def test_get_unknown_returns_none(self) -> None:
        """Unknown channel types are not registered."""
        assert AdapterRegistry.get("telegram") is None

    async def test_build_and_require(self, client) -> None:
        """build() instantiates one adapter per type; require() rejects unknown types."""
        adapters = AdapterRegistry.build(client)
        assert isinstance(AdapterRegistry.require(adapters, "vk"), VkAdapter)
        with pytest.raises(UnsupportedChannelType):
            AdapterRegistry.require(adapters, "telegram")
