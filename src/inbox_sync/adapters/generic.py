"""Adapter for the dashboard's own (generic) conversations.

Generic conversations live in the dashboard's store and are not bound to a
registry channel:
    /api/conversations                  - list
    /api/conversations/<id>/messages    - thread (GET) and send (POST)

List entries carry their own `unread` flag next to an optional
`unreadCount`; the pair may disagree and is clamped by the reconciler.
"""

import time
from datetime import datetime

from inbox_sync.adapters.base import (
    Dialog,
    Message,
    ProviderAdapter,
    build_sent_message,
    ensure_list,
    format_display_date,
    map_sender_role,
    parse_timestamp,
    to_unread_count,
)
from inbox_sync.models import GENERIC_CHANNEL_TYPE


class GenericAdapter(ProviderAdapter):
    """Adapter for internal conversations."""

    channel_type = GENERIC_CHANNEL_TYPE

    async def list_dialogs(self, channel_id: int | None = None) -> list[Dialog]:
        payload = await self.client.get_json("/api/conversations", channel_id=channel_id)
        now = self.now()
        return [self.parse_dialog(entry, now) for entry in ensure_list(payload, channel_id, "conversations")]

    def parse_dialog(self, entry: dict, now: datetime | None = None) -> Dialog:
        """Map one generic conversation to a canonical Dialog."""
        ts = parse_timestamp(entry.get("timestamp"))
        unread_count = to_unread_count(entry.get("unreadCount"))
        unread = bool(entry["unread"]) if "unread" in entry else unread_count > 0

        return Dialog(
            dialog_id=entry.get("id"),
            channel_id=None,
            channel_type=self.channel_type,
            counterpart_label=entry.get("name") or f"Conversation {entry.get('id')}",
            last_message_preview=entry.get("lastMessage") or "",
            last_message_ts=ts,
            display_date=format_display_date(ts, now or self.now()),
            unread=unread,
            unread_count=unread_count,
        )

    def parse_message(self, entry: dict, conversation_id: str | int) -> Message:
        return Message(
            id=str(entry.get("id")),
            dialog_id=str(entry.get("conversationId") or conversation_id),
            role=map_sender_role(entry.get("senderType")),
            content=entry.get("content") or "",
            ts=parse_timestamp(entry.get("timestamp")),
        )

    async def fetch_thread(self, channel_id: int | None, dialog_id: str | int) -> list[Message]:
        payload = await self.client.get_json(f"/api/conversations/{dialog_id}/messages", channel_id=channel_id)
        entries = ensure_list(payload, channel_id, "conversation messages")
        return sorted((self.parse_message(entry, dialog_id) for entry in entries), key=lambda m: m.ts)

    async def send(self, channel_id: int | None, dialog_id: str | int, content: str) -> Message:
        response = await self.client.post_json(
            f"/api/conversations/{dialog_id}/messages",
            {"content": content},
            channel_id=channel_id,
        )
        return build_sent_message(response, dialog_id, content, int(time.time()))
