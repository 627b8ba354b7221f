"""Adapter for the embeddable site chat widget.

Widget visitors are stored by the dashboard as conversations:
    /api/channels/<id>/conversations                      - visitor conversations
    /api/channels/<id>/conversations?dialogId=<visitor>   - single lookup
    /api/channels/<id>/conversation/<convId>/messages     - thread
    /api/conversations/<convId>/messages                  - send

A dialog is addressed by the visitor's externalUserId when the widget set
one, otherwise by the conversation id. Threads and sends need the
conversation id, so the adapter resolves it from the last listing.
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
from inbox_sync.logging import get_logger

logger = get_logger("adapters.web")


def visitor_dialog_id(entry: dict) -> str:
    """Dialog id of a widget conversation: visitor id, else conversation id."""
    return str(entry.get("externalUserId") or entry.get("id"))


class WebWidgetAdapter(ProviderAdapter):
    """Adapter for web widget conversations."""

    channel_type = "web"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._conversation_ids: dict[tuple[int | None, str], str] = {}

    async def list_dialogs(self, channel_id: int | None) -> list[Dialog]:
        """List visitor conversations, most recent activity first."""
        payload = await self.client.get_json(f"/api/channels/{channel_id}/conversations", channel_id=channel_id)
        entries = ensure_list(payload, channel_id, "web conversations")
        now = self.now()

        dialogs = []
        for entry in entries:
            dialog = self.parse_dialog(entry, channel_id, now)
            self._conversation_ids[(channel_id, str(dialog.dialog_id))] = str(entry.get("id"))
            dialogs.append(dialog)

        return sorted(dialogs, key=lambda d: d.last_message_ts, reverse=True)

    def parse_dialog(self, entry: dict, channel_id: int | None, now: datetime | None = None) -> Dialog:
        """Map one widget conversation to a canonical Dialog."""
        external_id = entry.get("externalUserId")
        ts = parse_timestamp(entry.get("lastMessageAt") or entry.get("startedAt"))
        unread_count = to_unread_count(entry.get("unreadCount"))
        unread = bool(entry["unread"]) if "unread" in entry else unread_count > 0

        label = f"Visitor {str(external_id)[:8]}" if external_id else f"Visitor {entry.get('id')}"

        return Dialog(
            dialog_id=visitor_dialog_id(entry),
            channel_id=channel_id,
            channel_type=self.channel_type,
            counterpart_label=label,
            last_message_preview=entry.get("lastMessage") or "",
            last_message_ts=ts,
            display_date=format_display_date(ts, now or self.now()),
            unread=unread,
            unread_count=unread_count,
        )

    def parse_message(self, entry: dict, dialog_id: str | int) -> Message:
        """Map one stored widget message to a canonical Message."""
        return Message(
            id=str(entry.get("id")),
            dialog_id=str(dialog_id),
            role=map_sender_role(entry.get("senderType")),
            content=entry.get("content") or "",
            ts=parse_timestamp(entry.get("timestamp")),
        )

    async def resolve_conversation_id(self, channel_id: int | None, dialog_id: str | int) -> str | None:
        """Find the conversation id behind a widget dialog id.

        Tries the last listing first, then the single-conversation lookup.
        """
        cached = self._conversation_ids.get((channel_id, str(dialog_id)))
        if cached is not None:
            return cached

        payload = await self.client.get_json(
            f"/api/channels/{channel_id}/conversations",
            channel_id=channel_id,
            params={"dialogId": str(dialog_id)},
        )
        conversation = payload.get("conversation") if isinstance(payload, dict) else None
        if not isinstance(conversation, dict) or conversation.get("id") is None:
            return None

        conversation_id = str(conversation["id"])
        self._conversation_ids[(channel_id, str(dialog_id))] = conversation_id
        return conversation_id

    async def fetch_thread(self, channel_id: int | None, dialog_id: str | int) -> list[Message]:
        conversation_id = await self.resolve_conversation_id(channel_id, dialog_id)
        if conversation_id is None:
            logger.warning("No web conversation for dialog: channel=%s dialog=%s", channel_id, dialog_id)
            return []

        payload = await self.client.get_json(
            f"/api/channels/{channel_id}/conversation/{conversation_id}/messages",
            channel_id=channel_id,
        )
        entries = ensure_list(payload, channel_id, "web messages")
        return sorted((self.parse_message(entry, dialog_id) for entry in entries), key=lambda m: m.ts)

    async def send(self, channel_id: int | None, dialog_id: str | int, content: str) -> Message:
        conversation_id = await self.resolve_conversation_id(channel_id, dialog_id)
        if conversation_id is not None:
            path = f"/api/conversations/{conversation_id}/messages"
        else:
            path = f"/api/channels/{channel_id}/dialogs/{dialog_id}/messages"

        response = await self.client.post_json(path, {"content": content}, channel_id=channel_id)
        return build_sent_message(response, dialog_id, content, int(time.time()))
