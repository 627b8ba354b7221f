"""Adapter for Avito marketplace chats.

The dashboard proxies the Avito messenger API at:
    /api/channels/<id>/avito/dialogs?limit=&offset=    - paged chat list
    /api/channels/<id>/avito/dialogs/<chatId>/full     - thread with item info
    /api/channels/<id>/avito/dialogs/<chatId>/messages - send
    /api/channels/<id>/avito/dialogs/<chatId>/mark-as-read

Chat entries look like:
    {"id": "u2i-...", "user": {"name": ...}, "clientName": ...,
     "lastMessage": {"date": 1706200000, "text": ..., "isOutgoing": false},
     "unreadCount": 2}

Thread messages carry `out`: 0 for the buyer, anything else for the seller
side (the assistant's replies).
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
    parse_timestamp,
    to_unread_count,
)
from inbox_sync.errors import ProviderUnavailable
from inbox_sync.logging import get_logger
from inbox_sync.models import ROLE_ASSISTANT, ROLE_USER

logger = get_logger("adapters.avito")

UNKNOWN_CLIENT_LABEL = "Unknown client"


class AvitoAdapter(ProviderAdapter):
    """Adapter for Avito marketplace chats."""

    channel_type = "avito"

    async def list_dialogs(self, channel_id: int | None) -> list[Dialog]:
        """Fetch all chat pages and return one whole snapshot.

        Pages are requested until a short page or `avito_max_pages` is hit.
        Chats repeated across pages (the list shifts while paging) keep their
        first occurrence.
        """
        page_size = self.polling.avito_page_size
        entries: list[dict] = []
        seen: set[str] = set()

        for page in range(self.polling.avito_max_pages):
            payload = await self.client.get_json(
                f"/api/channels/{channel_id}/avito/dialogs",
                channel_id=channel_id,
                params={"limit": page_size, "offset": page * page_size},
            )
            batch = ensure_list(payload, channel_id, "avito dialogs")
            for entry in batch:
                chat_id = str(entry.get("id"))
                if chat_id in seen:
                    continue
                seen.add(chat_id)
                entries.append(entry)

            if len(batch) < page_size:
                break
        else:
            logger.debug(
                "Avito dialog paging stopped at max pages: channel=%s pages=%d",
                channel_id,
                self.polling.avito_max_pages,
            )

        now = self.now()
        return [self.parse_dialog(entry, channel_id, now) for entry in entries]

    def parse_dialog(self, entry: dict, channel_id: int | None, now: datetime | None = None) -> Dialog:
        """Map one Avito chat entry to a canonical Dialog."""
        last_message = entry.get("lastMessage") or {}
        user = entry.get("user") or {}
        ts = parse_timestamp(last_message.get("date"))
        unread_count = to_unread_count(entry.get("unreadCount"))

        return Dialog(
            dialog_id=str(entry.get("id")),
            channel_id=channel_id,
            channel_type=self.channel_type,
            counterpart_label=user.get("name") or entry.get("clientName") or UNKNOWN_CLIENT_LABEL,
            last_message_preview=last_message.get("text") or "",
            last_message_ts=ts,
            display_date=format_display_date(ts, now or self.now()),
            unread=unread_count > 0,
            unread_count=unread_count,
        )

    def parse_message(self, entry: dict, dialog_id: str | int) -> Message:
        """Map one Avito thread message to a canonical Message."""
        return Message(
            id=str(entry.get("id")),
            dialog_id=str(dialog_id),
            role=ROLE_USER if entry.get("out") == 0 else ROLE_ASSISTANT,
            content=entry.get("text") or "",
            ts=parse_timestamp(entry.get("date")),
        )

    async def fetch_thread(self, channel_id: int | None, dialog_id: str | int) -> list[Message]:
        payload = await self.client.get_json(
            f"/api/channels/{channel_id}/avito/dialogs/{dialog_id}/full",
            channel_id=channel_id,
        )
        if not isinstance(payload, dict):
            raise ProviderUnavailable(channel_id, "avito thread payload is not an object")

        entries = ensure_list(payload.get("messages") or [], channel_id, "avito messages")
        return sorted((self.parse_message(entry, dialog_id) for entry in entries), key=lambda m: m.ts)

    async def send(self, channel_id: int | None, dialog_id: str | int, content: str) -> Message:
        response = await self.client.post_json(
            f"/api/channels/{channel_id}/avito/dialogs/{dialog_id}/messages",
            {"message": content},
            channel_id=channel_id,
        )
        return build_sent_message(response, dialog_id, content, int(time.time()))

    async def mark_read(self, channel_id: int | None, dialog_id: str | int) -> None:
        await self.client.post_json(
            f"/api/channels/{channel_id}/avito/dialogs/{dialog_id}/mark-as-read",
            channel_id=channel_id,
        )
