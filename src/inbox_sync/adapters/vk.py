"""Adapter for VK community dialogs (social-network channel).

The dashboard proxies the VK messages API at:
    /api/channels/<id>/vk/dialogs                      - conversation list
    /api/channels/<id>/vk/profiles                     - counterpart profiles
    /api/channels/<id>/vk/dialogs/<peerId>/history     - thread
    /api/channels/<id>/vk/dialogs/<peerId>/messages    - send
    /api/channels/<id>/vk/dialogs/<peerId>/mark-as-read

Each conversation entry carries:
- id: VK conversation id
- lastMessage: {id, date (unix seconds), fromId, peerId, text}
- unreadCount: optional, absent when everything is read

Messages from the community itself have a negative fromId; those are the
assistant's replies.
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

logger = get_logger("adapters.vk")

ATTACHMENT_PREVIEW = "[attachment]"


class VkAdapter(ProviderAdapter):
    """Adapter for VK community conversations."""

    channel_type = "vk"

    async def list_dialogs(self, channel_id: int | None) -> list[Dialog]:
        payload = await self.client.get_json(f"/api/channels/{channel_id}/vk/dialogs", channel_id=channel_id)
        entries = ensure_list(payload, channel_id, "vk dialogs")
        labels = await self._load_profile_labels(channel_id)
        now = self.now()

        return [
            self.parse_dialog(entry, channel_id, labels, now)
            for entry in entries
            if isinstance(entry.get("lastMessage"), dict)
        ]

    async def _load_profile_labels(self, channel_id: int | None) -> dict[int, str]:
        """Load counterpart names; an unavailable profiles endpoint only costs labels."""
        try:
            payload = await self.client.get_json(f"/api/channels/{channel_id}/vk/profiles", channel_id=channel_id)
            profiles = ensure_list(payload, channel_id, "vk profiles")
        except ProviderUnavailable as e:
            logger.warning("VK profiles unavailable, using fallback labels: channel=%s reason=%s", channel_id, e.reason)
            return {}

        labels: dict[int, str] = {}
        for profile in profiles:
            try:
                profile_id = int(profile["id"])
            except (KeyError, TypeError, ValueError):
                continue
            first_name = profile.get("first_name") or ""
            last_name = profile.get("last_name") or ""
            name = f"{first_name} {last_name}".strip()
            if name:
                labels[profile_id] = name
        return labels

    def parse_dialog(
        self,
        entry: dict,
        channel_id: int | None,
        labels: dict[int, str] | None = None,
        now: datetime | None = None,
    ) -> Dialog:
        """Map one VK conversation entry to a canonical Dialog."""
        last_message = entry.get("lastMessage") or {}
        peer_id = last_message.get("peerId")
        ts = parse_timestamp(last_message.get("date"))
        unread_count = to_unread_count(entry.get("unreadCount"))

        label = (labels or {}).get(peer_id) if isinstance(peer_id, int) else None

        return Dialog(
            dialog_id=peer_id,
            channel_id=channel_id,
            channel_type=self.channel_type,
            counterpart_label=label or f"Contact {peer_id}",
            last_message_preview=last_message.get("text") or ATTACHMENT_PREVIEW,
            last_message_ts=ts,
            display_date=format_display_date(ts, now or self.now()),
            unread=unread_count > 0,
            unread_count=unread_count,
        )

    def parse_message(self, entry: dict, dialog_id: str | int) -> Message:
        """Map one VK history entry to a canonical Message."""
        from_id = entry.get("fromId") or 0
        try:
            role = ROLE_USER if int(from_id) > 0 else ROLE_ASSISTANT
        except (TypeError, ValueError):
            role = ROLE_ASSISTANT

        return Message(
            id=str(entry.get("id")),
            dialog_id=str(dialog_id),
            role=role,
            content=entry.get("text") or ATTACHMENT_PREVIEW,
            ts=parse_timestamp(entry.get("date")),
        )

    async def fetch_thread(self, channel_id: int | None, dialog_id: str | int) -> list[Message]:
        payload = await self.client.get_json(
            f"/api/channels/{channel_id}/vk/dialogs/{dialog_id}/history",
            channel_id=channel_id,
        )
        messages = [self.parse_message(entry, dialog_id) for entry in ensure_list(payload, channel_id, "vk history")]
        # VK returns history newest first
        return sorted(messages, key=lambda m: m.ts)

    async def send(self, channel_id: int | None, dialog_id: str | int, content: str) -> Message:
        response = await self.client.post_json(
            f"/api/channels/{channel_id}/vk/dialogs/{dialog_id}/messages",
            {"message": content},
            channel_id=channel_id,
        )
        return build_sent_message(response, dialog_id, content, int(time.time()))

    async def mark_read(self, channel_id: int | None, dialog_id: str | int) -> None:
        await self.client.post_json(
            f"/api/channels/{channel_id}/vk/dialogs/{dialog_id}/mark-as-read",
            channel_id=channel_id,
        )
