"""Correction persistence: dashboard endpoint and local SQLite store."""

import sqlite3
from pathlib import Path
from typing import Protocol, Self

from inbox_sync.client import DashboardClient
from inbox_sync.errors import ProviderUnavailable
from inbox_sync.logging import get_logger
from inbox_sync.models import Correction, StoredCorrection

logger = get_logger("corrections")


class CorrectionStore(Protocol):
    async def save(self, correction: Correction) -> Correction: ...

    async def list_for(self, channel_id: int | None, dialog_id: str | int) -> list[StoredCorrection]: ...


def training_payload(correction: Correction) -> dict:
    """Body of POST /api/messages/train for a correction."""
    return {
        "query": correction.user_query,
        "originalResponse": correction.original_text,
        "correctedResponse": correction.corrected_text,
        "conversationId": correction.dialog_id,
        "channelId": correction.channel_id,
        "isGoodResponse": correction.is_good_response,
        "assistantMessageId": correction.assistant_message_id,
        "pairedMessageId": correction.paired_message_id,
    }


class HttpCorrectionStore:
    """Stores corrections through the dashboard's training endpoint."""

    def __init__(self, client: DashboardClient) -> None:
        self._client = client

    async def save(self, correction: Correction) -> Correction:
        await self._client.post_json(
            "/api/messages/train",
            training_payload(correction),
            channel_id=correction.channel_id,
        )
        logger.info(
            "Correction stored: channel=%s dialog=%s message=%s good=%s",
            correction.channel_id,
            correction.dialog_id,
            correction.assistant_message_id,
            correction.is_good_response,
        )
        return correction

    async def list_for(self, channel_id: int | None, dialog_id: str | int) -> list[StoredCorrection]:
        payload = await self._client.get_json(
            f"/api/messages/corrections/{channel_id}/{dialog_id}",
            channel_id=channel_id,
        )
        if not isinstance(payload, dict):
            raise ProviderUnavailable(channel_id, "corrections payload is not an object")
        return [
            StoredCorrection(
                user_query=entry.get("userQuery") or "",
                original_response=entry.get("originalResponse") or "",
                corrected_response=entry.get("correctedResponse") or "",
                created_at=str(entry.get("createdAt") or ""),
            )
            for entry in payload.get("corrections") or []
            if isinstance(entry, dict)
        ]


class SqliteCorrectionStore:
    """Append-only local correction log in SQLite.

    Used by the CLI as a local record of submitted corrections and as an
    offline store. Rows are never updated or deleted.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (and create if needed) the corrections database.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the corrections table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS corrections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id INTEGER,
                dialog_id TEXT,
                assistant_message_id TEXT NOT NULL,
                paired_message_id TEXT NOT NULL,
                user_query TEXT NOT NULL DEFAULT '',
                original_text TEXT NOT NULL DEFAULT '',
                corrected_text TEXT NOT NULL,
                is_good_response INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_corrections_dialog
            ON corrections (channel_id, dialog_id)
        """)
        self._conn.commit()

    def add(self, correction: Correction) -> None:
        """Append a correction row."""
        self._conn.execute(
            """
            INSERT INTO corrections (
                channel_id, dialog_id, assistant_message_id, paired_message_id,
                user_query, original_text, corrected_text, is_good_response, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                correction.channel_id,
                correction.dialog_id,
                correction.assistant_message_id,
                correction.paired_message_id,
                correction.user_query,
                correction.original_text,
                correction.corrected_text,
                int(correction.is_good_response),
                correction.created_at,
            ),
        )
        self._conn.commit()

    def list_corrections(
        self,
        channel_id: int | None = None,
        dialog_id: str | int | None = None,
        limit: int = 100,
    ) -> list[Correction]:
        """List stored corrections, newest first, optionally for one dialog."""
        query = "SELECT * FROM corrections"
        params: list = []
        if dialog_id is not None:
            query += " WHERE channel_id IS ? AND dialog_id = ?"
            params.extend([channel_id, str(dialog_id)])
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        return [
            Correction(
                assistant_message_id=row["assistant_message_id"],
                paired_message_id=row["paired_message_id"],
                corrected_text=row["corrected_text"],
                created_at=row["created_at"],
                user_query=row["user_query"],
                original_text=row["original_text"],
                channel_id=row["channel_id"],
                dialog_id=row["dialog_id"],
                is_good_response=bool(row["is_good_response"]),
            )
            for row in self._conn.execute(query, params)
        ]

    async def save(self, correction: Correction) -> Correction:
        self.add(correction)
        return correction

    async def list_for(self, channel_id: int | None, dialog_id: str | int) -> list[StoredCorrection]:
        return [
            StoredCorrection(
                user_query=c.user_query,
                original_response=c.original_text,
                corrected_response=c.corrected_text,
                created_at=str(c.created_at),
            )
            for c in self.list_corrections(channel_id, dialog_id)
        ]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()


class MirroredCorrectionStore:
    """Saves to the dashboard first, then records locally.

    The local row is written only after the dashboard accepted the
    correction, so the local log never claims a correction the backend
    does not have.
    """

    def __init__(self, remote: CorrectionStore, local: SqliteCorrectionStore) -> None:
        self._remote = remote
        self._local = local

    async def save(self, correction: Correction) -> Correction:
        saved = await self._remote.save(correction)
        self._local.add(saved)
        return saved

    async def list_for(self, channel_id: int | None, dialog_id: str | int) -> list[StoredCorrection]:
        return await self._remote.list_for(channel_id, dialog_id)
