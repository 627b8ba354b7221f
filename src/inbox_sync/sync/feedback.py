"""Message feedback pipeline: pair assistant replies with the user message they answered.

An operator edits an assistant reply; the reply is paired with the nearest
preceding user message in the loaded thread and the pair becomes a training
example (a Correction).
"""

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from inbox_sync.errors import EmptyCorrection, InvalidRole, MessageNotFound, NoPriorCounterpartMessage
from inbox_sync.logging import get_logger
from inbox_sync.models import ROLE_ASSISTANT, ROLE_USER, Correction, Message, StoredCorrection
from inbox_sync.sync.corrections import CorrectionStore

logger = get_logger("feedback")

STATUS_NONE = "none"
STATUS_GOOD = "good"
STATUS_CORRECTED = "corrected"


@dataclass(frozen=True)
class CorrectionDraft:
    """An open edit: the assistant reply, its paired user message and the text to start from."""

    assistant_message: Message
    paired_message: Message
    seed_text: str
    channel_id: int | None = None
    dialog_id: str | None = None


def _normalize(text: str | None) -> str:
    return (text or "").strip().lower()


def find_message_index(thread: Sequence[Message], message_id: str | int) -> int | None:
    """Index of a message in the thread, or None."""
    wanted = str(message_id)
    for index, message in enumerate(thread):
        if message.id == wanted:
            return index
    return None


def find_previous_user_message(thread: Sequence[Message], index: int) -> Message | None:
    """Scan backward from `index` (exclusive) for the nearest user message."""
    for i in range(index - 1, -1, -1):
        if thread[i].role == ROLE_USER:
            return thread[i]
    return None


def find_existing_correction(
    corrections: Iterable[StoredCorrection],
    user_query: str,
    original_text: str,
) -> StoredCorrection | None:
    """Find a stored correction for the same query and original reply.

    Both sides compare trimmed and case-insensitively.
    """
    query = _normalize(user_query)
    original = _normalize(original_text)
    for correction in corrections:
        if _normalize(correction.user_query) == query and _normalize(correction.original_response) == original:
            return correction
    return None


def correction_status(
    message: Message,
    paired: Message | None,
    corrections: Iterable[StoredCorrection],
) -> str:
    """Whether an assistant reply was marked good, corrected, or neither.

    A stored correction applies when its query matches the paired user
    message and either its original or corrected text matches the reply.
    Corrections whose corrected text equals the original are "good" marks.
    """
    if paired is None:
        return STATUS_NONE

    query = _normalize(paired.content)
    text = _normalize(message.content)
    is_good = False
    is_corrected = False

    for correction in corrections:
        if _normalize(correction.user_query) != query:
            continue
        original = _normalize(correction.original_response)
        corrected = _normalize(correction.corrected_response)
        if text not in (original, corrected):
            continue
        if original == corrected:
            is_good = True
        else:
            is_corrected = True

    if is_corrected:
        return STATUS_CORRECTED
    if is_good:
        return STATUS_GOOD
    return STATUS_NONE


class FeedbackPipeline:
    """Builds correction drafts from a loaded thread and persists them.

    The thread passed in must be in display order (timestamp ascending);
    the pipeline never mutates it.
    """

    def __init__(self, store: CorrectionStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    async def corrections_for(self, channel_id: int | None, dialog_id: str | int) -> list[StoredCorrection]:
        """Corrections already stored for a dialog."""
        return await self._store.list_for(channel_id, dialog_id)

    def propose_correction(
        self,
        thread: Sequence[Message],
        assistant_message_id: str | int,
        existing: Iterable[StoredCorrection] = (),
        channel_id: int | None = None,
        dialog_id: str | int | None = None,
    ) -> CorrectionDraft:
        """Open a correction for an assistant message.

        Args:
            thread: The loaded thread, timestamp ascending
            assistant_message_id: Id of the reply to correct
            existing: Corrections already stored for this dialog; a match
                seeds the draft with its corrected text
            channel_id: Channel of the thread (None for generic conversations)
            dialog_id: Dialog or conversation id of the thread

        Returns:
            CorrectionDraft seeded with the paired user message

        Raises:
            MessageNotFound: If the message is not in the thread
            InvalidRole: If the message is not an assistant message
            NoPriorCounterpartMessage: If no user message precedes it
        """
        index = find_message_index(thread, assistant_message_id)
        if index is None:
            raise MessageNotFound(str(assistant_message_id))

        message = thread[index]
        if message.role != ROLE_ASSISTANT:
            raise InvalidRole(message.id, message.role)

        paired = find_previous_user_message(thread, index)
        if paired is None:
            raise NoPriorCounterpartMessage(message.id)

        match = find_existing_correction(existing, paired.content, message.content)
        seed_text = match.corrected_response if match is not None else message.content

        return CorrectionDraft(
            assistant_message=message,
            paired_message=paired,
            seed_text=seed_text,
            channel_id=channel_id,
            dialog_id=str(dialog_id) if dialog_id is not None else message.dialog_id,
        )

    async def submit(self, draft: CorrectionDraft, corrected_text: str) -> Correction:
        """Persist an operator's corrected reply.

        Raises:
            EmptyCorrection: If the corrected text is blank
            ProviderUnavailable: If the store cannot be reached
        """
        if not corrected_text.strip():
            raise EmptyCorrection(f"correction for message {draft.assistant_message.id!r} is empty")
        return await self._save(draft, corrected_text.strip(), is_good_response=False)

    async def mark_good(self, draft: CorrectionDraft) -> Correction:
        """Persist the reply unchanged as a good training example."""
        return await self._save(draft, draft.assistant_message.content, is_good_response=True)

    async def _save(self, draft: CorrectionDraft, corrected_text: str, is_good_response: bool) -> Correction:
        correction = Correction(
            assistant_message_id=draft.assistant_message.id,
            paired_message_id=draft.paired_message.id,
            corrected_text=corrected_text,
            created_at=int(self._clock()),
            user_query=draft.paired_message.content,
            original_text=draft.assistant_message.content,
            channel_id=draft.channel_id,
            dialog_id=draft.dialog_id,
            is_good_response=is_good_response,
        )
        saved = await self._store.save(correction)
        logger.info(
            "Correction submitted: message=%s paired=%s good=%s",
            saved.assistant_message_id,
            saved.paired_message_id,
            saved.is_good_response,
        )
        return saved
