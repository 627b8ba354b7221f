"""Unread reconciliation over whole dialog snapshots."""

from dataclasses import dataclass, replace

from inbox_sync.models import Dialog


@dataclass(frozen=True)
class ReconciledSnapshot:
    """A clamped dialog snapshot with its unread aggregates."""

    dialogs: tuple[Dialog, ...]
    total_unread_count: int
    unread_dialog_count: int

    def find(self, dialog_id: str | int) -> Dialog | None:
        """Find a dialog by id (ids compare as strings)."""
        wanted = str(dialog_id)
        for dialog in self.dialogs:
            if str(dialog.dialog_id) == wanted:
                return dialog
        return None


EMPTY_SNAPSHOT = ReconciledSnapshot(dialogs=(), total_unread_count=0, unread_dialog_count=0)


def clamp_dialog(dialog: Dialog) -> Dialog:
    """Enforce the unread invariant on one dialog.

    Negative counts become 0 and a dialog not flagged unread carries a count
    of 0. The unread flag wins over the counter when they disagree.
    """
    count = max(dialog.unread_count, 0)
    if not dialog.unread:
        count = 0
    if count == dialog.unread_count:
        return dialog
    return replace(dialog, unread_count=count)


def reconcile(dialogs: list[Dialog] | tuple[Dialog, ...]) -> ReconciledSnapshot:
    """Clamp a snapshot and compute unread totals.

    Pure and idempotent: reconciling an already reconciled snapshot yields
    an equal result. Input order is preserved.
    """
    clamped = tuple(clamp_dialog(dialog) for dialog in dialogs)
    return ReconciledSnapshot(
        dialogs=clamped,
        total_unread_count=sum(dialog.unread_count for dialog in clamped),
        unread_dialog_count=sum(1 for dialog in clamped if dialog.unread),
    )


class UnreadReconciler:
    """Per-channel reconciler holding only the last snapshot and read hints.

    The last snapshot is kept to tell whether a dialog's unread count grew
    between ticks. `mark_read` records an optimistic, display-only zero for
    a dialog; the next server snapshot is authoritative and drops the hint.
    """

    def __init__(self) -> None:
        self._last: ReconciledSnapshot = EMPTY_SNAPSHOT
        self._read_hints: set[str] = set()

    @property
    def last(self) -> ReconciledSnapshot:
        """The last server snapshot applied."""
        return self._last

    def apply(self, dialogs: list[Dialog]) -> tuple[ReconciledSnapshot, ReconciledSnapshot]:
        """Replace the held snapshot with a fresh server one.

        Returns:
            Tuple of (previous snapshot, new snapshot)
        """
        previous = self._last
        self._last = reconcile(dialogs)
        self._read_hints.clear()
        return previous, self._last

    def delta(self, previous: ReconciledSnapshot) -> dict[str, int]:
        """Per-dialog unread growth from `previous` to the current snapshot.

        Only dialogs whose count went up are listed; a dialog absent from
        `previous` counts from zero.
        """
        before = {str(dialog.dialog_id): dialog.unread_count for dialog in previous.dialogs}
        grown = {}
        for dialog in self._last.dialogs:
            diff = dialog.unread_count - before.get(str(dialog.dialog_id), 0)
            if diff > 0:
                grown[str(dialog.dialog_id)] = diff
        return grown

    def mark_read(self, dialog_id: str | int) -> None:
        """Record an optimistic read for display until the next snapshot."""
        self._read_hints.add(str(dialog_id))

    def drop_read_hint(self, dialog_id: str | int) -> None:
        """Roll back an optimistic read (the provider call failed)."""
        self._read_hints.discard(str(dialog_id))

    def view(self) -> ReconciledSnapshot:
        """The snapshot to display: the last server snapshot with read hints applied."""
        if not self._read_hints:
            return self._last
        dialogs = [
            replace(dialog, unread=False, unread_count=0) if str(dialog.dialog_id) in self._read_hints else dialog
            for dialog in self._last.dialogs
        ]
        return reconcile(dialogs)
