"""Tests for unread reconciliation."""

from dataclasses import replace

from inbox_sync.models import Dialog
from inbox_sync.sync.reconciler import EMPTY_SNAPSHOT, UnreadReconciler, clamp_dialog, reconcile


def dialog(dialog_id: int, unread: bool = False, count: int = 0) -> Dialog:
    return Dialog(
        dialog_id=dialog_id,
        channel_id=1,
        channel_type="vk",
        counterpart_label=f"Contact {dialog_id}",
        last_message_preview="",
        last_message_ts=0,
        unread=unread,
        unread_count=count,
    )


class TestReconcile:
    """Tests for the pure reconcile function."""

    def test_totals(self) -> None:
        """Totals sum counts and count unread dialogs."""
        snapshot = reconcile([dialog(1, True, 2), dialog(2), dialog(3, True, 5)])
        assert snapshot.total_unread_count == 7
        assert snapshot.unread_dialog_count == 2

    def test_preserves_order(self) -> None:
        """Input order is kept."""
        snapshot = reconcile([dialog(3), dialog(1), dialog(2)])
        assert [d.dialog_id for d in snapshot.dialogs] == [3, 1, 2]

    def test_read_dialog_with_count_is_clamped(self) -> None:
        """unread=False forces a zero count."""
        snapshot = reconcile([dialog(1, False, 4)])
        assert snapshot.dialogs[0].unread_count == 0
        assert snapshot.total_unread_count == 0
        assert snapshot.unread_dialog_count == 0

    def test_negative_count_is_clamped(self) -> None:
        """Negative counts become zero and the flag is kept."""
        snapshot = reconcile([dialog(1, True, -3)])
        assert snapshot.dialogs[0].unread_count == 0
        assert snapshot.dialogs[0].unread is True
        assert snapshot.unread_dialog_count == 1

    def test_idempotent(self) -> None:
        """Reconciling a reconciled snapshot changes nothing."""
        once = reconcile([dialog(1, False, 4), dialog(2, True, -1), dialog(3, True, 2)])
        assert reconcile(once.dialogs) == once

    def test_consistent_dialog_is_returned_unchanged(self) -> None:
        """Consistent dialogs are not copied."""
        d = dialog(1, True, 2)
        assert clamp_dialog(d) is d

    def test_empty(self) -> None:
        """An empty snapshot has zero totals."""
        assert reconcile([]) == EMPTY_SNAPSHOT


class TestUnreadReconciler:
    """Tests for the per-channel reconciler."""

    def test_apply_returns_previous_and_new(self) -> None:
        """apply() hands back the prior snapshot alongside the new one."""
        reconciler = UnreadReconciler()
        first_prev, first = reconciler.apply([dialog(1, True, 1)])
        second_prev, second = reconciler.apply([dialog(1, True, 3)])

        assert first_prev == EMPTY_SNAPSHOT
        assert second_prev == first
        assert second.total_unread_count == 3
        assert reconciler.last == second

    def test_delta_lists_only_growth(self) -> None:
        """delta() maps each grown dialog to how much its count went up."""
        reconciler = UnreadReconciler()
        _, before = reconciler.apply([dialog(1, True, 1), dialog(2, True, 4)])
        reconciler.apply([dialog(1, True, 3), dialog(2, True, 1), dialog(3, True, 2), dialog(4)])

        assert reconciler.delta(before) == {"1": 2, "3": 2}

    def test_new_unread_dialog_counts_as_increase(self) -> None:
        """A dialog absent before and unread now has grown."""
        reconciler = UnreadReconciler()
        _, before = reconciler.apply([])
        reconciler.apply([dialog(5, True, 1)])
        assert reconciler.delta(before) == {"5": 1}

    def test_mark_read_is_display_only(self) -> None:
        """mark_read zeroes the view but not the server snapshot."""
        reconciler = UnreadReconciler()
        reconciler.apply([dialog(1, True, 2), dialog(2, True, 1)])

        reconciler.mark_read(1)

        view = reconciler.view()
        assert view.find(1).unread_count == 0
        assert view.find(1).unread is False
        assert view.total_unread_count == 1
        assert reconciler.last.total_unread_count == 3

    def test_next_snapshot_is_authoritative(self) -> None:
        """A server snapshot after mark_read replaces the hint."""
        reconciler = UnreadReconciler()
        reconciler.apply([dialog(1, True, 2)])
        reconciler.mark_read(1)

        reconciler.apply([dialog(1, True, 2)])

        assert reconciler.view().total_unread_count == 2

    def test_drop_read_hint(self) -> None:
        """A rolled-back hint restores the server values."""
        reconciler = UnreadReconciler()
        reconciler.apply([dialog(1, True, 2)])
        reconciler.mark_read("1")
        reconciler.drop_read_hint(1)
        assert reconciler.view() == reconciler.last

    def test_find_compares_ids_as_strings(self) -> None:
        """Numeric and string ids address the same dialog."""
        snapshot = reconcile([replace(dialog(1), dialog_id="42")])
        assert snapshot.find(42) is not None
