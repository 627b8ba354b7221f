"""Conversation list presentation: search, tab filter and badges."""

from collections.abc import Iterable

from inbox_sync.models import Dialog

TAB_ALL = "all"
TAB_UNREAD = "unread"
TABS = (TAB_ALL, TAB_UNREAD)

BADGE_CAP = 99


def matches_query(dialog: Dialog, query: str) -> bool:
    """Case-insensitive substring match on label or last-message preview.

    `query` must already be trimmed and lower-cased.
    """
    return query in dialog.counterpart_label.lower() or query in dialog.last_message_preview.lower()


def present(dialogs: Iterable[Dialog], search_query: str = "", tab: str = TAB_ALL) -> list[Dialog]:
    """Filter a dialog snapshot for display.

    The order of `dialogs` is kept as-is; providers return most recent first
    and re-sorting here would hide ordering bugs upstream.

    Args:
        dialogs: Reconciled dialogs
        search_query: Free-text filter; trimmed, case-insensitive
        tab: "all" or "unread"

    Returns:
        Filtered list of dialogs

    Raises:
        ValueError: If `tab` is not a known tab
    """
    if tab not in TABS:
        raise ValueError(f"unknown tab {tab!r}; expected one of {TABS}")

    query = (search_query or "").strip().lower()

    result = []
    for dialog in dialogs:
        if tab == TAB_UNREAD and not dialog.unread:
            continue
        if query and not matches_query(dialog, query):
            continue
        result.append(dialog)
    return result


def unified(generic: Iterable[Dialog], provider_snapshots: Iterable[Iterable[Dialog]]) -> list[Dialog]:
    """Merge generic conversations with provider dialogs into one list.

    Generic conversations come first, then each provider snapshot in the
    order given; order within each snapshot is untouched.
    """
    merged = list(generic)
    for snapshot in provider_snapshots:
        merged.extend(snapshot)
    return merged


def badge_label(count: int) -> str:
    """Render an unread badge: empty for zero, capped at "99+"."""
    if count <= 0:
        return ""
    if count > BADGE_CAP:
        return f"{BADGE_CAP}+"
    return str(count)
