"""Pure ranking helpers shared by global and private leaderboards."""

from collections.abc import Iterable, Sequence
from typing import TypeVar

from studyrank.models.leaderboard import LeaderboardEntry, Metric, ProfileRow

EntryT = TypeVar("EntryT", bound=LeaderboardEntry)


def entry_from_row(row: ProfileRow) -> LeaderboardEntry:
    return LeaderboardEntry(
        user_id=row.user_id,
        username=row.username,
        total_xp=row.total_xp,
        day_streak=row.day_streak,
    )


def assign_dense_ranks(entries: Sequence[EntryT], offset: int = 0) -> list[EntryT]:
    """Number ``entries`` ``offset+1, offset+2, ...`` in list order."""
    ranked = list(entries)
    for position, entry in enumerate(ranked, start=offset + 1):
        entry.rank = position
    return ranked


def sort_by_metric(entries: Iterable[EntryT], metric: Metric) -> list[EntryT]:
    """Sort descending by ``metric``; ties keep their incoming order."""
    return sorted(entries, key=lambda e: e.metric_value(metric), reverse=True)


def exclude_hidden(entries: Iterable[EntryT], hidden_user_ids: set[str]) -> list[EntryT]:
    return [e for e in entries if e.user_id not in hidden_user_ids]


def window_bounds(index: int, size: int, radius: int = 2) -> tuple[int, int]:
    """Slice bounds of the window centered on ``index`` in a list of ``size``."""
    return max(0, index - radius), min(size, index + radius + 1)


def rank_window(
    entries: Sequence[EntryT], user_id: str, radius: int = 2
) -> tuple[int | None, list[EntryT]]:
    """Return the user's 1-based rank and the entries around it.

    The window holds at most ``2 * radius + 1`` entries, always including
    the user, and is clipped (not shifted) at the list boundaries.
    Returns ``(None, [])`` when the user is not in ``entries``.
    """
    index = next((i for i, e in enumerate(entries) if e.user_id == user_id), None)
    if index is None:
        return None, []
    start, end = window_bounds(index, len(entries), radius)
    return index + 1, list(entries[start:end])
