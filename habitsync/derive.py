"""Derived views over cache state. Pure functions, no I/O."""

from collections.abc import Iterable
from datetime import datetime, timedelta

from habitsync.models import Completion, Habit


def completed_today_ids(completions: Iterable[Completion], day_start: datetime) -> frozenset[str]:
    """Habit ids with a completion inside the local day starting at `day_start`."""
    day_end = day_start + timedelta(days=1)
    return frozenset(
        c.habit_id for c in completions
        if day_start <= c.completed_at < day_end
    )


def is_completed_today(completed: frozenset[str], habit_id: str) -> bool:
    return habit_id in completed


def find_streak_drift(habits: Iterable[Habit], completed: frozenset[str],
                      day_start: datetime) -> frozenset[str]:
    """Habits completed today whose streak update never landed.

    A completion was recorded but last_completed is missing or older than
    today, meaning the second write of the completion protocol failed.
    """
    return frozenset(
        h.id for h in habits
        if h.id in completed
        and (h.last_completed is None or h.last_completed < day_start)
    )
