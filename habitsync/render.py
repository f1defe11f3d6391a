"""Plain-text rendering of a session snapshot for chat transports."""

from habitsync.cache import Snapshot
from habitsync.models import Habit

EMPTY_TEXT = "No habits found. Please add some habits."


def format_frequency(frequency: str) -> str:
    """'daily' -> 'Daily'. Display only."""
    return frequency[:1].upper() + frequency[1:]


def format_habit(index: int, habit: Habit, completed: bool) -> str:
    mark = "✅" if completed else "⬜"
    lines = [f"{index}. {mark} {habit.title}"]
    if habit.description:
        lines.append(f"   {habit.description}")
    lines.append(
        f"   🔥 {habit.streak_count} day streak · {format_frequency(habit.frequency)}"
        + ("  Completed!" if completed else "")
    )
    return "\n".join(lines)


def render_habit_list(snapshot: Snapshot, completed: frozenset[str] | None = None) -> str:
    """The "Today's Habits" screen. Numbers are 1-based positions in the list.

    `completed` overrides the snapshot's set (the session passes one that
    is empty while the snapshot still describes yesterday).
    """
    if completed is None:
        completed = snapshot.completed_today
    if not snapshot.habits:
        return f"Today's Habits\n\n{EMPTY_TEXT}"
    blocks = [
        format_habit(i, h, h.id in completed)
        for i, h in enumerate(snapshot.habits, start=1)
    ]
    return "Today's Habits\n\n" + "\n\n".join(blocks)


def habit_at(snapshot: Snapshot, position: str) -> Habit | None:
    """Resolve a 1-based list position typed by the user."""
    try:
        index = int(position)
    except (TypeError, ValueError):
        return None
    if 1 <= index <= len(snapshot.habits):
        return snapshot.habits[index - 1]
    return None
