"""Tests for the text renderer and the Telegram command parsing."""

from habitsync.cache import Snapshot
from habitsync.models import Habit
from habitsync.render import EMPTY_TEXT, format_frequency, habit_at, render_habit_list
from habitsync.transport.telegram import parse_new_habit


def _habit(hid, title, **kw):
    return Habit(id=hid, user_id="u1", title=title, **kw)


class TestRender:
    def test_empty_list(self):
        text = render_habit_list(Snapshot())
        assert text.startswith("Today's Habits")
        assert EMPTY_TEXT in text

    def test_frequency_capitalized(self):
        assert format_frequency("daily") == "Daily"
        assert format_frequency("") == ""

    def test_list_shows_streak_and_completion(self):
        snap = Snapshot(
            habits=(_habit("h1", "Read", streak_count=3), _habit("h2", "Run", frequency="weekly")),
            completed_today=frozenset({"h1"}),
        )
        text = render_habit_list(snap)
        assert "1. ✅ Read" in text
        assert "3 day streak · Daily  Completed!" in text
        assert "2. ⬜ Run" in text
        assert "Weekly" in text

    def test_habit_at(self):
        snap = Snapshot(habits=(_habit("h1", "Read"), _habit("h2", "Run")))
        assert habit_at(snap, "2").id == "h2"
        assert habit_at(snap, "0") is None
        assert habit_at(snap, "3") is None
        assert habit_at(snap, "abc") is None

    def test_explicit_completed_set_overrides_snapshot(self):
        snap = Snapshot(habits=(_habit("h1", "Read"),), completed_today=frozenset({"h1"}))
        text = render_habit_list(snap, frozenset())
        assert "Completed!" not in text


class TestParseNewHabit:
    def test_full(self):
        assert parse_new_habit("Read | 20 pages | Weekly") == ("Read", "20 pages", "Weekly")

    def test_title_only_defaults_daily(self):
        assert parse_new_habit("Read") == ("Read", "", "daily")

    def test_empty(self):
        assert parse_new_habit("") == ("", "", "daily")
